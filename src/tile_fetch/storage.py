from __future__ import annotations

import os
import re
import uuid
from pathlib import Path

_DIGEST_RE = re.compile(r"^[0-9a-f]{40}$")

TILE_SUFFIX = ".glb"


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Write to a sibling temp file and rename it into place."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        with tmp_path.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


class TileStore:
    """Content-addressed ``{digest}.glb`` files under one directory."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    @staticmethod
    def filename_for(digest: str) -> str:
        if not _DIGEST_RE.match(digest):
            raise ValueError(f"Invalid tile digest: {digest!r}")
        return f"{digest}{TILE_SUFFIX}"

    def path_for(self, digest: str) -> Path:
        return self._root / self.filename_for(digest)

    def exists(self, digest: str) -> bool:
        path = self.path_for(digest)
        try:
            return path.is_file() and path.stat().st_size > 0
        except OSError:
            return False

    def write_atomic(self, digest: str, data: bytes) -> Path:
        if not data:
            raise ValueError("Refusing to write an empty tile")
        path = self.path_for(digest)
        write_bytes_atomic(path, data)
        return path
