from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from tile_fetch.storage import write_bytes_atomic

MANIFEST_FILENAME = "manifest.json"


class TileResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    filename: str
    url: str
    translation: tuple[float, float, float]
    copyright: Optional[str] = None


class TileFailure(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    url: str
    filename: Optional[str] = None
    error_kind: str
    message: str


class RunManifest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int = 1
    origin: Optional[tuple[float, float, float]] = None
    tiles: list[TileResult] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failures: list[TileFailure] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    copyrights: list[str] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime
    duration_s: float = Field(ge=0)

    @property
    def ok(self) -> bool:
        return not self.failures

    def summary(self) -> dict[str, object]:
        return {
            "ok": self.ok,
            "origin": list(self.origin) if self.origin is not None else None,
            "tiles": len(self.tiles),
            "skipped": len(self.skipped),
            "failures": len(self.failures),
            "files": len(self.files),
            "duration_s": self.duration_s,
        }


def write_manifest(manifest: RunManifest, out_dir: Path) -> Path:
    path = Path(out_dir) / MANIFEST_FILENAME
    payload = json.dumps(manifest.model_dump(mode="json"), indent=2, ensure_ascii=False)
    write_bytes_atomic(path, (payload + "\n").encode("utf-8"))
    return path


def load_manifest(path: Path) -> RunManifest:
    return RunManifest.model_validate_json(Path(path).read_text(encoding="utf-8"))
