from __future__ import annotations

import json
import struct
from dataclasses import dataclass, field
from typing import Any

from .errors import MalformedAsset

GLB_MAGIC = b"glTF"
GLB_VERSION_SUPPORTED = 2
GLB_HEADER_SIZE = 12
CHUNK_HEADER_SIZE = 8

CHUNK_TYPE_JSON = 0x4E4F534A  # b"JSON"
CHUNK_TYPE_BIN = 0x004E4942  # b"BIN\0"


@dataclass
class GlbDocument:
    """A decoded GLB: the glTF JSON object plus the embedded binary buffer."""

    json: dict[str, Any]
    bin: bytearray = field(default_factory=bytearray)

    @property
    def extensions_used(self) -> set[str]:
        used = self.json.get("extensionsUsed", [])
        required = self.json.get("extensionsRequired", [])
        out: set[str] = set()
        for value in (used, required):
            if isinstance(value, list):
                out.update(str(item) for item in value)
        return out

    def list_of(self, key: str) -> list[Any]:
        value = self.json.get(key, [])
        if not isinstance(value, list):
            raise MalformedAsset(f"glTF '{key}' must be an array")
        return value


def _pad4(data: bytes, fill: bytes) -> bytes:
    remainder = len(data) % 4
    if remainder == 0:
        return data
    return data + fill * (4 - remainder)


def parse_glb(data: bytes) -> GlbDocument:
    if len(data) < GLB_HEADER_SIZE:
        raise MalformedAsset(f"GLB too short: {len(data)} bytes")

    magic, version, length = struct.unpack_from("<4sII", data, 0)
    if magic != GLB_MAGIC:
        raise MalformedAsset(f"Invalid GLB magic: {magic!r}")
    if version != GLB_VERSION_SUPPORTED:
        raise MalformedAsset(f"Unsupported GLB version: {version}")
    if length < GLB_HEADER_SIZE or length > len(data):
        raise MalformedAsset(
            f"GLB declared length {length} does not fit payload of {len(data)} bytes"
        )

    offset = GLB_HEADER_SIZE
    json_chunk: bytes | None = None
    bin_chunk: bytes | None = None
    index = 0
    while offset < length:
        if offset + CHUNK_HEADER_SIZE > length:
            raise MalformedAsset(f"Truncated chunk header at offset {offset}")
        chunk_length, chunk_type = struct.unpack_from("<II", data, offset)
        start = offset + CHUNK_HEADER_SIZE
        end = start + chunk_length
        if end > length:
            raise MalformedAsset(f"Chunk {index} overruns GLB length ({end} > {length})")

        if index == 0:
            if chunk_type != CHUNK_TYPE_JSON:
                raise MalformedAsset("First GLB chunk must be JSON")
            json_chunk = bytes(data[start:end])
        elif chunk_type == CHUNK_TYPE_BIN:
            if bin_chunk is not None or index != 1:
                raise MalformedAsset("BIN chunk must directly follow the JSON chunk")
            bin_chunk = bytes(data[start:end])
        elif chunk_type == CHUNK_TYPE_JSON:
            raise MalformedAsset("GLB contains more than one JSON chunk")
        # Unknown chunk types are skipped.

        offset = end
        index += 1

    if json_chunk is None:
        raise MalformedAsset("GLB has no JSON chunk")

    try:
        document = json.loads(json_chunk.decode("utf-8").rstrip(" \x00"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedAsset(f"Invalid GLB JSON chunk: {exc}") from exc
    if not isinstance(document, dict):
        raise MalformedAsset("GLB JSON chunk must be an object")

    return GlbDocument(json=document, bin=bytearray(bin_chunk or b""))


def serialize_glb(doc: GlbDocument) -> bytes:
    buffers = doc.json.get("buffers")
    if doc.bin:
        if not isinstance(buffers, list) or not buffers:
            doc.json["buffers"] = buffers = [{}]
        buffers[0]["byteLength"] = len(doc.bin)

    json_bytes = _pad4(
        json.dumps(doc.json, ensure_ascii=False, separators=(",", ":")).encode("utf-8"),
        b" ",
    )
    parts = [struct.pack("<II", len(json_bytes), CHUNK_TYPE_JSON), json_bytes]
    if doc.bin:
        bin_bytes = _pad4(bytes(doc.bin), b"\x00")
        parts.append(struct.pack("<II", len(bin_bytes), CHUNK_TYPE_BIN))
        parts.append(bin_bytes)

    body = b"".join(parts)
    header = struct.pack("<4sII", GLB_MAGIC, GLB_VERSION_SUPPORTED, GLB_HEADER_SIZE + len(body))
    return header + body
