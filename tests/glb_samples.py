from __future__ import annotations

import json
import struct
from typing import Any, Optional, Sequence

import numpy as np

FLOAT = 5126
UNSIGNED_SHORT = 5123

TRIANGLE = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, -1.0]], dtype=np.float32)


def ecef_to_gltf(point: Sequence[float]) -> list[float]:
    """glTF (y-up) translation that lands on ``point`` after the z-up swap."""

    x, y, z = (float(v) for v in point)
    return [x, z, -y]


def gltf_to_ecef(point: Sequence[float]) -> np.ndarray:
    x, y, z = (float(v) for v in point)
    return np.array([x, -z, y], dtype=np.float64)


def pack_glb(document: dict[str, Any], binary: bytes = b"") -> bytes:
    json_bytes = json.dumps(document, separators=(",", ":")).encode("utf-8")
    json_bytes += b" " * ((-len(json_bytes)) % 4)
    body = struct.pack("<II", len(json_bytes), 0x4E4F534A) + json_bytes
    if binary:
        padded = binary + b"\x00" * ((-len(binary)) % 4)
        body += struct.pack("<II", len(padded), 0x004E4942) + padded
    return struct.pack("<4sII", b"glTF", 2, 12 + len(body)) + body


class GlbBuilder:
    def __init__(self, *, copyright: Optional[str] = None) -> None:
        asset: dict[str, Any] = {"version": "2.0"}
        if copyright is not None:
            asset["copyright"] = copyright
        self.json: dict[str, Any] = {
            "asset": asset,
            "scene": 0,
            "scenes": [{"nodes": []}],
            "nodes": [],
            "meshes": [],
            "accessors": [],
            "bufferViews": [],
            "buffers": [{"byteLength": 0}],
        }
        self.bin = bytearray()

    def add_view(self, data: bytes, **fields: Any) -> int:
        self.bin.extend(b"\x00" * ((-len(self.bin)) % 4))
        view = {"buffer": 0, "byteOffset": len(self.bin), "byteLength": len(data)}
        view.update(fields)
        self.bin.extend(data)
        self.json["bufferViews"].append(view)
        return len(self.json["bufferViews"]) - 1

    def add_accessor(
        self,
        values: np.ndarray,
        *,
        element_type: str = "VEC3",
        component_type: int = FLOAT,
        **fields: Any,
    ) -> int:
        dtype = "<f4" if component_type == FLOAT else "<u2"
        data = np.ascontiguousarray(values, dtype=dtype)
        accessor: dict[str, Any] = {
            "bufferView": self.add_view(data.tobytes()),
            "componentType": component_type,
            "count": int(data.shape[0]),
            "type": element_type,
        }
        accessor.update(fields)
        self.json["accessors"].append(accessor)
        return len(self.json["accessors"]) - 1

    def add_mesh(
        self,
        positions: np.ndarray = TRIANGLE,
        *,
        normals: Optional[np.ndarray] = None,
        tangents: Optional[np.ndarray] = None,
    ) -> int:
        attributes = {"POSITION": self.add_accessor(positions)}
        if normals is not None:
            attributes["NORMAL"] = self.add_accessor(normals)
        if tangents is not None:
            attributes["TANGENT"] = self.add_accessor(tangents, element_type="VEC4")
        indices = self.add_accessor(
            np.arange(len(positions)), element_type="SCALAR", component_type=UNSIGNED_SHORT
        )
        self.json["meshes"].append(
            {"primitives": [{"attributes": attributes, "indices": indices}]}
        )
        return len(self.json["meshes"]) - 1

    def add_node(self, *, root: bool = False, **fields: Any) -> int:
        self.json["nodes"].append(dict(fields))
        index = len(self.json["nodes"]) - 1
        if root:
            self.json["scenes"][0]["nodes"].append(index)
        return index

    def to_bytes(self) -> bytes:
        self.json["buffers"][0]["byteLength"] = len(self.bin)
        return pack_glb(self.json, bytes(self.bin))


def tile_glb(
    center: Sequence[float],
    *,
    positions: np.ndarray = TRIANGLE,
    normals: Optional[np.ndarray] = None,
    tangents: Optional[np.ndarray] = None,
    rotation: Sequence[float] = (0.0, 0.0, 0.0, 1.0),
    scale: Sequence[float] = (1.0, 1.0, 1.0),
    copyright: Optional[str] = None,
) -> bytes:
    """Single mesh node whose translation georeferences the tile at ``center``."""

    builder = GlbBuilder(copyright=copyright)
    mesh = builder.add_mesh(positions, normals=normals, tangents=tangents)
    builder.add_node(
        root=True,
        mesh=mesh,
        translation=ecef_to_gltf(center),
        rotation=list(rotation),
        scale=list(scale),
    )
    return builder.to_bytes()


def read_accessor(doc: Any, index: int) -> np.ndarray:
    from glb.accessors import accessor_info, element_view

    return np.array(element_view(doc, accessor_info(doc, index)), dtype=np.float64)
