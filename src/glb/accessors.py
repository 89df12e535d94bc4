from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

import numpy as np

from .container import GlbDocument
from .errors import MalformedAsset, UnsupportedAccessor

COMPONENT_TYPE_BYTE = 5120
COMPONENT_TYPE_UNSIGNED_BYTE = 5121
COMPONENT_TYPE_SHORT = 5122
COMPONENT_TYPE_UNSIGNED_SHORT = 5123
COMPONENT_TYPE_UNSIGNED_INT = 5125
COMPONENT_TYPE_FLOAT32 = 5126

COMPONENT_DTYPES: dict[int, str] = {
    COMPONENT_TYPE_BYTE: "<i1",
    COMPONENT_TYPE_UNSIGNED_BYTE: "<u1",
    COMPONENT_TYPE_SHORT: "<i2",
    COMPONENT_TYPE_UNSIGNED_SHORT: "<u2",
    COMPONENT_TYPE_UNSIGNED_INT: "<u4",
    COMPONENT_TYPE_FLOAT32: "<f4",
}

TYPE_COMPONENT_COUNT: dict[str, int] = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}

TARGET_ARRAY_BUFFER = 34962
TARGET_ELEMENT_ARRAY_BUFFER = 34963


@dataclass(frozen=True)
class AccessorInfo:
    """Validated view of one glTF accessor."""

    index: int
    component_type: int
    element_type: str
    count: int
    normalized: bool
    sparse: bool
    buffer_view: Optional[int]
    byte_offset: int

    @property
    def num_components(self) -> int:
        return TYPE_COMPONENT_COUNT[self.element_type]

    @property
    def component_size(self) -> int:
        return np.dtype(COMPONENT_DTYPES[self.component_type]).itemsize

    @property
    def is_float(self) -> bool:
        return self.component_type == COMPONENT_TYPE_FLOAT32

    @classmethod
    def from_json(cls, index: int, raw: Any) -> "AccessorInfo":
        if not isinstance(raw, Mapping):
            raise MalformedAsset(f"accessor {index} must be an object")
        component_type = raw.get("componentType")
        if component_type not in COMPONENT_DTYPES:
            raise MalformedAsset(f"accessor {index} has invalid componentType {component_type!r}")
        element_type = raw.get("type")
        if element_type not in TYPE_COMPONENT_COUNT:
            raise MalformedAsset(f"accessor {index} has invalid type {element_type!r}")
        count = raw.get("count")
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            raise MalformedAsset(f"accessor {index} has invalid count {count!r}")
        buffer_view = raw.get("bufferView")
        if buffer_view is not None and (not isinstance(buffer_view, int) or buffer_view < 0):
            raise MalformedAsset(f"accessor {index} has invalid bufferView {buffer_view!r}")
        byte_offset = raw.get("byteOffset", 0)
        if not isinstance(byte_offset, int) or byte_offset < 0:
            raise MalformedAsset(f"accessor {index} has invalid byteOffset {byte_offset!r}")
        return cls(
            index=index,
            component_type=int(component_type),
            element_type=str(element_type),
            count=int(count),
            normalized=bool(raw.get("normalized", False)),
            sparse="sparse" in raw,
            buffer_view=buffer_view,
            byte_offset=byte_offset,
        )


def accessor_info(doc: GlbDocument, index: Any) -> AccessorInfo:
    accessors = doc.list_of("accessors")
    if not isinstance(index, int) or not (0 <= index < len(accessors)):
        raise MalformedAsset(f"accessor index out of range: {index!r}")
    return AccessorInfo.from_json(index, accessors[index])


def _buffer_view(doc: GlbDocument, index: int) -> Mapping[str, Any]:
    views = doc.list_of("bufferViews")
    if not (0 <= index < len(views)) or not isinstance(views[index], Mapping):
        raise MalformedAsset(f"bufferView index out of range: {index}")
    return views[index]


def _view_range(doc: GlbDocument, index: int) -> tuple[int, int, Optional[int]]:
    view = _buffer_view(doc, index)
    if view.get("buffer") != 0:
        raise UnsupportedAccessor(f"bufferView {index} does not reference the GLB binary chunk")
    buffers = doc.list_of("buffers")
    if not buffers or (isinstance(buffers[0], Mapping) and "uri" in buffers[0]):
        raise UnsupportedAccessor("buffer 0 is external, expected the GLB binary chunk")
    offset = view.get("byteOffset", 0)
    length = view.get("byteLength")
    if not isinstance(offset, int) or not isinstance(length, int) or offset < 0 or length <= 0:
        raise MalformedAsset(f"bufferView {index} has invalid byteOffset/byteLength")
    if offset + length > len(doc.bin):
        raise MalformedAsset(
            f"bufferView {index} overruns binary chunk ({offset + length} > {len(doc.bin)})"
        )
    stride = view.get("byteStride")
    if stride is not None and (not isinstance(stride, int) or stride < 4 or stride > 252):
        raise MalformedAsset(f"bufferView {index} has invalid byteStride {stride!r}")
    return offset, length, stride


def view_bytes(doc: GlbDocument, index: int) -> bytes:
    offset, length, _ = _view_range(doc, index)
    return bytes(doc.bin[offset : offset + length])


def require_bakeable(info: AccessorInfo, *, semantic: str, expected_type: str) -> None:
    if info.sparse:
        raise UnsupportedAccessor(f"{semantic} accessor {info.index} is sparse")
    if not info.is_float or info.normalized:
        raise UnsupportedAccessor(
            f"{semantic} accessor {info.index} must be non-normalized FLOAT, "
            f"got componentType={info.component_type} normalized={info.normalized}"
        )
    if info.element_type != expected_type:
        raise UnsupportedAccessor(
            f"{semantic} accessor {info.index} must be {expected_type}, got {info.element_type}"
        )
    if info.buffer_view is None:
        raise UnsupportedAccessor(f"{semantic} accessor {info.index} has no bufferView")


def element_view(doc: GlbDocument, info: AccessorInfo) -> np.ndarray:
    """Writable (count, components) array aliasing the binary chunk."""

    if info.buffer_view is None:
        raise UnsupportedAccessor(f"accessor {info.index} has no bufferView")
    view_offset, view_length, stride = _view_range(doc, info.buffer_view)
    element_size = info.component_size * info.num_components
    stride = stride or element_size
    if info.count == 0:
        return np.zeros((0, info.num_components), dtype=COMPONENT_DTYPES[info.component_type])

    needed = info.byte_offset + stride * (info.count - 1) + element_size
    if needed > view_length:
        raise MalformedAsset(
            f"accessor {info.index} overruns bufferView {info.buffer_view} ({needed} > {view_length})"
        )
    return np.ndarray(
        shape=(info.count, info.num_components),
        dtype=COMPONENT_DTYPES[info.component_type],
        buffer=doc.bin,
        offset=view_offset + info.byte_offset,
        strides=(stride, info.component_size),
    )


def append_buffer_view(doc: GlbDocument, data: bytes, *, target: Optional[int] = None) -> int:
    buffers = doc.json.setdefault("buffers", [])
    if not buffers:
        buffers.append({"byteLength": 0})
    padding = (-len(doc.bin)) % 4
    doc.bin.extend(b"\x00" * padding)
    view: dict[str, Any] = {"buffer": 0, "byteOffset": len(doc.bin), "byteLength": len(data)}
    if target is not None:
        view["target"] = target
    doc.bin.extend(data)
    views = doc.json.setdefault("bufferViews", [])
    views.append(view)
    return len(views) - 1


def _remap(holder: Any, key: str, mapping: Mapping[int, int]) -> None:
    if isinstance(holder, dict) and isinstance(holder.get(key), int):
        holder[key] = mapping[holder[key]]


def drop_buffer_views(doc: GlbDocument, dropped: Iterable[int]) -> None:
    """Remove buffer views and repack the binary chunk without their bytes.

    Only core glTF references (accessors, sparse storage, images) are
    remapped; callers must have already removed references to dropped views.
    """

    dropped_set = set(dropped)
    if not dropped_set:
        return
    views = doc.list_of("bufferViews")
    new_bin = bytearray()
    new_views: list[Any] = []
    mapping: dict[int, int] = {}
    for index, view in enumerate(views):
        if index in dropped_set:
            continue
        if isinstance(view, dict) and view.get("buffer") == 0:
            offset, length, _ = _view_range(doc, index)
            new_bin.extend(b"\x00" * ((-len(new_bin)) % 4))
            chunk = doc.bin[offset : offset + length]
            view = dict(view)
            view["byteOffset"] = len(new_bin)
            new_bin.extend(chunk)
        mapping[index] = len(new_views)
        new_views.append(view)

    for accessor in doc.list_of("accessors"):
        _remap(accessor, "bufferView", mapping)
        sparse = accessor.get("sparse") if isinstance(accessor, dict) else None
        if isinstance(sparse, dict):
            _remap(sparse.get("indices"), "bufferView", mapping)
            _remap(sparse.get("values"), "bufferView", mapping)
    for image in doc.list_of("images"):
        _remap(image, "bufferView", mapping)

    doc.json["bufferViews"] = new_views
    doc.bin = new_bin


def set_min_max(accessor: dict[str, Any], values: np.ndarray) -> None:
    if values.shape[0] == 0:
        accessor.pop("min", None)
        accessor.pop("max", None)
        return
    accessor["min"] = [float(v) for v in values.min(axis=0)]
    accessor["max"] = [float(v) for v in values.max(axis=0)]
