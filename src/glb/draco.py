from __future__ import annotations

import logging
from typing import Any, Mapping

import DracoPy
import numpy as np

from .accessors import (
    COMPONENT_DTYPES,
    COMPONENT_TYPE_FLOAT32,
    COMPONENT_TYPE_UNSIGNED_INT,
    COMPONENT_TYPE_UNSIGNED_SHORT,
    TARGET_ARRAY_BUFFER,
    TARGET_ELEMENT_ARRAY_BUFFER,
    accessor_info,
    append_buffer_view,
    drop_buffer_views,
    set_min_max,
    view_bytes,
)
from .container import GlbDocument
from .errors import MalformedAsset

logger = logging.getLogger(__name__)

DRACO_EXTENSION = "KHR_draco_mesh_compression"

# Fallbacks when the decoder cannot look attributes up by unique id.
_NAMED_ATTRIBUTES: dict[str, str] = {
    "POSITION": "points",
    "NORMAL": "normals",
    "TEXCOORD_0": "tex_coord",
    "COLOR_0": "colors",
}


def _decoded_attribute(mesh: Any, unique_id: int, semantic: str) -> np.ndarray:
    getter = getattr(mesh, "get_attribute_by_unique_id", None)
    if getter is not None:
        attribute = getter(unique_id)
        if attribute is not None:
            data = np.asarray(attribute["data"])
            width = int(attribute.get("num_components", data.shape[-1] if data.ndim > 1 else 1))
            return data.reshape(-1, width)

    name = _NAMED_ATTRIBUTES.get(semantic)
    value = getattr(mesh, name, None) if name else None
    if value is None or len(value) == 0:
        raise MalformedAsset(f"Draco payload has no attribute {unique_id} for {semantic}")
    data = np.asarray(value)
    return data.reshape(data.shape[0], -1)


def _store_attribute(doc: GlbDocument, accessor: dict[str, Any], data: np.ndarray) -> None:
    component_type = accessor.get("componentType", COMPONENT_TYPE_FLOAT32)
    if component_type not in COMPONENT_DTYPES:
        raise MalformedAsset(f"Draco accessor has invalid componentType {component_type!r}")
    dtype = np.dtype(COMPONENT_DTYPES[component_type])
    if dtype.kind == "f":
        packed = np.ascontiguousarray(data, dtype=dtype)
    else:
        packed = np.ascontiguousarray(np.rint(data), dtype=dtype)

    accessor["bufferView"] = append_buffer_view(doc, packed.tobytes(), target=TARGET_ARRAY_BUFFER)
    accessor.pop("byteOffset", None)
    accessor["count"] = int(packed.shape[0])
    if "min" in accessor or "max" in accessor or dtype.kind == "f":
        set_min_max(accessor, packed.astype(np.float64))


def _store_indices(doc: GlbDocument, primitive: dict[str, Any], faces: np.ndarray) -> None:
    indices = np.asarray(faces).reshape(-1)
    accessors = doc.json.setdefault("accessors", [])
    if "indices" in primitive:
        accessor = accessors[accessor_info(doc, primitive["indices"]).index]
    else:
        accessor = {"type": "SCALAR"}
        accessors.append(accessor)
        primitive["indices"] = len(accessors) - 1

    fits_short = indices.size == 0 or int(indices.max()) < 0xFFFF
    if accessor.get("componentType") == COMPONENT_TYPE_UNSIGNED_SHORT and fits_short:
        component_type = COMPONENT_TYPE_UNSIGNED_SHORT
    else:
        component_type = COMPONENT_TYPE_UNSIGNED_INT
    packed = np.ascontiguousarray(indices, dtype=COMPONENT_DTYPES[component_type])

    accessor["componentType"] = component_type
    accessor["bufferView"] = append_buffer_view(
        doc, packed.tobytes(), target=TARGET_ELEMENT_ARRAY_BUFFER
    )
    accessor.pop("byteOffset", None)
    accessor.pop("min", None)
    accessor.pop("max", None)
    accessor["count"] = int(packed.size)


def _decode_primitive(doc: GlbDocument, mesh_index: int, primitive: dict[str, Any]) -> int:
    extension = primitive["extensions"][DRACO_EXTENSION]
    if not isinstance(extension, Mapping):
        raise MalformedAsset(f"mesh {mesh_index}: invalid {DRACO_EXTENSION} object")
    view_index = extension.get("bufferView")
    draco_attributes = extension.get("attributes")
    if not isinstance(view_index, int) or not isinstance(draco_attributes, Mapping):
        raise MalformedAsset(f"mesh {mesh_index}: {DRACO_EXTENSION} needs bufferView and attributes")

    try:
        mesh = DracoPy.decode(view_bytes(doc, view_index))
    except MalformedAsset:
        raise
    except Exception as exc:  # noqa: BLE001
        raise MalformedAsset(f"mesh {mesh_index}: Draco decode failed: {exc}") from exc

    accessors = doc.list_of("accessors")
    attributes = primitive.get("attributes", {})
    for semantic, accessor_index in attributes.items():
        unique_id = draco_attributes.get(semantic)
        if unique_id is None:
            continue
        info = accessor_info(doc, accessor_index)
        data = _decoded_attribute(mesh, int(unique_id), semantic)
        _store_attribute(doc, accessors[info.index], data)

    faces = getattr(mesh, "faces", None)
    if faces is not None and len(faces) > 0:
        _store_indices(doc, primitive, np.asarray(faces))

    del primitive["extensions"][DRACO_EXTENSION]
    if not primitive["extensions"]:
        del primitive["extensions"]
    return view_index


def _discard_extension_name(doc: GlbDocument, name: str) -> None:
    for key in ("extensionsUsed", "extensionsRequired"):
        values = doc.json.get(key)
        if isinstance(values, list) and name in values:
            values[:] = [value for value in values if value != name]
            if not values:
                del doc.json[key]


def decode_draco_primitives(doc: GlbDocument) -> int:
    """Replace every Draco-compressed primitive with plain accessors.

    Returns the number of decoded primitives. The compressed buffer views are
    removed from the binary chunk afterwards.
    """

    compressed_views: set[int] = set()
    decoded = 0
    for mesh_index, mesh in enumerate(doc.list_of("meshes")):
        if not isinstance(mesh, Mapping):
            raise MalformedAsset(f"mesh {mesh_index} must be an object")
        for primitive in mesh.get("primitives", []):
            extensions = primitive.get("extensions") if isinstance(primitive, dict) else None
            if not isinstance(extensions, dict) or DRACO_EXTENSION not in extensions:
                continue
            compressed_views.add(_decode_primitive(doc, mesh_index, primitive))
            decoded += 1

    drop_buffer_views(doc, compressed_views)
    _discard_extension_name(doc, DRACO_EXTENSION)
    if decoded:
        logger.debug("draco_primitives_decoded", extra={"primitives": decoded})
    return decoded
