from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Mapping, Optional, Sequence

import numpy as np

from geodesy import ECEFPoint, from_ecef, rotation_between, up_vector

from .accessors import (
    AccessorInfo,
    accessor_info,
    element_view,
    require_bakeable,
    set_min_max,
)
from .container import GlbDocument, parse_glb, serialize_glb
from .draco import decode_draco_primitives
from .errors import (
    DuplicateMeshReference,
    MalformedAsset,
    UnsupportedAccessor,
    UnsupportedExtension,
    UnsupportedSkin,
)
from .transforms import Y_UP_TO_Z_UP, ancestors, parent_map, root_nodes, world_matrices

logger = logging.getLogger(__name__)

MESHOPT_EXTENSIONS: frozenset[str] = frozenset(
    {"EXT_meshopt_compression", "KHR_meshopt_compression"}
)

# Output frame is glTF y-up.
OUTPUT_UP = np.array([0.0, 1.0, 0.0], dtype=np.float64)

BAKED_SEMANTICS: dict[str, str] = {
    "POSITION": "VEC3",
    "NORMAL": "VEC3",
    "TANGENT": "VEC4",
}

UpSource = Literal["tile", "origin"]


@dataclass(frozen=True)
class BakeResult:
    glb: bytes
    origin_used: ECEFPoint
    reference: ECEFPoint
    translation: tuple[float, float, float]
    copyright: Optional[str]
    baked_nodes: int
    baked_vertices: int


@dataclass(frozen=True)
class _BakeTarget:
    node: int
    mesh: int
    accessors: tuple[tuple[str, AccessorInfo], ...]


def _as_point(value: Sequence[float]) -> ECEFPoint:
    x, y, z = (float(v) for v in value)
    return x, y, z


def check_extensions(doc: GlbDocument) -> None:
    used = doc.extensions_used
    rejected = sorted(used & MESHOPT_EXTENSIONS)
    if not rejected:
        for view in doc.list_of("bufferViews"):
            extensions = view.get("extensions") if isinstance(view, Mapping) else None
            if isinstance(extensions, Mapping):
                rejected = sorted(set(extensions) & MESHOPT_EXTENSIONS)
                if rejected:
                    break
    if rejected:
        raise UnsupportedExtension(f"Unsupported mesh compression extension: {', '.join(rejected)}")


def _collect_targets(doc: GlbDocument) -> list[_BakeTarget]:
    nodes = doc.list_of("nodes")
    meshes = doc.list_of("meshes")
    owners: dict[int, int] = {}
    targets: list[_BakeTarget] = []
    accessor_owner: dict[int, int] = {}

    for node_index, node in enumerate(nodes):
        if "mesh" not in node:
            continue
        mesh_index = node["mesh"]
        if not isinstance(mesh_index, int) or not (0 <= mesh_index < len(meshes)):
            raise MalformedAsset(f"node {node_index} references invalid mesh {mesh_index!r}")
        if mesh_index in owners:
            raise DuplicateMeshReference(
                f"mesh {mesh_index} is referenced by nodes {owners[mesh_index]} and {node_index}"
            )
        owners[mesh_index] = node_index
        if "skin" in node:
            raise UnsupportedSkin(f"node {node_index} (mesh {mesh_index}) declares a skin")

        seen: dict[int, str] = {}
        for primitive in meshes[mesh_index].get("primitives", []):
            if not isinstance(primitive, Mapping):
                raise MalformedAsset(f"mesh {mesh_index} has an invalid primitive")
            if primitive.get("targets"):
                raise UnsupportedAccessor(f"mesh {mesh_index} uses morph targets")
            attributes = primitive.get("attributes", {})
            if not isinstance(attributes, Mapping):
                raise MalformedAsset(f"mesh {mesh_index} primitive attributes must be an object")
            for semantic, expected in BAKED_SEMANTICS.items():
                if semantic not in attributes:
                    continue
                info = accessor_info(doc, attributes[semantic])
                require_bakeable(info, semantic=semantic, expected_type=expected)
                previous = seen.get(info.index)
                if previous is not None:
                    if previous != semantic:
                        raise UnsupportedAccessor(
                            f"accessor {info.index} is used as both {previous} and {semantic}"
                        )
                    continue
                other = accessor_owner.get(info.index)
                if other is not None and other != node_index:
                    raise UnsupportedAccessor(
                        f"accessor {info.index} is shared by nodes {other} and {node_index}"
                    )
                accessor_owner[info.index] = node_index
                seen[info.index] = semantic

        baked = tuple(
            (semantic, accessor_info(doc, index)) for index, semantic in seen.items()
        )
        targets.append(_BakeTarget(node=node_index, mesh=mesh_index, accessors=baked))
    return targets


def _reference_point(
    doc: GlbDocument,
    worlds: Sequence[np.ndarray],
    parents: Mapping[int, int],
    targets: Sequence[_BakeTarget],
    hint: Optional[ECEFPoint],
) -> np.ndarray:
    nodes = doc.list_of("nodes")
    candidates = root_nodes(doc.json, parents, len(nodes))
    candidates += [target.node for target in targets]
    for index in candidates:
        translation = worlds[index][:3, 3]
        if not np.allclose(translation, 0.0):
            return Y_UP_TO_Z_UP @ translation
    if hint is not None:
        return np.asarray(hint, dtype=np.float64)
    raise MalformedAsset("tile has no georeferenced root transform and no reference hint")


def realignment_rotation(point: Sequence[float]) -> np.ndarray:
    """Rotation taking the geodetic up at ``point`` onto the output +Y axis."""

    lat, lng, _ = from_ecef(point)
    return rotation_between(up_vector(lat, lng), OUTPUT_UP)


def _normalize_rows(values: np.ndarray) -> np.ndarray:
    lengths = np.linalg.norm(values, axis=1, keepdims=True)
    safe = np.where(lengths > 0.0, lengths, 1.0)
    return values / safe


def _bake_target(
    doc: GlbDocument,
    target: _BakeTarget,
    world: np.ndarray,
    rotation: np.ndarray,
    reference: np.ndarray,
) -> int:
    # Node world transform in ECEF, then re-centered on the tile reference.
    linear = rotation @ Y_UP_TO_Z_UP @ world[:3, :3]
    offset = rotation @ (Y_UP_TO_Z_UP @ world[:3, 3] - reference)
    try:
        normal_linear = rotation @ Y_UP_TO_Z_UP @ np.linalg.inv(world[:3, :3]).T
    except np.linalg.LinAlgError as exc:
        raise UnsupportedAccessor(f"node {target.node} has a singular transform") from exc

    accessors = doc.list_of("accessors")
    vertices = 0
    for semantic, info in target.accessors:
        view = element_view(doc, info)
        data = view.astype(np.float64)
        if semantic == "POSITION":
            baked = data @ linear.T + offset
            vertices += info.count
        elif semantic == "NORMAL":
            baked = _normalize_rows(data @ normal_linear.T)
        else:
            baked = data.copy()
            baked[:, :3] = _normalize_rows(data[:, :3] @ linear.T)
        view[...] = baked.astype(np.float32)
        set_min_max(accessors[info.index], np.asarray(view, dtype=np.float64))
    return vertices


def _reset_transforms(
    doc: GlbDocument,
    targets: Sequence[_BakeTarget],
    parents: Mapping[int, int],
    translation: np.ndarray,
) -> None:
    nodes = doc.list_of("nodes")
    baked = {target.node for target in targets}
    for target in targets:
        lineage = ancestors(target.node, parents)
        for ancestor in lineage:
            if ancestor not in baked:
                node = nodes[ancestor]
                for key in ("matrix", "translation", "rotation", "scale"):
                    node.pop(key, None)

        node = nodes[target.node]
        node.pop("matrix", None)
        nested = any(ancestor in baked for ancestor in lineage)
        offset = [0.0, 0.0, 0.0] if nested else [float(v) for v in translation]
        node["translation"] = offset
        node["rotation"] = [0.0, 0.0, 0.0, 1.0]
        node["scale"] = [1.0, 1.0, 1.0]


def bake_document(
    doc: GlbDocument,
    origin: Optional[Sequence[float]] = None,
    *,
    reference_hint: Optional[Sequence[float]] = None,
    up_source: UpSource = "tile",
) -> BakeResult:
    check_extensions(doc)
    decode_draco_primitives(doc)

    nodes = doc.list_of("nodes")
    parents = parent_map(nodes)
    worlds = world_matrices(nodes)
    targets = _collect_targets(doc)

    hint = _as_point(reference_hint) if reference_hint is not None else None
    reference = _reference_point(doc, worlds, parents, targets, hint)
    origin_used = np.asarray(origin if origin is not None else reference, dtype=np.float64)

    rotation = realignment_rotation(reference if up_source == "tile" else origin_used)
    translation = rotation @ (reference - origin_used)

    vertices = 0
    for target in targets:
        vertices += _bake_target(doc, target, worlds[target.node], rotation, reference)
    _reset_transforms(doc, targets, parents, translation)

    asset = doc.json.get("asset")
    copyright_text = asset.get("copyright") if isinstance(asset, Mapping) else None
    return BakeResult(
        glb=serialize_glb(doc),
        origin_used=_as_point(origin_used),
        reference=_as_point(reference),
        translation=_as_point(translation),
        copyright=copyright_text if isinstance(copyright_text, str) and copyright_text else None,
        baked_nodes=len(targets),
        baked_vertices=vertices,
    )


def bake(
    raw: bytes,
    origin: Optional[Sequence[float]] = None,
    *,
    reference_hint: Optional[Sequence[float]] = None,
    up_source: UpSource = "tile",
) -> BakeResult:
    """Bake every mesh node of a GLB into an origin-relative, y-up frame.

    Vertices end up relative to the tile's own reference point, rotated so the
    local geodetic up is +Y; each baked node keeps only the translation from
    the shared origin to that reference point.
    """

    doc = parse_glb(raw)
    result = bake_document(doc, origin, reference_hint=reference_hint, up_source=up_source)
    logger.debug(
        "glb_baked",
        extra={"nodes": result.baked_nodes, "vertices": result.baked_vertices},
    )
    return result
