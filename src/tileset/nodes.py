from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union
from urllib.parse import urljoin, urlsplit

import numpy as np

from geodesy import (
    BoundingSphere,
    approximate_bounding_sphere,
    sphere_from_region,
)
from tile_fetch.keys import query_param

CONTENT_SUFFIXES: frozenset[str] = frozenset({".glb"})
TILESET_SUFFIXES: frozenset[str] = frozenset({".json"})


class DescriptorError(ValueError):
    pass


@dataclass(frozen=True)
class InternalNode:
    sphere: BoundingSphere
    children: tuple["TileNode", ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ContentLeaf:
    """A node whose content is a GLB asset (it may still have children)."""

    sphere: BoundingSphere
    url: str
    children: tuple["TileNode", ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TilesetLeaf:
    """A node whose content is another descriptor document."""

    sphere: BoundingSphere
    url: str
    children: tuple["TileNode", ...] = field(default_factory=tuple)
    # Accumulated column-major transform inherited by the nested document.
    transform: Optional[tuple[float, ...]] = None


TileNode = Union[InternalNode, ContentLeaf, TilesetLeaf]


@dataclass(frozen=True)
class TilesetDescriptor:
    url: str
    root: TileNode
    session: Optional[str] = None


def _as_floats(value: Any, count: int, name: str) -> list[float]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)) or len(value) != count:
        raise DescriptorError(f"{name} must be an array of {count} numbers")
    out: list[float] = []
    for item in value:
        if not isinstance(item, (int, float)) or isinstance(item, bool):
            raise DescriptorError(f"{name} must contain only numbers")
        number = float(item)
        if not math.isfinite(number):
            raise DescriptorError(f"{name} must contain only finite numbers")
        out.append(number)
    return out


def _mat4(values: Sequence[float]) -> np.ndarray:
    # 3D Tiles stores matrices column-major.
    return np.asarray(values, dtype=np.float64).reshape(4, 4).T


def _bounding_sphere(volume: Any, transform: np.ndarray) -> BoundingSphere:
    if not isinstance(volume, Mapping):
        raise DescriptorError("boundingVolume must be an object")

    linear = transform[:3, :3]
    if "box" in volume:
        box = _as_floats(volume["box"], 12, "boundingVolume.box")
        center = transform @ np.array([box[0], box[1], box[2], 1.0])
        axes = np.array([box[3:6], box[6:9], box[9:12]], dtype=np.float64)
        axes = (linear @ axes.T).T
        return approximate_bounding_sphere(center[:3], axes)

    if "sphere" in volume:
        sphere = _as_floats(volume["sphere"], 4, "boundingVolume.sphere")
        center = transform @ np.array([sphere[0], sphere[1], sphere[2], 1.0])
        scale = float(np.max(np.linalg.norm(linear, axis=0)))
        return BoundingSphere(
            center=(float(center[0]), float(center[1]), float(center[2])),
            radius=abs(sphere[3]) * scale,
        )

    if "region" in volume:
        # Regions are geographic and never affected by tile transforms.
        region = _as_floats(volume["region"], 6, "boundingVolume.region")
        return sphere_from_region(*region)

    raise DescriptorError("boundingVolume must define box, sphere or region")


def _content_uris(node: Mapping[str, Any]) -> list[str]:
    uris: list[str] = []
    contents: list[Any] = []
    if isinstance(node.get("content"), Mapping):
        contents.append(node["content"])
    if isinstance(node.get("contents"), list):
        contents.extend(node["contents"])
    for content in contents:
        if not isinstance(content, Mapping):
            continue
        # Pre-1.0 tilesets used "url" instead of "uri".
        uri = content.get("uri", content.get("url"))
        if isinstance(uri, str) and uri.strip():
            uris.append(uri.strip())
    return uris


def _suffix(url: str) -> str:
    path = urlsplit(url).path.lower()
    dot = path.rfind(".")
    return path[dot:] if dot >= 0 and "/" not in path[dot:] else ""


def _decode_node(
    node: Any,
    *,
    base_url: str,
    parent_transform: np.ndarray,
    sessions: list[str],
) -> TileNode:
    if not isinstance(node, Mapping):
        raise DescriptorError("tile must be an object")

    transform = parent_transform
    if "transform" in node:
        transform = parent_transform @ _mat4(_as_floats(node["transform"], 16, "transform"))

    sphere = _bounding_sphere(node.get("boundingVolume"), transform)

    raw_children = node.get("children", [])
    if not isinstance(raw_children, list):
        raise DescriptorError("children must be an array")
    children = tuple(
        _decode_node(child, base_url=base_url, parent_transform=transform, sessions=sessions)
        for child in raw_children
    )

    content_url: Optional[str] = None
    tileset_url: Optional[str] = None
    for uri in _content_uris(node):
        absolute = urljoin(base_url, uri)
        session = query_param(absolute, "session")
        if session is not None:
            sessions.append(session)
        suffix = _suffix(absolute)
        if suffix in CONTENT_SUFFIXES and content_url is None:
            content_url = absolute
        elif suffix in TILESET_SUFFIXES and tileset_url is None:
            tileset_url = absolute

    if tileset_url is not None:
        inherited = None
        if not np.allclose(transform, np.eye(4)):
            inherited = tuple(float(v) for v in transform.T.reshape(16))
        return TilesetLeaf(
            sphere=sphere, url=tileset_url, children=children, transform=inherited
        )
    if content_url is not None:
        return ContentLeaf(sphere=sphere, url=content_url, children=children)
    return InternalNode(sphere=sphere, children=children)


def parse_descriptor(
    payload: Any,
    *,
    url: str,
    transform: Optional[np.ndarray] = None,
) -> TilesetDescriptor:
    """Decode a tileset JSON document into closed node variants."""

    if not isinstance(payload, Mapping):
        raise DescriptorError("tileset document must be a JSON object")
    root = payload.get("root")
    if not isinstance(root, Mapping):
        raise DescriptorError("tileset.root missing or invalid")

    sessions: list[str] = []
    base = transform if transform is not None else np.eye(4)
    decoded = _decode_node(root, base_url=url, parent_transform=base, sessions=sessions)
    return TilesetDescriptor(url=url, root=decoded, session=sessions[0] if sessions else None)
