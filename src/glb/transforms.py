from __future__ import annotations

import math
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from .errors import MalformedAsset

# 3D Tiles treats glTF content as y-up and rotates it to z-up before the
# tile transform: (x, y, z) -> (x, -z, y).
Y_UP_TO_Z_UP = np.array(
    [[1.0, 0.0, 0.0], [0.0, 0.0, -1.0], [0.0, 1.0, 0.0]], dtype=np.float64
)


def _numbers(value: Any, count: int, name: str) -> list[float]:
    if not isinstance(value, list) or len(value) != count:
        raise MalformedAsset(f"{name} must be an array of {count} numbers")
    out: list[float] = []
    for item in value:
        if not isinstance(item, (int, float)) or isinstance(item, bool) or not math.isfinite(item):
            raise MalformedAsset(f"{name} must contain only finite numbers")
        out.append(float(item))
    return out


def quaternion_matrix(q: Sequence[float]) -> np.ndarray:
    x, y, z, w = q
    norm = math.sqrt(x * x + y * y + z * z + w * w)
    if norm == 0.0:
        raise MalformedAsset("node rotation quaternion has zero length")
    x, y, z, w = x / norm, y / norm, z / norm, w / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ],
        dtype=np.float64,
    )


def node_local_matrix(node: Mapping[str, Any], index: int) -> np.ndarray:
    if "matrix" in node:
        values = _numbers(node["matrix"], 16, f"node {index} matrix")
        # glTF matrices are column-major.
        return np.asarray(values, dtype=np.float64).reshape(4, 4).T

    translation = _numbers(node.get("translation", [0, 0, 0]), 3, f"node {index} translation")
    rotation = _numbers(node.get("rotation", [0, 0, 0, 1]), 4, f"node {index} rotation")
    scale = _numbers(node.get("scale", [1, 1, 1]), 3, f"node {index} scale")

    out = np.eye(4, dtype=np.float64)
    out[:3, :3] = quaternion_matrix(rotation) @ np.diag(scale)
    out[:3, 3] = translation
    return out


def parent_map(nodes: Sequence[Any]) -> dict[int, int]:
    parents: dict[int, int] = {}
    for index, node in enumerate(nodes):
        if not isinstance(node, Mapping):
            raise MalformedAsset(f"node {index} must be an object")
        children = node.get("children", [])
        if not isinstance(children, list):
            raise MalformedAsset(f"node {index} children must be an array")
        for child in children:
            if not isinstance(child, int) or not (0 <= child < len(nodes)):
                raise MalformedAsset(f"node {index} has invalid child {child!r}")
            if child in parents:
                raise MalformedAsset(f"node {child} has more than one parent")
            parents[child] = index
    return parents


def world_matrices(nodes: Sequence[Any]) -> list[np.ndarray]:
    """World matrix of every node in the glTF (y-up) frame."""

    parents = parent_map(nodes)
    cache: dict[int, np.ndarray] = {}

    def resolve(index: int) -> np.ndarray:
        chain: list[int] = []
        cursor: Optional[int] = index
        while cursor is not None and cursor not in cache:
            if cursor in chain:
                raise MalformedAsset(f"node hierarchy contains a cycle at node {cursor}")
            chain.append(cursor)
            cursor = parents.get(cursor)
        matrix = cache[cursor] if cursor is not None else np.eye(4)
        for item in reversed(chain):
            matrix = matrix @ node_local_matrix(nodes[item], item)
            cache[item] = matrix
        return cache[index]

    return [resolve(index) for index in range(len(nodes))]


def ancestors(index: int, parents: Mapping[int, int]) -> list[int]:
    out: list[int] = []
    cursor = parents.get(index)
    while cursor is not None:
        out.append(cursor)
        cursor = parents.get(cursor)
    return out


def root_nodes(document: Mapping[str, Any], parents: Mapping[int, int], node_count: int) -> list[int]:
    scenes = document.get("scenes")
    if isinstance(scenes, list) and scenes:
        scene_index = document.get("scene", 0)
        if not isinstance(scene_index, int) or not (0 <= scene_index < len(scenes)):
            raise MalformedAsset(f"invalid default scene {scene_index!r}")
        scene = scenes[scene_index]
        roots = scene.get("nodes", []) if isinstance(scene, Mapping) else []
        return [r for r in roots if isinstance(r, int) and 0 <= r < node_count]
    return [index for index in range(node_count) if index not in parents]
