from __future__ import annotations

import math

import pytest

BASE = "https://tile.example.com/v1/3dtiles/root.json"


def _box(cx: float, cy: float, cz: float, half: float = 10.0) -> dict:
    return {"box": [cx, cy, cz, half, 0, 0, 0, half, 0, 0, 0, half]}


def test_parse_descriptor_decodes_tagged_variants() -> None:
    from tileset import ContentLeaf, InternalNode, TilesetLeaf, parse_descriptor

    payload = {
        "root": {
            "boundingVolume": _box(0, 0, 0, 100),
            "children": [
                {"boundingVolume": _box(1, 0, 0), "content": {"uri": "files/a.glb?session=S1"}},
                {"boundingVolume": _box(2, 0, 0), "content": {"uri": "/v1/3dtiles/files/b.json"}},
                {"boundingVolume": {"sphere": [3, 0, 0, 5]}},
            ],
        }
    }
    descriptor = parse_descriptor(payload, url=BASE)
    assert isinstance(descriptor.root, InternalNode)
    leaf, nested, internal = descriptor.root.children
    assert isinstance(leaf, ContentLeaf)
    assert leaf.url == "https://tile.example.com/v1/3dtiles/files/a.glb?session=S1"
    assert isinstance(nested, TilesetLeaf)
    assert nested.url == "https://tile.example.com/v1/3dtiles/files/b.json"
    assert isinstance(internal, InternalNode)
    assert internal.sphere.radius == pytest.approx(5.0)
    assert descriptor.session == "S1"
    assert internal.children == ()


def test_parse_descriptor_applies_tile_transforms() -> None:
    from tileset import TilesetLeaf, parse_descriptor

    translate = [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 1000, 2000, 3000, 1]
    scale = [2, 0, 0, 0, 0, 2, 0, 0, 0, 0, 2, 0, 0, 0, 0, 1]
    payload = {
        "root": {
            "transform": translate,
            "boundingVolume": _box(0, 0, 0),
            "children": [
                {
                    "transform": scale,
                    "boundingVolume": _box(1, 0, 0),
                    "content": {"uri": "child.json"},
                }
            ],
        }
    }
    descriptor = parse_descriptor(payload, url=BASE)
    assert descriptor.root.sphere.center == pytest.approx((1000.0, 2000.0, 3000.0))
    (child,) = descriptor.root.children
    assert isinstance(child, TilesetLeaf)
    assert child.sphere.center == pytest.approx((1002.0, 2000.0, 3000.0))
    assert child.sphere.radius == pytest.approx(math.sqrt(3 * 20.0**2))
    assert child.transform is not None
    assert child.transform[12:15] == pytest.approx((1000.0, 2000.0, 3000.0))


def test_parse_descriptor_accepts_region_volumes() -> None:
    from geodesy import to_ecef
    from tileset import parse_descriptor

    region = [math.radians(v) for v in (2.3, 48.8, 2.4, 48.9)] + [0.0, 100.0]
    descriptor = parse_descriptor({"root": {"boundingVolume": {"region": region}}}, url=BASE)
    center = to_ecef(48.85, 2.35, 50.0)
    assert math.dist(descriptor.root.sphere.center, center) < descriptor.root.sphere.radius


@pytest.mark.parametrize(
    "payload,match",
    [
        ([], "must be a JSON object"),
        ({"asset": {}}, "tileset.root missing"),
        ({"root": {"boundingVolume": {"box": [1, 2, 3]}}}, "array of 12 numbers"),
        ({"root": {"boundingVolume": {}}}, "box, sphere or region"),
        ({"root": {"boundingVolume": _box(0, 0, 0), "children": {}}}, "children must be an array"),
    ],
)
def test_parse_descriptor_rejects_invalid_documents(payload: object, match: str) -> None:
    from tileset import DescriptorError, parse_descriptor

    with pytest.raises(DescriptorError, match=match):
        parse_descriptor(payload, url=BASE)
