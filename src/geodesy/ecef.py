from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np


WGS84_A = 6378137.0
WGS84_F = 1.0 / 298.257223563
WGS84_E2 = WGS84_F * (2.0 - WGS84_F)
WGS84_B = WGS84_A * (1.0 - WGS84_F)

ECEFPoint = tuple[float, float, float]


@dataclass(frozen=True)
class BoundingSphere:
    center: ECEFPoint
    radius: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.radius) or self.radius < 0:
            raise ValueError(f"Invalid sphere radius: {self.radius}")


def to_ecef(lat_deg: float, lng_deg: float, height_m: float = 0.0) -> ECEFPoint:
    lat = math.radians(float(lat_deg))
    lng = math.radians(float(lng_deg))
    sin_lat = math.sin(lat)
    cos_lat = math.cos(lat)

    n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)
    x = (n + height_m) * cos_lat * math.cos(lng)
    y = (n + height_m) * cos_lat * math.sin(lng)
    z = (n * (1.0 - WGS84_E2) + height_m) * sin_lat
    return x, y, z


def from_ecef(point: Sequence[float]) -> tuple[float, float, float]:
    """Convert ECEF meters to (lat_deg, lng_deg, height_m).

    Uses Bowring's initial guess followed by a few fixed-point refinements,
    which converges to sub-millimeter accuracy for terrestrial heights.
    """

    x, y, z = (float(v) for v in point)
    lng = math.atan2(y, x)
    p = math.hypot(x, y)

    if p < 1e-9:
        lat = math.copysign(math.pi / 2.0, z) if z != 0 else 0.0
        return math.degrees(lat), math.degrees(lng), abs(z) - WGS84_B

    ep2 = (WGS84_A * WGS84_A - WGS84_B * WGS84_B) / (WGS84_B * WGS84_B)
    theta = math.atan2(z * WGS84_A, p * WGS84_B)
    lat = math.atan2(
        z + ep2 * WGS84_B * math.sin(theta) ** 3,
        p - WGS84_E2 * WGS84_A * math.cos(theta) ** 3,
    )
    height = 0.0
    for _ in range(5):
        sin_lat = math.sin(lat)
        n = WGS84_A / math.sqrt(1.0 - WGS84_E2 * sin_lat * sin_lat)
        height = p / math.cos(lat) - n
        lat = math.atan2(z, p * (1.0 - WGS84_E2 * n / (n + height)))

    return math.degrees(lat), math.degrees(lng), height


def up_vector(lat_deg: float, lng_deg: float) -> np.ndarray:
    lat = math.radians(float(lat_deg))
    lng = math.radians(float(lng_deg))
    return np.array(
        [math.cos(lat) * math.cos(lng), math.cos(lat) * math.sin(lng), math.sin(lat)],
        dtype=np.float64,
    )


def enu_frame(lat_deg: float, lng_deg: float) -> np.ndarray:
    """Return a 3x3 matrix whose rows are the east, north and up unit vectors."""

    lat = math.radians(float(lat_deg))
    lng = math.radians(float(lng_deg))
    sin_lat = math.sin(lat)
    cos_lat = math.cos(lat)
    sin_lng = math.sin(lng)
    cos_lng = math.cos(lng)
    return np.array(
        [
            [-sin_lng, cos_lng, 0.0],
            [-sin_lat * cos_lng, -sin_lat * sin_lng, cos_lat],
            [cos_lat * cos_lng, cos_lat * sin_lng, sin_lat],
        ],
        dtype=np.float64,
    )


def approximate_bounding_sphere(
    box_center: Sequence[float], half_axes: Sequence[Sequence[float]]
) -> BoundingSphere:
    """Enclose an oriented box in a sphere.

    The radius is the norm of the stacked half-axis vectors, which reaches the
    farthest corner of the box for orthogonal axes and over-approximates
    otherwise.
    """

    axes = np.asarray(half_axes, dtype=np.float64).reshape(3, 3)
    radius = float(np.sqrt(np.sum(axes * axes)))
    cx, cy, cz = (float(v) for v in box_center)
    return BoundingSphere(center=(cx, cy, cz), radius=radius)


def sphere_from_region(
    west: float,
    south: float,
    east: float,
    north: float,
    min_height: float,
    max_height: float,
) -> BoundingSphere:
    """Bound a 3D Tiles ``region`` volume (angles in radians)."""

    lats = [south, north, (south + north) / 2.0]
    if east < west:
        east += 2.0 * math.pi
    lngs = [west, east, (west + east) / 2.0]

    points = np.array(
        [
            to_ecef(math.degrees(lat), math.degrees(lng), h)
            for lat in lats
            for lng in lngs
            for h in (min_height, max_height)
        ],
        dtype=np.float64,
    )
    # The equator bulges past all sampled corners when the region spans it.
    if south < 0.0 < north:
        extra = [
            to_ecef(0.0, math.degrees(lng), h)
            for lng in lngs
            for h in (min_height, max_height)
        ]
        points = np.vstack([points, np.asarray(extra, dtype=np.float64)])

    lo = points.min(axis=0)
    hi = points.max(axis=0)
    center = (lo + hi) / 2.0
    radius = float(np.max(np.linalg.norm(points - center, axis=1)))
    return BoundingSphere(
        center=(float(center[0]), float(center[1]), float(center[2])), radius=radius
    )


def spheres_intersect(a: BoundingSphere, b: BoundingSphere) -> bool:
    distance = math.dist(a.center, b.center)
    return distance <= a.radius + b.radius


def rotation_between(source: Sequence[float], target: Sequence[float]) -> np.ndarray:
    """Smallest rotation (3x3) taking direction ``source`` onto ``target``."""

    a = np.asarray(source, dtype=np.float64)
    b = np.asarray(target, dtype=np.float64)
    a = a / np.linalg.norm(a)
    b = b / np.linalg.norm(b)

    v = np.cross(a, b)
    c = float(np.dot(a, b))
    if c < -1.0 + 1e-12:
        # Antiparallel: rotate half a turn about any axis orthogonal to a.
        helper = np.array([1.0, 0.0, 0.0]) if abs(a[0]) < 0.9 else np.array([0.0, 1.0, 0.0])
        axis = np.cross(a, helper)
        axis /= np.linalg.norm(axis)
        return 2.0 * np.outer(axis, axis) - np.eye(3)

    vx = np.array(
        [[0.0, -v[2], v[1]], [v[2], 0.0, -v[0]], [-v[1], v[0], 0.0]],
        dtype=np.float64,
    )
    return np.eye(3) + vx + (vx @ vx) / (1.0 + c)
