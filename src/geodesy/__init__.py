"""WGS84 geodetic <-> ECEF conversions and bounding-sphere helpers."""

from .ecef import BoundingSphere
from .ecef import ECEFPoint
from .ecef import approximate_bounding_sphere
from .ecef import enu_frame
from .ecef import from_ecef
from .ecef import rotation_between
from .ecef import sphere_from_region
from .ecef import spheres_intersect
from .ecef import to_ecef
from .ecef import up_vector

__all__ = [
    "BoundingSphere",
    "ECEFPoint",
    "approximate_bounding_sphere",
    "enu_frame",
    "from_ecef",
    "rotation_between",
    "sphere_from_region",
    "spheres_intersect",
    "to_ecef",
    "up_vector",
]
