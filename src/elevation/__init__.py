"""Optional ground elevation lookup for the region sphere center."""

from .client import ElevationClient
from .client import ElevationLookupError
from .client import FALLBACK_ELEVATION_M
from .client import parse_elevation_response

__all__ = [
    "ElevationClient",
    "ElevationLookupError",
    "FALLBACK_ELEVATION_M",
    "parse_elevation_response",
]
