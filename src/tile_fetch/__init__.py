"""Cache keys, content-addressed storage and bounded HTTP fetching."""

from .client import TileFetcher
from .client import TileSkipped
from .client import build_async_client
from .errors import TileFetchError
from .errors import TransientFetchError
from .keys import cache_key
from .keys import redact_url
from .keys import strip_credentials
from .refs import ContentRef
from .storage import TileStore

__all__ = [
    "ContentRef",
    "TileFetchError",
    "TileFetcher",
    "TileSkipped",
    "TileStore",
    "TransientFetchError",
    "build_async_client",
    "cache_key",
    "redact_url",
    "strip_credentials",
]
