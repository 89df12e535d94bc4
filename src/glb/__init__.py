"""GLB container codec, Draco decoding and origin-relative transform baking."""

from .baker import BakeResult
from .baker import bake
from .baker import bake_document
from .baker import realignment_rotation
from .container import GlbDocument
from .container import parse_glb
from .container import serialize_glb
from .draco import decode_draco_primitives
from .errors import BakeError
from .errors import DuplicateMeshReference
from .errors import MalformedAsset
from .errors import UnsupportedAccessor
from .errors import UnsupportedExtension
from .errors import UnsupportedSkin

__all__ = [
    "BakeError",
    "BakeResult",
    "DuplicateMeshReference",
    "GlbDocument",
    "MalformedAsset",
    "UnsupportedAccessor",
    "UnsupportedExtension",
    "UnsupportedSkin",
    "bake",
    "bake_document",
    "decode_draco_primitives",
    "parse_glb",
    "realignment_rotation",
    "serialize_glb",
]
