"""3D Tiles descriptor decoding and region-culled traversal."""

from .nodes import ContentLeaf
from .nodes import DescriptorError
from .nodes import InternalNode
from .nodes import TileNode
from .nodes import TilesetDescriptor
from .nodes import TilesetLeaf
from .nodes import parse_descriptor
from .walker import DescriptorFailure
from .walker import TilesetWalker
from .walker import WalkerStats

__all__ = [
    "ContentLeaf",
    "DescriptorError",
    "DescriptorFailure",
    "InternalNode",
    "TileNode",
    "TilesetDescriptor",
    "TilesetLeaf",
    "TilesetWalker",
    "WalkerStats",
    "parse_descriptor",
]
