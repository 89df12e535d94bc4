from __future__ import annotations


class BakeError(RuntimeError):
    """Base error for a tile that cannot be decoded or baked."""

    kind = "bake_error"


class MalformedAsset(BakeError):
    """Raised when the GLB container or its JSON document is invalid."""

    kind = "malformed_asset"


class UnsupportedExtension(BakeError):
    """Raised for mesh compression extensions that cannot be decoded."""

    kind = "unsupported_extension"


class UnsupportedAccessor(BakeError):
    """Raised when a bakeable attribute is not a plain float accessor."""

    kind = "unsupported_accessor"


class UnsupportedSkin(BakeError):
    """Raised when a mesh node declares a skin."""

    kind = "unsupported_skin"


class DuplicateMeshReference(BakeError):
    """Raised when one mesh index is referenced by more than one node."""

    kind = "duplicate_mesh_reference"
