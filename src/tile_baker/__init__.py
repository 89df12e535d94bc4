"""Region download coordinator: origin cell, manifest, config and CLI."""

from .config import BakerConfig
from .config import load_baker_config
from .coordinator import RunCoordinator
from .coordinator import run_pipeline
from .manifest import RunManifest
from .manifest import TileFailure
from .manifest import TileResult
from .origin import OriginCell

__all__ = [
    "BakerConfig",
    "OriginCell",
    "RunCoordinator",
    "RunManifest",
    "TileFailure",
    "TileResult",
    "load_baker_config",
    "run_pipeline",
]
