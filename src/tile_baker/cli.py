from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Sequence

from .config import DEFAULT_BAKER_CONFIG_ENV, DEFAULT_ROOT_URL, ENV_PREFIX, load_baker_config
from .coordinator import run_pipeline
from .observability import configure_logging

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tileset-baker",
        description=(
            "Download the 3D tiles intersecting a circular region and bake them "
            "into a shared origin-relative, y-up frame."
        ),
    )
    parser.add_argument(
        "--key", default=None, help=f"Tiles API key (default: ${ENV_PREFIX}API_KEY)"
    )
    parser.add_argument("--lat", type=float, default=None, help="Region center latitude")
    parser.add_argument("--lng", type=float, default=None, help="Region center longitude")
    parser.add_argument(
        "--radius", type=float, default=None, help="Region radius in meters"
    )
    parser.add_argument("--out", default=None, help="Directory to write tiles into")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Maximum number of in-flight requests (default: 8)",
    )
    parser.add_argument(
        "--origin",
        type=float,
        nargs=3,
        metavar=("X", "Y", "Z"),
        default=None,
        help="Explicit ECEF origin in meters (default: first baked tile)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"YAML config file (default: ${DEFAULT_BAKER_CONFIG_ENV})",
    )
    parser.add_argument(
        "--root-url",
        default=None,
        help=f"Root tileset descriptor (default: {DEFAULT_ROOT_URL})",
    )
    parser.add_argument(
        "--no-elevation",
        action="store_true",
        help="Skip the ground elevation lookup and center the region at height 0",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO)")
    return parser


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "api_key": args.key,
        "lat": args.lat,
        "lng": args.lng,
        "radius_m": args.radius,
        "out_dir": args.out,
        "concurrency": args.concurrency,
        "origin": tuple(args.origin) if args.origin is not None else None,
        "root_url": args.root_url,
        "use_elevation": False if args.no_elevation else None,
    }


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_baker_config(args.config, overrides=_overrides(args))
    except (ValueError, FileNotFoundError) as exc:
        print(f"tileset-baker: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(log_level=args.log_level)
    manifest = asyncio.run(run_pipeline(config))

    payload = manifest.summary()
    payload["out_dir"] = str(config.out_dir)
    print(json.dumps(payload, ensure_ascii=True, separators=(",", ":"), sort_keys=True))
    return EXIT_OK if manifest.ok else EXIT_FAILURES
