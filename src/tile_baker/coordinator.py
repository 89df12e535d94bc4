from __future__ import annotations

import asyncio
import functools
import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

import httpx

from elevation import ElevationClient
from geodesy import BoundingSphere, ECEFPoint, to_ecef
from glb import BakeError, BakeResult, bake
from tile_fetch import (
    ContentRef,
    TileFetcher,
    TileSkipped,
    TileStore,
    TransientFetchError,
    build_async_client,
    redact_url,
)
from tileset import TilesetWalker

from .config import BakerConfig
from .manifest import (
    MANIFEST_FILENAME,
    RunManifest,
    TileFailure,
    TileResult,
    load_manifest,
    write_manifest,
)
from .origin import OriginCell

logger = logging.getLogger(__name__)

WalkerFactory = Callable[[BoundingSphere], TilesetWalker]

DESCRIPTOR_FAILURE_KIND = "descriptor_fetch_failed"


def split_copyrights(values: Sequence[Optional[str]]) -> list[str]:
    out: set[str] = set()
    for value in values:
        if not value:
            continue
        out.update(part.strip() for part in value.split(";") if part.strip())
    return sorted(out)


class RunCoordinator:
    """Drive walker, fetcher and baker for one region and write the manifest.

    The origin cell is the only state shared between tile tasks. While it is
    unset, tiles bake one at a time under the cell's lock so that exactly one
    successful bake decides the origin.
    """

    def __init__(
        self,
        config: BakerConfig,
        *,
        fetcher: TileFetcher,
        store: TileStore,
        executor: Executor,
        walker_factory: Optional[WalkerFactory] = None,
        elevation: Optional[ElevationClient] = None,
    ) -> None:
        self._config = config
        self._fetcher = fetcher
        self._store = store
        self._executor = executor
        self._walker_factory = walker_factory or self._default_walker
        self._elevation = elevation
        self._origin = OriginCell(config.origin)
        self._slots = asyncio.Semaphore(config.concurrency)
        self._region: Optional[BoundingSphere] = None

        self._results: list[TileResult] = []
        self._skipped: list[str] = []
        self._failures: list[TileFailure] = []
        self._previous: dict[str, TileResult] = {}

    @property
    def origin(self) -> OriginCell:
        return self._origin

    def _default_walker(self, region: BoundingSphere) -> TilesetWalker:
        return TilesetWalker(
            self._fetcher.fetch_json,
            region,
            api_key=self._config.api_key_value,
            max_depth=self._config.max_depth,
        )

    async def region_sphere(self) -> BoundingSphere:
        height = 0.0
        if self._elevation is not None:
            height = await self._elevation.lookup(self._config.lat, self._config.lng)
        center = to_ecef(self._config.lat, self._config.lng, height)
        region = BoundingSphere(center=center, radius=self._config.radius_m)
        logger.info(
            "region_resolved",
            extra={
                "lat": self._config.lat,
                "lng": self._config.lng,
                "height_m": height,
                "radius_m": self._config.radius_m,
            },
        )
        return region

    def _resume(self) -> None:
        """Adopt the origin and tile entries of an earlier run into the same store."""

        if self._origin.explicit:
            return
        path = self._store.root / MANIFEST_FILENAME
        if not path.is_file():
            return
        try:
            previous = load_manifest(path)
        except (OSError, ValueError) as exc:
            logger.warning("manifest_unreadable", extra={"manifest": str(path), "error": str(exc)})
            return

        self._previous = {item.filename: item for item in previous.tiles}
        if previous.origin is not None:
            self._origin.set_once(previous.origin)
            logger.info("origin_resumed", extra={"origin": list(previous.origin)})

    async def _run_bake(self, raw: bytes, origin: Optional[ECEFPoint]) -> BakeResult:
        loop = asyncio.get_running_loop()
        hint = self._region.center if self._region is not None else None
        call = functools.partial(
            bake, raw, origin, reference_hint=hint, up_source=self._config.up_source
        )
        return await loop.run_in_executor(self._executor, call)

    async def _bake(self, raw: bytes) -> BakeResult:
        origin = self._origin.value
        if origin is None:
            async with self._origin.lock:
                origin = self._origin.value
                if origin is None:
                    result = await self._run_bake(raw, None)
                    adopted = self._origin.set_once(result.origin_used)
                    logger.info("origin_adopted", extra={"origin": list(adopted)})
                    return result
        return await self._run_bake(raw, origin)

    def _fail(self, ref: ContentRef, filename: str, kind: str, message: str) -> None:
        safe_url = redact_url(ref.request_url)
        self._failures.append(
            TileFailure(url=safe_url, filename=filename, error_kind=kind, message=message)
        )
        logger.warning(
            "tile_failed",
            extra={"url": safe_url, "tile": filename, "error_kind": kind, "error": message},
        )

    async def process(self, ref: ContentRef) -> None:
        digest = ref.cache_key
        filename = self._store.filename_for(digest)
        try:
            outcome = await self._fetcher.materialize(ref, self._store)
        except TransientFetchError as exc:
            self._fail(ref, filename, "transient_fetch_error", str(exc))
            return

        if isinstance(outcome, TileSkipped):
            self._skipped.append(outcome.filename)
            logger.info("tile_skipped", extra={"tile": outcome.filename})
            return

        try:
            result = await self._bake(outcome)
        except BakeError as exc:
            self._fail(ref, filename, exc.kind, str(exc))
            return

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                self._executor, self._store.write_atomic, digest, result.glb
            )
        except OSError as exc:
            self._fail(ref, filename, "write_failed", str(exc))
            return

        self._results.append(
            TileResult(
                filename=filename,
                url=redact_url(ref.url),
                translation=result.translation,
                copyright=result.copyright,
            )
        )
        logger.info(
            "tile_baked",
            extra={
                "tile": filename,
                "translation": list(result.translation),
                "size": len(result.glb),
            },
        )

    async def _guarded(self, ref: ContentRef) -> None:
        try:
            await self.process(ref)
        except Exception as exc:  # noqa: BLE001 - isolate one tile from its siblings
            logger.exception("tile_crashed", extra={"url": redact_url(ref.url)})
            self._fail(ref, self._store.filename_for(ref.cache_key), "internal_error", str(exc))
        finally:
            self._slots.release()

    async def run(self) -> RunManifest:
        started_at = datetime.now(timezone.utc)
        t0 = time.perf_counter()

        self._resume()
        self._region = await self.region_sphere()
        walker = self._walker_factory(self._region)
        logger.info(
            "run_started",
            extra={
                "root_url": redact_url(self._config.root_url),
                "concurrency": self._config.concurrency,
                "explicit_origin": self._origin.explicit,
            },
        )

        tasks: set[asyncio.Task[None]] = set()
        try:
            async for ref in walker.traverse(self._config.root_url):
                await self._slots.acquire()
                task = asyncio.ensure_future(self._guarded(ref))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
            if tasks:
                await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()

        for failure in walker.failures:
            self._failures.append(
                TileFailure(
                    url=failure.url,
                    error_kind=DESCRIPTOR_FAILURE_KIND,
                    message=failure.error,
                )
            )

        skipped = sorted(self._skipped)
        carried = [self._previous[name] for name in skipped if name in self._previous]
        tiles = sorted(self._results + carried, key=lambda item: item.filename)
        finished_at = datetime.now(timezone.utc)
        manifest = RunManifest(
            origin=self._origin.value,
            tiles=tiles,
            skipped=skipped,
            failures=self._failures,
            files=sorted({item.filename for item in tiles} | set(skipped)),
            copyrights=split_copyrights([item.copyright for item in tiles]),
            started_at=started_at,
            finished_at=finished_at,
            duration_s=time.perf_counter() - t0,
        )
        path = write_manifest(manifest, self._store.root)
        logger.info(
            "run_finished",
            extra={
                "tiles": len(tiles),
                "skipped": len(skipped),
                "failures": len(self._failures),
                "requests": self._fetcher.request_count,
                "manifest": str(path),
                "duration_s": manifest.duration_s,
            },
        )
        return manifest


async def run_pipeline(
    config: BakerConfig,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RunManifest:
    """Run one download-and-bake pass with the default collaborators."""

    store = TileStore(config.out_dir)
    store.root.mkdir(parents=True, exist_ok=True)
    executor = ThreadPoolExecutor(max_workers=config.bake_workers)
    try:
        async with build_async_client(
            transport=transport, max_connections=config.concurrency
        ) as client:
            fetcher = TileFetcher(
                client, concurrency=config.concurrency, timeout_s=config.timeout_s
            )
            elevation = None
            if config.use_elevation:
                elevation = ElevationClient(
                    client, url=config.elevation_url, api_key=config.api_key_value
                )
            coordinator = RunCoordinator(
                config,
                fetcher=fetcher,
                store=store,
                executor=executor,
                elevation=elevation,
            )
            return await coordinator.run()
    finally:
        executor.shutdown(wait=True)
