from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from .errors import TransientFetchError
from .keys import redact_url
from .refs import ContentRef
from .storage import TileStore

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "tileset-baker/0.1"


@dataclass(frozen=True)
class TileSkipped:
    filename: str


class TileFetcher:
    """Bounded-concurrency HTTP access over one persistent client.

    Every request (descriptor or asset) acquires the same semaphore, so at
    most ``concurrency`` requests are in flight at any instant.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        concurrency: int = 8,
        timeout_s: float = 60.0,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be > 0")
        self._client = client
        self._semaphore = asyncio.Semaphore(concurrency)
        self._timeout = httpx.Timeout(timeout_s)
        self._concurrency = concurrency
        self.request_count = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    async def _get(self, url: str) -> httpx.Response:
        safe_url = redact_url(url)
        async with self._semaphore:
            self.request_count += 1
            try:
                resp = await self._client.get(url, timeout=self._timeout)
            except httpx.HTTPError as exc:
                raise TransientFetchError(
                    f"Request failed for {safe_url}: {exc.__class__.__name__}: {exc}",
                    url=safe_url,
                ) from exc

        if resp.status_code >= 400:
            preview = resp.content[:200].decode(errors="replace")
            raise TransientFetchError(
                f"HTTP {resp.status_code} for {safe_url}: {preview}",
                url=safe_url,
                status_code=resp.status_code,
            )
        logger.debug(
            "fetch_completed",
            extra={"url": safe_url, "status_code": resp.status_code, "size": len(resp.content)},
        )
        return resp

    async def fetch_json(self, url: str) -> Any:
        resp = await self._get(url)
        try:
            return resp.json()
        except ValueError as exc:
            raise TransientFetchError(
                f"Invalid JSON from {redact_url(url)}: {exc}", url=redact_url(url)
            ) from exc

    async def fetch_bytes(self, url: str) -> bytes:
        resp = await self._get(url)
        return resp.content

    async def materialize(
        self, ref: ContentRef, store: TileStore
    ) -> Union[bytes, TileSkipped]:
        digest = ref.cache_key
        if store.exists(digest):
            return TileSkipped(filename=store.filename_for(digest))
        return await self.fetch_bytes(ref.request_url)


def build_async_client(
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    trust_env: bool = False,
    max_connections: int = 16,
) -> httpx.AsyncClient:
    limits = httpx.Limits(
        max_connections=max_connections, max_keepalive_connections=max_connections
    )
    return httpx.AsyncClient(
        follow_redirects=True,
        trust_env=trust_env,
        transport=transport,
        limits=limits,
        headers={"User-Agent": DEFAULT_USER_AGENT},
    )
