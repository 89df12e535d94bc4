from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import numpy as np

from geodesy import BoundingSphere, spheres_intersect
from tile_fetch.errors import TransientFetchError
from tile_fetch.keys import redact_url, strip_credentials, with_params
from tile_fetch.refs import ContentRef

from .nodes import (
    ContentLeaf,
    DescriptorError,
    TileNode,
    TilesetDescriptor,
    TilesetLeaf,
    parse_descriptor,
)

logger = logging.getLogger(__name__)

FetchJson = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class DescriptorFailure:
    url: str
    error: str


@dataclass(frozen=True)
class _PendingDescriptor:
    url: str
    depth: int
    transform: Optional[tuple[float, ...]] = None
    # Credentials and session bound when the descriptor joined the frontier.
    request_url: str = ""


@dataclass
class _Expansion:
    contents: list[str] = field(default_factory=list)
    nested: list[_PendingDescriptor] = field(default_factory=list)


@dataclass
class WalkerStats:
    descriptors_fetched: int = 0
    nodes_visited: int = 0
    nodes_pruned: int = 0
    contents_found: int = 0


class TilesetWalker:
    """Stream GLB content references whose bounds touch a region sphere.

    Descriptor documents are fetched concurrently from an explicit frontier of
    tasks. A session token observed in any response is adopted for every
    descriptor queued afterwards; descriptors already queued keep their URL.
    """

    def __init__(
        self,
        fetch_json: FetchJson,
        region: BoundingSphere,
        *,
        api_key: str = "",
        max_depth: Optional[int] = None,
    ) -> None:
        if max_depth is not None and max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        self._fetch_json = fetch_json
        self._region = region
        self._api_key = api_key
        self._max_depth = max_depth
        self._session: Optional[str] = None
        self._visited: set[str] = set()
        self._started = False
        self.failures: list[DescriptorFailure] = []
        self.stats = WalkerStats()

    @property
    def session(self) -> Optional[str]:
        return self._session

    def _request_url(self, url: str) -> str:
        return with_params(url, {"key": self._api_key or None, "session": self._session})

    def _adopt_session(self, descriptor: TilesetDescriptor) -> None:
        if descriptor.session is None or self._session is not None:
            return
        self._session = descriptor.session
        logger.info("tileset_session_adopted", extra={"url": redact_url(descriptor.url)})

    def _cull(self, descriptor: TilesetDescriptor, depth: int) -> _Expansion:
        expansion = _Expansion()
        stack: list[TileNode] = [descriptor.root]
        while stack:
            node = stack.pop()
            self.stats.nodes_visited += 1
            if not spheres_intersect(node.sphere, self._region):
                self.stats.nodes_pruned += 1
                continue

            if isinstance(node, TilesetLeaf):
                if self._max_depth is None or depth < self._max_depth:
                    expansion.nested.append(
                        _PendingDescriptor(url=node.url, depth=depth + 1, transform=node.transform)
                    )
            elif isinstance(node, ContentLeaf):
                expansion.contents.append(node.url)

            stack.extend(reversed(node.children))
        return expansion

    async def _expand(self, pending: _PendingDescriptor) -> _Expansion:
        request_url = pending.request_url
        safe_url = redact_url(request_url)
        try:
            payload = await self._fetch_json(request_url)
            transform = None
            if pending.transform is not None:
                transform = np.asarray(pending.transform, dtype=np.float64).reshape(4, 4).T
            descriptor = parse_descriptor(payload, url=pending.url, transform=transform)
        except (TransientFetchError, DescriptorError, ValueError) as exc:
            self.failures.append(DescriptorFailure(url=safe_url, error=str(exc)))
            logger.warning(
                "tileset_descriptor_failed", extra={"url": safe_url, "error": str(exc)}
            )
            return _Expansion()

        self.stats.descriptors_fetched += 1
        self._adopt_session(descriptor)
        return self._cull(descriptor, pending.depth)

    def _schedule(
        self, pending: _PendingDescriptor, tasks: set[asyncio.Task[_Expansion]]
    ) -> None:
        identity = strip_credentials(pending.url)
        if identity in self._visited:
            return
        self._visited.add(identity)
        bound = replace(pending, request_url=self._request_url(pending.url))
        tasks.add(asyncio.ensure_future(self._expand(bound)))

    async def traverse(self, root_url: str) -> AsyncIterator[ContentRef]:
        if self._started:
            raise RuntimeError("TilesetWalker.traverse() can only be consumed once")
        self._started = True

        tasks: set[asyncio.Task[_Expansion]] = set()
        seen_contents: set[str] = set()
        self._schedule(_PendingDescriptor(url=root_url, depth=0), tasks)
        try:
            while tasks:
                done, tasks = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    expansion = task.result()
                    for nested in expansion.nested:
                        self._schedule(nested, tasks)
                    for url in expansion.contents:
                        identity = strip_credentials(url)
                        if identity in seen_contents:
                            continue
                        seen_contents.add(identity)
                        self.stats.contents_found += 1
                        yield ContentRef(url=url, api_key=self._api_key, session=self._session)
        finally:
            for task in tasks:
                task.cancel()
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
