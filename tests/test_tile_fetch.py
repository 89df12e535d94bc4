from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

TILE_URL = "https://tile.example.com/v1/3dtiles/datasets/abc/files/tile.glb"


def test_cache_key_ignores_credentials_and_param_order() -> None:
    from tile_fetch import cache_key

    base = cache_key(f"{TILE_URL}?b=2&a=1")
    assert base == cache_key(f"{TILE_URL}?a=1&b=2&key=K1&session=S1")
    assert base == cache_key(f"{TILE_URL}?session=S2&a=1&key=K2&b=2")
    assert base != cache_key(f"{TILE_URL}?a=1&b=3")
    assert len(base) == 40 and base == base.lower()


def test_redact_url_hides_credentials() -> None:
    from tile_fetch import redact_url

    redacted = redact_url(f"{TILE_URL}?key=SECRET&session=TOKEN&v=1")
    assert "SECRET" not in redacted
    assert "TOKEN" not in redacted
    assert "key=***" in redacted
    assert "v=1" in redacted


def test_content_ref_request_url_replaces_session() -> None:
    from tile_fetch import ContentRef

    ref = ContentRef(url=f"{TILE_URL}?session=OLD", api_key="K", session="NEW")
    assert "session=NEW" in ref.request_url
    assert "session=OLD" not in ref.request_url
    assert "key=K" in ref.request_url
    assert ContentRef(url=TILE_URL).request_url == TILE_URL


def test_tile_store_writes_atomically(tmp_path: Path) -> None:
    from tile_fetch import TileStore, cache_key

    store = TileStore(tmp_path / "out")
    digest = cache_key(TILE_URL)
    assert not store.exists(digest)

    path = store.write_atomic(digest, b"glTF-bytes")
    assert path.name == f"{digest}.glb"
    assert path.read_bytes() == b"glTF-bytes"
    assert store.exists(digest)
    assert list(path.parent.glob("*.tmp")) == []

    with pytest.raises(ValueError, match="Invalid tile digest"):
        store.path_for("../escape")
    with pytest.raises(ValueError, match="empty tile"):
        store.write_atomic(digest, b"")


def test_leftover_temp_file_does_not_count_as_complete(tmp_path: Path) -> None:
    from tile_fetch import TileStore, cache_key

    store = TileStore(tmp_path)
    digest = cache_key(TILE_URL)
    (tmp_path / f".{digest}.glb.deadbeef.tmp").write_bytes(b"partial")
    (tmp_path / f"{digest}.glb").write_bytes(b"")
    assert not store.exists(digest)


def test_materialize_skips_existing_files_without_network(tmp_path: Path) -> None:
    from tile_fetch import ContentRef, TileFetcher, TileSkipped, TileStore

    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(200, content=b"payload")

    async def run() -> tuple[object, object]:
        store = TileStore(tmp_path)
        ref = ContentRef(url=TILE_URL, api_key="K")
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = TileFetcher(client, concurrency=2)
            first = await fetcher.materialize(ref, store)
            store.write_atomic(ref.cache_key, b"baked")
            second = await fetcher.materialize(ref, store)
        return first, second

    first, second = asyncio.run(run())
    assert first == b"payload"
    assert isinstance(second, TileSkipped)
    assert second.filename.endswith(".glb")
    assert len(calls) == 1
    assert "key=K" in calls[0]


def test_http_errors_raise_transient_fetch_error_without_credentials() -> None:
    from tile_fetch import TileFetcher, TransientFetchError

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="rate limited")

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await TileFetcher(client).fetch_json(f"{TILE_URL}?key=SECRET")

    with pytest.raises(TransientFetchError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.status_code == 429
    assert "SECRET" not in str(excinfo.value)
    assert "SECRET" not in excinfo.value.url


def test_transport_errors_raise_transient_fetch_error() -> None:
    from tile_fetch import TileFetcher, TransientFetchError

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await TileFetcher(client).fetch_bytes(TILE_URL)

    with pytest.raises(TransientFetchError, match="ConnectError"):
        asyncio.run(run())


def test_fetcher_never_exceeds_concurrency_ceiling() -> None:
    from tile_fetch import TileFetcher

    state = {"active": 0, "peak": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        state["active"] += 1
        state["peak"] = max(state["peak"], state["active"])
        await asyncio.sleep(0.01)
        state["active"] -= 1
        return httpx.Response(200, json={"ok": True})

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            fetcher = TileFetcher(client, concurrency=3)
            await asyncio.gather(*(fetcher.fetch_json(f"{TILE_URL}?i={i}") for i in range(12)))
            assert fetcher.request_count == 12

    asyncio.run(run())
    assert state["peak"] == 3


def test_fetcher_rejects_invalid_concurrency() -> None:
    from tile_fetch import TileFetcher

    with pytest.raises(ValueError, match="concurrency must be > 0"):
        TileFetcher(httpx.AsyncClient(), concurrency=0)
