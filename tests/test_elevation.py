from __future__ import annotations

import asyncio

import httpx
import pytest

URL = "https://maps.example.com/maps/api/elevation/json"


def _lookup(handler) -> float:
    from elevation import ElevationClient

    async def run() -> float:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await ElevationClient(client, url=URL, api_key="K").lookup(46.5, 6.6)

    return asyncio.run(run())


def test_elevation_lookup_parses_first_result() -> None:
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(
            200, json={"status": "OK", "results": [{"elevation": 372.5, "resolution": 9.5}]}
        )

    assert _lookup(handler) == pytest.approx(372.5)
    assert seen[0].params["key"] == "K"
    assert seen[0].params["locations"] == "46.50000000,6.60000000"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, json={"status": "REQUEST_DENIED", "error_message": "bad key"}),
        httpx.Response(200, json={"status": "OK", "results": []}),
        httpx.Response(200, json={"status": "OK", "results": [{"elevation": "high"}]}),
        httpx.Response(200, text="not json"),
    ],
)
def test_elevation_lookup_falls_back_to_zero(
    response: httpx.Response, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level("WARNING")
    assert _lookup(lambda request: response) == 0.0
    messages = [record.getMessage() for record in caplog.records]
    assert "elevation_lookup_failed" in messages
    assert all("K" not in str(getattr(r, "url", "")).split("key=")[-1] for r in caplog.records)
