"""
Unit tests for the Hacker News API client, against an httpx mock transport.
"""
import asyncio
import json

import httpx
import pytest

from hnreader.scrapers.hn_client import HNClient, UpstreamDecodeError, UpstreamError

BASE = "https://hn.test/v0"


def make_client(handler, **kwargs) -> HNClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HNClient(base_url=BASE, http_client=http, **kwargs)


def item_handler(items: dict, failing=()):
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/topstories.json"):
            return httpx.Response(200, json=list(items))
        item_id = int(path.rsplit("/", 1)[1].split(".")[0])
        if item_id in failing:
            return httpx.Response(500)
        return httpx.Response(200, content=json.dumps(items.get(item_id)))
    return handler


class TestFetchTop:

    @pytest.mark.asyncio
    async def test_truncates_to_top_limit(self):
        items = {i: {"id": i} for i in range(1, 11)}
        client = make_client(item_handler(items), top_limit=3)
        assert await client.fetch_top() == [1, 2, 3]
        await client.close()

    @pytest.mark.asyncio
    async def test_non_list_body_is_decode_error(self):
        client = make_client(lambda request: httpx.Response(200, json={"oops": True}))
        with pytest.raises(UpstreamDecodeError):
            await client.fetch_top()
        await client.close()

    @pytest.mark.asyncio
    async def test_http_error_is_upstream_error(self):
        client = make_client(lambda request: httpx.Response(503))
        with pytest.raises(UpstreamError):
            await client.fetch_top()
        await client.close()


class TestFetchItem:

    @pytest.mark.asyncio
    async def test_decodes_story(self):
        items = {8863: {
            "id": 8863, "type": "story", "by": "dhouston", "time": 1175714200,
            "title": "My YC app: Dropbox", "url": "http://www.getdropbox.com/u/2/screencast.html",
            "score": 111, "descendants": 71, "kids": [8952, 9224],
        }}
        client = make_client(item_handler(items))

        item = await client.fetch_item(8863)

        assert item.title == "My YC app: Dropbox"
        assert item.kids == [8952, 9224]
        assert item.dead is False
        await client.close()

    @pytest.mark.asyncio
    async def test_null_body_means_missing(self):
        client = make_client(item_handler({}))
        assert await client.fetch_item(1) is None
        await client.close()

    @pytest.mark.asyncio
    async def test_invalid_json_is_decode_error(self):
        client = make_client(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(UpstreamDecodeError):
            await client.fetch_item(1)
        await client.close()

    @pytest.mark.asyncio
    async def test_network_error_is_upstream_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(UpstreamError):
            await client.fetch_item(1)
        await client.close()


class TestFetchBatch:

    @pytest.mark.asyncio
    async def test_failures_become_none_in_place(self):
        items = {1: {"id": 1}, 2: {"id": 2}, 3: {"id": 3}}
        client = make_client(item_handler(items, failing={2}))

        results = await client.fetch_batch([1, 2, 3, 4])

        assert [r.id if r else None for r in results] == [1, None, 3, None]
        await client.close()

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeds_permits(self):
        in_flight = 0
        peak = 0

        class SlowTransport(httpx.AsyncBaseTransport):
            async def handle_async_request(self, request):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return httpx.Response(200, json={"id": 1})

        client = HNClient(
            base_url=BASE,
            concurrency=3,
            http_client=httpx.AsyncClient(transport=SlowTransport()),
        )
        results = await client.fetch_batch(list(range(20)))

        assert len(results) == 20
        assert peak <= 3
        await client.close()
