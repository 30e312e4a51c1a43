"""
Unit tests for the aiohttp transport against a local test server.
"""

import pytest
from aiohttp import web
from aiohttp import test_utils

from tidemark.transport import HTTPTransport, NO_CONNECTION
from tidemark.utils.config import TransportConfig
from tidemark.utils.errors import TransportError


SINCE = "2020-01-01T00:00:00.000Z"


@pytest.fixture
async def server():
    received = {"queries": [], "posts": [], "headers": []}

    async def list_todos(request):
        received["queries"].append(dict(request.query))
        received["headers"].append(request.headers.get("X-Token"))
        return web.json_response([{"id": "a", "updatedAt": request.query.get("after")}])

    async def create_todo(request):
        received["posts"].append(await request.json())
        return web.json_response({}, status=int(request.query.get("status", 201)))

    async def plain_text(request):
        return web.Response(text="not json")

    async def broken(request):
        return web.Response(status=502, text="bad gateway")

    async def since_in_path(request):
        return web.json_response({"since": request.match_info["since"]})

    app = web.Application()
    app.router.add_get("/todos", list_todos)
    app.router.add_post("/todos", create_todo)
    app.router.add_get("/text", plain_text)
    app.router.add_get("/broken", broken)
    app.router.add_get("/changes/{since}", since_in_path)

    test_server = test_utils.TestServer(app)
    await test_server.start_server()
    test_server.received = received
    yield test_server
    await test_server.close()


@pytest.fixture
async def transport(server):
    transport = HTTPTransport(
        base_url=f"http://{server.host}:{server.port}",
        headers={"X-Token": "secret"},
        timeout=5,
    )
    yield transport
    await transport.close()


class TestReadUrl:
    """Test pull URL construction."""

    def test_placeholder(self):
        transport = HTTPTransport(base_url="http://remote/api/")

        assert transport.read_url("/changes/{since}", SINCE) == (
            "http://remote/api/changes/2020-01-01T00%3A00%3A00.000Z", None
        )

    def test_trailing_equals_appends(self):
        transport = HTTPTransport(base_url="http://remote")

        url, params = transport.read_url("todos?after=", SINCE)

        assert url == "http://remote/todos?after=2020-01-01T00%3A00%3A00.000Z"
        assert params is None

    def test_query_parameter(self):
        transport = HTTPTransport(since_param="updated_since")

        assert transport.read_url("https://remote/todos", SINCE) == (
            "https://remote/todos", {"updated_since": SINCE}
        )

    def test_from_config(self):
        transport = HTTPTransport.from_config(TransportConfig(base_url="http://remote", since_param="s"))

        assert transport.base_url == "http://remote"
        assert transport.since_param == "s"

    def test_invalid_base_url(self):
        for base_url in ("remote/api", "ftp://remote", "http://"):
            with pytest.raises(TransportError):
                HTTPTransport(base_url=base_url)


class TestHTTPTransport:
    """Test requests against a live local server."""

    @pytest.mark.asyncio
    async def test_fetch_with_query_parameter(self, transport, server):
        response = await transport.fetch("/todos", SINCE)

        assert response.status == 200
        assert response.data == [{"id": "a", "updatedAt": SINCE}]
        assert server.received["queries"] == [{"after": SINCE}]
        assert server.received["headers"] == ["secret"]

    @pytest.mark.asyncio
    async def test_fetch_with_trailing_equals(self, transport, server):
        response = await transport.fetch("/todos?after=", SINCE)

        assert response.data[0]["updatedAt"] == SINCE

    @pytest.mark.asyncio
    async def test_fetch_placeholder(self, transport):
        response = await transport.fetch("/changes/{since}", SINCE)

        assert response.data == {"since": SINCE}

    @pytest.mark.asyncio
    async def test_non_json_body_kept_as_text(self, transport):
        response = await transport.fetch("/text", SINCE)

        assert response.data == "not json"

    @pytest.mark.asyncio
    async def test_error_status_returns_empty(self, transport):
        response = await transport.fetch("/broken", SINCE)

        assert response.status == 502
        assert response.data == []
        assert not response.ok

    @pytest.mark.asyncio
    async def test_unreachable_remote(self):
        transport = HTTPTransport(base_url="http://127.0.0.1:1", timeout=2)
        try:
            response = await transport.fetch("/todos", SINCE)
            status = await transport.submit("/todos", {"id": "a"})
        finally:
            await transport.close()

        assert response.status == NO_CONNECTION
        assert status == NO_CONNECTION
        assert transport.get_stats()["errors"] == 2

    @pytest.mark.asyncio
    async def test_submit(self, transport, server):
        assert await transport.submit("/todos", {"id": "a", "title": "x"}) == 201
        assert await transport.submit("/todos?status=404", {"id": "b"}) == 404

        assert server.received["posts"] == [{"id": "a", "title": "x"}, {"id": "b"}]
