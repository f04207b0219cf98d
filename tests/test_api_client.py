import contextlib

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from quotio_observability.services.api_client import (
    APIError,
    ManagementAPIClient,
    parse_json_bytes,
    retry_backoff,
)

PREFIX = "/v0/management"


@contextlib.asynccontextmanager
async def management_api(routes, auth_key="", **client_kwargs):
    """Serve ``routes`` under the management prefix and yield (client, seen requests)."""
    seen = []
    app = web.Application()

    def recording(handler):
        async def wrapper(request):
            seen.append({
                "method": request.method,
                "path": request.path,
                "query": dict(request.query),
                "authorization": request.headers.get("Authorization"),
                "body": await request.read(),
            })
            return await handler(request)
        return wrapper

    for method, path, handler in routes:
        app.router.add_route(method, PREFIX + path, recording(handler))

    async with TestServer(app) as server:
        client = ManagementAPIClient(str(server.make_url(PREFIX)), auth_key=auth_key, **client_kwargs)
        try:
            yield client, seen
        finally:
            await client.close()


def json_handler(payload, status=200):
    async def handler(request):
        return web.json_response(payload, status=status)
    return handler


def test_retry_backoff_is_capped():
    assert [retry_backoff(n) for n in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_defaults_depend_on_remote():
    local = ManagementAPIClient("http://127.0.0.1:8317/v0/management/")
    remote = ManagementAPIClient("https://proxy.example.com", is_remote=True)
    assert local.base_url == "http://127.0.0.1:8317/v0/management"
    assert (local.max_retries, local.timeout) == (4, 15.0)
    assert (remote.max_retries, remote.timeout) == (5, 30.0)


def test_auth_headers_only_with_key():
    assert ManagementAPIClient("http://h").auth_headers() == {}
    assert ManagementAPIClient("http://h", auth_key="k").auth_headers() == {"Authorization": "Bearer k"}


def test_sse_stream_url():
    client = ManagementAPIClient("http://127.0.0.1:8317/v0/management")
    assert client.get_sse_stream_url() == "http://127.0.0.1:8317/v0/management/usage/stream"
    assert client.get_sse_stream_url(0) == "http://127.0.0.1:8317/v0/management/usage/stream"
    assert client.get_sse_stream_url(42) == "http://127.0.0.1:8317/v0/management/usage/stream?since_seq=42"
    assert ManagementAPIClient("unix:///tmp/proxy.sock").get_sse_stream_url() is None


@pytest.mark.asyncio
async def test_bearer_header_sent_when_key_set():
    routes = [("GET", "/auth-files", json_handler({"files": [{"id": "a", "name": "a.json", "provider": "codex"}]}))]
    async with management_api(routes, auth_key="secret") as (client, seen):
        files = await client.fetch_auth_files()
    assert [auth.id for auth in files] == ["a"]
    assert seen[0]["authorization"] == "Bearer secret"

    async with management_api(routes) as (client, seen):
        await client.fetch_auth_files()
    assert seen[0]["authorization"] is None


@pytest.mark.asyncio
async def test_request_history_query():
    payload = {"requests": [{"request_id": "r1", "model": "gpt-5", "success": True}], "total": 1}
    async with management_api([("GET", "/usage/history", json_handler(payload))]) as (client, seen):
        response = await client.fetch_request_history(
            limit=300,
            model="gpt-5",
            success=False,
            request_id="r1",
            account="idx-1",
            source="codex",
        )
        await client.fetch_request_history()

    assert response.requests[0].request_id == "r1"
    assert seen[0]["query"] == {
        "limit": "300",
        "offset": "0",
        "model": "gpt-5",
        "success": "false",
        "request_id": "r1",
        "auth_index": "idx-1",
        "source": "codex",
    }
    assert seen[1]["query"] == {"limit": "100", "offset": "0"}


@pytest.mark.asyncio
async def test_usage_events_clamps_query():
    payload = {"events": [{"seq": 3, "request_id": "r3"}]}
    async with management_api([("GET", "/usage/events", json_handler(payload))]) as (client, seen):
        events = await client.fetch_usage_events(since_seq=-5, limit=0)
    assert [event.seq for event in events] == [3]
    assert seen[0]["query"] == {"since_seq": "0", "limit": "1"}


@pytest.mark.asyncio
async def test_usage_stats_and_backup():
    stats = {"usage": {"total_requests": 4, "success_count": 3, "apis": {"key": {"total_requests": 4}}}}

    async def export(request):
        return web.Response(body=b'{"version": 1}', content_type="application/json")

    async def accept(request):
        return web.json_response({"ok": True})

    routes = [
        ("GET", "/usage", json_handler(stats)),
        ("GET", "/usage/export", export),
        ("POST", "/usage/import", accept),
    ]
    async with management_api(routes) as (client, seen):
        usage = await client.fetch_usage_stats()
        exported = await client.export_usage_stats()
        await client.import_usage_stats(exported)

    assert usage.usage.success_rate == 75.0
    assert usage.usage.apis["key"].total_requests == 4
    assert exported == b'{"version": 1}'
    assert seen[2]["method"] == "POST"
    assert seen[2]["body"] == b'{"version": 1}'


@pytest.mark.asyncio
async def test_logs_endpoints():
    payload = {"lines": ["a", "b"], "line-count": 2, "latest-timestamp": 1700}

    async def cleared(request):
        return web.json_response({})

    routes = [("GET", "/logs", json_handler(payload)), ("DELETE", "/logs", cleared)]
    async with management_api(routes) as (client, seen):
        first = await client.fetch_logs()
        await client.fetch_logs(after=1700)
        await client.clear_logs()

    assert first.lines == ["a", "b"]
    assert first.line_count == 2
    assert first.latest_timestamp == 1700
    assert seen[0]["query"] == {}
    assert seen[1]["query"] == {"after": "1700"}
    assert seen[2]["method"] == "DELETE"


@pytest.mark.asyncio
async def test_http_error_raises_api_error():
    async def denied(request):
        return web.Response(status=401, text="invalid management key")

    async with management_api([("GET", "/usage", denied)]) as (client, seen):
        with pytest.raises(APIError) as excinfo:
            await client.fetch_usage_stats()

    assert excinfo.value.status_code == 401
    assert str(excinfo.value) == "HTTP 401: invalid management key"
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_invalid_body_raises_api_error():
    async def garbage(request):
        return web.Response(text="not json")

    async with management_api([("GET", "/usage/history", garbage)]) as (client, _):
        with pytest.raises(APIError, match="Invalid response"):
            await client.fetch_request_history()


@pytest.mark.asyncio
async def test_check_proxy_responding():
    async with management_api([("GET", "/debug", json_handler({}))]) as (client, _):
        assert await client.check_proxy_responding() is True
    async with management_api([("GET", "/debug", json_handler({}, status=500))]) as (client, _):
        assert await client.check_proxy_responding() is False


@pytest.mark.asyncio
async def test_invalid_url_raises():
    client = ManagementAPIClient("localhost:8317")
    with pytest.raises(APIError, match="Invalid URL"):
        await client.fetch_auth_files()
    await client.close()


@pytest.mark.asyncio
async def test_connection_error_after_retries():
    client = ManagementAPIClient("http://127.0.0.1:1", max_retries=0)
    try:
        with pytest.raises(APIError, match="Connection error"):
            await client.fetch_usage_stats()
    finally:
        await client.close()


def test_parse_json_bytes():
    assert parse_json_bytes(b'{"a": 1}') == {"a": 1}
    with pytest.raises(APIError):
        parse_json_bytes(b"\x00not json")
