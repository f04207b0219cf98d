import asyncio
import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from quotio_observability.models.usage_history import SSERequestEvent
from quotio_observability.services.api_client import ManagementAPIClient
from quotio_observability.services.stream_session import (
    CancellationToken,
    RealtimeStreamSession,
    StreamState,
)


def frame(**payload) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@pytest.mark.asyncio
async def test_failed_connect_replays_once_then_waits_backoff(fake_client):
    fake_client.replay_events = [SSERequestEvent(seq=5, request_id="r1")]
    received = []
    connected_during_replay = []

    recorded_replay = fake_client.fetch_usage_events

    async def replay(since_seq=0, limit=500):
        connected_during_replay.append(session.connected)
        return await recorded_replay(since_seq=since_seq, limit=limit)

    fake_client.fetch_usage_events = replay
    session = RealtimeStreamSession(
        fake_client,
        on_event=received.append,
        is_context_valid=lambda: len(fake_client.stream_url_calls) < 2,
    )

    loop = asyncio.get_running_loop()
    started = loop.time()
    await asyncio.wait_for(session.run(), timeout=5)
    elapsed = loop.time() - started

    assert fake_client.replay_calls == [{"since_seq": 0, "limit": 1000}]
    assert connected_during_replay == [False]
    assert elapsed >= 0.9
    assert [event.request_id for event in received] == ["r1"]
    assert fake_client.stream_url_calls == [None, 5]
    assert session.connect_attempts == 2
    assert session.state is StreamState.CANCELLED
    assert not session.active
    assert session.last_error == "Stream URL unavailable"


@pytest.mark.asyncio
async def test_no_replay_when_context_already_gone(fake_client):
    session = RealtimeStreamSession(
        fake_client,
        is_context_valid=lambda: not fake_client.stream_url_calls,
        backoff_seconds=0.01,
    )
    await asyncio.wait_for(session.run(), timeout=2)
    assert fake_client.replay_calls == []


@pytest.mark.asyncio
async def test_run_is_noop_when_cancelled_up_front(fake_client):
    token = CancellationToken()
    token.cancel()
    session = RealtimeStreamSession(fake_client)
    await session.run(token)
    assert session.connect_attempts == 0
    assert session.state is StreamState.CANCELLED


@pytest.mark.asyncio
async def test_stop_interrupts_backoff(fake_client, wait_until):
    session = RealtimeStreamSession(fake_client, backoff_seconds=30)
    task = session.start()
    assert session.start() is task

    await wait_until(lambda: fake_client.replay_calls)
    await asyncio.wait_for(session.stop(), timeout=2)

    assert task.done()
    assert session.state is StreamState.CANCELLED
    assert not session.connected


@pytest.mark.asyncio
async def test_cancellation_token_sleep():
    token = CancellationToken()
    assert await token.sleep(0.01) is False
    token.cancel()
    assert await token.sleep(10) is True


def test_request_headers_follow_key_and_cursor(fake_client):
    session = RealtimeStreamSession(fake_client)
    assert session.request_headers() == {
        "Accept": "text/event-stream",
        "Cache-Control": "no-cache",
        "Authorization": "Bearer secret",
    }

    session.ingest(SSERequestEvent(seq=12, request_id="x"))
    assert session.request_headers()["Last-Event-ID"] == "12"

    anonymous = RealtimeStreamSession(fake_client, management_key="")
    assert "Authorization" not in anonymous.request_headers()


@pytest.mark.asyncio
async def test_streams_dedupes_and_resumes_against_server():
    connections = []
    batches = [
        [
            frame(seq=1, request_id="r1", model="gpt-5", success=True),
            "data: {not json}\n\n",
            ": keepalive\n\n",
            frame(seq=2, request_id="r1", model="gpt-5", success=True),
            frame(seq=3, timestamp="2026-02-16T12:00:00Z", model="sonnet"),
        ],
        [
            frame(seq=4, request_id="r4"),
        ],
    ]

    async def stream(request):
        connections.append({"headers": request.headers.copy(), "query": dict(request.query)})
        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        for chunk in batches[len(connections) - 1]:
            await response.write(chunk.encode("utf-8"))
        await response.write_eof()
        return response

    app = web.Application()
    app.router.add_get("/v0/management/usage/stream", stream)

    async with TestServer(app) as server:
        client = ManagementAPIClient(str(server.make_url("/v0/management")), auth_key="secret")
        received = []
        session = RealtimeStreamSession(
            client,
            on_event=received.append,
            is_context_valid=lambda: len(connections) < 2,
            backoff_seconds=0.01,
        )
        try:
            await asyncio.wait_for(session.run(), timeout=5)
        finally:
            await client.close()

    assert [event.dedupe_key for event in received] == ["r1", "2026-02-16T12:00:00Z|sonnet|request"]
    assert session.last_seen_seq == 3

    first, second = connections
    assert first["headers"]["Authorization"] == "Bearer secret"
    assert first["headers"]["Accept"] == "text/event-stream"
    assert first["headers"]["Cache-Control"] == "no-cache"
    assert "Last-Event-ID" not in first["headers"]
    assert first["query"] == {}
    assert second["headers"]["Last-Event-ID"] == "3"
    assert second["query"] == {"since_seq": "3"}


@pytest.mark.asyncio
async def test_http_error_status_triggers_replay():
    replays = []

    async def stream(request):
        return web.Response(status=503, text="busy")

    async def events(request):
        replays.append(dict(request.query))
        return web.json_response({"events": [{"seq": 9, "request_id": "late"}]})

    app = web.Application()
    app.router.add_get("/usage/stream", stream)
    app.router.add_get("/usage/events", events)

    async with TestServer(app) as server:
        client = ManagementAPIClient(str(server.make_url("")).rstrip("/"), max_retries=0)
        received = []
        session = RealtimeStreamSession(
            client,
            on_event=received.append,
            is_context_valid=lambda: not replays,
            backoff_seconds=0.01,
        )
        try:
            await asyncio.wait_for(session.run(), timeout=5)
        finally:
            await client.close()

    assert replays == [{"since_seq": "0", "limit": "1000"}]
    assert [event.request_id for event in received] == ["late"]
    assert session.last_seen_seq == 9
    assert "503" in session.last_error


@pytest.mark.asyncio
async def test_stop_cancels_connected_silent_stream(silent_stream, wait_until):
    app, release = silent_stream

    async with TestServer(app) as server:
        client = ManagementAPIClient(str(server.make_url("")).rstrip("/"))
        session = RealtimeStreamSession(client)
        try:
            task = session.start()
            await wait_until(lambda: session.connected)

            await asyncio.wait_for(session.stop(), timeout=3)

            assert task.done()
            assert not session.connected
            assert not session.active
            assert session.state is StreamState.CANCELLED
        finally:
            release.set()
            await client.close()
