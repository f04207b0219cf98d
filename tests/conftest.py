import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import pytest
from aiohttp import web

from quotio_observability.models.auth import AuthFile
from quotio_observability.models.logs import LogsResponse
from quotio_observability.models.request_log import RequestLog
from quotio_observability.models.usage_history import (
    RequestHistoryItem,
    RequestHistoryResponse,
    SSERequestEvent,
)
from quotio_observability.models.usage_stats import UsageStats
from quotio_observability.services.api_client import APIError
from quotio_observability.services.request_tracker import RequestTracker
from quotio_observability.utils.feature_flags import FeatureFlagManager
from quotio_observability.utils.settings import SettingsManager

BASE_TIME = datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


class FakeManagementClient:
    """In-memory stand-in for ManagementAPIClient."""

    def __init__(self):
        self.auth_key = "secret"
        self.history_batches: List[List[RequestHistoryItem]] = []
        self.history_error: Optional[Exception] = None
        self.history_calls: List[dict] = []
        self.replay_events: List[SSERequestEvent] = []
        self.replay_calls: List[dict] = []
        self.stream_url: Optional[str] = None
        self.stream_url_calls: List[Optional[int]] = []
        self.auth_files: List[AuthFile] = []
        self.usage_stats = UsageStats()
        self.usage_error: Optional[Exception] = None
        self.exported = b'{"usage": {}}'
        self.imported: List[bytes] = []
        self.import_error: Optional[Exception] = None
        self.log_responses: List[LogsResponse] = []
        self.logs_error: Optional[Exception] = None
        self.logs_calls: List[Optional[int]] = []
        self.clear_logs_calls = 0

    async def fetch_request_history(self, limit=100, offset=0, **filters):
        self.history_calls.append({"limit": limit, "offset": offset, **filters})
        if self.history_error is not None:
            raise self.history_error
        batch = self.history_batches.pop(0) if self.history_batches else []
        return RequestHistoryResponse(requests=batch, total=len(batch))

    async def fetch_usage_events(self, since_seq=0, limit=500):
        self.replay_calls.append({"since_seq": since_seq, "limit": limit})
        return list(self.replay_events)

    def get_sse_stream_url(self, since_seq=None):
        self.stream_url_calls.append(since_seq)
        return self.stream_url

    async def fetch_auth_files(self):
        return list(self.auth_files)

    async def fetch_usage_stats(self, timeout=None):
        if self.usage_error is not None:
            raise self.usage_error
        return self.usage_stats

    async def export_usage_stats(self):
        return self.exported

    async def import_usage_stats(self, data):
        if self.import_error is not None:
            raise self.import_error
        self.imported.append(data)

    async def fetch_logs(self, after=None):
        self.logs_calls.append(after)
        if self.logs_error is not None:
            raise self.logs_error
        return self.log_responses.pop(0) if self.log_responses else LogsResponse(lines=[], latest_timestamp=after)

    async def clear_logs(self):
        self.clear_logs_calls += 1
        if self.logs_error is not None:
            raise self.logs_error


@pytest.fixture
def fake_client():
    return FakeManagementClient()


@pytest.fixture
def failing_history_client():
    client = FakeManagementClient()
    client.history_error = APIError("boom", status_code=503)
    return client


@pytest.fixture
def settings(tmp_path):
    return SettingsManager(config_dir=tmp_path / "config")


@pytest.fixture
def feature_flags(settings):
    return FeatureFlagManager(settings)


@pytest.fixture
def tracker(tmp_path):
    return RequestTracker(storage_path=tmp_path / "request-history.json")


@pytest.fixture
def make_request():
    def _make(**overrides) -> RequestLog:
        values = {
            "timestamp": BASE_TIME,
            "method": "POST",
            "endpoint": "/v1/chat/completions",
            "status_code": 200,
        }
        values.update(overrides)
        return RequestLog(**values)

    return _make


@pytest.fixture
def make_evidence():
    def _make(**overrides) -> RequestHistoryItem:
        values = {
            "timestamp": "2026-02-16T12:00:00Z",
            "success": True,
        }
        values.update(overrides)
        return RequestHistoryItem(**values)

    return _make


@pytest.fixture
def make_auth():
    def _make(id: str, provider: str = "codex", **overrides) -> AuthFile:
        return AuthFile(id=id, name=f"{id}.json", provider=provider, **overrides)

    return _make


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 3.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def silent_stream():
    """App whose /usage/stream sends headers, then stays quiet until released."""
    release = asyncio.Event()

    async def stream(request):
        response = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await response.prepare(request)
        await release.wait()
        return response

    app = web.Application()
    app.router.add_get("/usage/stream", stream)
    return app, release
