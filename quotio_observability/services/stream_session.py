"""Realtime usage stream (Server-Sent Events) with replay and reconnect.

WORKFLOW:
=========
1. Connect to /usage/stream, resuming from the last sequence number seen
   (``since_seq`` query and ``Last-Event-ID`` header).
2. For each ``data:`` line, decode an SSERequestEvent and pass it through the
   EventDeduplicator; new events are handed to ``on_event``.
3. On any transport failure, replay missed events once from /usage/events,
   wait the backoff and reconnect. A clean end of stream waits the backoff
   too, without replay (the resume cursor covers the gap).
4. The loop ends when the cancellation token fires or the context predicate
   (e.g. "the realtime tab is still visible") turns false. Both are checked
   before connecting, on every line and around the backoff sleep.

There is no ceiling on reconnect attempts; the backoff is the only throttle.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, Optional

import aiohttp
from pydantic import ValidationError

from ..models.usage_history import SSERequestEvent
from ..utils.log import log_with_timestamp
from .api_client import APIError
from .event_deduplicator import EventDeduplicator

DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_REPLAY_LIMIT = 1000

_PREFIX = "[StreamSession]"


class StreamState(str, Enum):
    """Lifecycle of a stream session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    DISCONNECTED = "disconnected"
    CANCELLED = "cancelled"


class StreamError(Exception):
    """Stream could not be opened (no URL, non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CancellationToken:
    """Cooperative cancellation flag that can also be awaited."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if cancelled meanwhile."""
        if self.is_cancelled:
            return True
        try:
            await asyncio.wait_for(self.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


class RealtimeStreamSession:
    """One logical realtime subscription, reconnecting until cancelled."""

    def __init__(
        self,
        api_client,
        on_event: Optional[Callable[[SSERequestEvent], None]] = None,
        management_key: Optional[str] = None,
        is_context_valid: Optional[Callable[[], bool]] = None,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        replay_limit: int = DEFAULT_REPLAY_LIMIT,
        http_session: Optional[aiohttp.ClientSession] = None,
        deduplicator: Optional[EventDeduplicator] = None,
    ):
        self.api_client = api_client
        self.on_event = on_event
        self.management_key = management_key if management_key is not None else getattr(api_client, "auth_key", "")
        self.is_context_valid = is_context_valid or (lambda: True)
        self.backoff_seconds = backoff_seconds
        self.replay_limit = replay_limit
        self.deduplicator = deduplicator or EventDeduplicator()
        self._http_session = http_session

        self.state = StreamState.IDLE
        self.connected = False
        self.active = False
        self.last_error: Optional[str] = None
        self.connect_attempts = 0
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def last_seen_seq(self) -> int:
        return self.deduplicator.last_seen_seq

    def _should_continue(self, token: CancellationToken) -> bool:
        return not token.is_cancelled and self.is_context_valid()

    def ingest(self, event: SSERequestEvent) -> bool:
        """Deduplicate and surface one event. Returns whether it was new."""
        if not self.deduplicator.ingest(event):
            return False
        if self.on_event:
            self.on_event(event)
        return True

    def request_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
        }
        if self.management_key:
            headers["Authorization"] = f"Bearer {self.management_key}"
        if self.last_seen_seq > 0:
            headers["Last-Event-ID"] = str(self.last_seen_seq)
        return headers

    async def run(self, token: Optional[CancellationToken] = None):
        """Stream until cancelled or the context becomes invalid.

        Calling run while a session is already active returns immediately.
        """
        if self.active:
            return
        token = token or CancellationToken()
        self._token = token
        self.active = True
        log_with_timestamp("Realtime stream started", _PREFIX)
        try:
            while self._should_continue(token):
                self.state = StreamState.CONNECTING
                self.connect_attempts += 1
                try:
                    await self._read_stream(token)
                except (StreamError, APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                    self.connected = False
                    self.state = StreamState.DISCONNECTED
                    self.last_error = str(e) or e.__class__.__name__
                    log_with_timestamp(f"Stream error: {self.last_error}", _PREFIX, logging.WARNING)
                    if not self._should_continue(token):
                        break
                    await self._replay()
                else:
                    self.connected = False
                    if not self._should_continue(token):
                        break
                    self.state = StreamState.DISCONNECTED
                    log_with_timestamp("Stream ended, reconnecting", _PREFIX, logging.DEBUG)

                if await token.sleep(self.backoff_seconds):
                    break
        finally:
            self.connected = False
            self.active = False
            self.state = StreamState.CANCELLED
            log_with_timestamp(f"Realtime stream stopped (last_seen_seq={self.last_seen_seq})", _PREFIX)

    async def _read_stream(self, token: CancellationToken):
        url = self.api_client.get_sse_stream_url(self.last_seen_seq if self.last_seen_seq > 0 else None)
        if not url:
            raise StreamError("Stream URL unavailable")

        session = self._http_session or self.api_client.session
        async with session.get(
            url,
            headers=self.request_headers(),
            timeout=aiohttp.ClientTimeout(total=None, sock_connect=10),
        ) as response:
            if not 200 <= response.status < 300:
                raise StreamError(f"Unexpected stream status {response.status}", response.status)

            self.connected = True
            self.state = StreamState.STREAMING
            self.last_error = None

            async for raw in response.content:
                if not self._should_continue(token):
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if not line.startswith("data:"):
                    continue
                payload = line[len("data:"):].strip()
                if not payload:
                    continue
                try:
                    event = SSERequestEvent.model_validate_json(payload)
                except ValidationError:
                    log_with_timestamp(f"Skipping malformed frame: {payload[:200]}", _PREFIX, logging.DEBUG)
                    continue
                self.ingest(event)

    async def _replay(self):
        """Fill the gap left by a dropped connection (best effort)."""
        try:
            events = await self.api_client.fetch_usage_events(
                since_seq=self.last_seen_seq,
                limit=self.replay_limit,
            )
        except (APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            log_with_timestamp(f"Replay failed: {e}", _PREFIX, logging.DEBUG)
            return
        accepted = sum(1 for event in events if self.ingest(event))
        if events:
            log_with_timestamp(f"Replayed {len(events)} events ({accepted} new)", _PREFIX, logging.DEBUG)

    def start(self) -> asyncio.Task:
        """Run the session in a background task (no-op while one is running)."""
        if self._task is not None and not self._task.done():
            return self._task
        self._token = CancellationToken()
        self._task = asyncio.create_task(self.run(self._token))
        return self._task

    def cancel(self):
        """Signal the running loop to stop at its next check."""
        if self._token is not None:
            self._token.cancel()

    async def stop(self):
        """Cancel and wait for the background task to finish."""
        self.cancel()
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        # A quiet stream only notices the token on the next line.
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
