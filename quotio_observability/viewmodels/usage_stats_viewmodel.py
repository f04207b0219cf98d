"""
UsageStatsViewModel - Data flow of the usage statistics screen.

WORKFLOW OVERVIEW:
==================
1. Loading:
   - load_stats() fetches aggregate stats and the latest 50 history items
     concurrently
   - Polling reloads every 10 seconds, except while the realtime tab is shown

2. Realtime tab:
   - Selecting the tab starts a RealtimeStreamSession; leaving it ends the
     session (the stream's context predicate is "realtime tab selected")
   - Events are deduplicated by the session and appended here

3. Drill-down:
   - focus_on_request_history() / focus_on_realtime_event() set the shared
     focus on the coordinator and switch to the logs page

4. Backup:
   - export_stats(path) / import_stats(path) with success or failure feedback
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import aiohttp

from ..models.observability import ObservabilityFocusFilter
from ..models.usage_history import RequestHistoryItem, SSERequestEvent
from ..models.usage_stats import APIUsageSnapshot, ModelUsageSnapshot, UsageStats
from ..services.api_client import APIError, parse_json_bytes
from ..services.stream_session import RealtimeStreamSession
from ..utils.log import log_with_timestamp
from .base import UpdateNotifier
from .observability_viewmodel import Feedback, NavigationPage, ObservabilityViewModel

USAGE_POLL_INTERVAL_SECONDS = 10.0
HISTORY_PAGE_SIZE = 50
MAX_REALTIME_EVENTS = 1000

FOCUS_ORIGIN_HISTORY = "usage.history"
FOCUS_ORIGIN_REALTIME = "usage.realtime"


class StatsTab(str, Enum):
    OVERVIEW = "overview"
    BY_ACCOUNT = "byAccount"
    BY_MODEL = "byModel"
    REALTIME = "realtime"


@dataclass
class ModelStatItem:
    model: str
    requests: int
    tokens: int


@dataclass
class UsageStatsViewModel(UpdateNotifier):
    """State and actions of the usage statistics screen."""

    coordinator: ObservabilityViewModel = field(default_factory=ObservabilityViewModel)

    usage_stats: Optional[UsageStats] = None
    request_history: List[RequestHistoryItem] = field(default_factory=list)
    is_loading: bool = False
    error_message: Optional[str] = None
    selected_tab: StatsTab = StatsTab.OVERVIEW
    feedback: Optional[Feedback] = None

    history_success_filter: Optional[bool] = None
    history_search_text: str = ""
    realtime_auto_scroll: bool = True
    sse_events: List[SSERequestEvent] = field(default_factory=list)
    max_realtime_events: int = MAX_REALTIME_EVENTS

    poll_interval: float = USAGE_POLL_INTERVAL_SECONDS
    stream_backoff: float = 1.0

    _stream_session: Optional[RealtimeStreamSession] = field(default=None, init=False, repr=False)
    _polling_active: bool = field(default=False, init=False, repr=False)
    _polling_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    @property
    def api_client(self):
        return self.coordinator.api_client

    # Loading

    async def load_stats(self):
        """Fetch aggregate stats and recent history together."""
        self.is_loading = True
        self.error_message = None

        if self.api_client is None:
            self.error_message = "API client not available"
            self.is_loading = False
            self._notify_updated()
            return

        try:
            stats, history = await asyncio.gather(
                self.api_client.fetch_usage_stats(),
                self.api_client.fetch_request_history(limit=HISTORY_PAGE_SIZE),
            )
        except (APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.error_message = str(e)
            log_with_timestamp(f"Failed to load stats: {e}", self.log_prefix, logging.WARNING)
        else:
            self.usage_stats = stats
            self.request_history = history.requests
        finally:
            self.is_loading = False
        self._notify_updated()

    async def manual_refresh_stats(self):
        await self.load_stats()
        error = (self.error_message or "").strip()
        if error:
            self.show_feedback(f"Stats refresh failed: {error}", is_error=True)
            return
        self.show_feedback("Stats refreshed")

    def start_polling(self):
        """Reload stats every 10 seconds while not on the realtime tab."""
        if self._polling_active:
            return
        self._polling_active = True
        log_with_timestamp(f"Starting usage stats polling ({self.poll_interval:g}s interval)", self.log_prefix)

        async def poll_loop():
            while self._polling_active:
                await asyncio.sleep(self.poll_interval)
                if self.selected_tab is not StatsTab.REALTIME:
                    await self.load_stats()

        self._polling_task = asyncio.create_task(poll_loop())

    async def stop_polling(self):
        self._polling_active = False
        task = self._polling_task
        self._polling_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # Realtime

    @property
    def stream_session(self) -> Optional[RealtimeStreamSession]:
        return self._stream_session

    @property
    def is_stream_connected(self) -> bool:
        return bool(self._stream_session and self._stream_session.connected)

    async def select_tab(self, tab: StatsTab):
        """Switch tabs; the realtime stream runs only while its tab is selected."""
        self.selected_tab = tab
        if tab is StatsTab.REALTIME:
            self.start_realtime()
        else:
            await self.stop_realtime()
        self._notify_updated()

    def _ensure_stream_session(self) -> RealtimeStreamSession:
        if self._stream_session is None or self._stream_session.api_client is not self.api_client:
            self._stream_session = RealtimeStreamSession(
                self.api_client,
                on_event=self._append_realtime_event,
                is_context_valid=lambda: self.selected_tab is StatsTab.REALTIME,
                backoff_seconds=self.stream_backoff,
            )
        return self._stream_session

    def start_realtime(self) -> Optional[asyncio.Task]:
        if self.api_client is None:
            log_with_timestamp("API client not available for realtime stream", self.log_prefix, logging.WARNING)
            return None
        return self._ensure_stream_session().start()

    async def stop_realtime(self):
        if self._stream_session is not None:
            await self._stream_session.stop()

    def ingest_realtime_event(self, event: SSERequestEvent) -> bool:
        """Route an event through the session's deduplicator."""
        return self._ensure_stream_session().ingest(event)

    def _append_realtime_event(self, event: SSERequestEvent):
        self.sse_events.append(event)
        if len(self.sse_events) > self.max_realtime_events:
            # Keys of evicted events stay in the deduplicator.
            self.sse_events = self.sse_events[-self.max_realtime_events:]
        self._notify_updated()

    @property
    def realtime_display_events(self) -> List[SSERequestEvent]:
        return list(reversed(self.sse_events)) if self.realtime_auto_scroll else list(self.sse_events)

    # History

    @property
    def filtered_request_history(self) -> List[RequestHistoryItem]:
        query = self.history_search_text.strip().lower()
        result = []
        for item in self.request_history:
            if self.history_success_filter is not None and item.success != self.history_success_filter:
                continue
            if query and not any(
                query in (value or "").lower()
                for value in (item.model, item.auth_index, item.source, item.request_id)
            ):
                continue
            result.append(item)
        return result

    # Drill-down

    def focus_on_request_history(self, item: RequestHistoryItem) -> bool:
        if not self.coordinator.feature_flags.enhanced_observability:
            return False
        self.coordinator.set_focus(ObservabilityFocusFilter(
            request_id=item.request_id,
            model=item.model,
            account=item.auth_index,
            source=item.source,
            timestamp=item.date,
            origin=FOCUS_ORIGIN_HISTORY,
        ))
        self.coordinator.current_page = NavigationPage.LOGS
        return True

    def focus_on_realtime_event(self, event: SSERequestEvent) -> bool:
        if not self.coordinator.feature_flags.enhanced_observability:
            return False
        self.coordinator.set_focus(ObservabilityFocusFilter(
            request_id=event.request_id,
            model=event.model,
            account=event.auth_file,
            source=event.source,
            timestamp=event.date,
            origin=FOCUS_ORIGIN_REALTIME,
        ))
        self.coordinator.current_page = NavigationPage.LOGS
        return True

    # Aggregations

    def extract_model_stats(self) -> List[ModelStatItem]:
        apis = self.usage_stats.usage.apis if self.usage_stats and self.usage_stats.usage else None
        if not apis:
            return []

        model_data: Dict[str, List[int]] = {}
        for api_stats in apis.values():
            for model_name, model_stats in (api_stats.models or {}).items():
                bucket = model_data.setdefault(model_name, [0, 0])
                bucket[0] += model_stats.total_requests or 0
                bucket[1] += model_stats.total_tokens or 0

        return [ModelStatItem(model=name, requests=r, tokens=t) for name, (r, t) in model_data.items()]

    def extract_account_stats(self) -> List[Tuple[str, APIUsageSnapshot]]:
        """Per-account usage, sorted by request count (descending).

        Request-level details are attributed by auth index; snapshots without
        details fall back to the API key bucket totals.
        """
        apis = self.usage_stats.usage.apis if self.usage_stats and self.usage_stats.usage else None
        if not apis:
            return []

        buckets: Dict[str, Dict] = {}

        def add(account: str, model: str, requests: int, tokens: int):
            bucket = buckets.setdefault(account, {"requests": 0, "tokens": 0, "models": {}})
            bucket["requests"] += requests
            bucket["tokens"] += tokens
            model_bucket = bucket["models"].setdefault(model, [0, 0])
            model_bucket[0] += requests
            model_bucket[1] += tokens

        for api_key, api_stats in apis.items():
            for model_name, model_stats in (api_stats.models or {}).items():
                if model_stats.details:
                    for detail in model_stats.details:
                        account = (detail.auth_index or "").strip() or api_key
                        tokens = detail.tokens.total_tokens if detail.tokens else None
                        add(account, model_name, 1, tokens or 0)
                    continue
                add(api_key, model_name, model_stats.total_requests or 0, model_stats.total_tokens or 0)

        result = [
            (
                account,
                APIUsageSnapshot(
                    total_requests=bucket["requests"],
                    total_tokens=bucket["tokens"],
                    models={
                        name: ModelUsageSnapshot(total_requests=r, total_tokens=t)
                        for name, (r, t) in bucket["models"].items()
                    },
                ),
            )
            for account, bucket in buckets.items()
        ]
        result.sort(key=lambda pair: pair[1].total_requests or 0, reverse=True)
        return result

    # Backup

    def show_feedback(self, message: str, is_error: bool = False):
        self.feedback = Feedback(message=message, is_error=is_error)
        log_with_timestamp(message, self.log_prefix, logging.WARNING if is_error else logging.INFO)
        self._notify_updated()

    async def export_stats(self, path: Path) -> bool:
        if self.api_client is None:
            self.show_feedback("Export failed: API service unavailable", is_error=True)
            return False
        try:
            data = await self.api_client.export_usage_stats()
            path.write_bytes(data)
        except (APIError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self.show_feedback(f"Export failed: {e}", is_error=True)
            return False
        self.show_feedback(f"Stats exported: {path.name}")
        return True

    async def import_stats(self, path: Path) -> bool:
        """Import a backup, then reload; a failed reload is reported as a partial import."""
        if self.api_client is None:
            self.show_feedback("Import failed: API service unavailable", is_error=True)
            return False
        try:
            data = path.read_bytes()
            parse_json_bytes(data)
            await self.api_client.import_usage_stats(data)
        except (APIError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self.error_message = str(e)
            self.show_feedback(f"Import failed: {e}", is_error=True)
            return False

        await self.load_stats()
        error = (self.error_message or "").strip()
        if error:
            self.show_feedback(f"Import completed, but refresh failed: {error}", is_error=True)
        else:
            self.show_feedback(f"Stats imported: {path.name}")
        return True
