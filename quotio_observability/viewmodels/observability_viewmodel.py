"""
ObservabilityViewModel - Shared coordinator for request observability.

WORKFLOW OVERVIEW:
==================
Owns the state that the usage screen and the logs screen share:
- The current focus filter (set by one screen, consumed by the other)
- The usage-history evidence index and the correlation engine
- The local request tracker and the configured auth files
- The logs screen polling loop

KEY WORKFLOWS:
1. Drill-down:
   - Usage screen calls set_focus() and switches current_page to LOGS
   - filtered_requests() applies the focus (strict, else relaxed) last in
     its pipeline, only while enhanced observability is enabled

2. Logs screen polling (every 2 seconds):
   - Proxy logs tab: refresh proxy log lines
   - Requests tab: refresh evidence, at most once every 5 seconds

3. Tab actions:
   - refresh_current_tab() / clear_current_tab() report through feedback
   - export_request_audit_package() writes the audit bundle to a file
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import aiohttp

from ..models.auth import AuthFile
from ..models.logs import LogEntry
from ..models.observability import ObservabilityFocusFilter
from ..models.request_log import RequestLog, RequestStats, RequestStatusFilter
from ..models.usage_history import RequestHistoryItem
from ..services.api_client import APIError, ManagementAPIClient
from ..services.correlation import CorrelationEngine
from ..services.evidence_index import DEFAULT_EVIDENCE_LIMIT, EvidenceIndex
from ..services.focus_filter import apply_focus
from ..services.request_tracker import RequestTracker
from ..utils.feature_flags import FeatureFlagManager
from ..utils.log import log_with_timestamp
from .base import UpdateNotifier
from .logs_viewmodel import LogFilterCriteria, LogsViewModel

LOGS_POLL_INTERVAL_SECONDS = 2.0
EVIDENCE_REFRESH_THROTTLE_SECONDS = 5.0


class NavigationPage(str, Enum):
    """Top-level screens the coordinator can switch between."""
    DASHBOARD = "dashboard"
    USAGE_STATS = "usageStats"
    LOGS = "logs"


class LogsTab(str, Enum):
    REQUESTS = "requests"
    PROXY_LOGS = "proxyLogs"


@dataclass
class Feedback:
    """Transient status line shown after a user action."""
    message: str
    is_error: bool = False
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class RequestFilterCriteria:
    """Requests tab filters. Unset fields impose no constraint."""
    provider: Optional[str] = None
    source: Optional[str] = None
    status: RequestStatusFilter = RequestStatusFilter.ALL
    fallback_only: bool = False
    search_text: str = ""


def _contains(value: Optional[str], needle: str) -> bool:
    return bool(value) and needle in value.lower()


@dataclass
class ObservabilityViewModel(UpdateNotifier):
    """Focus owner and request filtering pipeline for the logs screen."""

    api_client: Optional[ManagementAPIClient] = None
    request_tracker: RequestTracker = field(default_factory=RequestTracker)
    feature_flags: FeatureFlagManager = field(default_factory=FeatureFlagManager)
    evidence_index: EvidenceIndex = field(default_factory=EvidenceIndex)
    logs_viewmodel: LogsViewModel = field(default_factory=LogsViewModel)

    auth_files: List[AuthFile] = field(default_factory=list)
    current_page: NavigationPage = NavigationPage.DASHBOARD
    selected_logs_tab: LogsTab = LogsTab.REQUESTS
    feedback: Optional[Feedback] = None

    poll_interval: float = LOGS_POLL_INTERVAL_SECONDS
    evidence_throttle: float = EVIDENCE_REFRESH_THROTTLE_SECONDS

    _focus: Optional[ObservabilityFocusFilter] = field(default=None, init=False, repr=False)
    _last_evidence_refresh: Optional[float] = field(default=None, init=False, repr=False)
    _polling_active: bool = field(default=False, init=False, repr=False)
    _polling_task: Optional[asyncio.Task] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        self.correlation = CorrelationEngine(self.evidence_index, lambda: self.auth_files)
        if self.logs_viewmodel.api_client is None:
            self.logs_viewmodel.api_client = self.api_client

    # Focus

    def set_focus(self, focus: Optional[ObservabilityFocusFilter]):
        """Replace the current focus (None clears it)."""
        self._focus = focus
        if focus is not None:
            log_with_timestamp(f"Focus set from {focus.origin or 'unknown'}", self.log_prefix, logging.DEBUG)
        self._notify_updated()

    def current_focus(self) -> Optional[ObservabilityFocusFilter]:
        return self._focus

    def clear_focus(self):
        self.set_focus(None)

    # Correlation

    def usage_evidence(self, request: RequestLog) -> Optional[RequestHistoryItem]:
        return self.correlation.usage_evidence(request)

    def auth_evidence(
        self,
        request: RequestLog,
        usage_evidence: Optional[RequestHistoryItem] = None,
    ) -> Optional[AuthFile]:
        return self.correlation.auth_evidence(request, usage_evidence)

    # Requests tab

    def filtered_requests(self, criteria: Optional[RequestFilterCriteria] = None) -> List[RequestLog]:
        """Apply provider, source, status, fallback, search and focus filters, in that order."""
        criteria = criteria or RequestFilterCriteria()
        requests = list(self.request_tracker.request_history)

        # Evidence lookups repeat across stages; resolve each request once.
        evidence_cache: Dict[str, Optional[RequestHistoryItem]] = {}

        def evidence_for(request: RequestLog) -> Optional[RequestHistoryItem]:
            if request.id not in evidence_cache:
                evidence_cache[request.id] = self.correlation.usage_evidence(request)
            return evidence_cache[request.id]

        if criteria.provider:
            requests = [r for r in requests if r.provider == criteria.provider]

        if criteria.source:
            def observed_source(request: RequestLog) -> Optional[str]:
                if request.source is not None:
                    return request.source
                evidence = evidence_for(request)
                return evidence.source if evidence else None

            requests = [r for r in requests if observed_source(r) == criteria.source]

        if criteria.status is not RequestStatusFilter.ALL:
            requests = [r for r in requests if criteria.status.matches(r.status_code)]

        if criteria.fallback_only:
            requests = [r for r in requests if r.has_fallback_route or r.fallback_attempts]

        search = criteria.search_text.strip().lower()
        if search:
            requests = [r for r in requests if self._matches_search(r, search, evidence_for(r))]

        focus = self._focus
        if focus is not None and self.feature_flags.enhanced_observability:
            requests = apply_focus(requests, focus, evidence_for)

        return requests

    def _matches_search(
        self,
        request: RequestLog,
        search: str,
        evidence: Optional[RequestHistoryItem],
    ) -> bool:
        if any(
            _contains(value, search)
            for value in (
                request.provider,
                request.model,
                request.endpoint,
                request.source,
                request.account_hint,
                request.request_id,
                request.request_payload_snippet,
            )
        ):
            return True
        auth = self.correlation.auth_evidence(request, evidence)
        if auth is None:
            return False
        return _contains(auth.normalized_error_kind, search) or _contains(auth.error_reason, search)

    def available_request_sources(self) -> List[str]:
        """Sources seen directly on requests or in the evidence batch."""
        direct = {r.source for r in self.request_tracker.request_history if r.source}
        evidence = {item.source for item in self.evidence_index.items if item.source}
        return sorted(direct | evidence)

    def stats(self) -> RequestStats:
        return self.request_tracker.stats

    # Proxy logs tab

    def filtered_logs(self, criteria: Optional[LogFilterCriteria] = None) -> List[LogEntry]:
        return self.logs_viewmodel.filtered_logs(criteria or LogFilterCriteria())

    # Evidence

    async def refresh_usage_history_evidence(self, force: bool = False) -> bool:
        """Refresh the evidence index, throttled unless forced.

        Returns whether a refresh ran and succeeded.
        """
        if self.api_client is None:
            return False
        now = time.monotonic()
        if (
            not force
            and self._last_evidence_refresh is not None
            and now - self._last_evidence_refresh <= self.evidence_throttle
        ):
            return False
        self._last_evidence_refresh = now
        ok = await self.evidence_index.refresh(self.api_client, limit=DEFAULT_EVIDENCE_LIMIT)
        self._notify_updated()
        return ok

    async def refresh_auth_files(self) -> bool:
        if self.api_client is None:
            return False
        try:
            self.auth_files = await self.api_client.fetch_auth_files()
        except (APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            log_with_timestamp(f"Failed to refresh auth files: {e}", self.log_prefix, logging.WARNING)
            return False
        self._notify_updated()
        return True

    # Polling

    async def poll_once(self):
        """One tick of the logs screen loop."""
        if self.selected_logs_tab is LogsTab.PROXY_LOGS:
            await self.logs_viewmodel.refresh_logs()
        elif self.feature_flags.enhanced_observability:
            await self.refresh_usage_history_evidence()

    def start_polling(self):
        """Start the logs screen polling loop (no-op if already running)."""
        if self._polling_active:
            return
        self._polling_active = True
        log_with_timestamp(f"Starting logs polling ({self.poll_interval:g}s interval)", self.log_prefix)

        async def poll_loop():
            while self._polling_active:
                try:
                    await self.poll_once()
                except asyncio.CancelledError:
                    raise
                except (APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                    log_with_timestamp(f"Logs polling error (non-fatal): {e}", self.log_prefix, logging.WARNING)
                await asyncio.sleep(self.poll_interval)

        self._polling_task = asyncio.create_task(poll_loop())

    async def stop_polling(self):
        """Stop the polling loop and wait for it to exit."""
        self._polling_active = False
        task = self._polling_task
        self._polling_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        log_with_timestamp("Stopped logs polling", self.log_prefix)

    @property
    def is_polling(self) -> bool:
        return self._polling_active

    # Tab actions

    def show_feedback(self, message: str, is_error: bool = False):
        self.feedback = Feedback(message=message, is_error=is_error)
        log_with_timestamp(message, self.log_prefix, logging.WARNING if is_error else logging.INFO)
        self._notify_updated()

    async def refresh_current_tab(self):
        if self.selected_logs_tab is LogsTab.REQUESTS:
            if self.feature_flags.enhanced_observability:
                await self.refresh_usage_history_evidence(force=True)
                self.show_feedback("Request evidence refreshed")
            else:
                self.show_feedback("Request logs are captured live by the proxy; no manual refresh needed")
            return

        await self.logs_viewmodel.refresh_logs()
        error = (self.logs_viewmodel.refresh_error or "").strip()
        if error and not self.logs_viewmodel.logs:
            self.show_feedback(f"Log refresh failed: {error}", is_error=True)
            return
        self.show_feedback("Logs refreshed")

    async def clear_current_tab(self):
        if self.selected_logs_tab is LogsTab.REQUESTS:
            cleared = len(self.request_tracker.request_history)
            self.request_tracker.clear_history()
            self.show_feedback(f"Request logs cleared ({cleared})")
            return

        await self.logs_viewmodel.clear_logs()
        error = (self.logs_viewmodel.refresh_error or "").strip()
        if error:
            self.show_feedback(f"Failed to clear logs: {error}", is_error=True)
            return
        self.show_feedback("Proxy logs cleared")

    def export_request_audit_package(self, path: Path) -> bool:
        """Write the request audit bundle to ``path``."""
        try:
            data = self.request_tracker.export_audit_package_data(
                auth_files=self.auth_files,
                settings_snapshot=self.feature_flags.settings.snapshot(),
            )
            path.write_bytes(data)
        except OSError as e:
            self.show_feedback(f"Audit package export failed: {e}", is_error=True)
            return False
        self.show_feedback(f"Audit package exported: {path.name}")
        return True
