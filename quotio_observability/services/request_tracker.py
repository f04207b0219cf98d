"""Request tracking service for API request logging and analytics."""

import json
import logging
import platform
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models.auth import AuthFile
from ..models.request_log import FallbackAttempt, RequestLog, RequestStats
from ..utils.dates import to_utc
from ..utils.log import log_with_timestamp

MAX_STORED_REQUESTS = 1000
MAX_MEMORY_REQUESTS = 200
AUDIT_RECENT_ERRORS = 200
AUDIT_RECENT_REQUESTS = 300

_PREFIX = "[RequestTracker]"


def default_storage_path() -> Path:
    """Get storage file path."""
    system = platform.system()
    if system == "Darwin":  # macOS
        app_support = Path.home() / "Library" / "Application Support"
    elif system == "Windows":
        app_support = Path.home() / "AppData" / "Local"
    else:  # Linux
        app_support = Path.home() / ".local" / "share"
    return app_support / "Quotio-Python" / "request-history.json"


class RequestTracker:
    """Service for tracking API request history with persistence.

    Two bounded views of the same history are kept: the on-disk store (the
    newest ``MAX_STORED_REQUESTS`` entries) and the in-memory window shown by
    the logs screen (the newest ``MAX_MEMORY_REQUESTS``). Both are newest
    first and evict the oldest entries.
    """

    def __init__(
        self,
        storage_path: Optional[Path] = None,
        persist: bool = True,
        memory_limit: int = MAX_MEMORY_REQUESTS,
        store_limit: int = MAX_STORED_REQUESTS,
    ):
        """Initialize the request tracker."""
        self.request_history: List[RequestLog] = []
        self._stored: List[RequestLog] = []
        self.is_active = False
        self.last_error: Optional[str] = None
        self.memory_limit = memory_limit
        self.store_limit = store_limit
        self.persist = persist

        # Storage
        self._storage_path = storage_path or default_storage_path()
        if self.persist:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    @property
    def stats(self) -> RequestStats:
        """Aggregate statistics over the in-memory window (recomputed on every read)."""
        return RequestStats.from_requests(self.request_history)

    @property
    def stored_count(self) -> int:
        return len(self._stored)

    def start(self):
        """Start tracking (called when proxy starts)."""
        self.is_active = True
        log_with_timestamp("Started tracking", _PREFIX)

    def stop(self):
        """Stop tracking (called when proxy stops)."""
        self.is_active = False
        log_with_timestamp("Stopped tracking", _PREFIX)

    def add_request(
        self,
        method: str,
        endpoint: str,
        request_id: Optional[str] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        source: Optional[str] = None,
        source_raw: Optional[str] = None,
        account_hint: Optional[str] = None,
        request_payload_snippet: Optional[str] = None,
        resolved_model: Optional[str] = None,
        resolved_provider: Optional[str] = None,
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
        duration_ms: Optional[int] = None,
        status_code: Optional[int] = None,
        request_size: Optional[int] = None,
        response_size: Optional[int] = None,
        error_message: Optional[str] = None,
        fallback_attempts: Optional[List[FallbackAttempt]] = None,
        fallback_started_from_cache: bool = False,
        timestamp: Optional[datetime] = None,
    ) -> RequestLog:
        """Add a request entry."""
        entry = RequestLog(
            timestamp=timestamp or datetime.now(),
            method=method,
            endpoint=endpoint,
            request_id=request_id,
            provider=provider,
            model=model,
            source=source,
            source_raw=source_raw,
            account_hint=account_hint,
            request_payload_snippet=request_payload_snippet,
            resolved_model=resolved_model,
            resolved_provider=resolved_provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
            status_code=status_code,
            request_size=request_size,
            response_size=response_size,
            error_message=error_message,
            fallback_attempts=fallback_attempts,
            fallback_started_from_cache=fallback_started_from_cache,
        )
        self.add_entry(entry)
        return entry

    def add_entry(self, entry: RequestLog):
        """Add entry (newest first) and persist."""
        self._stored.insert(0, entry)
        if len(self._stored) > self.store_limit:
            self._stored = self._stored[:self.store_limit]

        self.request_history.insert(0, entry)
        if len(self.request_history) > self.memory_limit:
            self.request_history = self.request_history[:self.memory_limit]

        self._save_to_disk()

    def clear_history(self):
        """Clear all history."""
        self.request_history = []
        self._stored = []
        self._save_to_disk()

    def requests_for_provider(self, provider: str) -> List[RequestLog]:
        """Get requests filtered by provider."""
        return [r for r in self.request_history if r.provider == provider]

    def recent_requests(self, minutes: int = 60) -> List[RequestLog]:
        """Get requests from last N minutes."""
        cutoff = to_utc(datetime.now()) - timedelta(minutes=minutes)
        return [r for r in self.request_history if to_utc(r.timestamp) >= cutoff]

    def _load_from_disk(self):
        """Load history from disk. A corrupt file is removed."""
        if not self._storage_path.exists():
            return

        try:
            with open(self._storage_path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            log_with_timestamp(f"Corrupt history file, removing: {e}", _PREFIX, logging.WARNING)
            self.last_error = str(e)
            self._storage_path.unlink(missing_ok=True)
            return

        raw_entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(raw_entries, list):
            raw_entries = []

        entries = []
        for entry_dict in raw_entries:
            try:
                entries.append(RequestLog.from_dict(entry_dict))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                log_with_timestamp(f"Error loading entry: {e}", _PREFIX, logging.DEBUG)
                continue

        self._stored = entries[:self.store_limit]
        self.request_history = self._stored[:self.memory_limit]
        log_with_timestamp(f"Loaded {len(self._stored)} entries from disk", _PREFIX)

    def _save_to_disk(self):
        """Save history to disk."""
        if not self.persist:
            return
        data = {
            "entries": [entry.to_dict() for entry in self._stored[:self.store_limit]],
            "last_updated": datetime.now().isoformat(),
        }
        try:
            with open(self._storage_path, "w") as f:
                json.dump(data, f, indent=2)
            self.last_error = None
        except OSError as e:
            self.last_error = str(e)
            log_with_timestamp(f"Error saving to disk: {e}", _PREFIX, logging.WARNING)

    def export_audit_package_data(
        self,
        auth_files: Optional[List[AuthFile]] = None,
        settings_snapshot: Optional[Dict[str, str]] = None,
    ) -> bytes:
        """Serialize a support/audit bundle.

        Contains the in-memory statistics, the most recent failed and overall
        requests, a settings snapshot and the state of every configured
        account. Keys are sorted so two exports of the same state are equal.
        """
        package: Dict[str, Any] = {
            "exportedAt": datetime.now().astimezone().isoformat(),
            "requestCountInMemory": len(self.request_history),
            "requestCountOnDisk": len(self._stored),
            "stats": self.stats.to_dict(),
            "recentErrors": [
                entry.to_dict() for entry in self._stored if not entry.is_success
            ][:AUDIT_RECENT_ERRORS],
            "recentRequests": [entry.to_dict() for entry in self.request_history[:AUDIT_RECENT_REQUESTS]],
            "settingsSnapshot": dict(settings_snapshot or {}),
            "authEvidence": [
                {
                    "id": auth.id,
                    "provider": auth.provider,
                    "account": auth.account or auth.email,
                    "authIndex": auth.auth_index,
                    "status": auth.status,
                    "disabled": auth.disabled,
                    "unavailable": auth.unavailable,
                    "errorKind": auth.normalized_error_kind,
                    "errorReason": auth.error_reason or auth.human_readable_status,
                    "frozenUntil": auth.frozen_until,
                    "disabledByPolicy": auth.disabled_by_policy,
                    "ready": auth.is_ready,
                }
                for auth in (auth_files or [])
            ],
        }
        return json.dumps(package, indent=2, sort_keys=True).encode("utf-8")
