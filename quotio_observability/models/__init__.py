"""Data models for Quotio observability."""

from .auth import AuthFile, AuthFilesResponse
from .logs import LogEntry, LogLevel, LogsResponse
from .observability import ObservabilityFocusFilter
from .request_log import (
    FallbackAttempt,
    FallbackAttemptOutcome,
    RequestLog,
    RequestStats,
    RequestStatus,
    RequestStatusFilter,
)
from .usage_history import (
    RequestHistoryItem,
    RequestHistoryResponse,
    SSERequestEvent,
    UsageEventsResponse,
)
from .usage_stats import UsageStats, UsageData

__all__ = [
    "AuthFile",
    "AuthFilesResponse",
    "LogEntry",
    "LogLevel",
    "LogsResponse",
    "ObservabilityFocusFilter",
    "FallbackAttempt",
    "FallbackAttemptOutcome",
    "RequestLog",
    "RequestStats",
    "RequestStatus",
    "RequestStatusFilter",
    "RequestHistoryItem",
    "RequestHistoryResponse",
    "SSERequestEvent",
    "UsageEventsResponse",
    "UsageStats",
    "UsageData",
]
