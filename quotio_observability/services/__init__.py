"""Services layer for Quotio observability."""

from .api_client import APIError, ManagementAPIClient
from .correlation import Correlation, CorrelationEngine
from .event_deduplicator import EventDeduplicator, dedupe_key, should_accept
from .evidence_index import EvidenceIndex
from .focus_filter import apply_focus, apply_relaxed, apply_strict, is_generic_focus_source
from .request_tracker import RequestTracker
from .stream_session import CancellationToken, RealtimeStreamSession, StreamState

__all__ = [
    "APIError",
    "ManagementAPIClient",
    "Correlation",
    "CorrelationEngine",
    "EventDeduplicator",
    "dedupe_key",
    "should_accept",
    "EvidenceIndex",
    "apply_focus",
    "apply_relaxed",
    "apply_strict",
    "is_generic_focus_source",
    "RequestTracker",
    "CancellationToken",
    "RealtimeStreamSession",
    "StreamState",
]
