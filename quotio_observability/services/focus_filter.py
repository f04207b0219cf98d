"""Focus filtering: narrow a request collection to one logical request.

Strict matching ANDs the focus fields (a request id overrides everything
else). Relaxed matching ORs them and adds a time window; it only runs when
strict matching finds nothing, so a drill-down never lands on an empty list
while any signal still matches.
"""

from datetime import datetime
from typing import Callable, List, Optional

from ..models.observability import ObservabilityFocusFilter
from ..models.request_log import RequestLog
from ..models.usage_history import RequestHistoryItem
from ..utils.dates import seconds_between

EvidenceLookup = Callable[[RequestLog], Optional[RequestHistoryItem]]

GENERIC_FOCUS_SOURCES = frozenset({"realtime", "request", "event", "usage.realtime"})
RELAXED_TIME_WINDOW_SECONDS = 6 * 3600


def is_generic_focus_source(source: str) -> bool:
    """Sources naming the subsystem that set the focus, not a filter value."""
    return source.lower() in GENERIC_FOCUS_SOURCES


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def _contains(haystack: Optional[str], needle: str) -> bool:
    return needle.lower() in (haystack or "").lower()


def _no_evidence(request: RequestLog) -> Optional[RequestHistoryItem]:
    return None


def _observed_model(request: RequestLog, evidence: Optional[RequestHistoryItem]) -> str:
    return request.model or (evidence.model if evidence else None) or ""


def _observed_account(request: RequestLog, evidence: Optional[RequestHistoryItem]) -> str:
    return request.account_hint or (evidence.auth_index if evidence else None) or ""


def _observed_source(request: RequestLog, evidence: Optional[RequestHistoryItem]) -> str:
    return request.source or (evidence.source if evidence else None) or request.provider or ""


def _matches_request_id(request: RequestLog, request_id: str, evidence_for: EvidenceLookup) -> bool:
    wanted = request_id.lower()
    if request.request_id and request.request_id.lower() == wanted:
        return True
    evidence = evidence_for(request)
    return bool(evidence and evidence.request_id and evidence.request_id.lower() == wanted)


def apply_strict(
    requests: List[RequestLog],
    focus: ObservabilityFocusFilter,
    evidence_for: EvidenceLookup = _no_evidence,
) -> List[RequestLog]:
    """Requests matching every present focus field."""
    request_id = _clean(focus.request_id)
    if request_id:
        return [r for r in requests if _matches_request_id(r, request_id, evidence_for)]

    model = _clean(focus.model)
    account = _clean(focus.account)
    source = _clean(focus.source)
    if source and is_generic_focus_source(source):
        source = ""

    def matches(request: RequestLog) -> bool:
        evidence = evidence_for(request)

        if model and not _contains(_observed_model(request, evidence), model):
            return False

        if account:
            observed_account = _observed_account(request, evidence)
            # Requests without any account signal are not excluded.
            if observed_account and not _contains(observed_account, account):
                return False

        if source:
            observed_source = _observed_source(request, evidence)
            if (
                observed_source
                and not _contains(observed_source, source)
                and not _contains(request.endpoint, source)
            ):
                return False

        return True

    return [r for r in requests if matches(r)]


def apply_relaxed(
    requests: List[RequestLog],
    focus: ObservabilityFocusFilter,
    evidence_for: EvidenceLookup = _no_evidence,
) -> List[RequestLog]:
    """Requests matching any focus field, or close in time to the focus."""
    model = _clean(focus.model)
    account = _clean(focus.account)
    source = _clean(focus.source)
    if source and is_generic_focus_source(source):
        source = ""

    def matches(request: RequestLog) -> bool:
        evidence = evidence_for(request)

        if model and _contains(_observed_model(request, evidence), model):
            return True

        if account:
            observed_account = _observed_account(request, evidence)
            if observed_account and _contains(observed_account, account):
                return True

        if focus.timestamp is not None and _within_window(request, evidence, focus.timestamp):
            return True

        if source and (
            _contains(_observed_source(request, evidence), source)
            or _contains(request.endpoint, source)
        ):
            return True

        return False

    return [r for r in requests if matches(r)]


def _within_window(
    request: RequestLog,
    evidence: Optional[RequestHistoryItem],
    timestamp: datetime,
) -> bool:
    delta = seconds_between(request.timestamp, timestamp)
    evidence_date = evidence.date if evidence else None
    if evidence_date is not None:
        delta = min(delta, seconds_between(evidence_date, timestamp))
    return delta <= RELAXED_TIME_WINDOW_SECONDS


def apply_focus(
    requests: List[RequestLog],
    focus: ObservabilityFocusFilter,
    evidence_for: EvidenceLookup = _no_evidence,
) -> List[RequestLog]:
    """Strict matches, or the relaxed matches when strict finds nothing."""
    strict = apply_strict(requests, focus, evidence_for)
    if strict:
        return strict
    return apply_relaxed(requests, focus, evidence_for)
