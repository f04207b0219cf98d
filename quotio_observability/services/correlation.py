"""Correlates locally observed requests with server evidence and accounts.

Three sources describe the same request without a shared key: the local
request tracker, the polled usage history and the configured auth files.
Matching is exact where ids exist and heuristic otherwise; a miss yields
None, never an error.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional

from ..models.auth import AuthFile
from ..models.request_log import RequestLog
from ..models.usage_history import RequestHistoryItem
from .evidence_index import EvidenceIndex


@dataclass(frozen=True)
class Correlation:
    """Evidence and account resolved for one request."""
    request: RequestLog
    evidence: Optional[RequestHistoryItem] = None
    auth: Optional[AuthFile] = None


class CorrelationEngine:
    """Joins RequestLog records against the evidence index and auth files."""

    def __init__(
        self,
        evidence_index: EvidenceIndex,
        auth_files: Optional[Callable[[], List[AuthFile]]] = None,
    ):
        self.evidence_index = evidence_index
        self._auth_files = auth_files or (lambda: [])

    def usage_evidence(self, request: RequestLog) -> Optional[RequestHistoryItem]:
        """Evidence by request id, else the first close-in-time item with the same model and outcome."""
        if request.request_id:
            direct = self.evidence_index.lookup(request.request_id)
            if direct is not None:
                return direct
        return self.evidence_index.lookup_approximate(
            request.model,
            request.timestamp,
            request.is_success,
        )

    def auth_evidence(
        self,
        request: RequestLog,
        usage_evidence: Optional[RequestHistoryItem] = None,
    ) -> Optional[AuthFile]:
        """Best auth file for the request.

        Candidates are narrowed by provider, then matched against the account
        hint (or the evidence auth index): exact auth index, exact account,
        then substring of auth index, account or email. With no hint match the
        first remaining candidate is returned, which may be the wrong account
        when several share a provider.
        """
        candidates = list(self._auth_files())
        provider = (request.provider or "").strip().lower()
        if provider:
            candidates = [auth for auth in candidates if auth.provider.lower() == provider]

        hint = request.account_hint
        if hint is None and usage_evidence is not None:
            hint = usage_evidence.auth_index
        hint = (hint or "").strip()

        if hint:
            lowered = hint.lower()
            for auth in candidates:
                if (auth.auth_index or "").lower() == lowered:
                    return auth
            for auth in candidates:
                if (auth.account or "").lower() == lowered:
                    return auth
            for auth in candidates:
                if (
                    lowered in (auth.auth_index or "").lower()
                    or lowered in (auth.account or "").lower()
                    or lowered in (auth.email or "").lower()
                ):
                    return auth

        return candidates[0] if candidates else None

    def correlate(self, request: RequestLog) -> Correlation:
        evidence = self.usage_evidence(request)
        return Correlation(
            request=request,
            evidence=evidence,
            auth=self.auth_evidence(request, evidence),
        )
