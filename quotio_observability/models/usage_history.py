"""Usage history evidence and realtime usage events.

RequestHistoryItem is the server-polled record of a request ("evidence"),
SSERequestEvent is the server-pushed notification for the same request.
Neither carries a guaranteed identifier, so both expose derived identity keys.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from ..utils.dates import parse_iso_date


def _text(value) -> str:
    return "" if value is None else str(value)


class RequestHistoryItem(BaseModel):
    """One entry of the proxy's /usage/history batch."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    timestamp: Optional[str] = None
    request_id: Optional[str] = None
    api_key: Optional[str] = None
    model: Optional[str] = None
    auth_index: Optional[str] = None
    source: Optional[str] = None
    success: Optional[bool] = None
    tokens: Optional[int] = None

    @property
    def id(self) -> str:
        """Request id, or a composite of every field when the server sent none."""
        if self.request_id and self.request_id.strip():
            return self.request_id
        success = "" if self.success is None else str(self.success).lower()
        return "|".join([
            _text(self.timestamp),
            _text(self.auth_index),
            _text(self.model),
            _text(self.source),
            _text(self.api_key),
            _text(self.tokens),
            success,
        ])

    @property
    def date(self) -> Optional[datetime]:
        return parse_iso_date(self.timestamp)


class RequestHistoryResponse(BaseModel):
    """Response of /usage/history."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    requests: List[RequestHistoryItem] = []
    total: Optional[int] = None


class SSERequestEvent(BaseModel):
    """Realtime usage event pushed over /usage/stream (or replayed from /usage/events)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str = "request"
    seq: Optional[int] = None
    event_id: Optional[str] = None
    timestamp: Optional[str] = None
    request_id: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    auth_file: Optional[str] = None
    source: Optional[str] = None
    success: Optional[bool] = None
    tokens: Optional[int] = None
    latency_ms: Optional[int] = None
    error: Optional[str] = None

    @property
    def dedupe_key(self) -> str:
        """Identity used to reject re-delivered events.

        The request id wins when present; otherwise timestamp, model and type
        approximate identity for events that carry no stable id.
        """
        if self.request_id and self.request_id.strip():
            return self.request_id
        return f"{_text(self.timestamp)}|{_text(self.model)}|{self.type}"

    @property
    def date(self) -> Optional[datetime]:
        return parse_iso_date(self.timestamp)


class UsageEventsResponse(BaseModel):
    """Response of /usage/events (replay/gap-fill)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    events: List[SSERequestEvent] = []
