"""Cross-screen focus state for observability drill-down."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class ObservabilityFocusFilter:
    """What the user is drilling into.

    Set by the usage screen (history row or realtime event) and consumed by the
    logs screen. Every field is optional; the request id is authoritative when
    present.
    """
    request_id: Optional[str] = None
    model: Optional[str] = None
    account: Optional[str] = None
    source: Optional[str] = None
    timestamp: Optional[datetime] = None
    origin: str = ""

    @property
    def is_empty(self) -> bool:
        return not any(
            value and value.strip()
            for value in (self.request_id, self.model, self.account, self.source)
        ) and self.timestamp is None
