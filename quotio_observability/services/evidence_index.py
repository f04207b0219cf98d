"""Usage-history evidence index.

Holds the most recently fetched batch of usage history items and a by-id map
built from the same batch. Both are swapped together so readers never observe
a list from one refresh and a map from another.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import aiohttp

from ..models.usage_history import RequestHistoryItem
from ..utils.dates import seconds_between
from ..utils.log import log_with_timestamp
from .api_client import APIError

# Evidence and local request clocks are independent; 3s absorbs the skew.
APPROXIMATE_MATCH_TOLERANCE_SECONDS = 3.0
DEFAULT_EVIDENCE_LIMIT = 300


class EvidenceIndex:
    """Read-mostly snapshot of /usage/history, replaced wholesale on refresh."""

    def __init__(self):
        self._snapshot: Tuple[List[RequestHistoryItem], Dict[str, RequestHistoryItem]] = ([], {})
        self._lock = asyncio.Lock()
        self.last_error: Optional[str] = None
        self.last_refreshed_at: Optional[datetime] = None

    @property
    def items(self) -> List[RequestHistoryItem]:
        return self._snapshot[0]

    @property
    def by_id(self) -> Dict[str, RequestHistoryItem]:
        return self._snapshot[1]

    def replace(self, items: List[RequestHistoryItem]):
        """Install a new batch, indexed by request id where the server sent one."""
        by_id: Dict[str, RequestHistoryItem] = {}
        for item in items:
            if item.request_id:
                by_id[item.request_id] = item
        self._snapshot = (list(items), by_id)

    async def refresh(self, api_client, limit: int = DEFAULT_EVIDENCE_LIMIT) -> bool:
        """Fetch the latest evidence batch.

        Refreshes are serialized. On failure the previous index stays in place,
        ``last_error`` is set and False is returned.
        """
        async with self._lock:
            try:
                response = await api_client.fetch_request_history(limit=limit)
            except (APIError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                self.last_error = str(e)
                log_with_timestamp(f"Evidence refresh failed: {e}", "[EvidenceIndex]", logging.WARNING)
                return False
            self.replace(response.requests)
            self.last_error = None
            self.last_refreshed_at = datetime.now()
            return True

    def lookup(self, request_id: Optional[str]) -> Optional[RequestHistoryItem]:
        """Exact, case-sensitive lookup by evidence id."""
        if not request_id:
            return None
        return self.by_id.get(request_id)

    def lookup_approximate(
        self,
        model: Optional[str],
        timestamp: datetime,
        success: bool,
    ) -> Optional[RequestHistoryItem]:
        """First item with the same model and outcome within the clock tolerance."""
        wanted_model = model or ""
        for item in self.items:
            if (item.model or "") != wanted_model:
                continue
            if item.success is None or item.success != success:
                continue
            item_date = item.date
            if item_date is None:
                continue
            if seconds_between(item_date, timestamp) <= APPROXIMATE_MATCH_TOLERANCE_SECONDS:
                return item
        return None

    def sources(self) -> List[str]:
        """Distinct non-empty evidence sources."""
        return sorted({item.source.strip() for item in self.items if item.source and item.source.strip()})
