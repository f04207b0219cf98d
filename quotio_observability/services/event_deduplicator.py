"""Realtime event deduplication and resume-cursor tracking."""

from typing import Optional, Set

from ..models.usage_history import SSERequestEvent


def dedupe_key(event: SSERequestEvent) -> str:
    """Request id when present, else ``timestamp|model|type``."""
    return event.dedupe_key


def should_accept(event: SSERequestEvent, seen_keys: Set[str]) -> bool:
    """Accept an event the first time its key is seen, recording the key."""
    key = dedupe_key(event)
    if key in seen_keys:
        return False
    seen_keys.add(key)
    return True


class EventDeduplicator:
    """Filters re-delivered events and remembers the highest sequence seen.

    The same event can arrive twice: once live and once through a replay after
    a reconnect. ``last_seen_seq`` advances for every event carrying a larger
    ``seq``, duplicates included, so the resume cursor never lags behind what
    the server has already sent.
    """

    def __init__(self, max_keys: Optional[int] = None):
        self.seen_keys: Set[str] = set()
        self.last_seen_seq: int = 0
        self.max_keys = max_keys

    def observe_seq(self, event: SSERequestEvent):
        if event.seq is not None and event.seq > self.last_seen_seq:
            self.last_seen_seq = event.seq

    def ingest(self, event: SSERequestEvent) -> bool:
        """Track the cursor, then return whether the event is new."""
        self.observe_seq(event)
        return should_accept(event, self.seen_keys)

    def reset(self):
        self.seen_keys.clear()
        self.last_seen_seq = 0
