"""Candidate finder - which events start inside a match window."""

import logging
from datetime import datetime
from typing import Protocol

from .errors import StoreUnavailable
from .types import ScheduledEvent, ensure_utc
from .window import MatchWindow

logger = logging.getLogger(__name__)


class EventStore(Protocol):
    async def query_by_start_range(
        self, start: datetime, end: datetime
    ) -> list[ScheduledEvent]: ...

    async def query_by_id(self, event_id: str) -> ScheduledEvent | None: ...


class CandidateFinder:
    def __init__(self, store: EventStore):
        self._store = store

    async def find(
        self, window_start: datetime, window_end: datetime
    ) -> list[ScheduledEvent]:
        """
        Events whose start is >= window_start and < window_end.

        Returns an empty list when nothing matches.

        Raises:
            StoreUnavailable: The event store could not be reached. Not retried
                here; the next tick's window picks the range up again.
        """
        window = MatchWindow(start=window_start, end=window_end)
        if window.is_empty:
            return []

        try:
            events = await self._store.query_by_start_range(window.start, window.end)
        except StoreUnavailable:
            raise
        except Exception as e:
            raise StoreUnavailable(f"Event store query failed: {e}") from e

        # Half-open bounds are enforced here regardless of the adapter
        matched = []
        seen = set()
        for event in events:
            if not window.contains(event.starts_at) or event.event_id in seen:
                continue
            seen.add(event.event_id)
            matched.append(event)

        logger.info(
            f"Found {len(matched)} event(s) starting in "
            f"[{window.start.isoformat()}, {window.end.isoformat()})"
        )
        return matched

    async def get(self, event_id: str) -> ScheduledEvent | None:
        """Fresh copy of one event, or None if it no longer exists or was cancelled."""
        try:
            return await self._store.query_by_id(event_id)
        except StoreUnavailable:
            raise
        except Exception as e:
            raise StoreUnavailable(f"Event store lookup failed: {e}") from e


def starts_moved(original: ScheduledEvent, fresh: ScheduledEvent) -> bool:
    return ensure_utc(original.starts_at) != ensure_utc(fresh.starts_at)
