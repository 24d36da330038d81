"""Database queries for sessions (the event store)."""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from ..database import get_connection
from ..enums import ParticipantStatus, SessionStatus
from ..errors import StoreUnavailable
from ..tables import session_participants, sessions
from ..types import ScheduledEvent

logger = logging.getLogger(__name__)


async def get_sessions_starting_between(
    conn: AsyncConnection,
    start: datetime,
    end: datetime,
) -> list[dict]:
    """Get scheduled (not cancelled) sessions with start >= start and < end."""
    result = await conn.execute(
        select(sessions)
        .where(sessions.c.scheduled_start_at >= start)
        .where(sessions.c.scheduled_start_at < end)
        .where(sessions.c.status == SessionStatus.scheduled)
        .order_by(sessions.c.scheduled_start_at, sessions.c.session_id)
    )
    return [dict(row._mapping) for row in result]


async def get_session(
    conn: AsyncConnection,
    session_id: str,
) -> dict | None:
    """Get a single session by ID."""
    result = await conn.execute(
        select(sessions).where(sessions.c.session_id == session_id)
    )
    row = result.first()
    return dict(row._mapping) if row else None


async def get_sessions_for_owner(
    conn: AsyncConnection,
    owner_user_id: str,
    since: datetime | None = None,
) -> list[dict]:
    """Get scheduled sessions owned by a user, optionally only those starting after `since`."""
    query = (
        select(sessions)
        .where(sessions.c.owner_user_id == owner_user_id)
        .where(sessions.c.status == SessionStatus.scheduled)
    )
    if since is not None:
        query = query.where(sessions.c.scheduled_start_at >= since)
    result = await conn.execute(query.order_by(sessions.c.scheduled_start_at))
    return [dict(row._mapping) for row in result]


async def get_accepted_participant_ids(
    conn: AsyncConnection,
    session_ids: list[str],
) -> dict[str, list[str]]:
    """Map each session ID to the user IDs of its accepted participants."""
    participants: dict[str, list[str]] = {sid: [] for sid in session_ids}
    if not session_ids:
        return participants

    result = await conn.execute(
        select(session_participants.c.session_id, session_participants.c.user_id)
        .where(session_participants.c.session_id.in_(session_ids))
        .where(session_participants.c.status == ParticipantStatus.accepted)
        .order_by(session_participants.c.session_id, session_participants.c.user_id)
    )
    for row in result:
        participants[row.session_id].append(row.user_id)
    return participants


def row_to_event(row: dict, participant_ids: list[str]) -> ScheduledEvent:
    return ScheduledEvent(
        event_id=row["session_id"],
        starts_at=row["scheduled_start_at"],
        subject=row.get("subject") or "",
        title=row.get("title") or "",
        owner_id=row.get("owner_user_id"),
        participant_ids=tuple(participant_ids),
    )


class SqlEventStore:
    """Event store backed by the sessions tables."""

    def __init__(self, connection_factory=get_connection):
        self._connect = connection_factory

    async def _load(self, rows_query) -> list[ScheduledEvent]:
        try:
            async with self._connect() as conn:
                rows = await rows_query(conn)
                participants = await get_accepted_participant_ids(
                    conn, [row["session_id"] for row in rows]
                )
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"Event store unavailable: {e}") from e
        return [row_to_event(row, participants[row["session_id"]]) for row in rows]

    async def query_by_start_range(
        self, start: datetime, end: datetime
    ) -> list[ScheduledEvent]:
        return await self._load(
            lambda conn: get_sessions_starting_between(conn, start, end)
        )

    async def query_by_id(self, event_id: str) -> ScheduledEvent | None:
        async def one(conn):
            row = await get_session(conn, event_id)
            if row is None or row["status"] == SessionStatus.cancelled:
                return []
            return [row]

        events = await self._load(one)
        return events[0] if events else None

    async def query_by_owner(
        self, owner_id: str, since: datetime | None = None
    ) -> list[ScheduledEvent]:
        return await self._load(
            lambda conn: get_sessions_for_owner(conn, owner_id, since)
        )
