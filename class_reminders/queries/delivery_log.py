"""Database queries for the reminder delivery log (the delivery ledger store)."""

import json
from datetime import datetime

from sqlalchemy import and_, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection

from ..database import get_connection, get_transaction
from ..enums import Channel, DeliveryStatus
from ..errors import DuplicateDelivery, StoreUnavailable
from ..tables import reminder_delivery_log
from ..types import DeliveryRecord


def _jsonable(payload: object) -> object:
    """Coerce a provider payload into something JSONB can store."""
    if payload is None:
        return None
    try:
        json.dumps(payload)
        return payload
    except (TypeError, ValueError):
        return str(payload)


async def has_sent_record(
    conn: AsyncConnection,
    event_id: str,
    recipient_identity: str,
    reminder_class: str,
    channel: Channel,
) -> bool:
    """Check whether a SENT record exists for the exact idempotency key."""
    result = await conn.execute(
        select(reminder_delivery_log.c.log_id)
        .where(
            and_(
                reminder_delivery_log.c.event_id == event_id,
                reminder_delivery_log.c.recipient_identity == recipient_identity,
                reminder_delivery_log.c.reminder_class == reminder_class,
                reminder_delivery_log.c.channel == Channel(channel),
                reminder_delivery_log.c.status == DeliveryStatus.sent,
            )
        )
        .limit(1)
    )
    return result.first() is not None


async def insert_delivery_record(
    conn: AsyncConnection,
    record: DeliveryRecord,
) -> int:
    """
    Append a delivery record.

    Returns:
        The new log_id
    """
    result = await conn.execute(
        insert(reminder_delivery_log)
        .values(
            event_id=record.event_id,
            recipient_role=record.recipient_role,
            recipient_identity=record.recipient_identity,
            recipient_contact=record.recipient_contact or None,
            recipient_country=record.recipient_country or None,
            reminder_class=record.reminder_class,
            reminder_label=record.reminder_label or None,
            channel=Channel(record.channel),
            template_name=record.template_name or None,
            status=DeliveryStatus(record.status),
            provider_response=_jsonable(record.provider_response),
            attempted_at=record.attempted_at,
        )
        .returning(reminder_delivery_log.c.log_id)
    )
    return result.scalar_one()


async def get_delivery_records(
    conn: AsyncConnection,
    event_id: str | None = None,
    reminder_class: str | None = None,
    since: datetime | None = None,
    limit: int = 100,
) -> list[dict]:
    """Most recent delivery records first, optionally filtered."""
    query = select(reminder_delivery_log)
    if event_id is not None:
        query = query.where(reminder_delivery_log.c.event_id == event_id)
    if reminder_class is not None:
        query = query.where(reminder_delivery_log.c.reminder_class == reminder_class)
    if since is not None:
        query = query.where(reminder_delivery_log.c.attempted_at >= since)
    result = await conn.execute(
        query.order_by(reminder_delivery_log.c.attempted_at.desc()).limit(limit)
    )
    return [dict(row._mapping) for row in result]


class SqlLedgerStore:
    """Delivery ledger store backed by reminder_delivery_log."""

    def __init__(
        self, connection_factory=get_connection, transaction_factory=get_transaction
    ):
        self._connect = connection_factory
        self._transaction = transaction_factory

    async def has_sent(
        self,
        event_id: str,
        recipient_identity: str,
        reminder_class: str,
        channel: Channel,
    ) -> bool:
        try:
            async with self._connect() as conn:
                return await has_sent_record(
                    conn, event_id, recipient_identity, reminder_class, channel
                )
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"Ledger store unavailable: {e}") from e

    async def append(self, record: DeliveryRecord) -> None:
        """
        Insert a record in its own transaction.

        Raises:
            DuplicateDelivery: A SENT record already exists for this key
            SQLAlchemyError / OSError: Any other write failure
        """
        try:
            async with self._transaction() as conn:
                await insert_delivery_record(conn, record)
        except IntegrityError as e:
            if DeliveryStatus(record.status) == DeliveryStatus.sent:
                raise DuplicateDelivery(
                    f"SENT record already exists for {record.idempotency_key}"
                ) from e
            raise

    async def list_records(self, **filters) -> list[dict]:
        try:
            async with self._connect() as conn:
                return await get_delivery_records(conn, **filters)
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"Ledger store unavailable: {e}") from e
