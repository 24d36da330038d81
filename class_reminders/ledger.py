"""
Delivery ledger - idempotency check before a send, audit record after it.

The check-send-record sequence is not atomic. Two overlapping dispatches of
the same key can both pass `already_sent` before either records; that narrow
race is accepted and shows up as a DuplicateDelivery warning when the store
enforces one SENT record per key.
"""

import logging
from typing import Protocol

import sentry_sdk

from .enums import Channel, DeliveryStatus
from .errors import DuplicateDelivery, LedgerWriteFailure, StoreUnavailable
from .types import DeliveryRecord

logger = logging.getLogger(__name__)


class LedgerStore(Protocol):
    async def has_sent(
        self,
        event_id: str,
        recipient_identity: str,
        reminder_class: str,
        channel: Channel,
    ) -> bool: ...

    async def append(self, record: DeliveryRecord) -> None: ...


class DeliveryLedger:
    def __init__(self, store: LedgerStore):
        self._store = store

    async def already_sent(
        self,
        event_id: str,
        recipient_identity: str,
        reminder_class: str,
        channel: Channel,
    ) -> bool:
        """
        True iff a SENT record exists for the exact key.

        FAILED records never suppress a new attempt.

        Raises:
            StoreUnavailable: The ledger store could not be queried
        """
        try:
            return await self._store.has_sent(
                event_id, recipient_identity, reminder_class, Channel(channel)
            )
        except StoreUnavailable:
            raise
        except Exception as e:
            raise StoreUnavailable(f"Ledger lookup failed: {e}") from e

    async def record(self, record: DeliveryRecord) -> None:
        """
        Durably append a delivery record.

        Raises:
            LedgerWriteFailure: The write failed. Callers must log this loudly;
                an unrecorded SENT can be re-sent on the next discovery.
        """
        try:
            await self._store.append(record)
        except DuplicateDelivery:
            # The message went out twice; the ledger still holds exactly one SENT.
            logger.warning(
                f"Duplicate {record.channel.value} delivery detected for "
                f"{record.idempotency_key}; concurrent dispatch race"
            )
            sentry_sdk.capture_message(
                f"Duplicate reminder delivery: {record.idempotency_key}",
                level="warning",
            )
            return
        except Exception as e:
            raise LedgerWriteFailure(
                f"Failed to record {DeliveryStatus(record.status).value} "
                f"{record.channel.value} delivery for {record.idempotency_key}: {e}",
                record=record,
            ) from e
