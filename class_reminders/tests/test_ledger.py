"""Tests for the delivery ledger."""

import logging
from unittest.mock import patch

import pytest

from class_reminders.enums import Channel, DeliveryStatus, RecipientRole
from class_reminders.errors import LedgerWriteFailure, StoreUnavailable
from class_reminders.ledger import DeliveryLedger
from class_reminders.tests.fakes import FakeLedgerStore, utc
from class_reminders.types import DeliveryRecord


def _record(status=DeliveryStatus.sent, channel=Channel.whatsapp, identity="s1"):
    return DeliveryRecord(
        event_id="e1",
        recipient_role=RecipientRole.participant,
        recipient_identity=identity,
        reminder_class="near_term",
        channel=channel,
        status=status,
        attempted_at=utc(2024, 1, 1, 9, 45),
    )


class TestAlreadySent:
    @pytest.mark.asyncio
    async def test_empty_ledger(self):
        ledger = DeliveryLedger(FakeLedgerStore())

        assert not await ledger.already_sent("e1", "s1", "near_term", Channel.whatsapp)

    @pytest.mark.asyncio
    async def test_failed_record_does_not_suppress(self):
        ledger = DeliveryLedger(FakeLedgerStore())
        await ledger.record(_record(status=DeliveryStatus.failed))

        assert not await ledger.already_sent("e1", "s1", "near_term", Channel.whatsapp)

    @pytest.mark.asyncio
    async def test_sent_record_suppresses_exact_key_only(self):
        ledger = DeliveryLedger(FakeLedgerStore())
        await ledger.record(_record())

        assert await ledger.already_sent("e1", "s1", "near_term", Channel.whatsapp)
        assert not await ledger.already_sent("e1", "s1", "near_term", Channel.email)
        assert not await ledger.already_sent("e1", "s2", "near_term", Channel.whatsapp)
        assert not await ledger.already_sent("e1", "s1", "advance", Channel.whatsapp)

    @pytest.mark.asyncio
    async def test_lookup_failure(self):
        store = FakeLedgerStore()
        store.fail_lookup = True

        with pytest.raises(StoreUnavailable):
            await DeliveryLedger(store).already_sent(
                "e1", "s1", "near_term", Channel.whatsapp
            )


class TestRecord:
    @pytest.mark.asyncio
    async def test_failed_attempts_accumulate(self):
        store = FakeLedgerStore()
        ledger = DeliveryLedger(store)

        await ledger.record(_record(status=DeliveryStatus.failed))
        await ledger.record(_record(status=DeliveryStatus.failed))
        await ledger.record(_record())

        assert len(store.failed()) == 2
        assert len(store.sent()) == 1

    @pytest.mark.asyncio
    async def test_write_failure_raises(self):
        store = FakeLedgerStore()
        store.fail_append = True
        record = _record()

        with pytest.raises(LedgerWriteFailure) as exc_info:
            await DeliveryLedger(store).record(record)

        assert exc_info.value.record is record

    @pytest.mark.asyncio
    async def test_second_sent_is_logged_not_raised(self, caplog):
        store = FakeLedgerStore()
        ledger = DeliveryLedger(store)
        await ledger.record(_record())

        with caplog.at_level(logging.WARNING):
            with patch("class_reminders.ledger.sentry_sdk") as mock_sentry:
                await ledger.record(_record())

        assert len(store.sent()) == 1
        assert any("Duplicate" in record.message for record in caplog.records)
        mock_sentry.capture_message.assert_called_once()
