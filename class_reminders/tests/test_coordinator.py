"""Tests for the reminder coordinator (poll tick end to end, in memory)."""

import asyncio
from dataclasses import dataclass
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.jobstores.base import JobLookupError

from class_reminders.candidates import CandidateFinder
from class_reminders.config import build_reminder_class
from class_reminders.coordinator import ReminderCoordinator
from class_reminders.enums import Channel
from class_reminders.errors import StoreUnavailable
from class_reminders.ledger import DeliveryLedger
from class_reminders.notifier import ChannelNotifier
from class_reminders.recipients import RecipientResolver
from class_reminders.tests.fakes import (
    ALICE,
    BOB,
    RAO,
    FakeClock,
    FakeDirectory,
    FakeEventStore,
    FakeLedgerStore,
    FakeTransport,
    make_event,
    utc,
)


@dataclass
class Stack:
    coordinator: ReminderCoordinator
    clock: FakeClock
    store: FakeEventStore
    directory: FakeDirectory
    ledger: FakeLedgerStore
    whatsapp: FakeTransport
    email: FakeTransport
    scheduler: MagicMock

    async def fire_armed_jobs(self):
        for call in self.scheduler.add_job.call_args_list:
            if call.kwargs.get("trigger") == "date":
                await call.args[0](**call.kwargs["kwargs"])


def _stack(now, events=(), class_name="near_term", gate=None) -> Stack:
    clock = FakeClock(now)
    store = FakeEventStore(events)
    directory = FakeDirectory([RAO, ALICE, BOB])
    ledger = FakeLedgerStore()
    whatsapp = FakeTransport(Channel.whatsapp, gate=gate)
    email = FakeTransport(Channel.email, gate=gate)
    scheduler = MagicMock()
    notifier = ChannelNotifier(
        {Channel.whatsapp: whatsapp, Channel.email: email},
        DeliveryLedger(ledger),
        clock=clock,
    )
    coordinator = ReminderCoordinator(
        build_reminder_class(class_name),
        finder=CandidateFinder(store),
        resolver=RecipientResolver(directory),
        notifier=notifier,
        scheduler=scheduler,
        clock=clock,
    )
    return Stack(coordinator, clock, store, directory, ledger, whatsapp, email, scheduler)


START = utc(2024, 1, 1, 10, 0)


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_due_reminders_sent_to_owner_and_participant(self):
        stack = _stack(utc(2024, 1, 1, 9, 45), [make_event(starts_at=START)])

        summary = await stack.coordinator.run_once()

        assert summary.total_sessions == 1
        assert summary.reminders == 2
        assert summary.decisions == {"dispatched_now": 2}
        assert sorted(c for c, _, _ in stack.whatsapp.sent) == ["919876500001", "919876500002"]
        assert sorted(c for c, _, _ in stack.email.sent) == ["alice@example.com", "rao@example.com"]
        assert len(stack.ledger.sent()) == 4

    @pytest.mark.asyncio
    async def test_future_reminders_armed_then_sent_on_fire(self):
        stack = _stack(utc(2024, 1, 1, 9, 44, 30), [make_event(starts_at=START)])

        summary = await stack.coordinator.run_once()

        assert summary.decisions == {"armed": 2}
        assert stack.whatsapp.sent == []

        stack.clock.now = utc(2024, 1, 1, 9, 45)
        await stack.fire_armed_jobs()

        assert len(stack.whatsapp.sent) == 2
        assert len(stack.email.sent) == 2

    @pytest.mark.asyncio
    async def test_summary_dict(self):
        stack = _stack(utc(2024, 1, 1, 9, 45), [make_event(starts_at=START)])

        result = (await stack.coordinator.run_once()).as_dict()

        assert result["job"] == "near_term"
        assert result["window_start"] == "2024-01-01T09:55:00+00:00"
        assert result["window_end"] == "2024-01-01T10:01:00+00:00"
        assert result["total_sessions"] == 1

    @pytest.mark.asyncio
    async def test_no_events(self):
        stack = _stack(utc(2024, 1, 1, 9, 45))

        summary = await stack.coordinator.run_once()

        assert summary.total_sessions == 0
        assert summary.decisions == {}

    @pytest.mark.asyncio
    async def test_advance_class_reminds_participants_only(self):
        stack = _stack(
            utc(2024, 1, 1, 2, 0), [make_event(starts_at=START)], class_name="advance"
        )

        summary = await stack.coordinator.run_once()

        assert summary.reminders == 1
        assert [c for c, _, _ in stack.whatsapp.sent] == ["919876500002"]
        assert stack.email.sent == []
        message = stack.whatsapp.sent[0][1]
        assert message.template_name == "before_course_class_to_confirm_joining_8hr_student_8s"


class TestFireTimeChecks:
    @pytest.mark.asyncio
    async def test_cancelled_event_not_sent(self):
        stack = _stack(utc(2024, 1, 1, 9, 44, 30), [make_event(starts_at=START)])
        await stack.coordinator.run_once()

        stack.store.cancel("e1")
        stack.clock.now = utc(2024, 1, 1, 9, 45)
        await stack.fire_armed_jobs()

        assert stack.whatsapp.sent == []
        assert stack.ledger.records == []

    @pytest.mark.asyncio
    async def test_moved_event_not_sent_at_old_time(self):
        stack = _stack(utc(2024, 1, 1, 9, 44, 30), [make_event(starts_at=START)])
        await stack.coordinator.run_once()

        stack.store.move("e1", utc(2024, 1, 1, 10, 30))
        stack.clock.now = utc(2024, 1, 1, 9, 45)
        await stack.fire_armed_jobs()

        assert stack.whatsapp.sent == []

    @pytest.mark.asyncio
    async def test_store_down_at_fire_time_uses_cached_event(self):
        stack = _stack(utc(2024, 1, 1, 9, 44, 30), [make_event(starts_at=START)])
        await stack.coordinator.run_once()

        stack.store.fail = True
        stack.clock.now = utc(2024, 1, 1, 9, 45)
        await stack.fire_armed_jobs()

        assert len(stack.whatsapp.sent) == 2


class TestNoDuplicates:
    @pytest.mark.asyncio
    async def test_overlapping_ticks_send_once(self):
        """Two ticks covering the same event at once: one send per recipient and channel."""
        gate = asyncio.Event()
        stack = _stack(utc(2024, 1, 1, 9, 45), [make_event(starts_at=START)], gate=gate)

        async def release():
            await asyncio.sleep(0.01)
            gate.set()

        first, second, _ = await asyncio.gather(
            stack.coordinator.run_once(), stack.coordinator.run_once(), release()
        )

        assert first.decisions.get("dispatched_now", 0) + second.decisions.get("dispatched_now", 0) == 2
        assert first.decisions.get("duplicate", 0) + second.decisions.get("duplicate", 0) == 2
        assert len(stack.whatsapp.sent) == 2
        assert len(stack.email.sent) == 2
        assert len(stack.ledger.sent()) == 4

    @pytest.mark.asyncio
    async def test_repeated_tick_at_same_instant_does_not_resend(self):
        stack = _stack(utc(2024, 1, 1, 9, 45), [make_event(starts_at=START)])

        await stack.coordinator.run_once()
        await stack.coordinator.run_once()

        assert stack.whatsapp.attempts == 2
        assert stack.email.attempts == 2
        assert len(stack.ledger.records) == 4

    @pytest.mark.asyncio
    async def test_failed_channel_retried_on_later_tick(self):
        stack = _stack(utc(2024, 1, 1, 9, 45), [make_event(starts_at=START)])
        stack.whatsapp.fail = True
        await stack.coordinator.run_once()

        stack.whatsapp.fail = False
        await stack.coordinator.run_once()

        assert len(stack.whatsapp.sent) == 2
        assert len(stack.ledger.failed()) == 2
        assert stack.email.attempts == 2


class TestLateness:
    @pytest.mark.asyncio
    async def test_startup_catches_up_within_tolerance(self):
        stack = _stack(utc(2024, 1, 1, 9, 49, 59), [make_event(starts_at=START)])

        summary = await stack.coordinator.run_once()

        assert summary.decisions == {"dispatched_now": 2}

    @pytest.mark.asyncio
    async def test_beyond_tolerance_is_not_sent(self):
        stack = _stack(utc(2024, 1, 1, 9, 50, 1), [make_event(starts_at=START)])

        summary = await stack.coordinator.run_once()

        assert summary.total_sessions == 0
        assert stack.whatsapp.attempts == 0


class TestFailureContainment:
    @pytest.mark.asyncio
    async def test_store_outage_does_not_lose_the_range(self):
        stack = _stack(utc(2024, 1, 1, 9, 44), [make_event(starts_at=START)])
        assert (await stack.coordinator.run_once()).total_sessions == 0

        stack.clock.now = utc(2024, 1, 1, 9, 45)
        stack.store.fail = True
        with pytest.raises(StoreUnavailable):
            await stack.coordinator.run_once()

        stack.clock.now = utc(2024, 1, 1, 9, 46)
        stack.store.fail = False
        summary = await stack.coordinator.run_once()

        assert summary.window_start == START
        assert summary.decisions == {"dispatched_now": 2}

    @pytest.mark.asyncio
    async def test_tick_job_swallows_store_outage(self):
        stack = _stack(utc(2024, 1, 1, 9, 45), [make_event(starts_at=START)])
        stack.store.fail = True

        with patch("class_reminders.coordinator.sentry_sdk") as mock_sentry:
            await stack.coordinator._tick()

        mock_sentry.capture_message.assert_called_once()

    @pytest.mark.asyncio
    async def test_unresolvable_owner_skips_only_that_event(self):
        stack = _stack(
            utc(2024, 1, 1, 9, 45),
            [
                make_event("orphan", starts_at=START, owner_id="ghost"),
                make_event("e2", starts_at=START),
            ],
        )

        summary = await stack.coordinator.run_once()

        assert summary.total_sessions == 2
        assert summary.skipped_events == 1
        assert {m["event_id"] for _, _, m in stack.whatsapp.sent} == {"e2"}

    @pytest.mark.asyncio
    async def test_directory_outage_is_retried_on_next_tick(self):
        stack = _stack(utc(2024, 1, 1, 9, 45), [make_event(starts_at=START)])
        stack.directory.fail = True

        with pytest.raises(StoreUnavailable):
            await stack.coordinator.run_once()
        assert stack.whatsapp.attempts == 0

        stack.directory.fail = False
        stack.clock.now = utc(2024, 1, 1, 9, 46)
        summary = await stack.coordinator.run_once()

        assert summary.decisions == {"dispatched_now": 2}
        assert len(stack.whatsapp.sent) == 2
        assert len(stack.email.sent) == 2

    @pytest.mark.asyncio
    async def test_ledger_outage_is_retried_on_next_tick(self):
        stack = _stack(utc(2024, 1, 1, 9, 45), [make_event(starts_at=START)])
        stack.ledger.fail_lookup = True

        with pytest.raises(StoreUnavailable, match="1 event"):
            await stack.coordinator.run_once()
        assert stack.whatsapp.attempts == 0

        stack.ledger.fail_lookup = False
        for minute in (46, 47, 48, 49):
            stack.clock.now = utc(2024, 1, 1, 9, minute)
            await stack.coordinator.run_once()

        assert len(stack.whatsapp.sent) == 2
        assert len(stack.email.sent) == 2
        assert len(stack.ledger.sent()) == 4

    @pytest.mark.asyncio
    async def test_outage_on_one_event_still_processes_the_others(self):
        stack = _stack(
            utc(2024, 1, 1, 9, 45),
            [
                make_event("e1", starts_at=START, owner_id="t1"),
                make_event("e2", starts_at=START, owner_id="t1", participant_ids=("s2",)),
            ],
        )
        stack.directory.fail_ids = {"s2"}

        with pytest.raises(StoreUnavailable):
            await stack.coordinator.run_once()

        assert {m["event_id"] for _, _, m in stack.whatsapp.sent} == {"e1"}

    @pytest.mark.asyncio
    async def test_tick_job_reports_partial_outage(self):
        stack = _stack(utc(2024, 1, 1, 9, 45), [make_event(starts_at=START)])
        stack.ledger.fail_lookup = True

        with patch("class_reminders.coordinator.sentry_sdk") as mock_sentry:
            await stack.coordinator._tick()

        mock_sentry.capture_message.assert_called_once()
        assert stack.coordinator._last_window_end is None


class TestLifecycle:
    def test_start_registers_polling_job(self):
        stack = _stack(utc(2024, 1, 1, 9, 45))

        stack.coordinator.start()

        call_kwargs = stack.scheduler.add_job.call_args[1]
        assert call_kwargs["trigger"] == "interval"
        assert call_kwargs["seconds"] == 60
        assert call_kwargs["id"] == "poll_near_term"
        assert call_kwargs["coalesce"] is True
        assert call_kwargs["max_instances"] == 1
        assert call_kwargs["next_run_time"] == utc(2024, 1, 1, 9, 45)

    @pytest.mark.asyncio
    async def test_stop_abandons_armed_timers(self):
        stack = _stack(utc(2024, 1, 1, 9, 44, 30), [make_event(starts_at=START)])
        await stack.coordinator.run_once()

        assert stack.coordinator.stop() == 2
        stack.scheduler.remove_job.assert_any_call("poll_near_term")

    def test_stop_before_start(self):
        stack = _stack(utc(2024, 1, 1, 9, 45))
        stack.scheduler.remove_job.side_effect = JobLookupError("poll_near_term")

        assert stack.coordinator.stop() == 0
