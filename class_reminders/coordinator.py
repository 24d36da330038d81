"""
Reminder coordinator - one per reminder class, polling on its own cadence.

Each tick: compute the match window, find the events starting in it, resolve
their recipients and hand each recipient to the dispatch scheduler. Events are
processed concurrently up to a fixed limit; a failure is contained to the
event (or recipient, or channel) it happened in.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import sentry_sdk
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler

from .candidates import CandidateFinder, starts_moved
from .dispatch import DispatchScheduler
from .enums import Channel, ScheduleDecision
from .errors import ResolutionIncomplete, StoreUnavailable
from .notifier import ChannelNotifier, ChannelOutcome
from .recipients import RecipientResolver
from .types import ReminderClass, Recipient, ScheduledEvent
from .window import chain_window, send_instant, utc_now

logger = logging.getLogger(__name__)


@dataclass
class TickSummary:
    """What one poll tick found and did."""

    reminder_class: str
    window_start: datetime
    window_end: datetime
    total_sessions: int = 0
    reminders: int = 0
    decisions: dict[str, int] = field(default_factory=dict)
    skipped_events: int = 0
    failed_events: int = 0
    store_outages: int = 0

    def count(self, decision: ScheduleDecision) -> None:
        self.decisions[decision.value] = self.decisions.get(decision.value, 0) + 1

    def as_dict(self) -> dict:
        return {
            "job": self.reminder_class,
            "window_start": self.window_start.isoformat(),
            "window_end": self.window_end.isoformat(),
            "total_sessions": self.total_sessions,
            "reminders": self.reminders,
            "decisions": dict(self.decisions),
            "skipped_events": self.skipped_events,
            "failed_events": self.failed_events,
            "store_outages": self.store_outages,
        }


class ReminderCoordinator:
    """
    Args:
        reminder_class: The class this coordinator polls for
        finder: Candidate finder over the event store
        resolver: Recipient resolver over the identity directory
        notifier: Channel notifier (used when a dispatch fires)
        dispatcher: Dispatch scheduler; built from `scheduler` when omitted
        scheduler: APScheduler instance for polling and deferred sends
        clock: Returns the current UTC instant
        max_concurrency: Events processed at once within one tick
    """

    def __init__(
        self,
        reminder_class: ReminderClass,
        finder: CandidateFinder,
        resolver: RecipientResolver,
        notifier: ChannelNotifier,
        scheduler: BaseScheduler,
        dispatcher: DispatchScheduler | None = None,
        clock: Callable[[], datetime] = utc_now,
        max_concurrency: int = 10,
    ):
        self.reminder_class = reminder_class
        self._finder = finder
        self._resolver = resolver
        self._notifier = notifier
        self._scheduler = scheduler
        self._clock = clock
        self._dispatcher = dispatcher or DispatchScheduler(
            scheduler, self.deliver, clock=clock
        )
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._last_window_end: datetime | None = None

    @property
    def poll_job_id(self) -> str:
        return f"poll_{self.reminder_class.name}"

    @property
    def dispatcher(self) -> DispatchScheduler:
        return self._dispatcher

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Register the polling job; the first tick runs immediately."""
        self._scheduler.add_job(
            self._tick,
            trigger="interval",
            seconds=self.reminder_class.poll_cadence.total_seconds(),
            id=self.poll_job_id,
            replace_existing=True,
            next_run_time=self._clock(),
            coalesce=True,
            max_instances=1,
        )
        logger.info(
            f"[{self.reminder_class.name}] Polling every "
            f"{self.reminder_class.poll_cadence} for reminders "
            f"{self.reminder_class.lead} ahead"
        )

    def stop(self) -> int:
        """
        Stop polling and abandon armed timers.

        Returns:
            Number of abandoned timers
        """
        try:
            self._scheduler.remove_job(self.poll_job_id)
        except JobLookupError:
            pass  # Never started
        return self._dispatcher.abandon_all()

    async def _tick(self) -> None:
        """Polling job. Called by APScheduler."""
        try:
            summary = await self.run_once()
        except StoreUnavailable as e:
            # No window advance: the next tick re-covers this range (within tolerance)
            logger.error(f"[{self.reminder_class.name}] Tick aborted: {e}")
            sentry_sdk.capture_message(
                f"Reminder tick aborted for {self.reminder_class.name}: {e}",
                level="error",
            )
            return
        if summary.total_sessions:
            logger.info(f"[{self.reminder_class.name}] Tick: {summary.as_dict()}")

    async def run_once(self, now: datetime | None = None) -> TickSummary:
        """
        Run one tick.

        The window continues from the end of the last successful tick. It only
        advances when every event in it was processed without a store outage;
        otherwise the next tick covers the same range again (within tolerance)
        and the ledger suppresses what already went out.

        Raises:
            StoreUnavailable: The event store could not be queried, or the
                identity directory or ledger failed for at least one event
        """
        now = now or self._clock()
        window = chain_window(now, self.reminder_class, self._last_window_end)
        summary = TickSummary(
            reminder_class=self.reminder_class.name,
            window_start=window.start,
            window_end=window.end,
        )

        events = await self._finder.find(window.start, window.end)
        summary.total_sessions = len(events)

        await asyncio.gather(
            *(self._process_event_limited(event, summary) for event in events)
        )

        if summary.store_outages:
            logger.warning(f"[{self.reminder_class.name}] Partial tick: {summary.as_dict()}")
            raise StoreUnavailable(
                f"{summary.store_outages} event(s) hit a store outage, "
                f"window from {window.start.isoformat()} will be retried"
            )
        self._last_window_end = window.end
        return summary

    # -------------------------------------------------------------------------
    # Per-event processing
    # -------------------------------------------------------------------------

    async def _process_event_limited(
        self, event: ScheduledEvent, summary: TickSummary
    ) -> None:
        async with self._semaphore:
            try:
                await self._process_event(event, summary)
            except ResolutionIncomplete as e:
                logger.warning(f"[{self.reminder_class.name}] Skipping event: {e}")
                summary.skipped_events += 1
            except StoreUnavailable as e:
                # Reported once for the whole tick by _tick
                logger.error(
                    f"[{self.reminder_class.name}] Event {event.event_id} hit a store outage: {e}"
                )
                summary.store_outages += 1
            except Exception as e:
                logger.exception(
                    f"[{self.reminder_class.name}] Unexpected error on event {event.event_id}"
                )
                sentry_sdk.capture_exception(e)
                summary.failed_events += 1

    async def _process_event(self, event: ScheduledEvent, summary: TickSummary) -> None:
        recipients = [
            r
            for r in await self._resolver.resolve(event)
            if r.role in self.reminder_class.recipient_roles
        ]
        if not recipients:
            logger.info(
                f"[{self.reminder_class.name}] No recipients for event {event.event_id}"
            )
            return

        send_at = send_instant(event, self.reminder_class)
        results = await asyncio.gather(
            *(
                self._dispatcher.schedule(r, self.reminder_class, send_at)
                for r in recipients
            ),
            return_exceptions=True,
        )
        summary.reminders += len(recipients)
        errors = []
        for result in results:
            if isinstance(result, Exception):
                errors.append(result)
            else:
                summary.count(result)
        if errors:
            raise errors[0]

    # -------------------------------------------------------------------------
    # Delivery (called by the dispatch scheduler)
    # -------------------------------------------------------------------------

    async def deliver(
        self, recipient: Recipient, reminder_class: ReminderClass
    ) -> dict[Channel, ChannelOutcome] | None:
        """
        Re-read the event, then notify the recipient on every channel.

        Skips the send if the event was cancelled/removed or its start moved
        (the new start is picked up by the window that covers it).
        """
        event = recipient.event
        try:
            fresh = await self._finder.get(event.event_id)
        except StoreUnavailable as e:
            logger.warning(
                f"Could not re-read event {event.event_id} ({e}), sending with cached data"
            )
            fresh = event

        if fresh is None:
            logger.info(f"Event {event.event_id} no longer scheduled, skipping reminder")
            return None
        if starts_moved(event, fresh):
            logger.info(
                f"Event {event.event_id} moved from {event.starts_at.isoformat()} "
                f"to {fresh.starts_at.isoformat()}, skipping reminder"
            )
            return None

        return await self._notifier.notify(recipient, reminder_class)
