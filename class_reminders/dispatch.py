"""
Dispatch scheduler - send now, or arm a one-shot timer for the send instant.

Timers are APScheduler `date` jobs on an in-memory job store. Jobs carry only
their key; the recipient waiting on each key lives in this object's pending
map. Nothing is persisted: on shutdown pending timers are dropped, and the
next process's first poll tick rediscovers whatever is still within tolerance.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable

import sentry_sdk
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler

from .enums import ScheduleDecision
from .errors import StoreUnavailable
from .types import ReminderClass, Recipient, ensure_utc
from .window import is_stale, utc_now

logger = logging.getLogger(__name__)

# Delay before a timer whose dispatch hit a store outage fires again
RETRY_DELAY = timedelta(seconds=30)

DispatchFn = Callable[[Recipient, ReminderClass], Awaitable[object]]


def job_id_for(key: tuple[str, str, str]) -> str:
    event_id, identity_id, reminder_class = key
    return f"reminder_{reminder_class}_{event_id}_{identity_id}"


class DispatchScheduler:
    """
    Owns the pending-timer state for one process.

    Args:
        scheduler: Running APScheduler instance used for deferred sends
        dispatch: Coroutine function that delivers one recipient's reminder
        clock: Returns the current UTC instant
        retry_delay: Wait before re-running a timer that hit a store outage
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        dispatch: DispatchFn,
        clock: Callable[[], datetime] = utc_now,
        retry_delay: timedelta = RETRY_DELAY,
    ):
        self._scheduler = scheduler
        self._dispatch = dispatch
        self._clock = clock
        self._retry_delay = retry_delay
        self._pending: dict[str, tuple[Recipient, ReminderClass, datetime]] = {}
        self._in_flight: set[str] = set()

    def is_pending(self, key: tuple[str, str, str]) -> bool:
        job_id = job_id_for(key)
        return job_id in self._pending or job_id in self._in_flight

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def schedule(
        self,
        recipient: Recipient,
        reminder_class: ReminderClass,
        send_at: datetime,
    ) -> ScheduleDecision:
        """
        Dispatch now if `send_at` has passed, otherwise arm a timer for it.

        A second call for a key that is still armed or in flight is a no-op.
        A `send_at` older than the class tolerance is skipped as stale.

        Raises:
            StoreUnavailable: An inline dispatch could not reach a store; the
                caller is expected to retry the recipient on a later tick
        """
        send_at = ensure_utc(send_at)
        key = recipient.dispatch_key(reminder_class)
        job_id = job_id_for(key)

        if job_id in self._pending or job_id in self._in_flight:
            logger.debug(f"{job_id} already scheduled, ignoring duplicate")
            return ScheduleDecision.duplicate

        now = self._clock()
        if is_stale(send_at, now, reminder_class):
            logger.info(
                f"Skipping stale {reminder_class.name} reminder {job_id}: "
                f"due {send_at.isoformat()}, now {now.isoformat()}"
            )
            return ScheduleDecision.stale

        if send_at <= now:
            await self._run(job_id, recipient, reminder_class)
            return ScheduleDecision.dispatched_now

        self._arm(job_id, recipient, reminder_class, send_at, run_date=send_at)
        logger.info(f"Scheduled {job_id} at {send_at.isoformat()}")
        return ScheduleDecision.armed

    def _arm(
        self,
        job_id: str,
        recipient: Recipient,
        reminder_class: ReminderClass,
        send_at: datetime,
        run_date: datetime,
    ) -> None:
        self._pending[job_id] = (recipient, reminder_class, send_at)
        try:
            self._scheduler.add_job(
                self._fire,
                trigger="date",
                run_date=run_date,
                id=job_id,
                kwargs={"job_id": job_id},
                replace_existing=True,
                misfire_grace_time=None,  # Lateness is judged in _fire
            )
        except Exception:
            self._pending.pop(job_id, None)
            raise

    async def _fire(self, job_id: str) -> None:
        """Timer callback. Called by APScheduler."""
        entry = self._pending.pop(job_id, None)
        if entry is None:
            logger.debug(f"{job_id} fired after being abandoned, ignoring")
            return

        recipient, reminder_class, send_at = entry
        now = self._clock()
        if is_stale(send_at, now, reminder_class):
            logger.warning(
                f"Timer {job_id} fired too late ({now.isoformat()} for "
                f"{send_at.isoformat()}), skipping"
            )
            return

        try:
            await self._run(job_id, recipient, reminder_class)
        except StoreUnavailable as e:
            self._retry_later(job_id, recipient, reminder_class, send_at, e)

    def _retry_later(
        self,
        job_id: str,
        recipient: Recipient,
        reminder_class: ReminderClass,
        send_at: datetime,
        error: StoreUnavailable,
    ) -> None:
        """Re-arm a fired timer whose dispatch hit a store outage, within tolerance."""
        retry_at = self._clock() + self._retry_delay
        if is_stale(send_at, retry_at, reminder_class):
            logger.error(f"Giving up on {job_id} after store outage: {error}")
            sentry_sdk.capture_message(
                f"Reminder {job_id} not sent, store unavailable: {error}",
                level="error",
            )
            return

        logger.warning(
            f"Store unavailable for {job_id} ({error}), retrying at {retry_at.isoformat()}"
        )
        self._arm(job_id, recipient, reminder_class, send_at, run_date=retry_at)

    async def _run(
        self,
        job_id: str,
        recipient: Recipient,
        reminder_class: ReminderClass,
    ) -> None:
        self._in_flight.add(job_id)
        try:
            await self._dispatch(recipient, reminder_class)
        except StoreUnavailable:
            raise
        except Exception as e:
            # One recipient's crash must not take down the tick or the scheduler
            logger.exception(f"Dispatch {job_id} failed")
            sentry_sdk.capture_exception(e)
        finally:
            self._in_flight.discard(job_id)

    def abandon_all(self) -> int:
        """
        Drop every armed timer without running it.

        In-flight dispatches are left to finish.

        Returns:
            Number of timers abandoned
        """
        abandoned = 0
        for job_id in list(self._pending):
            try:
                self._scheduler.remove_job(job_id)
            except JobLookupError:
                pass  # Already fired or gone
            self._pending.pop(job_id, None)
            abandoned += 1

        if abandoned:
            logger.info(f"Abandoned {abandoned} pending reminder timer(s)")
        return abandoned

    async def wait_idle(self, timeout: float) -> bool:
        """
        Wait for in-flight dispatches to finish.

        Returns:
            True if nothing is in flight any more, False on timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while self._in_flight and loop.time() < deadline:
            await asyncio.sleep(0.1)
        return not self._in_flight
