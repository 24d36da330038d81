"""
Time arithmetic for reminder polling.

A tick at `now` claims the event start instants in [now + lead, now + lead + cadence).
Consecutive ticks at the poll cadence therefore claim disjoint, adjacent slices.
Instants are compared exactly (no rounding to calendar boundaries).
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from .types import ReminderClass, ScheduledEvent, ensure_utc


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MatchWindow:
    """Half-open interval [start, end) of event start instants."""

    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))
        if self.end < self.start:
            raise ValueError(f"Window end {self.end} is before start {self.start}")

    def contains(self, instant: datetime) -> bool:
        return self.start <= ensure_utc(instant) < self.end

    @property
    def is_empty(self) -> bool:
        return self.start == self.end


def compute_window(now: datetime, reminder_class: ReminderClass) -> MatchWindow:
    """Window of event starts that are due for `reminder_class` at `now`."""
    start = ensure_utc(now) + reminder_class.lead
    return MatchWindow(start=start, end=start + reminder_class.poll_cadence)


def chain_window(
    now: datetime,
    reminder_class: ReminderClass,
    previous_end: datetime | None,
) -> MatchWindow:
    """
    Window that continues from where the last successful tick stopped.

    Late or failed ticks would otherwise leave gaps, and early ticks would
    overlap. The window always ends at now + lead + cadence; it starts at
    `previous_end`, but never earlier than now + lead - tolerance (anything
    older would be stale anyway).

    With no previous window (first tick of a process) the window reaches
    back by the full tolerance, so reminders whose timers were abandoned by
    a previous process are rediscovered.

    Args:
        now: Current instant
        reminder_class: Class being polled
        previous_end: End of the last successfully processed window, if any
    """
    nominal = compute_window(now, reminder_class)
    earliest = nominal.start - reminder_class.tolerance

    if previous_end is None:
        return MatchWindow(start=earliest, end=nominal.end)

    previous_end = ensure_utc(previous_end)
    if previous_end >= nominal.end:
        # Clock stepped backwards (or ticks bunched up); fall back to the plain
        # window. Any overlap is absorbed by the ledger.
        return nominal

    return MatchWindow(start=max(previous_end, earliest), end=nominal.end)


def send_instant(event: ScheduledEvent, reminder_class: ReminderClass) -> datetime:
    """Instant at which `reminder_class` should fire for `event`."""
    return event.starts_at - reminder_class.lead


def is_stale(send_at: datetime, now: datetime, reminder_class: ReminderClass) -> bool:
    """True if `send_at` passed more than the class tolerance ago."""
    return ensure_utc(now) - ensure_utc(send_at) > reminder_class.tolerance
