"""
Class reminder dispatch engine.

Sends reminders for scheduled class sessions at fixed lead times (15 minutes
and 8 hours before start) over WhatsApp, SMS and email, without duplicates.

Public API:
    build_service(...) - Wire stores, transports and coordinators
    ReminderCoordinator - Poll one reminder class and dispatch its reminders
    DispatchScheduler - Send now or arm a timer for the send instant
    ChannelNotifier - Fan a reminder out over a recipient's channels
    DeliveryLedger - Idempotency check and audit log of send attempts

Building blocks:
    compute_window / chain_window - Match windows for a poll tick
    CandidateFinder - Events starting inside a window
    RecipientResolver - Owner and participant recipients of an event
"""

from .candidates import CandidateFinder
from .coordinator import ReminderCoordinator, TickSummary
from .dispatch import DispatchScheduler
from .ledger import DeliveryLedger
from .notifier import ChannelNotifier, ChannelOutcome
from .recipients import RecipientResolver
from .service import ReminderService, build_service
from .window import chain_window, compute_window

__all__ = [
    # Wiring
    "ReminderService",
    "build_service",
    # Components
    "ReminderCoordinator",
    "TickSummary",
    "DispatchScheduler",
    "ChannelNotifier",
    "ChannelOutcome",
    "DeliveryLedger",
    "CandidateFinder",
    "RecipientResolver",
    # Time arithmetic
    "compute_window",
    "chain_window",
]
