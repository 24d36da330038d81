"""
Process wiring: stores, transports, ledger, notifier and one coordinator per
reminder class, all sharing one AsyncIOScheduler.

Nothing here is a module-level singleton; `build_service` returns a fresh
ReminderService each time.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from . import config
from .candidates import CandidateFinder, EventStore
from .channels import ChannelTransport
from .channels.email import EmailTransport
from .channels.sms import SmsTransport
from .channels.whatsapp import WhatsAppTransport
from .coordinator import ReminderCoordinator
from .enums import Channel
from .ledger import DeliveryLedger, LedgerStore
from .notifier import ChannelNotifier
from .recipients import IdentityDirectory, RecipientResolver
from .types import ReminderClass
from .window import utc_now

logger = logging.getLogger(__name__)


def build_transports(timeout: float = 15.0) -> dict[Channel, ChannelTransport]:
    """Transports for every channel whose credentials are configured."""
    campaign_ids = {
        name: campaign
        for name in config.REMINDER_CLASS_DEFAULTS
        if (campaign := config.get_campaign_id(name))
    }
    candidates = [
        WhatsAppTransport.from_env(timeout=timeout, campaign_ids=campaign_ids),
        SmsTransport.from_env(timeout=timeout),
        EmailTransport.from_env(timeout=timeout),
    ]
    transports = {t.channel: t for t in candidates if t is not None}
    for channel in Channel:
        if channel not in transports:
            logger.warning(f"{channel.value} transport not configured")
    return transports


@dataclass
class ReminderService:
    scheduler: AsyncIOScheduler
    coordinators: dict[str, ReminderCoordinator]
    ledger: DeliveryLedger
    drain_timeout: float = 30.0
    _started: bool = field(default=False, init=False)

    def start(self) -> None:
        """Start polling. Must be called from inside the running event loop."""
        for coordinator in self.coordinators.values():
            coordinator.start()
        self.scheduler.start()
        self._started = True
        logger.info("Reminder scheduler started")

    async def shutdown(self) -> None:
        """
        Stop polling, abandon armed timers and let in-flight sends finish.
        """
        abandoned = sum(c.stop() for c in self.coordinators.values())
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False

        results = await asyncio.gather(
            *(
                c.dispatcher.wait_idle(self.drain_timeout)
                for c in self.coordinators.values()
            )
        )
        if not all(results):
            logger.error("Shut down with reminder sends still in flight")
        logger.info(f"Reminder scheduler stopped ({abandoned} pending timer(s) abandoned)")


def build_service(
    event_store: EventStore,
    directory: IdentityDirectory,
    ledger_store: LedgerStore,
    transports: dict[Channel, ChannelTransport],
    reminder_classes: dict[str, ReminderClass] | None = None,
    scheduler: AsyncIOScheduler | None = None,
    clock: Callable[[], datetime] = utc_now,
    max_concurrency: int | None = None,
    tz_name: str | None = None,
    sender_name: str | None = None,
) -> ReminderService:
    """Wire one coordinator per reminder class around shared components."""
    reminder_classes = reminder_classes or config.get_reminder_classes()
    scheduler = scheduler or AsyncIOScheduler(
        timezone="UTC",
        job_defaults={"coalesce": True, "max_instances": 1},
    )
    ledger = DeliveryLedger(ledger_store)
    notifier = ChannelNotifier(
        transports,
        ledger,
        clock=clock,
        tz_name=tz_name or config.get_display_timezone(),
        sender_name=sender_name or config.get_sender_name(),
    )
    finder = CandidateFinder(event_store)
    resolver = RecipientResolver(directory)
    concurrency = max_concurrency or config.get_dispatch_concurrency()

    coordinators = {
        name: ReminderCoordinator(
            reminder_class,
            finder=finder,
            resolver=resolver,
            notifier=notifier,
            scheduler=scheduler,
            clock=clock,
            max_concurrency=concurrency,
        )
        for name, reminder_class in reminder_classes.items()
    }
    return ReminderService(scheduler=scheduler, coordinators=coordinators, ledger=ledger)
