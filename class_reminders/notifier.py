"""
Channel notifier - send one recipient's reminder on every eligible channel.

Channels are attempted one after another and each attempt is recorded in the
ledger before the next channel starts, so a crash mid fan-out leaves a
partial but consistent ledger. A failure on one channel never stops the
others.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import sentry_sdk

from .channels import ChannelTransport
from .enums import Channel, DeliveryStatus, NotifyOutcome
from .errors import LedgerWriteFailure, TransportFailure
from .ledger import DeliveryLedger
from .templates import DEFAULT_SENDER_NAME, build_context, render_for_channel
from .types import DeliveryRecord, ReminderClass, Recipient, RenderedMessage
from .window import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelOutcome:
    """Result of one channel for one recipient."""

    channel: Channel
    outcome: NotifyOutcome
    record: DeliveryRecord | None = None
    recorded: bool = False  # False when the ledger write failed or nothing was attempted
    detail: str = ""


class ChannelNotifier:
    """
    Args:
        transports: Configured transports, keyed by channel
        ledger: Delivery ledger for the pre-send check and the post-send record
        clock: Returns the current UTC instant
        tz_name: Timezone used for times inside messages
        sender_name: Signature used in email bodies
    """

    def __init__(
        self,
        transports: dict[Channel, ChannelTransport],
        ledger: DeliveryLedger,
        clock: Callable[[], datetime] = utc_now,
        tz_name: str = "UTC",
        sender_name: str = DEFAULT_SENDER_NAME,
    ):
        self._transports = dict(transports)
        self._ledger = ledger
        self._clock = clock
        self._tz_name = tz_name
        self._sender_name = sender_name

    async def notify(
        self,
        recipient: Recipient,
        reminder_class: ReminderClass,
    ) -> dict[Channel, ChannelOutcome]:
        """
        Attempt every channel enabled for the reminder class.

        Raises:
            StoreUnavailable: The ledger could not be checked. Channels already
                attempted keep their records; the rest are not tried.
        """
        context = build_context(
            recipient, reminder_class, self._tz_name, self._sender_name
        )
        outcomes: dict[Channel, ChannelOutcome] = {}
        for channel in Channel:
            if channel not in reminder_class.channels:
                continue
            outcomes[channel] = await self._notify_channel(
                recipient, reminder_class, channel, context
            )
        return outcomes

    def _build_record(
        self,
        recipient: Recipient,
        reminder_class: ReminderClass,
        channel: Channel,
        status: DeliveryStatus,
        template_name: str,
        provider_response: object,
    ) -> DeliveryRecord:
        return DeliveryRecord(
            event_id=recipient.event.event_id,
            recipient_role=recipient.role,
            recipient_identity=recipient.identity_id,
            reminder_class=reminder_class.name,
            channel=channel,
            status=status,
            attempted_at=self._clock(),
            provider_response=provider_response,
            recipient_contact=recipient.contact_for(channel),
            recipient_country=recipient.country,
            template_name=template_name,
            reminder_label=reminder_class.label,
        )

    async def _record(self, record: DeliveryRecord) -> bool:
        try:
            await self._ledger.record(record)
            return True
        except LedgerWriteFailure as e:
            logger.critical(
                f"LEDGER WRITE FAILED for {record.status.value} delivery "
                f"{record.idempotency_key}: {e}"
            )
            sentry_sdk.capture_exception(e)
            return False

    async def _notify_channel(
        self,
        recipient: Recipient,
        reminder_class: ReminderClass,
        channel: Channel,
        context: dict,
    ) -> ChannelOutcome:
        who = f"{recipient.role.value} {recipient.identity_id} of event {recipient.event.event_id}"
        contact = recipient.contact_for(channel)
        if not contact:
            return ChannelOutcome(channel, NotifyOutcome.ineligible, detail="no contact")

        transport = self._transports.get(channel)
        if transport is None:
            logger.warning(f"No {channel.value} transport configured, skipping {who}")
            return ChannelOutcome(
                channel, NotifyOutcome.unavailable, detail="no transport"
            )

        try:
            message = render_for_channel(
                reminder_class.name, recipient.role, channel, context
            )
        except (KeyError, ValueError, IndexError) as e:
            logger.error(f"Template error for {channel.value} {reminder_class.name}: {e}")
            record = self._build_record(
                recipient,
                reminder_class,
                channel,
                DeliveryStatus.failed,
                template_name="",
                provider_response={"error": f"template error: {e!r}"},
            )
            return ChannelOutcome(
                channel,
                NotifyOutcome.failed,
                record=record,
                recorded=await self._record(record),
                detail="template error",
            )
        if message is None:
            return ChannelOutcome(channel, NotifyOutcome.ineligible, detail="no template")

        # Checked immediately before the send. StoreUnavailable propagates:
        # nothing is sent without the check, and the caller retries the recipient.
        if await self._ledger.already_sent(
            recipient.event.event_id,
            recipient.identity_id,
            reminder_class.name,
            channel,
        ):
            logger.info(
                f"{reminder_class.name} {channel.value} already sent to {who}, skipping"
            )
            return ChannelOutcome(channel, NotifyOutcome.duplicate)

        status, response = await self._send(
            transport, contact, message, self._metadata(recipient, reminder_class, message)
        )
        if status == DeliveryStatus.sent:
            logger.info(f"Sent {reminder_class.name} {channel.value} reminder to {who}")
        else:
            logger.warning(
                f"Failed {reminder_class.name} {channel.value} reminder to {who}: "
                f"{response.get('error')}"
            )

        record = self._build_record(
            recipient,
            reminder_class,
            channel,
            status,
            template_name=message.template_name,
            provider_response=response,
        )
        return ChannelOutcome(
            channel,
            NotifyOutcome.sent if status == DeliveryStatus.sent else NotifyOutcome.failed,
            record=record,
            recorded=await self._record(record),
        )

    async def _send(
        self,
        transport: ChannelTransport,
        contact: str,
        message: RenderedMessage,
        metadata: dict,
    ) -> tuple[DeliveryStatus, dict]:
        """Call the transport once. Never raises for provider-side failures."""
        try:
            result = await transport.send_template(contact, message, metadata)
        except TransportFailure as e:
            return DeliveryStatus.failed, {
                "error": str(e),
                "provider_status": e.provider_status,
                "response": e.payload,
            }
        except Exception as e:
            logger.exception(f"Unexpected {transport.channel.value} transport error")
            return DeliveryStatus.failed, {"error": f"{type(e).__name__}: {e}"}

        return DeliveryStatus.sent, {
            "provider_status": result.provider_status,
            "response": result.payload,
        }

    @staticmethod
    def _metadata(
        recipient: Recipient, reminder_class: ReminderClass, message: RenderedMessage
    ) -> dict:
        """Correlation data echoed back by providers in delivery callbacks."""
        return {
            "event_id": recipient.event.event_id,
            "reminder_class": reminder_class.name,
            "template_name": message.template_name,
            "recipient_role": recipient.role.value,
            "recipient_name": recipient.display_name,
            "counterpart_name": recipient.counterpart_name,
            "subject": recipient.event.subject,
        }
