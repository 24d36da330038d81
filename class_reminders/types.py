"""Value objects for the reminder dispatch engine.

ScheduledEvent and Identity come from the external stores and are treated as
read-only. Recipient is rebuilt on every dispatch cycle. DeliveryRecord is the
append-only ledger entry.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache

import phonenumbers

from .enums import Channel, DeliveryStatus, RecipientRole

NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: str | None) -> str:
    """Strip everything but digits ("+91 98-765" -> "9198765")."""
    if not raw:
        return ""
    return NON_DIGITS.sub("", str(raw))


@lru_cache(maxsize=1024)
def phone_region(digits: str) -> str:
    """
    ISO region code for a phone number in international digits ("9198..." -> "IN").

    Returns "" when the number can't be placed in a region.
    """
    if not digits:
        return ""
    try:
        number = phonenumbers.parse(f"+{digits}", None)
    except phonenumbers.NumberParseException:
        return ""
    return phonenumbers.region_code_for_number(number) or ""


def normalize_email(raw: str | None) -> str:
    if not raw:
        return ""
    return str(raw).strip().lower()


def ensure_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime (naive datetimes are treated as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class ReminderClass:
    """A lead-time class of reminders, fixed at process start.

    Attributes:
        name: Config key, e.g. "near_term"
        lead: How long before the event start the reminder goes out
        poll_cadence: How often the coordinator for this class polls
        tolerance: How late a reminder may still be sent
        channels: Channels this class delivers on
        recipient_roles: Roles that receive this class of reminder
        label: Short label stored on delivery records, e.g. "15min"
    """

    name: str
    lead: timedelta
    poll_cadence: timedelta
    tolerance: timedelta
    channels: frozenset[Channel]
    recipient_roles: frozenset[RecipientRole] = frozenset(RecipientRole)
    label: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("ReminderClass needs a name")
        if self.lead <= timedelta(0):
            raise ValueError(f"{self.name}: lead must be positive")
        if self.poll_cadence <= timedelta(0):
            raise ValueError(f"{self.name}: poll_cadence must be positive")
        if self.tolerance < timedelta(0):
            raise ValueError(f"{self.name}: tolerance must not be negative")
        if not self.channels:
            raise ValueError(f"{self.name}: at least one channel must be enabled")
        if not self.recipient_roles:
            raise ValueError(f"{self.name}: at least one recipient role is required")
        object.__setattr__(self, "channels", frozenset(Channel(c) for c in self.channels))
        object.__setattr__(
            self,
            "recipient_roles",
            frozenset(RecipientRole(r) for r in self.recipient_roles),
        )
        if not self.label:
            object.__setattr__(self, "label", self.name)


@dataclass(frozen=True)
class ScheduledEvent:
    """A class session as read from the event store."""

    event_id: str
    starts_at: datetime
    subject: str = ""
    title: str = ""
    owner_id: str | None = None
    participant_ids: tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "event_id", str(self.event_id))
        object.__setattr__(self, "starts_at", ensure_utc(self.starts_at))
        object.__setattr__(
            self, "participant_ids", tuple(str(p) for p in self.participant_ids)
        )


@dataclass(frozen=True)
class Identity:
    """Contact record returned by the identity directory."""

    identity_id: str
    name: str = ""
    phone: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class Recipient:
    """One person to remind about one event.

    Contact values are normalized on construction so the same value is used
    for transport input and ledger records.
    """

    role: RecipientRole
    identity_id: str
    display_name: str
    event: ScheduledEvent
    counterpart_name: str = ""
    phone: str = ""
    email: str = ""

    def __post_init__(self):
        object.__setattr__(self, "role", RecipientRole(self.role))
        if not self.identity_id:
            raise ValueError("Recipient needs an identity_id")
        object.__setattr__(self, "identity_id", str(self.identity_id))
        object.__setattr__(self, "phone", normalize_phone(self.phone))
        object.__setattr__(self, "email", normalize_email(self.email))
        if self.role == RecipientRole.participant and not self.counterpart_name:
            # Participant messages are personalized with the owner's name
            raise ValueError("Participant recipient needs the owner's name")

    def contact_for(self, channel: Channel) -> str:
        """Return the normalized contact value for a channel ("" if none)."""
        if channel in (Channel.whatsapp, Channel.sms):
            return self.phone
        if channel == Channel.email:
            return self.email
        return ""

    @property
    def country(self) -> str:
        return phone_region(self.phone)

    def dispatch_key(self, reminder_class: ReminderClass) -> tuple[str, str, str]:
        """Key for one pending dispatch: (event_id, identity_id, class name)."""
        return (self.event.event_id, self.identity_id, reminder_class.name)


@dataclass(frozen=True)
class DeliveryRecord:
    """One send attempt on one channel. Never mutated after creation."""

    event_id: str
    recipient_role: RecipientRole
    recipient_identity: str
    reminder_class: str
    channel: Channel
    status: DeliveryStatus
    attempted_at: datetime
    provider_response: object = None
    recipient_contact: str = ""
    recipient_country: str = ""
    template_name: str = ""
    reminder_label: str = ""

    @property
    def idempotency_key(self) -> tuple[str, str, str, str]:
        return (
            self.event_id,
            self.recipient_identity,
            self.reminder_class,
            Channel(self.channel).value,
        )


@dataclass(frozen=True)
class RenderedMessage:
    """A message ready for a channel transport."""

    template_name: str
    language_code: str = "en"
    body_values: list[str] = field(default_factory=list)
    subject: str = ""
    body: str = ""


@dataclass(frozen=True)
class TransportResult:
    """Successful provider response."""

    provider_status: int | None = None
    payload: object = None
