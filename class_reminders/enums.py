"""Enum definitions shared by the dispatch engine and the database schema."""

import enum

from sqlalchemy import Enum as SQLEnum


# =====================================================
# Python Enum Classes
# =====================================================


class RecipientRole(str, enum.Enum):
    owner = "owner"
    participant = "participant"


class Channel(str, enum.Enum):
    whatsapp = "whatsapp"
    sms = "sms"
    email = "email"


class DeliveryStatus(str, enum.Enum):
    sent = "sent"
    failed = "failed"


class SessionStatus(str, enum.Enum):
    scheduled = "scheduled"
    cancelled = "cancelled"


class ParticipantStatus(str, enum.Enum):
    accepted = "accepted"
    pending = "pending"
    rejected = "rejected"


class NotifyOutcome(str, enum.Enum):
    """What happened to one channel of one recipient during a dispatch."""

    sent = "sent"
    failed = "failed"
    duplicate = "duplicate"  # ledger already holds a SENT record
    ineligible = "ineligible"  # no contact value or no template
    unavailable = "unavailable"  # no transport configured


class ScheduleDecision(str, enum.Enum):
    dispatched_now = "dispatched_now"
    armed = "armed"
    duplicate = "duplicate"
    stale = "stale"


# =====================================================
# SQLAlchemy Enum Types
# =====================================================

recipient_role_enum = SQLEnum(
    RecipientRole, name="reminder_recipient_role", create_type=False, native_enum=True
)
channel_enum = SQLEnum(
    Channel, name="reminder_channel", create_type=False, native_enum=True
)
delivery_status_enum = SQLEnum(
    DeliveryStatus,
    name="reminder_delivery_status",
    create_type=False,
    native_enum=True,
)
session_status_enum = SQLEnum(
    SessionStatus, name="session_status", create_type=False, native_enum=True
)
participant_status_enum = SQLEnum(
    ParticipantStatus,
    name="session_participant_status",
    create_type=False,
    native_enum=True,
)
