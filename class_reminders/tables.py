"""SQLAlchemy Core table definitions for the database schema."""

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP

from .enums import (
    channel_enum,
    delivery_status_enum,
    participant_status_enum,
    recipient_role_enum,
    session_status_enum,
)

# Naming convention for constraints (helps Alembic generate better names)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=convention)


# =====================================================
# 1. USERS (identity directory)
# =====================================================
users = Table(
    "users",
    metadata,
    Column("user_id", Text, primary_key=True),
    Column("name", Text),
    Column("phone_number", Text),  # Stored as entered; normalized on read
    Column("email", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
)


# =====================================================
# 2. SESSIONS (event store)
# =====================================================
sessions = Table(
    "sessions",
    metadata,
    Column("session_id", Text, primary_key=True),
    Column(
        "owner_user_id",
        Text,
        ForeignKey("users.user_id", ondelete="SET NULL"),
    ),
    Column("subject", Text),
    Column("title", Text),
    Column("scheduled_start_at", TIMESTAMP(timezone=True), nullable=False),
    Column(
        "status",
        session_status_enum,
        nullable=False,
        server_default="scheduled",
    ),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_sessions_scheduled_start_at", "scheduled_start_at"),
    Index("idx_sessions_owner_user_id", "owner_user_id"),
)


# =====================================================
# 3. SESSION_PARTICIPANTS
# =====================================================
session_participants = Table(
    "session_participants",
    metadata,
    Column(
        "session_id",
        Text,
        ForeignKey("sessions.session_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "user_id",
        Text,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "status",
        participant_status_enum,
        nullable=False,
        server_default="accepted",
    ),
    UniqueConstraint("session_id", "user_id", name="uq_session_participants_pair"),
    Index("idx_session_participants_user_id", "user_id"),
)


# =====================================================
# 4. REMINDER_DELIVERY_LOG (delivery ledger)
# =====================================================
reminder_delivery_log = Table(
    "reminder_delivery_log",
    metadata,
    Column("log_id", Integer, primary_key=True, autoincrement=True),
    Column("event_id", Text, nullable=False),
    Column("recipient_role", recipient_role_enum, nullable=False),
    Column("recipient_identity", Text, nullable=False),
    Column("recipient_contact", Text),  # Normalized phone/email used for the send
    Column("recipient_country", Text),  # ISO region of the phone number, e.g., "IN"
    Column("reminder_class", Text, nullable=False),  # e.g., "near_term"
    Column("reminder_label", Text),  # e.g., "15min"
    Column("channel", channel_enum, nullable=False),
    Column("template_name", Text),
    Column("status", delivery_status_enum, nullable=False),
    Column("provider_response", JSONB),  # Raw provider payload or error
    Column("attempted_at", TIMESTAMP(timezone=True), nullable=False),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index(
        "idx_reminder_delivery_log_key",
        "event_id",
        "recipient_identity",
        "reminder_class",
        "channel",
    ),
    # At most one SENT record per idempotency key; FAILED rows may accumulate
    Index(
        "uq_reminder_delivery_log_sent_key",
        "event_id",
        "recipient_identity",
        "reminder_class",
        "channel",
        unique=True,
        postgresql_where=text("status = 'sent'"),
    ),
    Index("idx_reminder_delivery_log_attempted_at", "attempted_at"),
)
