"""Initial schema: users, sessions, participants and the reminder delivery log.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    "reminder_recipient_role": ("owner", "participant"),
    "reminder_channel": ("whatsapp", "sms", "email"),
    "reminder_delivery_status": ("sent", "failed"),
    "session_status": ("scheduled", "cancelled"),
    "session_participant_status": ("accepted", "pending", "rejected"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("name", sa.Text()),
        sa.Column("phone_number", sa.Text()),
        sa.Column("email", sa.Text()),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("user_id", name="pk_users"),
    )

    op.create_table(
        "sessions",
        sa.Column("session_id", sa.Text(), nullable=False),
        sa.Column("owner_user_id", sa.Text()),
        sa.Column("subject", sa.Text()),
        sa.Column("title", sa.Text()),
        sa.Column("scheduled_start_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column(
            "status",
            _enum("session_status"),
            nullable=False,
            server_default="scheduled",
        ),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("session_id", name="pk_sessions"),
        sa.ForeignKeyConstraint(
            ["owner_user_id"],
            ["users.user_id"],
            name="fk_sessions_owner_user_id_users",
            ondelete="SET NULL",
        ),
    )
    op.create_index("idx_sessions_scheduled_start_at", "sessions", ["scheduled_start_at"])
    op.create_index("idx_sessions_owner_user_id", "sessions", ["owner_user_id"])

    op.create_table(
        "session_participants",
        sa.Column("session_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column(
            "status",
            _enum("session_participant_status"),
            nullable=False,
            server_default="accepted",
        ),
        sa.ForeignKeyConstraint(
            ["session_id"],
            ["sessions.session_id"],
            name="fk_session_participants_session_id_sessions",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.user_id"],
            name="fk_session_participants_user_id_users",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint("session_id", "user_id", name="uq_session_participants_pair"),
    )
    op.create_index(
        "idx_session_participants_user_id", "session_participants", ["user_id"]
    )

    op.create_table(
        "reminder_delivery_log",
        sa.Column("log_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.Text(), nullable=False),
        sa.Column("recipient_role", _enum("reminder_recipient_role"), nullable=False),
        sa.Column("recipient_identity", sa.Text(), nullable=False),
        sa.Column("recipient_contact", sa.Text()),
        sa.Column("reminder_class", sa.Text(), nullable=False),
        sa.Column("reminder_label", sa.Text()),
        sa.Column("channel", _enum("reminder_channel"), nullable=False),
        sa.Column("template_name", sa.Text()),
        sa.Column("status", _enum("reminder_delivery_status"), nullable=False),
        sa.Column("provider_response", postgresql.JSONB()),
        sa.Column("attempted_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("created_at", postgresql.TIMESTAMP(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("log_id", name="pk_reminder_delivery_log"),
    )
    key = ["event_id", "recipient_identity", "reminder_class", "channel"]
    op.create_index("idx_reminder_delivery_log_key", "reminder_delivery_log", key)
    # One SENT row per key; FAILED rows may repeat
    op.create_index(
        "uq_reminder_delivery_log_sent_key",
        "reminder_delivery_log",
        key,
        unique=True,
        postgresql_where=sa.text("status = 'sent'"),
    )
    op.create_index(
        "idx_reminder_delivery_log_attempted_at", "reminder_delivery_log", ["attempted_at"]
    )


def downgrade() -> None:
    op.drop_table("reminder_delivery_log")
    op.drop_table("session_participants")
    op.drop_table("sessions")
    op.drop_table("users")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
