"""Add recipient_country to reminder_delivery_log.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

Stores the ISO region of the recipient's phone number on each delivery
record. Existing rows stay NULL.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "reminder_delivery_log",
        sa.Column("recipient_country", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("reminder_delivery_log", "recipient_country")
