"""add conversation_subscriptions table

Revision ID: c7d1e2f3a4b5
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "c7d1e2f3a4b5"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create conversation_subscriptions."""
    op.create_table(
        "conversation_subscriptions",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("conversation_id", sa.String(length=255), nullable=False),
        sa.Column(
            "subscribed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")
        ),
        sa.UniqueConstraint(
            "platform",
            "conversation_id",
            name="uq_conversation_subscriptions_platform_conversation",
        ),
    )
    op.create_index(
        "ix_conversation_subscriptions_subscribed",
        "conversation_subscriptions",
        ["platform", "subscribed"],
    )


def downgrade() -> None:
    """Drop conversation_subscriptions."""
    op.drop_index(
        "ix_conversation_subscriptions_subscribed",
        table_name="conversation_subscriptions",
    )
    op.drop_table("conversation_subscriptions")
