"""
ConversationSubscription model: durable subscribed flag per conversation.

One row per (platform, conversation_id). Rows are created on the first
subscribe and never deleted by the bot; unsubscribing flips the flag.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, Index, String, UniqueConstraint
from sqlalchemy.types import Uuid

from threadbot.db import Base
from threadbot.models.mixins import TimestampMixin


class ConversationSubscription(Base, TimestampMixin):
    __tablename__ = "conversation_subscriptions"

    __table_args__ = (
        UniqueConstraint(
            "platform",
            "conversation_id",
            name="uq_conversation_subscriptions_platform_conversation",
        ),
        Index("ix_conversation_subscriptions_subscribed", "platform", "subscribed"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    platform = Column(String(32), nullable=False)
    conversation_id = Column(String(255), nullable=False)
    subscribed = Column(Boolean, nullable=False, default=False)
