"""Service for reading and upserting conversation subscription rows."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from threadbot.models.conversation_subscription import ConversationSubscription


class SubscriptionService:
    """Read and upsert subscription flags. Writes are committed before returning."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get_subscription(
        self, platform: str, conversation_id: str
    ) -> Optional[ConversationSubscription]:
        return (
            self.db.query(ConversationSubscription)
            .filter(
                ConversationSubscription.platform == platform,
                ConversationSubscription.conversation_id == conversation_id,
            )
            .first()
        )

    def is_subscribed(self, platform: str, conversation_id: str) -> bool:
        row = self.get_subscription(platform, conversation_id)
        return bool(row and row.subscribed)

    def set_subscribed(
        self, platform: str, conversation_id: str, subscribed: bool
    ) -> ConversationSubscription:
        """Create or update the row for the conversation; idempotent."""
        row = self.get_subscription(platform, conversation_id)
        if row is None:
            row = ConversationSubscription(
                platform=platform,
                conversation_id=conversation_id,
                subscribed=subscribed,
            )
            self.db.add(row)
            try:
                self.db.commit()
            except IntegrityError:
                # Concurrent insert for the same conversation; last writer wins.
                self.db.rollback()
                row = self.get_subscription(platform, conversation_id)
                row.subscribed = subscribed
                self.db.commit()
        elif row.subscribed != subscribed:
            row.subscribed = subscribed
            self.db.commit()
        self.db.refresh(row)
        return row
