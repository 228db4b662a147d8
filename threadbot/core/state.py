"""
Conversation state stores.

The subscribed flag is the only mutable state the core owns. Stores give
read-your-writes per conversation: set_subscribed returns only after the
value is durable, so a dispatch check that follows observes it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from threadbot.core.errors import ConfigurationError
from threadbot.db import DatabaseManager
from threadbot.schemas.conversation import ConversationRef
from threadbot.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    async def is_subscribed(self, ref: ConversationRef) -> bool: ...
    async def set_subscribed(self, ref: ConversationRef, subscribed: bool) -> None: ...


class MemoryStateStore:
    """Process-local store; subscriptions last for the process lifetime."""

    def __init__(self) -> None:
        self._subscribed: dict[str, bool] = {}

    async def is_subscribed(self, ref: ConversationRef) -> bool:
        return self._subscribed.get(ref.key, False)

    async def set_subscribed(self, ref: ConversationRef, subscribed: bool) -> None:
        self._subscribed[ref.key] = subscribed


class DatabaseStateStore:
    """SQLAlchemy-backed store; blocking session work runs off the event loop."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db_manager = db_manager

    def _read(self, ref: ConversationRef) -> bool:
        with self._db_manager.db_session() as db:
            return SubscriptionService(db).is_subscribed(
                ref.platform, ref.conversation_id
            )

    def _write(self, ref: ConversationRef, subscribed: bool) -> None:
        with self._db_manager.db_session() as db:
            SubscriptionService(db).set_subscribed(
                ref.platform, ref.conversation_id, subscribed
            )

    async def is_subscribed(self, ref: ConversationRef) -> bool:
        return await asyncio.to_thread(self._read, ref)

    async def set_subscribed(self, ref: ConversationRef, subscribed: bool) -> None:
        await asyncio.to_thread(self._write, ref, subscribed)
        logger.debug("Subscription for %s set to %s", ref.key, subscribed)


def build_state_store(backend: str, db_manager: DatabaseManager | None = None) -> StateStore:
    backend = (backend or "memory").lower()
    if backend == "memory":
        return MemoryStateStore()
    if backend == "database":
        return DatabaseStateStore(db_manager or DatabaseManager())
    raise ConfigurationError(f"Unknown state backend: {backend}")
