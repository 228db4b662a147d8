"""Thread: the handle a handler gets for the conversation an event belongs to."""

from __future__ import annotations

import asyncio
import logging

from threadbot.adapters.base import BasePlatformAdapter, ResponseStream
from threadbot.core.errors import DeliveryFailure
from threadbot.core.state import StateStore
from threadbot.schemas.cards import PostContent
from threadbot.schemas.conversation import ConversationRef, DeliveryResult

logger = logging.getLogger(__name__)


class Thread:
    def __init__(
        self,
        ref: ConversationRef,
        adapter: BasePlatformAdapter,
        state: StateStore,
    ) -> None:
        self.ref = ref
        self.adapter = adapter
        self._state = state
        self.cancelled = asyncio.Event()

    @property
    def id(self) -> str:
        return self.ref.conversation_id

    @property
    def platform(self) -> str:
        return self.ref.platform

    async def subscribe(self) -> None:
        """Mark the conversation subscribed; durable once this returns."""
        await self._state.set_subscribed(self.ref, True)
        logger.info("Subscribed to %s", self.ref.key)

    async def unsubscribe(self) -> None:
        await self._state.set_subscribed(self.ref, False)
        logger.info("Unsubscribed from %s", self.ref.key)

    async def is_subscribed(self) -> bool:
        return await self._state.is_subscribed(self.ref)

    async def post(self, content: PostContent) -> DeliveryResult:
        result = await self.adapter.post(self.ref.conversation_id, content)
        if not result.success:
            raise DeliveryFailure(f"Platform {self.platform} did not accept the post")
        return result

    def open_stream(self) -> ResponseStream:
        return self.adapter.open_stream(self.ref.conversation_id)

    def cancel(self) -> None:
        """Signal that delivery to this conversation is no longer possible."""
        self.cancelled.set()

    def __repr__(self) -> str:
        return f"Thread({self.ref.key!r})"
