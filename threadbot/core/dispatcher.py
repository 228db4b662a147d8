"""
Event dispatcher: routes normalized inbound events to registered handlers.

- Mention: every mention handler, in registration order.
- Interaction: the single handler bound to the event's action_id; unknown
  ids are ignored so buttons from older card versions stay harmless.
- SubscribedMessage: every subscribed-message handler, but only when the
  conversation is subscribed.

A failing handler is logged and never stops its siblings; dispatch returns
the failures instead of raising them.
"""

from __future__ import annotations

import contextlib
import logging
from typing import AsyncIterator, Callable, Optional

from threadbot.core.errors import (
    DuplicateHandlerError,
    FetchFailure,
    HandlerFailure,
    ThreadbotError,
)
from threadbot.core.locks import ConversationLocks
from threadbot.core.registry import AdapterRegistry
from threadbot.core.runtime import EventHandler
from threadbot.core.state import StateStore
from threadbot.core.thread import Thread
from threadbot.schemas.conversation import EventKind, InboundEvent, Interaction

logger = logging.getLogger(__name__)


class EventDispatcher:
    def __init__(
        self,
        adapters: AdapterRegistry,
        state: StateStore,
        serialize_conversations: bool = False,
    ) -> None:
        self._adapters = adapters
        self._state = state
        self._handlers: dict[EventKind, list[EventHandler]] = {
            EventKind.MENTION: [],
            EventKind.SUBSCRIBED_MESSAGE: [],
        }
        self._actions: dict[str, EventHandler] = {}
        self._locks = ConversationLocks() if serialize_conversations else None
        self._active: set[Thread] = set()

    # -- registration ----------------------------------------------------

    def register(
        self,
        kind: EventKind,
        handler: EventHandler,
        action_id: Optional[str] = None,
    ) -> EventHandler:
        """Bind a handler. Interactions need an action_id, other kinds must not have one."""
        kind = EventKind(kind)
        if kind == EventKind.INTERACTION:
            if not action_id:
                raise ValueError("Interaction handlers require a non-empty action_id")
            if action_id in self._actions:
                raise DuplicateHandlerError(
                    f"Handler already registered for action {action_id!r}"
                )
            self._actions[action_id] = handler
            return handler
        if action_id is not None:
            raise ValueError(f"action_id is only valid for interactions, not {kind.value}")
        if handler in self._handlers[kind]:
            raise DuplicateHandlerError(
                f"Handler {handler!r} already registered for {kind.value}"
            )
        self._handlers[kind].append(handler)
        return handler

    def on_mention(self) -> Callable[[EventHandler], EventHandler]:
        return lambda handler: self.register(EventKind.MENTION, handler)

    def on_action(self, action_id: str) -> Callable[[EventHandler], EventHandler]:
        return lambda handler: self.register(
            EventKind.INTERACTION, handler, action_id=action_id
        )

    def on_subscribed_message(self) -> Callable[[EventHandler], EventHandler]:
        return lambda handler: self.register(EventKind.SUBSCRIBED_MESSAGE, handler)

    def handlers_for(self, kind: EventKind) -> list[EventHandler]:
        return list(self._handlers.get(EventKind(kind), []))

    def action_ids(self) -> list[str]:
        return list(self._actions)

    # -- dispatch --------------------------------------------------------

    async def dispatch(self, event: InboundEvent) -> list[ThreadbotError]:
        """
        Route one event. Never raises for handler or state failures: they are
        logged and returned, so an empty list means every handler succeeded.
        """
        kind = EventKind(event.kind)
        if kind == EventKind.INTERACTION:
            handlers = self._resolve_action(event)
        else:
            handlers = self.handlers_for(kind)
        failures: list[ThreadbotError] = []
        if not handlers:
            logger.debug("No handlers for %s event on %s", kind.value, event.ref.key)
            return failures

        ref = event.ref
        thread = Thread(ref, self._adapters.require_adapter(event.platform), self._state)
        async with self._hold(ref.key):
            if kind == EventKind.SUBSCRIBED_MESSAGE and not await self._subscribed(
                thread, failures
            ):
                return failures
            self._active.add(thread)
            try:
                for handler in handlers:
                    failure = await self._run(handler, thread, event)
                    if failure is not None:
                        failures.append(failure)
            finally:
                self._active.discard(thread)
        return failures

    def _resolve_action(self, event: Interaction) -> list[EventHandler]:
        handler = self._actions.get(event.action_id)
        if handler is None:
            logger.debug(
                "Ignoring unregistered action %r on %s", event.action_id, event.ref.key
            )
            return []
        return [handler]

    async def _subscribed(self, thread: Thread, failures: list[ThreadbotError]) -> bool:
        try:
            subscribed = await thread.is_subscribed()
        except Exception as e:
            logger.exception("Subscription lookup failed for %s", thread.ref.key)
            failure = FetchFailure(f"Subscription lookup failed for {thread.ref.key}")
            failure.__cause__ = e
            failures.append(failure)
            return False
        if not subscribed:
            logger.debug("Dropping message for unsubscribed %s", thread.ref.key)
        return subscribed

    async def _run(
        self, handler: EventHandler, thread: Thread, event: InboundEvent
    ) -> Optional[HandlerFailure]:
        name = getattr(handler, "__qualname__", repr(handler))
        try:
            await handler(thread, event)
        except Exception as e:
            logger.exception(
                "Handler %s failed for %s on %s", name, event.kind, thread.ref.key
            )
            failure = HandlerFailure(f"Handler {name} failed: {e}")
            failure.__cause__ = e
            return failure
        return None

    @contextlib.asynccontextmanager
    async def _hold(self, key: str) -> AsyncIterator[None]:
        if self._locks is None:
            yield
            return
        async with self._locks.hold(key):
            yield

    # -- shutdown --------------------------------------------------------

    def cancel_all(self) -> int:
        """Cancel delivery for every in-flight thread. Returns how many were signalled."""
        threads = list(self._active)
        for thread in threads:
            thread.cancel()
        if threads:
            logger.info("Cancelled %d in-flight conversation(s)", len(threads))
        return len(threads)

    @property
    def active_threads(self) -> list[Thread]:
        return list(self._active)
