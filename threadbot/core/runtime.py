from __future__ import annotations

from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, Protocol, Sequence

from threadbot.schemas.conversation import InboundEvent, TranscriptEntry

if TYPE_CHECKING:
    from threadbot.core.thread import Thread

EventHandler = Callable[["Thread", InboundEvent], Awaitable[None]]


class GenerationService(Protocol):
    def generate(self, transcript: Sequence[TranscriptEntry]) -> AsyncIterator[str]:
        """Lazy, finite, non-restartable stream of text increments."""
        ...
