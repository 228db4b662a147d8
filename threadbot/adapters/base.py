"""
Platform adapter interface.

Adapters encapsulate platform-specific logic: verifying and parsing raw
webhook requests into normalized events, fetching conversation history,
and delivering structured, plain-text or streamed replies.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from threadbot.schemas.cards import PostContent
from threadbot.schemas.conversation import DeliveryResult, InboundEvent, Message


class ResponseStream(ABC):
    """
    Sink for one streamed reply. The pipeline awaits send() for each
    increment in generation order and calls close() exactly once.
    How increments are rendered (edit in place, appended posts) is the
    adapter's choice.
    """

    @abstractmethod
    async def send(self, chunk: str) -> DeliveryResult:
        """Deliver one text increment. Raise DeliveryFailure on error."""
        ...

    async def close(self) -> None:
        """Finish the reply. Default: nothing to finalize."""
        return None


class BasePlatformAdapter(ABC):
    """Contract for platform adapters. New platforms implement this interface."""

    platform: str

    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """
        Verify webhook request (e.g. secret token, signature). Override if platform supports it.
        Return True if valid or verification not required; False to reject.
        """
        return True

    def handshake(
        self, body: bytes, headers: Mapping[str, str]
    ) -> Optional[dict[str, Any]]:
        """Return a response body for protocol handshakes (no dispatch), else None."""
        return None

    @abstractmethod
    def parse_request(
        self, body: bytes, headers: Mapping[str, str]
    ) -> Optional[InboundEvent]:
        """
        Parse a raw webhook request into a normalized event.
        Return None for updates that are acknowledged but not dispatched.
        Raise ParseFailure if invalid.
        """
        ...

    async def acknowledge(self, event: InboundEvent) -> None:
        """Platform-level acknowledgement of a parsed event (e.g. callback answers)."""
        return None

    @abstractmethod
    async def fetch_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """Return up to `limit` most recent messages of the conversation."""
        ...

    @abstractmethod
    async def post(self, conversation_id: str, content: PostContent) -> DeliveryResult:
        """Post a card or plain text to the conversation."""
        ...

    @abstractmethod
    def open_stream(self, conversation_id: str) -> ResponseStream:
        """Start a streamed reply in the conversation."""
        ...

    async def aclose(self) -> None:
        """Release clients held by the adapter."""
        return None


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup; Starlette lowercases, tests may not."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None
