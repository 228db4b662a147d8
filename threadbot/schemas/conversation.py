"""
Normalized event and message contracts for threadbot.

Adapters convert raw webhook payloads into InboundEvent; history fetches
return Message; the transcript handed to the generation service is a list
of TranscriptEntry. Stable and independent of any single platform.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    """Kinds of inbound events the dispatcher routes on."""

    MENTION = "mention"
    INTERACTION = "interaction"
    SUBSCRIBED_MESSAGE = "subscribed_message"


class ConversationRef(BaseModel):
    """A single addressable chat context: platform + conversation id."""

    platform: str
    conversation_id: str

    model_config = {"frozen": True}

    @property
    def key(self) -> str:
        return f"{self.platform}:{self.conversation_id}"

    def __str__(self) -> str:
        return self.key


class Author(BaseModel):
    """Message author; is_self marks messages posted by this bot."""

    id: str
    is_self: bool = False
    name: Optional[str] = None


class Message(BaseModel):
    """A message as returned by an adapter's history fetch (read-only)."""

    author: Author
    text: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[str] = None


class TranscriptEntry(BaseModel):
    """Role-tagged history entry consumed by the generation service."""

    role: Literal["assistant", "user"]
    content: str


class _BaseEvent(BaseModel):
    platform: str
    conversation_id: str
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def ref(self) -> ConversationRef:
        return ConversationRef(
            platform=self.platform, conversation_id=self.conversation_id
        )


class Mention(_BaseEvent):
    """The bot was mentioned (or addressed directly)."""

    kind: Literal["mention"] = "mention"
    author: Author
    text: str = ""


class Interaction(_BaseEvent):
    """A button click or menu selection on a previously posted card."""

    kind: Literal["interaction"] = "interaction"
    action_id: str = Field(min_length=1)
    value: Optional[str] = None
    author: Optional[Author] = None


class SubscribedMessage(_BaseEvent):
    """A new message in a conversation; dispatched only when subscribed."""

    kind: Literal["subscribed_message"] = "subscribed_message"
    author: Author
    text: str = ""


InboundEvent = Annotated[
    Union[Mention, Interaction, SubscribedMessage], Field(discriminator="kind")
]


class DeliveryResult(BaseModel):
    """Result of posting to a conversation (success + optional message_id)."""

    success: bool
    platform_message_id: Optional[str] = None
