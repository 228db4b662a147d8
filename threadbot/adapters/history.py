"""Bounded per-conversation message log for platforms without a history API."""

from __future__ import annotations

from collections import OrderedDict, deque

from threadbot.schemas.conversation import Message


class MessageLog:
    """
    Keeps the last `max_size` messages of at most `max_conversations`
    conversations. Recording into a conversation marks it most recently
    used; the least recently used conversation is evicted when full.
    """

    def __init__(self, max_size: int = 100, max_conversations: int = 1000) -> None:
        self._max_size = max_size
        self._max_conversations = max_conversations
        self._messages: OrderedDict[str, deque[Message]] = OrderedDict()

    def record(self, conversation_id: str, message: Message) -> Message:
        messages = self._messages.get(conversation_id)
        if messages is None:
            messages = deque(maxlen=self._max_size)
            self._messages[conversation_id] = messages
            while len(self._messages) > self._max_conversations:
                self._messages.popitem(last=False)
        else:
            self._messages.move_to_end(conversation_id)
        messages.append(message)
        return message

    def recent(self, conversation_id: str, limit: int) -> list[Message]:
        """Last `limit` messages, in the order they were recorded."""
        if limit <= 0 or conversation_id not in self._messages:
            return []
        return list(self._messages[conversation_id])[-limit:]

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._messages

    def __len__(self) -> int:
        return len(self._messages)
