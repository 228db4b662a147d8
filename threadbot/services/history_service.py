"""HistoryAssembler: bounded conversation history as a role-tagged transcript."""

from __future__ import annotations

import logging
from typing import List, Optional

from threadbot.core.errors import FetchFailure
from threadbot.core.registry import AdapterRegistry
from threadbot.schemas.conversation import ConversationRef, Message, TranscriptEntry

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 20


def messages_to_transcript(messages: List[Message]) -> List[TranscriptEntry]:
    """Oldest-first transcript; blank messages dropped, own messages as assistant."""
    ordered = sorted(messages, key=lambda m: m.timestamp)
    result: List[TranscriptEntry] = []
    for m in ordered:
        if not (m.text or "").strip():
            continue
        role = "assistant" if m.author.is_self else "user"
        result.append(TranscriptEntry(role=role, content=m.text))
    return result


class HistoryAssembler:
    def __init__(
        self, adapters: AdapterRegistry, default_limit: int = DEFAULT_HISTORY_LIMIT
    ) -> None:
        self._adapters = adapters
        self._default_limit = default_limit

    async def assemble(
        self, ref: ConversationRef, max_messages: Optional[int] = None
    ) -> List[TranscriptEntry]:
        limit = max_messages if max_messages is not None else self._default_limit
        adapter = self._adapters.require_adapter(ref.platform)
        try:
            messages = await adapter.fetch_messages(ref.conversation_id, limit=limit)
        except FetchFailure:
            raise
        except Exception as e:
            raise FetchFailure(f"History fetch failed for {ref.key}: {e}") from e
        window = sorted(messages, key=lambda m: m.timestamp)[-limit:] if limit > 0 else []
        transcript = messages_to_transcript(window)
        logger.debug(
            "Assembled %d transcript entries from %d messages for %s",
            len(transcript),
            len(messages),
            ref.key,
        )
        return transcript
