from __future__ import annotations

from typing import Any, AsyncIterator, List, Optional, Sequence

from pydantic_ai import Agent
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.litellm import LiteLLMProvider

from threadbot.config import get_settings
from threadbot.core.errors import GenerationFailure
from threadbot.infra.logging_config import get_logger
from threadbot.schemas.conversation import TranscriptEntry

logger = get_logger(__name__)


def _transcript_to_message_list(
    transcript: Sequence[TranscriptEntry], system_prompt: str = ""
) -> List[Any]:
    """Convert transcript entries to a pydantic_ai ModelMessage list for message_history."""
    out: List[Any] = []
    if system_prompt.strip():
        out.append(ModelRequest(parts=[SystemPromptPart(content=system_prompt)]))
    for entry in transcript:
        content = entry.content.strip()
        if not content:
            continue
        if entry.role == "user":
            out.append(ModelRequest(parts=[UserPromptPart(content=content)]))
        else:
            out.append(ModelResponse(parts=[TextPart(content=content)]))
    return out


def split_prompt(
    transcript: Sequence[TranscriptEntry],
) -> tuple[str, List[TranscriptEntry]]:
    """
    The last user entry becomes the prompt, every other entry stays history
    in order. Raises GenerationFailure when there is no user entry at all.
    """
    entries = list(transcript)
    for index in range(len(entries) - 1, -1, -1):
        if entries[index].role == "user":
            return entries[index].content, entries[:index] + entries[index + 1 :]
    raise GenerationFailure("Transcript has no user message to answer")


class LLMRunner:
    """Generation service: streams text deltas from a pydantic-ai Agent."""

    def __init__(
        self,
        model_name: str,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        system_prompt: Optional[str] = None,
        agent: Optional[Agent] = None,
    ) -> None:
        self._system_prompt = system_prompt or ""
        if agent is None:
            provider = LiteLLMProvider(api_key=api_key, api_base=api_base)
            model = OpenAIChatModel(model_name, provider=provider)
            logger.info(f"Initializing LLM runner with model {model_name}")
            agent = Agent(model)
        self._agent = agent

    async def generate(self, transcript: Sequence[TranscriptEntry]) -> AsyncIterator[str]:
        prompt, history = split_prompt(transcript)
        message_history = _transcript_to_message_list(history, self._system_prompt)
        async with self._agent.run_stream(
            prompt, message_history=message_history or None
        ) as result:
            async for delta in result.stream_text(delta=True):
                if delta:
                    yield delta


def build_llm_runner_from_env() -> LLMRunner:
    settings = get_settings()
    logger.info(
        "LLM runner config: model=%s, api_key=%s, api_base=%s",
        settings.llm_model,
        "set" if settings.litellm_api_key else "not set",
        settings.litellm_api_base or "(default)",
    )
    if not settings.litellm_api_key:
        logger.warning(
            "LITELLM_API_KEY is not set; set it to a valid provider or LiteLLM API key to avoid 401 errors."
        )
    return LLMRunner(
        model_name=settings.llm_model,
        api_key=settings.litellm_api_key,
        api_base=settings.litellm_api_base,
        system_prompt=settings.system_prompt,
    )
