"""Tests for LLMRunner and transcript conversion."""

from contextlib import asynccontextmanager

import pytest
from pydantic_ai.messages import (
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    UserPromptPart,
)

from threadbot.core.errors import GenerationFailure
from threadbot.schemas.conversation import TranscriptEntry
from threadbot.workers.llm import LLMRunner, _transcript_to_message_list, split_prompt


class FakeStreamResult:
    def __init__(self, deltas):
        self._deltas = deltas

    async def stream_text(self, delta=False):
        for item in self._deltas:
            yield item


class FakeAgent:
    def __init__(self, deltas):
        self.deltas = deltas
        self.calls = []

    @asynccontextmanager
    async def run_stream(self, prompt, message_history=None):
        self.calls.append((prompt, message_history))
        yield FakeStreamResult(self.deltas)


def entry(role, content):
    return TranscriptEntry(role=role, content=content)


def test_split_prompt_uses_trailing_user_entry():
    transcript = [entry("user", "hi"), entry("assistant", "hello"), entry("user", "how?")]

    prompt, history = split_prompt(transcript)

    assert prompt == "how?"
    assert history == transcript[:2]


def test_split_prompt_uses_last_user_entry_when_reply_recorded_after_it():
    transcript = [entry("user", "hi"), entry("user", "again"), entry("assistant", "hello")]

    prompt, history = split_prompt(transcript)

    assert prompt == "again"
    assert history == [transcript[0], transcript[2]]


def test_split_prompt_without_user_entry_raises():
    with pytest.raises(GenerationFailure):
        split_prompt([entry("assistant", "hello")])


def test_transcript_to_message_list():
    messages = _transcript_to_message_list(
        [entry("user", "hi"), entry("assistant", " "), entry("assistant", "hello")],
        system_prompt="Be brief.",
    )

    assert isinstance(messages[0], ModelRequest)
    assert isinstance(messages[0].parts[0], SystemPromptPart)
    assert isinstance(messages[1].parts[0], UserPromptPart)
    assert isinstance(messages[2], ModelResponse)
    assert isinstance(messages[2].parts[0], TextPart)
    assert len(messages) == 3


@pytest.mark.asyncio
async def test_generate_streams_deltas_in_order():
    agent = FakeAgent(["He", "", "llo"])
    runner = LLMRunner("test-model", agent=agent)

    transcript = [entry("user", "hi"), entry("assistant", "yo"), entry("user", "again")]

    chunks = [c async for c in runner.generate(transcript)]

    assert chunks == ["He", "llo"]
    prompt, history = agent.calls[0]
    assert prompt == "again"
    assert len(history) == 2


@pytest.mark.asyncio
async def test_generate_without_user_entry_raises_generation_failure():
    agent = FakeAgent(["unused"])
    runner = LLMRunner("test-model", agent=agent)

    with pytest.raises(GenerationFailure):
        [c async for c in runner.generate([entry("assistant", "yo")])]
    assert agent.calls == []


@pytest.mark.asyncio
async def test_generate_single_turn_sends_no_history():
    agent = FakeAgent(["ok"])
    runner = LLMRunner("test-model", agent=agent)

    assert [c async for c in runner.generate([entry("user", "hi")])] == ["ok"]
    assert agent.calls == [("hi", None)]
