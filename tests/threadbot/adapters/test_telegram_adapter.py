"""Tests for TelegramAdapter."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import NetworkError

from threadbot.adapters.history import MessageLog
from threadbot.adapters.telegram import (
    TelegramAdapter,
    decode_callback_data,
    encode_callback_data,
    render_card,
    split_conversation_id,
)
from threadbot.assistants.welcome_bot import build_welcome_card
from threadbot.core.errors import DeliveryFailure, ParseFailure
from threadbot.core.registry import AdapterRegistry
from threadbot.schemas.conversation import (
    Author,
    ConversationRef,
    Interaction,
    Mention,
    Message,
    SubscribedMessage,
)
from threadbot.services.history_service import HistoryAssembler
from threadbot.workers.llm import split_prompt

# Token format: digits:rest (e.g. 123456:ABC). Used only for parse tests; no real API calls.
FAKE_TOKEN = "123456:AAHdqTcvCH1vGWJxfSeofSAs0K5P"

USER = {
    "id": 789,
    "is_bot": False,
    "first_name": "Test",
    "username": "tester",
    "language_code": "en",
}
CHAT = {"id": 789, "type": "private", "first_name": "Test"}
SENT_AT = datetime(2021, 1, 1, 0, 0, 5, tzinfo=timezone.utc)


def message_update(text="hello", update_id=123, date=1609459200):
    return {
        "update_id": update_id,
        "message": {
            "message_id": 456,
            "from": USER,
            "chat": CHAT,
            "date": date,
            "text": text,
        },
    }


def callback_update(data="select-fruit:banana"):
    return {
        "update_id": 124,
        "callback_query": {
            "id": "cbq-1",
            "from": USER,
            "chat_instance": "ci-1",
            "data": data,
            "message": {
                "message_id": 500,
                "date": 1609459300,
                "chat": CHAT,
                "text": "Welcome to my bot!",
            },
        },
    }


def body(payload):
    return json.dumps(payload).encode()


@pytest.fixture
def telegram_adapter():
    return TelegramAdapter(bot_token=FAKE_TOKEN, bot_username="@ThreadBot")


@pytest.fixture
def mock_bot():
    bot = MagicMock()
    bot.defaults = None
    bot.send_message = AsyncMock(return_value=MagicMock(message_id=42, date=SENT_AT))
    bot.edit_message_text = AsyncMock()
    bot.answer_callback_query = AsyncMock()
    return bot


def test_verify_webhook_with_secret():
    adapter = TelegramAdapter(bot_token=FAKE_TOKEN, webhook_secret="secret")
    assert adapter.verify_webhook(b"", {"x-telegram-bot-api-secret-token": "secret"}) is True
    assert adapter.verify_webhook(b"", {"X-Telegram-Bot-Api-Secret-Token": "wrong"}) is False
    assert adapter.verify_webhook(b"", {}) is False


def test_verify_webhook_without_secret(telegram_adapter):
    assert telegram_adapter.verify_webhook(b"", {}) is True


def test_plain_message_becomes_subscribed_message(telegram_adapter):
    event = telegram_adapter.parse_request(body(message_update()), {})

    assert isinstance(event, SubscribedMessage)
    assert event.platform == "telegram"
    assert event.conversation_id == "789"
    assert event.text == "hello"
    assert event.author.id == "789"
    assert event.author.name == "tester"


@pytest.mark.parametrize("text", ["/start", "/start@ThreadBot", "hey @threadbot, help"])
def test_start_and_username_mentions(telegram_adapter, text):
    event = telegram_adapter.parse_request(body(message_update(text)), {})

    assert isinstance(event, Mention)
    assert event.text == text


def test_callback_query_becomes_interaction(telegram_adapter):
    event = telegram_adapter.parse_request(body(callback_update()), {})

    assert isinstance(event, Interaction)
    assert event.action_id == "select-fruit"
    assert event.value == "banana"
    assert event.conversation_id == "789"


def test_update_without_message_is_ignored(telegram_adapter):
    assert telegram_adapter.parse_request(body({"update_id": 1}), {}) is None


@pytest.mark.parametrize("raw", [b"not json", b"[1, 2]"])
def test_invalid_body_raises_parse_failure(telegram_adapter, raw):
    with pytest.raises(ParseFailure):
        telegram_adapter.parse_request(raw, {})


@pytest.mark.asyncio
async def test_parsed_messages_feed_history(telegram_adapter):
    telegram_adapter.parse_request(body(message_update("first", 1)), {})
    telegram_adapter.parse_request(body(message_update("second", 2)), {})

    messages = await telegram_adapter.fetch_messages("789", limit=1)

    assert [m.text for m in messages] == ["second"]
    assert await telegram_adapter.fetch_messages("unknown", limit=5) == []


def test_conversation_id_and_callback_helpers():
    assert split_conversation_id("789") == (789, None)
    assert split_conversation_id("-100123:7") == (-100123, 7)
    assert decode_callback_data(encode_callback_data("primary")) == ("primary", None)
    assert decode_callback_data(encode_callback_data("select-fruit", "apple")) == (
        "select-fruit",
        "apple",
    )


def test_render_welcome_card():
    text, markup = render_card(build_welcome_card())

    assert text.startswith("Welcome to my bot!")
    rows = markup.inline_keyboard
    assert [b.callback_data for b in rows[0]] == ["primary"]
    assert [b.callback_data for b in rows[1]] == [
        "select-fruit:apple",
        "select-fruit:banana",
        "select-fruit:orange",
    ]


@pytest.mark.asyncio
async def test_post_card_sends_keyboard_and_records_message(telegram_adapter, mock_bot):
    telegram_adapter._bot = mock_bot

    result = await telegram_adapter.post("789", build_welcome_card())

    assert result.success is True
    assert result.platform_message_id == "42"
    kwargs = mock_bot.send_message.call_args.kwargs
    assert kwargs["chat_id"] == 789
    assert kwargs["reply_markup"] is not None
    history = await telegram_adapter.fetch_messages("789", limit=5)
    assert history[-1].author.is_self is True


@pytest.mark.asyncio
async def test_post_failure_raises_delivery_failure(telegram_adapter, mock_bot):
    mock_bot.send_message.side_effect = NetworkError("down")
    telegram_adapter._bot = mock_bot

    with pytest.raises(DeliveryFailure):
        await telegram_adapter.post("789", "hi")


@pytest.mark.asyncio
async def test_stream_sends_then_edits(mock_bot):
    telegram_adapter = TelegramAdapter(bot_token=FAKE_TOKEN, stream_edit_interval=0)
    telegram_adapter._bot = mock_bot
    stream = telegram_adapter.open_stream("789")

    await stream.send("He")
    await stream.send("llo")
    await stream.close()

    mock_bot.send_message.assert_awaited_once()
    assert mock_bot.send_message.call_args.kwargs["text"] == "He"
    assert mock_bot.edit_message_text.call_args.kwargs["text"] == "Hello"
    history = await telegram_adapter.fetch_messages("789", limit=1)
    assert history[0].text == "Hello"
    assert history[0].author.is_self is True


@pytest.mark.asyncio
async def test_acknowledge_answers_callback_query(telegram_adapter, mock_bot):
    event = telegram_adapter.parse_request(body(callback_update()), {})
    telegram_adapter._bot = mock_bot

    await telegram_adapter.acknowledge(event)

    mock_bot.answer_callback_query.assert_awaited_once_with("cbq-1")


@pytest.mark.asyncio
async def test_stream_coalesces_increments_within_edit_interval(telegram_adapter, mock_bot):
    telegram_adapter._bot = mock_bot
    stream = telegram_adapter.open_stream("789")

    for _ in range(100):
        await stream.send("word ")
    await stream.close()

    assert mock_bot.send_message.await_count == 1
    assert mock_bot.edit_message_text.await_count == 1
    assert mock_bot.edit_message_text.call_args.kwargs["text"] == "word " * 100


@pytest.mark.asyncio
async def test_close_without_pending_text_makes_no_call(telegram_adapter, mock_bot):
    telegram_adapter._bot = mock_bot
    stream = telegram_adapter.open_stream("789")

    await stream.send("done")
    await stream.close()

    mock_bot.send_message.assert_awaited_once()
    mock_bot.edit_message_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_transcript_ends_with_user_turn_sent_during_streaming(telegram_adapter, mock_bot):
    telegram_adapter._bot = mock_bot
    registry = AdapterRegistry()
    registry.register_adapter(telegram_adapter)
    ref = ConversationRef(platform="telegram", conversation_id="789")

    telegram_adapter.parse_request(body(message_update("first question", 1)), {})
    stream = telegram_adapter.open_stream("789")
    await stream.send("answer ")
    await stream.send("one")
    telegram_adapter.parse_request(
        body(message_update("second question", 2, date=int(SENT_AT.timestamp()))), {}
    )
    await stream.close()

    transcript = await HistoryAssembler(registry).assemble(ref, 10)

    assert [(e.role, e.content) for e in transcript] == [
        ("user", "first question"),
        ("assistant", "answer one"),
        ("user", "second question"),
    ]
    prompt, _ = split_prompt(transcript)
    assert prompt == "second question"


@pytest.mark.asyncio
async def test_own_messages_stamped_with_send_date(telegram_adapter, mock_bot):
    telegram_adapter._bot = mock_bot

    await telegram_adapter.post("789", "hi")

    history = await telegram_adapter.fetch_messages("789", limit=1)
    assert history[0].timestamp == SENT_AT


def test_message_log_evicts_least_recently_used_conversation():
    log = MessageLog(max_size=2, max_conversations=2)

    def message(text):
        return Message(author=Author(id="U1"), text=text, timestamp=SENT_AT)

    log.record("a", message("a1"))
    log.record("b", message("b1"))
    log.record("a", message("a2"))
    log.record("c", message("c1"))

    assert len(log) == 2
    assert "b" not in log
    assert [m.text for m in log.recent("a", 5)] == ["a1", "a2"]
    assert [m.text for m in log.recent("c", 5)] == ["c1"]


def test_message_log_keeps_last_messages_per_conversation():
    log = MessageLog(max_size=2)
    for n in range(3):
        log.record("a", Message(author=Author(id="U1"), text=f"m{n}", timestamp=SENT_AT))

    assert [m.text for m in log.recent("a", 5)] == ["m1", "m2"]
    assert log.recent("a", 0) == []


@pytest.mark.asyncio
async def test_adapter_history_bounded_by_conversation_count():
    adapter = TelegramAdapter(bot_token=FAKE_TOKEN, history_conversations=1)
    first = message_update("in chat 789")
    second = message_update("in chat 790", 2)
    second["message"]["chat"] = {**CHAT, "id": 790}

    adapter.parse_request(body(first), {})
    adapter.parse_request(body(second), {})

    assert await adapter.fetch_messages("789", limit=5) == []
    assert [m.text for m in await adapter.fetch_messages("790", limit=5)] == ["in chat 790"]
