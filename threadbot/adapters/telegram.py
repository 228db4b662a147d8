"""
Telegram platform adapter.

Uses python-telegram-bot (v22) for parsing webhook updates and calling the
Bot API. Telegram bots cannot read chat history, so the adapter records the
messages it sees and sends in a bounded MessageLog.
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import TelegramError

from threadbot.adapters.base import BasePlatformAdapter, ResponseStream, header_value
from threadbot.adapters.history import MessageLog
from threadbot.core.errors import DeliveryFailure, ParseFailure
from threadbot.infra.logging_config import get_logger
from threadbot.schemas.cards import Actions, Button, Card, CardText, Divider, PostContent
from threadbot.schemas.conversation import (
    Author,
    DeliveryResult,
    InboundEvent,
    Interaction,
    Mention,
    Message,
    SubscribedMessage,
)

logger = get_logger(__name__)

START_COMMAND = "/start"
DIVIDER_LINE = "──────────"
CALLBACK_SEPARATOR = ":"
DEFAULT_EDIT_INTERVAL = 1.0


def build_conversation_id(chat_id: int | str, thread_id: Optional[int] = None) -> str:
    """Chat id, suffixed with the forum topic id when present."""
    if thread_id:
        return f"{chat_id}:{thread_id}"
    return str(chat_id)


def split_conversation_id(conversation_id: str) -> tuple[int, Optional[int]]:
    chat_id, _, thread_id = conversation_id.partition(":")
    return int(chat_id), (int(thread_id) if thread_id else None)


def encode_callback_data(action_id: str, value: Optional[str] = None) -> str:
    if value is None:
        return action_id
    return f"{action_id}{CALLBACK_SEPARATOR}{value}"


def decode_callback_data(data: str) -> tuple[str, Optional[str]]:
    action_id, sep, value = data.partition(CALLBACK_SEPARATOR)
    return action_id, (value if sep else None)


def render_card(card: Card) -> tuple[str, Optional[InlineKeyboardMarkup]]:
    """Render a card as message text plus an inline keyboard."""
    lines: list[str] = []
    rows: list[list[InlineKeyboardButton]] = []
    if card.title:
        lines.append(card.title)
    for child in card.children:
        if isinstance(child, CardText):
            lines.append(child.text)
        elif isinstance(child, Divider):
            lines.append(DIVIDER_LINE)
        elif isinstance(child, Actions):
            buttons: list[InlineKeyboardButton] = []
            for element in child.children:
                if isinstance(element, Button):
                    buttons.append(
                        InlineKeyboardButton(
                            element.label,
                            callback_data=encode_callback_data(element.id, element.value),
                        )
                    )
                else:
                    # Selects have no Telegram widget: one button per option.
                    rows.append(
                        [
                            InlineKeyboardButton(
                                option.label,
                                callback_data=encode_callback_data(element.id, option.value),
                            )
                            for option in element.options
                        ]
                    )
            if buttons:
                rows.insert(0, buttons)
    text = "\n\n".join(lines) or card.title or " "
    return text, (InlineKeyboardMarkup(rows) if rows else None)


def as_utc(ts: Optional[datetime]) -> datetime:
    """Bot API dates are UTC; fall back to now when absent."""
    if ts is None:
        return datetime.now(timezone.utc)
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


class TelegramResponseStream(ResponseStream):
    """
    Sends the first non-blank increment, then edits that message in place
    with the accumulated text at most once per `edit_interval` seconds.
    close() flushes whatever is still pending.
    """

    def __init__(
        self,
        adapter: "TelegramAdapter",
        conversation_id: str,
        edit_interval: float = DEFAULT_EDIT_INTERVAL,
    ) -> None:
        self._adapter = adapter
        self._conversation_id = conversation_id
        self._chat_id, self._thread_id = split_conversation_id(conversation_id)
        self._edit_interval = edit_interval
        self._text = ""
        self._sent_text = ""
        self._message_id: Optional[int] = None
        self._record: Optional[Message] = None
        self._last_flush = 0.0

    async def send(self, chunk: str) -> DeliveryResult:
        self._text += chunk
        if self._pending() and (
            self._message_id is None
            or time.monotonic() - self._last_flush >= self._edit_interval
        ):
            await self._flush()
        return DeliveryResult(success=True, platform_message_id=self._message_id_str)

    async def close(self) -> None:
        if self._pending():
            await self._flush()

    def _pending(self) -> bool:
        # Telegram rejects blank messages and edits that change nothing.
        return bool(self._text.strip()) and self._text.strip() != self._sent_text.strip()

    @property
    def _message_id_str(self) -> Optional[str]:
        return str(self._message_id) if self._message_id is not None else None

    async def _flush(self) -> None:
        bot = self._adapter.get_bot()
        try:
            if self._message_id is None:
                sent = await bot.send_message(
                    chat_id=self._chat_id,
                    text=self._text,
                    message_thread_id=self._thread_id,
                )
                self._message_id = sent.message_id
                self._record = self._adapter.record_own_message(
                    self._conversation_id, self._text, self._message_id_str, sent.date
                )
            else:
                await bot.edit_message_text(
                    text=self._text,
                    chat_id=self._chat_id,
                    message_id=self._message_id,
                )
                if self._record is not None:
                    self._record.text = self._text
        except TelegramError as e:
            raise DeliveryFailure(f"Telegram stream delivery failed: {e}") from e
        self._sent_text = self._text
        self._last_flush = time.monotonic()


class TelegramAdapter(BasePlatformAdapter):
    """Telegram adapter: parse webhook updates, send messages via Bot API."""

    platform = "telegram"
    TELEGRAM_SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"

    def __init__(
        self,
        bot_token: str,
        webhook_secret: Optional[str] = None,
        bot_username: Optional[str] = None,
        history_size: int = 100,
        bot_name: Optional[str] = None,
        history_conversations: int = 1000,
        stream_edit_interval: float = DEFAULT_EDIT_INTERVAL,
    ) -> None:
        self._bot_token = bot_token
        self._webhook_secret = webhook_secret
        self._bot_username = (bot_username or "").lstrip("@").lower() or None
        self._bot: Optional[Bot] = None
        self._bot_name = bot_name
        self._stream_edit_interval = stream_edit_interval
        self._log = MessageLog(
            max_size=history_size, max_conversations=history_conversations
        )

    def get_bot(self) -> Bot:
        if self._bot is None:
            self._bot = Bot(token=self._bot_token)
        return self._bot

    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Validate X-Telegram-Bot-Api-Secret-Token if webhook secret is configured."""
        if not self._webhook_secret:
            return True
        return header_value(headers, self.TELEGRAM_SECRET_HEADER) == self._webhook_secret

    def parse_request(
        self, body: bytes, headers: Mapping[str, str]
    ) -> Optional[InboundEvent]:
        """Parse a Telegram update into Mention, Interaction or SubscribedMessage."""
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ParseFailure("Invalid JSON body") from e
        if not isinstance(payload, dict):
            raise ParseFailure("Body must be a JSON object")
        try:
            update = Update.de_json(payload, self.get_bot())
        except (KeyError, TypeError, ValueError) as e:
            raise ParseFailure(f"Invalid Telegram update: {e}") from e
        if update is None:
            raise ParseFailure("Invalid Telegram update: de_json returned None")

        if update.callback_query is not None:
            return self._parse_callback_query(update, payload)
        if update.message is not None:
            return self._parse_message(update, payload)
        logger.debug("Ignoring Telegram update %s without message", update.update_id)
        return None

    def _parse_callback_query(
        self, update: Update, payload: dict[str, Any]
    ) -> Optional[InboundEvent]:
        query = update.callback_query
        if not query.data:
            raise ParseFailure("Telegram callback query has no data")
        if query.message is None:
            logger.debug("Ignoring callback query %s for inaccessible message", query.id)
            return None
        action_id, value = decode_callback_data(query.data)
        if not action_id:
            raise ParseFailure("Telegram callback query has empty action id")
        message = query.message
        return Interaction(
            platform=self.platform,
            conversation_id=build_conversation_id(
                message.chat.id, getattr(message, "message_thread_id", None)
            ),
            action_id=action_id,
            value=value,
            author=Author(
                id=str(query.from_user.id),
                name=query.from_user.username or query.from_user.first_name,
            ),
            raw=payload,
        )

    def _parse_message(self, update: Update, payload: dict[str, Any]) -> InboundEvent:
        msg = update.message
        from_user = msg.from_user
        conversation_id = build_conversation_id(msg.chat_id, msg.message_thread_id)
        text = msg.text or msg.caption or ""
        author = Author(
            id=str(from_user.id) if from_user else str(msg.chat_id),
            name=(from_user.username or from_user.first_name) if from_user else None,
        )
        self._log.record(
            conversation_id,
            Message(
                author=author,
                text=text,
                timestamp=as_utc(msg.date),
                id=str(msg.message_id),
            ),
        )
        if self._is_mention(text):
            return Mention(
                platform=self.platform,
                conversation_id=conversation_id,
                author=author,
                text=text,
                raw=payload,
            )
        return SubscribedMessage(
            platform=self.platform,
            conversation_id=conversation_id,
            author=author,
            text=text,
            raw=payload,
        )

    def _is_mention(self, text: str) -> bool:
        if text.split(" ", 1)[0].split("@", 1)[0] == START_COMMAND:
            return True
        return bool(self._bot_username) and f"@{self._bot_username}" in text.lower()

    async def acknowledge(self, event: InboundEvent) -> None:
        """Answer callback queries so the client stops its loading spinner."""
        if not isinstance(event, Interaction):
            return
        query_id = (event.raw.get("callback_query") or {}).get("id")
        if not query_id:
            return
        try:
            await self.get_bot().answer_callback_query(query_id)
        except TelegramError as e:
            logger.warning("Failed to answer Telegram callback query %s: %s", query_id, e)

    async def fetch_messages(self, conversation_id: str, limit: int) -> list[Message]:
        return self._log.recent(conversation_id, limit)

    async def post(self, conversation_id: str, content: PostContent) -> DeliveryResult:
        """Send a card (text + inline keyboard) or plain text via the Bot API."""
        chat_id, thread_id = split_conversation_id(conversation_id)
        if isinstance(content, Card):
            text, markup = render_card(content)
        else:
            text, markup = content, None
        try:
            sent = await self.get_bot().send_message(
                chat_id=chat_id,
                text=text,
                message_thread_id=thread_id,
                reply_markup=markup,
            )
        except TelegramError as e:
            raise DeliveryFailure(f"Telegram send failed: {e}") from e
        message_id = str(sent.message_id)
        self.record_own_message(conversation_id, text, message_id, sent.date)
        return DeliveryResult(success=True, platform_message_id=message_id)

    def open_stream(self, conversation_id: str) -> TelegramResponseStream:
        return TelegramResponseStream(
            self, conversation_id, edit_interval=self._stream_edit_interval
        )

    def record_own_message(
        self,
        conversation_id: str,
        text: str,
        message_id: Optional[str],
        sent_at: Optional[datetime] = None,
    ) -> Message:
        """Log a message the bot sent, stamped with the Bot API send date."""
        return self._log.record(
            conversation_id,
            Message(
                author=Author(
                    id=self._bot_username or "bot", is_self=True, name=self._bot_name
                ),
                text=text,
                timestamp=as_utc(sent_at),
                id=message_id,
            ),
        )

    async def aclose(self) -> None:
        if self._bot is not None:
            await self._bot.shutdown()
