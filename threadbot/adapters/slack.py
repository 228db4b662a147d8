"""
Slack platform adapter.

Talks to the Slack Web API over httpx. Events API callbacks become Mention
or SubscribedMessage events, interactivity payloads become Interaction
events. A conversation is a Slack thread: "{channel}:{thread_ts}".
"""

from __future__ import annotations

import hashlib
import hmac
import json
import re
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from urllib.parse import parse_qs

import httpx

from threadbot.adapters.base import BasePlatformAdapter, ResponseStream, header_value
from threadbot.core.errors import DeliveryFailure, FetchFailure, ParseFailure
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

SLACK_API_BASE = "https://slack.com/api"
SIGNATURE_HEADER = "X-Slack-Signature"
TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
MAX_CLOCK_SKEW_SECONDS = 60 * 5
REPLIES_PAGE_SIZE = 200
DEFAULT_EDIT_INTERVAL = 1.0

_BOLD_RE = re.compile(r"\*\*(.+?)\*\*")


class SlackApiError(Exception):
    def __init__(self, method: str, error: str) -> None:
        super().__init__(f"Slack {method} failed: {error}")
        self.method = method
        self.error = error


def build_conversation_id(channel: str, thread_ts: str) -> str:
    return f"{channel}:{thread_ts}"


def split_conversation_id(conversation_id: str) -> tuple[str, str]:
    channel, sep, thread_ts = conversation_id.partition(":")
    if not sep or not thread_ts:
        raise ValueError(f"Invalid Slack conversation id: {conversation_id!r}")
    return channel, thread_ts


def to_mrkdwn(text: str) -> str:
    """Slack bolds with single asterisks."""
    return _BOLD_RE.sub(r"*\1*", text)


def _plain_text(text: str) -> dict[str, Any]:
    return {"type": "plain_text", "text": text, "emoji": True}


def render_blocks(card: Card) -> list[dict[str, Any]]:
    """Render a card as Block Kit blocks."""
    blocks: list[dict[str, Any]] = []
    if card.title:
        blocks.append({"type": "header", "text": _plain_text(card.title)})
    for child in card.children:
        if isinstance(child, CardText):
            blocks.append(
                {"type": "section", "text": {"type": "mrkdwn", "text": to_mrkdwn(child.text)}}
            )
        elif isinstance(child, Divider):
            blocks.append({"type": "divider"})
        elif isinstance(child, Actions):
            elements: list[dict[str, Any]] = []
            for element in child.children:
                if isinstance(element, Button):
                    button: dict[str, Any] = {
                        "type": "button",
                        "action_id": element.id,
                        "text": _plain_text(element.label),
                        "value": element.value or element.id,
                    }
                    if element.style:
                        button["style"] = element.style
                    elements.append(button)
                else:
                    elements.append(
                        {
                            "type": "static_select",
                            "action_id": element.id,
                            "placeholder": _plain_text(element.label),
                            "options": [
                                {"text": _plain_text(option.label), "value": option.value}
                                for option in element.options
                            ],
                        }
                    )
            blocks.append({"type": "actions", "elements": elements})
    return blocks


def fallback_text(card: Card) -> str:
    """Notification text for clients that cannot show blocks."""
    if card.title:
        return card.title
    for child in card.children:
        if isinstance(child, CardText):
            return child.text
    return "New message"


class SlackResponseStream(ResponseStream):
    """
    Posts the first non-blank increment, then chat.update's it in place with
    the accumulated text at most once per `edit_interval` seconds.
    close() flushes whatever is still pending.
    """

    def __init__(
        self,
        adapter: "SlackAdapter",
        conversation_id: str,
        edit_interval: float = DEFAULT_EDIT_INTERVAL,
    ) -> None:
        self._adapter = adapter
        self._channel, self._thread_ts = split_conversation_id(conversation_id)
        self._edit_interval = edit_interval
        self._text = ""
        self._sent_text = ""
        self._ts: Optional[str] = None
        self._last_flush = 0.0

    async def send(self, chunk: str) -> DeliveryResult:
        self._text += chunk
        if self._pending() and (
            self._ts is None or time.monotonic() - self._last_flush >= self._edit_interval
        ):
            await self._flush()
        return DeliveryResult(success=True, platform_message_id=self._ts)

    async def close(self) -> None:
        if self._pending():
            await self._flush()

    def _pending(self) -> bool:
        return bool(self._text.strip()) and self._text != self._sent_text

    async def _flush(self) -> None:
        try:
            if self._ts is None:
                data = await self._adapter.call(
                    "chat.postMessage",
                    {"channel": self._channel, "thread_ts": self._thread_ts, "text": self._text},
                )
                self._ts = data.get("ts")
            else:
                await self._adapter.call(
                    "chat.update",
                    {"channel": self._channel, "ts": self._ts, "text": self._text},
                )
        except (httpx.HTTPError, SlackApiError) as e:
            raise DeliveryFailure(f"Slack stream delivery failed: {e}") from e
        self._sent_text = self._text
        self._last_flush = time.monotonic()


class SlackAdapter(BasePlatformAdapter):
    """Slack adapter: verify signatures, parse events and actions, call the Web API."""

    platform = "slack"

    def __init__(
        self,
        bot_token: str,
        signing_secret: Optional[str] = None,
        bot_user_id: Optional[str] = None,
        bot_name: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        api_base: str = SLACK_API_BASE,
        stream_edit_interval: float = DEFAULT_EDIT_INTERVAL,
    ) -> None:
        self._bot_token = bot_token
        self._signing_secret = signing_secret
        self._bot_user_id = bot_user_id
        self._bot_id: Optional[str] = None
        self._bot_name = bot_name
        self._api_base = api_base.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._stream_edit_interval = stream_edit_interval

    @property
    def bot_user_id(self) -> Optional[str]:
        return self._bot_user_id

    async def resolve_bot_user_id(self) -> Optional[str]:
        """
        Look up the bot's own user id with auth.test when it was not configured.

        Failures are logged and leave the id unset; the next call retries.
        """
        if self._bot_user_id:
            return self._bot_user_id
        try:
            data = await self.call("auth.test", {})
        except (httpx.HTTPError, SlackApiError) as e:
            logger.warning("Could not resolve Slack bot user id: %s", e)
            return None
        self._bot_user_id = data.get("user_id") or None
        self._bot_id = data.get("bot_id") or self._bot_id
        logger.info("Resolved Slack bot user id %s", self._bot_user_id)
        return self._bot_user_id

    def _learn_bot_user_id(self, payload: dict[str, Any]) -> None:
        if self._bot_user_id:
            return
        for authorization in payload.get("authorizations") or []:
            if authorization.get("is_bot") and authorization.get("user_id"):
                self._bot_user_id = authorization["user_id"]
                logger.info("Learned Slack bot user id %s from event", self._bot_user_id)
                return

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
        return self._client

    # -- inbound ---------------------------------------------------------

    def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """Check the v0 HMAC-SHA256 signature and reject stale timestamps."""
        if not self._signing_secret:
            return True
        timestamp = header_value(headers, TIMESTAMP_HEADER)
        signature = header_value(headers, SIGNATURE_HEADER)
        if not timestamp or not signature:
            return False
        try:
            if abs(time.time() - int(timestamp)) > MAX_CLOCK_SKEW_SECONDS:
                return False
        except ValueError:
            return False
        base = f"v0:{timestamp}:".encode() + body
        expected = "v0=" + hmac.new(
            self._signing_secret.encode(), base, hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature)

    def _load_payload(self, body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
        content_type = (header_value(headers, "Content-Type") or "").lower()
        try:
            if "application/x-www-form-urlencoded" in content_type:
                form = parse_qs(body.decode("utf-8"))
                payload = json.loads(form["payload"][0])
            else:
                payload = json.loads(body)
        except (KeyError, IndexError, ValueError, UnicodeDecodeError) as e:
            raise ParseFailure(f"Invalid Slack payload: {e}") from e
        if not isinstance(payload, dict):
            raise ParseFailure("Slack payload must be a JSON object")
        return payload

    def handshake(
        self, body: bytes, headers: Mapping[str, str]
    ) -> Optional[dict[str, Any]]:
        """Answer Events API url_verification with the challenge."""
        try:
            payload = self._load_payload(body, headers)
        except ParseFailure:
            return None
        if payload.get("type") == "url_verification":
            return {"challenge": payload.get("challenge", "")}
        return None

    def parse_request(
        self, body: bytes, headers: Mapping[str, str]
    ) -> Optional[InboundEvent]:
        payload = self._load_payload(body, headers)
        payload_type = payload.get("type")
        try:
            if payload_type == "event_callback":
                return self._parse_event(payload)
            if payload_type == "block_actions":
                return self._parse_block_actions(payload)
        except (KeyError, IndexError, TypeError) as e:
            raise ParseFailure(f"Invalid Slack {payload_type} payload: {e}") from e
        logger.debug("Ignoring Slack payload of type %s", payload_type)
        return None

    def _parse_event(self, payload: dict[str, Any]) -> Optional[InboundEvent]:
        self._learn_bot_user_id(payload)
        event = payload["event"]
        event_type = event.get("type")
        channel = event["channel"]
        ts = event["ts"]
        conversation_id = build_conversation_id(channel, event.get("thread_ts") or ts)
        text = event.get("text", "")
        if event_type == "app_mention":
            return Mention(
                platform=self.platform,
                conversation_id=conversation_id,
                author=Author(id=event.get("user", "")),
                text=text,
                raw=payload,
            )
        if event_type != "message":
            return None
        if event.get("subtype") or event.get("bot_id"):
            return None
        user = event.get("user", "")
        if self._bot_user_id and (
            user == self._bot_user_id or f"<@{self._bot_user_id}>" in text
        ):
            # Own messages are ignored; mentions arrive again as app_mention.
            return None
        return SubscribedMessage(
            platform=self.platform,
            conversation_id=conversation_id,
            author=Author(id=user),
            text=text,
            raw=payload,
        )

    def _parse_block_actions(self, payload: dict[str, Any]) -> InboundEvent:
        action = payload["actions"][0]
        if "value" in action:
            value = action["value"]
        else:
            value = (action.get("selected_option") or {}).get("value")
        message = payload.get("message") or {}
        container = payload.get("container") or {}
        thread_ts = (
            message.get("thread_ts")
            or container.get("thread_ts")
            or message.get("ts")
            or container["message_ts"]
        )
        return Interaction(
            platform=self.platform,
            conversation_id=build_conversation_id(payload["channel"]["id"], thread_ts),
            action_id=action["action_id"],
            value=value,
            author=Author(id=(payload.get("user") or {}).get("id", "")),
            raw=payload,
        )

    # -- Web API ---------------------------------------------------------

    async def call(
        self, method: str, payload: dict[str, Any], http_method: str = "POST"
    ) -> dict[str, Any]:
        """Call a Web API method; raise SlackApiError when Slack answers ok=false."""
        headers = {"Authorization": f"Bearer {self._bot_token}"}
        url = f"{self._api_base}/{method}"
        client = self._get_client()
        if http_method == "GET":
            resp = await client.get(url, params=payload, headers=headers)
        else:
            resp = await client.post(url, json=payload, headers=headers)
        resp.raise_for_status()
        data = resp.json()
        if not data.get("ok"):
            raise SlackApiError(method, data.get("error", "unknown_error"))
        return data

    def _is_self(self, message: dict[str, Any]) -> bool:
        if self._bot_user_id and message.get("user") == self._bot_user_id:
            return True
        return bool(self._bot_id) and message.get("bot_id") == self._bot_id

    def _to_message(self, message: dict[str, Any]) -> Message:
        ts = message.get("ts", "0")
        is_self = self._is_self(message)
        return Message(
            author=Author(
                id=message.get("user") or message.get("bot_id") or "",
                is_self=is_self,
                name=self._bot_name if is_self else None,
            ),
            text=message.get("text", ""),
            timestamp=datetime.fromtimestamp(float(ts), tz=timezone.utc),
            id=ts,
        )

    async def fetch_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """Last `limit` messages of the thread via conversations.replies (oldest first)."""
        if not self._bot_user_id:
            await self.resolve_bot_user_id()
        channel, thread_ts = split_conversation_id(conversation_id)
        window: deque[dict[str, Any]] = deque(maxlen=max(limit, 0))
        cursor: Optional[str] = None
        try:
            while True:
                params: dict[str, Any] = {
                    "channel": channel,
                    "ts": thread_ts,
                    "limit": REPLIES_PAGE_SIZE,
                }
                if cursor:
                    params["cursor"] = cursor
                data = await self.call("conversations.replies", params, http_method="GET")
                window.extend(data.get("messages", []))
                cursor = (data.get("response_metadata") or {}).get("next_cursor")
                if not data.get("has_more") or not cursor:
                    break
        except (httpx.HTTPError, SlackApiError) as e:
            raise FetchFailure(f"Slack history fetch failed: {e}") from e
        return [self._to_message(m) for m in window]

    async def post(self, conversation_id: str, content: PostContent) -> DeliveryResult:
        channel, thread_ts = split_conversation_id(conversation_id)
        payload: dict[str, Any] = {"channel": channel, "thread_ts": thread_ts}
        if isinstance(content, Card):
            payload["text"] = fallback_text(content)
            payload["blocks"] = render_blocks(content)
        else:
            payload["text"] = content
        try:
            data = await self.call("chat.postMessage", payload)
        except (httpx.HTTPError, SlackApiError) as e:
            raise DeliveryFailure(f"Slack post failed: {e}") from e
        return DeliveryResult(success=True, platform_message_id=data.get("ts"))

    def open_stream(self, conversation_id: str) -> SlackResponseStream:
        return SlackResponseStream(
            self, conversation_id, edit_interval=self._stream_edit_interval
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
