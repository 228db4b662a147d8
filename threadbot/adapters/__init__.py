"""Platform adapters for chat integrations."""

from threadbot.adapters.base import BasePlatformAdapter, ResponseStream
from threadbot.adapters.slack import SlackAdapter
from threadbot.adapters.telegram import TelegramAdapter

__all__ = ["BasePlatformAdapter", "ResponseStream", "SlackAdapter", "TelegramAdapter"]
