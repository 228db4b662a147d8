"""
Failure taxonomy for threadbot.

Ingress failures (ParseFailure, UnregisteredPlatform) become HTTP 400s;
everything raised after dispatch is reported to the log and never posted
back into the conversation.
"""

from __future__ import annotations


class ThreadbotError(Exception):
    """Base class for all threadbot errors."""


class ConfigurationError(ThreadbotError):
    """Invalid startup configuration (registries, settings)."""


class DuplicateHandlerError(ConfigurationError):
    """A handler is already bound to the same (kind, action_id)."""


class ParseFailure(ThreadbotError):
    """Malformed or unverifiable webhook payload."""


class UnregisteredPlatform(ThreadbotError):
    """No adapter is registered for the requested platform."""

    def __init__(self, platform: str) -> None:
        super().__init__(f"Unsupported platform: {platform}")
        self.platform = platform


class HandlerFailure(ThreadbotError):
    """A registered handler raised while processing an event."""


class FetchFailure(ThreadbotError):
    """History or subscription state could not be read."""


class GenerationFailure(ThreadbotError):
    """The generation service failed mid-stream."""


class DeliveryFailure(ThreadbotError):
    """The platform adapter failed to deliver content."""
