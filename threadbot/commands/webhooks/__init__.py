"""Webhook command handlers."""

from threadbot.commands.webhooks.webhook_command import WebhookCommand

__all__ = ["WebhookCommand"]
