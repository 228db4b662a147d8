"""
Command to handle platform webhook requests.

Selects the platform adapter, verifies and parses the raw request, then
schedules dispatch of the normalized event as a background task so the
webhook is acknowledged without waiting for handlers or model output.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from fastapi import BackgroundTasks, HTTPException

from threadbot.adapters.base import BasePlatformAdapter
from threadbot.core.app_state import AppState
from threadbot.core.errors import ParseFailure
from threadbot.schemas.conversation import InboundEvent


class WebhookCommand:
    """
    Command to handle one webhook delivery for a platform.
    Raises UnregisteredPlatform when no adapter serves the platform.
    """

    def __init__(self, app_state: AppState, platform: str) -> None:
        self.app_state = app_state
        self.platform = platform
        self.logger = logging.getLogger(__name__)

    async def execute(
        self,
        body: bytes,
        headers: Mapping[str, str],
        background_tasks: BackgroundTasks,
    ) -> dict[str, Any]:
        """
        Execute the webhook: verify, answer handshakes, parse, schedule dispatch.

        Args:
            body: Raw request body, handed verbatim to the adapter.
            headers: Request headers (signature / secret validation).
            background_tasks: Where the dispatch is scheduled.

        Returns:
            dict: {"status": "ok"} on success, or the adapter's handshake body.

        Raises:
            UnregisteredPlatform: no adapter is registered for the platform.
            HTTPException: 403 on failed verification, 400 on invalid payload.
        """
        adapter = self.app_state.adapters.require_adapter(self.platform)
        if not adapter.verify_webhook(body, headers):
            self.logger.warning("Rejected %s webhook: verification failed", self.platform)
            raise HTTPException(status_code=403, detail="Invalid webhook signature")

        handshake = adapter.handshake(body, headers)
        if handshake is not None:
            return handshake

        try:
            event = adapter.parse_request(body, headers)
        except ParseFailure as e:
            self.logger.warning("%s webhook parse error: %s", self.platform, e)
            raise HTTPException(
                status_code=400, detail=f"Invalid {self.platform} update"
            ) from e

        if event is None:
            return {"status": "ok"}

        self.logger.info(
            "%s webhook received: %s on %s", self.platform, event.kind, event.ref.key
        )
        background_tasks.add_task(self.process_event, adapter, event)
        return {"status": "ok"}

    async def process_event(
        self, adapter: BasePlatformAdapter, event: InboundEvent
    ) -> None:
        """Acknowledge and dispatch the event; failures are logged, not raised."""
        try:
            await adapter.acknowledge(event)
            failures = await self.app_state.dispatcher.dispatch(event)
        except Exception:
            self.logger.exception(
                "Dispatch of %s event on %s failed", event.kind, event.ref.key
            )
            return
        if failures:
            self.logger.warning(
                "%d failure(s) while handling %s event on %s",
                len(failures),
                event.kind,
                event.ref.key,
            )
