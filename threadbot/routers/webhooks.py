"""
Webhook routes for inbound chat platform events.

Platforms POST raw payloads to /webhooks/{platform}; the matching adapter
verifies and parses them and the event is dispatched in the background.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import PlainTextResponse, Response

from threadbot.commands.webhooks.webhook_command import WebhookCommand
from threadbot.core.app_state import AppState
from threadbot.core.errors import UnregisteredPlatform
from threadbot.routers.utils.dependencies import get_app_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{platform}", response_model=None)
async def platform_webhook(
    platform: str,
    request: Request,
    background_tasks: BackgroundTasks,
    app_state: AppState = Depends(get_app_state),
) -> Response | dict[str, Any]:
    """Receive a platform webhook. Unknown platforms get a plain-text 400."""
    body = await request.body()
    command = WebhookCommand(app_state, platform)
    try:
        return await command.execute(body, request.headers, background_tasks)
    except UnregisteredPlatform:
        logger.warning("Webhook for unsupported platform %r", platform)
        return PlainTextResponse("Unsupported platform", status_code=400)
