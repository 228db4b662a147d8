"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI

from threadbot import __version__
from threadbot.config import get_settings
from threadbot.core.app_state import AppState, build_app_state
from threadbot.infra.logging_config import LoggingConfig, get_logger
from threadbot.routers import system, webhooks

logger = get_logger(__name__)


def create_app(testing: bool = False, app_state: Optional[AppState] = None) -> FastAPI:
    """
    Build the application.

    When app_state is given it is installed immediately; otherwise it is
    built from settings on startup. Either way it is closed on shutdown.
    """
    settings = get_settings()
    LoggingConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state: AppState = getattr(app.state, "threadbot", None) or build_app_state(settings)
        app.state.threadbot = state
        if state.db_manager is not None and (testing or settings.is_test):
            state.db_manager.create_all()
        logger.info("%s started (environment: %s)", settings.app_name, settings.environment)
        try:
            yield
        finally:
            await state.aclose()
            logger.info("%s stopped", settings.app_name)

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
    )
    if app_state is not None:
        app.state.threadbot = app_state

    app.include_router(webhooks.router)
    app.include_router(system.router)
    return app
