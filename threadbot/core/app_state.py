"""AppState: the objects one process builds at startup and shares per request."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from threadbot.adapters.base import BasePlatformAdapter
from threadbot.adapters.slack import SlackAdapter
from threadbot.adapters.telegram import TelegramAdapter
from threadbot.assistants.welcome_bot import WelcomeBot
from threadbot.config import Settings, get_settings
from threadbot.core.dispatcher import EventDispatcher
from threadbot.core.pipeline import StreamingResponsePipeline
from threadbot.core.registry import AdapterRegistry
from threadbot.core.runtime import GenerationService
from threadbot.core.state import StateStore, build_state_store
from threadbot.db import DatabaseManager
from threadbot.infra.logging_config import get_logger
from threadbot.services.history_service import HistoryAssembler
from threadbot.workers.llm import build_llm_runner_from_env

logger = get_logger(__name__)


@dataclass
class AppState:
    settings: Settings
    adapters: AdapterRegistry
    state: StateStore
    dispatcher: EventDispatcher
    assembler: HistoryAssembler
    pipeline: StreamingResponsePipeline
    db_manager: Optional[DatabaseManager] = None

    async def aclose(self) -> None:
        self.dispatcher.cancel_all()
        for adapter in self.adapters.list_adapters():
            try:
                await adapter.aclose()
            except Exception:
                logger.warning("Closing %s adapter failed", adapter.platform, exc_info=True)
        if self.db_manager is not None:
            self.db_manager.dispose()


def build_adapters_from_settings(settings: Settings) -> list[BasePlatformAdapter]:
    """Only enabled and configured platforms get an adapter."""
    adapters: list[BasePlatformAdapter] = []
    if settings.telegram_enabled and settings.telegram_bot_token:
        adapters.append(
            TelegramAdapter(
                bot_token=settings.telegram_bot_token,
                webhook_secret=settings.telegram_webhook_secret,
                bot_username=settings.telegram_bot_username,
                history_size=settings.telegram_history_size,
                history_conversations=settings.telegram_history_conversations,
                stream_edit_interval=settings.stream_edit_interval,
                bot_name=settings.bot_user_name,
            )
        )
    if settings.slack_enabled and settings.slack_bot_token:
        adapters.append(
            SlackAdapter(
                bot_token=settings.slack_bot_token,
                signing_secret=settings.slack_signing_secret,
                bot_user_id=settings.slack_bot_user_id,
                stream_edit_interval=settings.stream_edit_interval,
                bot_name=settings.bot_user_name,
            )
        )
    return adapters


def build_app_state(
    settings: Optional[Settings] = None,
    adapters: Optional[list[BasePlatformAdapter]] = None,
    generation: Optional[GenerationService] = None,
    state: Optional[StateStore] = None,
    db_manager: Optional[DatabaseManager] = None,
    register_default_handlers: bool = True,
) -> AppState:
    """
    Wire registries, stores and services. Anything not passed in is built
    from settings; tests pass fakes for adapters, generation and state.
    """
    settings = settings or get_settings()
    registry = AdapterRegistry()
    for adapter in adapters if adapters is not None else build_adapters_from_settings(settings):
        registry.register_adapter(adapter)

    if state is None:
        if settings.state_backend.lower() == "database" and db_manager is None:
            db_manager = DatabaseManager(settings.database_url)
        state = build_state_store(settings.state_backend, db_manager)

    if generation is None:
        generation = build_llm_runner_from_env()

    dispatcher = EventDispatcher(
        registry, state, serialize_conversations=settings.serialize_conversations
    )
    assembler = HistoryAssembler(registry, default_limit=settings.history_limit)
    pipeline = StreamingResponsePipeline(generation)

    if register_default_handlers:
        WelcomeBot(assembler, pipeline, history_limit=settings.history_limit).register(
            dispatcher
        )

    logger.info(
        "Platforms enabled: %s (state backend: %s)",
        ", ".join(registry.platforms()) or "none",
        settings.state_backend,
    )
    return AppState(
        settings=settings,
        adapters=registry,
        state=state,
        dispatcher=dispatcher,
        assembler=assembler,
        pipeline=pipeline,
        db_manager=db_manager,
    )
