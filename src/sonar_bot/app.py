"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from sonar_bot.ai.client import PerplexityClient
from sonar_bot.ai.handler import MessageHandler
from sonar_bot.ai.prompts import CONFIG_FILENAME, PromptRegistry
from sonar_bot.api.admin import create_admin_app
from sonar_bot.config import AppConfig
from sonar_bot.core.bot_registry import BotRegistry
from sonar_bot.core.security import SecurityService
from sonar_bot.core.session import SessionManager
from sonar_bot.log import get_logger
from sonar_bot.messenger.base import MessengerAdapter
from sonar_bot.messenger.telegram import TelegramAdapter
from sonar_bot.messenger.whatsapp import WhatsAppAdapter
from sonar_bot.services.admin_server import AdminServerService
from sonar_bot.services.scheduler import SchedulerService
from sonar_bot.services.service_manager import ServiceManager
from sonar_bot.storage.base import SessionStorage
from sonar_bot.storage.memory import InMemorySessionStorage
from sonar_bot.storage.redis_store import RedisSessionStorage

logger = get_logger(__name__)


class StartupError(RuntimeError):
    """Raised when the application must not continue starting."""


class ChatBotApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.storage = self._create_storage()
        self.session_manager = SessionManager(self.storage, config.session, config.security)
        self.security = SecurityService(config.security)
        self.registry = PromptRegistry(Path(config.data_dir) / CONFIG_FILENAME, config.ai)
        self.client = PerplexityClient(config.perplexity, config.ai)
        self.handler = MessageHandler(
            session_manager=self.session_manager,
            security=self.security,
            registry=self.registry,
            client=self.client,
            config=config,
        )
        self.bot_registry = BotRegistry()
        self.whatsapp: Optional[WhatsAppAdapter] = (
            WhatsAppAdapter(config.whatsapp) if config.whatsapp.enabled else None
        )

        self.service_manager = ServiceManager()
        self.service_manager.register(
            SchedulerService(
                self.session_manager, self.security, config.session.cleanup_interval_seconds
            )
        )
        self.admin_app = create_admin_app(
            config,
            self.registry,
            self.client,
            self.bot_registry,
            self.whatsapp,
            services=self.service_manager,
            storage=self.storage,
        )
        self.service_manager.register(AdminServerService(self.admin_app, config.server))

    def _create_storage(self) -> SessionStorage:
        if self.config.redis.enabled:
            return RedisSessionStorage(self.config.redis, ttl_seconds=self.config.session.timeout_seconds)
        return InMemorySessionStorage()

    def _create_adapters(self) -> list[MessengerAdapter]:
        adapters: list[MessengerAdapter] = []
        if self.config.telegram.enabled:
            adapters.append(TelegramAdapter(self.config.telegram))
        else:
            logger.info("platform_disabled", platform="telegram")
        if self.whatsapp is not None:
            adapters.append(self.whatsapp)
        else:
            logger.info("platform_disabled", platform="whatsapp")
        return adapters

    async def start(self) -> None:
        """Validate the API key, then start services and platform adapters."""
        logger.info("validating_api_key")
        if await self.client.validate_api_key():
            logger.info("api_key_validated")
        elif self.config.is_production:
            raise StartupError("Perplexity API key validation failed")
        else:
            logger.warning("api_key_invalid_continuing", env=self.config.env)

        logger.info(
            "configuration_loaded",
            model=self.registry.get_default_model(),
            temperature=self.registry.get_default_temperature(),
            telegram_enabled=self.config.telegram.enabled,
            whatsapp_enabled=self.config.whatsapp.enabled,
            whitelist_enabled=self.config.security.whitelist_enabled,
            admin_count=len(self.config.security.admin_user_ids),
            storage=self.storage.backend_name,
        )

        await self.service_manager.start_all()

        for adapter in self._create_adapters():
            try:
                adapter.on_message(self.handler.process)
                await adapter.start()
                self.bot_registry.register(adapter)
                logger.info("bot_started", platform=str(adapter.platform_name))
            except Exception as e:
                logger.error("bot_start_failed", platform=str(adapter.platform_name), error=str(e))

        logger.info("sonar_bot_started", platforms=self.bot_registry.status())

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        for adapter in self.bot_registry.all():
            try:
                await adapter.stop()
            except Exception as e:
                logger.error("bot_stop_error", platform=str(adapter.platform_name), error=str(e))

        await self.service_manager.stop_all()
        await self.client.aclose()
        await self.storage.close()
        logger.info("sonar_bot_stopped")
