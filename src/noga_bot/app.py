"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from noga_bot.ai.client import AIClient, AnthropicClient, GeminiClient
from noga_bot.ai.engine import ConversationEngine
from noga_bot.ai.tools.registry import ToolRegistry
from noga_bot.api.app import ApiContext, create_app
from noga_bot.config import AppConfig
from noga_bot.core.router import MessageRouter
from noga_bot.core.session import SessionTracker
from noga_bot.log import get_logger
from noga_bot.messenger.base import MessengerAdapter
from noga_bot.messenger.telegram import TelegramAdapter
from noga_bot.services.api_server import ApiServerService
from noga_bot.services.scheduler import SchedulerService
from noga_bot.services.service_manager import ServiceManager
from noga_bot.skills.google import CalendarClient, ShoppingListClient
from noga_bot.skills.home_assistant import HomeAssistantClient
from noga_bot.storage.admin_repo import AdminRepository
from noga_bot.storage.conversation_repo import ConversationRepository
from noga_bot.storage.database import Database

logger = get_logger(__name__)


def create_ai_client(config: AppConfig) -> AIClient:
    """Create the AI client for the configured backend."""
    match config.ai.backend:
        case "anthropic":
            if not config.anthropic:
                raise ValueError("ai.backend is 'anthropic' but no 'anthropic' section in config")
            return AnthropicClient(config.anthropic, config.ai.model)
        case "gemini":
            if not config.gemini:
                raise ValueError("ai.backend is 'gemini' but no 'gemini' section in config")
            return GeminiClient(config.gemini, config.ai.model)
        case _:
            raise ValueError(f"Unknown AI backend: {config.ai.backend}")


class NogaBotApp:
    """Top-level application orchestrator.

    Every component is built once here and handed to the collaborators that
    need it.
    """

    def __init__(
        self,
        config: AppConfig,
        ai_client: AIClient | None = None,
        messenger: MessengerAdapter | None = None,
    ):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.conversation_repo = ConversationRepository(self.db)
        self.admin_repo = AdminRepository(self.db)

        self.home_assistant = HomeAssistantClient(config.home_assistant)
        self.calendar = CalendarClient(config.google)
        self.shopping = ShoppingListClient(config.google)
        self.tool_registry = ToolRegistry.build_default(
            calendar=self.calendar,
            shopping=self.shopping,
            home_assistant=self.home_assistant,
            admin_repo=self.admin_repo,
        )

        self.ai_client = ai_client or create_ai_client(config)
        self.engine = ConversationEngine(
            ai_client=self.ai_client,
            tool_registry=self.tool_registry,
            conversation_repo=self.conversation_repo,
            admin_repo=self.admin_repo,
            ai_config=config.ai,
        )

        self.messenger = messenger or TelegramAdapter(config.telegram)
        self.sessions = SessionTracker(config.router.session_timeout_minutes)
        self.router = MessageRouter(
            engine=self.engine,
            admin_repo=self.admin_repo,
            conversation_repo=self.conversation_repo,
            messenger=self.messenger,
            sessions=self.sessions,
            config=config.router,
        )

        broadcast_destination = config.telegram.broadcast_chat_id
        self.scheduler = SchedulerService(
            config.services.scheduler,
            engine=self.engine,
            admin_repo=self.admin_repo,
            conversation_repo=self.conversation_repo,
            messenger=self.messenger,
            broadcast_destination=broadcast_destination,
        )
        self.service_manager = ServiceManager()
        self.service_manager.add(self.scheduler)

        self.api_app = create_app(
            ApiContext(
                config=config.api,
                engine=self.engine,
                admin_repo=self.admin_repo,
                conversation_repo=self.conversation_repo,
                messenger=self.messenger,
                broadcast_destination=broadcast_destination,
                scheduler=self.scheduler,
            )
        )
        if config.api.enabled:
            self.service_manager.add(ApiServerService(config.api, self.api_app))

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        await self.db.initialize()

        # 2. Skills (log and continue when a backend is down)
        await self.home_assistant.start()
        await self.calendar.start()
        await self.shopping.start()

        # 3. Messenger with the router as its listener
        self.messenger.add_listener(self.router)
        await self.messenger.start()

        # 4. Scheduler and HTTP API
        await self.service_manager.start_all()

        logger.info(
            "noga_bot_started",
            backend=self.ai_client.backend,
            model=self.ai_client.model_name,
            tools=len(self.tool_registry),
        )

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        await self.service_manager.stop_all()
        try:
            await self.messenger.stop()
        except Exception as e:
            logger.error("messenger_stop_error", error=str(e))
        self.messenger.remove_listener(self.router)
        await self.home_assistant.close()
        await self.db.close()
        logger.info("noga_bot_stopped")
