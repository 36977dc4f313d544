"""Message router: serializes work per sender and dispatches commands, keywords and AI turns."""

from __future__ import annotations

from typing import Optional

from noga_bot.ai.engine import ConversationEngine
from noga_bot.config import RouterConfig
from noga_bot.core.session import SessionTracker
from noga_bot.core.types import ROUTER_TRANSITIONS, KeywordKind, MessageKind, RouterState
from noga_bot.errors import is_quota_error
from noga_bot.log import bind_sender, get_logger, unbind_sender
from noga_bot.messenger.base import MessengerAdapter
from noga_bot.messenger.models import IncomingMessage, OutgoingMessage
from noga_bot.storage.admin_repo import AdminRepository
from noga_bot.storage.conversation_repo import ConversationRepository
from noga_bot.storage.models import KeywordRule

logger = get_logger(__name__)

HELP_TEXT = """שלום! אני נוגה 👋

אני יכולה לעזור לך עם:

📅 יומן - "מה יש לי היום?", "הוסיפי פגישה מחר ב-10"
🛒 קניות - "תוסיפי חלב לרשימה", "מה ברשימת הקניות?"
🏠 בית חכם - "תדליקי אור בסלון", "מה הטמפרטורה?"

פקודות מיוחדות:
/status - סטטוס המערכת
/clear - נקה היסטוריית שיחה

אפשר גם לשלוח הודעה קולית! 🎤"""

CLEARED_TEXT = "היסטוריית השיחה נמחקה 🗑️"

HELP_COMMANDS = frozenset({"help", "עזרה"})
STATUS_COMMANDS = frozenset({"status", "סטטוס"})
CLEAR_COMMANDS = frozenset({"clear", "נקה"})


class InvalidTransition(RuntimeError):
    pass


class MessageRouter:
    """Routes inbound messages; at most one message per sender is processed at a time."""

    def __init__(
        self,
        engine: ConversationEngine,
        admin_repo: AdminRepository,
        conversation_repo: ConversationRepository,
        messenger: MessengerAdapter,
        sessions: SessionTracker,
        config: RouterConfig,
    ):
        self._engine = engine
        self._admin_repo = admin_repo
        self._conversation_repo = conversation_repo
        self._messenger = messenger
        self._sessions = sessions
        self._config = config
        self._in_flight: set[str] = set()
        self._states: dict[str, RouterState] = {}

    # -- listener interface --

    async def on_message(self, message: IncomingMessage) -> None:
        await self.route(message)

    async def on_ready(self) -> None:
        logger.info("messenger_ready", platform=self._messenger.platform_name)

    async def on_disconnected(self, reason: str) -> None:
        logger.warning("messenger_disconnected", platform=self._messenger.platform_name, reason=reason)

    # -- state --

    def state_of(self, sender: str) -> RouterState:
        return self._states.get(sender, RouterState.IDLE)

    def is_busy(self, sender: str) -> bool:
        return sender in self._in_flight

    def _transition(self, sender: str, target: RouterState) -> None:
        current = self.state_of(sender)
        if target not in ROUTER_TRANSITIONS[current]:
            raise InvalidTransition(f"{current} -> {target}")
        self._states[sender] = target

    # -- routing --

    async def route(self, message: IncomingMessage) -> None:
        sender = message.sender
        if sender in self._in_flight:
            logger.debug("sender_busy_message_dropped", sender=sender)
            return

        self._in_flight.add(sender)
        bind_sender(sender)
        try:
            if self._sessions.is_expired(sender):
                logger.info("session_expired_clearing_history", sender=sender)
                await self._engine.clear_history(sender)
            self._sessions.touch(sender)

            self._transition(sender, RouterState.CLASSIFYING)
            response = await self._dispatch(message)
            if response:
                self._transition(sender, RouterState.RESPONDING)
                await self._messenger.send_message(
                    OutgoingMessage(destination=message.destination, text=response)
                )
        except Exception as e:
            logger.error("message_processing_error", sender=sender, error=str(e), exc_info=True)
            await self._send_error(message, e)
        finally:
            self._in_flight.discard(sender)
            self._states[sender] = RouterState.IDLE
            unbind_sender()

    async def _dispatch(self, message: IncomingMessage) -> Optional[str]:
        sender = message.sender
        text = message.text.strip()

        if text.startswith(self._config.command_prefix):
            self._transition(sender, RouterState.COMMAND)
            return await self._handle_command(message, text)

        if text:
            rule = await self._admin_repo.find_keyword(text)
            if rule is not None:
                self._transition(sender, RouterState.KEYWORD)
                return await self._handle_keyword(message, rule)

        if message.kind == MessageKind.VOICE and message.audio:
            self._transition(sender, RouterState.ENGINE)
            await self._acknowledge(message, self._config.voice_reaction)
            return await self._engine.process_audio(
                sender, message.audio, message.mime_type or "audio/ogg"
            )

        if text:
            self._transition(sender, RouterState.ENGINE)
            await self._acknowledge(message, self._config.ai_reaction)
            return await self._engine.process(sender, text)

        logger.debug("message_ignored", sender=sender, kind=str(message.kind))
        return None

    async def _handle_command(self, message: IncomingMessage, text: str) -> str:
        sender = message.sender
        command = text[len(self._config.command_prefix):].strip().casefold()
        logger.info("command_received", sender=sender, command=command)

        if command in HELP_COMMANDS:
            return HELP_TEXT
        if command in STATUS_COMMANDS:
            return await self.status_text()
        if command in CLEAR_COMMANDS:
            await self._engine.clear_history(sender)
            return CLEARED_TEXT

        self._transition(sender, RouterState.ENGINE)
        return await self._engine.process(sender, text)

    async def _handle_keyword(self, message: IncomingMessage, rule: KeywordRule) -> str:
        logger.info("keyword_matched", sender=message.sender, keyword=rule.pattern, kind=str(rule.kind))
        if rule.kind == KeywordKind.STATIC:
            await self._acknowledge(message, self._config.keyword_reaction)
            return rule.payload

        self._transition(message.sender, RouterState.ENGINE)
        await self._acknowledge(message, self._config.ai_reaction)
        augmented = f"[Custom Instructions: {rule.payload}]\n\nUser message: {message.text.strip()}"
        return await self._engine.process(message.sender, augmented, keep_history=True)

    async def _acknowledge(self, message: IncomingMessage, emoji: str) -> None:
        if not self._config.ack_reactions or not message.message_id:
            return
        try:
            await self._messenger.react(message.destination, message.message_id, emoji)
        except Exception as e:
            logger.debug("reaction_failed", error=str(e))

    async def _send_error(self, message: IncomingMessage, error: Exception) -> None:
        text = (
            self._config.quota_error_message
            if is_quota_error(error)
            else self._config.generic_error_message
        )
        try:
            await self._messenger.send_message(OutgoingMessage(destination=message.destination, text=text))
        except Exception as e:
            logger.error("error_message_send_failed", error=str(e))

    async def status_text(self) -> str:
        engine = self._engine.status()
        usage = await self._conversation_repo.usage_stats()
        today, month = usage["today"], usage["month"]
        messenger_state = "✅ מחובר" if self._messenger.is_ready else "❌ מנותק"
        return (
            "📊 סטטוס המערכת\n\n"
            f"💬 {self._messenger.platform_name}: {messenger_state}\n"
            f"🤖 {engine['backend']}: ✅ פעיל\n"
            f"   Model: {engine['model']}\n"
            f"   Skills: {engine['tools']}\n\n"
            "📉 שימוש ועלויות\n"
            "📅 היום:\n"
            f"   Input: {today.input_tokens:,}\n"
            f"   Output: {today.output_tokens:,}\n"
            f"   Cost: ${today.cost_usd:.4f}\n\n"
            "🗓️ החודש:\n"
            f"   Input: {month.input_tokens:,}\n"
            f"   Output: {month.output_tokens:,}\n"
            f"   Cost: ${month.cost_usd:.4f}"
        )
