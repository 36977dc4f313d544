"""Telegram messenger adapter using python-telegram-bot v21+."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from telegram import Update
from telegram.ext import Application, MessageHandler as TGMessageHandler, filters

from noga_bot.config import TelegramConfig
from noga_bot.core.types import MessageKind, Platform
from noga_bot.log import get_logger
from noga_bot.messenger.base import MessengerAdapter
from noga_bot.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4000


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split text into chunks under the Telegram limit, preferring line breaks."""
    chunks: list[str] = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text:
        chunks.append(text)
    return chunks


class TelegramAdapter(MessengerAdapter):
    """Telegram bot adapter using long polling."""

    def __init__(self, config: TelegramConfig):
        super().__init__()
        self._config = config
        self._allowed = {str(uid) for uid in config.allowed_user_ids}
        self._app: Application | None = None  # type: ignore[type-arg]
        self._ready = False

    @property
    def platform_name(self) -> str:
        return Platform.TELEGRAM

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def start(self) -> None:
        if not self._config.token:
            raise ValueError("Telegram bot token not configured")
        if not self._allowed:
            logger.warning("telegram_allow_list_empty")

        self._app = Application.builder().token(self._config.token).build()

        # block=False lets updates from different chats run concurrently;
        # the router serializes per sender.
        self._app.add_handler(
            TGMessageHandler(filters.TEXT | filters.VOICE | filters.AUDIO, self._on_telegram_message, block=False)
        )

        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)  # type: ignore[union-attr]
        self._ready = True
        logger.info("telegram_adapter_started", allowed_users=len(self._allowed))
        await self._emit_ready()

    async def stop(self) -> None:
        if self._app:
            self._ready = False
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            logger.info("telegram_adapter_stopped")
            await self._emit_disconnected("stopped")

    async def send_message(self, message: OutgoingMessage) -> None:
        if not self._app or not self._app.bot:
            logger.warning("telegram_send_not_ready", destination=message.destination)
            return

        reply_id = int(message.reply_to_message_id) if message.reply_to_message_id else None
        for chunk in split_message(message.text):
            await self._app.bot.send_message(
                chat_id=int(message.destination),
                text=chunk,
                reply_to_message_id=reply_id,
            )
            reply_id = None

    async def react(self, destination: str, message_id: str, emoji: str) -> None:
        if self._app and self._app.bot:
            await self._app.bot.set_message_reaction(
                chat_id=int(destination), message_id=int(message_id), reaction=emoji
            )

    def is_allowed(self, user_id: str) -> bool:
        return not self._allowed or user_id in self._allowed

    async def _on_telegram_message(self, update: Update, context: Any) -> None:
        """Convert a Telegram update into an IncomingMessage for the listeners."""
        msg = update.message
        if not msg or not msg.from_user:
            return

        user_id = str(msg.from_user.id)
        if not self.is_allowed(user_id):
            logger.warning("telegram_sender_rejected", user_id=user_id)
            return

        kind = MessageKind.TEXT if msg.text else MessageKind.OTHER
        audio: bytes | None = None
        mime_type: str | None = None
        media = msg.voice or msg.audio
        if media is not None:
            try:
                tg_file = await media.get_file()
                audio = bytes(await tg_file.download_as_bytearray())
                mime_type = media.mime_type or "audio/ogg"
                kind = MessageKind.VOICE
            except Exception as e:
                logger.warning("telegram_audio_download_error", error=str(e), user_id=user_id)

        incoming = IncomingMessage(
            platform=Platform.TELEGRAM,
            sender=user_id,
            destination=str(msg.chat_id),
            text=msg.text or msg.caption or "",
            kind=kind,
            audio=audio,
            mime_type=mime_type,
            message_id=str(msg.message_id),
            sender_name=msg.from_user.full_name,
            timestamp=msg.date or datetime.now(timezone.utc),
        )
        await self._emit_message(incoming)
