"""Telegram messenger adapter using python-telegram-bot v21+."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from telegram import BotCommand, Message, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import BadRequest, TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler as TGMessageHandler, filters

from sonar_bot.ai.commands import PUBLIC_COMMANDS
from sonar_bot.config import TelegramConfig
from sonar_bot.core.types import Platform
from sonar_bot.log import get_logger
from sonar_bot.messenger.base import MessengerAdapter
from sonar_bot.messenger.formatting import parse_command, split_message
from sonar_bot.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4000


def normalize_message(msg: Message) -> IncomingMessage:
    """Build an IncomingMessage from a Telegram text message."""
    text = msg.text or ""
    chat_id = str(msg.chat_id)
    user = msg.from_user

    command: Optional[str] = None
    args: list[str] = []
    parsed = parse_command(text, strip_mention=True)
    if parsed:
        command, args = parsed
        text = " ".join(args)

    return IncomingMessage(
        id=str(msg.message_id),
        platform=Platform.TELEGRAM,
        chat_id=chat_id,
        user_id=str(user.id) if user else chat_id,
        text=text,
        timestamp=msg.date or datetime.now(timezone.utc),
        user_display_name=(user.username or user.first_name) if user else None,
        command=command,
        command_args=args,
        reply_to_message_id=(
            str(msg.reply_to_message.message_id) if msg.reply_to_message else None
        ),
    )


class TelegramAdapter(MessengerAdapter):
    """Telegram bot adapter using long polling."""

    def __init__(self, config: TelegramConfig):
        super().__init__()
        self.config = config
        self._app: Application | None = None  # type: ignore[type-arg]

    @property
    def platform_name(self) -> Platform:
        return Platform.TELEGRAM

    async def start(self) -> None:
        if not self.config.token:
            raise ValueError("Telegram bot token not configured")

        self._app = Application.builder().token(self.config.token).build()
        # Commands arrive through the same handler and are parsed on normalization.
        self._app.add_handler(TGMessageHandler(filters.TEXT, self._on_telegram_message))
        self._app.add_error_handler(self._on_error)

        await self._app.initialize()
        await self._register_commands()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)  # type: ignore[union-attr]
        self._running = True

        me = self._app.bot
        logger.info("telegram_adapter_started", username=me.username, bot_id=me.id)

    async def _register_commands(self) -> None:
        try:
            await self._app.bot.set_my_commands(  # type: ignore[union-attr]
                [BotCommand(name, description) for name, description in PUBLIC_COMMANDS]
            )
            logger.debug("telegram_commands_registered")
        except TelegramError as e:
            logger.warning("telegram_commands_register_failed", error=str(e))

    async def stop(self) -> None:
        if self._app and self._running:
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            self._running = False
            logger.info("telegram_adapter_stopped")

    async def send_message(self, message: OutgoingMessage) -> None:
        if not self._app or not self._app.bot:
            logger.error("telegram_send_without_bot", chat_id=message.chat_id)
            return

        chat_id = int(message.chat_id)
        reply_id = int(message.reply_to_message_id) if message.reply_to_message_id else None
        parse_mode = ParseMode.MARKDOWN if message.parse_markdown else None

        for chunk in split_message(message.text, max_length=MAX_MESSAGE_LENGTH):
            try:
                await self._app.bot.send_message(
                    chat_id=chat_id,
                    text=chunk,
                    parse_mode=parse_mode,
                    reply_to_message_id=reply_id,
                )
            except BadRequest as e:
                if parse_mode is None or "parse" not in str(e).lower():
                    raise
                logger.warning("telegram_markdown_fallback", chat_id=message.chat_id)
                await self._app.bot.send_message(
                    chat_id=chat_id,
                    text=chunk,
                    reply_to_message_id=reply_id,
                )

    async def send_typing_indicator(self, chat_id: str) -> None:
        if self._app and self._app.bot:
            await self._app.bot.send_chat_action(
                chat_id=int(chat_id), action=ChatAction.TYPING
            )

    async def _on_telegram_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle an incoming Telegram text message and reply to it."""
        msg = update.message
        if not msg or not msg.text or not self._message_callback:
            return

        chat_id = str(msg.chat_id)
        try:
            await self.send_typing_indicator(chat_id)
            response = await self._message_callback(normalize_message(msg))
            await self.send_message(
                OutgoingMessage(
                    chat_id=chat_id,
                    text=response.content,
                    reply_to_message_id=str(msg.message_id),
                    parse_markdown=True,
                )
            )
        except Exception as e:
            logger.error("telegram_handler_error", error=str(e), chat_id=chat_id)

    async def _on_error(self, update: Any, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("telegram_error", error=str(context.error))
