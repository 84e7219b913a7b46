"""Message handler: receives normalized messages, runs security checks, commands or chat."""

from __future__ import annotations

import time
from typing import Awaitable, Callable

from sonar_bot.ai.client import PerplexityClient
from sonar_bot.ai.commands import ADMIN_ONLY, CommandKind, resolve_command
from sonar_bot.ai.prompts import PromptRegistry
from sonar_bot.config import AppConfig
from sonar_bot.core.errors import (
    ApiRateLimitedError,
    ApiTimeoutError,
    BotError,
    ForbiddenError,
    NotWhitelistedError,
    RateLimitedError,
)
from sonar_bot.core.security import SecurityService
from sonar_bot.core.session import SessionManager
from sonar_bot.core.types import MessageRole
from sonar_bot.log import get_logger, log_conversation
from sonar_bot.messenger.models import IncomingMessage, MessageResponse
from sonar_bot.storage.models import UserSession

logger = get_logger(__name__)

UNEXPECTED_ERROR_REPLY = "❌ An unexpected error occurred. Please try again later."
API_BUSY_REPLY = "⚠️ The AI service is currently busy. Please try again in a moment."
API_TIMEOUT_REPLY = "⏱️ The request took too long. Please try again with a shorter message."

CommandHandler = Callable[[IncomingMessage, UserSession, list[str]], Awaitable[MessageResponse]]


class MessageHandler:
    """Handles the full flow: message -> session -> security -> command or Perplexity -> response."""

    def __init__(
        self,
        session_manager: SessionManager,
        security: SecurityService,
        registry: PromptRegistry,
        client: PerplexityClient,
        config: AppConfig,
    ):
        self._sessions = session_manager
        self._security = security
        self._registry = registry
        self._client = client
        self._config = config
        self._commands: dict[CommandKind, CommandHandler] = {
            CommandKind.HELP: self._cmd_help,
            CommandKind.RESET: self._cmd_reset,
            CommandKind.SET_PROMPT: self._cmd_set_prompt,
            CommandKind.MODEL: self._cmd_model,
            CommandKind.PRESET: self._cmd_preset,
            CommandKind.STATUS: self._cmd_status,
            CommandKind.CONFIG: self._cmd_config,
            CommandKind.UNKNOWN: self._cmd_unknown,
        }

    async def process(self, message: IncomingMessage) -> MessageResponse:
        """Process an incoming message end-to-end. Never raises."""
        started = time.monotonic()
        try:
            session = await self._sessions.get_or_create(
                message.platform, message.user_id, message.user_display_name
            )

            self._security.check_authorization(message.user_id)
            await self._security.check_rate_limit(message.platform, message.user_id)

            text = message.text
            # A bare command such as /help has no text to validate.
            if not message.is_command or text:
                text = self._security.validate_input(text)

            if message.is_command:
                kind = resolve_command(message.command)
                if kind in ADMIN_ONLY:
                    self._security.require_admin(message.user_id, kind.value)
                return await self._commands[kind](message, session, text.split())

            return await self._chat(message, session, text)
        except BotError as e:
            return self._error_response(e, message)
        except Exception:
            logger.exception(
                "message_processing_failed",
                platform=str(message.platform),
                user_id=message.user_id,
            )
            return MessageResponse(content=UNEXPECTED_ERROR_REPLY, error=True)
        finally:
            logger.debug(
                "message_processed",
                platform=str(message.platform),
                user_id=message.user_id,
                duration_ms=round((time.monotonic() - started) * 1000),
            )

    async def _chat(self, message: IncomingMessage, session: UserSession, text: str) -> MessageResponse:
        injection = self._security.check_prompt_injection(text)
        warning_prefix = f"⚠️ {injection.warning}\n\n" if injection.is_suspicious else ""

        await self._sessions.add_message(session, MessageRole.USER, text)
        self._log_turn(message, MessageRole.USER, text)

        base_prompt = session.custom_system_prompt or self._registry.get_global_system_prompt()
        model = session.model_override or self._registry.get_default_model()
        temperature = session.temperature_override
        if temperature is None:
            temperature = self._registry.get_default_temperature()

        result = await self._client.chat(
            session.conversation_history,
            self._security.build_secure_system_prompt(base_prompt),
            model=model,
            temperature=temperature,
            max_tokens=self._registry.get_default_max_tokens(),
            wrap_user=self._security.wrap_user_content,
        )

        content = self._security.validate_output(result.content)
        await self._sessions.add_message(session, MessageRole.ASSISTANT, content)
        self._log_turn(message, MessageRole.ASSISTANT, content)

        citations_text = ""
        if self._config.perplexity.return_citations and result.citations:
            citations_text = "\n\n📚 **Sources:**\n" + "\n".join(
                f"{i}. {url}" for i, url in enumerate(result.citations, start=1)
            )

        return MessageResponse(
            content=warning_prefix + content + citations_text,
            citations=result.citations,
        )

    def _log_turn(self, message: IncomingMessage, role: MessageRole, content: str) -> None:
        log_conversation(
            self._config.logging.conversations,
            str(message.platform),
            message.user_id,
            str(role),
            content,
        )

    def _error_response(self, error: BotError, message: IncomingMessage) -> MessageResponse:
        logger.warning(
            "message_rejected",
            code=error.code,
            error=error.message,
            platform=str(message.platform),
            user_id=message.user_id,
        )
        if isinstance(error, RateLimitedError):
            content = f"⏳ {error.message}"
        elif isinstance(error, NotWhitelistedError):
            content = f"🔒 {error.message}"
        elif isinstance(error, ForbiddenError):
            content = f"⛔ {error.message}"
        elif isinstance(error, ApiRateLimitedError):
            content = API_BUSY_REPLY
        elif isinstance(error, ApiTimeoutError):
            content = API_TIMEOUT_REPLY
        else:
            content = f"❌ Error: {error.message}"
        return MessageResponse(content=content, error=True)

    # Commands

    async def _cmd_help(self, message: IncomingMessage, session: UserSession, args: list[str]) -> MessageResponse:
        text = (
            "👋 **Welcome to AI Assistant!**\n\n"
            "I'm powered by Perplexity AI and ready to help you with questions, research, and more.\n\n"
            "**Available Commands:**\n"
            "• `/start` or `/help` - Show this message\n"
            "• `/reset` - Clear conversation history\n"
            "• `/preset [name]` - Use a prompt preset\n"
            "• `/status` - Check your session status\n"
            "• `/model [name]` - View or change AI model"
        )
        if self._sessions.is_admin(session):
            text += (
                "\n\n**Admin Commands:**\n"
                "• `/setprompt [prompt]` - Set custom system prompt\n"
                "• `/config` - View AI configuration\n\n"
                "**Available Models:**\n"
                "• `sonar-pro` - Best for general tasks\n"
                "• `sonar-reasoning` - Deep reasoning & analysis\n"
                "• `sonar` - Fast, efficient responses"
            )
        text += "\n\nJust send me a message to start chatting!"
        return MessageResponse(content=text)

    async def _cmd_reset(self, message: IncomingMessage, session: UserSession, args: list[str]) -> MessageResponse:
        await self._sessions.reset(session)
        return MessageResponse(
            content=(
                "🔄 **Conversation reset!**\n\n"
                "Your conversation history has been cleared and settings restored to defaults."
            )
        )

    async def _cmd_set_prompt(self, message: IncomingMessage, session: UserSession, args: list[str]) -> MessageResponse:
        prompt = " ".join(args).strip()

        if not prompt:
            current = session.custom_system_prompt or self._registry.get_global_system_prompt()
            return MessageResponse(
                content=(
                    f"**Current System Prompt:**\n\n```\n{current}\n```\n\n"
                    "To set a new prompt, use:\n`/setprompt Your new prompt here`"
                )
            )

        if prompt == "global":
            return MessageResponse(
                content=f"**Global System Prompt:**\n\n```\n{self._registry.get_global_system_prompt()}\n```"
            )

        if prompt == "clear":
            await self._sessions.set_custom_prompt(session, None)
            return MessageResponse(content="✅ Custom prompt cleared. Using global default.")

        await self._sessions.set_custom_prompt(session, prompt)
        return MessageResponse(content=f"✅ **Custom system prompt set!**\n\n```\n{prompt}\n```")

    async def _cmd_model(self, message: IncomingMessage, session: UserSession, args: list[str]) -> MessageResponse:
        available = self._client.available_models()

        if not args:
            current = session.model_override or self._registry.get_default_model()
            listing = "\n".join(
                f"• `{name}`{' ✓' if name == current else ''}" for name in available
            )
            return MessageResponse(
                content=(
                    f"**Current Model:** `{current}`\n\n"
                    f"**Available Models:**\n{listing}\n\n"
                    "To change model: `/model [model-name]`"
                )
            )

        model = args[0].lower()
        if model not in available:
            return MessageResponse(
                content=f"❌ Unknown model: `{model}`\n\nAvailable: {', '.join(available)}",
                error=True,
            )

        await self._sessions.set_model_override(session, model)
        return MessageResponse(content=f"✅ Model changed to `{model}`")

    async def _cmd_preset(self, message: IncomingMessage, session: UserSession, args: list[str]) -> MessageResponse:
        if not args:
            return MessageResponse(
                content=(
                    "**Available Presets:**\n\n"
                    f"{self._registry.preset_list_text()}\n\n"
                    "To use a preset: `/preset [name]`"
                )
            )

        key = args[0].lower()
        preset = self._registry.get_preset(key)
        if preset is None:
            return MessageResponse(
                content=f"❌ Unknown preset: `{key}`\n\nUse `/preset` to see available presets.",
                error=True,
            )

        session.custom_system_prompt = preset.prompt
        if preset.model:
            session.model_override = preset.model
        if preset.temperature is not None:
            session.temperature_override = preset.temperature
        await self._sessions.update(session)
        logger.info("preset_applied", user_id=session.user_id, preset=key)

        lines = [f"✅ **Preset Applied: {preset.name}**", "", preset.description, ""]
        if preset.model:
            lines.append(f"Model: `{preset.model}`")
        if preset.temperature is not None:
            lines.append(f"Temperature: {preset.temperature}")
        return MessageResponse(content="\n".join(lines).rstrip())

    async def _cmd_status(self, message: IncomingMessage, session: UserSession, args: list[str]) -> MessageResponse:
        rate = await self._security.get_rate_limit_status(message.platform, session.user_id)
        model = session.model_override or self._registry.get_default_model()
        custom = "Yes" if session.custom_system_prompt else "No"
        return MessageResponse(
            content=(
                "📊 **Session Status**\n\n"
                f"• **Platform:** {message.platform}\n"
                f"• **Role:** {session.role}\n"
                f"• **Model:** `{model}`\n"
                f"• **Custom Prompt:** {custom}\n"
                f"• **Conversation History:** {len(session.conversation_history)} messages\n"
                f"• **Rate Limit:** {rate['remaining']}/{rate['total']} remaining\n\n"
                f"Session created: {session.created_at.isoformat()}"
            )
        )

    async def _cmd_config(self, message: IncomingMessage, session: UserSession, args: list[str]) -> MessageResponse:
        return MessageResponse(content=self._registry.config_summary())

    async def _cmd_unknown(self, message: IncomingMessage, session: UserSession, args: list[str]) -> MessageResponse:
        return MessageResponse(
            content=f"Unknown command: /{message.command}\n\nUse /help to see available commands."
        )
