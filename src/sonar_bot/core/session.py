"""Session manager: per-(platform, user) conversation state with bounded history and expiry."""

from __future__ import annotations

from typing import Optional

from sonar_bot.config import SecurityConfig, SessionConfig
from sonar_bot.core.types import MessageRole, Platform, UserRole
from sonar_bot.log import get_logger
from sonar_bot.storage.base import SessionStorage
from sonar_bot.storage.models import ConversationMessage, UserSession, session_key, utcnow

logger = get_logger(__name__)


class SessionManager:
    """Owns every UserSession, keyed by ``platform:user_id``.

    Sessions idle longer than the configured timeout are never handed out:
    ``get_or_create`` replaces them, and ``cleanup_expired`` (run periodically
    by the scheduler) deletes the ones nobody comes back for.
    """

    def __init__(
        self,
        storage: SessionStorage,
        session_config: SessionConfig,
        security_config: SecurityConfig,
    ):
        self._storage = storage
        self._timeout = session_config.timeout_seconds
        self._max_history = session_config.max_conversation_history
        self._security = security_config

    @property
    def storage(self) -> SessionStorage:
        return self._storage

    async def get_or_create(
        self,
        platform: Platform,
        user_id: str,
        display_name: Optional[str] = None,
    ) -> UserSession:
        """Return the live session for a user, creating a fresh one if missing or stale."""
        key = session_key(platform, user_id)
        session = await self._storage.get(key)
        now = utcnow()

        if session is not None:
            if session.idle_seconds(now) > self._timeout:
                logger.info("session_expired", platform=str(platform), user_id=user_id)
                await self._storage.delete(key)
                session = None
            else:
                session.last_activity_at = now
                if display_name:
                    session.display_name = display_name
                await self._storage.set(key, session)

        if session is None:
            session = self._new_session(platform, user_id, display_name)
            await self._storage.set(key, session)
            logger.info(
                "session_created",
                platform=str(platform),
                user_id=user_id,
                session_id=session.session_id,
            )

        return session

    def _new_session(
        self, platform: Platform, user_id: str, display_name: Optional[str]
    ) -> UserSession:
        role = UserRole.ADMIN if user_id in self._security.admin_user_ids else UserRole.USER
        return UserSession(
            user_id=user_id,
            platform=platform,
            role=role,
            display_name=display_name,
        )

    async def update(self, session: UserSession) -> None:
        session.last_activity_at = utcnow()
        await self._storage.set(session.key, session)

    async def add_message(self, session: UserSession, role: MessageRole, content: str) -> None:
        """Append a turn and trim history to the most recent entries."""
        session.conversation_history.append(ConversationMessage(role=role, content=content))
        if len(session.conversation_history) > self._max_history:
            session.conversation_history = session.conversation_history[-self._max_history:]
        await self.update(session)

    async def clear_history(self, session: UserSession) -> None:
        session.conversation_history = []
        await self.update(session)
        logger.info("session_history_cleared", platform=str(session.platform), user_id=session.user_id)

    async def reset(self, session: UserSession) -> None:
        """Clear history and per-user overrides; id and role are kept."""
        session.custom_system_prompt = None
        session.model_override = None
        session.temperature_override = None
        await self.clear_history(session)
        logger.info("session_reset", platform=str(session.platform), user_id=session.user_id)

    async def set_custom_prompt(self, session: UserSession, prompt: Optional[str]) -> None:
        session.custom_system_prompt = prompt
        await self.update(session)
        logger.info("session_custom_prompt_set", platform=str(session.platform), user_id=session.user_id)

    async def set_model_override(self, session: UserSession, model: str) -> None:
        session.model_override = model
        await self.update(session)
        logger.info(
            "session_model_override_set",
            platform=str(session.platform),
            user_id=session.user_id,
            model=model,
        )

    async def delete(self, platform: Platform, user_id: str) -> None:
        await self._storage.delete(session_key(platform, user_id))
        logger.info("session_deleted", platform=str(platform), user_id=user_id)

    async def list_keys(self) -> list[str]:
        return await self._storage.list_keys()

    def is_admin(self, session: UserSession) -> bool:
        return session.role == UserRole.ADMIN

    async def cleanup_expired(self) -> int:
        """Delete every stored session idle past the timeout. Returns how many were removed."""
        removed = 0
        try:
            now = utcnow()
            for key in await self.list_keys():
                session = await self._storage.get(key)
                if session is not None and session.idle_seconds(now) > self._timeout:
                    await self._storage.delete(key)
                    removed += 1
                    logger.debug("session_cleaned_up", session_id=session.session_id)
        except Exception as e:
            logger.error("session_cleanup_error", error=str(e))
        if removed:
            logger.info("expired_sessions_removed", count=removed)
        return removed
