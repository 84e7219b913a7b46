"""Process-local session storage. Nothing survives a restart."""

from __future__ import annotations

from typing import Optional

from sonar_bot.storage.base import SessionStorage
from sonar_bot.storage.models import UserSession


class InMemorySessionStorage(SessionStorage):
    def __init__(self) -> None:
        self._sessions: dict[str, UserSession] = {}

    @property
    def backend_name(self) -> str:
        return "memory"

    async def get(self, key: str) -> Optional[UserSession]:
        return self._sessions.get(key)

    async def set(self, key: str, session: UserSession) -> None:
        self._sessions[key] = session

    async def delete(self, key: str) -> None:
        self._sessions.pop(key, None)

    async def list_keys(self) -> list[str]:
        return list(self._sessions.keys())
