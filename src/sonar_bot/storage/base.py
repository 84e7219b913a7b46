"""Abstract session storage interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from sonar_bot.storage.models import UserSession


class SessionStorage(ABC):
    """Key-value store for user sessions, keyed by ``platform:user_id``.

    To add a backend, subclass this and implement all abstract methods.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[UserSession]:
        ...

    @abstractmethod
    async def set(self, key: str, session: UserSession) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def list_keys(self) -> list[str]:
        ...

    async def ping(self) -> bool:
        """Whether the backend is reachable. Always true for process-local storage."""
        return True

    async def close(self) -> None:
        """Release backend resources. No-op by default."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        ...
