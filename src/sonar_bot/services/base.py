"""Lifecycle contract for long-running components (scheduler, admin HTTP server)."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Service(ABC):
    """A component started with the bot and stopped on shutdown.

    ``ServiceManager`` starts services in registration order and stops them in reverse.
    """

    @property
    @abstractmethod
    def service_name(self) -> str:
        """Unique name, used for lookup and in health reports."""

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Release resources. Must be safe to call on a service that never started."""

    async def health_check(self) -> bool:
        return True
