"""Registry of active messenger adapters, one per platform."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sonar_bot.core.types import Platform

if TYPE_CHECKING:
    from sonar_bot.messenger.base import MessengerAdapter


class BotRegistry:
    """Tracks the messenger adapters the application has started."""

    def __init__(self) -> None:
        self._adapters: dict[Platform, MessengerAdapter] = {}

    def register(self, adapter: MessengerAdapter) -> None:
        self._adapters[adapter.platform_name] = adapter

    def all(self) -> list[MessengerAdapter]:
        return list(self._adapters.values())

    def status(self) -> dict[str, bool]:
        """Active flag per platform; platforms never registered report False."""
        return {
            str(platform): bool(self._adapters.get(platform) and self._adapters[platform].is_active)
            for platform in Platform
        }
