"""Abstract messenger adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from sonar_bot.core.types import Platform
from sonar_bot.messenger.models import IncomingMessage, MessageResponse, OutgoingMessage

MessageCallback = Callable[[IncomingMessage], Awaitable[MessageResponse]]


class MessengerAdapter(ABC):
    """Base class for all messenger platform adapters.

    An adapter normalizes inbound platform events into IncomingMessage, hands
    them to the registered callback and sends the MessageResponse it returns
    back to the originating chat.
    """

    def __init__(self) -> None:
        self._message_callback: MessageCallback | None = None
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving messages."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> None:
        """Send a message to a specific chat, chunked to the platform limit."""
        ...

    @abstractmethod
    async def send_typing_indicator(self, chat_id: str) -> None:
        """Show typing/processing indicator."""
        ...

    def on_message(self, callback: MessageCallback) -> None:
        """Register the callback invoked for every incoming message."""
        self._message_callback = callback

    @property
    def is_active(self) -> bool:
        return self._running

    @property
    @abstractmethod
    def platform_name(self) -> Platform:
        """Return platform identifier."""
        ...
