"""Unified message models for all messenger platforms."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sonar_bot.core.types import Platform


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    """Platform-agnostic inbound chat event.

    For commands, ``text`` holds only the arguments joined by single spaces.
    """

    id: str
    platform: Platform
    chat_id: str
    user_id: str
    text: str
    timestamp: datetime
    user_display_name: Optional[str] = None
    command: Optional[str] = None
    command_args: list[str] = field(default_factory=list)
    reply_to_message_id: Optional[str] = None

    @property
    def is_command(self) -> bool:
        return self.command is not None


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    chat_id: str
    text: str
    reply_to_message_id: Optional[str] = None
    parse_markdown: bool = False


@dataclass
class MessageResponse:
    """What the message handler hands back to an adapter. Always sendable."""

    content: str
    citations: Optional[list[str]] = None
    error: bool = False
