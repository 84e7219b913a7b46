"""Data models for the session storage layer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sonar_bot.core.types import MessageRole, Platform, UserRole


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class ConversationMessage:
    role: MessageRole
    content: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMessage:
        return cls(
            role=MessageRole(data["role"]),
            content=data["content"],
            timestamp=_parse_ts(data["timestamp"]),
        )


@dataclass
class UserSession:
    user_id: str
    platform: Platform
    role: UserRole = UserRole.USER
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    conversation_history: list[ConversationMessage] = field(default_factory=list)
    custom_system_prompt: Optional[str] = None
    model_override: Optional[str] = None
    temperature_override: Optional[float] = None
    display_name: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return session_key(self.platform, self.user_id)

    def idle_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return (now - self.last_activity_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "platform": self.platform.value,
            "role": self.role.value,
            "conversation_history": [m.to_dict() for m in self.conversation_history],
            "custom_system_prompt": self.custom_system_prompt,
            "model_override": self.model_override,
            "temperature_override": self.temperature_override,
            "display_name": self.display_name,
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserSession:
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            platform=Platform(data["platform"]),
            role=UserRole(data.get("role", UserRole.USER)),
            conversation_history=[
                ConversationMessage.from_dict(m) for m in data.get("conversation_history", [])
            ],
            custom_system_prompt=data.get("custom_system_prompt"),
            model_override=data.get("model_override"),
            temperature_override=data.get("temperature_override"),
            display_name=data.get("display_name"),
            created_at=_parse_ts(data["created_at"]),
            last_activity_at=_parse_ts(data["last_activity_at"]),
        )


def session_key(platform: Platform | str, user_id: str) -> str:
    """Storage key for a (platform, user) pair."""
    return f"{platform}:{user_id}"
