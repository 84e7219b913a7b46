"""Convert session history to the chat-completions message format."""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from sonar_bot.core.types import MessageRole
from sonar_bot.storage.models import ConversationMessage

_FORWARDED_ROLES = (MessageRole.USER, MessageRole.ASSISTANT)


def build_messages(
    history: Iterable[ConversationMessage],
    system_prompt: str,
    wrap_user: Optional[Callable[[str], str]] = None,
) -> list[dict[str, str]]:
    """System prompt first, then user/assistant turns in order.

    History entries tagged ``system`` are never forwarded upstream. When
    ``wrap_user`` is given, user turns are sent through it; the stored
    history keeps the raw text.
    """
    messages = [{"role": "system", "content": system_prompt}]
    for record in history:
        if record.role not in _FORWARDED_ROLES:
            continue
        content = record.content
        if wrap_user is not None and record.role == MessageRole.USER:
            content = wrap_user(content)
        messages.append({"role": record.role.value, "content": content})
    return messages
