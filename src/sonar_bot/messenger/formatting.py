"""Text helpers shared by the messenger adapters."""

from __future__ import annotations

import re
from typing import Optional

COMMAND_PREFIX = "/"

_ITALIC = re.compile(r"(?<!\*)\*(?!\*)(.+?)(?<!\*)\*(?!\*)")
_BOLD_STARS = re.compile(r"\*\*(.+?)\*\*")
_BOLD_UNDERSCORES = re.compile(r"__(.+?)__")
_STRIKE = re.compile(r"~~(.+?)~~")
_INLINE_CODE = re.compile(r"(?<!`)`([^`\n]+)`(?!`)")


def parse_command(text: str, strip_mention: bool = False) -> Optional[tuple[str, list[str]]]:
    """Split ``/name arg1 arg2`` into (name, args). Returns None for plain text.

    With ``strip_mention`` a trailing ``@botname`` is removed from the name,
    as Telegram appends it in group chats.
    """
    if not text.startswith(COMMAND_PREFIX):
        return None
    parts = text[len(COMMAND_PREFIX):].split()
    if not parts:
        return None
    name = parts[0]
    if strip_mention:
        name = name.split("@", 1)[0]
    return name.lower(), parts[1:]


def split_message(text: str, max_length: int = 4000) -> list[str]:
    """Split a message into chunks that fit within platform limits.

    Prefers paragraph breaks, then line breaks, then spaces, but never splits
    inside the first half of a chunk.
    """
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    remaining = text
    while remaining:
        if len(remaining) <= max_length:
            chunks.append(remaining)
            break

        split_pos = -1
        for separator in ("\n\n", "\n", " "):
            split_pos = remaining.rfind(separator, 0, max_length)
            if split_pos >= max_length // 2:
                break
        if split_pos < max_length // 2:
            split_pos = max_length

        chunks.append(remaining[:split_pos])
        remaining = remaining[split_pos:].strip()
    return chunks


def to_whatsapp_markdown(text: str) -> str:
    """Translate common Markdown to WhatsApp formatting."""
    # Italic first: once bold becomes *x* it would look like italic.
    text = _ITALIC.sub(r"_\1_", text)
    text = _BOLD_STARS.sub(r"*\1*", text)
    text = _BOLD_UNDERSCORES.sub(r"*\1*", text)
    text = _STRIKE.sub(r"~\1~", text)
    text = _INLINE_CODE.sub(r"```\1```", text)
    return text
