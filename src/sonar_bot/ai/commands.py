"""Chat commands understood by the message handler."""

from __future__ import annotations

from enum import Enum


class CommandKind(Enum):
    HELP = "help"
    RESET = "reset"
    SET_PROMPT = "setprompt"
    MODEL = "model"
    PRESET = "preset"
    STATUS = "status"
    CONFIG = "config"
    UNKNOWN = "unknown"


_ALIASES = {
    "start": CommandKind.HELP,
    "help": CommandKind.HELP,
    "reset": CommandKind.RESET,
    "setprompt": CommandKind.SET_PROMPT,
    "model": CommandKind.MODEL,
    "preset": CommandKind.PRESET,
    "status": CommandKind.STATUS,
    "config": CommandKind.CONFIG,
}

ADMIN_ONLY = frozenset({CommandKind.SET_PROMPT, CommandKind.CONFIG})

# Shown in the Telegram command menu; admin commands stay hidden.
PUBLIC_COMMANDS: list[tuple[str, str]] = [
    ("start", "Start the bot and show help"),
    ("help", "Show available commands"),
    ("reset", "Clear conversation history"),
    ("preset", "Use a prompt preset"),
    ("model", "View or change AI model"),
    ("status", "Check your session status"),
]


def resolve_command(name: str) -> CommandKind:
    return _ALIASES.get(name.lower(), CommandKind.UNKNOWN)
