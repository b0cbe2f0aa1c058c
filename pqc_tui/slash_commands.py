from __future__ import annotations

"""
Slash-commands understood by the input bar.

Only the quit aliases are handled locally; everything else is sent to the
backend as chat text.
"""

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class SlashCommand:
    name: str
    description: str


QUIT_COMMANDS = ("/quit", "/q", "/exit", ":wq", ":q", ":wqa")

SLASH_COMMANDS: List[SlashCommand] = [
    SlashCommand(name='/quit', description='Close the chat and exit'),
    SlashCommand(name='/q', description='Alias for /quit'),
    SlashCommand(name='/exit', description='Alias for /quit'),
]


def is_quit_command(text: str) -> bool:
    return (text or '').strip() in QUIT_COMMANDS


def suggest(prefix: str, limit: int = 10) -> List[SlashCommand]:
    p = (prefix or '').strip()
    if not p.startswith('/'):
        return []
    if p == '/':
        return SLASH_COMMANDS[: max(1, int(limit))]
    res: List[SlashCommand] = []
    lp = p.lower()
    for cmd in SLASH_COMMANDS:
        if cmd.name.lower().startswith(lp):
            res.append(cmd)
            if len(res) >= max(1, int(limit)):
                break
    return res


__all__ = ["SlashCommand", "QUIT_COMMANDS", "SLASH_COMMANDS", "is_quit_command", "suggest"]
