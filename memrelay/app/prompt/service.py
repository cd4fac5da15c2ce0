from __future__ import annotations

from collections.abc import Iterable

from memrelay.app.sessions.contracts import ROLE_USER, Turn


def format_turn(role: str, text: str) -> str:
    return f"{role}: {text}"


def assemble_prompt(history: Iterable[Turn], message: str) -> str:
    """Fold chronological history and the new message into one prompt.

    One ``role: text`` line per turn, oldest first, with the new user message
    as the final line.
    """
    lines = [format_turn(turn.role, turn.text) for turn in history]
    lines.append(format_turn(ROLE_USER, message))
    return "\n".join(lines)
