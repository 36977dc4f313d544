"""Convert stored conversation turns into the model message format."""

from __future__ import annotations

from typing import Any

from noga_bot.core.types import Role
from noga_bot.storage.models import ConversationTurn

VOICE_PLACEHOLDER = "[Voice Message]"
VOICE_INSTRUCTION = (
    "Please listen to this voice message and respond appropriately. "
    "If it contains a request or question, handle it. "
    "If you need to use any tools/functions, please do so."
)


def build_history(turns: list[ConversationTurn]) -> list[dict[str, Any]]:
    """Turn stored records into a strictly alternating message list.

    Leading assistant turns are dropped (the model requires the history to
    start with the user) and consecutive turns of the same role are merged
    into one message joined by newlines.
    """
    messages: list[dict[str, Any]] = []
    for turn in turns:
        role = str(turn.role)
        if not messages and turn.role == Role.ASSISTANT:
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n" + turn.content
        else:
            messages.append({"role": role, "content": turn.content})
    return messages


def append_user_message(messages: list[dict[str, Any]], content: str | list[dict[str, Any]]) -> None:
    """Append the current user input, merging into a trailing user message if present."""
    if not messages or messages[-1]["role"] != Role.USER:
        messages.append({"role": str(Role.USER), "content": content})
        return

    previous = messages[-1]["content"]
    if isinstance(previous, str) and isinstance(content, str):
        messages[-1]["content"] = previous + "\n" + content
        return
    messages[-1]["content"] = _as_blocks(previous) + _as_blocks(content)


def audio_content(data: bytes, mime_type: str) -> list[dict[str, Any]]:
    """Content blocks for a voice message: the audio itself plus the listening instruction."""
    return [
        {"type": "audio", "media_type": mime_type, "data": data},
        {"type": "text", "text": VOICE_INSTRUCTION},
    ]


def _as_blocks(content: str | list[dict[str, Any]]) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    return list(content)
