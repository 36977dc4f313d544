"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Platform(StrEnum):
    TELEGRAM = "telegram"


class MessageKind(StrEnum):
    TEXT = "text"
    VOICE = "voice"
    OTHER = "other"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class KeywordKind(StrEnum):
    STATIC = "static"
    AI = "ai"


class RouterState(StrEnum):
    IDLE = "idle"
    CLASSIFYING = "classifying"
    COMMAND = "command"
    KEYWORD = "keyword"
    ENGINE = "engine"
    RESPONDING = "responding"


# Allowed router state transitions. IDLE is reachable from every state so an
# early return or a failure always releases the sender.
ROUTER_TRANSITIONS: dict[RouterState, frozenset[RouterState]] = {
    RouterState.IDLE: frozenset({RouterState.CLASSIFYING}),
    RouterState.CLASSIFYING: frozenset(
        {RouterState.COMMAND, RouterState.KEYWORD, RouterState.ENGINE, RouterState.IDLE}
    ),
    RouterState.COMMAND: frozenset({RouterState.ENGINE, RouterState.RESPONDING, RouterState.IDLE}),
    RouterState.KEYWORD: frozenset({RouterState.ENGINE, RouterState.RESPONDING, RouterState.IDLE}),
    RouterState.ENGINE: frozenset({RouterState.RESPONDING, RouterState.IDLE}),
    RouterState.RESPONDING: frozenset({RouterState.IDLE}),
}
