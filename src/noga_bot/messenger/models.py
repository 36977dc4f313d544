"""Unified message models for the messenger layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from noga_bot.core.types import MessageKind, Platform


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    platform: Platform
    sender: str  # stable per-user id
    destination: str  # chat to reply into
    text: str
    kind: MessageKind = MessageKind.TEXT
    audio: Optional[bytes] = None
    mime_type: Optional[str] = None
    message_id: Optional[str] = None
    sender_name: str = ""
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    destination: str
    text: str
    reply_to_message_id: Optional[str] = None
