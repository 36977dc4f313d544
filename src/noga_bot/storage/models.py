"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from noga_bot.core.types import KeywordKind, Role


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ConversationTurn:
    sender: str
    role: Role
    content: str
    created_at: datetime = field(default_factory=_utcnow)
    id: Optional[int] = None


@dataclass
class KeywordRule:
    pattern: str  # comma-separated literal alternatives
    kind: KeywordKind
    payload: str
    enabled: bool = True
    id: Optional[int] = None

    @property
    def alternatives(self) -> list[str]:
        return [v.strip() for v in self.pattern.split(",") if v.strip()]

    def matches(self, text: str) -> bool:
        needle = text.strip().casefold()
        return any(v.casefold() == needle for v in self.alternatives)


@dataclass
class ScheduledPrompt:
    name: str
    cron_expression: str
    prompt: str
    enabled: bool = True
    id: Optional[int] = None


@dataclass
class DeviceMapping:
    entity_id: str
    nickname: str
    location: Optional[str] = None
    category: Optional[str] = None
    id: Optional[int] = None


@dataclass
class AuditRecord:
    sender: Optional[str]
    action: str
    details: Optional[dict[str, Any]]
    created_at: datetime
    id: Optional[int] = None


@dataclass
class UsageTotals:
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
