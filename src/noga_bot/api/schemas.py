"""Request bodies for the HTTP API."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class BroadcastRequest(BaseModel):
    event: str = Field(min_length=1)
    data: Any = Field(default_factory=dict)


class KeywordIn(BaseModel):
    pattern: str
    payload: str
    kind: str = "static"
    enabled: bool = True


class ScheduledPromptIn(BaseModel):
    name: str
    cron_expression: str
    prompt: str
    enabled: bool = True


class DeviceMappingIn(BaseModel):
    entity_id: str
    nickname: str
    location: Optional[str] = None
    category: Optional[str] = None


class SystemPromptIn(BaseModel):
    prompt: str
