"""Administrator-managed tables: keyword rules, scheduled prompts, device mappings, config."""

from __future__ import annotations

import json
from typing import Any, Optional

import aiosqlite

from noga_bot.core.cron import parse_cron
from noga_bot.core.types import KeywordKind
from noga_bot.errors import ValidationError
from noga_bot.log import get_logger
from noga_bot.storage.database import Database
from noga_bot.storage.models import DeviceMapping, KeywordRule, ScheduledPrompt

logger = get_logger(__name__)


def _require(value: Optional[str], field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name} must not be empty")
    return value.strip()


def _keyword_kind(kind: str) -> KeywordKind:
    try:
        return KeywordKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown keyword kind '{kind}' (expected 'static' or 'ai')") from None


class AdminRepository:
    """CRUD over the tables edited through the admin API."""

    def __init__(self, db: Database):
        self._db = db

    # -- keywords ---------------------------------------------------------

    async def list_keywords(self, enabled_only: bool = False) -> list[KeywordRule]:
        sql = "SELECT * FROM keywords"
        if enabled_only:
            sql += " WHERE enabled = 1"
        cursor = await self._db.conn.execute(sql + " ORDER BY pattern ASC")
        return [self._row_to_keyword(row) for row in await cursor.fetchall()]

    async def get_keyword(self, keyword_id: int) -> KeywordRule | None:
        cursor = await self._db.conn.execute("SELECT * FROM keywords WHERE id = ?", (keyword_id,))
        row = await cursor.fetchone()
        return self._row_to_keyword(row) if row else None

    async def find_keyword(self, text: str) -> KeywordRule | None:
        """Find an enabled rule whose alternatives contain *text* (case-insensitive)."""
        if not text or not text.strip():
            return None
        for rule in await self.list_keywords(enabled_only=True):
            if rule.matches(text):
                return rule
        return None

    async def add_keyword(self, pattern: str, payload: str, kind: str = "static") -> int:
        pattern = _require(pattern, "keyword")
        payload = _require(payload, "response")
        kind_value = _keyword_kind(kind)
        await self._ensure_unique_alternatives(pattern)
        try:
            cursor = await self._db.conn.execute(
                "INSERT INTO keywords (pattern, kind, payload) VALUES (?, ?, ?)",
                (pattern, str(kind_value), payload),
            )
        except aiosqlite.IntegrityError as e:
            raise ValidationError(f"Keyword '{pattern}' already exists") from e
        await self._db.conn.commit()
        logger.info("keyword_added", pattern=pattern, kind=str(kind_value))
        return cursor.lastrowid  # type: ignore[return-value]

    async def update_keyword(
        self, keyword_id: int, pattern: str, payload: str, enabled: bool = True, kind: str = "static"
    ) -> bool:
        pattern = _require(pattern, "keyword")
        payload = _require(payload, "response")
        kind_value = _keyword_kind(kind)
        await self._ensure_unique_alternatives(pattern, exclude_id=keyword_id)
        try:
            cursor = await self._db.conn.execute(
                """UPDATE keywords
                   SET pattern = ?, payload = ?, enabled = ?, kind = ?,
                       updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE id = ?""",
                (pattern, payload, 1 if enabled else 0, str(kind_value), keyword_id),
            )
        except aiosqlite.IntegrityError as e:
            raise ValidationError(f"Keyword '{pattern}' already exists") from e
        await self._db.conn.commit()
        return cursor.rowcount > 0

    async def delete_keyword(self, keyword_id: int) -> bool:
        cursor = await self._db.conn.execute("DELETE FROM keywords WHERE id = ?", (keyword_id,))
        await self._db.conn.commit()
        return cursor.rowcount > 0

    async def _ensure_unique_alternatives(self, pattern: str, exclude_id: int | None = None) -> None:
        wanted = {v.strip().casefold() for v in pattern.split(",") if v.strip()}
        if not wanted:
            raise ValidationError("keyword must contain at least one alternative")
        for rule in await self.list_keywords():
            if rule.id == exclude_id:
                continue
            clash = wanted & {v.casefold() for v in rule.alternatives}
            if clash:
                raise ValidationError(
                    f"Keyword '{sorted(clash)[0]}' is already used by rule '{rule.pattern}'"
                )

    @staticmethod
    def _row_to_keyword(row) -> KeywordRule:
        return KeywordRule(
            id=row["id"],
            pattern=row["pattern"],
            kind=KeywordKind(row["kind"]),
            payload=row["payload"],
            enabled=bool(row["enabled"]),
        )

    # -- scheduled prompts ------------------------------------------------

    async def list_scheduled_prompts(self) -> list[ScheduledPrompt]:
        cursor = await self._db.conn.execute("SELECT * FROM scheduled_prompts ORDER BY id ASC")
        return [self._row_to_prompt(row) for row in await cursor.fetchall()]

    async def enabled_scheduled_prompts(self) -> list[ScheduledPrompt]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM scheduled_prompts WHERE enabled = 1 ORDER BY id ASC"
        )
        return [self._row_to_prompt(row) for row in await cursor.fetchall()]

    async def get_scheduled_prompt(self, prompt_id: int) -> ScheduledPrompt | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM scheduled_prompts WHERE id = ?", (prompt_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_prompt(row) if row else None

    async def add_scheduled_prompt(
        self, name: str, cron_expression: str, prompt: str, enabled: bool = True
    ) -> int:
        name = _require(name, "name")
        prompt = _require(prompt, "prompt")
        parse_cron(cron_expression)
        cursor = await self._db.conn.execute(
            "INSERT INTO scheduled_prompts (name, cron_expression, prompt, enabled) VALUES (?, ?, ?, ?)",
            (name, cron_expression.strip(), prompt, 1 if enabled else 0),
        )
        await self._db.conn.commit()
        logger.info("scheduled_prompt_added", name=name, cron=cron_expression)
        return cursor.lastrowid  # type: ignore[return-value]

    async def update_scheduled_prompt(
        self, prompt_id: int, name: str, cron_expression: str, prompt: str, enabled: bool = True
    ) -> bool:
        name = _require(name, "name")
        prompt = _require(prompt, "prompt")
        parse_cron(cron_expression)
        cursor = await self._db.conn.execute(
            """UPDATE scheduled_prompts
               SET name = ?, cron_expression = ?, prompt = ?, enabled = ?,
                   updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
               WHERE id = ?""",
            (name, cron_expression.strip(), prompt, 1 if enabled else 0, prompt_id),
        )
        await self._db.conn.commit()
        return cursor.rowcount > 0

    async def delete_scheduled_prompt(self, prompt_id: int) -> bool:
        cursor = await self._db.conn.execute(
            "DELETE FROM scheduled_prompts WHERE id = ?", (prompt_id,)
        )
        await self._db.conn.commit()
        return cursor.rowcount > 0

    @staticmethod
    def _row_to_prompt(row) -> ScheduledPrompt:
        return ScheduledPrompt(
            id=row["id"],
            name=row["name"],
            cron_expression=row["cron_expression"],
            prompt=row["prompt"],
            enabled=bool(row["enabled"]),
        )

    # -- device mappings --------------------------------------------------

    async def list_device_mappings(self) -> list[DeviceMapping]:
        cursor = await self._db.conn.execute("SELECT * FROM device_mappings ORDER BY id ASC")
        return [self._row_to_mapping(row) for row in await cursor.fetchall()]

    async def add_device_mapping(
        self,
        entity_id: str,
        nickname: str,
        location: str | None = None,
        category: str | None = None,
    ) -> int:
        entity_id = _require(entity_id, "entity_id")
        nickname = _require(nickname, "nickname")
        try:
            cursor = await self._db.conn.execute(
                "INSERT INTO device_mappings (entity_id, nickname, location, category) VALUES (?, ?, ?, ?)",
                (entity_id, nickname, location or None, category or None),
            )
        except aiosqlite.IntegrityError as e:
            raise ValidationError(f"Nickname '{nickname}' is already mapped") from e
        await self._db.conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def update_device_mapping(
        self,
        mapping_id: int,
        entity_id: str,
        nickname: str,
        location: str | None = None,
        category: str | None = None,
    ) -> bool:
        entity_id = _require(entity_id, "entity_id")
        nickname = _require(nickname, "nickname")
        try:
            cursor = await self._db.conn.execute(
                """UPDATE device_mappings
                   SET entity_id = ?, nickname = ?, location = ?, category = ?
                   WHERE id = ?""",
                (entity_id, nickname, location or None, category or None, mapping_id),
            )
        except aiosqlite.IntegrityError as e:
            raise ValidationError(f"Nickname '{nickname}' is already mapped") from e
        await self._db.conn.commit()
        return cursor.rowcount > 0

    async def delete_device_mapping(self, mapping_id: int) -> bool:
        cursor = await self._db.conn.execute(
            "DELETE FROM device_mappings WHERE id = ?", (mapping_id,)
        )
        await self._db.conn.commit()
        return cursor.rowcount > 0

    @staticmethod
    def _row_to_mapping(row) -> DeviceMapping:
        return DeviceMapping(
            id=row["id"],
            entity_id=row["entity_id"],
            nickname=row["nickname"],
            location=row["location"],
            category=row["category"],
        )

    # -- config -----------------------------------------------------------

    async def get_config(self, key: str, default: Any = None) -> Any:
        cursor = await self._db.conn.execute("SELECT value_json FROM config WHERE key = ?", (key,))
        row = await cursor.fetchone()
        if row is None:
            return default
        return json.loads(row["value_json"])

    async def set_config(self, key: str, value: Any) -> None:
        await self._db.conn.execute(
            """INSERT INTO config (key, value_json) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value_json = excluded.value_json,
                   updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (key, json.dumps(value, ensure_ascii=False)),
        )
        await self._db.conn.commit()
