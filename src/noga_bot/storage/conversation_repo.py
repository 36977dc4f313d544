"""Conversation repository: per-sender turn log, audit log and usage accounting."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

from noga_bot.core.types import Role
from noga_bot.log import get_logger
from noga_bot.storage.database import Database
from noga_bot.storage.models import AuditRecord, ConversationTurn, UsageTotals

logger = get_logger(__name__)


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


class ConversationRepository:
    """Append-only turn log plus the advisory audit and usage tables."""

    def __init__(self, db: Database):
        self._db = db

    async def save_turn(self, turn: ConversationTurn) -> int:
        """Save a conversation turn and return its ID."""
        cursor = await self._db.conn.execute(
            "INSERT INTO conversation_turns (sender, role, content) VALUES (?, ?, ?)",
            (turn.sender, str(turn.role), turn.content),
        )
        await self._db.conn.commit()
        return cursor.lastrowid  # type: ignore[return-value]

    async def get_recent_turns(self, sender: str, limit: int = 20) -> list[ConversationTurn]:
        """Return the most recent *limit* turns for a sender, oldest first."""
        cursor = await self._db.conn.execute(
            """SELECT * FROM conversation_turns
               WHERE sender = ?
               ORDER BY id DESC
               LIMIT ?""",
            (sender, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_turn(row) for row in reversed(rows)]

    async def clear_history(self, sender: str) -> int:
        """Delete all turns for a sender. Returns number of deleted rows."""
        cursor = await self._db.conn.execute(
            "DELETE FROM conversation_turns WHERE sender = ?", (sender,)
        )
        await self._db.conn.commit()
        return cursor.rowcount

    async def prune_history(self, keep_last: int = 100) -> int:
        """Keep only the newest *keep_last* turns per sender."""
        cursor = await self._db.conn.execute(
            """DELETE FROM conversation_turns
               WHERE id NOT IN (
                   SELECT id FROM (
                       SELECT id, ROW_NUMBER() OVER (
                           PARTITION BY sender ORDER BY id DESC
                       ) AS rn
                       FROM conversation_turns
                   ) WHERE rn <= ?
               )""",
            (keep_last,),
        )
        await self._db.conn.commit()
        return cursor.rowcount

    async def log_action(
        self, sender: Optional[str], action: str, details: dict[str, Any] | None = None
    ) -> None:
        await self._db.conn.execute(
            "INSERT INTO audit_log (sender, action, details_json) VALUES (?, ?, ?)",
            (
                sender,
                action,
                json.dumps(details, ensure_ascii=False, default=str) if details is not None else None,
            ),
        )
        await self._db.conn.commit()

    async def recent_actions(self, limit: int = 100, sender: Optional[str] = None) -> list[AuditRecord]:
        if sender:
            cursor = await self._db.conn.execute(
                "SELECT * FROM audit_log WHERE sender = ? ORDER BY id DESC LIMIT ?",
                (sender, limit),
            )
        else:
            cursor = await self._db.conn.execute(
                "SELECT * FROM audit_log ORDER BY id DESC LIMIT ?", (limit,)
            )
        rows = await cursor.fetchall()
        return [
            AuditRecord(
                id=row["id"],
                sender=row["sender"],
                action=row["action"],
                details=json.loads(row["details_json"]) if row["details_json"] else None,
                created_at=_parse_ts(row["created_at"]),
            )
            for row in rows
        ]

    async def record_usage(
        self, model: str, input_tokens: int, output_tokens: int, cost_usd: float = 0.0
    ) -> None:
        await self._db.conn.execute(
            "INSERT INTO usage_logs (model, input_tokens, output_tokens, cost_usd) VALUES (?, ?, ?, ?)",
            (model, input_tokens, output_tokens, cost_usd),
        )
        await self._db.conn.commit()

    async def usage_stats(self) -> dict[str, UsageTotals]:
        """Token and cost totals for today and the current month (UTC)."""
        stats: dict[str, UsageTotals] = {}
        for period, since in (
            ("today", "strftime('%Y-%m-%d', 'now')"),
            ("month", "strftime('%Y-%m-01', 'now')"),
        ):
            cursor = await self._db.conn.execute(
                f"""SELECT COALESCE(SUM(input_tokens), 0) AS input_tokens,
                           COALESCE(SUM(output_tokens), 0) AS output_tokens,
                           COALESCE(SUM(cost_usd), 0) AS cost_usd
                    FROM usage_logs WHERE created_at >= {since}"""
            )
            row = await cursor.fetchone()
            stats[period] = UsageTotals(
                input_tokens=row["input_tokens"],
                output_tokens=row["output_tokens"],
                cost_usd=row["cost_usd"],
            )
        return stats

    @staticmethod
    def _row_to_turn(row) -> ConversationTurn:
        return ConversationTurn(
            id=row["id"],
            sender=row["sender"],
            role=Role(row["role"]),
            content=row["content"],
            created_at=_parse_ts(row["created_at"]),
        )
