"""Cron expression parsing shared by the scheduler and the admin store."""

from __future__ import annotations

from apscheduler.triggers.cron import CronTrigger

from noga_bot.errors import ValidationError


def parse_cron(expression: str, timezone: str | None = None) -> CronTrigger:
    """Build a trigger from a five-field crontab expression.

    Raises ``ValidationError`` for anything APScheduler rejects.
    """
    expr = (expression or "").strip()
    if len(expr.split()) != 5:
        raise ValidationError(
            f"Invalid cron expression '{expression}': expected 5 fields "
            "(minute hour day month weekday)"
        )
    try:
        return CronTrigger.from_crontab(expr, timezone=timezone)
    except ValueError as e:
        raise ValidationError(f"Invalid cron expression '{expression}': {e}") from e
