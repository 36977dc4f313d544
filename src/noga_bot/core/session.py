"""Per-sender inactivity tracking for conversation resets."""

from __future__ import annotations

import time
from typing import Callable


class SessionTracker:
    """Remembers when each sender was last served.

    A sender whose previous message is older than the timeout starts a new
    session, which the router uses to clear stale history.
    """

    def __init__(self, timeout_minutes: float, clock: Callable[[], float] = time.monotonic):
        self._timeout = timeout_minutes * 60
        self._clock = clock
        self._last_activity: dict[str, float] = {}

    def is_expired(self, sender: str) -> bool:
        last = self._last_activity.get(sender)
        if last is None:
            return False
        return self._clock() - last > self._timeout

    def touch(self, sender: str) -> None:
        self._last_activity[sender] = self._clock()
