"""
In-memory one-shot alarms keyed by item id.

Registrations live only as long as the process; the item store, not this
clock, is the record of what should eventually fire. Startup reconciliation
re-arms everything that is still pending.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Awaitable, Callable, Optional

from .shared import log_msg, now_ms


class AlarmError(Exception):
    """The alarm could not be scheduled (e.g. too many pending alarms)."""


class AlarmClock:
    def __init__(
        self,
        granularity_seconds: int = 60,
        max_pending: int = 0,
        clock: Callable[[], int] = now_ms,
    ):
        self.granularity_ms = max(int(granularity_seconds), 1) * 1000
        self.max_pending = max_pending
        self.clock = clock
        self._alarms: dict[str, int] = {}
        # created and cleared from the engine thread, polled from the loop
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, env, clock: Callable[[], int] = now_ms) -> "AlarmClock":
        alarms = env.config.alarms
        return cls(alarms.granularity_seconds, alarms.max_pending, clock=clock)

    def _round_up(self, when_ms: int) -> int:
        step = self.granularity_ms
        return -(-when_ms // step) * step

    def create(self, item_id: str, when_ms: int) -> int:
        """
        Schedule (or replace) the alarm for item_id and return its fire time.

        The fire time is when_ms rounded up to the clock's granularity.
        """
        fire_at = self._round_up(when_ms)
        with self._lock:
            if (
                self.max_pending
                and item_id not in self._alarms
                and len(self._alarms) >= self.max_pending
            ):
                raise AlarmError(
                    f"alarm for {item_id} throttled: {len(self._alarms)} pending"
                )
            self._alarms[item_id] = fire_at
        return fire_at

    def clear(self, item_id: str) -> bool:
        with self._lock:
            return self._alarms.pop(item_id, None) is not None

    def clear_all(self) -> None:
        with self._lock:
            self._alarms.clear()

    def pending(self) -> dict[str, int]:
        with self._lock:
            return dict(self._alarms)

    def due(self, now: Optional[int] = None) -> list[str]:
        """Remove and return the ids whose alarms have fired, earliest first."""
        if now is None:
            now = self.clock()
        with self._lock:
            fired = sorted(
                (when, item_id) for item_id, when in self._alarms.items() if when <= now
            )
            for _, item_id in fired:
                del self._alarms[item_id]
        return [item_id for _, item_id in fired]

    async def run(
        self,
        on_due: Callable[[str], Awaitable[None]],
        poll_seconds: float,
        stop: asyncio.Event,
    ) -> None:
        """Poll for due alarms until stop is set, awaiting on_due(id) for each."""
        while not stop.is_set():
            for item_id in self.due():
                log_msg(f"alarm fired for {item_id}")
                await on_due(item_id)
            try:
                await asyncio.wait_for(stop.wait(), timeout=poll_seconds)
            except asyncio.TimeoutError:
                pass
