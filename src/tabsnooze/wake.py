"""
Waking snoozed items: restore, notify, cancel alarms, and reschedule
recurring items as fresh continuation items.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from .item import ScheduledItem, window_members
from .recurrence import next_occurrence
from .shared import log_msg, new_id, now_ms

DEFAULT_ICON = "icons/icon128.png"


@dataclass
class WakeOutcome:
    """What one wake invocation did, expressed as a delta on the collection."""

    removed_ids: set[str] = field(default_factory=set)
    continuations: list[ScheduledItem] = field(default_factory=list)
    woken: int = 0
    opened: int = 0
    notified: int = 0

    def apply(self, collection: Iterable[ScheduledItem]) -> list[ScheduledItem]:
        """collection minus the removed ids, plus the continuations."""
        remaining = [item for item in collection if item.id not in self.removed_ids]
        taken = {item.id for item in remaining}
        remaining.extend(c for c in self.continuations if c.id not in taken)
        return remaining


def _kind(item: ScheduledItem) -> str:
    return "recurring" if item.is_recurring else "delayed"


class WakeOrchestrator:
    def __init__(
        self,
        materializer,
        alarms,
        default_icon: str = DEFAULT_ICON,
        id_factory: Callable[[], str] = new_id,
        clock: Callable[[], int] = now_ms,
    ):
        self.materializer = materializer
        self.alarms = alarms
        self.default_icon = default_icon
        self.id_factory = id_factory
        self.clock = clock

    def wake(
        self,
        trigger_items: Iterable[ScheduledItem],
        collection: list[ScheduledItem],
        now: Optional[int] = None,
    ) -> list[ScheduledItem]:
        return self.run(trigger_items, collection, now).apply(collection)

    def run(
        self,
        trigger_items: Iterable[ScheduledItem],
        collection: list[ScheduledItem],
        now: Optional[int] = None,
    ) -> WakeOutcome:
        """
        Wake trigger_items against collection.

        Trigger items that are no longer in the collection are ignored, and
        each window group is woken at most once however many of its members
        were triggered. Window groups are always taken from the collection,
        not from the trigger list.
        """
        if now is None:
            now = self.clock()
        outcome = WakeOutcome()
        present = {item.id: item for item in collection}
        handled_sessions: set[str] = set()

        for trigger in trigger_items:
            current = present.get(trigger.id)
            if current is None or current.id in outcome.removed_ids:
                continue
            if current.is_grouped:
                if current.window_session_id in handled_sessions:
                    continue
                handled_sessions.add(current.window_session_id)
                members = window_members(current, collection)
                self._wake_window(members, now, outcome)
            else:
                self._wake_solo(current, now, outcome)
        return outcome

    # ---------------- solo ----------------

    def _wake_solo(self, item: ScheduledItem, now: int, outcome: WakeOutcome):
        log_msg(f"waking tab {item.id} {item.url!r}")
        if item.url:
            if self._attempt("open tab", self.materializer.open_tab, item.url):
                outcome.opened += 1
        else:
            log_msg(f"item {item.id} has no url; nothing to open")

        if self._attempt(
            "notify",
            self.materializer.notify,
            "Tab Awakened!",
            f'Your {_kind(item)} tab "{item.title}" is now open.',
            item.favicon or self.default_icon,
        ):
            outcome.notified += 1

        self._attempt("clear alarm", self.alarms.clear, item.id)
        outcome.removed_ids.add(item.id)
        outcome.woken += 1

        continuation = self._continue(item, now)
        if continuation is not None:
            outcome.continuations.append(continuation)

    # ---------------- window ----------------

    def _wake_window(
        self, members: list[ScheduledItem], now: int, outcome: WakeOutcome
    ):
        if not members:
            return
        first = members[0]
        log_msg(
            f"waking window {first.window_session_id} with {len(members)} tab(s)"
        )

        urls = [item.url for item in members if item.url]
        if urls:
            if self._attempt("open window", self.materializer.open_window, urls):
                outcome.opened += 1
        else:
            log_msg(f"window {first.window_session_id} has no urls; nothing to open")

        count = len(members)
        if self._attempt(
            "notify",
            self.materializer.notify,
            "Window Awakened!",
            f"Your {_kind(first)} window with {count} tab{'' if count == 1 else 's'}"
            " is now open.",
            first.favicon or self.default_icon,
        ):
            outcome.notified += 1

        for item in members:
            self._attempt("clear alarm", self.alarms.clear, item.id)
            outcome.removed_ids.add(item.id)
        outcome.woken += count

        if not any(item.repeats for item in members):
            return
        session_id = self.id_factory()
        for item in members:
            continuation = self._continue(item, now, session_id)
            if continuation is not None:
                outcome.continuations.append(continuation)

    # ---------------- helpers ----------------

    def _continue(
        self, item: ScheduledItem, now: int, session_id: Optional[str] = None
    ) -> Optional[ScheduledItem]:
        if not item.repeats:
            return None
        wake_time = next_occurrence(item.recurrence_pattern, now)
        if wake_time is None:
            log_msg(f"recurrence for {item.id} has ended; dropping it")
            return None

        changes = {"id": self.id_factory(), "wake_time": wake_time}
        if item.is_grouped and session_id is not None:
            changes["window_session_id"] = session_id
        continuation = item.derive(**changes)
        self._attempt("create alarm", self.alarms.create, continuation.id, wake_time)
        log_msg(f"{item.id} continues as {continuation.id} at {wake_time}")
        return continuation

    def _attempt(self, label: str, fn, *args) -> bool:
        """Run one side effect; failures are logged, never raised."""
        try:
            fn(*args)
        except Exception as e:
            log_msg(f"{label} failed: {e}")
            return False
        return True
