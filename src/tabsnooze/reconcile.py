from __future__ import annotations

from dataclasses import dataclass, field

from .item import ScheduledItem
from .shared import log_msg
from .wake import WakeOrchestrator


@dataclass
class Reconciliation:
    items: list[ScheduledItem]
    alarms: list[tuple[str, int]] = field(default_factory=list)
    woken: int = 0
    removed_ids: set[str] = field(default_factory=set)
    continuations: list[ScheduledItem] = field(default_factory=list)


class StartupReconciler:
    """
    Catch up after a (re)start: wake whatever came due while nothing was
    running, and list the alarms that must be armed again.

    Nothing here assumes an earlier alarm exists, so running it twice in a
    row is harmless: the second run finds nothing overdue and asks for the
    same alarms.
    """

    def __init__(self, orchestrator: WakeOrchestrator):
        self.orchestrator = orchestrator

    def reconcile(self, stored_items: list[ScheduledItem], now: int) -> Reconciliation:
        overdue = [item for item in stored_items if item.wake_time <= now]
        outcome = self.orchestrator.run(overdue, stored_items, now)
        items = outcome.apply(stored_items)
        alarms = [(item.id, item.wake_time) for item in items if item.wake_time > now]
        if overdue:
            log_msg(
                f"startup woke {outcome.woken} overdue item(s); "
                f"{len(alarms)} alarm(s) to arm"
            )
        return Reconciliation(
            items=items,
            alarms=alarms,
            woken=outcome.woken,
            removed_ids=outcome.removed_ids,
            continuations=outcome.continuations,
        )
