from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from tabsnooze.tabsnooze_env import TabSnoozeEnvironment
from .alarms import AlarmClock, AlarmError
from .item import (
    ItemGroup,
    RecurrencePattern,
    ScheduledItem,
    group_items,
    window_members,
)
from .materializer import CommandMaterializer
from .model import DatabaseManager, StoreError
from .reconcile import StartupReconciler
from .shared import log_msg, new_id, now_ms
from .wake import WakeOrchestrator


@dataclass
class WakeResult:
    """Acknowledgment returned to whoever asked for a wake."""

    success: bool
    woken: int = 0
    error: Optional[str] = None


class Controller:
    """
    Every operation is one read-modify-write cycle on the whole collection:
    read, compute, read again, apply the computed delta to the fresh read,
    write. The second read keeps the window for lost updates from another
    writer as small as possible; it cannot close it.
    """

    def __init__(
        self,
        db_path: str,
        env: TabSnoozeEnvironment,
        materializer=None,
        alarms: Optional[AlarmClock] = None,
        reset: bool = False,
        clock: Callable[[], int] = now_ms,
    ):
        self.env = env
        self.clock = clock
        self.db_manager = DatabaseManager(db_path, env, reset=reset)
        self.alarms = alarms or AlarmClock.from_env(env, clock=clock)
        self.materializer = materializer or CommandMaterializer(env)
        self.orchestrator = WakeOrchestrator(
            self.materializer,
            self.alarms,
            default_icon=env.config.commands.default_icon,
            clock=clock,
        )
        self.reconciler = StartupReconciler(self.orchestrator)

    def close(self):
        self.db_manager.close()

    # ---------------- persistence helpers ----------------

    def get_items(self) -> list[ScheduledItem]:
        return self.db_manager.get_items()

    def _commit(
        self,
        removed_ids: Iterable[str] = (),
        added: Iterable[ScheduledItem] = (),
        replaced: Optional[dict[str, ScheduledItem]] = None,
    ) -> list[ScheduledItem]:
        removed = set(removed_ids)
        replaced = replaced or {}
        latest = self.db_manager.get_items()
        items = [
            replaced.get(item.id, item) for item in latest if item.id not in removed
        ]
        taken = {item.id for item in items}
        items.extend(item for item in added if item.id not in taken)
        self.db_manager.set_items(items)
        return items

    def _arm(self, item_id: str, wake_time: int):
        try:
            self.alarms.create(item_id, wake_time)
        except AlarmError as e:
            log_msg(f"could not arm {item_id}: {e}")

    # ---------------- triggers ----------------

    def wake_ids(self, ids: Iterable[str]) -> WakeResult:
        """Wake the listed items now. Unknown ids are ignored."""
        wanted = set(ids)
        try:
            items = self.db_manager.get_items()
        except StoreError as e:
            log_msg(f"wake of {sorted(wanted)} failed: {e}")
            return WakeResult(success=False, error=str(e))

        triggers = [item for item in items if item.id in wanted]
        if not triggers:
            return WakeResult(success=True)
        outcome = self.orchestrator.run(triggers, items, self.clock())
        try:
            self._commit(outcome.removed_ids, outcome.continuations)
        except StoreError as e:
            # the continuations were never persisted; the woken items are
            # still stored, so give them another alarm at the next tick
            for continuation in outcome.continuations:
                self.alarms.clear(continuation.id)
            retry_at = self.clock() + 1
            for item in items:
                if item.id in outcome.removed_ids:
                    self._arm(item.id, max(item.wake_time, retry_at))
            log_msg(f"wake of {sorted(wanted)} failed: {e}")
            return WakeResult(success=False, woken=outcome.woken, error=str(e))
        return WakeResult(success=True, woken=outcome.woken)

    def on_alarm(self, item_id: str) -> WakeResult:
        """
        Wake item_id if it is still due. An alarm can outlive a reschedule
        made by another process; then the item is re-armed instead.
        """
        try:
            items = self.db_manager.get_items()
        except StoreError as e:
            log_msg(f"alarm for {item_id} failed: {e}")
            return WakeResult(success=False, error=str(e))
        current = next((item for item in items if item.id == item_id), None)
        if current is not None and current.wake_time > self.clock():
            log_msg(f"{item_id} was moved to {current.wake_time}; re-arming")
            self._arm(current.id, current.wake_time)
            return WakeResult(success=True)
        return self.wake_ids([item_id])

    def startup(self) -> WakeResult:
        """Wake overdue items and re-arm alarms for everything still pending."""
        now = self.clock()
        stored = None
        try:
            stored = self.db_manager.get_items()
            result = self.reconciler.reconcile(stored, now)
            if result.removed_ids or result.continuations:
                items = self._commit(result.removed_ids, result.continuations)
            else:
                items = result.items
        except StoreError as e:
            log_msg(f"startup reconciliation failed: {e}")
            if stored is not None:
                # nothing was written; retry the overdue items at the next tick
                self._rearm(stored, not_before=now + 1)
            return WakeResult(success=False, error=str(e))
        self._rearm(items)
        return WakeResult(success=True, woken=result.woken)

    def sync_alarms(self) -> int:
        """Re-arm alarms from the store, e.g. after another process wrote to it."""
        try:
            items = self.db_manager.get_items()
        except StoreError as e:
            log_msg(f"could not read items to sync alarms: {e}")
            return 0
        return self._rearm(items)

    def _rearm(self, items: list[ScheduledItem], not_before: int = 0) -> int:
        live = {item.id for item in items}
        for item_id in self.alarms.pending():
            if item_id not in live:
                self.alarms.clear(item_id)
        # overdue items are armed too: their alarms fire on the next poll
        for item in items:
            self._arm(item.id, max(item.wake_time, not_before))
        return len(items)

    # ---------------- presentation requests ----------------

    def defer(
        self,
        urls: list[str],
        wake_time: int,
        titles: Optional[list[str]] = None,
        favicons: Optional[list[Optional[str]]] = None,
        pattern: Optional[RecurrencePattern] = None,
        window: bool = False,
    ) -> list[ScheduledItem]:
        """Snooze urls until wake_time, as one window group when window is set."""
        titles = titles or []
        favicons = favicons or []
        session_id = new_id() if window else None
        created = self.clock()
        items = [
            ScheduledItem(
                id=new_id(),
                wake_time=wake_time,
                url=url,
                title=titles[idx] if idx < len(titles) else url,
                favicon=favicons[idx] if idx < len(favicons) else None,
                window_session_id=session_id,
                window_index=idx if window else None,
                is_recurring=pattern is not None,
                recurrence_pattern=pattern,
                created=created,
            )
            for idx, url in enumerate(urls)
        ]
        self._commit(added=items)
        for item in items:
            self._arm(item.id, item.wake_time)
        return items

    def remove_ids(self, ids: Iterable[str]) -> int:
        wanted = set(ids)
        present = {item.id for item in self.db_manager.get_items()} & wanted
        self._commit(removed_ids=present)
        for item_id in present:
            self.alarms.clear(item_id)
        return len(present)

    def reschedule(self, ids: Iterable[str], wake_time: int) -> int:
        """
        Move items to wake_time. Window group members move together, so the
        group survives the edit.
        """
        wanted = set(ids)
        items = self.db_manager.get_items()
        targets: dict[str, ScheduledItem] = {}
        for item in items:
            if item.id in wanted and item.id not in targets:
                for member in window_members(item, items):
                    targets[member.id] = member
        replaced = {
            item_id: item.derive(id=item_id, wake_time=wake_time)
            for item_id, item in targets.items()
        }
        self._commit(replaced=replaced)
        for item_id in replaced:
            self._arm(item_id, wake_time)
        return len(replaced)

    def get_groups(self) -> list[ItemGroup]:
        items = sorted(self.db_manager.get_items(), key=lambda item: item.wake_time)
        return group_items(items)

    def resolve_ids(self, tokens: Iterable[str]) -> list[str]:
        """Map item ids or group keys to item ids, keeping order, without repeats."""
        groups = self.get_groups()
        by_group = {group.id: group.item_ids for group in groups}
        by_item = {item_id for group in groups for item_id in group.item_ids}
        resolved: list[str] = []
        for token in tokens:
            if token in by_group:
                candidates = by_group[token]
            elif token in by_item:
                candidates = [token]
            else:
                raise KeyError(token)
            resolved.extend(c for c in candidates if c not in resolved)
        return resolved


# ─── Engine ───────────────────────────────────────────────────


@dataclass
class Trigger:
    future: Optional[asyncio.Future] = field(default=None, compare=False)


@dataclass
class Startup(Trigger):
    pass


@dataclass
class AlarmDue(Trigger):
    item_id: str = ""


@dataclass
class WakeRequest(Trigger):
    ids: list[str] = field(default_factory=list)


@dataclass
class StoreChanged(Trigger):
    pass


class Engine:
    """
    asyncio driver for a Controller.

    Startups, alarm firings and wake requests all go through one queue and
    are handled one at a time, so two triggers never interleave their
    read-modify-write cycles inside this process. Handlers and store checks
    block (sqlite, subprocess), so they run on one dedicated thread and the
    event loop keeps polling alarms meanwhile.
    """

    def __init__(self, controller: Controller, poll_seconds: Optional[float] = None):
        self.controller = controller
        self.poll_seconds = (
            poll_seconds
            if poll_seconds is not None
            else controller.env.config.alarms.poll_seconds
        )
        self.queue: asyncio.Queue[Trigger] = asyncio.Queue()
        self.stop_event = asyncio.Event()
        self.executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="tabsnooze-engine"
        )

    async def _blocking(self, fn, *args):
        return await asyncio.get_running_loop().run_in_executor(
            self.executor, fn, *args
        )

    async def submit(self, trigger: Trigger) -> WakeResult:
        trigger.future = asyncio.get_running_loop().create_future()
        await self.queue.put(trigger)
        return await trigger.future

    async def request_wake(self, ids: list[str]) -> WakeResult:
        return await self.submit(WakeRequest(ids=list(ids)))

    def handle(self, trigger: Trigger) -> WakeResult:
        if isinstance(trigger, Startup):
            return self.controller.startup()
        if isinstance(trigger, AlarmDue):
            return self.controller.on_alarm(trigger.item_id)
        if isinstance(trigger, WakeRequest):
            return self.controller.wake_ids(trigger.ids)
        if isinstance(trigger, StoreChanged):
            armed = self.controller.sync_alarms()
            log_msg(f"store changed elsewhere; {armed} alarm(s) armed")
            return WakeResult(success=True)
        raise TypeError(f"unknown trigger {trigger!r}")

    async def worker(self):
        while True:
            trigger = await self.queue.get()
            try:
                result = await self._blocking(self.handle, trigger)
            except Exception as e:
                log_msg(f"{type(trigger).__name__} failed: {e}")
                result = WakeResult(success=False, error=str(e))
            finally:
                self.queue.task_done()
            if trigger.future is not None and not trigger.future.done():
                trigger.future.set_result(result)

    async def _on_alarm(self, item_id: str):
        await self.queue.put(AlarmDue(item_id=item_id))

    async def watch_store(self):
        while not self.stop_event.is_set():
            if await self._blocking(self.controller.db_manager.has_changed):
                await self.queue.put(StoreChanged())
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                pass

    def stop(self):
        self.stop_event.set()

    async def run(self):
        """Reconcile, then serve alarms and store changes until stop() is called."""
        await self.queue.put(Startup())
        worker = asyncio.create_task(self.worker())
        try:
            await asyncio.gather(
                self.controller.alarms.run(
                    self._on_alarm, self.poll_seconds, self.stop_event
                ),
                self.watch_store(),
            )
            await self.queue.join()
        finally:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
            self.executor.shutdown(wait=True)
