"""
Shared pytest fixtures for tabsnooze tests.

This module provides common fixtures used across all test files, including:
- An isolated TABSNOOZE_HOME and a fixed local timezone
- Time freezing utilities
- Recording stand-ins for the materializer
- Controller and item factories
"""

import time
from datetime import datetime

import pytest
from freezegun import freeze_time

from tabsnooze.alarms import AlarmClock
from tabsnooze.controller import Controller
from tabsnooze.item import RecurrencePattern, ScheduledItem
from tabsnooze.shared import local_to_ms
from tabsnooze.tabsnooze_env import TabSnoozeEnvironment
from tabsnooze.wake import WakeOrchestrator


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """
    Every test gets its own TABSNOOZE_HOME (config, db and logs) and runs in
    UTC so wall-clock arithmetic never crosses a DST change.
    """
    home = tmp_path / "tabsnooze-home"
    monkeypatch.setenv("TABSNOOZE_HOME", str(home))
    monkeypatch.setenv("TZ", "UTC")
    if hasattr(time, "tzset"):
        time.tzset()
    yield home
    monkeypatch.undo()
    if hasattr(time, "tzset"):
        time.tzset()


def ms(*args) -> int:
    """Epoch ms for a local wall-clock datetime(*args)."""
    return local_to_ms(datetime(*args))


@pytest.fixture
def at():
    """
    Returns ms() so tests can write at(2025, 1, 15, 14, 0).

    2025-01-15 is a Wednesday.
    """
    return ms


@pytest.fixture
def frozen_time():
    """
    Freezes time to 2025-01-15 12:00:00 (a Wednesday).

    Usage:
        def test_something(frozen_time):
            frozen_time.tick(delta=timedelta(hours=2))
    """
    with freeze_time("2025-01-15 12:00:00") as frozen:
        yield frozen


class RecordingMaterializer:
    """Collects open/notify calls instead of running commands."""

    def __init__(self, fail_on: set[str] | None = None):
        self.tabs: list[str] = []
        self.windows: list[list[str]] = []
        self.notifications: list[tuple[str, str, str | None]] = []
        self.fail_on = fail_on or set()

    def _maybe_fail(self, name):
        if name in self.fail_on:
            raise RuntimeError(f"{name} exploded")

    def open_tab(self, url):
        self._maybe_fail("open_tab")
        self.tabs.append(url)

    def open_window(self, urls):
        self._maybe_fail("open_window")
        self.windows.append(list(urls))

    def notify(self, title, message, icon=None):
        self._maybe_fail("notify")
        self.notifications.append((title, message, icon))


class RecordingAlarms(AlarmClock):
    """AlarmClock that also remembers every clear() call."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cleared: list[str] = []
        self.created: list[tuple[str, int]] = []

    def create(self, item_id, when_ms):
        fire_at = super().create(item_id, when_ms)
        self.created.append((item_id, when_ms))
        return fire_at

    def clear(self, item_id):
        self.cleared.append(item_id)
        return super().clear(item_id)


@pytest.fixture
def materializer():
    return RecordingMaterializer()


@pytest.fixture
def alarms():
    return RecordingAlarms()


@pytest.fixture
def orchestrator(materializer, alarms):
    return WakeOrchestrator(materializer, alarms)


@pytest.fixture
def test_env(isolated_home):
    env = TabSnoozeEnvironment()
    env.ensure(init_config=True)
    return env


@pytest.fixture
def temp_db_path(tmp_path):
    return tmp_path / "test_tabsnooze.db"


class FixedClock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


@pytest.fixture
def clock():
    """A settable clock starting at 2025-01-15 12:00 local."""
    return FixedClock(ms(2025, 1, 15, 12, 0))


@pytest.fixture
def test_controller(temp_db_path, test_env, materializer, clock):
    """
    Provides a Controller with a fresh database, a recording materializer and
    the settable clock.
    """
    ctrl = Controller(
        str(temp_db_path),
        test_env,
        materializer=materializer,
        alarms=RecordingAlarms(clock=clock),
        reset=True,
        clock=clock,
    )
    yield ctrl
    ctrl.close()


@pytest.fixture
def item_factory():
    """
    Returns a factory for ScheduledItem with sensible defaults.

    Usage:
        item = item_factory("a", wake_time=..., url="https://example.com")
    """

    def _create(item_id: str, wake_time: int = 0, **kwargs) -> ScheduledItem:
        kwargs.setdefault("url", f"https://example.com/{item_id}")
        kwargs.setdefault("title", f"Tab {item_id}")
        return ScheduledItem(id=item_id, wake_time=wake_time, **kwargs)

    return _create


@pytest.fixture
def daily_9am():
    return RecurrencePattern(type="daily", time="09:00")


@pytest.fixture
def make_materializer():
    """The RecordingMaterializer class, for tests that need failing instances."""
    return RecordingMaterializer


@pytest.fixture
def make_alarms():
    return RecordingAlarms
