import os
import sqlite3
import json
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import ValidationError

from tabsnooze.tabsnooze_env import TabSnoozeEnvironment, DelaySettings
from .item import ScheduledItem, normalize_items, serialize_items
from .shared import log_msg

ITEMS_KEY = "scheduled_items"
SETTINGS_KEY = "delay_settings"

_MISSING = object()


class StoreError(Exception):
    """A read or write against the store failed."""


class QuotaExceededError(StoreError):
    """The serialized value is larger than the configured quota."""


def utc_now_string():
    """Return current UTC time as 'YYYYMMDDTHHMMZ'."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%MZ")


class DatabaseManager:
    """
    Whole-value key/value store on top of sqlite.

    Values are JSON documents replaced wholesale on every write; there is no
    per-item patching. Other processes writing to the same file are detected
    through sqlite's data_version counter.
    """

    def __init__(self, db_path: str, env: TabSnoozeEnvironment, reset: bool = False):
        self.db_path = str(db_path)
        self.env = env
        self.quota_bytes = env.config.store.quota_bytes
        self._listeners: list[Callable[[str, Any], None]] = []

        if reset and os.path.exists(self.db_path):
            os.remove(self.db_path)

        # the engine uses this connection from its worker thread; access is
        # serialized there
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self.setup_database()
        self._data_version = self._read_data_version()

    def setup_database(self):
        """
        Create (if missing) the single Store table.

        Notes:
        - value holds JSON text.
        - modified is 'YYYYMMDDTHHMMZ' UTC.
        """
        self.cursor.execute("""
            CREATE TABLE IF NOT EXISTS Store (
                key       TEXT PRIMARY KEY,
                value     TEXT NOT NULL,
                modified  TEXT
            );
        """)
        self.conn.commit()

    def close(self):
        self.conn.close()

    # ---------------- raw get/set ----------------

    def get(self, key: str, default: Any = None) -> Any:
        try:
            row = self.conn.execute(
                "SELECT value FROM Store WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"could not read {key!r}: {e}") from e
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            log_msg(f"corrupt value under {key!r}, using default: {e}")
            return default

    def set(self, key: str, value: Any) -> None:
        text = json.dumps(value, separators=(",", ":"))
        size = len(text.encode("utf-8"))
        if self.quota_bytes and size > self.quota_bytes:
            raise QuotaExceededError(
                f"{key!r} needs {size} bytes, quota is {self.quota_bytes}"
            )
        try:
            self.conn.execute(
                """
                INSERT INTO Store (key, value, modified) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    modified = excluded.modified
                """,
                (key, text, utc_now_string()),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            try:
                self.conn.rollback()
            except sqlite3.Error:
                pass
            raise StoreError(f"could not write {key!r}: {e}") from e
        self._notify(key, value)

    # ---------------- change notification ----------------

    def subscribe(self, callback: Callable[[str, Any], None]) -> None:
        """Call callback(key, value) after every successful write through this manager."""
        self._listeners.append(callback)

    def _notify(self, key: str, value: Any) -> None:
        for callback in list(self._listeners):
            try:
                callback(key, value)
            except Exception as e:
                log_msg(f"store listener {callback!r} failed for {key!r}: {e}")

    def _read_data_version(self) -> int:
        (version,) = self.conn.execute("PRAGMA data_version").fetchone()
        return version

    def has_changed(self) -> bool:
        """
        True when another connection has committed since the last call.

        data_version only moves for commits made by *other* connections, so
        our own writes never report a change here.
        """
        try:
            version = self._read_data_version()
        except sqlite3.Error as e:
            log_msg(f"could not read data_version: {e}")
            return False
        changed = version != self._data_version
        self._data_version = version
        return changed

    # ---------------- typed accessors ----------------

    def get_items(self) -> list[ScheduledItem]:
        return normalize_items(self.get(ITEMS_KEY, []))

    def set_items(self, items: list[ScheduledItem]) -> None:
        self.set(ITEMS_KEY, serialize_items(items))

    def get_settings(self) -> DelaySettings:
        """The stored settings record, falling back to the [delay] config defaults."""
        defaults = self.env.config.delay
        stored = self.get(SETTINGS_KEY, _MISSING)
        if stored is _MISSING:
            return defaults
        try:
            return DelaySettings.model_validate({**defaults.model_dump(), **stored})
        except (ValidationError, TypeError) as e:
            log_msg(f"invalid stored settings, using defaults: {e}")
            return defaults

    def set_settings(self, settings: DelaySettings) -> None:
        self.set(SETTINGS_KEY, settings.model_dump())

    def count_items(self) -> int:
        return len(self.get_items())
