import sqlite3

import pytest

from tabsnooze.model import (
    ITEMS_KEY,
    SETTINGS_KEY,
    DatabaseManager,
    QuotaExceededError,
    StoreError,
)
from tabsnooze.tabsnooze_env import DelaySettings


@pytest.fixture
def dbm(temp_db_path, test_env):
    manager = DatabaseManager(str(temp_db_path), test_env, reset=True)
    yield manager
    manager.close()


@pytest.mark.unit
class TestStore:
    def test_missing_key_returns_default(self, dbm):
        assert dbm.get("nope") is None
        assert dbm.get("nope", []) == []

    def test_set_replaces_whole_value(self, dbm):
        dbm.set("k", {"a": 1})
        dbm.set("k", {"b": 2})
        assert dbm.get("k") == {"b": 2}

    def test_items_round_trip(self, dbm, item_factory, daily_9am):
        items = [
            item_factory("a", 10),
            item_factory("b", 20, is_recurring=True, recurrence_pattern=daily_9am),
        ]
        dbm.set_items(items)
        assert dbm.get_items() == items
        assert dbm.count_items() == 2

    def test_items_are_normalized_on_read(self, dbm):
        dbm.set(ITEMS_KEY, [{"id": "a", "wake_time": 1}, {"id": "bad"}, 7])
        assert [item.id for item in dbm.get_items()] == ["a"]

    def test_corrupt_json_falls_back_to_default(self, dbm):
        dbm.conn.execute(
            "INSERT INTO Store (key, value) VALUES (?, ?)", (ITEMS_KEY, "{not json")
        )
        dbm.conn.commit()
        assert dbm.get_items() == []

    def test_quota_exceeded(self, temp_db_path, test_env, item_factory):
        test_env.config.store.quota_bytes = 200
        dbm = DatabaseManager(str(temp_db_path), test_env, reset=True)
        try:
            dbm.set_items([item_factory("a", 1)])
            before = dbm.get_items()
            with pytest.raises(QuotaExceededError):
                dbm.set_items([item_factory(str(i), i) for i in range(20)])
            assert dbm.get_items() == before
        finally:
            dbm.close()

    def test_quota_error_is_a_store_error(self):
        assert issubclass(QuotaExceededError, StoreError)

    def test_sqlite_failure_becomes_store_error(self, dbm):
        dbm.conn.close()
        with pytest.raises(StoreError):
            dbm.get("k")
        with pytest.raises(StoreError):
            dbm.set("k", 1)
        dbm.conn = sqlite3.connect(dbm.db_path)


@pytest.mark.unit
class TestChangeNotification:
    def test_subscribers_see_writes(self, dbm):
        seen = []
        dbm.subscribe(lambda key, value: seen.append((key, value)))
        dbm.set("k", [1])
        assert seen == [("k", [1])]

    def test_failing_subscriber_does_not_block_write(self, dbm):
        def boom(key, value):
            raise RuntimeError("listener broke")

        dbm.subscribe(boom)
        dbm.set("k", 1)
        assert dbm.get("k") == 1

    def test_has_changed_sees_other_connections_only(self, dbm, temp_db_path, test_env):
        assert dbm.has_changed() is False
        dbm.set("k", 1)
        assert dbm.has_changed() is False

        other = DatabaseManager(str(temp_db_path), test_env)
        try:
            other.set("k", 2)
        finally:
            other.close()
        assert dbm.has_changed() is True
        assert dbm.has_changed() is False
        assert dbm.get("k") == 2


@pytest.mark.unit
class TestSettings:
    def test_defaults_come_from_config(self, dbm, test_env):
        assert dbm.get_settings() == test_env.config.delay

    def test_stored_record_wins(self, dbm):
        settings = DelaySettings(tonight_time="20:30", weekend_day="sunday")
        dbm.set_settings(settings)
        assert dbm.get_settings() == settings
        assert dbm.get(SETTINGS_KEY)["tonight_time"] == "20:30"

    def test_partial_record_is_filled_from_defaults(self, dbm):
        dbm.set(SETTINGS_KEY, {"later_today_hours": 5})
        settings = dbm.get_settings()
        assert settings.later_today_hours == 5
        assert settings.tomorrow_time == "09:00"

    def test_invalid_record_falls_back(self, dbm, test_env):
        dbm.set(SETTINGS_KEY, {"tonight_time": "late"})
        assert dbm.get_settings() == test_env.config.delay
