import random

import pytest

from tabsnooze.presets import PRESETS, preset_wake_time
from tabsnooze.shared import ms_to_local
from tabsnooze.tabsnooze_env import DelaySettings


@pytest.fixture
def settings():
    return DelaySettings()


@pytest.fixture
def now(at):
    # Wednesday noon
    return at(2025, 1, 15, 12, 0)


@pytest.mark.unit
class TestPresets:
    def test_later_today(self, settings, now, at):
        assert preset_wake_time("later_today", settings, now) == at(2025, 1, 15, 15, 0)

    def test_tonight(self, settings, now, at):
        assert preset_wake_time("tonight", settings, now) == at(2025, 1, 15, 18, 0)

    def test_tonight_after_the_hour_rolls_to_tomorrow(self, settings, at):
        late = at(2025, 1, 15, 19, 0)
        assert preset_wake_time("tonight", settings, late) == at(2025, 1, 16, 18, 0)

    def test_tomorrow(self, settings, now, at):
        assert preset_wake_time("tomorrow", settings, now) == at(2025, 1, 16, 9, 0)

    def test_weekend(self, settings, now, at):
        assert preset_wake_time("weekend", settings, now) == at(2025, 1, 18, 9, 0)

    def test_weekend_on_sunday_setting(self, now, at):
        settings = DelaySettings(weekend_day="sunday", weekend_time="10:30")
        assert preset_wake_time("weekend", settings, now) == at(2025, 1, 19, 10, 30)

    def test_weekend_already_passed_today(self, settings, at):
        saturday_noon = at(2025, 1, 18, 12, 0)
        assert preset_wake_time("weekend", settings, saturday_noon) == at(
            2025, 1, 25, 9, 0
        )

    def test_next_week(self, settings, now, at):
        assert preset_wake_time("next_week", settings, now) == at(2025, 1, 20, 9, 0)

    def test_next_week_same_weekday_is_a_week_out(self, now, at):
        settings = DelaySettings(next_week_day=3)
        assert preset_wake_time("next_week", settings, now) == at(2025, 1, 22, 9, 0)

    def test_next_month_same_day(self, settings, now, at):
        assert preset_wake_time("next_month", settings, now) == at(2025, 2, 15, 9, 0)

    def test_next_month_clamps_day(self, settings, at):
        jan_31 = at(2025, 1, 31, 12, 0)
        assert preset_wake_time("next_month", settings, jan_31) == at(2025, 2, 28, 9, 0)

    def test_next_month_same_weekday(self, now, at):
        settings = DelaySettings(next_month_same_day=False)
        # third Wednesday of January -> third Wednesday of February
        assert preset_wake_time("next_month", settings, now) == at(2025, 2, 19, 9, 0)

    def test_next_month_fifth_weekday_falls_back_to_last(self, at):
        settings = DelaySettings(next_month_same_day=False)
        fifth_wednesday = at(2025, 1, 29, 12, 0)
        assert preset_wake_time("next_month", settings, fifth_wednesday) == at(
            2025, 2, 26, 9, 0
        )

    def test_someday_stays_in_range(self, settings, now):
        rng = random.Random(7)
        start = ms_to_local(now)
        for _ in range(20):
            wake = ms_to_local(preset_wake_time("someday", settings, now, rng=rng))
            months = (wake.year - start.year) * 12 + wake.month - start.month
            assert 3 <= months <= 12
            assert (wake.hour, wake.minute) == (9, 0)

    def test_every_preset_is_in_the_future(self, settings, now):
        for name in PRESETS:
            assert preset_wake_time(name, settings, now) > now

    def test_unknown_preset(self, settings, now):
        with pytest.raises(KeyError):
            preset_wake_time("eventually", settings, now)
