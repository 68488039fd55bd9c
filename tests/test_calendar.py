"""Tests for calendar-derived regime drivers."""

from __future__ import annotations

import pandas as pd
import pytest
from pandas.tseries.holiday import USFederalHolidayCalendar

from switchts.calendar import HOLIDAY, WEEKDAY, WEEKEND, calendar_driver, day_type, holiday_flags


@pytest.fixture
def christmas_week():
    # Monday 2024-12-23 .. Sunday 2024-12-29
    return pd.date_range("2024-12-23", periods=7, freq="D")


class TestHolidayFlags:
    def test_default_calendar(self, christmas_week):
        flags = holiday_flags(christmas_week)
        assert flags.name == "holiday"
        assert flags.tolist() == [False, False, True, False, False, False, False]

    def test_hourly_timestamps(self):
        idx = pd.date_range("2024-12-25", periods=48, freq="h")
        flags = holiday_flags(idx)
        assert flags.iloc[:24].all()
        assert not flags.iloc[24:].any()

    def test_independence_day(self):
        flags = holiday_flags(pd.date_range("2024-07-01", periods=7, freq="D"))
        assert flags[pd.Timestamp("2024-07-04")]
        assert flags.sum() == 1


class TestDayType:
    def test_weekday_weekend(self, christmas_week):
        labels = day_type(christmas_week)
        assert labels.name == "daytype"
        assert list(labels.cat.categories) == [WEEKDAY, WEEKEND]
        assert labels.tolist() == [WEEKDAY] * 5 + [WEEKEND] * 2

    def test_holiday_calendar(self, christmas_week):
        labels = day_type(christmas_week, holidays=USFederalHolidayCalendar())
        assert list(labels.cat.categories) == [WEEKDAY, WEEKEND, HOLIDAY]
        assert labels.iloc[2] == HOLIDAY
        assert labels.iloc[3] == WEEKDAY

    def test_holiday_list_overrides_weekend(self, christmas_week):
        labels = day_type(christmas_week, holidays=["2024-12-25", "2024-12-28"])
        assert labels.tolist() == [
            WEEKDAY, WEEKDAY, HOLIDAY, WEEKDAY, WEEKDAY, HOLIDAY, WEEKEND,
        ]

    def test_custom_weekend(self, christmas_week):
        labels = day_type(christmas_week, weekend_days=(4, 5))
        assert labels.iloc[4] == WEEKEND
        assert labels.iloc[6] == WEEKDAY

    def test_missing_dates(self):
        with pytest.raises(ValueError):
            day_type([pd.Timestamp("2024-01-01"), pd.NaT])


class TestCalendarDriver:
    def test_levels_follow_categories(self, christmas_week):
        driver = calendar_driver("daytype", christmas_week, holidays=USFederalHolidayCalendar())
        assert driver.name == "daytype"
        assert driver.levels == (WEEKDAY, WEEKEND, HOLIDAY)
        assert len(driver) == 7
        assert driver.values[2] == HOLIDAY

    def test_two_levels_without_holidays(self, christmas_week):
        driver = calendar_driver("daytype", christmas_week)
        assert driver.levels == (WEEKDAY, WEEKEND)
