"""Calendar utilities — day-type labels and holiday flags for regime drivers."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

import pandas as pd
from pandas.tseries.holiday import AbstractHolidayCalendar, USFederalHolidayCalendar

from switchts.tree import RegimeDriver

WEEKDAY = "weekday"
WEEKEND = "weekend"
HOLIDAY = "holiday"

HolidaySource = AbstractHolidayCalendar | Iterable[Any] | None


def _as_datetime_index(dates: Any) -> pd.DatetimeIndex:
    index = pd.DatetimeIndex(pd.to_datetime(dates))
    if index.hasnans:
        raise ValueError("dates contain missing values")
    return index


def _holiday_dates(days: pd.DatetimeIndex, holidays: HolidaySource) -> pd.DatetimeIndex:
    if holidays is None or len(days) == 0:
        return pd.DatetimeIndex([])
    if isinstance(holidays, AbstractHolidayCalendar):
        return holidays.holidays(start=days.min(), end=days.max())
    return pd.DatetimeIndex(pd.to_datetime(list(holidays))).normalize()


def holiday_flags(
    dates: Any,
    *,
    calendar: AbstractHolidayCalendar | None = None,
) -> pd.Series:
    """Return a boolean Series, ``True`` on public holidays.

    Parameters
    ----------
    dates : array-like
        Timestamps of any resolution; only the calendar day matters.
    calendar : AbstractHolidayCalendar
        Holiday rules.  Defaults to ``USFederalHolidayCalendar``.

    Examples
    --------
    ```python
    holiday_flags(pd.date_range("2024-12-24", periods=3, freq="D"))
    # 2024-12-24    False
    # 2024-12-25     True
    # 2024-12-26    False
    ```
    """
    index = _as_datetime_index(dates)
    days = index.normalize()
    hol = _holiday_dates(days, calendar or USFederalHolidayCalendar())
    return pd.Series(days.isin(hol), index=index, name="holiday")


def day_type(
    dates: Any,
    *,
    holidays: HolidaySource = None,
    weekend_days: Sequence[int] = (5, 6),
) -> pd.Series:
    """Label every timestamp ``"weekday"``, ``"weekend"`` or ``"holiday"``.

    Parameters
    ----------
    dates : array-like
        Timestamps of any resolution (hourly data gets the label of its day).
    holidays : AbstractHolidayCalendar or iterable of dates, optional
        When given, holidays take precedence over weekends and the result
        has three levels; otherwise only weekday/weekend are used.
    weekend_days : sequence of int
        Day-of-week numbers treated as weekend (Monday = 0).

    Returns
    -------
    pandas.Series
        Categorical series whose categories fix the level order
        (``weekday``, ``weekend`` and, with holidays, ``holiday``).
    """
    index = _as_datetime_index(dates)
    days = index.normalize()
    labels = pd.Series(WEEKDAY, index=index, dtype=object)
    labels[days.dayofweek.isin(list(weekend_days))] = WEEKEND
    categories = [WEEKDAY, WEEKEND]
    if holidays is not None:
        labels[days.isin(_holiday_dates(days, holidays))] = HOLIDAY
        categories.append(HOLIDAY)
    return pd.Series(
        pd.Categorical(labels.to_numpy(), categories=categories),
        index=index,
        name="daytype",
    )


def calendar_driver(
    name: str,
    dates: Any,
    *,
    holidays: HolidaySource = None,
    weekend_days: Sequence[int] = (5, 6),
) -> RegimeDriver:
    """Build a :class:`RegimeDriver` from :func:`day_type` labels.

    Pass *dates* covering history and horizon to get a driver whose
    future values are already known.
    """
    labels = day_type(dates, holidays=holidays, weekend_days=weekend_days)
    return RegimeDriver.from_series(name, labels)
