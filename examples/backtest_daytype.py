"""Expanding-window backtest of a day-type switching model.

Compares a plain daily-seasonal model against one whose seasonality
switches between weekdays, weekends and US federal holidays, and saves
both runs to ``runs/``.

Run::

    python examples/backtest_daytype.py
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from pandas.tseries.holiday import USFederalHolidayCalendar

from switchts import (
    Backtester,
    TimeSeriesData,
    calendar_driver,
    configure_logging,
    fourier,
    poly,
    reg,
)

configure_logging("WARNING")

# ============================================================
# 1.  Synthetic daily demand with temperature
# ============================================================
T = 365
idx = pd.date_range("2024-01-01", periods=T, freq="D")
rng = np.random.default_rng(11)

temp = 12.0 + 10.0 * np.sin(2 * np.pi * (np.arange(T) - 100) / 365.25) + rng.normal(0, 2, T)
hol = USFederalHolidayCalendar().holidays(idx[0], idx[-1])
is_off = (idx.dayofweek >= 5) | idx.isin(hol)
weekly = np.where(is_off, -15.0, 5.0 * np.sin(2 * np.pi * idx.dayofweek / 7))
demand = 200.0 + 1.5 * temp + weekly + np.cumsum(rng.normal(0, 0.5, T)) + rng.normal(0, 2, T)

data = TimeSeriesData(
    y=pd.Series(demand, index=idx, name="demand"),
    covariates=pd.DataFrame({"temp": temp}, index=idx),
)

# ============================================================
# 2.  Candidate models
# ============================================================
daytype = calendar_driver("daytype", idx, holidays=USFederalHolidayCalendar())
candidates = {
    "plain": poly(1) + fourier(7, 3) + reg("temp"),
    "switching": poly(1) + daytype % poly(1, name="offset") + reg("temp"),
}

# ============================================================
# 3.  Backtest
# ============================================================
def report(kind: str, info: dict) -> None:
    if kind == "fold_done":
        print(f"    fold {info['fold']}: mae={info['metrics']['mae']:.2f}")


for name, tree in candidates.items():
    print(f"\n--- {name}: {tree} ---")
    result = Backtester(tree).run(
        data,
        mode="expanding",
        test_size=14,
        n_splits=4,
        run_name=name,
        run_path=f"runs/{name}",
        progress_callback=report,
    )
    print(result)
    print(result.summary_df.round(3))
