"""Time-indexed data container for switching models."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class TimeSeriesData:
    """Observed target plus covariates on one time index.

    ``covariates`` may run past the end of ``y``; those extra rows are
    the known future (e.g. temperature forecasts) and are what
    :meth:`future_covariates` returns.

    Examples
    --------
    ```python
    data = TimeSeriesData.from_frame(df, "load", covariates=["temp"], horizon=48)
    train, test = data.split(168)
    model = compile(tree, train.index, covariates=train.covariates)
    ```
    """

    y: pd.Series
    covariates: pd.DataFrame

    def __post_init__(self) -> None:
        if not self.y.index.is_unique:
            raise ValueError("time index of y has duplicate entries")
        if not self.y.index.is_monotonic_increasing:
            raise ValueError("time index of y must be sorted ascending")
        n = len(self.y)
        if len(self.covariates) < n or not self.covariates.index[:n].equals(self.y.index):
            raise ValueError("covariates must share y's index (optionally followed by future rows)")

    # -- constructors --------------------------------------------------------

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        target: str,
        *,
        covariates: Sequence[str] | None = None,
        time_col: str | None = None,
        horizon: int = 0,
    ) -> TimeSeriesData:
        """Build from a wide DataFrame.

        Parameters
        ----------
        df
            One row per time step.
        target
            Column holding the observed series.
        covariates
            Covariate columns (default: every other column).
        time_col
            Column to use as the index (default: ``df.index``).
        horizon
            Number of trailing rows that are future-only: their target is
            ignored and their covariates become :meth:`future_covariates`.
        """
        if time_col is not None:
            df = df.set_index(time_col)
        index = df.index
        if isinstance(index, pd.DatetimeIndex) and index.freq is None and len(index) >= 3:
            inferred = pd.infer_freq(index)
            if inferred is not None:
                index = pd.DatetimeIndex(index, freq=inferred)
                df = df.set_axis(index)
        cols = list(covariates) if covariates is not None else [c for c in df.columns if c != target]
        missing = [c for c in [target, *cols] if c not in df.columns]
        if missing:
            raise KeyError(f"Columns not found: {missing}")
        if not 0 <= horizon < len(df):
            raise ValueError(f"horizon must be in [0, {len(df)}), got {horizon}")
        n = len(df) - horizon
        y = df[target].iloc[:n].astype(float)
        return cls(y=y, covariates=df[cols].astype(float))

    # -- accessors -----------------------------------------------------------

    @property
    def index(self) -> pd.Index:
        return self.y.index

    @property
    def values(self) -> np.ndarray:
        return self.y.to_numpy(dtype=float)

    def __len__(self) -> int:
        return len(self.y)

    @property
    def horizon(self) -> int:
        """Number of future covariate rows beyond ``y``."""
        return len(self.covariates) - len(self.y)

    def future_covariates(self, horizon: int | None = None) -> pd.DataFrame:
        """Covariate rows after the end of ``y`` (first *horizon* of them)."""
        future = self.covariates.iloc[len(self.y):]
        return future if horizon is None else future.iloc[:horizon]

    def future_index(self, horizon: int) -> pd.Index:
        """Time index of the *horizon* steps following ``y``."""
        future = self.covariates.index[len(self.y):]
        if len(future) >= horizon:
            return future[:horizon]
        index = self.y.index
        if isinstance(index, pd.DatetimeIndex):
            freq = index.freq or pd.infer_freq(index)
            if freq is None:
                raise ValueError("cannot infer a frequency for the future index")
            return pd.date_range(index[-1], periods=horizon + 1, freq=freq)[1:]
        if isinstance(index, pd.RangeIndex):
            return pd.RangeIndex(index.stop, index.stop + horizon * index.step, index.step)
        raise ValueError(f"cannot extend a time index of type {type(index).__name__}")

    def split(self, test_size: int) -> tuple[TimeSeriesData, TimeSeriesData]:
        """Split into ``(train, test)`` with the last *test_size* observations held out.

        The training covariates keep every later row, so the test period's
        covariates are available to :func:`~switchts.model.extend`.
        """
        n = len(self.y)
        if not 0 < test_size < n:
            raise ValueError(f"test_size must be in (0, {n}), got {test_size}")
        cut = n - test_size
        train = TimeSeriesData(y=self.y.iloc[:cut], covariates=self.covariates)
        test = TimeSeriesData(y=self.y.iloc[cut:], covariates=self.covariates.iloc[cut:])
        return train, test
