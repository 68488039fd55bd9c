"""Tests for the TimeSeriesData container."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from switchts.data import TimeSeriesData


@pytest.fixture
def frame():
    idx = pd.date_range("2024-01-01", periods=10, freq="D")
    return pd.DataFrame(
        {"load": np.arange(10.0), "temp": np.linspace(0.0, 9.0, 10)}, index=idx,
    )


class TestFromFrame:
    def test_default_covariates(self, frame):
        data = TimeSeriesData.from_frame(frame, "load")
        assert len(data) == 10
        assert list(data.covariates.columns) == ["temp"]
        assert data.horizon == 0

    def test_future_rows(self, frame):
        data = TimeSeriesData.from_frame(frame, "load", horizon=2)
        assert len(data) == 8
        assert data.horizon == 2
        future = data.future_covariates()
        assert future.shape == (2, 1)
        assert future["temp"].tolist() == [8.0, 9.0]
        assert len(data.future_covariates(1)) == 1

    def test_time_column(self, frame):
        df = frame.reset_index(names="date")
        data = TimeSeriesData.from_frame(df, "load", time_col="date")
        assert isinstance(data.index, pd.DatetimeIndex)
        assert data.index.freqstr == "D"

    def test_missing_column(self, frame):
        with pytest.raises(KeyError, match="humidity"):
            TimeSeriesData.from_frame(frame, "load", covariates=["humidity"])

    def test_bad_horizon(self, frame):
        with pytest.raises(ValueError):
            TimeSeriesData.from_frame(frame, "load", horizon=10)

    def test_values(self, frame):
        data = TimeSeriesData.from_frame(frame, "load")
        np.testing.assert_array_equal(data.values, np.arange(10.0))


class TestValidation:
    def test_unsorted_index(self):
        y = pd.Series([1.0, 2.0], index=[2, 1])
        with pytest.raises(ValueError, match="sorted"):
            TimeSeriesData(y=y, covariates=pd.DataFrame(index=y.index))

    def test_duplicate_index(self):
        y = pd.Series([1.0, 2.0], index=[1, 1])
        with pytest.raises(ValueError, match="duplicate"):
            TimeSeriesData(y=y, covariates=pd.DataFrame(index=y.index))

    def test_covariates_misaligned(self):
        y = pd.Series([1.0, 2.0], index=[0, 1])
        with pytest.raises(ValueError, match="covariates"):
            TimeSeriesData(y=y, covariates=pd.DataFrame({"x": [1.0, 2.0]}, index=[5, 6]))


class TestSplit:
    def test_split(self, frame):
        data = TimeSeriesData.from_frame(frame, "load", horizon=2)
        train, test = data.split(3)
        assert len(train) == 5
        assert len(test) == 3
        # training covariates keep the test period and the future
        assert train.horizon == 5
        assert test.y.index[0] == pd.Timestamp("2024-01-06")

    @pytest.mark.parametrize("size", [0, 10])
    def test_invalid_size(self, frame, size):
        data = TimeSeriesData.from_frame(frame, "load")
        with pytest.raises(ValueError):
            data.split(size)


class TestFutureIndex:
    def test_from_covariates(self, frame):
        data = TimeSeriesData.from_frame(frame, "load", horizon=2)
        assert data.future_index(2).tolist() == [
            pd.Timestamp("2024-01-09"), pd.Timestamp("2024-01-10"),
        ]

    def test_beyond_covariates(self, frame):
        data = TimeSeriesData.from_frame(frame, "load", horizon=2)
        idx = data.future_index(4)
        assert len(idx) == 4
        assert idx[-1] == pd.Timestamp("2024-01-12")

    def test_range_index(self):
        y = pd.Series(np.zeros(5))
        data = TimeSeriesData(y=y, covariates=pd.DataFrame(index=y.index))
        assert list(data.future_index(3)) == [5, 6, 7]
