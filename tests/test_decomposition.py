"""Tests for decomposition and state-based forecast assembly."""

from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pytest

from switchts.decomposition import Decomposition, decompose, forecast_from_state
from switchts.errors import DecompositionMismatch
from switchts.model import compile, extend
from switchts.tree import RegimeDriver, fourier, poly


@pytest.fixture
def model():
    daytype = RegimeDriver("daytype", ("A", "B"), ["A", "B"] * 4)
    return compile(daytype % (poly(1) + fourier(4, 2)), 8)


@pytest.fixture
def states():
    return np.random.default_rng(0).normal(size=(8, 10))


# ---------------------------------------------------------------------------
# decompose
# ---------------------------------------------------------------------------


class TestDecompose:
    def test_components_sum_to_fitted(self, model, states):
        dec = decompose(model, states)
        assert isinstance(dec, Decomposition)
        assert list(dec.components.columns) == [
            "daytype%S%poly(1)", "daytype%S%fourier(4,2)",
        ]
        np.testing.assert_allclose(dec.components.sum(axis=1), dec.fitted)
        np.testing.assert_allclose(dec.fitted, np.einsum("ti,ti->t", model.F, states))

    def test_active_copy_contributes(self, model, states):
        dec = decompose(model, states)
        level = dec.components["daytype%S%poly(1)"].to_numpy()
        assert level[0] == states[0, 0]
        assert level[1] == states[1, 5]
        season = dec.components["daytype%S%fourier(4,2)"].to_numpy()
        assert season[0] == pytest.approx(states[0, 1] + states[0, 3])
        assert season[1] == pytest.approx(states[1, 6] + states[1, 8])

    def test_std_from_covariances(self, model, states):
        covs = np.broadcast_to(np.eye(10), (8, 10, 10))
        dec = decompose(model, states, covs)
        np.testing.assert_allclose(dec.std["daytype%S%poly(1)"], 1.0)
        np.testing.assert_allclose(dec.std["daytype%S%fourier(4,2)"], np.sqrt(2.0))

    def test_accepts_result_objects(self, model, states):
        result = SimpleNamespace(means=states, covs=np.broadcast_to(np.eye(10), (8, 10, 10)))
        dec = decompose(model, result)
        assert dec.std is not None
        frame = dec.to_frame()
        assert "fitted" in frame.columns
        assert "std[daytype%S%poly(1)]" in frame.columns

    def test_include_inactive(self, model, states):
        dec = decompose(model, states, include_inactive=True)
        assert list(dec.inactive.columns) == [
            "daytype=A/poly(1)",
            "daytype=A/fourier(4,2)",
            "daytype=B/poly(1)",
            "daytype=B/fourier(4,2)",
        ]
        # A copy evaluated on a B step
        assert dec.inactive["daytype=A/poly(1)"].iloc[1] == states[1, 0]

    def test_fewer_steps_than_model(self, model, states):
        dec = decompose(model, states[:5])
        assert len(dec.fitted) == 5

    def test_nan_states_mismatch(self, model, states):
        states = states.copy()
        states[3, 7] = np.nan
        with pytest.raises(DecompositionMismatch, match="position 3"):
            decompose(model, states)

    @pytest.mark.parametrize("shape", [(8, 9), (9, 10), (10,)])
    def test_wrong_shape(self, model, shape):
        with pytest.raises(ValueError):
            decompose(model, np.zeros(shape))

    def test_wrong_covariance_shape(self, model, states):
        with pytest.raises(ValueError, match="covariances"):
            decompose(model, states, np.zeros((8, 10)))


# ---------------------------------------------------------------------------
# forecast_from_state
# ---------------------------------------------------------------------------


class TestForecastFromState:
    def test_local_level_variance_grows(self):
        m = extend(compile(poly(1), 3), 3)
        fc = forecast_from_state(m, np.array([2.0]), np.array([[1.0]]), [0.5, 0.25])
        np.testing.assert_allclose(fc.frame["mean"], [2.0, 2.0, 2.0])
        np.testing.assert_allclose(fc.frame["variance"], [1.75, 2.0, 2.25])
        np.testing.assert_allclose(fc.frame["std"], np.sqrt([1.75, 2.0, 2.25]))
        assert list(fc.frame.index) == [3, 4, 5]
        assert fc.state_covs.shape == (3, 1, 1)

    def test_switched_components(self, model):
        ext = extend(model, 2, future_driver_values={"daytype": ["B", "B"]})
        mean = np.arange(10.0)
        fc = forecast_from_state(ext, mean, np.zeros((10, 10)), [1.0, 0.0, 0.0])
        # only the B copy of the level is visible
        np.testing.assert_allclose(fc.components["daytype%S%poly(1)"], [5.0, 5.0])
        np.testing.assert_allclose(fc.components.sum(axis=1), fc.frame["mean"])
        np.testing.assert_allclose(fc.frame["variance"], 1.0)

    def test_requires_horizon(self, model):
        with pytest.raises(ValueError, match="extend"):
            forecast_from_state(model, np.zeros(10), np.eye(10), [1.0, 1.0, 1.0])
