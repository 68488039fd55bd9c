"""Tests for the design matrix synthesizer."""

from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from switchts.config import ModelConfig
from switchts.errors import (
    DriverLengthMismatch,
    MissingCovariateError,
    UnknownFutureDriver,
    UnknownFutureRegressor,
)
from switchts.expansion import expand
from switchts.index_map import build_index_map
from switchts.synthesizer import (
    OBS_PARAMETER,
    leaf_rows,
    normalize_covariates,
    synthesize,
)
from switchts.tree import RegimeDriver, fourier, poly, reg, seas


def _synth(tree, n_steps, **kwargs):
    expansion = expand(tree)
    return synthesize(expansion, build_index_map(expansion), n_steps, **kwargs)


# ---------------------------------------------------------------------------
# leaf_rows
# ---------------------------------------------------------------------------


class TestLeafRows:
    def test_constant_rows(self):
        leaf = expand(poly(2)).leaves[0]
        rows = leaf_rows(leaf, 3, {})
        np.testing.assert_array_equal(rows, [[1, 0]] * 3)

    def test_phase_rows(self):
        leaf = expand(seas(3)).leaves[0]
        rows = leaf_rows(leaf, 4, {})
        np.testing.assert_array_equal(rows, [[1, 0], [0, 1], [-1, -1], [1, 0]])

    def test_covariate_rows(self):
        leaf = expand(reg("x")).leaves[0]
        rows = leaf_rows(leaf, 3, {"x": np.array([2.0, -1.0, 0.5])})
        np.testing.assert_array_equal(rows[:, 0], [2.0, -1.0, 0.5])

    def test_missing_covariate(self):
        leaf = expand(reg("x")).leaves[0]
        with pytest.raises(MissingCovariateError, match="'x'"):
            leaf_rows(leaf, 3, {})

    def test_nan_in_history(self):
        leaf = expand(reg("x")).leaves[0]
        with pytest.raises(MissingCovariateError, match="position 1"):
            leaf_rows(leaf, 3, {"x": np.array([1.0, np.nan, 2.0])})

    def test_nan_in_horizon(self):
        leaf = expand(reg("x")).leaves[0]
        with pytest.raises(UnknownFutureRegressor):
            leaf_rows(leaf, 3, {"x": np.array([1.0, 2.0, np.nan])}, n_history=2)


# ---------------------------------------------------------------------------
# synthesize
# ---------------------------------------------------------------------------


class TestSynthesize:
    def test_block_diagonal_transition(self):
        dm = _synth(poly(2) + fourier(4, 1), 5)
        assert dm.G.shape == (4, 4)
        np.testing.assert_array_equal(dm.G[:2, :2], [[1, 1], [0, 1]])
        np.testing.assert_allclose(dm.G[2:, 2:], [[0, 1], [-1, 0]], atol=1e-12)
        assert not dm.G[:2, 2:].any()
        assert not dm.G[2:, :2].any()

    def test_observation_slot_has_zero_shape(self):
        dm = _synth(poly(1) + fourier(4, 1), 5)
        assert dm.parameter_names[0] == OBS_PARAMETER
        assert not dm.W_shapes[0].any()
        np.testing.assert_array_equal(np.diag(dm.W_shapes[1]), [1, 0, 0])
        np.testing.assert_array_equal(np.diag(dm.W_shapes[2]), [0, 1, 1])

    def test_static_regressor_has_no_parameter(self):
        dm = _synth(poly(1) + reg("x"), 3, covariates={"x": [1.0, 2.0, 3.0]})
        assert dm.parameter_names == (OBS_PARAMETER, "sigma2[poly(1)]")
        np.testing.assert_array_equal(dm.F[:, 1], [1.0, 2.0, 3.0])

    def test_shared_versus_per_regime(self):
        d = RegimeDriver("d", ("a", "b"), ["a", "b", "a"])
        shared = _synth(d % poly(1), 3)
        split = _synth(d % poly(1), 3, config=ModelConfig(variance_sharing="per_regime"))
        assert shared.parameter_names == (OBS_PARAMETER, "sigma2[d%S%poly(1)]")
        assert split.parameter_names == (
            OBS_PARAMETER, "sigma2[d=a/poly(1)]", "sigma2[d=b/poly(1)]",
        )
        np.testing.assert_array_equal(np.diag(shared.W_shapes[1]), [1, 1])

    def test_inactive_rows_are_zero(self):
        d = RegimeDriver("d", ("a", "b"), ["a", "b", "b", "a"])
        dm = _synth(d % poly(1), 4)
        np.testing.assert_array_equal(dm.F, [[1, 0], [0, 1], [0, 1], [1, 0]])
        np.testing.assert_array_equal(dm.active, dm.F.T.astype(bool))

    def test_driver_override(self):
        d = RegimeDriver("d", ("a", "b"), ["a", "a"])
        dm = _synth(d % poly(1), 2, driver_values={"d": np.array(["b", "b"], dtype=object)})
        np.testing.assert_array_equal(dm.F, [[0, 1], [0, 1]])

    def test_short_driver_history(self):
        d = RegimeDriver("d", ("a", "b"), ["a", "b"])
        with pytest.raises(DriverLengthMismatch):
            _synth(d % poly(1), 4)

    def test_short_driver_horizon(self):
        d = RegimeDriver("d", ("a", "b"), ["a", "b"])
        with pytest.raises(UnknownFutureDriver, match="future_driver_values"):
            _synth(d % poly(1), 4, n_history=2)


def test_normalize_covariates_frame():
    frame = pd.DataFrame({"x": [1, 2], "y": [0.5, None]})
    out = normalize_covariates(frame)
    assert set(out) == {"x", "y"}
    assert out["x"].dtype == float
    assert np.isnan(out["y"][1])
