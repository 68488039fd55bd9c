"""Switching forecaster — compile, estimate, decompose and forecast in one object."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Literal

import numpy as np
import pandas as pd
from jax.scipy.stats import norm

from switchts.config import ModelConfig
from switchts.data import TimeSeriesData
from switchts.decomposition import Decomposition, decompose, forecast_from_state
from switchts.estimation import FitResult, fit_bayes, fit_mle
from switchts.kalman import FilterResult, SmootherResult, kalman_filter, rts_smoother
from switchts.model import AssembledModel, compile, extend
from switchts.synthesizer import CovariateTable
from switchts.tree import ComponentTree

logger = logging.getLogger(__name__)


class SwitchingForecaster:
    """Structural forecaster with regime-switching components.

    Parameters
    ----------
    tree : ComponentTree
        Model expression, e.g. ``poly(2) + daytype % fourier(24, 3)``.
    config : ModelConfig
        Compile-time policy (variance sharing, fixed variances, ...).

    Examples
    --------
    ```python
    daytype = calendar_driver("daytype", idx_with_future)
    fc = SwitchingForecaster(poly(1) + daytype % fourier(24, 3))
    fc.fit(y)                                # MLE
    fc.fit(y, inference="svi")               # Bayesian, fast approximate
    fc.decompose().components
    fc.forecast(48)
    ```
    """

    def __init__(self, tree: ComponentTree, config: ModelConfig | None = None) -> None:
        self.tree = tree
        self.config = config or ModelConfig()

        self._y: np.ndarray | None = None
        self._model: AssembledModel | None = None
        self._fit: FitResult | None = None
        self._filtered: FilterResult | None = None
        self._smoothed: SmootherResult | None = None

    # -- public API --------------------------------------------------------

    def fit(
        self,
        y: pd.Series | np.ndarray | TimeSeriesData,
        covariates: CovariateTable | None = None,
        *,
        inference: Literal["mle", "nuts", "svi"] = "mle",
        **fit_kwargs: Any,
    ) -> SwitchingForecaster:
        """Compile the model over *y*'s index and estimate its variances.

        Parameters
        ----------
        y
            Observed series.  A :class:`TimeSeriesData` also supplies the
            covariates (including any known future rows).
        covariates
            Regressor values when *y* is a plain series or array.
        inference
            ``"mle"`` (BFGS), ``"nuts"`` or ``"svi"``.
        **fit_kwargs
            Passed to :func:`~switchts.estimation.fit_mle` or
            :func:`~switchts.estimation.fit_bayes`.

        Returns *self* for method chaining.
        """
        if isinstance(y, TimeSeriesData):
            covariates = y.covariates if covariates is None else covariates
            time_scope: Any = y.index
            values = y.values
        elif isinstance(y, pd.Series):
            time_scope = y.index
            values = y.to_numpy(dtype=float)
        else:
            values = np.asarray(y, dtype=float).reshape(-1)
            time_scope = len(values)

        model = compile(self.tree, time_scope, covariates=covariates, config=self.config)
        if inference == "mle":
            result = fit_mle(model, values, **fit_kwargs)
        elif inference in ("nuts", "svi"):
            result = fit_bayes(model, values, inference=inference, **fit_kwargs)
        else:
            raise ValueError(f"Unknown inference method: {inference!r}")

        filtered = kalman_filter(model, values, result.theta)
        self._y = values
        self._model = model
        self._fit = result
        self._filtered = filtered
        self._smoothed = rts_smoother(model, filtered, result.theta)
        return self

    @property
    def model(self) -> AssembledModel:
        self._check_fitted("model")
        return self._model

    @property
    def fit_result(self) -> FitResult:
        self._check_fitted("fit_result")
        return self._fit

    @property
    def theta(self) -> dict[str, float]:
        return self.fit_result.as_dict()

    def decompose(
        self, *, smoothed: bool = True, include_inactive: bool = False,
    ) -> Decomposition:
        """Per-term contributions over the history (smoothed by default)."""
        self._check_fitted("decompose")
        states = self._smoothed if smoothed else self._filtered
        return decompose(self._model, states, include_inactive=include_inactive)

    def forecast(
        self,
        horizon: int,
        future_driver_values: Mapping[str, Any] | None = None,
        future_covariates: CovariateTable | None = None,
        *,
        level: float = 0.90,
    ) -> pd.DataFrame:
        """Gaussian predictive forecast for the next *horizon* steps.

        Returns
        -------
        pandas.DataFrame
            Columns ``mean``, ``std``, ``lower``, ``upper`` (central
            interval at *level*), indexed by the future time index.
        """
        frame, _ = self.forecast_decomposed(
            horizon, future_driver_values, future_covariates, level=level,
        )
        return frame

    def forecast_decomposed(
        self,
        horizon: int,
        future_driver_values: Mapping[str, Any] | None = None,
        future_covariates: CovariateTable | None = None,
        *,
        level: float = 0.90,
    ) -> tuple[pd.DataFrame, pd.DataFrame]:
        """Forecast plus the expected contribution of every term.

        Returns the same frame as :meth:`forecast` plus a DataFrame with
        one column per term key.
        """
        self._check_fitted("forecast_decomposed")
        if horizon < 1:
            raise ValueError(f"horizon must be >= 1, got {horizon}")
        if not 0 < level < 1:
            raise ValueError(f"level must be in (0, 1), got {level}")
        future = extend(self._model, horizon, future_driver_values, future_covariates)
        fc = forecast_from_state(
            future,
            self._filtered.means[-1],
            self._filtered.covs[-1],
            self._fit.theta,
        )
        z = float(norm.ppf(0.5 + level / 2))
        frame = fc.frame[["mean", "std"]].copy()
        frame["lower"] = frame["mean"] - z * frame["std"]
        frame["upper"] = frame["mean"] + z * frame["std"]
        return frame, fc.components

    def summary(self) -> None:
        """Print estimated variances and fit diagnostics."""
        self._check_fitted("summary")
        res = self._fit
        print(f"{self._model!r}")
        print(
            f"method={res.method} loglik={res.loglik:.4f} converged={res.converged} "
            f"({res.message})"
        )
        width = max(len(n) for n in res.parameter_names)
        for name, value in res.as_dict().items():
            print(f"  {name:<{width}}  {value:.6g}")

    # -- internal ----------------------------------------------------------

    def _check_fitted(self, what: str) -> None:
        if self._model is None or self._fit is None:
            raise RuntimeError(f"Must call .fit() before .{what}")
