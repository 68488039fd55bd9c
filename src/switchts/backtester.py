"""Backtesting module for switching state-space forecasters.

Every fold compiles its own :class:`~switchts.model.AssembledModel` over
the training window, estimates it, and forecasts the test window with
:func:`~switchts.model.extend`.  Folds share nothing, so a failure in
one cannot leak into another.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Literal

import numpy as np
import pandas as pd
from jax.scipy.stats import norm

from switchts.config import ModelConfig
from switchts.data import TimeSeriesData
from switchts.forecaster import SwitchingForecaster
from switchts.tree import ComponentTree

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


def mae(actual: np.ndarray, predicted: np.ndarray) -> float:
    """Mean Absolute Error."""
    return float(np.mean(np.abs(actual - predicted)))


def rmse(actual: np.ndarray, predicted: np.ndarray) -> float:
    """Root Mean Squared Error."""
    return float(np.sqrt(np.mean((actual - predicted) ** 2)))


def mape(actual: np.ndarray, predicted: np.ndarray) -> float:
    """Mean Absolute Percentage Error over non-zero actuals.

    Returns ``NaN`` if every actual value is zero.
    """
    mask = actual != 0
    if not mask.any():
        return float("nan")
    return float(np.mean(np.abs((actual[mask] - predicted[mask]) / actual[mask])) * 100)


def smape(actual: np.ndarray, predicted: np.ndarray) -> float:
    """Symmetric Mean Absolute Percentage Error (0–200 scale)."""
    denom = np.abs(actual) + np.abs(predicted)
    mask = denom != 0
    if not mask.any():
        return 0.0
    return float(np.mean(2.0 * np.abs(actual[mask] - predicted[mask]) / denom[mask]) * 100)


def coverage(
    actual: np.ndarray,
    mean: np.ndarray,
    std: np.ndarray,
    level: float = 0.90,
) -> float:
    """Fraction of actuals inside the central Gaussian interval at *level*."""
    z = float(norm.ppf(0.5 + level / 2))
    lo, hi = mean - z * std, mean + z * std
    return float(np.mean((actual >= lo) & (actual <= hi)))


def crps_gaussian(actual: np.ndarray, mean: np.ndarray, std: np.ndarray) -> float:
    """Continuous Ranked Probability Score of a Gaussian forecast (lower is better).

    Closed form ``sigma * (z (2 Phi(z) - 1) + 2 phi(z) - 1/sqrt(pi))`` with
    ``z = (y - mu) / sigma``, averaged over the horizon.  Zero-variance
    steps reduce to the absolute error.
    """
    std = np.asarray(std, dtype=float)
    safe = np.where(std > 0, std, 1.0)
    z = (actual - mean) / safe
    cdf = np.asarray(norm.cdf(z))
    pdf = np.asarray(norm.pdf(z))
    score = safe * (z * (2 * cdf - 1) + 2 * pdf - 1 / np.sqrt(np.pi))
    score = np.where(std > 0, score, np.abs(actual - mean))
    return float(np.mean(score))


def compute_metrics(
    actual: np.ndarray,
    mean: np.ndarray,
    std: np.ndarray,
    coverage_level: float = 0.90,
) -> dict[str, float]:
    """Compute all standard forecast metrics for one fold.

    Returns
    -------
    dict
        Keys: ``mae``, ``rmse``, ``mape``, ``smape``, ``coverage``,
        ``crps``.  Steps with a missing actual are ignored.
    """
    actual = np.asarray(actual, dtype=float)
    ok = np.isfinite(actual)
    actual, mean, std = actual[ok], np.asarray(mean)[ok], np.asarray(std)[ok]
    if actual.size == 0:
        return {k: float("nan") for k in ("mae", "rmse", "mape", "smape", "coverage", "crps")}
    return {
        "mae": mae(actual, mean),
        "rmse": rmse(actual, mean),
        "mape": mape(actual, mean),
        "smape": smape(actual, mean),
        "coverage": coverage(actual, mean, std, level=coverage_level),
        "crps": crps_gaussian(actual, mean, std),
    }


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class BacktestResult:
    """Results from a single backtest fold.

    Attributes
    ----------
    cutoff
        Number of training observations (the first test position).
    horizon
        Number of forecast steps.
    metrics
        Metric name to value.
    forecast
        Predictive ``mean``/``std``/``lower``/``upper`` over the test window.
    actuals
        Ground truth over the test window.
    theta
        Variances estimated on the training window.
    converged
        Whether the fold's estimation converged.
    """

    cutoff: int
    horizon: int
    metrics: dict[str, float]
    forecast: pd.DataFrame
    actuals: np.ndarray
    theta: dict[str, float]
    converged: bool


@dataclass
class BacktestSummary:
    """Aggregated results across all backtest folds.

    Attributes
    ----------
    folds
        Individual :class:`BacktestResult` objects.
    summary_df
        One row per fold plus a ``mean`` row.
    run_config
        Parameters needed to reproduce this run.
    """

    folds: list[BacktestResult]
    summary_df: pd.DataFrame
    run_config: dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        name = self.run_config.get("run_name", "")
        tag = f", name={name!r}" if name else ""
        return f"BacktestSummary(folds={len(self.folds)}{tag})"

    # -- persistence -------------------------------------------------------

    def save(self, path: str | Path) -> Path:
        """Save the backtest to disk.

        Directory layout::

            path/
                meta.json          # run_config, per-fold metrics and theta
                summary.csv        # summary_df
                folds/
                    fold_000.csv   # forecast frame + actuals
                    ...
        """
        root = Path(path)
        folds_dir = root / "folds"
        folds_dir.mkdir(parents=True, exist_ok=True)

        meta = {
            "run_config": self.run_config,
            "n_folds": len(self.folds),
            "folds": [
                {
                    "fold_index": i,
                    "cutoff": fold.cutoff,
                    "horizon": fold.horizon,
                    "metrics": fold.metrics,
                    "theta": fold.theta,
                    "converged": fold.converged,
                }
                for i, fold in enumerate(self.folds)
            ],
        }
        (root / "meta.json").write_text(json.dumps(meta, indent=2, default=str))
        self.summary_df.to_csv(root / "summary.csv", index_label="fold")
        for i, fold in enumerate(self.folds):
            frame = fold.forecast.assign(actual=fold.actuals)
            frame.to_csv(folds_dir / f"fold_{i:03d}.csv", index_label="time")

        logger.info("Saved backtest to %s", root)
        return root

    @classmethod
    def load(cls, path: str | Path) -> BacktestSummary:
        """Load a backtest written by :meth:`save`."""
        root = Path(path)
        meta = json.loads((root / "meta.json").read_text())
        summary_df = pd.read_csv(root / "summary.csv", index_col="fold")

        folds: list[BacktestResult] = []
        for info in meta["folds"]:
            frame = pd.read_csv(
                root / "folds" / f"fold_{info['fold_index']:03d}.csv", index_col="time",
            )
            folds.append(BacktestResult(
                cutoff=info["cutoff"],
                horizon=info["horizon"],
                metrics=info["metrics"],
                forecast=frame.drop(columns="actual"),
                actuals=frame["actual"].to_numpy(dtype=float),
                theta=info["theta"],
                converged=info["converged"],
            ))
        return cls(folds=folds, summary_df=summary_df, run_config=meta.get("run_config", {}))


# ---------------------------------------------------------------------------
# Backtester
# ---------------------------------------------------------------------------


class Backtester:
    """Backtest a :class:`SwitchingForecaster` on historical data.

    Supports single-split and expanding-window evaluation.

    Parameters
    ----------
    tree
        Model expression.  Drivers must carry values for the whole series
        (they are sliced per fold internally by :func:`extend`).
    config
        Compile-time policy shared by every fold.

    Examples
    --------
    ```python
    bt = Backtester(poly(1) + daytype % fourier(24, 3))
    result = bt.run(data, mode="expanding", test_size=48, n_splits=3)
    print(result.summary_df)
    ```
    """

    def __init__(self, tree: ComponentTree, config: ModelConfig | None = None) -> None:
        self.tree = tree
        self.config = config or ModelConfig()

    def run(
        self,
        data: TimeSeriesData | pd.Series,
        *,
        mode: Literal["single", "expanding"] = "single",
        test_size: int = 24,
        n_splits: int = 1,
        min_train_size: int | None = None,
        inference: Literal["mle", "nuts", "svi"] = "mle",
        fit_kwargs: dict[str, Any] | None = None,
        coverage_level: float = 0.90,
        run_name: str | None = None,
        run_path: str | Path | None = None,
        progress_callback: Callable[[str, dict[str, Any]], None] | None = None,
    ) -> BacktestSummary:
        """Run the backtest.

        Parameters
        ----------
        data
            Full series (and covariates) to evaluate on.
        mode
            ``"single"`` for one train/test split, ``"expanding"`` for
            multiple expanding-window folds.
        test_size
            Steps in each test window (= forecast horizon).
        n_splits
            Number of folds for ``"expanding"`` mode.
        min_train_size
            Minimum training observations.  Defaults to ``2 * test_size``.
        inference
            Estimation method per fold.
        fit_kwargs
            Extra keyword arguments for the estimator.
        coverage_level
            Nominal coverage for interval metrics.
        run_name
            Optional human-readable name for this run.
        run_path
            If given, save results to this directory after completion.
        """
        import switchts

        if isinstance(data, pd.Series):
            data = TimeSeriesData(y=data.astype(float), covariates=pd.DataFrame(index=data.index))
        fit_kwargs = dict(fit_kwargs or {})
        if min_train_size is None:
            min_train_size = 2 * test_size

        t0 = time.perf_counter()
        T = len(data)
        cutoffs = self._compute_cutoffs(
            T=T,
            mode=mode,
            test_size=test_size,
            n_splits=n_splits,
            min_train_size=min_train_size,
        )

        folds: list[BacktestResult] = []
        for fold_idx, cutoff in enumerate(cutoffs):
            logger.info(
                "Fold %d/%d: train=[0:%d], test=[%d:%d]",
                fold_idx + 1, len(cutoffs), cutoff, cutoff, cutoff + test_size,
            )
            if progress_callback is not None:
                progress_callback("fold_start", {"fold": fold_idx, "total": len(cutoffs)})
            result = self._run_fold(
                data, cutoff, test_size, inference, fit_kwargs, coverage_level,
            )
            folds.append(result)
            if progress_callback is not None:
                progress_callback("fold_done", {"fold": fold_idx, "metrics": result.metrics})

        elapsed = time.perf_counter() - t0
        run_config: dict[str, Any] = {
            "run_name": run_name or "",
            "version": switchts.__version__,
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "elapsed_seconds": round(elapsed, 1),
            "formula": str(self.tree),
            "model_config": self.config.model_dump(),
            "run_kwargs": {
                "mode": mode,
                "test_size": test_size,
                "n_splits": n_splits,
                "min_train_size": min_train_size,
                "inference": inference,
                "fit_kwargs": fit_kwargs,
                "coverage_level": coverage_level,
            },
            "data_info": {
                "T": T,
                "covariates": list(data.covariates.columns),
            },
        }

        summary = BacktestSummary(
            folds=folds,
            summary_df=self._aggregate_folds(folds),
            run_config=run_config,
        )
        if run_path is not None:
            summary.save(run_path)
        return summary

    # -- internal ----------------------------------------------------------

    @staticmethod
    def _compute_cutoffs(
        T: int,
        mode: str,
        test_size: int,
        n_splits: int,
        min_train_size: int,
    ) -> list[int]:
        """Return sorted list of cutoff indices."""
        if mode == "single":
            cutoff = T - test_size
            if cutoff < min_train_size:
                raise ValueError(
                    f"Not enough data: T={T}, test_size={test_size}, "
                    f"min_train_size={min_train_size}"
                )
            return [cutoff]
        if mode != "expanding":
            raise ValueError(f"Unknown backtest mode: {mode!r}")

        last_cutoff = T - test_size
        first_cutoff = last_cutoff - (n_splits - 1) * test_size
        if first_cutoff < min_train_size:
            raise ValueError(
                f"Not enough data for {n_splits} expanding splits: "
                f"T={T}, test_size={test_size}, min_train_size={min_train_size}"
            )
        return list(range(first_cutoff, last_cutoff + 1, test_size))

    def _run_fold(
        self,
        data: TimeSeriesData,
        cutoff: int,
        horizon: int,
        inference: str,
        fit_kwargs: dict[str, Any],
        coverage_level: float,
    ) -> BacktestResult:
        """Fit on [0:cutoff], forecast [cutoff:cutoff+horizon], score."""
        train = TimeSeriesData(y=data.y.iloc[:cutoff], covariates=data.covariates)
        model = SwitchingForecaster(self.tree, self.config)
        model.fit(train, inference=inference, **fit_kwargs)

        forecast = model.forecast(horizon, level=coverage_level)
        actuals = data.values[cutoff: cutoff + horizon]
        metrics = compute_metrics(
            actual=actuals,
            mean=forecast["mean"].to_numpy(),
            std=forecast["std"].to_numpy(),
            coverage_level=coverage_level,
        )
        return BacktestResult(
            cutoff=cutoff,
            horizon=horizon,
            metrics=metrics,
            forecast=forecast,
            actuals=actuals,
            theta=model.theta,
            converged=model.fit_result.converged,
        )

    @staticmethod
    def _aggregate_folds(folds: list[BacktestResult]) -> pd.DataFrame:
        """One row of metrics per fold plus their mean."""
        if not folds:
            return pd.DataFrame()
        df = pd.DataFrame(
            [f.metrics for f in folds],
            index=pd.Index([str(i) for i in range(len(folds))], name="fold"),
        )
        df.loc["mean"] = df.mean(numeric_only=True, skipna=True)
        return df
