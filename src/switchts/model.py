"""Assembled model — the immutable artifact produced by :func:`compile`.

An :class:`AssembledModel` bundles everything a filter, smoother or
optimiser needs: the constant ``G``, the variance shapes behind ``W(θ)``
and ``V(θ)``, the observation rows ``F_t`` and the index map that lets
results be decomposed back into named terms.

```python
from switchts import RegimeDriver, compile, extend, fourier, poly

daytype = RegimeDriver.from_series("daytype", labels)
model = compile(poly(1) + daytype % fourier(24, 3), y.index)
future = extend(model, 48, future_driver_values={"daytype": next_labels})
```
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from switchts.config import ModelConfig
from switchts.errors import (
    CompileError,
    DriverLengthMismatch,
    MissingCovariateError,
    SynthesisError,
    UnknownFutureDriver,
    UnknownFutureRegressor,
)
from switchts.expansion import ExpandedLeaf, Expansion, expand
from switchts.index_map import StateIndexMap, build_index_map
from switchts.synthesizer import (
    CovariateTable,
    normalize_covariates,
    resolve_driver_values,
    synthesize,
)
from switchts.tree import ComponentTree, RegimeDriver

logger = logging.getLogger(__name__)


def _read_only(arr: np.ndarray) -> np.ndarray:
    out = np.array(arr, copy=True)
    out.flags.writeable = False
    return out


@dataclass(frozen=True, eq=False)
class AssembledModel:
    """Compiled switching state-space model over a fixed time scope.

    Rows ``0 .. n_history-1`` of ``F`` cover the observed history; any
    further rows belong to the forecast horizon added by :func:`extend`.
    All arrays are read-only.
    """

    tree: ComponentTree
    expansion: Expansion
    index_map: StateIndexMap
    G: np.ndarray
    W_shapes: np.ndarray
    F: np.ndarray
    active: np.ndarray
    parameter_names: tuple[str, ...]
    time_index: pd.Index
    n_history: int
    driver_values: dict[str, np.ndarray]
    covariates: dict[str, np.ndarray]
    config: ModelConfig

    # -- dimensions ----------------------------------------------------------

    @property
    def state_dim(self) -> int:
        return self.index_map.state_dim

    @property
    def n_steps(self) -> int:
        return self.F.shape[0]

    @property
    def horizon(self) -> int:
        return self.n_steps - self.n_history

    @property
    def n_params(self) -> int:
        return len(self.parameter_names)

    @property
    def leaves(self) -> tuple[ExpandedLeaf, ...]:
        return self.expansion.leaves

    @property
    def drivers(self) -> dict[str, RegimeDriver]:
        return self.expansion.drivers

    @property
    def term_keys(self) -> list[str]:
        return self.expansion.term_keys

    # -- parametrisation -----------------------------------------------------

    def parameter_index(self, name: str) -> int:
        """Position of variance parameter *name* in ``theta``."""
        try:
            return self.parameter_names.index(name)
        except ValueError:
            raise KeyError(
                f"Unknown parameter {name!r}. Available: {list(self.parameter_names)}"
            ) from None

    def check_theta(self, theta: Sequence[float] | np.ndarray) -> np.ndarray:
        """Return *theta* as a float array after shape and sign checks."""
        arr = np.asarray(theta, dtype=float).reshape(-1)
        if arr.shape != (self.n_params,):
            raise ValueError(
                f"theta must have {self.n_params} entries {list(self.parameter_names)}, "
                f"got {arr.shape[0]}"
            )
        if np.any(arr < 0):
            bad = [n for n, v in zip(self.parameter_names, arr) if v < 0]
            raise ValueError(f"variances must be >= 0, negative: {bad}")
        return arr

    def W(self, theta: Sequence[float] | np.ndarray) -> np.ndarray:
        """Process-noise covariance ``sum_g theta[g] * W_shapes[g]``."""
        return np.tensordot(self.check_theta(theta), self.W_shapes, axes=1)

    def V(self, theta: Sequence[float] | np.ndarray) -> float:
        """Observation-noise variance (always ``theta[0]``)."""
        return float(self.check_theta(theta)[0])

    def theta_from_dict(self, values: Mapping[str, float]) -> np.ndarray:
        """Build ``theta`` from ``{parameter name: variance}``; all names required."""
        missing = [n for n in self.parameter_names if n not in values]
        if missing:
            raise KeyError(f"Missing variance parameters: {missing}")
        return self.check_theta([values[n] for n in self.parameter_names])

    def initial_state(self) -> tuple[np.ndarray, np.ndarray]:
        """Diffuse prior ``(a0, P0)`` with ``P0 = diffuse_scale * I``."""
        n = self.state_dim
        return np.zeros(n), self.config.diffuse_scale * np.eye(n)

    # -- reporting -----------------------------------------------------------

    def summary(self) -> dict[str, Any]:
        """Return a JSON-compatible description of the layout."""
        return {
            "formula": str(self.tree),
            "state_dim": self.state_dim,
            "n_history": self.n_history,
            "horizon": self.horizon,
            "parameters": list(self.parameter_names),
            "drivers": {
                name: [str(lv) for lv in d.levels] for name, d in self.drivers.items()
            },
            "layout": [
                {"path": str(e.path), "offset": e.offset, "length": e.length}
                for e in self.index_map
            ],
        }

    def __repr__(self) -> str:
        return (
            f"AssembledModel({str(self.tree)!r}, state_dim={self.state_dim}, "
            f"n_history={self.n_history}, horizon={self.horizon}, "
            f"params={self.n_params})"
        )


# ---------------------------------------------------------------------------
# compile / extend
# ---------------------------------------------------------------------------


def _time_index(time_scope: pd.Index | Sequence[Any] | int) -> pd.Index:
    if isinstance(time_scope, (int, np.integer)):
        if time_scope < 1:
            raise ValueError(f"time scope must cover at least one step, got {time_scope}")
        return pd.RangeIndex(int(time_scope))
    index = pd.Index(time_scope)
    if len(index) == 0:
        raise ValueError("time scope must cover at least one step")
    return index


def _future_index(index: pd.Index, horizon: int) -> pd.Index:
    """Continue *index* by *horizon* steps."""
    if isinstance(index, pd.DatetimeIndex):
        freq = index.freq or (pd.infer_freq(index) if len(index) >= 3 else None)
        if freq is None:
            raise ValueError(
                "cannot extend a DatetimeIndex without a regular frequency; "
                "set index.freq before compiling"
            )
        return pd.date_range(index[-1], periods=horizon + 1, freq=freq)[1:]
    if isinstance(index, pd.RangeIndex):
        stop = index.stop + horizon * index.step
        return pd.RangeIndex(index.stop, stop, index.step)
    if pd.api.types.is_integer_dtype(index.dtype):
        step = int(index[-1] - index[-2]) if len(index) > 1 else 1
        return pd.Index(index[-1] + step * np.arange(1, horizon + 1))
    raise ValueError(f"cannot extend a time index of type {type(index).__name__}")


def _scope_offset(
    source: pd.Index | None, index: pd.Index, what: str, error: type[CompileError],
) -> int:
    """Position of ``index[0]`` in *source*.

    Only date-indexed inputs are lined up by time stamp; anything else is
    matched by position and gets offset 0.  The stamps from that position
    on must reproduce *index* exactly.
    """
    if not (isinstance(source, pd.DatetimeIndex) and isinstance(index, pd.DatetimeIndex)):
        return 0
    try:
        start = source.get_loc(index[0])
    except KeyError:
        raise error(
            f"{what} has no value at {index[0]}; it covers {source.min()} .. {source.max()}"
        ) from None
    if not isinstance(start, (int, np.integer)):
        raise error(f"{what} has a duplicated time stamp {index[0]}")
    window = source[start:start + len(index)]
    if not window.equals(index):
        raise error(
            f"{what} does not line up with the time scope {index[0]} .. {index[-1]}"
        )
    return int(start)


def _aligned_drivers(expansion: Expansion, index: pd.Index) -> dict[str, np.ndarray]:
    aligned = {}
    for name, driver in expansion.drivers.items():
        start = _scope_offset(driver.index, index, f"driver {name!r}", DriverLengthMismatch)
        aligned[name] = np.asarray(driver.values, dtype=object)[start:]
    return aligned


def _aligned_covariates(
    covariates: CovariateTable | None, index: pd.Index,
) -> dict[str, np.ndarray]:
    if isinstance(covariates, pd.DataFrame):
        start = _scope_offset(
            covariates.index, index, "covariate table", MissingCovariateError,
        )
        return normalize_covariates(covariates.iloc[start:])
    cov = normalize_covariates(covariates)
    for name, values in (covariates or {}).items():
        if isinstance(values, pd.Series):
            start = _scope_offset(
                values.index, index, f"covariate {name!r}", MissingCovariateError,
            )
            cov[str(name)] = cov[str(name)][start:]
    return cov


def compile(
    tree: ComponentTree,
    time_scope: pd.Index | Sequence[Any] | int,
    *,
    covariates: CovariateTable | None = None,
    config: ModelConfig | None = None,
) -> AssembledModel:
    """Compile *tree* into an :class:`AssembledModel` over *time_scope*.

    Parameters
    ----------
    tree
        Component tree built from ``poly``/``seas``/``fourier``/``reg``,
        ``+`` and ``driver % ...``.
    time_scope
        Historical time index (``pd.Index``, ``DatetimeIndex``, ...) or
        its length.
    covariates
        DataFrame or mapping of arrays holding every regressor's values
        over at least the history.  Values past the history are kept and
        reused by :func:`extend`.  A date-indexed frame (or Series) is
        lined up with a ``DatetimeIndex`` time scope by time stamp.
    config
        :class:`ModelConfig`; defaults apply when omitted.

    Raises
    ------
    CompileError
        Any structural problem; no artifact is produced.
    """
    t0 = time.perf_counter()
    config = config or ModelConfig()
    index = _time_index(time_scope)
    n_history = len(index)

    expansion = expand(tree)
    index_map = build_index_map(expansion)
    cov = _aligned_covariates(covariates, index)
    driver_values = _aligned_drivers(expansion, index)
    design = synthesize(
        expansion, index_map, n_history, driver_values=driver_values,
        covariates=cov, config=config, n_history=n_history,
    )

    model = AssembledModel(
        tree=tree,
        expansion=expansion,
        index_map=index_map,
        G=_read_only(design.G),
        W_shapes=_read_only(design.W_shapes),
        F=_read_only(design.F),
        active=_read_only(design.active),
        parameter_names=design.parameter_names,
        time_index=index,
        n_history=n_history,
        driver_values={k: _read_only(v) for k, v in driver_values.items()},
        covariates={k: _read_only(v) for k, v in cov.items()},
        config=config,
    )
    _check_fixed_variances(model)
    logger.info(
        "Compiled %s: state_dim=%d, leaves=%d, params=%d, T=%d in %.3fs",
        tree, model.state_dim, len(expansion), model.n_params, n_history,
        time.perf_counter() - t0,
    )
    return model


def _check_fixed_variances(model: AssembledModel) -> None:
    unknown = [k for k in model.config.fixed_variances if k not in model.parameter_names]
    if unknown:
        raise CompileError(
            f"fixed_variances names unknown parameters {unknown}; "
            f"available: {list(model.parameter_names)}"
        )


def _concat_future(
    history: np.ndarray,
    future: Any,
    horizon: int,
    dtype: Any,
    what: str,
    missing: type[SynthesisError],
) -> np.ndarray:
    fut = np.asarray(future, dtype=dtype).reshape(-1)
    if len(fut) < horizon:
        raise missing(
            f"{what} has {len(fut)} future values for a horizon of {horizon}"
        )
    if len(fut) > horizon:
        raise SynthesisError(
            f"{what} has {len(fut)} future values for a horizon of {horizon}; "
            f"pass the horizon only, without the history"
        )
    return np.concatenate([np.asarray(history, dtype=dtype), fut])


def extend(
    model: AssembledModel,
    horizon: int,
    future_driver_values: Mapping[str, Any] | None = None,
    future_covariates: CovariateTable | None = None,
) -> AssembledModel:
    """Return a new model covering the history plus *horizon* future steps.

    ``G``, the variance shapes and the parameter names are shared with
    *model*; only ``F`` and the time index grow.  The history is always
    *model*'s history, so extending an extended model replaces its
    horizon.

    Future driver values come from *future_driver_values* (exactly the
    horizon, history excluded) or, failing that, from values the driver
    already carried past the history.  The same holds for regressors and
    *future_covariates*.

    Raises
    ------
    UnknownFutureDriver
        A switching driver has no value for some horizon step.
    UnknownFutureRegressor
        A regressor has no value for some horizon step.
    SynthesisError
        Supplied future values are longer than *horizon*, or name a
        driver the model does not have.
    """
    if horizon < 0:
        raise ValueError(f"horizon must be >= 0, got {horizon}")
    t0 = time.perf_counter()
    n_hist = model.n_history
    n_steps = n_hist + horizon

    supplied = dict(future_driver_values or {})
    unknown = [k for k in supplied if k not in model.drivers]
    if unknown:
        raise SynthesisError(
            f"future_driver_values for unknown drivers {unknown}; "
            f"known: {list(model.drivers)}"
        )
    drivers: dict[str, np.ndarray] = {}
    for name, values in model.driver_values.items():
        if name in supplied:
            drivers[name] = _concat_future(
                values[:n_hist], supplied[name], horizon, object,
                f"driver {name!r}", UnknownFutureDriver,
            )
        else:
            drivers[name] = values
    drivers = resolve_driver_values(model.expansion, n_steps, n_hist, drivers)

    cov = dict(model.covariates)
    for name, values in normalize_covariates(future_covariates).items():
        history = cov.get(name, np.full(n_hist, np.nan))[:n_hist]
        cov[name] = _concat_future(
            history, values, horizon, float,
            f"covariate {name!r}", UnknownFutureRegressor,
        )

    design = synthesize(
        model.expansion, model.index_map, n_steps,
        driver_values=drivers, covariates=cov, config=model.config, n_history=n_hist,
    )
    index = model.time_index[:n_hist]
    if horizon:
        index = index.append(_future_index(index, horizon))

    extended = AssembledModel(
        tree=model.tree,
        expansion=model.expansion,
        index_map=model.index_map,
        G=model.G,
        W_shapes=model.W_shapes,
        F=_read_only(design.F),
        active=_read_only(design.active),
        parameter_names=model.parameter_names,
        time_index=index,
        n_history=n_hist,
        driver_values={k: _read_only(v) for k, v in drivers.items()},
        covariates={k: _read_only(v) for k, v in cov.items()},
        config=model.config,
    )
    logger.info(
        "Extended model by %d steps (T=%d) in %.3fs",
        horizon, n_steps, time.perf_counter() - t0,
    )
    return extended


compile_model = compile
