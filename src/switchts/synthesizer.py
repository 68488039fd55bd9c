"""Design matrix synthesizer — G, W shapes and the observation rows F_t.

Given an :class:`~switchts.expansion.Expansion` and its index map, this
module writes every leaf's blocks into the full-dimension matrices:

* ``G`` is block diagonal and constant in time;
* ``W(theta) = sum_g theta[g] * W_shapes[g]`` with one unit-scaled shape
  per variance parameter (slot 0 is the observation variance and has an
  all-zero shape);
* ``F`` holds one observation row per time step.  Rows of inactive
  regime copies are exactly zero.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import cast

import numpy as np
import pandas as pd

from switchts.config import ModelConfig
from switchts.errors import (
    DriverLengthMismatch,
    MissingCovariateError,
    UndefinedRegimeLevel,
    UnknownFutureDriver,
    UnknownFutureRegressor,
)
from switchts.expansion import Expansion, ExpandedLeaf, activation_mask
from switchts.index_map import StateIndexMap
from switchts.terms import Regressor, SeasonalFactor, seasonal_factor_row

logger = logging.getLogger(__name__)

OBS_PARAMETER = "sigma2[obs]"

CovariateTable = pd.DataFrame | Mapping[str, np.ndarray]


@dataclass(frozen=True)
class DesignMatrices:
    """Full-dimension matrices for one time scope.

    Attributes
    ----------
    G
        ``(n, n)`` transition matrix.
    W_shapes
        ``(n_params, n, n)`` unit-scaled process-noise shapes.
    parameter_names
        Variance parameter names; ``parameter_names[0] == "sigma2[obs]"``.
    F
        ``(n_steps, n)`` observation rows.
    active
        ``(n_leaves, n_steps)`` activation mask used to build ``F``.
    """

    G: np.ndarray
    W_shapes: np.ndarray
    parameter_names: tuple[str, ...]
    F: np.ndarray
    active: np.ndarray


# ---------------------------------------------------------------------------
# Input resolution
# ---------------------------------------------------------------------------


def normalize_covariates(covariates: CovariateTable | None) -> dict[str, np.ndarray]:
    """Convert a DataFrame or mapping into ``{name: float array}``."""
    if covariates is None:
        return {}
    if isinstance(covariates, pd.DataFrame):
        return {
            str(col): covariates[col].to_numpy(dtype=float, na_value=np.nan)
            for col in covariates.columns
        }
    return {
        str(name): np.asarray(values, dtype=float).reshape(-1)
        for name, values in covariates.items()
    }


def resolve_driver_values(
    expansion: Expansion,
    n_steps: int,
    n_history: int,
    driver_values: Mapping[str, np.ndarray] | None = None,
) -> dict[str, np.ndarray]:
    """Return driver values trimmed to *n_steps*, checking coverage.

    Raises :class:`DriverLengthMismatch` when a driver does not cover the
    history, and :class:`UnknownFutureDriver` when it does not cover the
    horizon ``n_history .. n_steps-1``.
    """
    supplied = driver_values or {}
    resolved: dict[str, np.ndarray] = {}
    for name, driver in expansion.drivers.items():
        values = supplied.get(name, driver.values)
        if len(values) < n_history:
            raise DriverLengthMismatch(
                f"driver {name!r} has {len(values)} values but the history "
                f"spans {n_history} steps"
            )
        if len(values) < n_steps:
            raise UnknownFutureDriver(
                f"driver {name!r} has no values for forecast steps "
                f"{len(values)}..{n_steps - 1}; supply future_driver_values[{name!r}]"
            )
        trimmed = np.asarray(values, dtype=object)[:n_steps]
        level_set = set(driver.levels)
        for t, value in enumerate(trimmed):
            if value not in level_set:
                raise UndefinedRegimeLevel(
                    f"driver {name!r} has undefined level {value!r} at position {t}; "
                    f"expected one of {list(driver.levels)}"
                )
        resolved[name] = trimmed
    return resolved


def _covariate_series(
    leaf: ExpandedLeaf,
    covariates: Mapping[str, np.ndarray],
    n_steps: int,
    n_history: int,
) -> np.ndarray:
    term = cast(Regressor, leaf.term)
    values = covariates.get(term.name)
    if values is None:
        raise MissingCovariateError(
            f"{leaf.path}: covariate {term.name!r} not found in the covariate table"
        )
    history = values[:n_history]
    if len(history) < n_history:
        raise MissingCovariateError(
            f"{leaf.path}: covariate {term.name!r} has {len(history)} values but "
            f"the history spans {n_history} steps"
        )
    if np.isnan(history).any():
        bad = int(np.flatnonzero(np.isnan(history))[0])
        raise MissingCovariateError(
            f"{leaf.path}: covariate {term.name!r} is missing at position {bad}"
        )
    future = values[n_history:n_steps]
    if len(future) < n_steps - n_history or np.isnan(future).any():
        raise UnknownFutureRegressor(
            f"{leaf.path}: covariate {term.name!r} has no values for every forecast "
            f"step {n_history}..{n_steps - 1}; supply future_covariates[{term.name!r}]"
        )
    return values[:n_steps]


# ---------------------------------------------------------------------------
# Row construction
# ---------------------------------------------------------------------------


def leaf_rows(
    leaf: ExpandedLeaf,
    n_steps: int,
    covariates: Mapping[str, np.ndarray],
    n_history: int | None = None,
) -> np.ndarray:
    """Observation rows of *leaf* ignoring activation, shape ``(n_steps, dim)``."""
    blocks = leaf.blocks
    if blocks.row_kind == "phase":
        term = cast(SeasonalFactor, leaf.term)
        table = np.stack([seasonal_factor_row(term.period, phi) for phi in range(term.period)])
        return table[np.arange(n_steps) % term.period]
    if blocks.row_kind == "covariate":
        n_hist = n_steps if n_history is None else n_history
        x = _covariate_series(leaf, covariates, n_steps, n_hist)
        return x[:, None] * blocks.F[None, :]
    return np.broadcast_to(blocks.F, (n_steps, blocks.dim)).copy()


def _variance_groups(
    expansion: Expansion, config: ModelConfig,
) -> tuple[list[str], list[int | None]]:
    """Return parameter names and the parameter index of every leaf."""
    names = [OBS_PARAMETER]
    leaf_param: list[int | None] = []
    for leaf in expansion.leaves:
        if leaf.blocks.deterministic:
            leaf_param.append(None)
            continue
        key = leaf.term_key if config.variance_sharing == "shared" else str(leaf.path)
        name = f"sigma2[{key}]"
        if name not in names:
            names.append(name)
        leaf_param.append(names.index(name))
    return names, leaf_param


def _log_unobserved_levels(
    expansion: Expansion, driver_values: Mapping[str, np.ndarray], n_history: int,
) -> None:
    for name, driver in expansion.drivers.items():
        seen = set(driver_values[name][:n_history].tolist())
        for level in driver.levels:
            if level not in seen:
                logger.info(
                    "Level %r of driver %r never occurs in the history; its "
                    "regime copies are allocated but never observed",
                    level, name,
                )


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------


def synthesize(
    expansion: Expansion,
    index_map: StateIndexMap,
    n_steps: int,
    driver_values: Mapping[str, np.ndarray] | None = None,
    covariates: CovariateTable | None = None,
    config: ModelConfig | None = None,
    *,
    n_history: int | None = None,
) -> DesignMatrices:
    """Build ``G``, the ``W`` shapes and ``F`` for *n_steps* time steps.

    Parameters
    ----------
    expansion, index_map
        Output of :func:`~switchts.expansion.expand` and
        :func:`~switchts.index_map.build_index_map`.
    n_steps
        Total number of rows of ``F`` (history plus horizon).
    driver_values
        Per-driver value arrays overriding the drivers' own values.
    covariates
        Covariate table for regressor terms.
    config
        Variance-sharing policy; defaults to :class:`ModelConfig()`.
    n_history
        Length of the historical range (defaults to *n_steps*).  Missing
        data before it is a :class:`MissingCovariateError`; missing data
        after it is an ``UnknownFuture*`` error.
    """
    config = config or ModelConfig()
    n_hist = n_steps if n_history is None else n_history
    n = index_map.state_dim
    values = resolve_driver_values(expansion, n_steps, n_hist, driver_values)
    cov = normalize_covariates(covariates)
    _log_unobserved_levels(expansion, values, n_hist)

    names, leaf_param = _variance_groups(expansion, config)
    G = np.zeros((n, n))
    W_shapes = np.zeros((len(names), n, n))
    F = np.zeros((n_steps, n))
    active = activation_mask(expansion.leaves, values, n_steps)

    for i, (leaf, entry) in enumerate(zip(expansion.leaves, index_map)):
        sl = entry.slice
        blocks = leaf.blocks
        G[sl, sl] = blocks.G
        if leaf_param[i] is not None:
            W_shapes[leaf_param[i], sl, sl] += blocks.W
        rows = leaf_rows(leaf, n_steps, cov, n_hist)
        F[:, sl] = np.where(active[i][:, None], rows, 0.0)
        logger.debug(
            "Placed %s at [%d:%d] (param=%s)",
            leaf.path, entry.offset, entry.stop,
            names[leaf_param[i]] if leaf_param[i] is not None else None,
        )

    return DesignMatrices(
        G=G,
        W_shapes=W_shapes,
        parameter_names=tuple(names),
        F=F,
        active=active,
    )
