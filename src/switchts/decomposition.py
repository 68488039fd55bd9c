"""Decomposition — recover per-term contributions from posterior states.

Because inactive regime copies have all-zero observation rows, the
contribution of a term at time *t* is simply ``F_t[s] @ state_t[s]``
summed over the slices *s* of its copies.  The sum over terms must equal
the fitted value ``F_t @ state_t``; a mismatch means the states and the
model do not belong together and raises :class:`DecompositionMismatch`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd

from switchts.errors import DecompositionMismatch
from switchts.model import AssembledModel
from switchts.synthesizer import leaf_rows

logger = logging.getLogger(__name__)

# Relative slack on top of the absolute tolerance: large series lose a
# few ulps when contributions are summed in a different order.
_RTOL = 1e-10


@dataclass(frozen=True)
class Decomposition:
    """Per-term breakdown of a fitted series.

    Attributes
    ----------
    components
        One column per term key.
    fitted
        ``F_t @ state_t``.
    std
        Per-term standard deviations (only with covariances).
    inactive
        Per-path template evaluation of switched copies, ignoring
        activation (only with ``include_inactive=True``).
    """

    components: pd.DataFrame
    fitted: pd.Series
    std: pd.DataFrame | None = None
    inactive: pd.DataFrame | None = None

    def to_frame(self) -> pd.DataFrame:
        """All series side by side: terms, ``fitted``, ``std[...]``, inactive paths."""
        parts = [self.components, self.fitted.rename("fitted").to_frame()]
        if self.std is not None:
            parts.append(self.std.add_prefix("std[").add_suffix("]"))
        if self.inactive is not None:
            parts.append(self.inactive)
        return pd.concat(parts, axis=1)


def _unpack_states(states: Any, covariances: Any) -> tuple[np.ndarray, np.ndarray | None]:
    # Filter and smoother results carry means and covs together.
    if hasattr(states, "means"):
        if covariances is None:
            covariances = getattr(states, "covs", None)
        states = states.means
    means = np.asarray(states, dtype=float)
    covs = None if covariances is None else np.asarray(covariances, dtype=float)
    return means, covs


def _group_masks(model: AssembledModel) -> dict[str, np.ndarray]:
    masks: dict[str, np.ndarray] = {}
    for key, entries in model.index_map.by_term_key().items():
        mask = np.zeros(model.state_dim, dtype=bool)
        for entry in entries:
            mask[entry.slice] = True
        masks[key] = mask
    return masks


def decompose(
    model: AssembledModel,
    states: Any,
    covariances: Any = None,
    *,
    include_inactive: bool = False,
    atol: float | None = None,
) -> Decomposition:
    """Split posterior states into per-term contributions.

    Parameters
    ----------
    model
        The model the states were estimated with (or an extension of it).
    states
        ``(T, state_dim)`` state means, or a filter/smoother result with
        ``means`` and ``covs``.  ``T`` may be shorter than
        ``model.n_steps``; the first ``T`` rows of ``F`` are used.
    covariances
        Optional ``(T, state_dim, state_dim)`` covariances; enables the
        ``std`` frame.
    include_inactive
        Also evaluate every switched copy on every step, regardless of
        whether its regime is active.
    atol
        Tolerance of the consistency check; defaults to
        ``model.config.consistency_atol``.

    Examples
    --------
    ```python
    smoothed = rts_smoother(model, kalman_filter(model, y, theta), theta)
    dec = decompose(model, smoothed)
    dec.components["daytype%S%fourier(24,3)"]
    ```
    """
    means, covs = _unpack_states(states, covariances)
    if means.ndim != 2 or means.shape[1] != model.state_dim:
        raise ValueError(
            f"states must have shape (T, {model.state_dim}), got {means.shape}"
        )
    T = means.shape[0]
    if T > model.n_steps:
        raise ValueError(f"states cover {T} steps but the model only {model.n_steps}")
    if covs is not None and covs.shape != (T, model.state_dim, model.state_dim):
        raise ValueError(
            f"covariances must have shape ({T}, {model.state_dim}, {model.state_dim}), "
            f"got {covs.shape}"
        )
    atol = model.config.consistency_atol if atol is None else atol
    F = np.asarray(model.F[:T])
    index = model.time_index[:T]

    weighted = F * means
    masks = _group_masks(model)
    components = pd.DataFrame(
        {key: weighted[:, mask].sum(axis=1) for key, mask in masks.items()},
        index=index,
    )
    fitted = pd.Series(weighted.sum(axis=1), index=index, name="fitted")

    gap = np.abs(components.to_numpy().sum(axis=1) - fitted.to_numpy())
    limit = atol + _RTOL * np.abs(fitted.to_numpy())
    bad = ~(gap <= limit)
    if bad.any():
        t = int(np.flatnonzero(bad)[0])
        raise DecompositionMismatch(
            f"term contributions do not add up to the fitted value at position {t}: "
            f"gap {gap[t]:.3g} exceeds tolerance {limit[t]:.3g}"
        )

    std = None
    if covs is not None:
        std_cols = {}
        for key, mask in masks.items():
            Fg = np.where(mask[None, :], F, 0.0)
            var = np.einsum("ti,tij,tj->t", Fg, covs, Fg)
            std_cols[key] = np.sqrt(np.clip(var, 0.0, None))
        std = pd.DataFrame(std_cols, index=index)

    inactive = None
    if include_inactive:
        cols = {}
        for leaf, entry in zip(model.leaves, model.index_map):
            if not leaf.path.switched:
                continue
            rows = leaf_rows(leaf, T, model.covariates, min(T, model.n_history))
            cols[str(leaf.path)] = np.einsum("ti,ti->t", rows, means[:, entry.slice])
        inactive = pd.DataFrame(cols, index=index)

    logger.debug("Decomposed %d steps into %d terms", T, len(masks))
    return Decomposition(components=components, fitted=fitted, std=std, inactive=inactive)


# ---------------------------------------------------------------------------
# Forecast assembly
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StateForecast:
    """Predictive moments over a forecast horizon.

    ``frame`` holds ``mean``, ``variance`` and ``std`` of the observation;
    ``components`` the expected contribution of every term.
    """

    frame: pd.DataFrame
    components: pd.DataFrame
    state_means: np.ndarray
    state_covs: np.ndarray


def forecast_from_state(
    model: AssembledModel,
    mean: np.ndarray,
    cov: np.ndarray,
    theta: Any,
) -> StateForecast:
    """Propagate the last filtered state through *model*'s horizon.

    *model* must be an :func:`~switchts.model.extend`-ed model; *mean* and
    *cov* are the filtered moments at the final historical step.
    """
    if model.horizon < 1:
        raise ValueError("model has no forecast horizon; call extend() first")
    theta = model.check_theta(theta)
    G, W, V = np.asarray(model.G), model.W(theta), model.V(theta)
    a = np.asarray(mean, dtype=float).reshape(model.state_dim)
    P = np.asarray(cov, dtype=float).reshape(model.state_dim, model.state_dim)

    H = model.horizon
    means = np.zeros((H, model.state_dim))
    covs = np.zeros((H, model.state_dim, model.state_dim))
    y_mean = np.zeros(H)
    y_var = np.zeros(H)
    for h in range(H):
        a = G @ a
        P = G @ P @ G.T + W
        P = 0.5 * (P + P.T)
        f = model.F[model.n_history + h]
        means[h], covs[h] = a, P
        y_mean[h] = f @ a
        y_var[h] = f @ P @ f + V

    index = model.time_index[model.n_history:]
    F_future = np.asarray(model.F[model.n_history:])
    weighted = F_future * means
    components = pd.DataFrame(
        {key: weighted[:, mask].sum(axis=1) for key, mask in _group_masks(model).items()},
        index=index,
    )
    frame = pd.DataFrame(
        {"mean": y_mean, "variance": y_var, "std": np.sqrt(y_var)}, index=index,
    )
    return StateForecast(frame=frame, components=components, state_means=means, state_covs=covs)
