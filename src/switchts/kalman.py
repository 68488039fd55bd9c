"""Kalman filter and RTS smoother for compiled switching models.

Both recursions run as a single ``jax.lax.scan`` over time, so
:func:`log_likelihood` is jittable and differentiable in ``theta``:

```python
loglik = jax.jit(lambda th: log_likelihood(model, y, th))
grad = jax.grad(lambda th: log_likelihood(model, y, th))
```

Missing observations (``NaN`` in *y*) skip the update step.  The initial
state is diffuse: ``a0 = 0``, ``P0 = diffuse_scale * I``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

import jax
import jax.numpy as jnp
import numpy as np

from switchts.config import get_settings
from switchts.errors import CovarianceNotPositiveDefinite
from switchts.model import AssembledModel

logger = logging.getLogger(__name__)

if get_settings().enable_x64:
    # The diffuse prior needs double precision.
    jax.config.update("jax_enable_x64", True)

_LOG_2PI = math.log(2.0 * math.pi)


# ---------------------------------------------------------------------------
# Result containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FilterResult:
    """Output of :func:`kalman_filter`.

    ``pred_means[t]``/``pred_covs[t]`` are the one-step predictions of the
    state at *t*; ``means[t]``/``covs[t]`` the filtered moments after
    observing ``y[t]``.
    """

    means: np.ndarray
    covs: np.ndarray
    pred_means: np.ndarray
    pred_covs: np.ndarray
    innovations: np.ndarray
    innovation_vars: np.ndarray
    loglik: float


@dataclass(frozen=True)
class SmootherResult:
    """Output of :func:`rts_smoother`."""

    means: np.ndarray
    covs: np.ndarray


# ---------------------------------------------------------------------------
# Core recursions (pure JAX)
# ---------------------------------------------------------------------------


def _filter_scan(G, W_shapes, F, y, theta, a0, P0):
    W = jnp.tensordot(theta, W_shapes, axes=1)
    V = theta[0]

    def step(carry, inputs):
        a_pred, P_pred = carry
        f, y_t = inputs
        observed = ~jnp.isnan(y_t)
        y_safe = jnp.where(observed, y_t, 0.0)

        v = y_safe - f @ a_pred
        S = f @ P_pred @ f + V
        S_safe = jnp.where(observed, S, 1.0)
        K = P_pred @ f / S_safe

        a_filt = jnp.where(observed, a_pred + K * v, a_pred)
        P_upd = P_pred - jnp.outer(K, K) * S_safe
        P_filt = jnp.where(observed, 0.5 * (P_upd + P_upd.T), P_pred)
        ll = jnp.where(observed, -0.5 * (_LOG_2PI + jnp.log(S_safe) + v**2 / S_safe), 0.0)

        a_next = G @ a_filt
        P_next = G @ P_filt @ G.T + W
        P_next = 0.5 * (P_next + P_next.T)
        out = (a_pred, P_pred, a_filt, P_filt, jnp.where(observed, v, jnp.nan), S, ll)
        return (a_next, P_next), out

    _, outs = jax.lax.scan(step, (a0, P0), (F, y))
    return outs


def _smoother_scan(G, means, covs, pred_means, pred_covs):
    def step(carry, inputs):
        a_next_s, P_next_s = carry
        a_f, P_f, a_p_next, P_p_next = inputs
        # J = P_f G' P_p_next^{-1}
        J = jnp.linalg.solve(P_p_next, G @ P_f).T
        a_s = a_f + J @ (a_next_s - a_p_next)
        P_s = P_f + J @ (P_next_s - P_p_next) @ J.T
        P_s = 0.5 * (P_s + P_s.T)
        return (a_s, P_s), (a_s, P_s)

    last = (means[-1], covs[-1])
    xs = (means[:-1], covs[:-1], pred_means[1:], pred_covs[1:])
    _, (a_s, P_s) = jax.lax.scan(step, last, xs, reverse=True)
    return (
        jnp.concatenate([a_s, means[-1:]], axis=0),
        jnp.concatenate([P_s, covs[-1:]], axis=0),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _prepare(model: AssembledModel, y: Any) -> tuple[jnp.ndarray, ...]:
    y_arr = np.asarray(y, dtype=float).reshape(-1)
    T = y_arr.shape[0]
    if T > model.n_steps:
        raise ValueError(f"y has {T} steps but the model covers {model.n_steps}")
    a0, P0 = model.initial_state()
    return (
        jnp.asarray(model.G),
        jnp.asarray(model.W_shapes),
        jnp.asarray(model.F[:T]),
        jnp.asarray(y_arr),
        jnp.asarray(a0),
        jnp.asarray(P0),
    )


def log_likelihood(model: AssembledModel, y: Any, theta: Any) -> jnp.ndarray:
    """Gaussian log-likelihood of *y* under *model* at variances *theta*.

    Pure JAX in *theta*: safe under ``jax.jit``/``jax.grad``.  Returns
    ``-inf`` when a non-positive innovation variance occurs.
    """
    G, W_shapes, F, y_j, a0, P0 = _prepare(model, y)
    theta = jnp.asarray(theta, dtype=F.dtype)
    *_, S, ll = _filter_scan(G, W_shapes, F, y_j, theta, a0, P0)
    valid = jnp.all(jnp.where(jnp.isnan(y_j), True, S > 0))
    total = jnp.sum(ll)
    return jnp.where(valid & jnp.isfinite(total), total, -jnp.inf)


def kalman_filter(model: AssembledModel, y: Any, theta: Any) -> FilterResult:
    """Run the Kalman filter over ``y`` (length ``<= model.n_steps``).

    Raises
    ------
    CovarianceNotPositiveDefinite
        If an innovation variance is non-positive or non-finite.
    """
    theta = model.check_theta(theta)
    G, W_shapes, F, y_j, a0, P0 = _prepare(model, y)
    a_pred, P_pred, a_f, P_f, v, S, ll = _filter_scan(
        G, W_shapes, F, y_j, jnp.asarray(theta), a0, P0,
    )

    S_np = np.asarray(S)
    observed = ~np.isnan(np.asarray(y_j))
    bad = observed & ~(np.isfinite(S_np) & (S_np > 0))
    if bad.any():
        t = int(np.flatnonzero(bad)[0])
        raise CovarianceNotPositiveDefinite(
            f"innovation variance {S_np[t]:.3g} at position {t} is not positive; "
            f"theta={dict(zip(model.parameter_names, theta.tolist()))}"
        )

    loglik = float(np.sum(np.asarray(ll)))
    logger.debug("Filtered %d steps, loglik=%.4f", len(S_np), loglik)
    return FilterResult(
        means=np.asarray(a_f),
        covs=np.asarray(P_f),
        pred_means=np.asarray(a_pred),
        pred_covs=np.asarray(P_pred),
        innovations=np.asarray(v),
        innovation_vars=S_np,
        loglik=loglik,
    )


def rts_smoother(model: AssembledModel, filtered: FilterResult, theta: Any) -> SmootherResult:
    """Rauch–Tung–Striebel smoother over a :class:`FilterResult`.

    *theta* must be the variances the filter ran with; it is only
    checked here, since ``W`` enters through the stored predictions.
    """
    model.check_theta(theta)
    if filtered.means.shape[0] < 2:
        return SmootherResult(means=filtered.means, covs=filtered.covs)
    means, covs = _smoother_scan(
        jnp.asarray(model.G),
        jnp.asarray(filtered.means),
        jnp.asarray(filtered.covs),
        jnp.asarray(filtered.pred_means),
        jnp.asarray(filtered.pred_covs),
    )
    return SmootherResult(means=np.asarray(means), covs=np.asarray(covs))
