"""Variance estimation for compiled switching models.

Two routes, both driven by :func:`~switchts.kalman.log_likelihood`:

* :func:`fit_mle` — maximum likelihood over log-variances with BFGS
  (``jax.scipy.optimize.minimize``);
* :func:`fit_bayes` — NumPyro posterior over standard deviations with
  ``HalfNormal`` priors, sampled by NUTS (accurate but slow) or fitted
  by SVI with an ``AutoNormal`` guide (fast approximate).

Variances listed in ``ModelConfig.fixed_variances`` are held fixed.
Non-convergence is reported on the :class:`FitResult`, never raised.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Literal

import jax
import jax.numpy as jnp
import jax.random as jr
import numpy as np
import numpyro
import numpyro.distributions as dist
from jax.scipy.optimize import minimize
from numpyro.infer import MCMC, NUTS, SVI, Predictive, Trace_ELBO
from numpyro.infer.autoguide import AutoNormal

from switchts.errors import EstimationError
from switchts.kalman import kalman_filter, log_likelihood
from switchts.model import AssembledModel

logger = logging.getLogger(__name__)

# Status codes of jax.scipy.optimize.minimize (BFGS); any other code is a
# line search failure.
_BFGS_STATUS = {
    0: "converged",
    1: "maximum number of iterations reached",
}


@dataclass(frozen=True)
class FitResult:
    """Estimated variances plus optimiser/sampler diagnostics.

    Attributes
    ----------
    theta
        Variance vector aligned with ``parameter_names``.
    loglik
        Log-likelihood at ``theta``.
    converged
        ``False`` when the optimiser stopped early (or NUTS diverged);
        ``theta`` is then the last iterate.
    samples
        Posterior draws of each variance (Bayesian fits only).
    """

    theta: np.ndarray
    parameter_names: tuple[str, ...]
    loglik: float
    converged: bool
    n_iter: int
    status: int
    message: str
    method: str
    samples: dict[str, np.ndarray] | None = field(default=None, repr=False)

    def as_dict(self) -> dict[str, float]:
        return dict(zip(self.parameter_names, self.theta.tolist()))


def _split_parameters(model: AssembledModel) -> tuple[np.ndarray, np.ndarray]:
    """Return ``(free indices, full theta with fixed values filled in)``."""
    fixed = model.config.fixed_variances
    base = np.zeros(model.n_params)
    free = []
    for i, name in enumerate(model.parameter_names):
        if name in fixed:
            base[i] = fixed[name]
        else:
            free.append(i)
    return np.asarray(free, dtype=int), base


def default_theta0(model: AssembledModel, y: Any) -> np.ndarray:
    """Starting variances: half the sample variance on the observation,
    a tenth of it on every state parameter."""
    y_arr = np.asarray(y, dtype=float)
    scale = float(np.nanvar(y_arr)) if np.isfinite(y_arr).sum() > 1 else 1.0
    scale = scale if scale > 0 else 1.0
    theta0 = np.full(model.n_params, 0.1 * scale)
    theta0[0] = 0.5 * scale
    return theta0


# ---------------------------------------------------------------------------
# Maximum likelihood
# ---------------------------------------------------------------------------


def fit_mle(
    model: AssembledModel,
    y: Any,
    *,
    theta0: Any = None,
    maxiter: int = 500,
    gtol: float = 1e-6,
) -> FitResult:
    """Maximise the log-likelihood over the free log-variances.

    Parameters
    ----------
    model
        Compiled model (history only, or extended; *y* covers its first
        ``len(y)`` steps).
    y
        Observations; ``NaN`` marks missing values.
    theta0
        Starting variances (default :func:`default_theta0`).
    maxiter
        BFGS iteration cap.
    gtol
        Gradient-norm tolerance.

    Returns
    -------
    FitResult
        ``converged=False`` with the last iterate if BFGS stopped early.
    """
    t0 = time.perf_counter()
    free, base = _split_parameters(model)
    theta0 = default_theta0(model, y) if theta0 is None else model.check_theta(theta0)
    y_arr = np.asarray(y, dtype=float)
    n_obs = max(int(np.isfinite(y_arr).sum()), 1)

    if free.size == 0:
        loglik = kalman_filter(model, y_arr, base).loglik
        return FitResult(
            theta=base, parameter_names=model.parameter_names, loglik=loglik,
            converged=True, n_iter=0, status=0, message="no free parameters",
            method="mle",
        )

    base_j = jnp.asarray(base)
    free_j = jnp.asarray(free)

    def objective(z):
        theta = base_j.at[free_j].set(jnp.exp(z))
        return -log_likelihood(model, y_arr, theta) / n_obs

    z0 = jnp.log(jnp.maximum(jnp.asarray(theta0[free]), 1e-12))
    try:
        res = minimize(
            jax.jit(objective), z0, method="BFGS",
            options={"maxiter": maxiter, "gtol": gtol},
        )
    except Exception:
        logger.exception("MLE optimisation failed for %r", model)
        raise

    theta = base.copy()
    theta[free] = np.exp(np.asarray(res.x))
    status = int(res.status)
    converged = bool(res.success)
    message = _BFGS_STATUS.get(status, f"line search failed (status {status})")
    filtered = kalman_filter(model, y_arr, theta)
    if not converged:
        logger.warning(
            "MLE did not converge after %d iterations (%s); returning last iterate",
            int(res.nit), message,
        )
    logger.info(
        "MLE fit: loglik=%.4f, iterations=%d, converged=%s in %.2fs",
        filtered.loglik, int(res.nit), converged, time.perf_counter() - t0,
    )
    return FitResult(
        theta=theta,
        parameter_names=model.parameter_names,
        loglik=filtered.loglik,
        converged=converged,
        n_iter=int(res.nit),
        status=status,
        message=message,
        method="mle",
    )


# ---------------------------------------------------------------------------
# Bayesian
# ---------------------------------------------------------------------------


def _site_name(parameter: str) -> str:
    # "sigma2[obs]" -> "sigma[obs]"
    return "sigma" + parameter[len("sigma2"):]


def _variance_model(model, y, free, base, prior_scale):
    theta = jnp.asarray(base)
    for i in free.tolist():
        sigma = numpyro.sample(
            _site_name(model.parameter_names[i]), dist.HalfNormal(prior_scale),
        )
        theta = theta.at[i].set(sigma**2)
    numpyro.deterministic("theta", theta)
    numpyro.factor("loglik", log_likelihood(model, y, theta))


def fit_bayes(
    model: AssembledModel,
    y: Any,
    *,
    inference: Literal["nuts", "svi"] = "nuts",
    num_warmup: int = 500,
    num_samples: int = 1000,
    num_chains: int = 1,
    rng_seed: int = 0,
    prior_scale: float | None = None,
    svi_steps: int = 2000,
    svi_lr: float = 0.01,
    progress_bar: bool = False,
) -> FitResult:
    """Posterior over the free variances.

    Each free variance is ``sigma**2`` with ``sigma ~ HalfNormal(prior_scale)``;
    *prior_scale* defaults to the sample standard deviation of *y*.  The
    returned ``theta`` is the posterior median.

    Parameters
    ----------
    inference
        ``"nuts"`` for full MCMC or ``"svi"`` for variational inference.
    num_warmup, num_chains
        NUTS settings (ignored for SVI).
    num_samples
        Posterior draws kept (for SVI: draws from the fitted guide).
    svi_steps, svi_lr
        SVI optimisation steps and Adam learning rate (ignored for NUTS).
    """
    if inference not in ("nuts", "svi"):
        raise ValueError(f"Unknown inference method: {inference!r}")
    t0 = time.perf_counter()
    free, base = _split_parameters(model)
    if free.size == 0:
        raise EstimationError("fit_bayes needs at least one free variance parameter")
    y_arr = np.asarray(y, dtype=float)
    if prior_scale is None:
        prior_scale = float(np.nanstd(y_arr)) or 1.0
    model_kwargs = dict(model=model, y=y_arr, free=free, base=base, prior_scale=prior_scale)
    rng_key = jr.PRNGKey(rng_seed)

    try:
        if inference == "nuts":
            kernel = NUTS(_variance_model, target_accept_prob=0.8, max_tree_depth=10)
            mcmc = MCMC(
                kernel,
                num_warmup=num_warmup,
                num_samples=num_samples,
                num_chains=num_chains,
                progress_bar=progress_bar,
            )
            mcmc.run(rng_key, extra_fields=("diverging",), **model_kwargs)
            draws = mcmc.get_samples()
            n_div = int(np.sum(np.asarray(mcmc.get_extra_fields()["diverging"])))
            converged = n_div == 0
            status = n_div
            message = f"{n_div} divergent transitions"
            n_iter = num_warmup + num_samples

        else:
            guide = AutoNormal(_variance_model)
            optimizer = numpyro.optim.Adam(step_size=svi_lr)
            svi = SVI(_variance_model, guide, optimizer, loss=Trace_ELBO())
            svi_result = svi.run(rng_key, svi_steps, progress_bar=progress_bar, **model_kwargs)

            k1, k2 = jr.split(rng_key)
            latent = Predictive(guide, params=svi_result.params, num_samples=num_samples)(
                k1, **model_kwargs,
            )
            det = Predictive(_variance_model, posterior_samples=latent)(k2, **model_kwargs)
            draws = {**latent, **det}
            final_loss = float(np.asarray(svi_result.losses)[-1])
            converged = bool(np.isfinite(final_loss))
            status = 0 if converged else 1
            message = f"final ELBO loss {final_loss:.4f}"
            n_iter = svi_steps
    except Exception:
        logger.exception("Bayesian fit (%s) failed for %r", inference, model)
        raise

    theta_draws = np.asarray(draws["theta"])
    theta = np.median(theta_draws, axis=0)
    loglik = kalman_filter(model, y_arr, theta).loglik
    if not converged:
        logger.warning("Bayesian fit (%s) reported problems: %s", inference, message)
    logger.info(
        "Bayesian fit (%s): loglik at median=%.4f in %.2fs",
        inference, loglik, time.perf_counter() - t0,
    )
    samples = {
        name: theta_draws[:, i] for i, name in enumerate(model.parameter_names)
    }
    return FitResult(
        theta=theta,
        parameter_names=model.parameter_names,
        loglik=loglik,
        converged=converged,
        n_iter=n_iter,
        status=status,
        message=message,
        method=inference,
        samples=samples,
    )
