"""Configuration — compile-time model policy and environment settings.

:class:`ModelConfig` travels with every compiled model and fixes the
policies the compiler must not guess (variance sharing across regime
copies, the diffuse prior scale, the decomposition tolerance).

:class:`Settings` holds process-wide defaults.  Anything not passed
explicitly is read from environment variables; a ``.env`` file is
loaded automatically::

    SWITCHTS_LOG_LEVEL=INFO
    SWITCHTS_ENABLE_X64=1
    SWITCHTS_DIFFUSE_SCALE=1e7
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

_ENV_MAP = {
    "log_level": "SWITCHTS_LOG_LEVEL",
    "enable_x64": "SWITCHTS_ENABLE_X64",
    "diffuse_scale": "SWITCHTS_DIFFUSE_SCALE",
}

_TRUTHY = {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class Settings(BaseModel):
    """Process-wide defaults resolved from arguments, then the environment.

    Parameters
    ----------
    log_level : str
        Level applied by :func:`configure_logging`.
    enable_x64 : bool
        Run JAX in double precision.  The diffuse prior makes single
        precision filtering unreliable, so this defaults to ``True``.
    diffuse_scale : float
        Default variance of the diffuse initial state.
    """

    log_level: str = "WARNING"
    enable_x64: bool = True
    diffuse_scale: float = 1e6

    model_config = {"frozen": True}

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {v!r}")
        return level

    @field_validator("diffuse_scale")
    @classmethod
    def _diffuse_scale_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("diffuse_scale must be > 0")
        return v

    @classmethod
    def from_env(cls, **overrides: object) -> Settings:
        """Build settings; explicit *overrides* win over the environment."""
        load_dotenv()
        values: dict[str, object] = {}
        for key, env_var in _ENV_MAP.items():
            supplied = overrides.get(key)
            if supplied is not None:
                values[key] = supplied
                continue
            raw = os.getenv(env_var)
            if raw is None or raw == "":
                continue
            values[key] = raw.strip().lower() in _TRUTHY if key == "enable_x64" else raw
        settings = cls(**values)
        logger.debug(
            "Resolved settings: log_level=%s enable_x64=%s diffuse_scale=%g",
            settings.log_level, settings.enable_x64, settings.diffuse_scale,
        )
        return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the cached process-wide :class:`Settings`."""
    return Settings.from_env()


def configure_logging(level: str | None = None) -> None:
    """Attach a stream handler to the ``switchts`` logger.

    The library itself never configures handlers; call this from scripts
    and notebooks.  *level* defaults to ``Settings.log_level``.
    """
    pkg_logger = logging.getLogger("switchts")
    pkg_logger.setLevel((level or get_settings().log_level).upper())
    if not pkg_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        pkg_logger.addHandler(handler)


# ---------------------------------------------------------------------------
# ModelConfig
# ---------------------------------------------------------------------------


class ModelConfig(BaseModel):
    """Compile-time policy for a switching model.

    Parameters
    ----------
    variance_sharing : str
        ``"shared"`` (default) gives all regime copies of one original
        term a single variance parameter; ``"per_regime"`` gives every
        expanded copy its own.
    fixed_variances : dict
        Variance parameters held fixed during estimation, keyed by
        parameter name (``"sigma2[obs]"``, ``"sigma2[poly(1)]"``, ...).
    diffuse_scale : float
        Variance of the diffuse initial state ``P0 = diffuse_scale * I``.
    consistency_atol : float
        Absolute tolerance of the decomposition consistency check.

    Examples
    --------
    ```python
    ModelConfig()
    ModelConfig(variance_sharing="per_regime")
    ModelConfig(fixed_variances={"sigma2[daytype%S%seas(24)]": 0.0})
    ```
    """

    variance_sharing: Literal["shared", "per_regime"] = "shared"
    fixed_variances: dict[str, float] = Field(default_factory=dict)
    diffuse_scale: float = Field(default_factory=lambda: get_settings().diffuse_scale)
    consistency_atol: float = 1e-8

    model_config = {"frozen": True}

    @field_validator("fixed_variances")
    @classmethod
    def _fixed_variances_non_negative(cls, v: dict[str, float]) -> dict[str, float]:
        for name, value in v.items():
            if value < 0:
                raise ValueError(f"fixed variance {name!r} must be >= 0, got {value}")
        return v

    @field_validator("diffuse_scale")
    @classmethod
    def _diffuse_scale_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("diffuse_scale must be > 0")
        return v

    @field_validator("consistency_atol")
    @classmethod
    def _atol_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("consistency_atol must be >= 0")
        return v
