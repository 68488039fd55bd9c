"""Term library — the atomic structural terms of a switching model.

Each term kind contributes a fixed-size block to the state vector, with
its own transition block ``G``, observation row template ``F`` and
unit-scaled process-noise block ``W``.  The set of kinds is closed::

    Polynomial(order)                  # poly(n)
    SeasonalFactor(period)             # seas(p)
    SeasonalHarmonic(period, harmonics) # fourier(p, K)
    Regressor(name)                    # bare identifier

and :func:`term_blocks` dispatches on the kind through a fixed table
rather than through subclass hooks.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Literal

import numpy as np

from switchts.errors import InvalidHarmonics, InvalidTermParameter, UnknownTermKind


# ---------------------------------------------------------------------------
# Term specifications
# ---------------------------------------------------------------------------


def _is_int(value: Any) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


@dataclass(frozen=True)
class Polynomial:
    """Integrated random-walk trend of the given order.

    ``order=1`` is a local level, ``order=2`` a local linear trend, and
    so on.  Only the highest-order state receives process noise.
    """

    order: int
    kind: ClassVar[str] = "poly"

    def __post_init__(self) -> None:
        if not _is_int(self.order) or self.order < 1:
            raise InvalidTermParameter(
                f"{self.label}: order must be an integer >= 1, got {self.order!r}"
            )

    @property
    def label(self) -> str:
        return f"poly({self.order})"

    @property
    def dim(self) -> int:
        return self.order


@dataclass(frozen=True)
class SeasonalFactor:
    """Sum-to-zero dummy seasonality with ``period - 1`` free factors."""

    period: int
    kind: ClassVar[str] = "seas"

    def __post_init__(self) -> None:
        if not _is_int(self.period) or self.period < 2:
            raise InvalidTermParameter(
                f"{self.label}: period must be an integer >= 2, got {self.period!r}"
            )

    @property
    def label(self) -> str:
        return f"seas({self.period})"

    @property
    def dim(self) -> int:
        return self.period - 1


@dataclass(frozen=True)
class SeasonalHarmonic:
    """Trigonometric seasonality: one sine/cosine pair per harmonic.

    Parameters
    ----------
    period : float
        Length of one seasonal cycle in time steps (may be fractional,
        e.g. ``365.25``).
    harmonics : int
        Number of harmonics *K*, with ``1 <= K <= floor(period / 2)``.
    """

    period: float
    harmonics: int
    kind: ClassVar[str] = "fourier"

    def __post_init__(self) -> None:
        if not self.period > 0:
            raise InvalidTermParameter(
                f"{self.label}: period must be > 0, got {self.period!r}"
            )
        max_k = math.floor(self.period / 2)
        if not _is_int(self.harmonics) or not 1 <= self.harmonics <= max_k:
            raise InvalidHarmonics(
                f"{self.label}: harmonics must satisfy 1 <= K <= floor(period/2) = "
                f"{max_k}, got {self.harmonics!r}"
            )

    @property
    def label(self) -> str:
        period = int(self.period) if float(self.period).is_integer() else self.period
        return f"fourier({period},{self.harmonics})"

    @property
    def dim(self) -> int:
        return 2 * self.harmonics


@dataclass(frozen=True)
class Regressor:
    """Coefficient on an external covariate series.

    A static regressor (the default) is deterministic: its coefficient
    persists with zero process noise.  ``dynamic=True`` lets the
    coefficient drift as a random walk.
    """

    name: str
    dynamic: bool = False
    kind: ClassVar[str] = "reg"

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise InvalidTermParameter(
                f"regressor name must be a non-empty string, got {self.name!r}"
            )

    @property
    def label(self) -> str:
        return self.name

    @property
    def dim(self) -> int:
        return 1


TermSpec = Polynomial | SeasonalFactor | SeasonalHarmonic | Regressor


# ---------------------------------------------------------------------------
# Matrix blocks
# ---------------------------------------------------------------------------


RowKind = Literal["constant", "phase", "covariate"]


@dataclass(frozen=True)
class TermBlocks:
    """State-space blocks contributed by one term.

    Attributes
    ----------
    dim
        Number of states.
    G
        ``(dim, dim)`` transition block.
    F
        ``(dim,)`` observation row template.  Only meaningful as-is when
        ``row_kind == "constant"``; phase and covariate rows are resolved
        per time step by the synthesizer.
    W
        ``(dim, dim)`` unit-scaled process-noise block.
    row_kind
        How the observation row varies over time.
    """

    dim: int
    G: np.ndarray
    F: np.ndarray
    W: np.ndarray
    row_kind: RowKind = "constant"

    @property
    def deterministic(self) -> bool:
        """``True`` when the block receives no process noise."""
        return not np.any(self.W)


def _polynomial_blocks(term: Polynomial) -> TermBlocks:
    n = term.order
    G = np.eye(n) + np.eye(n, k=1)
    F = np.zeros(n)
    F[0] = 1.0
    W = np.zeros((n, n))
    W[-1, -1] = 1.0
    return TermBlocks(dim=n, G=G, F=F, W=W)


def _seasonal_factor_blocks(term: SeasonalFactor) -> TermBlocks:
    """Persistent factors (``G = I``, every factor driven by unit noise).

    Unlike the textbook dummy-seasonal form, where ``G`` rotates the
    factors cyclically and only the leading one receives noise, the
    rotation here lives in the phase-dependent observation row
    (:func:`seasonal_factor_row`), so ``G`` stays constant across regimes.
    """
    d = term.dim
    return TermBlocks(
        dim=d,
        G=np.eye(d),
        F=seasonal_factor_row(term.period, 0),
        W=np.eye(d),
        row_kind="phase",
    )


def _seasonal_harmonic_blocks(term: SeasonalHarmonic) -> TermBlocks:
    d = term.dim
    G = np.zeros((d, d))
    for k in range(1, term.harmonics + 1):
        lam = 2.0 * np.pi * k / term.period
        c, s = np.cos(lam), np.sin(lam)
        i = 2 * (k - 1)
        G[i:i + 2, i:i + 2] = [[c, s], [-s, c]]
    F = np.zeros(d)
    F[0::2] = 1.0
    return TermBlocks(dim=d, G=G, F=F, W=np.eye(d))


def _regressor_blocks(term: Regressor) -> TermBlocks:
    W = np.eye(1) if term.dynamic else np.zeros((1, 1))
    return TermBlocks(
        dim=1, G=np.eye(1), F=np.ones(1), W=W, row_kind="covariate",
    )


_BLOCK_TABLE: dict[type, Callable[[Any], TermBlocks]] = {
    Polynomial: _polynomial_blocks,
    SeasonalFactor: _seasonal_factor_blocks,
    SeasonalHarmonic: _seasonal_harmonic_blocks,
    Regressor: _regressor_blocks,
}


def term_blocks(term: TermSpec) -> TermBlocks:
    """Return the fixed state-space blocks for *term*."""
    try:
        builder = _BLOCK_TABLE[type(term)]
    except KeyError:
        raise UnknownTermKind(
            f"Unknown term kind: {type(term).__name__}. "
            f"Available: {sorted(cls.kind for cls in _BLOCK_TABLE)}"
        ) from None
    return builder(term)


def seasonal_factor_row(period: int, t: int) -> np.ndarray:
    """Observation row of a ``seas(period)`` block at position *t*.

    Phases ``0 .. period-2`` select their own factor; the last phase
    observes minus the sum of all free factors.
    """
    phase = t % period
    if phase == period - 1:
        return -np.ones(period - 1)
    row = np.zeros(period - 1)
    row[phase] = 1.0
    return row


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

_KIND_TABLE: dict[str, type] = {cls.kind: cls for cls in _BLOCK_TABLE}


def to_dict(term: TermSpec) -> dict[str, Any]:
    """Serialize *term* to a JSON-compatible dict."""
    if isinstance(term, Polynomial):
        params: dict[str, Any] = {"order": term.order}
    elif isinstance(term, SeasonalFactor):
        params = {"period": term.period}
    elif isinstance(term, SeasonalHarmonic):
        params = {"period": term.period, "harmonics": term.harmonics}
    elif isinstance(term, Regressor):
        params = {"name": term.name, "dynamic": term.dynamic}
    else:
        raise UnknownTermKind(f"Unknown term kind: {type(term).__name__}")
    return {"type": term.kind, "params": params}


def term_from_dict(data: dict[str, Any]) -> TermSpec:
    """Deserialize a term produced by :func:`to_dict`."""
    type_name = data["type"]
    if type_name not in _KIND_TABLE:
        raise UnknownTermKind(
            f"Unknown term kind: {type_name!r}. Available: {sorted(_KIND_TABLE)}"
        )
    return _KIND_TABLE[type_name](**data.get("params", {}))
