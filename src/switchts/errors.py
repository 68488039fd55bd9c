"""Exception taxonomy for switchts.

Compile-time errors abort :func:`~switchts.model.compile` before any
artifact exists.  Synthesis errors surface when a model is extended into
a forecast horizon without the data it needs.  Estimation errors are
raised only for failures that must not be silently repaired; optimizer
non-convergence is reported on :class:`~switchts.estimation.FitResult`
instead.
"""

from __future__ import annotations


class SwitchTSError(Exception):
    """Base class for every error raised by switchts."""


# ---------------------------------------------------------------------------
# Compile-time structural errors
# ---------------------------------------------------------------------------


class CompileError(SwitchTSError, ValueError):
    """The model specification cannot be compiled."""


class InvalidHarmonics(CompileError):
    """``fourier(p, K)`` with ``K`` outside ``1 <= K <= floor(p / 2)``."""


class InvalidTermParameter(CompileError):
    """Non-positive order/period, or an otherwise malformed term."""


class UnknownTermKind(CompileError):
    """A serialized term names a kind outside the term table."""


class DuplicatePathError(CompileError):
    """Two expanded leaves resolve to the same path."""


class DuplicateDriverError(CompileError):
    """Two distinct regime drivers share one name."""


class UndefinedRegimeLevel(CompileError):
    """A driver value at some in-scope time is not one of its levels."""


class DriverLengthMismatch(CompileError):
    """A driver does not cover the time scope it is compiled against."""


class MissingCovariateError(CompileError):
    """A regressor has no (or incomplete) covariate data in history."""


# ---------------------------------------------------------------------------
# Synthesis-time data errors
# ---------------------------------------------------------------------------


class SynthesisError(SwitchTSError, ValueError):
    """Design matrices cannot be produced for the requested scope."""


class UnknownFutureDriver(SynthesisError):
    """A switched term needs driver levels beyond the known range."""


class UnknownFutureRegressor(SynthesisError):
    """A regressor needs covariate values beyond the known range."""


# ---------------------------------------------------------------------------
# Estimation / recovery errors
# ---------------------------------------------------------------------------


class EstimationError(SwitchTSError, RuntimeError):
    """Fatal failure inside the filter/smoother recursion."""


class CovarianceNotPositiveDefinite(EstimationError):
    """An innovation variance became non-positive or non-finite."""


class DecompositionMismatch(SwitchTSError, ArithmeticError):
    """Per-term contributions do not add up to the fitted value."""
