"""switchts — switching linear Gaussian state-space models from structural terms."""

__version__ = "0.1.0"

from switchts.config import ModelConfig, Settings, configure_logging, get_settings
from switchts.errors import (
    SwitchTSError,
    CompileError,
    InvalidHarmonics,
    InvalidTermParameter,
    UnknownTermKind,
    DuplicatePathError,
    DuplicateDriverError,
    UndefinedRegimeLevel,
    DriverLengthMismatch,
    MissingCovariateError,
    SynthesisError,
    UnknownFutureDriver,
    UnknownFutureRegressor,
    EstimationError,
    CovarianceNotPositiveDefinite,
    DecompositionMismatch,
)
from switchts.terms import (
    Polynomial,
    SeasonalFactor,
    SeasonalHarmonic,
    Regressor,
    TermBlocks,
    term_blocks,
)
from switchts.tree import (
    RegimeDriver,
    Leaf,
    Sum,
    Switch,
    poly,
    seas,
    fourier,
    reg,
    switch,
)
from switchts.expansion import LeafPath, ExpandedLeaf, Expansion, expand, activation_mask
from switchts.index_map import IndexEntry, StateIndexMap, build_index_map
from switchts.synthesizer import OBS_PARAMETER, DesignMatrices, synthesize
from switchts.model import AssembledModel, compile, compile_model, extend
from switchts.decomposition import Decomposition, StateForecast, decompose, forecast_from_state
from switchts.kalman import FilterResult, SmootherResult, kalman_filter, log_likelihood, rts_smoother
from switchts.estimation import FitResult, fit_bayes, fit_mle
from switchts.data import TimeSeriesData
from switchts.calendar import calendar_driver, day_type, holiday_flags
from switchts.forecaster import SwitchingForecaster
from switchts.backtester import Backtester, BacktestResult, BacktestSummary
