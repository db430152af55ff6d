"""
data_structures.py

Value types shared by every primitive: the TimeSeries input model and the plain
result entities (trend fits, decompositions, control charts, breakpoints and
spectra). Results expose ``to_dict()`` so a reporting layer can serialise them
without knowing numpy.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from pandas.tseries.frequencies import to_offset
from scipy.signal import find_peaks
from scipy.stats import chi2

from tempora_app.core.exceptions import ConfigurationError, InsufficientDataError

# pandas offset types -> observations per natural cycle
_PANDAS_FREQUENCIES = (
    ((pd.offsets.YearBegin, pd.offsets.YearEnd, pd.offsets.BYearBegin, pd.offsets.BYearEnd), 1),
    ((pd.offsets.QuarterBegin, pd.offsets.QuarterEnd, pd.offsets.BQuarterBegin, pd.offsets.BQuarterEnd), 4),
    ((pd.offsets.MonthBegin, pd.offsets.MonthEnd, pd.offsets.BusinessMonthBegin, pd.offsets.BusinessMonthEnd), 12),
    ((pd.offsets.Week,), 52),
    ((pd.offsets.BusinessDay,), 5),
    ((pd.offsets.Day,), 7),
    ((pd.offsets.Hour,), 24),
)


def _frequency_from_offset(code: str) -> Optional[int]:
    """Observations per natural cycle for a pandas frequency string, or None if unknown."""
    offset = to_offset(code)
    if offset.n != 1:
        return None
    for types, frequency in _PANDAS_FREQUENCIES:
        if isinstance(offset, types):
            return frequency
    return None


def _json_list(values: np.ndarray) -> List[Optional[float]]:
    return [None if (v is None or (isinstance(v, float) and math.isnan(v))) else v
            for v in np.asarray(values, dtype=float).tolist()]


def _json_float(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return None if math.isnan(value) else value


@dataclass(frozen=True, eq=False)
class TimeSeries:
    """
    An ordered, regularly spaced sequence of observations.

    Parameters
    ----------
    values : array-like
        Observations; NaN marks a missing observation.
    frequency : int, default 1
        Observations per natural cycle (12 for monthly data with a yearly cycle).
    start : (cycle, position) or int, default (1, 1)
        Calendar position of the first observation. ``position`` is 1-based, so
        ``(2010, 3)`` is March 2010 for monthly data.

    Notes
    -----
    The calendar mapping is derived from ``start`` and ``frequency``; nothing is
    stored per point. Instances are immutable: the values array is read-only and
    every transformation returns a new TimeSeries.
    """
    values: np.ndarray
    frequency: int = 1
    start: Tuple[int, int] = (1, 1)

    def __post_init__(self):
        if isinstance(self.frequency, bool) or not isinstance(self.frequency, (int, np.integer)):
            raise ConfigurationError(f"frequency must be an integer, got {self.frequency!r}")
        if self.frequency < 1:
            raise ConfigurationError(f"frequency must be >= 1, got {self.frequency}")

        try:
            arr = np.array(self.values, dtype=float)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"values must be numeric: {e}")
        if arr.ndim != 1:
            raise ConfigurationError("values must be one-dimensional")
        if arr.size == 0:
            raise InsufficientDataError("a TimeSeries needs at least one observation")
        if np.isinf(arr).any():
            raise ConfigurationError("values must be finite (use NaN for missing observations)")
        arr.setflags(write=False)

        start = self.start
        if isinstance(start, (int, np.integer)):
            start = (int(start), 1)
        if len(start) != 2:
            raise ConfigurationError(f"start must be (cycle, position), got {self.start!r}")
        cycle, position = int(start[0]), int(start[1])
        if not 1 <= position <= self.frequency:
            raise ConfigurationError(
                f"start position must be in 1..{self.frequency}, got {position}"
            )

        object.__setattr__(self, "values", arr)
        object.__setattr__(self, "frequency", int(self.frequency))
        object.__setattr__(self, "start", (cycle, position))

    def __len__(self) -> int:
        return len(self.values)

    @property
    def has_missing(self) -> bool:
        return bool(np.isnan(self.values).any())

    def time_index(self) -> np.ndarray:
        """Fractional time of each observation, e.g. 2010.0, 2010.0833, ... for monthly data."""
        cycle, position = self.start
        offsets = (position - 1 + np.arange(len(self))) / self.frequency
        return cycle + offsets

    def cycle_positions(self) -> np.ndarray:
        """0-based position within the cycle for every observation."""
        return (self.start[1] - 1 + np.arange(len(self))) % self.frequency

    def period_label(self, index: int) -> Tuple[int, int]:
        """(cycle, position) of the observation at ``index``."""
        if not 0 <= index < len(self):
            raise IndexError(f"index {index} out of range for series of length {len(self)}")
        total = self.start[1] - 1 + index
        return (self.start[0] + total // self.frequency, total % self.frequency + 1)

    def format_label(self, index: int) -> str:
        cycle, position = self.period_label(index)
        if self.frequency == 1:
            return str(cycle)
        return f"{cycle}({position})"

    def window(self, start: int, stop: Optional[int] = None) -> "TimeSeries":
        """Positional slice ``[start, stop)`` that keeps calendar alignment."""
        stop = len(self) if stop is None else stop
        if not 0 <= start < stop <= len(self):
            raise ConfigurationError(f"invalid window [{start}, {stop}) for length {len(self)}")
        return TimeSeries(self.values[start:stop], self.frequency, self.period_label(start))

    def with_values(self, values) -> "TimeSeries":
        """Same calendar, new values (length must match)."""
        values = np.asarray(values, dtype=float)
        if values.shape != self.values.shape:
            raise ConfigurationError("replacement values must have the same length")
        return TimeSeries(values, self.frequency, self.start)

    def require_length(self, minimum: int, purpose: str):
        if len(self) < minimum:
            raise InsufficientDataError(
                f"{purpose} needs at least {minimum} observations, series has {len(self)}"
            )

    def to_pandas(self) -> pd.Series:
        return pd.Series(self.values, index=pd.Index(self.time_index(), name="time"), name="value")

    @classmethod
    def from_pandas(
        cls,
        series: pd.Series,
        frequency: Optional[int] = None,
        start: Optional[Union[int, Tuple[int, int]]] = None
    ) -> "TimeSeries":
        """
        Build a TimeSeries from a pandas Series.

        When the index is a DatetimeIndex/PeriodIndex with a regular frequency, the
        cycle length and start are inferred (yearly, quarterly, monthly, weekly,
        daily, business-daily, hourly). Explicit ``frequency``/``start`` always win
        and are validated like any other; an invalid value raises rather than
        falling back to the inferred one.
        """
        index = series.index
        inferred_freq, inferred_start = None, None
        if isinstance(index, pd.PeriodIndex):
            index = index.to_timestamp()
        if isinstance(index, pd.DatetimeIndex) and len(index) >= 3:
            code = pd.infer_freq(index)
            if code is not None:
                inferred_freq = _frequency_from_offset(code)
                first = index[0]
                if inferred_freq == 12:
                    inferred_start = (first.year, first.month)
                elif inferred_freq == 4:
                    inferred_start = (first.year, first.quarter)
                elif inferred_freq == 1:
                    inferred_start = (first.year, 1)

        if frequency is None:
            frequency = inferred_freq if inferred_freq is not None else 1
        if start is None:
            start = inferred_start if inferred_start is not None else (1, 1)
        return cls(series.to_numpy(dtype=float), frequency, start)


def coerce_values(data: Union[TimeSeries, Sequence[float], np.ndarray, pd.Series]) -> np.ndarray:
    """Return the observations of ``data`` as a float array, whatever container it arrived in."""
    if isinstance(data, TimeSeries):
        return np.asarray(data.values, dtype=float)
    if isinstance(data, pd.Series):
        return data.to_numpy(dtype=float)
    arr = np.asarray(data, dtype=float)
    if arr.ndim != 1:
        raise ConfigurationError("expected a one-dimensional sequence of observations")
    return arr


# =============================================================================
# Trend fits
# =============================================================================

@dataclass
class LinearFit:
    slope: float
    intercept: float
    residual_se: float
    n: int
    r_squared: Optional[float] = None
    slope_se: Optional[float] = None

    def predict(self, x) -> np.ndarray:
        return self.intercept + self.slope * np.asarray(x, dtype=float)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "linear",
            "slope": _json_float(self.slope),
            "intercept": _json_float(self.intercept),
            "residual_se": _json_float(self.residual_se),
            "n": self.n,
            "r_squared": _json_float(self.r_squared),
            "slope_se": _json_float(self.slope_se),
        }


@dataclass
class SmoothedFit:
    x: np.ndarray
    fitted: np.ndarray
    span: float
    degree: int
    kernel: str
    robust_iterations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "smoothed",
            "x": _json_list(self.x),
            "fitted": _json_list(self.fitted),
            "span": self.span,
            "degree": self.degree,
            "kernel": self.kernel,
            "robust_iterations": self.robust_iterations,
        }


@dataclass
class QuantileFit:
    """One conditional-quantile curve per requested tau. Curves may cross."""
    taus: List[float]
    degree: int
    x: np.ndarray
    coefficients: Dict[float, np.ndarray]
    fitted: Dict[float, np.ndarray]
    x_center: float = 0.0

    def predict(self, tau: float, x) -> np.ndarray:
        coefs = self.coefficients[tau]
        x = np.asarray(x, dtype=float) - self.x_center
        return sum(c * x ** p for p, c in enumerate(coefs))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "quantile",
            "taus": list(self.taus),
            "degree": self.degree,
            "x_center": self.x_center,
            "coefficients": {str(t): _json_list(c) for t, c in self.coefficients.items()},
            "fitted": {str(t): _json_list(f) for t, f in self.fitted.items()},
        }


@dataclass
class SegmentedFit:
    segments: List[LinearFit]
    breakpoints: List[float]
    breakpoint_se: List[float]
    fitted: np.ndarray
    iterations: int
    residual_se: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": "segmented",
            "segments": [s.to_dict() for s in self.segments],
            "breakpoints": [_json_float(b) for b in self.breakpoints],
            "breakpoint_se": [_json_float(s) for s in self.breakpoint_se],
            "iterations": self.iterations,
            "residual_se": _json_float(self.residual_se),
        }


TrendFit = Union[SmoothedFit, QuantileFit, LinearFit, SegmentedFit]


# =============================================================================
# Decomposition
# =============================================================================

@dataclass
class Decomposition:
    """
    Trend, seasonal and remainder components of a series.

    ``trend`` and ``remainder`` are NaN within half a window of either boundary.
    When ``transform_lambda`` is set, the components describe the Box-Cox
    transformed series, not the raw observations.
    """
    observed: np.ndarray
    trend: np.ndarray
    seasonal: np.ndarray
    remainder: np.ndarray
    seasonal_figure: np.ndarray
    mode: str
    frequency: int
    transform_lambda: Optional[float] = None
    method: str = "classical"

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            "observed": self.observed,
            "trend": self.trend,
            "seasonal": self.seasonal,
            "remainder": self.remainder,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "mode": self.mode,
            "frequency": self.frequency,
            "transform_lambda": self.transform_lambda,
            "observed": _json_list(self.observed),
            "trend": _json_list(self.trend),
            "seasonal": _json_list(self.seasonal),
            "remainder": _json_list(self.remainder),
            "seasonal_figure": _json_list(self.seasonal_figure),
        }


# =============================================================================
# Control charts
# =============================================================================

@dataclass
class ControlChart:
    chart_type: str
    center_line: float
    statistic: np.ndarray
    ucl: np.ndarray
    lcl: np.ndarray
    out_of_control: np.ndarray
    sigma_multiplier: float
    run_signals: Optional[np.ndarray] = None

    @property
    def signal_indices(self) -> List[int]:
        flags = self.out_of_control
        if self.run_signals is not None:
            flags = flags | self.run_signals
        return [int(i) for i in np.flatnonzero(flags)]

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame({
            "statistic": self.statistic,
            "central_line": self.center_line,
            "ucl": self.ucl,
            "lcl": self.lcl,
            "out_of_control": self.out_of_control,
        })
        if self.run_signals is not None:
            df["run_signal"] = self.run_signals
        return df

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chart_type": self.chart_type,
            "center_line": _json_float(self.center_line),
            "sigma_multiplier": self.sigma_multiplier,
            "statistic": _json_list(self.statistic),
            "ucl": _json_list(self.ucl),
            "lcl": _json_list(self.lcl),
            "out_of_control": [bool(v) for v in self.out_of_control],
            "run_signals": None if self.run_signals is None else [bool(v) for v in self.run_signals],
        }


# =============================================================================
# Breakpoints
# =============================================================================

@dataclass
class SegmentSummary:
    start: int
    stop: int
    mean: float
    slope: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "stop": self.stop,
                "mean": _json_float(self.mean), "slope": _json_float(self.slope)}


@dataclass
class Breakpoint:
    """A structural break; ``index`` is the first observation of the new regime."""
    index: int
    std_error: float
    ci_lower: int
    ci_upper: int
    left: SegmentSummary
    right: SegmentSummary
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "std_error": _json_float(self.std_error),
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
            "label": self.label,
        }


@dataclass
class Breakpoints:
    breakpoints: List[Breakpoint]
    segment_model: str
    min_segment_size: int
    bic_by_count: Dict[int, float] = field(default_factory=dict)
    rss_by_count: Dict[int, float] = field(default_factory=dict)

    @property
    def n_breaks(self) -> int:
        return len(self.breakpoints)

    @property
    def indices(self) -> List[int]:
        return [b.index for b in self.breakpoints]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n_breaks": self.n_breaks,
            "segment_model": self.segment_model,
            "min_segment_size": self.min_segment_size,
            "breakpoints": [b.to_dict() for b in self.breakpoints],
            "bic_by_count": {str(m): _json_float(v) for m, v in self.bic_by_count.items()},
            "rss_by_count": {str(m): _json_float(v) for m, v in self.rss_by_count.items()},
        }


# =============================================================================
# Spectrum
# =============================================================================

@dataclass
class Spectrum:
    """
    Periodogram estimate. ``frequency`` is in cycles per observation, ascending,
    within (0, 0.5].

    Power values depend on the taper and smoothing kernel; spectra computed
    with different settings are not directly comparable in amplitude.
    """
    frequency: np.ndarray
    power: np.ndarray
    df: float
    bandwidth: float
    taper: float
    kernel_spans: Tuple[int, ...] = ()
    detrended: bool = True
    sampling_frequency: int = 1

    def confidence_interval(self, level: float = 0.95) -> Tuple[np.ndarray, np.ndarray]:
        """Chi-square interval for the true spectral density at each frequency."""
        if not 0 < level < 1:
            raise ConfigurationError(f"level must be in (0, 1), got {level}")
        alpha = 1.0 - level
        lower = self.df * self.power / chi2.ppf(1 - alpha / 2, self.df)
        upper = self.df * self.power / chi2.ppf(alpha / 2, self.df)
        return lower, upper

    def peaks(self, n_peaks: int = 1) -> List[int]:
        """Indices of local maxima of ``power``, strongest first."""
        # pad with -inf so maxima at either end of the grid count
        padded = np.concatenate([[-np.inf], self.power, [-np.inf]])
        candidates, _ = find_peaks(padded)
        candidates = candidates - 1
        order = np.argsort(-self.power[candidates], kind="stable")
        return [int(i) for i in candidates[order][:n_peaks]]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"frequency": self.frequency, "power": self.power})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frequency": _json_list(self.frequency),
            "power": _json_list(self.power),
            "df": _json_float(self.df),
            "bandwidth": _json_float(self.bandwidth),
            "taper": self.taper,
            "kernel_spans": list(self.kernel_spans),
            "detrended": self.detrended,
        }
