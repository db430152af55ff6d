# =============================================================================
# ProcessControl
#
# Shewhart control charts:
# - u_chart:            rates from counts over varying exposure (e.g. infections
#                       per 1000 patient-days), limits per point
# - p_chart:            proportions from defectives over varying sample sizes
# - individuals_chart:  XmR chart for single measurements, limits from the
#                       average moving range
# - detect_run_signals: runs of consecutive points on one side of the centre
#
# A u-chart's limits narrow as exposure grows: a month with twice the
# patient-days gets limits about 0.71 times as wide. That per-point width is
# what separates it from a fixed-limit chart.
#
# Dependencies:
#   - numpy as np
#   - pandas as pd
# =============================================================================

import logging
from dataclasses import replace
from typing import Sequence, Union

import numpy as np
import pandas as pd

from tempora_app.core.config import validate_positive_int, validate_sigma_multiplier
from tempora_app.core.exceptions import (
    ConfigurationError,
    DegenerateInputError,
    InsufficientDataError,
)
from tempora_app.intelligence_engine.data_structures import ControlChart, coerce_values

logger = logging.getLogger(__name__)

# bias-correction constant d2 for moving ranges of two observations
D2_MOVING_RANGE = 1.128


def _paired_arrays(numerators, denominators, names) -> tuple:
    """
    Validate a numerator/denominator pair for a ratio chart.

    Parameters
    ----------
    numerators, denominators : sequence of float
        Counts and the exposures (or sample sizes) they were observed over.
    names : tuple of str
        Argument names used in error messages.

    Returns
    -------
    tuple of np.ndarray
        ``(numerators, denominators)`` as float arrays.
    """
    num = coerce_values(numerators)
    den = coerce_values(denominators)
    if len(num) != len(den):
        raise ConfigurationError(f"{names[0]} and {names[1]} must have equal length")
    if len(num) == 0:
        raise InsufficientDataError("a control chart needs at least one point")
    if np.isnan(num).any() or np.isnan(den).any():
        raise ConfigurationError("control chart inputs must not contain missing values")
    if np.any(num < 0):
        raise ConfigurationError(f"{names[0]} must be non-negative")
    if np.any(den <= 0):
        raise ConfigurationError(f"{names[1]} must be strictly positive")
    return num, den


def u_chart(
    counts: Sequence[float],
    exposures: Sequence[float],
    sigma_multiplier: float = 3.0,
) -> ControlChart:
    """
    u-chart for counts ``c_i`` observed over exposure ``n_i``.

    u_i = c_i / n_i,  u_bar = sum(c) / sum(n),
    limits_i = u_bar +/- z * sqrt(u_bar / n_i), with the lower limit clamped at 0.

    A point is out of control when u_i falls outside [LCL_i, UCL_i].
    """
    z = validate_sigma_multiplier(sigma_multiplier)
    c, n = _paired_arrays(counts, exposures, ("counts", "exposures"))
    total = c.sum()
    if total == 0:
        raise DegenerateInputError("no events observed; u-chart limits collapse to zero")

    u = c / n
    ubar = total / n.sum()
    sigma = np.sqrt(ubar / n)
    ucl = ubar + z * sigma
    raw_lcl = ubar - z * sigma
    lcl = np.clip(raw_lcl, 0.0, None)
    if np.any(raw_lcl < 0):
        logger.debug("Clamped %d negative lower limits to 0", int(np.sum(raw_lcl < 0)))

    return ControlChart(
        chart_type="u",
        center_line=float(ubar),
        statistic=u,
        ucl=ucl,
        lcl=lcl,
        out_of_control=(u > ucl) | (u < lcl),
        sigma_multiplier=z,
    )


def p_chart(
    defectives: Sequence[float],
    sample_sizes: Sequence[float],
    sigma_multiplier: float = 3.0,
) -> ControlChart:
    """p-chart for proportions ``d_i / n_i``; limits are clamped to [0, 1]."""
    z = validate_sigma_multiplier(sigma_multiplier)
    d, n = _paired_arrays(defectives, sample_sizes, ("defectives", "sample_sizes"))
    if np.any(d > n):
        raise ConfigurationError("defectives cannot exceed sample_sizes")
    pbar = d.sum() / n.sum()
    if pbar in (0.0, 1.0):
        raise DegenerateInputError(f"overall proportion is {pbar}; p-chart limits collapse")

    p = d / n
    sigma = np.sqrt(pbar * (1 - pbar) / n)
    ucl = np.clip(pbar + z * sigma, None, 1.0)
    lcl = np.clip(pbar - z * sigma, 0.0, None)
    return ControlChart(
        chart_type="p",
        center_line=float(pbar),
        statistic=p,
        ucl=ucl,
        lcl=lcl,
        out_of_control=(p > ucl) | (p < lcl),
        sigma_multiplier=z,
    )


def _average_moving_range(values: pd.Series) -> float:
    diffs = values.diff().abs().dropna()
    if len(diffs) == 0:
        return 0.0
    return float(diffs.mean())


def individuals_chart(
    values: Sequence[float],
    moving_range_multiplier: float = 2.66,
) -> ControlChart:
    """
    XmR chart: centre = mean, limits = mean +/- 2.66 * average moving range
    (2.66 = 3 / d2 with d2 = 1.128).
    """
    if not moving_range_multiplier > 0:
        raise ConfigurationError("moving_range_multiplier must be positive")
    x = coerce_values(values)
    if np.isnan(x).any():
        raise ConfigurationError("individuals chart does not accept missing values")
    if len(x) < 2:
        raise InsufficientDataError("an individuals chart needs at least two points")

    center = float(np.mean(x))
    avg_range = _average_moving_range(pd.Series(x))
    ucl = np.full(len(x), center + moving_range_multiplier * avg_range)
    lcl = np.full(len(x), center - moving_range_multiplier * avg_range)
    return ControlChart(
        chart_type="individuals",
        center_line=center,
        statistic=x,
        ucl=ucl,
        lcl=lcl,
        out_of_control=(x > ucl) | (x < lcl),
        sigma_multiplier=moving_range_multiplier * D2_MOVING_RANGE,
    )


def detect_run_signals(
    statistic: Sequence[float],
    center: Union[float, Sequence[float]],
    run_length: int = 8,
) -> np.ndarray:
    """
    Flag every point that belongs to a run of at least ``run_length``
    consecutive points strictly above, or strictly below, the centre line.
    """
    run_length = validate_positive_int("run_length", run_length, minimum=2)
    s = pd.Series(coerce_values(statistic))
    above = (s > center).astype(float)
    below = (s < center).astype(float)
    ends = (
        (above.rolling(window=run_length, min_periods=run_length).sum() == run_length)
        | (below.rolling(window=run_length, min_periods=run_length).sum() == run_length)
    ).astype(float)
    # spread each run-completion flag back over the run it closes
    in_run = ends[::-1].rolling(window=run_length, min_periods=1).max()[::-1]
    return in_run.to_numpy() > 0


def with_run_signals(chart: ControlChart, run_length: int = 8) -> ControlChart:
    """Copy of ``chart`` with ``run_signals`` populated."""
    signals = detect_run_signals(chart.statistic, chart.center_line, run_length=run_length)
    return replace(chart, run_signals=signals)
