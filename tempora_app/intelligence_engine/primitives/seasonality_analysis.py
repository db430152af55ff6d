# =============================================================================
# SeasonalityAnalysis
#
# Seasonal decomposition of a TimeSeries into trend, seasonal and remainder:
# - classical_decomposition: centred moving-average trend, seasonal indices
#   from the detrended series, remainder (additive or multiplicative)
# - decompose: dispatch on mode, including "auto-transform", which picks a
#   Box-Cox lambda first and decomposes the transformed series additively
# - stl_decomposition: loess-based STL, for comparison with the classical method
# - seasonal_subseries: values grouped by position within the cycle
#
# Dependencies:
#   - numpy as np
#   - pandas as pd
#   - statsmodels.tsa.seasonal for seasonal_decompose and STL
# =============================================================================

import logging
from typing import Tuple

import numpy as np
import pandas as pd
from statsmodels.tsa.seasonal import STL, seasonal_decompose

from tempora_app.core.config import DECOMPOSITION_MODES, validate_choice
from tempora_app.core.exceptions import ConfigurationError, InsufficientDataError
from tempora_app.intelligence_engine.data_structures import Decomposition, TimeSeries
from tempora_app.intelligence_engine.primitives.variance_stabilization import (
    box_cox_series,
    select_box_cox_lambda,
)

logger = logging.getLogger(__name__)


def _check_seasonal_series(series: TimeSeries, purpose: str):
    if not isinstance(series, TimeSeries):
        raise ConfigurationError(f"{purpose} needs a TimeSeries (its frequency defines the cycle)")
    if series.frequency < 2:
        raise ConfigurationError(f"{purpose} needs frequency >= 2, got {series.frequency}")
    series.require_length(2 * series.frequency, purpose)
    if series.has_missing:
        raise ConfigurationError(f"{purpose} does not accept missing observations")


def _seasonal_figure(seasonal: np.ndarray, series: TimeSeries) -> np.ndarray:
    """One value per calendar position (1st position first), from the tiled component."""
    positions = series.cycle_positions()
    figure = np.empty(series.frequency)
    for pos in range(series.frequency):
        figure[pos] = seasonal[np.argmax(positions == pos)]
    return figure


def classical_decomposition(series: TimeSeries, mode: str = "additive") -> Decomposition:
    """
    Classical moving-average decomposition.

    Trend is the centred moving average of length ``frequency`` (a 2 x m moving
    average when the frequency is even); the first and last ``frequency // 2``
    trend values are undefined and reported as NaN, as are the matching
    remainder values. Seasonal indices are averages of the detrended series per
    position in the cycle, centred to sum to zero (additive) or average one
    (multiplicative), then tiled to the full length.

    additive:        observed = trend + seasonal + remainder
    multiplicative:  observed = trend * seasonal * remainder
    """
    validate_choice("mode", mode, ("additive", "multiplicative"))
    _check_seasonal_series(series, "classical decomposition")
    if mode == "multiplicative" and np.any(series.values <= 0):
        raise ConfigurationError("multiplicative decomposition requires strictly positive values")

    result = seasonal_decompose(
        np.asarray(series.values, dtype=float),
        model=mode,
        period=series.frequency,
        two_sided=True,
    )
    seasonal = np.asarray(result.seasonal, dtype=float)
    return Decomposition(
        observed=np.asarray(series.values, dtype=float),
        trend=np.asarray(result.trend, dtype=float),
        seasonal=seasonal,
        remainder=np.asarray(result.resid, dtype=float),
        seasonal_figure=_seasonal_figure(seasonal, series),
        mode=mode,
        frequency=series.frequency,
    )


def decompose(
    series: TimeSeries,
    mode: str = "additive",
    lambda_method: str = "guerrero",
    lambda_bounds: Tuple[float, float] = (-1.0, 2.0),
) -> Decomposition:
    """
    Decompose ``series`` in one of three modes.

    mode="auto-transform" is meant for series whose variance grows with their
    level: a Box-Cox lambda is selected with ``lambda_method``, the series is
    transformed, and the transformed series is decomposed additively. The chosen
    lambda is reported as ``transform_lambda`` and ``observed`` holds the
    transformed values, so callers can invert with ``inv_box_cox``.
    """
    validate_choice("mode", mode, DECOMPOSITION_MODES)
    if mode != "auto-transform":
        return classical_decomposition(series, mode=mode)

    _check_seasonal_series(series, "auto-transform decomposition")
    lam = select_box_cox_lambda(series, method=lambda_method, bounds=lambda_bounds)
    transformed = box_cox_series(series, lam)
    result = classical_decomposition(transformed, mode="additive")
    result.transform_lambda = lam
    return result


def stl_decomposition(series: TimeSeries, robust: bool = False, seasonal: int = 7) -> Decomposition:
    """
    STL (seasonal-trend decomposition by loess). Unlike the classical method the
    trend is defined at every position and the seasonal pattern may drift;
    ``seasonal_figure`` is the average seasonal value per cycle position.
    """
    _check_seasonal_series(series, "STL decomposition")
    if seasonal < 3 or seasonal % 2 == 0:
        raise ConfigurationError(f"STL seasonal smoother length must be odd and >= 3, got {seasonal}")

    result = STL(np.asarray(series.values, dtype=float), period=series.frequency,
                 seasonal=seasonal, robust=robust).fit()
    seasonal_component = np.asarray(result.seasonal, dtype=float)
    figure = (
        pd.Series(seasonal_component)
        .groupby(series.cycle_positions())
        .mean()
        .reindex(range(series.frequency))
        .to_numpy()
    )
    return Decomposition(
        observed=np.asarray(series.values, dtype=float),
        trend=np.asarray(result.trend, dtype=float),
        seasonal=seasonal_component,
        remainder=np.asarray(result.resid, dtype=float),
        seasonal_figure=figure,
        mode="additive",
        frequency=series.frequency,
        method="stl",
    )


def seasonal_subseries(series: TimeSeries) -> pd.DataFrame:
    """
    Long-format table of (cycle, position, value) with the mean per position,
    i.e. the data behind a month plot.
    """
    if not isinstance(series, TimeSeries):
        raise ConfigurationError("seasonal_subseries needs a TimeSeries")
    if series.frequency < 2:
        raise InsufficientDataError("a series with frequency 1 has no seasonal sub-series")

    labels = [series.period_label(i) for i in range(len(series))]
    df = pd.DataFrame({
        "cycle": [c for c, _ in labels],
        "position": [p for _, p in labels],
        "value": series.values,
    })
    df["position_mean"] = df.groupby("position")["value"].transform("mean")
    return df
