# intelligence_engine/patterns/trend_shape.py

"""
Trend Shape Pattern

Describes the long-run shape of a series against its fractional time index:
a loess smooth for the shape, a straight line for the overall direction,
quantile lines for how the spread moves, and, when starting breakpoints are
configured, a segmented (broken-line) fit.

Output Format:
{
  "direction": "up" | "down" | "stable",
  "linear": {...},           // LinearFit.to_dict(); slope is per cycle
  "smooth": {...},           // SmoothedFit.to_dict()
  "quantiles": {...},        // QuantileFit.to_dict()
  "spreadChange": float,     // slope(upper tau) - slope(lower tau)
  "segmented": {...} | null  // SegmentedFit.to_dict()
}
"""

from typing import Any, Dict

from tempora_app.core.config import AnalysisConfig
from tempora_app.intelligence_engine.data_structures import TimeSeries
from tempora_app.intelligence_engine.primitives.trend_analysis import (
    classify_trend,
    trend_from_series,
)
from .base_pattern import Pattern


class TrendShapePattern(Pattern):

    PATTERN_NAME = "trend_shape"
    PATTERN_VERSION = "1.0"

    def analyze(self, series: TimeSeries, config: AnalysisConfig, slope_threshold: float = 0.0,
                **kwargs) -> Dict[str, Any]:
        linear = trend_from_series(series, "ols")
        smooth = trend_from_series(series, "loess", **config.loess.to_kwargs())
        quantiles = trend_from_series(series, "quantile", **config.quantile.to_kwargs())

        spread_change = None
        if quantiles.degree >= 1 and len(quantiles.taus) >= 2:
            low, high = quantiles.taus[0], quantiles.taus[-1]
            spread_change = float(quantiles.coefficients[high][1] - quantiles.coefficients[low][1])

        segmented = None
        if config.segmented.psi_init is not None:
            segmented = trend_from_series(series, "segmented", **config.segmented.to_kwargs()).to_dict()

        return {
            "direction": classify_trend(linear, slope_threshold),
            "linear": linear.to_dict(),
            "smooth": smooth.to_dict(),
            "quantiles": quantiles.to_dict(),
            "spreadChange": spread_change,
            "segmented": segmented,
        }
