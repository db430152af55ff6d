# intelligence_engine/patterns/seasonal_decomposition.py

"""
Seasonal Decomposition Pattern

Splits a seasonal series into trend, seasonal and remainder components and
summarises the seasonal figure: which position in the cycle peaks, which one
troughs, and how strong the seasonality is relative to the remainder.

Output Format:
{
  "decomposition": {...},           // Decomposition.to_dict()
  "peakPosition": int,              // 1-based position in the cycle
  "troughPosition": int,
  "seasonalStrength": float | null  // 0 (none) .. 1 (pure seasonality)
}
"""

from typing import Any, Dict, Optional

import numpy as np

from tempora_app.core.config import AnalysisConfig
from tempora_app.core.exceptions import ConfigurationError
from tempora_app.intelligence_engine.data_structures import Decomposition, TimeSeries
from tempora_app.intelligence_engine.primitives.seasonality_analysis import (
    decompose,
    stl_decomposition,
)
from .base_pattern import Pattern



def seasonal_strength(decomposition: Decomposition) -> Optional[float]:
    """max(0, 1 - Var(remainder) / Var(seasonal + remainder)) over defined points."""
    if decomposition.mode == "multiplicative":
        seasonal = np.log(decomposition.seasonal)
        remainder = np.log(decomposition.remainder)
    else:
        seasonal = decomposition.seasonal
        remainder = decomposition.remainder
    mask = ~np.isnan(remainder)
    if mask.sum() < 2:
        return None
    total = np.var(seasonal[mask] + remainder[mask], ddof=1)
    if total == 0:
        return None
    return float(max(0.0, 1.0 - np.var(remainder[mask], ddof=1) / total))


class SeasonalDecompositionPattern(Pattern):

    PATTERN_NAME = "seasonal_decomposition"
    PATTERN_VERSION = "1.0"

    def analyze(self, series: TimeSeries, config: AnalysisConfig, method: str = "classical",
                **kwargs) -> Dict[str, Any]:
        if method == "classical":
            result = decompose(series, **config.decomposition.to_kwargs())
        elif method == "stl":
            result = stl_decomposition(series, **kwargs)
        else:
            raise ConfigurationError(f"method must be 'classical' or 'stl', got {method!r}")

        figure = result.seasonal_figure
        return {
            "decomposition": result.to_dict(),
            "peakPosition": int(np.argmax(figure)) + 1,
            "troughPosition": int(np.argmin(figure)) + 1,
            "seasonalStrength": seasonal_strength(result),
        }
