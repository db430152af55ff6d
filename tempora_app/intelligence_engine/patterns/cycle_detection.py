# intelligence_engine/patterns/cycle_detection.py

"""
Cycle Detection Pattern

Looks for the dominant periodicities of a series in its (smoothed)
periodogram.

Output Format:
{
  "cycles": [
    {"frequency": float, "cycle_length": float, "cycle_length_in_cycles": float,
     "power": float, "ci_lower": float, "ci_upper": float, "bandwidth": float}
  ],
  "matchesSeasonalFrequency": bool   // strongest cycle within one bandwidth of 1/frequency
}
"""

from typing import Any, Dict

from tempora_app.core.config import AnalysisConfig
from tempora_app.intelligence_engine.data_structures import TimeSeries
from tempora_app.intelligence_engine.primitives.spectral_analysis import dominant_cycles
from .base_pattern import Pattern


class CycleDetectionPattern(Pattern):

    PATTERN_NAME = "cycle_detection"
    PATTERN_VERSION = "1.0"

    def analyze(self, series: TimeSeries, config: AnalysisConfig, n_peaks: int = 3,
                level: float = 0.95, **kwargs) -> Dict[str, Any]:
        cycles = dominant_cycles(series, n_peaks=n_peaks, level=level,
                                 **config.spectral.to_kwargs())
        matches = False
        if cycles and series.frequency > 1:
            top = cycles[0]
            matches = abs(top["frequency"] - 1.0 / series.frequency) <= top["bandwidth"]
        return {"cycles": cycles, "matchesSeasonalFrequency": bool(matches)}
