# intelligence_engine/patterns/structural_breaks.py

"""
Structural Breaks Pattern

Finds level (or trend) shifts in a series and reports, for each one, where it
happened, how uncertain the date is and how large the shift was.

Output Format:
{
  "nBreaks": int,
  "breakpoints": [...],        // Breakpoints.to_dict()["breakpoints"]
  "largestShift": {
    "label": str | null,
    "index": int,
    "change": float            // right segment mean - left segment mean
  } | null,
  "bicByCount": {"0": float, ...}
}
"""

from typing import Any, Dict

from tempora_app.core.config import AnalysisConfig
from tempora_app.intelligence_engine.data_structures import TimeSeries
from tempora_app.intelligence_engine.primitives.breakpoint_analysis import detect_breakpoints
from .base_pattern import Pattern


class StructuralBreaksPattern(Pattern):

    PATTERN_NAME = "structural_breaks"
    PATTERN_VERSION = "1.0"

    def analyze(self, series: TimeSeries, config: AnalysisConfig, **kwargs) -> Dict[str, Any]:
        result = detect_breakpoints(series, **config.breakpoints.to_kwargs())
        payload = result.to_dict()

        largest = None
        for bp in result.breakpoints:
            change = bp.right.mean - bp.left.mean
            if largest is None or abs(change) > abs(largest["change"]):
                largest = {"label": bp.label, "index": bp.index, "change": float(change)}

        return {
            "nBreaks": result.n_breaks,
            "breakpoints": payload["breakpoints"],
            "largestShift": largest,
            "bicByCount": {str(m): bic for m, bic in result.bic_by_count.items()},
        }
