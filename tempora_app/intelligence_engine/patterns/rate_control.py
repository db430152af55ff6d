# intelligence_engine/patterns/rate_control.py

"""
Rate Control Pattern

Statistical process control for a monitored series. With ``exposures`` the
series is read as event counts and a u-chart of rates is drawn; without, an
individuals (XmR) chart of the values themselves. Runs of consecutive points
on one side of the centre line are flagged alongside points outside the limits.

Output Format:
{
  "chart": {...},                 // ControlChart.to_dict()
  "signalIndices": [int],         // outside limits or part of a long run
  "signalLabels": [str],
  "inControl": bool
}
"""

from typing import Any, Dict, Optional, Sequence

from tempora_app.core.config import AnalysisConfig
from tempora_app.core.exceptions import ConfigurationError
from tempora_app.intelligence_engine.data_structures import TimeSeries
from tempora_app.intelligence_engine.primitives.process_control import (
    individuals_chart,
    u_chart,
    with_run_signals,
)
from .base_pattern import Pattern


class RateControlPattern(Pattern):

    PATTERN_NAME = "rate_control"
    PATTERN_VERSION = "1.0"

    def analyze(self, series: TimeSeries, config: AnalysisConfig,
                exposures: Optional[Sequence[float]] = None, **kwargs) -> Dict[str, Any]:
        settings = config.control_chart
        if exposures is not None:
            if len(exposures) != len(series):
                raise ConfigurationError("exposures must have one entry per observation")
            chart = u_chart(series.values, exposures, sigma_multiplier=settings.sigma_multiplier)
        else:
            chart = individuals_chart(series.values)

        if settings.run_length is not None and len(series) >= settings.run_length:
            chart = with_run_signals(chart, run_length=settings.run_length)

        signals = chart.signal_indices
        return {
            "chart": chart.to_dict(),
            "signalIndices": signals,
            "signalLabels": [series.format_label(i) for i in signals],
            "inControl": not signals,
        }
