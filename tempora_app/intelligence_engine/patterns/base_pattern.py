"""
Base Pattern Class

This module defines the base Pattern class that all analysis patterns inherit from.
It provides the standard run/analyze structure, input validation and the
conversion of analysis failures into tagged results.
"""

import logging
from typing import Any, Dict, Optional

from tempora_app.core.config import AnalysisConfig
from tempora_app.core.exceptions import ConfigurationError, TemporaError
from tempora_app.intelligence_engine.data_structures import TimeSeries
from .data_structures import PatternOutput

logger = logging.getLogger(__name__)


class Pattern:
    """
    Base class for all analysis patterns.

    Subclasses set PATTERN_NAME / PATTERN_VERSION and implement ``analyze``,
    which returns the JSON-friendly results dictionary and may raise any
    TemporaError.
    """

    PATTERN_NAME = "base_pattern"
    PATTERN_VERSION = "1.0"

    def run(self,
            series_id: str,
            series: TimeSeries,
            config: Optional[AnalysisConfig] = None,
            **kwargs) -> PatternOutput:
        """
        Execute the pattern analysis and return a standardized PatternOutput.

        Parameters
        ----------
        series_id : str
            Identifier of the series being analyzed
        series : TimeSeries
            The observations
        config : AnalysisConfig, optional
            Per-operation settings; defaults are used when omitted
        **kwargs
            Additional pattern-specific inputs

        Returns
        -------
        PatternOutput
            Output with the analysis results, or a tagged failure if the
            analysis raised a TemporaError. Any other exception propagates.
        """
        config = config if config is not None else AnalysisConfig()
        try:
            self.validate_series(series)
            results = self.analyze(series, config, **kwargs)
        except TemporaError as exc:
            return self.handle_failure(series_id, exc)

        return PatternOutput(
            pattern_name=self.PATTERN_NAME,
            pattern_version=self.PATTERN_VERSION,
            series_id=series_id,
            results=results,
        )

    def analyze(self, series: TimeSeries, config: AnalysisConfig, **kwargs) -> Dict[str, Any]:
        raise NotImplementedError

    def validate_series(self, series: TimeSeries) -> bool:
        """
        Raises
        ------
        ConfigurationError
            If ``series`` is not a TimeSeries.
        """
        if not isinstance(series, TimeSeries):
            raise ConfigurationError(
                f"{self.PATTERN_NAME} expects a TimeSeries, got {type(series).__name__}"
            )
        return True

    def handle_failure(self, series_id: str, error: TemporaError) -> PatternOutput:
        """
        Create a standardized PatternOutput for an analysis that could not be
        completed (too little data, degenerate input, no convergence, ...).
        """
        logger.info("%s failed for series %s: %s", self.PATTERN_NAME, series_id, error)
        return PatternOutput(
            pattern_name=self.PATTERN_NAME,
            pattern_version=self.PATTERN_VERSION,
            series_id=series_id,
            results={"error": {"type": type(error).__name__, "message": str(error)}},
        )
