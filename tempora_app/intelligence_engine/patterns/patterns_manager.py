import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tempora_app.core.config import AnalysisConfig
from tempora_app.intelligence_engine.data_structures import TimeSeries
from .base_pattern import Pattern
from .caching_service import PatternCacheService, series_fingerprint
from .cycle_detection import CycleDetectionPattern
from .data_structures import PatternOutput
from .rate_control import RateControlPattern
from .seasonal_decomposition import SeasonalDecompositionPattern
from .structural_breaks import StructuralBreaksPattern
from .trend_shape import TrendShapePattern

logger = logging.getLogger(__name__)


def default_patterns() -> List[Pattern]:
    return [
        TrendShapePattern(),
        SeasonalDecompositionPattern(),
        StructuralBreaksPattern(),
        CycleDetectionPattern(),
        RateControlPattern(),
    ]


class PatternsManager:
    """
    Orchestrates running multiple patterns on one series, or on many
    independent series at once.
    """

    def __init__(self, cache_svc: PatternCacheService, patterns: Optional[Sequence[Pattern]] = None):
        self.cache_svc = cache_svc
        self.patterns = list(patterns) if patterns is not None else default_patterns()

    def run_patterns_for_series(
        self,
        series_id: str,
        series: TimeSeries,
        config: Optional[AnalysisConfig] = None,
        pattern_kwargs: Optional[Mapping[str, Dict[str, Any]]] = None,
    ) -> List[PatternOutput]:
        """
        Run every configured pattern on ``series`` and return their outputs in
        pattern order. ``pattern_kwargs`` maps a pattern name to extra inputs
        for it (e.g. {"rate_control": {"exposures": [...]}}).

        Successful results are stored in the cache, so a repeated call with the
        same data and configuration is served from it. Failures are recomputed.
        """
        pattern_kwargs = pattern_kwargs or {}
        outputs = []
        for pattern in self.patterns:
            kwargs = dict(pattern_kwargs.get(pattern.PATTERN_NAME, {}))
            fingerprint = series_fingerprint(series, config, kwargs)
            cached_output = self.cache_svc.get_cached_pattern_result(
                series_id, pattern.PATTERN_NAME, fingerprint
            )
            if cached_output:
                outputs.append(cached_output)
                continue

            pattern_output = pattern.run(series_id, series, config, **kwargs)
            # only successful outputs are cached
            if not pattern_output.failed:
                self.cache_svc.store_pattern_result(pattern_output, fingerprint)
            outputs.append(pattern_output)
        return outputs

    def run_batch(
        self,
        series_by_id: Mapping[str, TimeSeries],
        config: Optional[AnalysisConfig] = None,
        pattern_kwargs_by_id: Optional[Mapping[str, Mapping[str, Dict[str, Any]]]] = None,
        max_workers: Optional[int] = None,
    ) -> Dict[str, List[PatternOutput]]:
        """
        Run the patterns over many independent series.

        With ``max_workers`` greater than 1 the series are processed on a
        thread pool; the returned dict keeps the input order either way.
        """
        pattern_kwargs_by_id = pattern_kwargs_by_id or {}
        ids = list(series_by_id)

        def _run(series_id):
            return self.run_patterns_for_series(
                series_id, series_by_id[series_id], config, pattern_kwargs_by_id.get(series_id)
            )

        if max_workers is None or max_workers <= 1:
            return {series_id: _run(series_id) for series_id in ids}

        logger.debug("Running patterns for %d series on %d threads", len(ids), max_workers)
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(_run, ids))
        return dict(zip(ids, results))
