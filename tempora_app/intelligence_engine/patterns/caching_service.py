import hashlib
import threading
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np

from tempora_app.core.config import AnalysisConfig
from tempora_app.intelligence_engine.data_structures import TimeSeries
from .data_structures import PatternOutput


def series_fingerprint(
    series: TimeSeries,
    config: Optional[AnalysisConfig],
    kwargs: Optional[Mapping[str, Any]] = None,
) -> str:
    """Digest of the observations, their calendar, the settings and extra pattern inputs."""
    digest = hashlib.sha1()
    digest.update(series.values.tobytes())
    digest.update(repr((series.frequency, series.start, config)).encode("utf-8"))
    for key in sorted(kwargs or {}):
        value = kwargs[key]
        digest.update(key.encode("utf-8"))
        if isinstance(value, (list, tuple, np.ndarray)):
            digest.update(np.asarray(value, dtype=float).tobytes())
        else:
            digest.update(repr(value).encode("utf-8"))
    return digest.hexdigest()


class PatternCacheService:
    """
    In-memory caching for pattern outputs, keyed by:
     (series_id, pattern_name, fingerprint of data + configuration)

    Safe to share between the worker threads of a batch run.
    """

    def __init__(self):
        self._cache: Dict[Tuple[str, str, str], PatternOutput] = {}
        self._lock = threading.Lock()

    def store_pattern_result(self, pattern_output: PatternOutput, fingerprint: str):
        key = (pattern_output.series_id, pattern_output.pattern_name, fingerprint)
        with self._lock:
            self._cache[key] = pattern_output

    def get_cached_pattern_result(
        self,
        series_id: str,
        pattern_name: str,
        fingerprint: str
    ) -> Optional[PatternOutput]:
        with self._lock:
            return self._cache.get((series_id, pattern_name, fingerprint), None)

    def clear(self):
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
