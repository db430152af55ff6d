import json

import numpy as np
import pytest

from tempora_app.core.config import AnalysisConfig, ControlChartConfig, SegmentedConfig
from tempora_app.core.exceptions import InsufficientDataError
from tempora_app.intelligence_engine.data_structures import TimeSeries
from tempora_app.intelligence_engine.patterns.base_pattern import Pattern
from tempora_app.intelligence_engine.patterns.caching_service import PatternCacheService
from tempora_app.intelligence_engine.patterns.cycle_detection import CycleDetectionPattern
from tempora_app.intelligence_engine.patterns.patterns_manager import PatternsManager
from tempora_app.intelligence_engine.patterns.rate_control import RateControlPattern
from tempora_app.intelligence_engine.patterns.seasonal_decomposition import SeasonalDecompositionPattern
from tempora_app.intelligence_engine.patterns.structural_breaks import StructuralBreaksPattern
from tempora_app.intelligence_engine.patterns.trend_shape import TrendShapePattern


def _monthly_series(n_years=5):
    t = np.arange(12 * n_years)
    values = 100 + 0.8 * t + 10 * np.sin(2 * np.pi * t / 12) + 0.5 * np.cos(1.3 * t)
    return TimeSeries(values, frequency=12, start=(2015, 1))


def _step_series():
    y = np.r_[np.full(36, 20.0), np.full(36, 35.0)] + 0.3 * np.cos(np.arange(72) * 2.0)
    return TimeSeries(y, frequency=12, start=(2018, 1))


def test_seasonal_decomposition_pattern():
    out = SeasonalDecompositionPattern().run("sales", _monthly_series())
    assert not out.failed
    assert out.pattern_name == "seasonal_decomposition"
    assert out.results["peakPosition"] == 4
    assert out.results["seasonalStrength"] > 0.9


def test_seasonal_decomposition_pattern_stl():
    out = SeasonalDecompositionPattern().run("sales", _monthly_series(), method="stl")
    assert out.results["decomposition"]["method"] == "stl"


def test_failure_is_tagged():
    annual = TimeSeries(np.arange(10.0), frequency=1)
    out = SeasonalDecompositionPattern().run("annual", annual)
    assert out.failed
    assert out.results["error"]["type"] == "ConfigurationError"
    assert "frequency" in out.results["error"]["message"]


def test_non_series_input_is_tagged():
    out = StructuralBreaksPattern().run("raw", [1.0, 2.0, 3.0])
    assert out.results["error"]["type"] == "ConfigurationError"


class _Exploding(Pattern):
    PATTERN_NAME = "exploding"

    def analyze(self, series, config, **kwargs):
        raise RuntimeError("bug")


class _TooShort(Pattern):
    PATTERN_NAME = "too_short"

    def analyze(self, series, config, **kwargs):
        raise InsufficientDataError("needs more")


def test_only_toolkit_errors_are_tagged():
    ts = TimeSeries([1.0, 2.0])
    assert _TooShort().run("s", ts).results["error"]["type"] == "InsufficientDataError"
    with pytest.raises(RuntimeError):
        _Exploding().run("s", ts)


def test_structural_breaks_pattern():
    out = StructuralBreaksPattern().run("signups", _step_series())
    assert out.results["nBreaks"] == 1
    shift = out.results["largestShift"]
    assert shift["change"] == pytest.approx(15.0, abs=0.5)
    assert shift["label"] == "2021(1)"


def test_cycle_detection_pattern():
    t = np.arange(240)
    ts = TimeSeries(np.sin(2 * np.pi * t / 12), frequency=12)
    out = CycleDetectionPattern().run("wave", ts, n_peaks=2)
    assert out.results["matchesSeasonalFrequency"]
    assert out.results["cycles"][0]["cycle_length"] == pytest.approx(12.0, rel=0.05)


def test_trend_shape_pattern():
    out = TrendShapePattern().run("sales", _monthly_series())
    assert out.results["direction"] == "up"
    assert out.results["linear"]["slope"] == pytest.approx(0.8 * 12, rel=0.15)
    assert out.results["segmented"] is None
    assert out.results["spreadChange"] is not None


def test_trend_shape_pattern_with_segmented_fit():
    t = np.arange(96.0)
    values = np.where(t < 48, t, 48 + 3 * (t - 48)) + 0.2 * np.sin(1.7 * t)
    ts = TimeSeries(values, frequency=12, start=(2010, 1))
    config = AnalysisConfig(segmented=SegmentedConfig(psi_init=(2013.5,), max_iter=50))
    out = TrendShapePattern().run("usage", ts, config)
    assert not out.failed
    assert out.results["segmented"]["breakpoints"][0] == pytest.approx(2014.0, abs=0.1)


def test_rate_control_pattern():
    exposures = np.full(24, 1000.0)
    counts = np.full(24, 20.0)
    counts[10] = 60.0
    ts = TimeSeries(counts, frequency=12, start=(2020, 1))
    out = RateControlPattern().run("infections", ts, exposures=exposures)
    assert out.results["chart"]["chart_type"] == "u"
    assert 10 in out.results["signalIndices"]
    assert "2020(11)" in out.results["signalLabels"]
    assert not out.results["inControl"]


def test_rate_control_pattern_without_exposure_uses_individuals_chart():
    out = RateControlPattern().run("latency", _step_series())
    assert out.results["chart"]["chart_type"] == "individuals"
    # a level shift shows up as long runs on either side of the mean
    assert not out.results["inControl"]


def test_manager_runs_all_patterns_and_caches():
    cache = PatternCacheService()
    manager = PatternsManager(cache)
    ts = _monthly_series()
    first = manager.run_patterns_for_series("sales", ts)
    assert [o.pattern_name for o in first] == [
        "trend_shape", "seasonal_decomposition", "structural_breaks", "cycle_detection", "rate_control",
    ]
    assert len(cache) == 5
    second = manager.run_patterns_for_series("sales", ts)
    assert all(a is b for a, b in zip(first, second))
    # different configuration is a different cache entry
    manager.run_patterns_for_series("sales", ts, AnalysisConfig(control_chart=ControlChartConfig(run_length=9)))
    assert len(cache) == 10


def test_manager_does_not_cache_failures():
    cache = PatternCacheService()
    manager = PatternsManager(cache, [StructuralBreaksPattern()])
    short = TimeSeries([1.0, 2.0, 3.0])
    first = manager.run_patterns_for_series("tiny", short)
    assert first[0].failed
    assert len(cache) == 0
    second = manager.run_patterns_for_series("tiny", short)
    assert second[0] is not first[0]
    assert len(cache) == 0


def test_manager_batch_keeps_input_order_and_is_json_ready():
    manager = PatternsManager(PatternCacheService(), [StructuralBreaksPattern(), RateControlPattern()])
    series = {"b": _step_series(), "a": _monthly_series(), "c": TimeSeries([1.0, 2.0, 3.0])}
    results = manager.run_batch(series, max_workers=3)
    assert list(results) == ["b", "a", "c"]
    assert results["c"][0].failed
    payload = {k: [o.to_dict() for o in v] for k, v in results.items()}
    assert json.loads(json.dumps(payload))["b"][0]["results"]["nBreaks"] == 1
    serial = manager.run_batch(series)
    assert list(serial) == ["b", "a", "c"]


def test_manager_passes_pattern_specific_inputs():
    manager = PatternsManager(PatternCacheService(), [RateControlPattern()])
    counts = TimeSeries(np.full(12, 5.0))
    results = manager.run_batch(
        {"ward": counts},
        pattern_kwargs_by_id={"ward": {"rate_control": {"exposures": np.full(12, 100.0)}}},
    )
    assert results["ward"][0].results["chart"]["chart_type"] == "u"
