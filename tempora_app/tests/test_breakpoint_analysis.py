import numpy as np
import pytest

from tempora_app.core.exceptions import BudgetExceededError, ConfigurationError, InsufficientDataError
from tempora_app.intelligence_engine.data_structures import TimeSeries
from tempora_app.intelligence_engine.primitives.breakpoint_analysis import detect_breakpoints


def _wiggle(n):
    return 0.2 * np.cos(np.arange(n) * 2.0)


def test_single_mean_shift():
    y = np.r_[np.zeros(50), np.full(50, 10.0)] + _wiggle(100)
    result = detect_breakpoints(y)
    assert result.n_breaks == 1
    bp = result.breakpoints[0]
    assert abs(bp.index - 50) <= 2
    assert bp.ci_lower <= bp.index <= bp.ci_upper
    assert bp.left.mean == pytest.approx(0.0, abs=0.1)
    assert bp.right.mean == pytest.approx(10.0, abs=0.1)


def test_no_shift_gives_no_breaks():
    result = detect_breakpoints(5.0 + _wiggle(100))
    assert result.n_breaks == 0
    assert result.bic_by_count[0] <= min(result.bic_by_count.values())


def test_two_shifts():
    y = np.r_[np.zeros(40), np.full(40, 8.0), np.full(40, 3.0)] + _wiggle(120)
    result = detect_breakpoints(y)
    assert result.n_breaks == 2
    assert abs(result.indices[0] - 40) <= 2
    assert abs(result.indices[1] - 80) <= 2


def test_linear_segments():
    t = np.arange(50.0)
    y = np.r_[0.1 * t, 20.0 + 0.1 * t] + _wiggle(100)
    result = detect_breakpoints(y, segment_model="linear")
    assert result.n_breaks == 1
    assert abs(result.indices[0] - 50) <= 2
    assert result.breakpoints[0].left.slope == pytest.approx(0.1, abs=0.02)


def test_labels_come_from_the_calendar():
    y = np.r_[np.zeros(50), np.full(50, 10.0)] + _wiggle(100)
    ts = TimeSeries(y, frequency=12, start=(2000, 1))
    bp = detect_breakpoints(ts).breakpoints[0]
    assert bp.label == ts.format_label(bp.index)
    custom = detect_breakpoints(y, labels=[f"obs{i}" for i in range(100)]).breakpoints[0]
    assert custom.label == f"obs{custom.index}"


def test_min_segment_size_caps_break_count():
    y = np.r_[np.zeros(50), np.full(50, 10.0)] + _wiggle(100)
    result = detect_breakpoints(y, max_breaks=5, min_segment_size=40)
    assert max(result.bic_by_count) == 1
    assert result.min_segment_size == 40


def test_max_breaks_zero():
    y = np.r_[np.zeros(50), np.full(50, 10.0)]
    assert detect_breakpoints(y, max_breaks=0).n_breaks == 0


def test_too_short_for_two_segments():
    with pytest.raises(InsufficientDataError):
        detect_breakpoints([1.0, 2.0, 3.0])


def test_breakpoint_input_errors():
    with pytest.raises(ConfigurationError):
        detect_breakpoints([1.0, np.nan] * 20)
    with pytest.raises(ConfigurationError):
        detect_breakpoints(np.arange(40.0), segment_model="quadratic")
    with pytest.raises(ConfigurationError):
        detect_breakpoints(np.arange(40.0), labels=["a", "b"])


def test_time_budget_is_enforced():
    y = np.random.default_rng(0).normal(size=400)
    with pytest.raises(BudgetExceededError):
        detect_breakpoints(y, max_breaks=5, time_budget=1e-9)
