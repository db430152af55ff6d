import logging

import numpy as np
import pytest

from tempora_app.core.exceptions import (
    ConfigurationError,
    ConvergenceError,
    DegenerateInputError,
    InsufficientDataError,
)
from tempora_app.intelligence_engine.data_structures import LinearFit, TimeSeries
from tempora_app.intelligence_engine.primitives import trend_analysis
from tempora_app.intelligence_engine.primitives.trend_analysis import (
    classify_trend,
    loess_smooth,
    ols_trend,
    quantile_regression,
    segmented_regression,
    trend_from_series,
)


def _broken_line(n=201, knot=50.0):
    x = np.linspace(0, 100, n)
    y = np.where(x < knot, x, knot + 3.0 * (x - knot)) + 0.1 * np.sin(7.0 * x)
    return x, y


def test_loess_reproduces_a_line():
    x = np.arange(20.0)
    y = 2.0 * x + 1.0
    fit = loess_smooth(x, y, span=0.5, degree=1)
    assert np.allclose(fit.fitted, y, atol=1e-8)
    assert fit.kernel == "tricube"


def test_loess_robust_iterations_resist_an_outlier():
    x = np.arange(30.0)
    y = 0.5 * x
    y[15] = 100.0
    plain = loess_smooth(x, y, span=0.5)
    robust = loess_smooth(x, y, span=0.5, robust_iterations=3)
    assert abs(robust.fitted[14] - 7.0) < abs(plain.fitted[14] - 7.0)
    assert robust.fitted[14] == pytest.approx(7.0, abs=0.5)


def test_loess_other_kernels_use_local_polynomials():
    x = np.arange(25.0)
    y = 0.5 * x ** 2 - 3.0 * x + 2.0
    fit = loess_smooth(x, y, span=0.4, degree=2, kernel="epanechnikov")
    assert np.allclose(fit.fitted, y, atol=1e-6)
    flat = loess_smooth(x, np.full(25, 4.0), span=0.3, degree=0, kernel="uniform")
    assert np.allclose(flat.fitted, 4.0)


def test_loess_drops_missing_observations():
    x = np.arange(10.0)
    y = x.copy()
    y[3] = np.nan
    fit = loess_smooth(x, y)
    assert len(fit.fitted) == 9


def test_loess_rejects_bad_parameters():
    x = np.arange(10.0)
    with pytest.raises(ConfigurationError):
        loess_smooth(x, x, span=1.5)
    with pytest.raises(ConfigurationError):
        loess_smooth(x, x, kernel="boxcar")
    with pytest.raises(ConfigurationError):
        loess_smooth(x, x, degree=3)


def test_ols_trend_exact_line():
    x = np.arange(10.0)
    fit = ols_trend(x, 2.0 * x + 3.0)
    assert fit.slope == pytest.approx(2.0)
    assert fit.intercept == pytest.approx(3.0)
    assert fit.residual_se == pytest.approx(0.0, abs=1e-9)
    assert fit.r_squared == pytest.approx(1.0)


def test_ols_trend_needs_spread_and_points():
    with pytest.raises(DegenerateInputError):
        ols_trend([1.0, 1.0, 1.0], [1.0, 2.0, 3.0])
    with pytest.raises(InsufficientDataError):
        ols_trend([1.0, 2.0], [1.0, 2.0])


def test_median_line_matches_ols_on_symmetric_noise():
    rng = np.random.default_rng(42)
    x = np.arange(400.0)
    y = 3.0 + 0.5 * x + rng.normal(0, 1, size=len(x))
    ols = ols_trend(x, y)
    q = quantile_regression(x, y, taus=[0.5])
    median_slope = q.coefficients[0.5][1]
    assert median_slope == pytest.approx(ols.slope, abs=0.01)
    assert q.predict(0.5, 200.0) == pytest.approx(ols.predict(200.0), abs=0.3)


def test_quantile_lines_are_ordered_on_spread_data():
    rng = np.random.default_rng(1)
    x = np.arange(300.0)
    y = 1.0 + 0.1 * x + rng.normal(0, 2, size=len(x))
    q = quantile_regression(x, y, taus=(0.1, 0.5, 0.9))
    assert np.all(q.fitted[0.1] <= q.fitted[0.5])
    assert np.all(q.fitted[0.5] <= q.fitted[0.9])
    assert q.x_center == pytest.approx(float(np.mean(x)))


def test_crossing_quantile_lines_are_logged(caplog):
    fitted = {
        0.25: np.array([0.0, 1.0, 2.0, 3.0]),
        0.75: np.array([2.5, 2.0, 1.5, 1.0]),
    }
    with caplog.at_level(logging.WARNING, logger=trend_analysis.__name__):
        crossings = trend_analysis._log_quantile_crossings([0.25, 0.75], fitted)
    assert crossings == 2
    assert "tau=0.25 and tau=0.75 cross at 2" in caplog.text


def test_ordered_quantile_lines_log_nothing(caplog):
    rng = np.random.default_rng(1)
    x = np.arange(300.0)
    y = 1.0 + 0.1 * x + rng.normal(0, 2, size=len(x))
    with caplog.at_level(logging.WARNING, logger=trend_analysis.__name__):
        quantile_regression(x, y, taus=(0.1, 0.5, 0.9))
    assert "cross" not in caplog.text


def test_quantile_regression_validates_taus():
    x = np.arange(10.0)
    with pytest.raises(ConfigurationError):
        quantile_regression(x, x, taus=[0.5, 0.25])
    with pytest.raises(ConfigurationError):
        quantile_regression(x, x, taus=[1.0])


def test_classify_trend():
    assert classify_trend(LinearFit(slope=0.5, intercept=0, residual_se=0, n=3)) == "up"
    assert classify_trend(LinearFit(slope=-0.5, intercept=0, residual_se=0, n=3)) == "down"
    assert classify_trend(LinearFit(slope=0.05, intercept=0, residual_se=0, n=3), 0.1) == "stable"


@pytest.mark.parametrize("psi_init", [35.0, 50.0, 65.0])
def test_segmented_fit_recovers_knot_from_nearby_starts(psi_init):
    x, y = _broken_line()
    fit = segmented_regression(x, y, psi_init=[psi_init], max_iter=50)
    assert fit.breakpoints[0] == pytest.approx(50.0, abs=0.5)
    assert fit.segments[0].slope == pytest.approx(1.0, abs=0.05)
    assert fit.segments[1].slope == pytest.approx(3.0, abs=0.05)
    assert fit.breakpoint_se[0] >= 0


def test_segmented_fit_default_start_is_median():
    x, y = _broken_line()
    fit = segmented_regression(x, y, max_iter=50)
    assert fit.breakpoints[0] == pytest.approx(50.0, abs=0.5)
    assert len(fit.fitted) == len(x)


def test_segmented_fit_settles_when_steps_straddle_a_grid_point():
    x, y = _broken_line()
    fits = [segmented_regression(x, y, psi_init=[p], max_iter=200) for p in (49.998, 50.002)]
    assert fits[0].breakpoints[0] == pytest.approx(fits[1].breakpoints[0], abs=0.05)
    for fit in fits:
        assert fit.iterations < 200
        assert fit.residual_se < 0.1


def test_segmented_fit_raises_when_iterations_run_out():
    x, y = _broken_line()
    with pytest.raises(ConvergenceError):
        segmented_regression(x, y, psi_init=[35.0], max_iter=1)


def test_segmented_fit_rejects_start_outside_range():
    x, y = _broken_line()
    with pytest.raises(ConfigurationError):
        segmented_regression(x, y, psi_init=[150.0])


def test_trend_from_series_uses_time_index():
    ts = TimeSeries(np.arange(24.0), frequency=12, start=(2000, 1))
    fit = trend_from_series(ts, "ols")
    # one unit per month is twelve per year
    assert fit.slope == pytest.approx(12.0)
    with pytest.raises(ConfigurationError):
        trend_from_series(ts, "spline")
