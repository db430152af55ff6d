import numpy as np
import pandas as pd
import pytest

from tempora_app.core.exceptions import ConfigurationError, InsufficientDataError
from tempora_app.intelligence_engine.data_structures import (
    Decomposition,
    Spectrum,
    TimeSeries,
    coerce_values,
)


def test_time_series_calendar_labels():
    ts = TimeSeries(np.arange(15.0), frequency=12, start=(2010, 11))
    assert ts.period_label(0) == (2010, 11)
    assert ts.period_label(2) == (2011, 1)
    assert ts.format_label(14) == "2012(1)"
    assert ts.cycle_positions()[:3].tolist() == [10, 11, 0]
    assert ts.time_index()[2] == pytest.approx(2011.0)


def test_time_series_annual_label_has_no_position():
    ts = TimeSeries([1.0, 2.0, 3.0], frequency=1, start=1990)
    assert ts.start == (1990, 1)
    assert ts.format_label(2) == "1992"


def test_time_series_is_immutable():
    ts = TimeSeries([1.0, 2.0, 3.0])
    with pytest.raises(ValueError):
        ts.values[0] = 10.0
    # transformations return new series on the same calendar
    doubled = ts.with_values(ts.values * 2)
    assert doubled.values.tolist() == [2.0, 4.0, 6.0]
    assert ts.values.tolist() == [1.0, 2.0, 3.0]


def test_time_series_validation():
    with pytest.raises(InsufficientDataError):
        TimeSeries([])
    with pytest.raises(ConfigurationError):
        TimeSeries([1.0, np.inf])
    with pytest.raises(ConfigurationError):
        TimeSeries([1.0, 2.0], frequency=0)
    with pytest.raises(ConfigurationError):
        TimeSeries([1.0, 2.0], frequency=4, start=(2000, 5))
    with pytest.raises(ConfigurationError):
        TimeSeries([[1.0, 2.0], [3.0, 4.0]])


def test_missing_values_are_allowed():
    ts = TimeSeries([1.0, np.nan, 3.0])
    assert ts.has_missing
    assert not TimeSeries([1.0, 2.0]).has_missing


def test_window_keeps_calendar_alignment():
    ts = TimeSeries(np.arange(24.0), frequency=4, start=(2000, 2))
    sub = ts.window(5, 9)
    assert len(sub) == 4
    assert sub.start == ts.period_label(5)
    assert sub.values.tolist() == [5.0, 6.0, 7.0, 8.0]
    with pytest.raises(ConfigurationError):
        ts.window(10, 5)


def test_from_pandas_infers_monthly_frequency():
    index = pd.date_range("2020-03-01", periods=24, freq="MS")
    ts = TimeSeries.from_pandas(pd.Series(np.arange(24.0), index=index))
    assert ts.frequency == 12
    assert ts.start == (2020, 3)


def test_from_pandas_infers_business_and_quarterly_frequencies():
    business_months = pd.date_range("2021-01-01", periods=24, freq="BMS")
    ts = TimeSeries.from_pandas(pd.Series(np.arange(24.0), index=business_months))
    assert ts.frequency == 12
    assert ts.start == (2021, 1)

    quarters = pd.period_range("2019Q2", periods=8, freq="Q")
    ts = TimeSeries.from_pandas(pd.Series(np.arange(8.0), index=quarters))
    assert ts.frequency == 4
    assert ts.start == (2019, 2)

    business_days = pd.date_range("2024-01-01", periods=20, freq="B")
    assert TimeSeries.from_pandas(pd.Series(np.arange(20.0), index=business_days)).frequency == 5


def test_from_pandas_rejects_invalid_explicit_frequency():
    index = pd.date_range("2020-01-01", periods=24, freq="MS")
    with pytest.raises(ConfigurationError):
        TimeSeries.from_pandas(pd.Series(np.arange(24.0), index=index), frequency=0)


def test_from_pandas_explicit_frequency_wins():
    ts = TimeSeries.from_pandas(pd.Series([1.0, 2.0, 3.0, 4.0]), frequency=2, start=(5, 2))
    assert ts.frequency == 2
    assert ts.start == (5, 2)


def test_coerce_values_accepts_containers():
    ts = TimeSeries([1.0, 2.0])
    assert coerce_values(ts).tolist() == [1.0, 2.0]
    assert coerce_values(pd.Series([3, 4])).tolist() == [3.0, 4.0]
    assert coerce_values([5, 6]).dtype == float


def test_decomposition_to_dict_replaces_nan():
    d = Decomposition(
        observed=np.array([1.0, 2.0]),
        trend=np.array([np.nan, 2.0]),
        seasonal=np.array([0.0, 0.0]),
        remainder=np.array([np.nan, 0.0]),
        seasonal_figure=np.array([0.0, 0.0]),
        mode="additive",
        frequency=2,
    )
    out = d.to_dict()
    assert out["trend"] == [None, 2.0]
    assert out["remainder"][0] is None


def test_spectrum_peaks_strongest_first():
    spec = Spectrum(
        frequency=np.array([0.1, 0.2, 0.3, 0.4, 0.5]),
        power=np.array([1.0, 5.0, 1.0, 3.0, 0.5]),
        df=2.0,
        bandwidth=0.01,
        taper=0.1,
    )
    assert spec.peaks(2) == [1, 3]
    lower, upper = spec.confidence_interval(0.95)
    assert np.all(lower < spec.power)
    assert np.all(upper > spec.power)
