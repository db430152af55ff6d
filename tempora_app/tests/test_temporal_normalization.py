import pandas as pd
import pytest

from tempora_app.core.exceptions import ConfigurationError, FormatMismatchError
from tempora_app.intelligence_engine.primitives.temporal_normalization import (
    date_from_year_month,
    decimal_year,
    elapsed_years,
    parse_datetime,
    parse_datetimes,
)


def test_parse_iso_date():
    out = parse_datetime("2024-01-15", "Ymd")
    assert out.timestamp == pd.Timestamp("2024-01-15")
    assert out.resolution == "day"
    assert not out.day_synthesized


def test_parse_token_list_and_month_names():
    assert parse_datetime("15 Jan 2024", ["d", "b", "Y"]).timestamp == pd.Timestamp("2024-01-15")
    assert parse_datetime("March 3, 2021", "B d Y").timestamp == pd.Timestamp("2021-03-03")


def test_parse_compact_digits():
    assert parse_datetime("20240115", "Ymd").timestamp == pd.Timestamp("2024-01-15")


def test_parse_datetime_with_fraction_and_zulu():
    out = parse_datetime("2024-01-15T13:45:30.25Z", "YmdHMSz")
    assert out.timestamp == pd.Timestamp("2024-01-15 13:45:30.25", tz="UTC")
    assert out.resolution == "second"


def test_parse_offset_is_converted_to_utc():
    out = parse_datetime("2024-01-15 13:00+02:00", "YmdHMz")
    assert out.timestamp == pd.Timestamp("2024-01-15 11:00", tz="UTC")


def test_parse_twelve_hour_clock():
    out = parse_datetime("2024-01-15 1:05 PM", "YmdHMp")
    assert out.timestamp.hour == 13
    assert out.timestamp.minute == 5


def test_twelve_hour_clock_edges():
    assert parse_datetime("2024-01-15 12:30 a.m.", "YmdHMp").timestamp.hour == 0
    assert parse_datetime("2024-01-15 12:30 pm", "YmdHMp").timestamp.hour == 12
    with pytest.raises(FormatMismatchError):
        parse_datetime("2024-01-15 13:05 PM", "YmdHMp")


def test_hour_only_offset_and_nanosecond_fraction():
    out = parse_datetime("2024-01-15 08:00:00.123456789-05", "YmdHMSz")
    assert out.timestamp == pd.Timestamp("2024-01-15 13:00:00.123456789", tz="UTC")


def test_two_digit_year_pivot():
    assert parse_datetime("68-05-01", "ymd").timestamp.year == 2068
    assert parse_datetime("69-05-01", "ymd").timestamp.year == 1969


def test_partial_match_raises():
    with pytest.raises(FormatMismatchError):
        parse_datetime("2024-01", "Ymd")
    with pytest.raises(FormatMismatchError):
        parse_datetime("2024-01-15 extra", "Ymd")


def test_out_of_range_field_raises():
    with pytest.raises(FormatMismatchError):
        parse_datetime("2024-02-30", "Ymd")
    with pytest.raises(FormatMismatchError):
        parse_datetime("2024-13-01", "Ymd")


def test_alternative_orders_tried_in_turn():
    out = parse_datetime("03/2024", ["Ymd", "mY"])
    assert out.timestamp == pd.Timestamp("2024-03-01")
    assert out.day_synthesized


def test_malformed_spec_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        parse_datetime("2024", "Yq")
    with pytest.raises(ConfigurationError):
        parse_datetime("2024-01", "Yd")


def test_parse_datetimes_vectorised():
    out = parse_datetimes(["2024-01-15", "2024-02-01"], "Ymd")
    assert [o.timestamp.month for o in out] == [1, 2]
    with pytest.raises(FormatMismatchError):
        parse_datetimes(["2024-01-15", "garbage"], "Ymd")


def test_date_from_year_month_flags_synthesized_day():
    out = date_from_year_month(2023, 7)
    assert out.timestamp == pd.Timestamp("2023-07-01")
    assert out.day_synthesized
    with pytest.raises(ConfigurationError):
        date_from_year_month(2023, 13)


def test_elapsed_years_uses_average_year():
    start = pd.Timestamp("2020-01-01")
    assert elapsed_years(start, start + pd.Timedelta(days=365.25)) == pytest.approx(1.0)
    # one calendar year across a leap day is slightly more than an average year
    assert elapsed_years(start, pd.Timestamp("2021-01-01")) == pytest.approx(366 / 365.25)


def test_elapsed_years_rejects_raw_strings():
    with pytest.raises(ConfigurationError):
        elapsed_years("2020-01-01", "2021-01-01")


def test_decimal_year():
    assert decimal_year(pd.Timestamp("2020-01-01")) == pytest.approx(2020.0)
    assert decimal_year(parse_datetime("2020-07-02", "Ymd")) == pytest.approx(2020.5, abs=0.01)
