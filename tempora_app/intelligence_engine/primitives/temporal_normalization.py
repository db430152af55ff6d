# =============================================================================
# TemporalNormalization
#
# Turns heterogeneous date/time representations into canonical pandas
# Timestamps.
#
# A format specification is an ordered sequence of field tokens, written either
# as a list (["Y", "m", "d"]) or as a compact string ("Ymd HMS", whitespace
# ignored):
#
#     Y  4-digit year           y  2-digit year (00-68 -> 20xx, 69-99 -> 19xx)
#     m  numeric month          b  abbreviated month name    B  full month name
#     d  numeric day
#     H  hour                   M  minute                    S  second (fraction allowed)
#     p  AM/PM marker           z  UTC offset (Z, +hh, +hhmm, +hh:mm)
#
# Fields may be separated by any run of non-alphanumeric characters (plus the
# ISO "T" before a time field), or by nothing at all ("20240115"). Every token
# must match and the whole string must be consumed. The matched fields are
# rewritten into one canonical string and parsed by pandas with the equivalent
# strptime directives.
#
# Durations are reported in *average* years of 365.25 days. That is an
# approximation, not a calendar-exact difference: two dates exactly one
# calendar year apart yield 0.9993 or 1.0021 depending on leap days.
#
# Dependencies:
#   - pandas as pd
# =============================================================================

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Tuple, Union

import pandas as pd

from tempora_app.core.exceptions import ConfigurationError, FormatMismatchError

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
DAYS_PER_AVERAGE_YEAR = 365.25
SECONDS_PER_AVERAGE_YEAR = DAYS_PER_AVERAGE_YEAR * SECONDS_PER_DAY

_TOKEN_PATTERNS = {
    "Y": r"\d{4}",
    "y": r"\d{2}",
    "m": r"\d{1,2}",
    "b": r"[A-Za-z]{3}\.?",
    "B": r"[A-Za-z]{3,9}",
    "d": r"\d{1,2}",
    "H": r"\d{1,2}",
    "M": r"\d{1,2}",
    "S": r"\d{1,2}(?:[.,]\d{1,9})?",
    "p": r"[AaPp]\.?[Mm]\.?",
    "z": r"Z|[+-]\d{2}(?::?\d{2})?",
}
_DIRECTIVES = {
    "Y": "%Y",
    "y": "%y",
    "m": "%m",
    "b": "%b",
    "B": "%B",
    "d": "%d",
    "H": "%H",
    "M": "%M",
    "S": "%S",
    "p": "%p",
    "z": "%z",
}
_TIME_TOKENS = {"H", "M", "S", "p", "z"}
_SEPARATOR = r"[^A-Za-z0-9]*(?:T(?=\d))?[^A-Za-z0-9]*"

OrderSpec = Union[str, Sequence[str]]


@dataclass(frozen=True)
class NormalizedTime:
    """
    A parsed date or date-time.

    resolution : "day" when the format carried no time-of-day fields, else "second"
        (fractional seconds are preserved down to nanoseconds).
    day_synthesized : True when the day of month was not observed and was set to 1.
        Consumers must not read day-level precision into such values.
    """
    timestamp: pd.Timestamp
    resolution: str
    day_synthesized: bool = False

    @property
    def epoch_seconds(self) -> float:
        return _to_utc(self.timestamp).value / 1e9

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "resolution": self.resolution,
            "day_synthesized": self.day_synthesized,
            "epoch_seconds": self.epoch_seconds,
        }


def _tokenize(spec: OrderSpec) -> List[str]:
    if isinstance(spec, str):
        tokens = [c for c in spec if not c.isspace()]
    else:
        tokens = list(spec)
    if not tokens:
        raise ConfigurationError("a format specification needs at least one token")
    for t in tokens:
        if t not in _TOKEN_PATTERNS:
            raise ConfigurationError(
                f"unknown format token {t!r}; expected one of {sorted(_TOKEN_PATTERNS)}"
            )
    if len(set(tokens)) != len(tokens):
        raise ConfigurationError(f"format tokens must not repeat: {tokens}")
    if not ({"Y", "y"} & set(tokens)) or not ({"m", "b", "B"} & set(tokens)):
        raise ConfigurationError(f"format must contain a year and a month token: {tokens}")
    if "p" in tokens and "H" not in tokens:
        raise ConfigurationError("an AM/PM marker requires an hour token")
    return tokens


def _normalize_orders(orders: Union[OrderSpec, Sequence[OrderSpec]]) -> List[List[str]]:
    """A single spec, or a list of alternative specs tried in order."""
    if isinstance(orders, str):
        return [_tokenize(orders)]
    orders = list(orders)
    if orders and all(isinstance(o, str) and len(o) == 1 for o in orders):
        return [_tokenize(orders)]
    return [_tokenize(o) for o in orders]


def _compile(tokens: List[str]) -> "re.Pattern":
    body = _SEPARATOR.join(f"(?P<{t}>{_TOKEN_PATTERNS[t]})" for t in tokens)
    return re.compile(rf"^\s*{body}\s*$")


def _canonical_field(token: str, text: str, twelve_hour: bool) -> Tuple[str, str]:
    """
    Rewrite one matched field into the form its strptime directive expects.

    Parameters
    ----------
    token : str
        Format token that matched ``text``.
    text : str
        The matched substring.
    twelve_hour : bool
        The format also carries an AM/PM marker, so hours are on a 12-hour clock.

    Returns
    -------
    (str, str)
        Canonical field text and its strptime directive.
    """
    if token in ("m", "d", "H", "M"):
        directive = "%I" if token == "H" and twelve_hour else _DIRECTIVES[token]
        return text.zfill(2), directive
    if token in ("b", "B"):
        return text.rstrip(".").title(), _DIRECTIVES[token]
    if token == "S":
        whole, _, frac = text.replace(",", ".").partition(".")
        if frac:
            return f"{whole.zfill(2)}.{frac}", "%S.%f"
        return whole.zfill(2), "%S"
    if token == "p":
        return text.replace(".", "").upper(), "%p"
    if token == "z":
        if text == "Z":
            return "+0000", "%z"
        digits = text[1:].replace(":", "")
        return text[0] + digits.ljust(4, "0"), "%z"
    return text, _DIRECTIVES[token]


def _build(fields: Dict[str, str], tokens: List[str]) -> NormalizedTime:
    twelve_hour = "p" in fields
    parts = [_canonical_field(t, fields[t], twelve_hour) for t in tokens]
    text = " ".join(p for p, _ in parts)
    fmt = " ".join(d for _, d in parts)

    # pandas validates every range, including day-of-month against the month
    ts = pd.to_datetime(text, format=fmt, exact=True)
    if "z" in fields:
        ts = ts.tz_convert("UTC")

    resolution = "second" if _TIME_TOKENS & set(tokens) else "day"
    return NormalizedTime(timestamp=ts, resolution=resolution, day_synthesized="d" not in fields)


def parse_datetime(value: str, orders: Union[OrderSpec, Sequence[OrderSpec]]) -> NormalizedTime:
    """
    Parse ``value`` with the first of ``orders`` that matches every token.

    Raises
    ------
    FormatMismatchError
        If no format specification matches the whole string, or a matched field is
        out of range (month 13, 31 April, hour 25, ...).
    ConfigurationError
        If a format specification itself is malformed.
    """
    specs = _normalize_orders(orders)
    if not isinstance(value, str):
        raise FormatMismatchError(f"expected a string, got {type(value).__name__}")

    problems = []
    for tokens in specs:
        match = _compile(tokens).match(value)
        if match is None:
            problems.append(f"{''.join(tokens)}: no match")
            continue
        try:
            parsed = _build(match.groupdict(), tokens)
        except ValueError as e:
            problems.append(f"{''.join(tokens)}: {e}")
            continue
        if problems:
            logger.debug("Parsed %r with fallback format %s after: %s",
                         value, "".join(tokens), "; ".join(problems))
        return parsed

    raise FormatMismatchError(f"{value!r} does not match any format ({'; '.join(problems)})")


def parse_datetimes(values: Iterable[str], orders: Union[OrderSpec, Sequence[OrderSpec]]) -> List[NormalizedTime]:
    """Vectorised parse_datetime. The first unparseable element raises."""
    specs = _normalize_orders(orders)
    return [parse_datetime(v, specs) for v in values]


def date_from_year_month(year: int, month: int) -> NormalizedTime:
    """
    Date for a monthly aggregate observed only as (year, month).

    The day is set to 1 and flagged with ``day_synthesized=True``.
    """
    if not 1 <= int(month) <= 12:
        raise ConfigurationError(f"month must be in 1..12, got {month}")
    ts = pd.Timestamp(year=int(year), month=int(month), day=1)
    return NormalizedTime(timestamp=ts, resolution="day", day_synthesized=True)


def _to_utc(value) -> pd.Timestamp:
    if isinstance(value, NormalizedTime):
        value = value.timestamp
    if isinstance(value, str):
        raise ConfigurationError("parse strings with parse_datetime before doing arithmetic on them")
    ts = pd.Timestamp(value)
    if pd.isna(ts):
        raise ConfigurationError("cannot do arithmetic on a missing timestamp")
    # naive values are taken to be UTC
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def elapsed_years(start, end) -> float:
    """
    Elapsed time from ``start`` to ``end`` in average years (365.25 days).

    This is an approximation, not calendar-exact: use it for ages and durations
    where a fractional-year answer is wanted, not for anniversary logic.
    """
    seconds = (_to_utc(end) - _to_utc(start)).total_seconds()
    return seconds / SECONDS_PER_AVERAGE_YEAR


def decimal_year(value) -> float:
    """Year plus the elapsed fraction of an average year since 1 January."""
    ts = _to_utc(value)
    jan1 = pd.Timestamp(year=ts.year, month=1, day=1, tz="UTC")
    return ts.year + (ts - jan1).total_seconds() / SECONDS_PER_AVERAGE_YEAR
