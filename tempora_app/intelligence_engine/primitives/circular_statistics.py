# =============================================================================
# CircularStatistics
#
# Statistics for values on a periodic domain of length ``period`` (24 for clock
# hours, 7 for weekdays, 360 for compass degrees). Values are mapped to angles
# ``theta = 2*pi*value/period`` so that 23.5h and 0.5h are one hour apart, not 23.
#
# Undefined statistics raise DegenerateInputError instead of returning a
# default: an undefined mean reported as 0 would read as "midnight".
#
# Dependencies:
#   - numpy as np
# =============================================================================

import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from tempora_app.core.exceptions import ConfigurationError, DegenerateInputError, InsufficientDataError

logger = logging.getLogger(__name__)

# resultant lengths below this are treated as "directions cancel"
RESULTANT_TOLERANCE = 1e-9


def _to_angles(values: Sequence[float], period: float) -> np.ndarray:
    if not period > 0:
        raise ConfigurationError(f"period must be positive, got {period}")
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 1:
        raise ConfigurationError("values must be one-dimensional")
    if np.isnan(arr).any():
        raise ConfigurationError("values contain missing observations")
    if arr.size == 0:
        raise InsufficientDataError("circular statistics need at least one value")
    return 2.0 * np.pi * arr / period


def _resultant(angles: np.ndarray) -> Tuple[float, float]:
    """(mean resultant length, mean direction in radians)."""
    c = np.mean(np.cos(angles))
    s = np.mean(np.sin(angles))
    return float(np.hypot(c, s)), float(np.arctan2(s, c))


def _angle_to_value(angle: float, period: float) -> float:
    value = angle * period / (2.0 * np.pi)
    if value < 0:
        value += period
    # rounding can land exactly on the period
    return 0.0 if value >= period else float(value)


def mean_resultant_length(values: Sequence[float], period: float) -> float:
    """R-bar in [0, 1]: 1 when all values coincide, ~0 when they spread evenly."""
    r, _ = _resultant(_to_angles(values, period))
    return r


def circular_mean(values: Sequence[float], period: float) -> float:
    """
    Mean direction of ``values`` expressed back on ``[0, period)``.

    On a 24-hour clock the mean of 23.5 and 0.5 is ~0.0 (midnight), where the
    linear mean would give 12.0.

    Raises
    ------
    DegenerateInputError
        If the unit vectors cancel (e.g. [0, 12] on a 24-hour clock) and the
        mean direction is undefined.
    """
    r, direction = _resultant(_to_angles(values, period))
    if r < RESULTANT_TOLERANCE:
        raise DegenerateInputError(
            f"mean resultant length {r:.3g} is ~0; the circular mean is undefined"
        )
    return _angle_to_value(direction, period)


def circular_std(values: Sequence[float], period: float) -> float:
    """Circular standard deviation ``sqrt(-2 ln R)`` converted to the period's units."""
    r = mean_resultant_length(values, period)
    if r < RESULTANT_TOLERANCE:
        raise DegenerateInputError("values are spread uniformly; circular spread is unbounded")
    return float(np.sqrt(-2.0 * np.log(min(r, 1.0))) * period / (2.0 * np.pi))


def circular_correlation(
    x: Sequence[float],
    y: Sequence[float],
    period_x: float,
    period_y: Optional[float] = None,
) -> float:
    """
    Circular-circular correlation coefficient (Jammalamadaka & SenGupta):

        r = sum sin(a - a_bar) sin(b - b_bar) / sqrt(sum sin^2(a - a_bar) * sum sin^2(b - b_bar))

    where a_bar, b_bar are the circular means. Wrap-around is respected, so
    23:59 and 00:01 are treated as neighbours. ``period_y`` defaults to
    ``period_x``.
    """
    period_y = period_x if period_y is None else period_y
    a = _to_angles(x, period_x)
    b = _to_angles(y, period_y)
    if len(a) != len(b):
        raise ConfigurationError(f"x and y must have equal length, got {len(a)} and {len(b)}")
    if len(a) < 2:
        raise InsufficientDataError("circular correlation needs at least two pairs")

    ra, mean_a = _resultant(a)
    rb, mean_b = _resultant(b)
    if ra < RESULTANT_TOLERANCE or rb < RESULTANT_TOLERANCE:
        raise DegenerateInputError("a circular mean is undefined; correlation cannot be centred")

    sa = np.sin(a - mean_a)
    sb = np.sin(b - mean_b)
    denom = np.sqrt(np.sum(sa ** 2) * np.sum(sb ** 2))
    if denom < RESULTANT_TOLERANCE:
        raise DegenerateInputError("one of the variables has no angular spread")
    r = float(np.sum(sa * sb) / denom)
    logger.debug("Circular correlation %.4f over %d pairs", r, len(a))
    return r
