# =============================================================================
# VarianceStabilization
#
# Box-Cox power transforms and the search for a variance-stabilising lambda.
#
#     y = (x**lam - 1) / lam    for lam != 0
#     y = ln(x)                 for lam == 0
#
# lam = 1 leaves the shape of the series unchanged (it only shifts it by -1),
# and lam = 0 turns multiplicative seasonality into additive seasonality. The
# transform needs strictly positive data.
#
# Dependencies:
#   - numpy as np
#   - scipy.stats for boxcox_llf
#   - scipy.optimize for minimize_scalar
# =============================================================================

import logging
from typing import Tuple

import numpy as np
from scipy import stats
from scipy.optimize import minimize_scalar

from tempora_app.core.config import LAMBDA_METHODS, validate_choice
from tempora_app.core.exceptions import ConfigurationError, InsufficientDataError
from tempora_app.intelligence_engine.data_structures import TimeSeries, coerce_values

logger = logging.getLogger(__name__)

# |lam| below this is treated as the log transform
LAMBDA_EPSILON = 1e-8


def _require_positive(x: np.ndarray):
    if np.isnan(x).any():
        raise ConfigurationError("Box-Cox transform does not accept missing values")
    if np.any(x <= 0):
        raise ConfigurationError("Box-Cox transform requires strictly positive values")


def box_cox(values, lam: float) -> np.ndarray:
    """
    Box-Cox transform of strictly positive values.

    Parameters
    ----------
    values : TimeSeries or sequence of float
        Data without missing values.
    lam : float
        Transform parameter; |lam| < LAMBDA_EPSILON is the log transform.

    Returns
    -------
    np.ndarray
    """
    x = coerce_values(values)
    _require_positive(x)
    if abs(lam) < LAMBDA_EPSILON:
        return np.log(x)
    return (np.power(x, lam) - 1.0) / lam


def inv_box_cox(values, lam: float) -> np.ndarray:
    """
    Inverse of ``box_cox``. Transformed values outside the transform's range
    (``lam*y + 1 <= 0``) have no preimage and come back as NaN.
    """
    y = coerce_values(values)
    if abs(lam) < LAMBDA_EPSILON:
        return np.exp(y)
    base = lam * y + 1.0
    invalid = base <= 0
    if invalid.any():
        logger.warning("%d values fall outside the range of the Box-Cox transform (lambda=%s)",
                       int(invalid.sum()), lam)
    with np.errstate(invalid="ignore"):
        out = np.power(np.where(invalid, np.nan, base), 1.0 / lam)
    return out


def box_cox_series(series: TimeSeries, lam: float) -> TimeSeries:
    """A new TimeSeries holding the transformed values on the same calendar."""
    return series.with_values(box_cox(series.values, lam))


def _guerrero_cv(lam: float, blocks: np.ndarray) -> float:
    """
    Guerrero criterion for one lambda.

    Parameters
    ----------
    lam : float
        Candidate Box-Cox parameter.
    blocks : np.ndarray
        One row per sub-period.

    Returns
    -------
    float
        Coefficient of variation of ``sd_h / mean_h**(1-lam)`` across rows.
    """
    means = blocks.mean(axis=1)
    sds = blocks.std(axis=1, ddof=1)
    ratio = sds / np.power(means, 1.0 - lam)
    return float(np.std(ratio, ddof=1) / np.mean(ratio))


def select_box_cox_lambda(
    series: TimeSeries,
    method: str = "guerrero",
    bounds: Tuple[float, float] = (-1.0, 2.0),
) -> float:
    """
    Choose a Box-Cox lambda that stabilises the variance of ``series``.

    method="guerrero" splits the series into non-overlapping sub-periods of one
    seasonal cycle (two observations for non-seasonal data), dropping the oldest
    observations that do not fill a whole sub-period, and minimises the
    coefficient of variation of ``sd_h / mean_h**(1-lam)`` over the sub-periods.

    method="loglik" maximises the Box-Cox profile log-likelihood of the values.
    """
    validate_choice("method", method, LAMBDA_METHODS)
    lower, upper = bounds
    if not lower < upper:
        raise ConfigurationError(f"bounds must be increasing, got {bounds}")
    x = coerce_values(series)
    _require_positive(x)

    if method == "guerrero":
        period = max(2, series.frequency if isinstance(series, TimeSeries) else 1)
        n_blocks = len(x) // period
        if n_blocks < 2:
            raise InsufficientDataError(
                f"guerrero lambda search needs at least two sub-periods of {period} observations"
            )
        blocks = x[len(x) - n_blocks * period:].reshape(n_blocks, period)
        if np.any(blocks.std(axis=1, ddof=1) == 0):
            logger.warning("Some sub-periods are constant; guerrero criterion may be flat")
        result = minimize_scalar(_guerrero_cv, bounds=(lower, upper), args=(blocks,), method="bounded")
    else:
        if np.ptp(x) == 0:
            raise ConfigurationError("log-likelihood lambda search needs non-constant data")
        result = minimize_scalar(lambda lam: -stats.boxcox_llf(lam, x),
                                 bounds=(lower, upper), method="bounded")

    lam = float(result.x)
    logger.debug("Selected Box-Cox lambda %.4f with method=%s", lam, method)
    return lam
