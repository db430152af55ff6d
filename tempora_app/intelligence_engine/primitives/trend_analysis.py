# =============================================================================
# TrendAnalysis
#
# Trend estimation for a scalar response against an ordered x (usually time):
# - loess_smooth:          locally weighted polynomial regression
# - quantile_regression:   conditional quantile lines/curves (pinball loss)
# - ols_trend:             ordinary least-squares line
# - segmented_regression:  piecewise-linear fit with estimated breakpoints
#
# OLS is kept as a baseline only. It imposes one global straight line on the
# data and is the least preferred exploratory tool; reach for loess or quantile
# lines first and use OLS when a single slope is genuinely what is being asked.
#
# Dependencies:
#   - numpy as np
#   - scipy.stats for linregress
#   - statsmodels for lowess, QuantReg and OLS
# =============================================================================

import logging
import warnings
from typing import Callable, Dict, Optional, Sequence, Tuple

import numpy as np
import statsmodels.api as sm
from scipy.stats import linregress
from statsmodels.nonparametric.smoothers_lowess import lowess
from statsmodels.regression.quantile_regression import QuantReg
from statsmodels.tools.sm_exceptions import IterationLimitWarning

from tempora_app.core.config import LOESS_KERNELS, validate_choice, validate_span, validate_taus
from tempora_app.core.exceptions import (
    ConfigurationError,
    ConvergenceError,
    DegenerateInputError,
    InsufficientDataError,
)
from tempora_app.intelligence_engine.data_structures import (
    LinearFit,
    QuantileFit,
    SegmentedFit,
    SmoothedFit,
    TimeSeries,
)

logger = logging.getLogger(__name__)


def _prepare_xy(x, y, min_points: int) -> Tuple[np.ndarray, np.ndarray]:
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.ndim != 1 or y.ndim != 1 or len(x) != len(y):
        raise ConfigurationError("x and y must be one-dimensional and of equal length")
    mask = ~(np.isnan(x) | np.isnan(y))
    if not mask.all():
        logger.debug("Dropping %d observations with missing x or y", int((~mask).sum()))
        x, y = x[mask], y[mask]
    if len(x) < min_points:
        raise InsufficientDataError(f"need at least {min_points} complete observations, got {len(x)}")
    return x, y


def _require_x_spread(x: np.ndarray):
    if np.ptp(x) == 0:
        raise DegenerateInputError("all x values are identical; a trend is undefined")


# =============================================================================
# Local regression
# =============================================================================

def _kernel_weights(u: np.ndarray, kernel: str) -> np.ndarray:
    u = np.abs(u)
    if kernel == "tricube":
        w = (1 - u ** 3) ** 3
    elif kernel == "epanechnikov":
        w = 1 - u ** 2
    elif kernel == "gaussian":
        return np.exp(-2.0 * u ** 2)
    else:
        w = np.ones_like(u)
    return np.where(u < 1, w, 0.0)


def _local_fit(x0: float, x: np.ndarray, y: np.ndarray, weights: np.ndarray, q: int,
               degree: int, kernel: str) -> float:
    """
    Weighted local polynomial estimate at ``x0``.

    Parameters
    ----------
    x0 : float
        Point at which the smooth is evaluated.
    x, y : np.ndarray
        All observations.
    weights : np.ndarray
        Robustness weights per observation (ones on the first pass).
    q : int
        Number of nearest neighbours in the local window.
    degree : int
        Degree of the local polynomial.
    kernel : str
        Distance weighting, one of LOESS_KERNELS.

    Returns
    -------
    float
        The local intercept, i.e. the fitted value at ``x0``; NaN when every
        weight in the window is zero.
    """
    dist = np.abs(x - x0)
    neighbours = np.argpartition(dist, q - 1)[:q]
    h = dist[neighbours].max()
    if h == 0:
        u = np.zeros(q)
    else:
        # slightly widen so the q-th neighbour keeps a small positive weight
        u = dist[neighbours] / (h * (1 + 1e-8))
    w = _kernel_weights(u, kernel) * weights[neighbours]
    if w.sum() <= 0:
        return float(np.nan)

    design = np.vander(x[neighbours] - x0, degree + 1, increasing=True)
    sw = np.sqrt(w)
    coef, *_ = np.linalg.lstsq(design * sw[:, None], y[neighbours] * sw, rcond=None)
    return float(coef[0])


def _general_loess(x: np.ndarray, y: np.ndarray, span: float, degree: int, kernel: str,
                   robust_iterations: int) -> np.ndarray:
    """Local regression for the kernels and degrees statsmodels' lowess does not cover."""
    n = len(x)
    q = min(n, max(int(np.ceil(span * n)), degree + 2))
    robustness = np.ones(n)
    fitted = np.empty(n)
    for iteration in range(robust_iterations + 1):
        for i in range(n):
            fitted[i] = _local_fit(x[i], x, y, robustness, q, degree, kernel)
        if iteration == robust_iterations:
            break
        residuals = y - fitted
        s = np.median(np.abs(residuals))
        if s == 0:
            logger.debug("Loess residuals are exactly zero after pass %d; stopping", iteration)
            break
        u = residuals / (6.0 * s)
        robustness = np.where(np.abs(u) < 1, (1 - u ** 2) ** 2, 0.0)
    return fitted


def loess_smooth(
    x: Sequence[float],
    y: Sequence[float],
    span: float = 0.75,
    degree: int = 1,
    kernel: str = "tricube",
    robust_iterations: int = 0,
) -> SmoothedFit:
    """
    Locally weighted regression of y on x.

    Parameters
    ----------
    span : float in (0, 1], default 0.75
        Fraction of the observations in each local neighbourhood.
    degree : {0, 1, 2}, default 1
        Degree of the local polynomial.
    kernel : {"tricube", "epanechnikov", "gaussian", "uniform"}
        Distance weighting inside the neighbourhood.
    robust_iterations : int, default 0
        Number of bisquare reweighting passes to downweight outliers.

    Notes
    -----
    The classic tricube, degree-1 smoother is statsmodels' ``lowess``; other
    kernels and degrees use a direct weighted least-squares fit per point.
    Near either end of the data the neighbourhood is one-sided (clipped at the
    boundary) rather than padded. The fit is only monotone if the data are.
    """
    validate_span(span)
    if degree not in (0, 1, 2):
        raise ConfigurationError(f"local degree must be 0, 1 or 2, got {degree}")
    validate_choice("kernel", kernel, LOESS_KERNELS)
    if robust_iterations < 0:
        raise ConfigurationError("robust_iterations must be >= 0")

    x, y = _prepare_xy(x, y, min_points=degree + 2)
    if kernel == "tricube" and degree == 1:
        fitted = np.asarray(
            lowess(y, x, frac=span, it=robust_iterations, delta=0.0, return_sorted=False),
            dtype=float,
        )
    else:
        fitted = _general_loess(x, y, span, degree, kernel, robust_iterations)

    return SmoothedFit(
        x=x, fitted=fitted, span=float(span), degree=degree,
        kernel=kernel, robust_iterations=robust_iterations
    )


# =============================================================================
# Quantile regression
# =============================================================================

def _log_quantile_crossings(taus: Sequence[float], fitted: Dict[float, np.ndarray]) -> int:
    """
    Warn about adjacent quantile lines that cross at observed x values.

    Parameters
    ----------
    taus : sequence of float
        Increasing quantile levels.
    fitted : dict
        Fitted values per level, all evaluated at the same x.

    Returns
    -------
    int
        Number of (pair, x) combinations where the lower level lies above the
        upper one.
    """
    total = 0
    for lower, upper in zip(taus, taus[1:]):
        crossing = fitted[lower] > fitted[upper] + 1e-9
        if crossing.any():
            logger.warning(
                "Quantile lines tau=%s and tau=%s cross at %d observed x values",
                lower, upper, int(crossing.sum())
            )
            total += int(crossing.sum())
    return total


def quantile_regression(
    x: Sequence[float],
    y: Sequence[float],
    taus: Sequence[float] = (0.25, 0.5, 0.75),
    degree: int = 1,
    max_iter: int = 1000,
) -> QuantileFit:
    """
    Fit one conditional quantile polynomial per level in ``taus`` by minimising
    the pinball (check) loss.

    The lines are estimated independently and are not forced to be
    non-crossing; crossing far outside the observed x range is a known artifact.
    A warning is logged if they cross inside the observed range.

    Coefficients are expressed in centred x (``x - x_center``) to keep the
    design well conditioned; use ``QuantileFit.predict`` for fitted values.
    """
    taus = validate_taus(taus)
    if degree < 1:
        raise ConfigurationError(f"degree must be >= 1, got {degree}")
    x, y = _prepare_xy(x, y, min_points=degree + 2)
    _require_x_spread(x)

    center = float(np.mean(x))
    design = np.vander(x - center, degree + 1, increasing=True)

    coefficients: Dict[float, np.ndarray] = {}
    fitted: Dict[float, np.ndarray] = {}
    for tau in taus:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", IterationLimitWarning)
            result = QuantReg(y, design).fit(q=tau, max_iter=max_iter)
        if any(issubclass(w.category, IterationLimitWarning) for w in caught):
            raise ConvergenceError(f"quantile regression for tau={tau} hit max_iter={max_iter}")
        coefficients[tau] = np.asarray(result.params, dtype=float)
        fitted[tau] = design @ coefficients[tau]

    _log_quantile_crossings(taus, fitted)

    return QuantileFit(
        taus=list(taus), degree=degree, x=x,
        coefficients=coefficients, fitted=fitted, x_center=center
    )


# =============================================================================
# Ordinary least squares
# =============================================================================

def ols_trend(x: Sequence[float], y: Sequence[float]) -> LinearFit:
    """
    Least-squares straight line with slope, intercept and residual standard error.

    Baseline only: see the module docstring.
    """
    x, y = _prepare_xy(x, y, min_points=3)
    _require_x_spread(x)
    result = linregress(x, y)
    residuals = y - (result.intercept + result.slope * x)
    residual_se = float(np.sqrt(np.sum(residuals ** 2) / (len(x) - 2)))
    return LinearFit(
        slope=float(result.slope),
        intercept=float(result.intercept),
        residual_se=residual_se,
        n=len(x),
        r_squared=float(result.rvalue ** 2),
        slope_se=float(result.stderr),
    )


def classify_trend(fit: LinearFit, slope_threshold: float = 0.0) -> str:
    """'up', 'down' or 'stable' depending on whether |slope| exceeds slope_threshold."""
    if fit.slope > slope_threshold:
        return "up"
    if fit.slope < -slope_threshold:
        return "down"
    return "stable"


# =============================================================================
# Segmented regression
# =============================================================================

def _segmented_design(x: np.ndarray, psi: np.ndarray, with_v: bool) -> np.ndarray:
    """
    Design matrix of the broken-line model.

    Parameters
    ----------
    x : np.ndarray
        Regressor.
    psi : np.ndarray
        Current breakpoint locations.
    with_v : bool
        Append the ``V_k = -I(x > psi_k)`` columns used to update ``psi``.

    Returns
    -------
    np.ndarray
        Columns ``1, x, U_1..U_k`` and, when requested, ``V_1..V_k``.
    """
    above = x[:, None] > psi[None, :]
    u = (x[:, None] - psi[None, :]) * above
    cols = [np.ones_like(x), x, u]
    if with_v:
        cols.append(-above.astype(float))
    return np.column_stack(cols)


def _check_psi(psi: np.ndarray, x_min: float, x_max: float) -> bool:
    return bool(np.all(psi > x_min) and np.all(psi < x_max) and np.all(np.diff(psi) > 0))


def _segmented_rss(x: np.ndarray, y: np.ndarray, psi: np.ndarray) -> float:
    """
    Residual sum of squares of the continuous broken-line fit at fixed ``psi``.

    Parameters
    ----------
    x, y : np.ndarray
        Complete observations.
    psi : np.ndarray
        Sorted breakpoint locations strictly inside the range of x.

    Returns
    -------
    float
    """
    design = _segmented_design(x, psi, with_v=False)
    coef, *_ = np.linalg.lstsq(design, y, rcond=None)
    residuals = y - design @ coef
    return float(residuals @ residuals)


def segmented_regression(
    x: Sequence[float],
    y: Sequence[float],
    psi_init: Optional[Sequence[float]] = None,
    n_breakpoints: int = 1,
    tol: float = 1e-6,
    max_iter: int = 30,
    max_halvings: int = 20,
) -> SegmentedFit:
    """
    Piecewise-linear fit, continuous at each breakpoint, with breakpoint
    locations estimated iteratively.

    At each step the model ``y ~ x + sum U_k + sum V_k`` is fitted with
    ``U_k = (x - psi_k)+`` and ``V_k = -I(x > psi_k)``; the gap coefficient
    gamma_k of V_k proposes a move of ``gamma_k / beta_k``, where beta_k is the
    slope change. The move is halved until the broken-line RSS does not
    increase. Iteration stops when the relative RSS change or the largest
    breakpoint move falls below ``tol``, when no halved move improves the
    RSS, or when the breakpoints return to an earlier position (the lower-RSS
    one of the cycle is kept).

    Parameters
    ----------
    psi_init : sequence of float, optional
        Starting breakpoint guesses. Defaults to ``n_breakpoints`` evenly spaced
        quantiles of x.
    tol : float, default 1e-6
        Convergence threshold on the relative RSS change and on the breakpoint
        position change.
    max_iter : int, default 30
    max_halvings : int, default 20
        Step halvings tried per iteration before the current breakpoints are
        accepted as a local optimum.

    Raises
    ------
    ConvergenceError
        If the breakpoints have not settled after ``max_iter`` iterations or
        the slope change vanishes.

    Notes
    -----
    With small samples or a weak break the estimate can depend on ``psi_init``;
    inspect ``breakpoint_se`` rather than assuming a unique answer.
    """
    if psi_init is None:
        if n_breakpoints < 1:
            raise ConfigurationError("n_breakpoints must be >= 1")
        probs = np.linspace(0, 1, n_breakpoints + 2)[1:-1]
        psi = None
    else:
        psi = np.sort(np.atleast_1d(np.asarray(psi_init, dtype=float)))
        probs = None
    if tol <= 0 or max_iter < 1 or max_halvings < 0:
        raise ConfigurationError("tol must be positive, max_iter >= 1 and max_halvings >= 0")

    k = n_breakpoints if psi is None else len(psi)
    x, y = _prepare_xy(x, y, min_points=2 * k + 3)
    _require_x_spread(x)
    x_min, x_max = float(x.min()), float(x.max())
    if psi is None:
        psi = np.quantile(x, probs)
    if not _check_psi(psi, x_min, x_max):
        raise ConfigurationError(
            f"initial breakpoints {psi.tolist()} must be distinct and strictly inside ({x_min}, {x_max})"
        )

    rss = _segmented_rss(x, y, psi)
    visited = [(psi, rss)]
    converged = False
    iterations = 0
    for iterations in range(1, max_iter + 1):
        fit = sm.OLS(y, _segmented_design(x, psi, with_v=True)).fit()
        beta = fit.params[2:2 + k]
        gamma = fit.params[2 + k:]
        if np.any(np.abs(beta) < 1e-12):
            raise ConvergenceError("slope change at a breakpoint vanished; no break to estimate")

        step = gamma / beta
        new_psi, new_rss = None, None
        for _ in range(max_halvings + 1):
            candidate = psi + step
            if _check_psi(candidate, x_min, x_max):
                candidate_rss = _segmented_rss(x, y, candidate)
                if candidate_rss <= rss:
                    new_psi, new_rss = candidate, candidate_rss
                    break
            step = step / 2.0

        if new_psi is None:
            logger.debug("Segmented iteration %d: no improving step from psi=%s", iterations, psi.tolist())
            converged = True
            break

        change = float(np.max(np.abs(new_psi - psi)))
        rel_rss = abs(rss - new_rss) / max(rss, np.finfo(float).tiny)
        logger.debug("Segmented iteration %d: psi=%s change=%.3g rss=%.6g",
                     iterations, new_psi.tolist(), change, new_rss)

        revisited = [(p, r) for p, r in visited[:-1] if np.max(np.abs(p - new_psi)) < tol]
        psi, rss = new_psi, new_rss
        visited.append((psi, rss))
        if revisited:
            psi, rss = min(revisited + [(psi, rss)], key=lambda pr: pr[1])
            logger.debug("Segmented iteration %d returned to an earlier psi; keeping psi=%s",
                         iterations, psi.tolist())
            converged = True
            break
        if change < tol or rel_rss < tol:
            converged = True
            break

    if not converged:
        raise ConvergenceError(
            f"breakpoints did not converge within {max_iter} iterations (last psi={psi.tolist()})"
        )

    # standard errors from the augmented fit at the final psi (delta method)
    aug = sm.OLS(y, _segmented_design(x, psi, with_v=True)).fit()
    cov = np.asarray(aug.cov_params())
    psi_se = []
    for j in range(k):
        b_i, g_i = 2 + j, 2 + k + j
        b, g = aug.params[b_i], aug.params[g_i]
        ratio = g / b
        var = (cov[g_i, g_i] + ratio ** 2 * cov[b_i, b_i] - 2 * ratio * cov[g_i, b_i]) / b ** 2
        psi_se.append(float(np.sqrt(max(var, 0.0))))

    final = sm.OLS(y, _segmented_design(x, psi, with_v=False)).fit()
    params = np.asarray(final.params)
    final_cov = np.asarray(final.cov_params())
    residuals = y - final.fittedvalues

    edges = np.concatenate([[-np.inf], psi, [np.inf]])
    segments = []
    for s in range(k + 1):
        contrast = np.zeros(len(params))
        contrast[1] = 1.0
        contrast[2:2 + s] = 1.0
        slope = float(contrast @ params)
        intercept = float(params[0] - np.sum(params[2:2 + s] * psi[:s]))
        in_seg = (x > edges[s]) & (x <= edges[s + 1])
        n_seg = int(in_seg.sum())
        seg_se = float(np.sqrt(np.sum(residuals[in_seg] ** 2) / (n_seg - 2))) if n_seg > 2 else float("nan")
        segments.append(LinearFit(
            slope=slope,
            intercept=intercept,
            residual_se=seg_se,
            n=n_seg,
            slope_se=float(np.sqrt(contrast @ final_cov @ contrast)),
        ))

    return SegmentedFit(
        segments=segments,
        breakpoints=[float(p) for p in psi],
        breakpoint_se=psi_se,
        fitted=np.asarray(final.fittedvalues, dtype=float),
        iterations=iterations,
        residual_se=float(np.sqrt(final.scale)),
    )


_TREND_METHODS: Dict[str, Callable] = {
    "loess": loess_smooth,
    "quantile": quantile_regression,
    "ols": ols_trend,
    "segmented": segmented_regression,
}


def trend_from_series(series: TimeSeries, method: str = "loess", **kwargs):
    """Fit a trend against the series' fractional time index."""
    validate_choice("method", method, list(_TREND_METHODS))
    return _TREND_METHODS[method](series.time_index(), series.values, **kwargs)
