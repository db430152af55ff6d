# =============================================================================
# BreakpointAnalysis
#
# Structural break detection by optimal segmentation.
#
# For every candidate number of breaks m = 0..max_breaks, dynamic programming
# finds the partition into m+1 contiguous segments (each at least
# ``min_segment_size`` long) with the smallest total residual sum of squares,
# where each segment is fitted by its own mean or its own straight line. The
# number of breaks is then chosen by
#
#     BIC(m) = n * ln(RSS_m / n) + k_m * ln(n),    k_m = (q + 1) * (m + 1)
#
# with q the coefficients per segment (1 for "mean", 2 for "linear") plus one
# error variance per segment. The smallest BIC wins; ties go to fewer breaks.
#
# Break-date intervals use the asymptotic distribution of a single mean shift
# (Bai, 1994): a 95% interval is index +/- 11 * sigma^2 / delta^2, with sigma^2
# the pooled residual variance and delta the jump at the break. For a linear
# segment model delta is the jump between the two fitted lines at the break, so
# the interval is approximate there.
#
# Dependencies:
#   - numpy as np
# =============================================================================

import logging
import math
import time
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from tempora_app.core.config import SEGMENT_MODELS, validate_choice, validate_positive_int
from tempora_app.core.exceptions import (
    BudgetExceededError,
    ConfigurationError,
    InsufficientDataError,
)
from tempora_app.intelligence_engine.data_structures import (
    Breakpoint,
    Breakpoints,
    SegmentSummary,
    TimeSeries,
    coerce_values,
)

logger = logging.getLogger(__name__)

# 97.5% quantile of argmax of two-sided Brownian motion with drift -|s|/2
BAI_CI_CRITICAL_95 = 11.0
_NORMAL_975 = 1.959963984540054


class _SegmentCost:
    """O(1) residual sum of squares for any segment [i, j) via cumulative sums."""

    def __init__(self, y: np.ndarray, model: str):
        self.model = model
        n = len(y)
        yc = y - y.mean()
        x = np.arange(n, dtype=float) - (n - 1) / 2.0
        zero = np.zeros(1)
        self.s_y = np.concatenate([zero, np.cumsum(yc)])
        self.s_yy = np.concatenate([zero, np.cumsum(yc * yc)])
        if model == "linear":
            self.s_x = np.concatenate([zero, np.cumsum(x)])
            self.s_xx = np.concatenate([zero, np.cumsum(x * x)])
            self.s_xy = np.concatenate([zero, np.cumsum(x * yc)])

    def rss(self, i, j):
        """
        Residual sum of squares of the segment fit over ``[i, j)``.

        Parameters
        ----------
        i : int or np.ndarray of int
            Segment start, or an array of candidate starts.
        j : int
            Segment stop (exclusive).

        Returns
        -------
        float or np.ndarray
            One RSS per start, clipped at zero against rounding.
        """
        length = j - i
        sy = self.s_y[j] - self.s_y[i]
        syy = self.s_yy[j] - self.s_yy[i]
        ss_y = syy - sy * sy / length
        if self.model == "mean":
            return np.maximum(ss_y, 0.0)
        sx = self.s_x[j] - self.s_x[i]
        sxx = self.s_xx[j] - self.s_xx[i]
        sxy = self.s_xy[j] - self.s_xy[i]
        ss_x = sxx - sx * sx / length
        ss_xy = sxy - sx * sy / length
        with np.errstate(divide="ignore", invalid="ignore"):
            explained = np.where(ss_x > 0, ss_xy * ss_xy / ss_x, 0.0)
        return np.maximum(ss_y - explained, 0.0)


def _check_budget(started: float, budget: Optional[float], stage: str):
    if budget is not None and time.monotonic() - started > budget:
        raise BudgetExceededError(f"breakpoint search exceeded its {budget}s budget during {stage}")


def _optimal_partitions(cost: _SegmentCost, n: int, h: int, max_breaks: int,
                        started: float, budget: Optional[float]) -> Tuple[List[float], List[List[int]]]:
    """
    Minimal RSS and the corresponding break positions for m = 0..max_breaks.

    best[m][j] is the minimal RSS of splitting [0, j) into m+1 segments.
    """
    inf = np.inf
    best = np.full((max_breaks + 1, n + 1), inf)
    back = np.full((max_breaks + 1, n + 1), -1, dtype=int)
    for j in range(h, n + 1):
        best[0, j] = float(cost.rss(0, j))

    for m in range(1, max_breaks + 1):
        _check_budget(started, budget, f"stage m={m}")
        for j in range((m + 1) * h, n + 1):
            starts = np.arange(m * h, j - h + 1)
            candidates = best[m - 1, starts] + cost.rss(starts, j)
            k = int(np.argmin(candidates))
            best[m, j] = candidates[k]
            back[m, j] = starts[k]

    rss_by_m, breaks_by_m = [], []
    for m in range(max_breaks + 1):
        rss_by_m.append(float(best[m, n]))
        positions = []
        j = n
        for level in range(m, 0, -1):
            j = int(back[level, j])
            positions.append(j)
        breaks_by_m.append(sorted(positions))
    return rss_by_m, breaks_by_m


def _summarize(y: np.ndarray, start: int, stop: int, model: str) -> SegmentSummary:
    seg = y[start:stop]
    slope = None
    if model == "linear":
        slope = float(np.polyfit(np.arange(start, stop, dtype=float), seg, 1)[0])
    return SegmentSummary(start=start, stop=stop, mean=float(seg.mean()), slope=slope)


def _jump_at(y: np.ndarray, left: SegmentSummary, right: SegmentSummary, index: int, model: str) -> float:
    if model == "mean":
        return right.mean - left.mean
    xl = np.arange(left.start, left.stop, dtype=float)
    xr = np.arange(right.start, right.stop, dtype=float)
    left_line = np.polyfit(xl, y[left.start:left.stop], 1)
    right_line = np.polyfit(xr, y[right.start:right.stop], 1)
    return float(np.polyval(right_line, index) - np.polyval(left_line, index))


def detect_breakpoints(
    data: Union[TimeSeries, Sequence[float]],
    max_breaks: int = 5,
    min_segment_size: Optional[int] = None,
    segment_model: str = "mean",
    labels: Optional[Sequence[str]] = None,
    time_budget: Optional[float] = None,
) -> Breakpoints:
    """
    Find the BIC-optimal set of structural breaks in ``data``.

    Parameters
    ----------
    data : TimeSeries or sequence of float
        Observations without missing values.
    max_breaks : int, default 5
        Largest number of breaks considered (capped by what ``min_segment_size``
        allows).
    min_segment_size : int, optional
        Minimum observations per segment. Defaults to 15% of n (at least 2, and
        at least 3 for the linear model).
    segment_model : {"mean", "linear"}
        Per-segment fit.
    labels : sequence of str, optional
        Label per observation used to name breakpoints. A TimeSeries supplies
        calendar labels when omitted.
    time_budget : float, optional
        Seconds allowed for the search; exceeded -> BudgetExceededError.

    Returns
    -------
    Breakpoints
        ``index`` of each break is the first observation of the new segment.
    """
    started = time.monotonic()
    validate_choice("segment_model", segment_model, SEGMENT_MODELS)
    max_breaks = validate_positive_int("max_breaks", max_breaks, minimum=0)
    y = coerce_values(data)
    if np.isnan(y).any():
        raise ConfigurationError("breakpoint detection does not accept missing values")
    n = len(y)
    if labels is not None and len(labels) != n:
        raise ConfigurationError("labels must have one entry per observation")

    q = 1 if segment_model == "mean" else 2
    if min_segment_size is None:
        h = max(q + 1, 2, int(math.floor(0.15 * n)))
    else:
        h = validate_positive_int("min_segment_size", min_segment_size, minimum=q + 1)
    if n < h:
        raise InsufficientDataError(f"series of length {n} is shorter than one segment ({h})")

    feasible = n // h - 1
    if max_breaks > 0 and feasible < 1:
        raise InsufficientDataError(
            f"series of length {n} cannot hold two segments of at least {h} observations"
        )
    if feasible < max_breaks:
        logger.debug("Capping max_breaks at %d for n=%d, min_segment_size=%d", feasible, n, h)
        max_breaks = feasible

    cost = _SegmentCost(y, segment_model)
    rss_by_m, breaks_by_m = _optimal_partitions(cost, n, h, max_breaks, started, time_budget)

    bic_by_count, rss_by_count = {}, {}
    best_m, best_bic = 0, np.inf
    for m, rss in enumerate(rss_by_m):
        k = (q + 1) * (m + 1)
        bic = n * math.log(max(rss, np.finfo(float).tiny) / n) + k * math.log(n)
        bic_by_count[m] = bic
        rss_by_count[m] = rss
        logger.debug("m=%d RSS=%.6g BIC=%.6g", m, rss, bic)
        # strict improvement only: ties keep the more parsimonious model
        if bic < best_bic - 1e-12:
            best_m, best_bic = m, bic

    positions = breaks_by_m[best_m]
    bounds = [0] + positions + [n]
    segments = [_summarize(y, a, b, segment_model) for a, b in zip(bounds, bounds[1:])]
    dof = max(n - q * (best_m + 1), 1)
    sigma2 = rss_by_m[best_m] / dof

    results = []
    for idx, pos in enumerate(positions):
        left, right = segments[idx], segments[idx + 1]
        delta = _jump_at(y, left, right, pos, segment_model)
        half_width = BAI_CI_CRITICAL_95 * sigma2 / (delta * delta) if delta != 0 else math.inf
        lo = left.start + 1
        hi = right.stop - 1
        ci_lower = lo if math.isinf(half_width) else max(lo, int(math.floor(pos - half_width)))
        ci_upper = hi if math.isinf(half_width) else min(hi, int(math.ceil(pos + half_width)))
        if labels is not None:
            label = str(labels[pos])
        elif isinstance(data, TimeSeries):
            label = data.format_label(pos)
        else:
            label = None
        results.append(Breakpoint(
            index=pos,
            std_error=half_width / _NORMAL_975,
            ci_lower=ci_lower,
            ci_upper=ci_upper,
            left=left,
            right=right,
            label=label,
        ))

    return Breakpoints(
        breakpoints=results,
        segment_model=segment_model,
        min_segment_size=h,
        bic_by_count=bic_by_count,
        rss_by_count=rss_by_count,
    )
