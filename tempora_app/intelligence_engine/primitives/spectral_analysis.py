# =============================================================================
# SpectralAnalysis
#
# Periodogram estimation and cycle extraction.
#
# Pipeline: remove the mean (and optionally a linear trend), apply a split
# cosine-bell taper, take the FFT, and scale |X_k|^2 / N at the Fourier
# frequencies k/N, k = 1..floor(N/2). The raw periodogram can be smoothed with
# one or more modified Daniell kernels, trading resolution for variance.
#
# Peak heights depend on the taper proportion and the smoothing kernels.
# Spectra computed with different settings are not directly comparable in
# amplitude; compare peak *locations* across runs, and amplitudes only within
# one setting.
#
# Dependencies:
#   - numpy as np
#   - scipy.fft, scipy.signal and scipy.ndimage
# =============================================================================

import logging
from typing import Any, Dict, List, Sequence, Union

import numpy as np
from scipy import fft as sp_fft
from scipy import ndimage, signal

from tempora_app.core.config import validate_positive_int, validate_spans, validate_taper
from tempora_app.core.exceptions import ConfigurationError, InsufficientDataError
from tempora_app.intelligence_engine.data_structures import Spectrum, TimeSeries, coerce_values

logger = logging.getLogger(__name__)


def split_cosine_bell(n: int, proportion: float) -> np.ndarray:
    """Taper weights: cosine ramps over ``floor(n * proportion)`` points at each end."""
    m = int(np.floor(n * proportion))
    weights = np.ones(n)
    if m > 0:
        ramp = 0.5 * (1 - np.cos(np.pi * np.arange(1, 2 * m, 2) / (2 * m)))
        weights[:m] = ramp
        weights[n - m:] = ramp[::-1]
    return weights


def modified_daniell(spans: Sequence[int]) -> np.ndarray:
    """
    Coefficients of the (convolved) modified Daniell kernel for ``spans``,
    indexed -m..m. Each span s gives half-width m = s // 2 with end weights
    halved.
    """
    kernel = np.array([1.0])
    for span in spans:
        m = span // 2
        k = np.full(2 * m + 1, 1.0 / (2 * m))
        k[0] = k[-1] = 1.0 / (4 * m)
        kernel = np.convolve(kernel, k)
    return kernel


def periodogram(
    data: Union[TimeSeries, Sequence[float]],
    taper: float = 0.1,
    detrend: bool = True,
    spans: Sequence[int] = (),
    pad: bool = False,
) -> Spectrum:
    """
    Tapered, optionally smoothed periodogram.

    Parameters
    ----------
    taper : float in [0, 0.5], default 0.1
        Proportion of the series tapered at each end.
    detrend : bool, default True
        Remove a least-squares line; otherwise only the mean is removed.
    spans : sequence of odd int
        Modified Daniell smoothing spans; empty for the raw periodogram.
    pad : bool, default False
        Zero-pad to a fast FFT length.

    Returns
    -------
    Spectrum
        ``df`` and ``bandwidth`` follow the kernel and taper used, so
        ``Spectrum.confidence_interval`` gives a chi-square interval for peaks.
    """
    taper = validate_taper(taper)
    spans = validate_spans(spans)
    x = coerce_values(data)
    if np.isnan(x).any():
        raise ConfigurationError("periodogram does not accept missing values")
    n0 = len(x)
    if n0 < 4:
        raise InsufficientDataError(f"periodogram needs at least 4 observations, got {n0}")

    x = signal.detrend(x, type="linear" if detrend else "constant")

    x = x * split_cosine_bell(n0, taper)
    u2 = 1 - (5.0 / 8.0) * taper * 2
    u4 = 1 - (93.0 / 128.0) * taper * 2

    n = sp_fft.next_fast_len(n0) if pad else n0
    if n > n0:
        x = np.concatenate([x, np.zeros(n - n0)])

    raw = np.abs(sp_fft.fft(x)) ** 2 / n0
    if spans:
        kernel = modified_daniell(spans)
        if len(kernel) > n:
            raise ConfigurationError(f"smoothing spans {list(spans)} are wider than the series")
        # power is periodic in frequency
        raw = ndimage.convolve1d(raw, kernel, mode="wrap")
        m = len(kernel) // 2
        lags = np.arange(-m, m + 1)
        df = 2.0 / np.sum(kernel ** 2)
        bandwidth = float(np.sqrt(np.sum((1.0 / 12.0 + lags ** 2) * kernel)))
    else:
        df = 2.0
        bandwidth = float(np.sqrt(1.0 / 12.0))

    df = df / (u4 / u2 ** 2) * (n0 / n)
    bandwidth = bandwidth / n

    n_spec = n // 2
    frequency = np.arange(1, n_spec + 1) / n
    power = raw[1:n_spec + 1] / u2
    logger.debug("Periodogram n=%d (padded %d), df=%.3f, bandwidth=%.5f", n0, n, df, bandwidth)

    return Spectrum(
        frequency=frequency,
        power=power,
        df=float(df),
        bandwidth=float(bandwidth),
        taper=taper,
        kernel_spans=tuple(spans),
        detrended=detrend,
        sampling_frequency=data.frequency if isinstance(data, TimeSeries) else 1,
    )


def dominant_cycles(
    data: Union[TimeSeries, Sequence[float]],
    n_peaks: int = 1,
    level: float = 0.95,
    **periodogram_kwargs,
) -> List[Dict[str, Any]]:
    """
    The ``n_peaks`` strongest local maxima of the periodogram.

    Each entry gives the frequency (cycles per observation), the cycle length
    in observations (1 / frequency), the cycle length in natural cycles of the
    series (cycle length / series frequency), the power and a chi-square
    interval for the power at ``level``.
    """
    n_peaks = validate_positive_int("n_peaks", n_peaks)
    spectrum = periodogram(data, **periodogram_kwargs)
    lower, upper = spectrum.confidence_interval(level)
    cycles = []
    for i in spectrum.peaks(n_peaks):
        f = float(spectrum.frequency[i])
        cycles.append({
            "frequency": f,
            "cycle_length": 1.0 / f,
            "cycle_length_in_cycles": 1.0 / f / spectrum.sampling_frequency,
            "power": float(spectrum.power[i]),
            "ci_lower": float(lower[i]),
            "ci_upper": float(upper[i]),
            "bandwidth": spectrum.bandwidth,
        })
    return cycles
