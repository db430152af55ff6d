"""
config.py

Explicit configuration objects, one per analysis. Field names match the keyword
arguments of the primitive they configure, so ``primitive(data, **cfg.to_kwargs())``
is valid for every section except ControlChartConfig, whose ``run_length`` feeds
``with_run_signals``. There are no module-level defaults that a caller can mutate:
each call either passes its own values or gets the function's documented default.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple

from tempora_app.core.exceptions import ConfigurationError

LOESS_KERNELS = ("tricube", "epanechnikov", "gaussian", "uniform")
DECOMPOSITION_MODES = ("additive", "multiplicative", "auto-transform")
LAMBDA_METHODS = ("guerrero", "loglik")
SEGMENT_MODELS = ("mean", "linear")


def validate_span(span: float) -> float:
    if not 0 < span <= 1:
        raise ConfigurationError(f"span must be in (0, 1], got {span}")
    return float(span)


def validate_taus(taus: Sequence[float]) -> Tuple[float, ...]:
    taus = tuple(float(t) for t in taus)
    if not taus:
        raise ConfigurationError("at least one quantile level is required")
    for t in taus:
        if not 0 < t < 1:
            raise ConfigurationError(f"quantile levels must be in (0, 1), got {t}")
    if any(b <= a for a, b in zip(taus, taus[1:])):
        raise ConfigurationError(f"quantile levels must be strictly increasing, got {list(taus)}")
    return taus


def validate_sigma_multiplier(z: float) -> float:
    if not z > 0:
        raise ConfigurationError(f"sigma multiplier must be positive, got {z}")
    return float(z)


def validate_taper(taper: float) -> float:
    if not 0 <= taper <= 0.5:
        raise ConfigurationError(f"taper proportion must be in [0, 0.5], got {taper}")
    return float(taper)


def validate_spans(spans: Optional[Sequence[int]]) -> Tuple[int, ...]:
    if spans is None:
        return ()
    if isinstance(spans, int):
        spans = (spans,)
    spans = tuple(int(s) for s in spans)
    for s in spans:
        if s < 3 or s % 2 == 0:
            raise ConfigurationError(f"smoothing spans must be odd integers >= 3, got {s}")
    return spans


def validate_choice(name: str, value: str, choices: Sequence[str]) -> str:
    if value not in choices:
        raise ConfigurationError(f"{name} must be one of {list(choices)}, got {value!r}")
    return value


def validate_positive_int(name: str, value: int, minimum: int = 1) -> int:
    if isinstance(value, bool) or int(value) != value or value < minimum:
        raise ConfigurationError(f"{name} must be an integer >= {minimum}, got {value!r}")
    return int(value)


class _ConfigMixin:
    def to_kwargs(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LoessConfig(_ConfigMixin):
    span: float = 0.75
    degree: int = 1
    kernel: str = "tricube"
    robust_iterations: int = 0

    def __post_init__(self):
        validate_span(self.span)
        if self.degree not in (0, 1, 2):
            raise ConfigurationError(f"local degree must be 0, 1 or 2, got {self.degree}")
        validate_choice("kernel", self.kernel, LOESS_KERNELS)
        validate_positive_int("robust_iterations", self.robust_iterations, minimum=0)


@dataclass(frozen=True)
class QuantileConfig(_ConfigMixin):
    taus: Tuple[float, ...] = (0.25, 0.5, 0.75)
    degree: int = 1
    max_iter: int = 1000

    def __post_init__(self):
        object.__setattr__(self, "taus", validate_taus(self.taus))
        validate_positive_int("degree", self.degree)
        validate_positive_int("max_iter", self.max_iter)


@dataclass(frozen=True)
class SegmentedConfig(_ConfigMixin):
    psi_init: Optional[Tuple[float, ...]] = None
    n_breakpoints: int = 1
    tol: float = 1e-6
    max_iter: int = 30

    def __post_init__(self):
        if self.psi_init is not None:
            psi = (self.psi_init,) if isinstance(self.psi_init, (int, float)) else tuple(self.psi_init)
            object.__setattr__(self, "psi_init", tuple(float(p) for p in psi))
        validate_positive_int("n_breakpoints", self.n_breakpoints)
        if not self.tol > 0:
            raise ConfigurationError(f"tol must be positive, got {self.tol}")
        validate_positive_int("max_iter", self.max_iter)


@dataclass(frozen=True)
class DecompositionConfig(_ConfigMixin):
    mode: str = "additive"
    lambda_method: str = "guerrero"
    lambda_bounds: Tuple[float, float] = (-1.0, 2.0)

    def __post_init__(self):
        validate_choice("mode", self.mode, DECOMPOSITION_MODES)
        validate_choice("lambda_method", self.lambda_method, LAMBDA_METHODS)
        lo, hi = self.lambda_bounds
        if not lo < hi:
            raise ConfigurationError(f"lambda_bounds must be increasing, got {self.lambda_bounds}")
        object.__setattr__(self, "lambda_bounds", (float(lo), float(hi)))


@dataclass(frozen=True)
class ControlChartConfig(_ConfigMixin):
    sigma_multiplier: float = 3.0
    run_length: Optional[int] = 8

    def __post_init__(self):
        validate_sigma_multiplier(self.sigma_multiplier)
        if self.run_length is not None:
            validate_positive_int("run_length", self.run_length, minimum=2)


@dataclass(frozen=True)
class BreakpointConfig(_ConfigMixin):
    max_breaks: int = 5
    min_segment_size: Optional[int] = None
    segment_model: str = "mean"
    time_budget: Optional[float] = None

    def __post_init__(self):
        validate_positive_int("max_breaks", self.max_breaks, minimum=0)
        if self.min_segment_size is not None:
            validate_positive_int("min_segment_size", self.min_segment_size, minimum=2)
        validate_choice("segment_model", self.segment_model, SEGMENT_MODELS)
        if self.time_budget is not None and not self.time_budget > 0:
            raise ConfigurationError(f"time_budget must be positive seconds, got {self.time_budget}")


@dataclass(frozen=True)
class SpectralConfig(_ConfigMixin):
    taper: float = 0.1
    detrend: bool = True
    spans: Tuple[int, ...] = ()
    pad: bool = False

    def __post_init__(self):
        validate_taper(self.taper)
        object.__setattr__(self, "spans", validate_spans(self.spans))


@dataclass(frozen=True)
class AnalysisConfig:
    """Bundle of per-analysis configuration used by the patterns layer."""
    loess: LoessConfig = field(default_factory=LoessConfig)
    quantile: QuantileConfig = field(default_factory=QuantileConfig)
    segmented: SegmentedConfig = field(default_factory=SegmentedConfig)
    decomposition: DecompositionConfig = field(default_factory=DecompositionConfig)
    control_chart: ControlChartConfig = field(default_factory=ControlChartConfig)
    breakpoints: BreakpointConfig = field(default_factory=BreakpointConfig)
    spectral: SpectralConfig = field(default_factory=SpectralConfig)
