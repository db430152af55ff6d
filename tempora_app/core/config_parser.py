import toml
from dataclasses import fields
from typing import Any, Dict, Type

from tempora_app.core.config import (
    AnalysisConfig,
    BreakpointConfig,
    ControlChartConfig,
    DecompositionConfig,
    LoessConfig,
    QuantileConfig,
    SegmentedConfig,
    SpectralConfig,
)
from tempora_app.core.exceptions import ConfigurationError

_SECTIONS: Dict[str, Type] = {
    "loess": LoessConfig,
    "quantile": QuantileConfig,
    "segmented": SegmentedConfig,
    "decomposition": DecompositionConfig,
    "control_chart": ControlChartConfig,
    "breakpoints": BreakpointConfig,
    "spectral": SpectralConfig,
}

# TOML has no tuples; these fields arrive as arrays
_TUPLE_FIELDS = {"taus", "psi_init", "lambda_bounds", "spans"}


def parse_analysis_config_toml(toml_str: str) -> AnalysisConfig:
    """
    Parse a TOML document into an AnalysisConfig.

    Example
    -------
        [decomposition]
        mode = "auto-transform"

        [breakpoints]
        max_breaks = 3
        segment_model = "linear"

    Missing sections keep their defaults; unknown sections or keys raise
    ConfigurationError rather than being ignored.
    """
    try:
        data = toml.loads(toml_str)
    except toml.TomlDecodeError as e:
        raise ConfigurationError(f"invalid TOML: {e}") from e

    unknown = set(data) - set(_SECTIONS)
    if unknown:
        raise ConfigurationError(f"unknown config sections: {sorted(unknown)}")

    sections = {}
    for name, cls in _SECTIONS.items():
        if name in data:
            sections[name] = _parse_section(name, cls, data[name])
    return AnalysisConfig(**sections)


def _parse_section(name: str, cls: Type, raw: Dict[str, Any]):
    if not isinstance(raw, dict):
        raise ConfigurationError(f"[{name}] must be a table")
    allowed = {f.name for f in fields(cls)}
    unknown = set(raw) - allowed
    if unknown:
        raise ConfigurationError(f"unknown keys in [{name}]: {sorted(unknown)}")

    kwargs = {}
    for key, value in raw.items():
        if key in _TUPLE_FIELDS and isinstance(value, list):
            value = tuple(value)
        kwargs[key] = value
    return cls(**kwargs)


def load_analysis_config(path: str) -> AnalysisConfig:
    with open(path, "r") as f:
        return parse_analysis_config_toml(f.read())
