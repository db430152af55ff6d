from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class PatternOutput:
    """
    A generic container for the result of a Pattern.

    ``results`` holds plain Python values only, so the whole output can be
    passed to ``json.dumps``. A failed analysis carries
    ``{"error": {"type": ..., "message": ...}}`` instead of its usual keys.
    """
    pattern_name: str
    pattern_version: str
    series_id: str
    results: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return "error" in self.results

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert this object to a Python dict (e.g., for JSON serialization).
        """
        return {
            "pattern_name": self.pattern_name,
            "pattern_version": self.pattern_version,
            "series_id": self.series_id,
            "results": self.results,
        }
