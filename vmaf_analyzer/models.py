"""VMAF model and report format selectors"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict


class OutputFormat(Enum):
    """Report formats the analyzer can write."""
    JSON = "json"
    XML = "xml"
    CSV = "csv"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def flag(self) -> str:
        return f"--{self.value}"

    @classmethod
    def parse(cls, value) -> "OutputFormat":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Output format must be one of {', '.join(f.value for f in cls)}: {value}"
            ) from None


@dataclass(frozen=True)
class QualityModel:
    """A trained VMAF configuration the analyzer can apply."""
    identifier: str
    display_name: str
    description: str


MODELS: Dict[str, QualityModel] = {
    m.identifier: m for m in (
        QualityModel("vmaf_v0.6.1", "VMAF v0.6.1 (General Purpose)",
                     "Standard VMAF model for general video quality assessment"),
        QualityModel("vmaf_4k_v0.6.1", "VMAF 4K v0.6.1 (Recommended for 8K)",
                     "Optimized for 4K and 8K high-resolution content analysis"),
        QualityModel("vmaf_float_v0.6.1", "VMAF Float v0.6.1 (High Precision)",
                     "Floating-point version for maximum precision analysis"),
    )
}

ALIASES = {
    "quality": "vmaf_v0.6.1",
    "quality-4k": "vmaf_4k_v0.6.1",
    "quality-float": "vmaf_float_v0.6.1",
}

DEFAULT_MODEL = "vmaf_v0.6.1"


def resolve_model(identifier: str) -> str:
    """Map an alias to the analyzer's model version string.

    Unknown identifiers are passed through; the analyzer rejects them itself.
    """
    if not identifier or not identifier.strip():
        raise ValueError("A model identifier is required")
    identifier = identifier.strip()
    return ALIASES.get(identifier.lower(), identifier)


def estimate_analysis_time(video_duration: float, resolution: str) -> float:
    """Rough wall-clock estimate for an analysis, in seconds.

    Based on typical VMAF throughput; actual timing varies with hardware.
    """
    base_time = video_duration * 0.1
    res = resolution.lower()
    if "8k" in res or "7680" in res:
        multiplier = 8.0
    elif "4k" in res or "3840" in res:
        multiplier = 4.0
    elif "1080" in res:
        multiplier = 1.0
    else:
        multiplier = 0.5
    return base_time * multiplier
