"""
Run Modes - Named Threshold Presets

A mode is the operator's coarse dial. Instead of tuning the escalation
threshold directly, the operator picks a named posture and the preset
supplies the threshold (or defers to the configured one).

Modes:
- BASELINE: migrations disabled, every unit runs on Edge
- STANDARD: configured score threshold (default 1.5)
- AGGRESSIVE: escalate early (threshold 1.0)
- ENERGY_SAVING: tolerate more instability before paying for Cloud (2.0)

The deterministic-control band sits below the escalation threshold at a
fixed ratio: det_threshold = 0.6 * score_threshold.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union


SCORE_THRESHOLD_MIN = 0.5
SCORE_THRESHOLD_MAX = 3.0
DEFAULT_SCORE_THRESHOLD = 1.5
DET_THRESHOLD_RATIO = 0.6


class RunMode(Enum):
    """Operator-selected run posture."""
    BASELINE = "baseline"
    STANDARD = "standard"
    AGGRESSIVE = "aggressive"
    ENERGY_SAVING = "energy-saving"

    @classmethod
    def parse(cls, value: Union[str, "RunMode"]) -> "RunMode":
        """Accept either a RunMode or its string value ("energy-saving", ...)."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("_", "-")
        for mode in cls:
            if mode.value == normalized:
                return mode
        valid = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown mode: {value}. Valid options: {valid}")


@dataclass(frozen=True)
class TierThresholds:
    """Effective thresholds for one run."""
    score_threshold: float
    det_threshold: float

    @classmethod
    def from_score_threshold(cls, score_threshold: float) -> "TierThresholds":
        return cls(
            score_threshold=score_threshold,
            det_threshold=score_threshold * DET_THRESHOLD_RATIO,
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "score_threshold": self.score_threshold,
            "det_threshold": self.det_threshold,
        }


@dataclass(frozen=True)
class ModePreset:
    """
    Named mode preset.

    score_threshold of None means "use the threshold from RunConfig".
    """
    name: str
    mode: RunMode
    score_threshold: Optional[float] = None
    migrations_enabled: bool = True
    description: str = ""

    def resolve(self, configured_threshold: float) -> TierThresholds:
        """Effective thresholds for this preset given the configured value."""
        threshold = (
            self.score_threshold
            if self.score_threshold is not None
            else configured_threshold
        )
        return TierThresholds.from_score_threshold(threshold)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "mode": self.mode.value,
            "score_threshold": self.score_threshold,
            "migrations_enabled": self.migrations_enabled,
            "description": self.description,
        }


# === Standard Presets ===

PRESETS: Dict[RunMode, ModePreset] = {
    RunMode.BASELINE: ModePreset(
        name="baseline",
        mode=RunMode.BASELINE,
        migrations_enabled=False,
        description="No migration. Every unit stays on Edge.",
    ),

    RunMode.STANDARD: ModePreset(
        name="standard",
        mode=RunMode.STANDARD,
        description="Configured score threshold with hysteretic Control band.",
    ),

    RunMode.AGGRESSIVE: ModePreset(
        name="aggressive",
        mode=RunMode.AGGRESSIVE,
        score_threshold=1.0,
        description="Escalate to Cloud early, favour stability over cost.",
    ),

    RunMode.ENERGY_SAVING: ModePreset(
        name="energy-saving",
        mode=RunMode.ENERGY_SAVING,
        score_threshold=2.0,
        description="Tolerate instability longer before paying for Cloud.",
    ),
}


def validate_score_threshold(value: float) -> float:
    """Reject thresholds outside the supported dial range."""
    value = float(value)
    if not SCORE_THRESHOLD_MIN <= value <= SCORE_THRESHOLD_MAX:
        raise ValueError(
            f"score_threshold must be in [{SCORE_THRESHOLD_MIN}, {SCORE_THRESHOLD_MAX}], "
            f"got {value}"
        )
    return value


def effective_thresholds(
    mode: RunMode,
    score_threshold: float = DEFAULT_SCORE_THRESHOLD,
    presets: Optional[Dict[RunMode, ModePreset]] = None,
) -> TierThresholds:
    """Resolve the thresholds a run will actually use."""
    presets = presets or PRESETS
    return presets[mode].resolve(score_threshold)
