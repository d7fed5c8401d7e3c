"""
Run state, per-unit records, and run configuration.

RunState is the only mutable value in the pipeline. The Run Controller owns
one per run and passes it through each stage explicitly. Records are the
published output: frozen, one per unit, ordered by index.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

from tier_governor.control.modes import (
    DEFAULT_SCORE_THRESHOLD,
    RunMode,
    validate_score_threshold,
)
from tier_governor.control.tiers import Tier


BASE_DISPERSION = 0.4
BASE_CURVATURE = 0.2
BASE_SPECTRUM = 0.5


@dataclass
class RunState:
    """Latent signals, current tier, and running accumulators for one run."""
    dispersion: float = BASE_DISPERSION
    curvature: float = BASE_CURVATURE
    prior_spectrum: float = BASE_SPECTRUM
    tier: Tier = Tier.EDGE
    unit_count: int = 0
    info_gain: float = 0.0
    total_cost: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dispersion": self.dispersion,
            "curvature": self.curvature,
            "prior_spectrum": self.prior_spectrum,
            "tier": self.tier.value,
            "unit_count": self.unit_count,
            "info_gain": self.info_gain,
            "total_cost": self.total_cost,
        }


@dataclass(frozen=True)
class Record:
    """
    One processed unit.

    score, dispersion and drift are the damped values. info_gain and
    total_cost are the running accumulators after this unit, so
    efficiency can be recomputed from the record alone.
    """
    index: int
    payload: str
    score: float
    dispersion: float
    curvature: float
    drift: float
    tier: Tier
    efficiency: float
    cost: float
    latency_ms: float
    info_gain: float
    total_cost: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "payload": self.payload,
            "score": self.score,
            "dispersion": self.dispersion,
            "curvature": self.curvature,
            "drift": self.drift,
            "tier": self.tier.value,
            "efficiency": self.efficiency,
            "cost": self.cost,
            "latency_ms": self.latency_ms,
            "info_gain": self.info_gain,
            "total_cost": self.total_cost,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Record":
        return cls(
            index=int(d["index"]),
            payload=d["payload"],
            score=float(d["score"]),
            dispersion=float(d["dispersion"]),
            curvature=float(d["curvature"]),
            drift=float(d["drift"]),
            tier=Tier.parse(d["tier"]),
            efficiency=float(d["efficiency"]),
            cost=float(d["cost"]),
            latency_ms=float(d["latency_ms"]),
            info_gain=float(d["info_gain"]),
            total_cost=float(d["total_cost"]),
            timestamp=datetime.fromisoformat(d["timestamp"]),
        )


@dataclass(frozen=True)
class RunConfig:
    """
    Caller-supplied configuration, fixed for the duration of a run.

    score_threshold only matters in STANDARD mode. force_escalate seeds the
    run's override latch so the override fires on the first unit.
    """
    mode: RunMode = RunMode.STANDARD
    score_threshold: float = DEFAULT_SCORE_THRESHOLD
    force_escalate: bool = False

    def __post_init__(self):
        object.__setattr__(self, "mode", RunMode.parse(self.mode))
        object.__setattr__(
            self, "score_threshold", validate_score_threshold(self.score_threshold)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "score_threshold": self.score_threshold,
            "force_escalate": self.force_escalate,
        }
