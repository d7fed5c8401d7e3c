"""
Run Telemetry

Read-only views derived from the published records, for presentation:

- RunSummary: current score / tier / efficiency, accumulated cost
- MigrationMarker: units where the tier differs from the previous unit
- ScoreBand: stable / plateau / critical relative to the run thresholds
- SystemHealth: simulated host load that follows the active tier

Principle: records are authoritative. Telemetry is a view.

The health numbers are simulated. They track the tier so a dashboard has
something to draw, and they carry no hardware meaning.
"""

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from tier_governor.control.modes import TierThresholds
from tier_governor.control.tiers import Tier
from tier_governor.state import Record


# =============================================================================
# Score Bands
# =============================================================================

class ScoreBand(Enum):
    """Where a score sits relative to the run thresholds."""
    STABLE = "stable"
    PLATEAU = "plateau"
    CRITICAL = "critical"


def classify_score(score: float, thresholds: TierThresholds) -> ScoreBand:
    if score >= thresholds.score_threshold:
        return ScoreBand.CRITICAL
    if score >= thresholds.det_threshold:
        return ScoreBand.PLATEAU
    return ScoreBand.STABLE


# =============================================================================
# Migration Markers
# =============================================================================

@dataclass(frozen=True)
class MigrationMarker:
    """A unit whose tier differs from the unit before it."""
    index: int
    from_tier: Tier
    to_tier: Tier

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "from": self.from_tier.value, "to": self.to_tier.value}


def migration_markers(records: Sequence[Record]) -> List[MigrationMarker]:
    markers = []
    for prev, curr in zip(records, records[1:]):
        if curr.tier != prev.tier:
            markers.append(MigrationMarker(curr.index, prev.tier, curr.tier))
    return markers


# =============================================================================
# Run Summary
# =============================================================================

@dataclass
class RunSummary:
    """Headline metrics for the presentation layer."""
    units: int = 0
    current_score: float = 0.0
    current_tier: Tier = Tier.EDGE
    current_efficiency: float = 0.0
    total_cost: float = 0.0
    mean_cost_per_unit: float = 0.0
    escalations: int = 0
    migrations: List[MigrationMarker] = field(default_factory=list)
    tier_occupancy: Dict[Tier, int] = field(default_factory=lambda: {t: 0 for t in Tier})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "units": self.units,
            "current_score": self.current_score,
            "current_tier": self.current_tier.value,
            "current_efficiency": self.current_efficiency,
            "total_cost": self.total_cost,
            "mean_cost_per_unit": self.mean_cost_per_unit,
            "escalations": self.escalations,
            "migrations": [m.to_dict() for m in self.migrations],
            "tier_occupancy": {t.value: n for t, n in self.tier_occupancy.items()},
        }


def summarize(records: Sequence[Record], escalations: int = 0) -> RunSummary:
    """Build a summary from the published records."""
    summary = RunSummary(escalations=escalations)
    if not records:
        return summary

    last = records[-1]
    summary.units = len(records)
    summary.current_score = last.score
    summary.current_tier = last.tier
    summary.current_efficiency = last.efficiency
    summary.total_cost = last.total_cost
    summary.mean_cost_per_unit = last.total_cost / len(records)
    summary.migrations = migration_markers(records)
    for record in records:
        summary.tier_occupancy[record.tier] += 1
    return summary


# =============================================================================
# Simulated System Health
# =============================================================================

INITIAL_CPU_PCT = 15.0
INITIAL_GPU_PCT = 0.0
INITIAL_MEMORY_GB = 2.4
INITIAL_LATENCY_MS = 45.0
MEMORY_STEP_GB = 0.05
MEMORY_CAP_GB = 16.0


@dataclass(frozen=True)
class SystemHealth:
    """Snapshot of simulated host load."""
    cpu_pct: float = INITIAL_CPU_PCT
    gpu_pct: float = INITIAL_GPU_PCT
    memory_gb: float = INITIAL_MEMORY_GB
    latency_ms: float = INITIAL_LATENCY_MS
    escalations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cpu_pct": self.cpu_pct,
            "gpu_pct": self.gpu_pct,
            "memory_gb": self.memory_gb,
            "latency_ms": self.latency_ms,
            "escalations": self.escalations,
        }


class SystemHealthMonitor:
    """
    Tracks simulated load as units land on tiers.

    Uses its own RNG so seeded signal runs stay reproducible.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()
        self.current = SystemHealth()

    def reset(self) -> SystemHealth:
        self.current = SystemHealth()
        return self.current

    def update(self, record: Record, escalations: int) -> SystemHealth:
        if record.tier == Tier.EDGE:
            cpu = 65.0 + self.rng.random() * 15.0
        else:
            cpu = 25.0 + self.rng.random() * 10.0

        if record.tier == Tier.CLOUD:
            gpu = 85.0 + self.rng.random() * 10.0
        else:
            gpu = 5.0 + self.rng.random() * 5.0

        self.current = SystemHealth(
            cpu_pct=cpu,
            gpu_pct=gpu,
            memory_gb=min(MEMORY_CAP_GB, self.current.memory_gb + MEMORY_STEP_GB),
            latency_ms=record.latency_ms,
            escalations=escalations,
        )
        return self.current
