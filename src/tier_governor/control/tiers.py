"""
Tier Controller

Chooses the execution tier for each unit from the composite instability
score. Hysteretic: the Control band below the escalation threshold lets a
unit step down to deterministic control without paying for Cloud, and
Control only releases back to Edge once the score falls under the band.

Tiers (ordered by cost and capability):
- EDGE: cheap local execution, initial tier
- CONTROL: deterministic control, moderate cost
- CLOUD: expensive, strongest corrective effect

Escalation is one-way. Nothing leaves CLOUD within a run; callers that
expect recovery from CLOUD must not assume it.

The controller itself holds no tier. Decisions are a function of
(tier, score, thresholds, override latch); the caller owns the tier.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, auto
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from tier_governor.control.modes import TierThresholds


class Tier(Enum):
    """Execution tiers."""
    EDGE = "Edge"
    CONTROL = "Control"
    CLOUD = "Cloud"

    @property
    def rank(self) -> int:
        return _TIER_RANK[self]

    @classmethod
    def parse(cls, value: str) -> "Tier":
        for tier in cls:
            if value in (tier.value, tier.name):
                return tier
        raise ValueError(f"Unknown tier: {value}")


_TIER_RANK = {Tier.EDGE: 0, Tier.CONTROL: 1, Tier.CLOUD: 2}


class TransitionCause(Enum):
    """Why the tier changed."""
    MANUAL_OVERRIDE = auto()
    THRESHOLD_EXCEEDED = auto()
    UNCERTAINTY_PLATEAU = auto()
    STABILITY_RESTORED = auto()


# Event kind each cause is logged as ("migration" or "info").
CAUSE_EVENT_KIND = {
    TransitionCause.MANUAL_OVERRIDE: "migration",
    TransitionCause.THRESHOLD_EXCEEDED: "migration",
    TransitionCause.UNCERTAINTY_PLATEAU: "info",
    TransitionCause.STABILITY_RESTORED: "info",
}


@dataclass(frozen=True)
class TierDamping:
    """Corrective effect of running a unit on a tier."""
    score: float = 1.0
    dispersion: float = 1.0
    drift: float = 1.0


DAMPING: Dict[Tier, TierDamping] = {
    Tier.CLOUD: TierDamping(score=0.4, dispersion=0.5, drift=0.3),
    Tier.CONTROL: TierDamping(score=0.7, dispersion=0.8),
    Tier.EDGE: TierDamping(),
}


def apply_damping(
    tier: Tier,
    score: float,
    dispersion: float,
    drift: float,
) -> Tuple[float, float, float]:
    """Apply the finalized tier's damping. Returns (score, dispersion, drift)."""
    d = DAMPING[tier]
    return score * d.score, dispersion * d.dispersion, drift * d.drift


class EscalationLatch:
    """
    Manual override flag.

    Set by an outside actor (operator, UI) while a run is active; read and
    cleared in one step by the controller so a single request triggers a
    single override.
    """

    def __init__(self, asserted: bool = False):
        self._lock = Lock()
        self._asserted = asserted

    def assert_(self):
        with self._lock:
            self._asserted = True

    @property
    def asserted(self) -> bool:
        with self._lock:
            return self._asserted

    def consume(self) -> bool:
        """Atomically read and clear. True if the latch was set."""
        with self._lock:
            was_set = self._asserted
            self._asserted = False
            return was_set


@dataclass
class TierTransition:
    """Record of a tier transition."""
    timestamp: datetime
    unit_index: int
    from_tier: Tier
    to_tier: Tier
    score: float
    cause: TransitionCause
    message: str

    @property
    def event_kind(self) -> str:
        return CAUSE_EVENT_KIND[self.cause]

    @property
    def is_escalation(self) -> bool:
        return self.to_tier == Tier.CLOUD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "unit_index": self.unit_index,
            "from": self.from_tier.value,
            "to": self.to_tier.value,
            "score": self.score,
            "cause": self.cause.name,
            "message": self.message,
        }


@dataclass
class TierDecision:
    """Outcome of one evaluation: the tier for this unit, and the transition if any."""
    tier: Tier
    transition: Optional[TierTransition] = None

    @property
    def changed(self) -> bool:
        return self.transition is not None


@dataclass
class TierMetrics:
    """Transition counts and tier occupancy for one run."""
    transition_counts: Dict[str, int] = field(default_factory=dict)
    units_in_tier: Dict[Tier, int] = field(default_factory=lambda: {t: 0 for t in Tier})
    cause_counts: Dict[TransitionCause, int] = field(
        default_factory=lambda: {c: 0 for c in TransitionCause}
    )

    def record_transition(self, transition: TierTransition):
        key = f"{transition.from_tier.name}->{transition.to_tier.name}"
        self.transition_counts[key] = self.transition_counts.get(key, 0) + 1
        self.cause_counts[transition.cause] += 1

    def record_unit(self, tier: Tier):
        self.units_in_tier[tier] += 1

    def get_summary(self) -> Dict[str, Any]:
        total = sum(self.units_in_tier.values())
        return {
            "total_units": total,
            "transitions": dict(self.transition_counts),
            "causes": {c.name: n for c, n in self.cause_counts.items()},
            "occupancy": {
                t.value: (n / total if total else 0.0)
                for t, n in self.units_in_tier.items()
            },
        }


class TierController:
    """
    Hysteretic tier state machine.

    Rules are evaluated in order, first match wins:
    1. override latch set, tier != CLOUD       -> CLOUD (manual override)
    2. score >= threshold, tier != CLOUD       -> CLOUD (escalation)
    3. det <= score < threshold, tier == EDGE  -> CONTROL
    4. tier == CONTROL, score < det            -> EDGE
    5. otherwise                               -> no change

    With migrations disabled (baseline) no rule is evaluated at all and the
    latch is left untouched.
    """

    def __init__(
        self,
        thresholds: TierThresholds,
        migrations_enabled: bool = True,
        collect_metrics: bool = True,
    ):
        self.thresholds = thresholds
        self.migrations_enabled = migrations_enabled

        self.escalations = 0
        self.transition_history: List[TierTransition] = []
        self.metrics = TierMetrics() if collect_metrics else None

    def classify(
        self,
        tier: Tier,
        score: float,
        latch: Optional[EscalationLatch] = None,
    ) -> Tuple[Tier, Optional[TransitionCause], str]:
        """
        Decide the next tier.

        Returns (tier, cause, message); cause is None when nothing changes.
        Consumes the latch only when the override actually fires.
        """
        if not self.migrations_enabled:
            return tier, None, "migrations disabled"

        t = self.thresholds

        if tier != Tier.CLOUD and latch is not None and latch.consume():
            return (
                Tier.CLOUD,
                TransitionCause.MANUAL_OVERRIDE,
                "Manual override: escalated to Cloud.",
            )

        if score >= t.score_threshold and tier != Tier.CLOUD:
            return (
                Tier.CLOUD,
                TransitionCause.THRESHOLD_EXCEEDED,
                f"Instability score ({score:.2f}) exceeded threshold. Escalating to Cloud.",
            )

        if t.det_threshold <= score < t.score_threshold and tier == Tier.EDGE:
            return (
                Tier.CONTROL,
                TransitionCause.UNCERTAINTY_PLATEAU,
                "Uncertainty plateau. Switching to Control.",
            )

        if tier == Tier.CONTROL and score < t.det_threshold:
            return (
                Tier.EDGE,
                TransitionCause.STABILITY_RESTORED,
                "Stability restored. Returning to Edge.",
            )

        return tier, None, "no transition"

    def decide(
        self,
        tier: Tier,
        score: float,
        unit_index: int,
        latch: Optional[EscalationLatch] = None,
    ) -> TierDecision:
        """Evaluate the rules for one unit and record the outcome."""
        new_tier, cause, message = self.classify(tier, score, latch)

        transition = None
        if cause is not None:
            transition = TierTransition(
                timestamp=datetime.now(timezone.utc),
                unit_index=unit_index,
                from_tier=tier,
                to_tier=new_tier,
                score=score,
                cause=cause,
                message=message,
            )
            if cause == TransitionCause.THRESHOLD_EXCEEDED:
                self.escalations += 1
            self.transition_history.append(transition)
            if self.metrics:
                self.metrics.record_transition(transition)

        if self.metrics:
            self.metrics.record_unit(new_tier)

        return TierDecision(tier=new_tier, transition=transition)

    def get_state(self) -> Dict[str, Any]:
        return {
            "thresholds": self.thresholds.to_dict(),
            "migrations_enabled": self.migrations_enabled,
            "escalations": self.escalations,
            "transitions": len(self.transition_history),
            "metrics": self.metrics.get_summary() if self.metrics else None,
        }
