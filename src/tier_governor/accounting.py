"""
Cost & Efficiency Accountant

Each unit is charged by the tier it ran on:

    Tier      energy   latency (ms)
    Cloud     12.5     85 + U[0, 20)
    Control    4.2     40 + U[0, 10)
    Edge       2.1     40 + U[0, 10)

Edge and Control share a latency profile; only Cloud is slower.

The information-gain proxy rewards low dispersion:

    info_gain_step = max(0.1, 1 - dispersion)

and the headline metric is the running ratio

    efficiency = info_gain / max(0.1, total_cost)

recomputed from the accumulators on every unit, never reset mid-run.
"""

import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tier_governor.control.tiers import Tier
from tier_governor.state import RunState


MIN_INFO_GAIN_STEP = 0.1
MIN_COST_DENOMINATOR = 0.1


@dataclass(frozen=True)
class TierCost:
    """Energy and latency profile of one tier."""
    energy: float
    base_latency_ms: float
    latency_jitter_ms: float

    def __post_init__(self):
        # total_cost must only grow
        if self.energy <= 0:
            raise ValueError(f"energy must be positive, got {self.energy}")
        if self.base_latency_ms < 0 or self.latency_jitter_ms < 0:
            raise ValueError(
                f"latency must be non-negative, got {self.base_latency_ms} "
                f"+ U[0, {self.latency_jitter_ms})"
            )

    def to_dict(self) -> Dict[str, float]:
        return {
            "energy": self.energy,
            "base_latency_ms": self.base_latency_ms,
            "latency_jitter_ms": self.latency_jitter_ms,
        }


COST_MODEL: Dict[Tier, TierCost] = {
    Tier.CLOUD: TierCost(energy=12.5, base_latency_ms=85.0, latency_jitter_ms=20.0),
    Tier.CONTROL: TierCost(energy=4.2, base_latency_ms=40.0, latency_jitter_ms=10.0),
    Tier.EDGE: TierCost(energy=2.1, base_latency_ms=40.0, latency_jitter_ms=10.0),
}


def efficiency_ratio(info_gain: float, total_cost: float) -> float:
    """Cumulative information gain per unit of cost."""
    return info_gain / max(MIN_COST_DENOMINATOR, total_cost)


def info_gain_step(dispersion: float) -> float:
    return max(MIN_INFO_GAIN_STEP, 1.0 - dispersion)


@dataclass(frozen=True)
class StepCost:
    """Charges for one unit plus the accumulators after it."""
    cost: float
    latency_ms: float
    info_gain_step: float
    info_gain: float
    total_cost: float
    efficiency: float


class CostAccountant:
    """Charges units against the tier cost model and keeps the running totals."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        cost_model: Optional[Dict[Tier, TierCost]] = None,
    ):
        self.rng = rng or random.Random()
        self.cost_model = cost_model or COST_MODEL

    def latency_for(self, tier: Tier) -> float:
        profile = self.cost_model[tier]
        return profile.base_latency_ms + self.rng.random() * profile.latency_jitter_ms

    def charge(self, state: RunState, tier: Tier, dispersion: float) -> StepCost:
        """
        Charge one unit run on tier with the given (damped) dispersion.

        Updates state.info_gain and state.total_cost in place. Both only
        ever grow: cost is positive and the gain step is floored at 0.1.
        """
        latency_ms = self.latency_for(tier)
        cost = self.cost_model[tier].energy
        gain = info_gain_step(dispersion)

        state.total_cost += cost
        state.info_gain += gain

        return StepCost(
            cost=cost,
            latency_ms=latency_ms,
            info_gain_step=gain,
            info_gain=state.info_gain,
            total_cost=state.total_cost,
            efficiency=efficiency_ratio(state.info_gain, state.total_cost),
        )

    def get_info(self) -> Dict[str, Any]:
        return {tier.value: profile.to_dict() for tier, profile in self.cost_model.items()}
