"""
Migration Engine - the per-unit pipeline

Wires the stages together for one unit of work:

    SignalGenerator -> instability_score -> TierController
        -> damping -> CostAccountant -> EventRecorder -> Record

Strictly serial. Each unit reads the RunState left by the previous one and
writes its damped results back before the next unit starts. The engine
holds configuration and stage objects, never the run state itself.
"""

import logging
import random
from typing import Dict, Optional

from tier_governor.accounting import COST_MODEL, CostAccountant, TierCost
from tier_governor.control.modes import PRESETS, ModePreset, RunMode
from tier_governor.control.tiers import (
    EscalationLatch,
    Tier,
    TierController,
    apply_damping,
)
from tier_governor.events import EventRecorder
from tier_governor.signals import (
    DEFAULT_PERTURBATION,
    PerturbationWindow,
    SignalGenerator,
    instability_score,
)
from tier_governor.state import Record, RunConfig, RunState

logger = logging.getLogger(__name__)


class MigrationEngine:
    """
    Processes units for one run.

    The generator and accountant share one RNG so a seeded run is fully
    reproducible.
    """

    def __init__(
        self,
        config: RunConfig,
        recorder: EventRecorder,
        rng: Optional[random.Random] = None,
        presets: Optional[Dict[RunMode, ModePreset]] = None,
        cost_model: Optional[Dict[Tier, TierCost]] = None,
        perturbation: Optional[PerturbationWindow] = DEFAULT_PERTURBATION,
        latch: Optional[EscalationLatch] = None,
    ):
        self.config = config
        self.recorder = recorder
        self.rng = rng or random.Random()

        preset = (presets or PRESETS)[config.mode]
        self.preset = preset
        self.thresholds = preset.resolve(config.score_threshold)

        self.generator = SignalGenerator(self.rng, perturbation)
        self.controller = TierController(
            self.thresholds,
            migrations_enabled=preset.migrations_enabled,
        )
        self.accountant = CostAccountant(self.rng, cost_model or COST_MODEL)
        self.latch = latch or EscalationLatch(config.force_escalate)

    @property
    def escalations(self) -> int:
        return self.controller.escalations

    def process(self, state: RunState, payload: str) -> Record:
        """Run one unit through every stage and return its record."""
        index = state.unit_count + 1

        step = self.generator.step(state, index)
        if step.warning:
            self.recorder.warning(step.warning, index)

        raw_score = instability_score(step.drift, step.dispersion, step.curvature)

        decision = self.controller.decide(state.tier, raw_score, index, self.latch)
        tier = decision.tier
        if decision.transition is not None:
            t = decision.transition
            logger.debug(
                "unit %d: %s -> %s (%s, score=%.3f)",
                index, t.from_tier.value, t.to_tier.value, t.cause.name, raw_score,
            )
            self.recorder.record(t.event_kind, t.message, index)

        score, dispersion, drift = apply_damping(
            tier, raw_score, step.dispersion, step.drift
        )

        charge = self.accountant.charge(state, tier, dispersion)

        state.dispersion = dispersion
        state.curvature = step.curvature
        state.prior_spectrum = step.spectrum
        state.tier = tier
        state.unit_count = index

        return Record(
            index=index,
            payload=payload,
            score=score,
            dispersion=dispersion,
            curvature=step.curvature,
            drift=drift,
            tier=tier,
            efficiency=charge.efficiency,
            cost=charge.cost,
            latency_ms=charge.latency_ms,
            info_gain=charge.info_gain,
            total_cost=charge.total_cost,
        )
