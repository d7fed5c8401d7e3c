"""
Control - tier selection

Contents:
- modes: named run modes and their effective thresholds
- tiers: hysteretic tier state machine, damping, override latch
"""

from tier_governor.control.modes import (
    RunMode,
    ModePreset,
    TierThresholds,
    PRESETS,
    DEFAULT_SCORE_THRESHOLD,
    DET_THRESHOLD_RATIO,
    effective_thresholds,
    validate_score_threshold,
)

from tier_governor.control.tiers import (
    Tier,
    TierController,
    TierDecision,
    TierTransition,
    TierMetrics,
    TierDamping,
    TransitionCause,
    EscalationLatch,
    DAMPING,
    apply_damping,
)

__all__ = [
    # Modes
    "RunMode",
    "ModePreset",
    "TierThresholds",
    "PRESETS",
    "DEFAULT_SCORE_THRESHOLD",
    "DET_THRESHOLD_RATIO",
    "effective_thresholds",
    "validate_score_threshold",
    # Tiers
    "Tier",
    "TierController",
    "TierDecision",
    "TierTransition",
    "TierMetrics",
    "TierDamping",
    "TransitionCause",
    "EscalationLatch",
    "DAMPING",
    "apply_damping",
]
