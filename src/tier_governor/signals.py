"""
Signal Generator and Instability Scorer

Three latent signals evolve by additive random perturbation, one step per
unit of work:

    dispersion  - uncertainty proxy, amplitude 0.15
    curvature   - trajectory bend, amplitude 0.08
    spectrum    - spectral level, amplitude 0.25; drift = |now - prior|

These are stand-ins for model-uncertainty proxies, not measurements. No
statistical validity is claimed.

A scripted perturbation window injects a fixed destabilization while the
run is still on Edge, so the migration logic has something to react to.

Usage:
    rng = random.Random(7)
    generator = SignalGenerator(rng)
    step = generator.step(state, unit_index=1)
    score = instability_score(step.drift, step.dispersion, step.curvature)
"""

import random
from dataclasses import dataclass
from typing import Optional

from tier_governor.control.tiers import Tier
from tier_governor.state import RunState


DISPERSION_AMPLITUDE = 0.15
CURVATURE_AMPLITUDE = 0.08
SPECTRUM_AMPLITUDE = 0.25

# Composite score weights
DRIFT_WEIGHT = 0.5
DISPERSION_WEIGHT = 0.3
CURVATURE_WEIGHT = 0.2


@dataclass(frozen=True)
class PerturbationWindow:
    """
    Induced fault for demonstration and testing.

    Active for unit indices strictly between start and end while the tier
    is still EDGE. A single warning is emitted at warning_at.
    """
    start: int = 30
    end: int = 50
    dispersion_boost: float = 0.3
    drift_boost: float = 0.5
    warning_at: int = 35
    warning_message: str = "Spectral drift detected. Instability building."

    def active(self, unit_index: int, tier: Tier) -> bool:
        return self.start < unit_index < self.end and tier == Tier.EDGE


DEFAULT_PERTURBATION = PerturbationWindow()


@dataclass(frozen=True)
class SignalStep:
    """Signal values for one unit, before scoring and damping."""
    dispersion: float
    curvature: float
    drift: float
    spectrum: float
    perturbed: bool = False
    warning: Optional[str] = None


def instability_score(drift: float, dispersion: float, curvature: float) -> float:
    """Composite instability score. Never negative."""
    score = (
        DRIFT_WEIGHT * drift
        + DISPERSION_WEIGHT * dispersion
        - CURVATURE_WEIGHT * curvature
    )
    return max(0.0, score)


class SignalGenerator:
    """Evolves the latent signals one unit at a time."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        perturbation: Optional[PerturbationWindow] = DEFAULT_PERTURBATION,
    ):
        self.rng = rng or random.Random()
        self.perturbation = perturbation

    def _jitter(self, amplitude: float) -> float:
        """Uniform draw in [-amplitude/2, amplitude/2)."""
        return (self.rng.random() - 0.5) * amplitude

    def step(self, state: RunState, unit_index: int) -> SignalStep:
        """
        Advance the signals for unit_index.

        Reads state but does not modify it; the pipeline writes the damped
        values back once the tier is final.
        """
        dispersion = state.dispersion + self._jitter(DISPERSION_AMPLITUDE)
        curvature = state.curvature + self._jitter(CURVATURE_AMPLITUDE)

        spectrum = state.prior_spectrum + self._jitter(SPECTRUM_AMPLITUDE)
        drift = abs(spectrum - state.prior_spectrum)

        perturbed = False
        warning = None
        window = self.perturbation
        if window is not None and window.active(unit_index, state.tier):
            perturbed = True
            dispersion += window.dispersion_boost
            drift += window.drift_boost
            if unit_index == window.warning_at:
                warning = window.warning_message

        return SignalStep(
            dispersion=dispersion,
            curvature=curvature,
            drift=drift,
            spectrum=spectrum,
            perturbed=perturbed,
            warning=warning,
        )
