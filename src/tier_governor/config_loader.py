"""
Config Loader - load mode thresholds and the tier cost model from a profile.

This separates tunable values from source code:
- Source defines structure (which modes and tiers exist)
- The profile defines values (thresholds, energy, latency)

Usage:
    from tier_governor.config_loader import load_mode_presets, load_cost_model

    presets = load_mode_presets()                 # default profile
    presets = load_mode_presets(Path("my.json"))  # custom profile
    cost_model = load_cost_model()

Missing files or keys fall back to the code defaults.
"""

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional

from tier_governor.accounting import COST_MODEL, TierCost
from tier_governor.control.modes import PRESETS, ModePreset, RunMode, validate_score_threshold
from tier_governor.control.tiers import Tier

logger = logging.getLogger(__name__)


# src/tier_governor/config_loader.py -> <repo>/config/tier_profile.json
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "tier_profile.json"


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the full profile file."""
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not path.exists():
        logger.debug("no profile at %s, using code defaults", path)
        return {}

    with open(path) as f:
        return json.load(f)


def load_mode_presets(config_path: Optional[Path] = None) -> Dict[RunMode, ModePreset]:
    """
    Load mode presets from the profile's "modes" section.

    Only score_threshold is tunable; presets that defer to the configured
    threshold (standard) and the baseline freeze stay as defined in code.
    """
    config = load_config(config_path)
    modes = config.get("modes", {})

    presets = dict(PRESETS)
    for mode, preset in PRESETS.items():
        overrides = modes.get(mode.value, {})
        threshold = overrides.get("score_threshold")
        if threshold is None or preset.score_threshold is None:
            continue
        presets[mode] = replace(preset, score_threshold=validate_score_threshold(threshold))
    return presets


def load_cost_model(config_path: Optional[Path] = None) -> Dict[Tier, TierCost]:
    """Load the per-tier cost model from the profile's "tiers" section."""
    config = load_config(config_path)
    tiers = config.get("tiers", {})

    model = dict(COST_MODEL)
    for tier, default in COST_MODEL.items():
        values = tiers.get(tier.value, {})
        if not values:
            continue
        model[tier] = TierCost(
            energy=float(values.get("energy", default.energy)),
            base_latency_ms=float(values.get("base_latency_ms", default.base_latency_ms)),
            latency_jitter_ms=float(values.get("latency_jitter_ms", default.latency_jitter_ms)),
        )
    return model


def save_profile(
    presets: Dict[RunMode, ModePreset],
    cost_model: Dict[Tier, TierCost],
    config_path: Optional[Path] = None,
    notes: Optional[Dict[str, Any]] = None,
) -> Path:
    """
    Save presets and cost model back to a profile file.

    Preserves unrelated keys already in the file.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    existing = load_config(path) if path.exists() else {}

    existing["modes"] = {
        mode.value: {"score_threshold": preset.score_threshold}
        for mode, preset in presets.items()
        if preset.score_threshold is not None
    }
    existing["tiers"] = {tier.value: cost.to_dict() for tier, cost in cost_model.items()}

    if notes:
        existing["notes"] = {**existing.get("notes", {}), **notes}

    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        json.dump(existing, f, indent=2)

    return path


def get_config_path() -> Path:
    """Return the default profile path for reference."""
    return DEFAULT_CONFIG_PATH
