"""
Tests for the profile loader

Verifies:
1. Missing profiles fall back to code defaults
2. Fixed-threshold presets can be tuned, standard and baseline cannot
3. Cost model overrides are partial
4. Saving preserves unrelated keys
"""

import json

import pytest

from tier_governor.accounting import COST_MODEL
from tier_governor.config_loader import (
    get_config_path,
    load_config,
    load_cost_model,
    load_mode_presets,
    save_profile,
)
from tier_governor.control.modes import PRESETS, RunMode
from tier_governor.control.tiers import Tier


def write_profile(tmp_path, data):
    path = tmp_path / "profile.json"
    path.write_text(json.dumps(data))
    return path


def test_missing_profile_uses_defaults(tmp_path):
    path = tmp_path / "absent.json"

    assert load_config(path) == {}
    assert load_mode_presets(path) == PRESETS
    assert load_cost_model(path) == COST_MODEL


def test_bundled_profile_matches_defaults():
    assert get_config_path().name == "tier_profile.json"
    assert load_mode_presets() == PRESETS
    assert load_cost_model() == COST_MODEL


def test_mode_overrides(tmp_path):
    path = write_profile(tmp_path, {
        "modes": {
            "aggressive": {"score_threshold": 0.8},
            "standard": {"score_threshold": 2.9},
            "baseline": {"score_threshold": 1.0},
        }
    })

    presets = load_mode_presets(path)

    assert presets[RunMode.AGGRESSIVE].score_threshold == 0.8
    assert presets[RunMode.ENERGY_SAVING].score_threshold == 2.0
    assert presets[RunMode.STANDARD].score_threshold is None
    assert presets[RunMode.BASELINE] == PRESETS[RunMode.BASELINE]


def test_mode_override_out_of_range(tmp_path):
    path = write_profile(tmp_path, {"modes": {"energy-saving": {"score_threshold": 9}}})

    with pytest.raises(ValueError):
        load_mode_presets(path)


def test_partial_cost_override(tmp_path):
    path = write_profile(tmp_path, {"tiers": {"Cloud": {"energy": 20}}})

    model = load_cost_model(path)

    assert model[Tier.CLOUD].energy == 20.0
    assert model[Tier.CLOUD].base_latency_ms == 85.0
    assert model[Tier.EDGE] == COST_MODEL[Tier.EDGE]


def test_save_profile_roundtrip(tmp_path):
    path = write_profile(tmp_path, {"notes": {"owner": "ops"}, "extra": 1})

    saved = save_profile(PRESETS, COST_MODEL, path, notes={"tuned": "yes"})

    data = json.loads(saved.read_text())
    assert data["extra"] == 1
    assert data["notes"] == {"owner": "ops", "tuned": "yes"}
    assert set(data["modes"]) == {"aggressive", "energy-saving"}
    assert load_cost_model(saved) == COST_MODEL
    assert load_mode_presets(saved) == PRESETS


@pytest.mark.parametrize("values", [
    {"energy": -4.2},
    {"energy": 0},
    {"base_latency_ms": -10},
    {"latency_jitter_ms": -1},
])
def test_invalid_cost_override_rejected(tmp_path, values):
    """A profile must not be able to make total_cost decrease."""
    path = write_profile(tmp_path, {"tiers": {"Control": values}})

    with pytest.raises(ValueError):
        load_cost_model(path)
