"""
Tier Governor Package

Instability-driven tier migration for a streamed token workload.

Architecture:
    TokenSource → units → SignalGenerator → instability score
                                                   ↓
                 Record ← CostAccountant ← damping ← TierController
                   ↓
              RunController → subscribers (CLI, live dashboard)

Tiers:
    Edge     - cheap local execution, where every run starts
    Control  - deterministic control band below the escalation threshold
    Cloud    - expensive, strongest damping, never left within a run

Core principle: the score decides the tier, the tier decides the cost.

Modules:
    runner.py       - Run Controller (start, cancel, override, replay)
    engine.py       - Per-unit pipeline
    signals.py      - Latent signals and the composite score
    control/        - Run modes, thresholds, tier state machine
    accounting.py   - Energy, latency and efficiency
    events.py       - Append-only event log
    sources.py      - Mock, Ollama, OpenAI and Anthropic token sources
    telemetry.py    - Summaries, migration markers, simulated health
"""

from tier_governor.errors import (
    TierGovernorError,
    AlreadyRunning,
    NothingToReplay,
    SourceError,
)

from tier_governor.control import (
    RunMode,
    ModePreset,
    TierThresholds,
    PRESETS,
    effective_thresholds,
    Tier,
    TierController,
    TransitionCause,
    EscalationLatch,
)

from tier_governor.state import Record, RunConfig, RunState

from tier_governor.signals import (
    SignalGenerator,
    PerturbationWindow,
    instability_score,
)

from tier_governor.accounting import (
    CostAccountant,
    TierCost,
    COST_MODEL,
    efficiency_ratio,
)

from tier_governor.events import Event, EventKind, EventRecorder

from tier_governor.engine import MigrationEngine

from tier_governor.sources import (
    BaseTokenSource,
    MockTokenSource,
    OllamaTokenSource,
    OpenAITokenSource,
    AnthropicTokenSource,
    create_source,
    split_units,
)

from tier_governor.telemetry import (
    RunSummary,
    SystemHealth,
    SystemHealthMonitor,
    summarize,
)

from tier_governor.runner import RunController, RunStatus

__version__ = "0.1.0"

__all__ = [
    # Errors
    "TierGovernorError",
    "AlreadyRunning",
    "NothingToReplay",
    "SourceError",
    # Control
    "RunMode",
    "ModePreset",
    "TierThresholds",
    "PRESETS",
    "effective_thresholds",
    "Tier",
    "TierController",
    "TransitionCause",
    "EscalationLatch",
    # State
    "Record",
    "RunConfig",
    "RunState",
    # Pipeline
    "SignalGenerator",
    "PerturbationWindow",
    "instability_score",
    "CostAccountant",
    "TierCost",
    "COST_MODEL",
    "efficiency_ratio",
    "Event",
    "EventKind",
    "EventRecorder",
    "MigrationEngine",
    # Sources
    "BaseTokenSource",
    "MockTokenSource",
    "OllamaTokenSource",
    "OpenAITokenSource",
    "AnthropicTokenSource",
    "create_source",
    "split_units",
    # Telemetry
    "RunSummary",
    "SystemHealth",
    "SystemHealthMonitor",
    "summarize",
    # Runner
    "RunController",
    "RunStatus",
]
