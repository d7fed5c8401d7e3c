"""
Observability - presentation for running and replayed tier-migration runs.

Read-only consumers of the Run Controller's records, events and summary.
"""

from tier_governor.observability.dashboard import (
    LiveDashboard,
    TierGauge,
    ScoreSparkline,
    HealthPanel,
    EventLogPanel,
    TokenStreamPanel,
    run_live,
)

__all__ = [
    "LiveDashboard",
    "TierGauge",
    "ScoreSparkline",
    "HealthPanel",
    "EventLogPanel",
    "TokenStreamPanel",
    "run_live",
]
