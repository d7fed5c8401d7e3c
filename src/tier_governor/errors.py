"""
Errors raised at the Run Controller boundary.

The per-unit stages (signals, scoring, tier control, accounting) are pure
arithmetic over validated state and never raise. Everything that can go
wrong happens where the controller meets its callers or its token source.
"""

from typing import Optional


class TierGovernorError(Exception):
    """Base class for tier governor errors."""


class AlreadyRunning(TierGovernorError):
    """A run or replay is already active. Rejected, nothing changed."""

    def __init__(self, operation: str = "start"):
        super().__init__(f"cannot {operation}: a run or replay is already active")
        self.operation = operation


class NothingToReplay(TierGovernorError):
    """Replay requested with an empty record sequence."""

    def __init__(self):
        super().__init__("cannot replay: no records have been captured")


class SourceError(TierGovernorError):
    """
    The external token source failed.

    Terminal for the run. The controller records a critical event with
    this message and surfaces the error through ``last_error``.
    """

    def __init__(self, message: str, source_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.source_id = source_id

    def __str__(self) -> str:
        if self.source_id:
            return f"{self.source_id}: {self.message}"
        return self.message
