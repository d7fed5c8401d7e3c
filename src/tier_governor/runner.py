"""
Run Controller

Orchestrates one run (or one replay) at a time:

    IDLE -> RUNNING   -> COMPLETED | CANCELLED | FAILED
    IDLE -> REPLAYING -> COMPLETED | CANCELLED

A run pulls chunks from the token source, splits them into units, pushes
each unit through the migration engine, publishes the record, then sleeps
for the unit's latency. That sleep is the only suspension point and it
wakes early on cancel.

A replay re-publishes previously captured records at a fixed cadence
without recomputing anything.

Single writer: the worker thread is the only thing that mutates RunState.
The one datum touched from outside during a run is the escalation latch,
which the tier controller reads and clears atomically.

Usage:
    controller = RunController(MockTokenSource(), seed=7)
    controller.subscribe(lambda update: print(update))
    controller.run("Explain relativity.", RunConfig(mode=RunMode.STANDARD))
    print(controller.summary().to_dict())
"""

import logging
import random
from enum import Enum, auto
from threading import RLock, Thread
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from tier_governor.accounting import TierCost
from tier_governor.cancellation import CancellationToken
from tier_governor.control.modes import ModePreset, RunMode, TierThresholds
from tier_governor.control.tiers import Tier
from tier_governor.engine import MigrationEngine
from tier_governor.errors import AlreadyRunning, NothingToReplay, SourceError
from tier_governor.events import Event, EventRecorder
from tier_governor.signals import DEFAULT_PERTURBATION, PerturbationWindow
from tier_governor.sources import (
    DEFAULT_UNIT_SIZE,
    BaseTokenSource,
    split_units,
    validate_unit_size,
)
from tier_governor.state import Record, RunConfig, RunState
from tier_governor.telemetry import RunSummary, SystemHealth, SystemHealthMonitor, summarize

logger = logging.getLogger(__name__)


REPLAY_INTERVAL_SECONDS = 0.05


class RunStatus(Enum):
    """Run Controller lifecycle states."""
    IDLE = auto()
    RUNNING = auto()
    REPLAYING = auto()
    COMPLETED = auto()
    CANCELLED = auto()
    FAILED = auto()

    @property
    def active(self) -> bool:
        return self in (RunStatus.RUNNING, RunStatus.REPLAYING)


Update = Union[Record, Event]
Listener = Callable[[Update], None]


class RunController:
    """
    Drives runs and replays, publishes records and events to subscribers.

    time_scale multiplies every pacing sleep (0 disables pacing, useful for
    tests and batch runs). seed makes every run reproducible.
    """

    def __init__(
        self,
        source: BaseTokenSource,
        seed: Optional[int] = None,
        time_scale: float = 1.0,
        replay_interval: float = REPLAY_INTERVAL_SECONDS,
        unit_size: int = DEFAULT_UNIT_SIZE,
        presets: Optional[Dict[RunMode, ModePreset]] = None,
        cost_model: Optional[Dict[Tier, TierCost]] = None,
        perturbation: Optional[PerturbationWindow] = DEFAULT_PERTURBATION,
        health_monitor: Optional[SystemHealthMonitor] = None,
    ):
        self.source = source
        self.seed = seed
        self.time_scale = time_scale
        self.replay_interval = replay_interval
        self.unit_size = validate_unit_size(unit_size)
        self.presets = presets
        self.cost_model = cost_model
        self.perturbation = perturbation
        self.health_monitor = health_monitor or SystemHealthMonitor()

        self.recorder = EventRecorder()
        self.recorder.subscribe(self._notify)

        self.config: Optional[RunConfig] = None
        self.last_error: Optional[Exception] = None

        self._lock = RLock()
        self._status = RunStatus.IDLE
        self._records: List[Record] = []
        self._listeners: List[Listener] = []
        self._token: Optional[CancellationToken] = None
        self._thread: Optional[Thread] = None
        self._engine: Optional[MigrationEngine] = None
        self._state: Optional[RunState] = None

    # =========================================================================
    # Subscription
    # =========================================================================

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Receive every published Record and Event. Returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, update: Update):
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(update)
            except Exception:
                logger.exception("subscriber %r failed on %s", listener, type(update).__name__)

    # =========================================================================
    # Run
    # =========================================================================

    def start(self, prompt: str, config: Optional[RunConfig] = None):
        """
        Begin a run on a worker thread.

        Raises AlreadyRunning if a run or replay is active.
        """
        config = config or RunConfig()

        with self._lock:
            if self._status.active:
                logger.warning("start rejected: %s in progress", self._status.name)
                raise AlreadyRunning("start")

            token = CancellationToken()
            state = RunState()
            engine = MigrationEngine(
                config,
                self.recorder,
                rng=random.Random(self.seed),
                presets=self.presets,
                cost_model=self.cost_model,
                perturbation=self.perturbation,
            )

            self._status = RunStatus.RUNNING
            self._token = token
            self._state = state
            self._engine = engine
            self._records = []
            self.recorder.reset()
            self.health_monitor.reset()
            self.config = config
            self.last_error = None

        logger.info(
            "run started: mode=%s threshold=%.2f source=%s",
            config.mode.value, engine.thresholds.score_threshold, self.source.get_source_id(),
        )
        self.recorder.info(f"Run started in {config.mode.value.upper()} mode", 0)

        self._thread = Thread(
            target=self._run_loop,
            args=(prompt, token, engine, state),
            name="tier-governor-run",
            daemon=True,
        )
        self._thread.start()

    def run(self, prompt: str, config: Optional[RunConfig] = None) -> RunStatus:
        """Start a run and block until it reaches a terminal state."""
        self.start(prompt, config)
        return self.wait()

    def _run_loop(
        self,
        prompt: str,
        token: CancellationToken,
        engine: MigrationEngine,
        state: RunState,
    ):
        status = RunStatus.COMPLETED
        try:
            chunks = iter(self.source.stream(prompt, token))
            try:
                for chunk in chunks:
                    if token.cancelled:
                        break
                    for unit in split_units(chunk, self.unit_size):
                        if token.cancelled:
                            break
                        record = engine.process(state, unit)
                        self._publish(record, engine.escalations)
                        if token.sleep(record.latency_ms / 1000.0 * self.time_scale):
                            break
                    if token.cancelled:
                        break
            finally:
                # Plain iterators have nothing to release.
                close = getattr(chunks, "close", None)
                if close is not None:
                    close()
        except SourceError as e:
            status = self._fail(e, token, state)
        except Exception as e:
            if not token.cancelled:
                logger.exception("run loop failed at unit %d", state.unit_count)
            status = self._fail(e, token, state)
        else:
            if token.cancelled:
                status = RunStatus.CANCELLED
            else:
                self.recorder.info("Generation complete.", state.unit_count)

        self._finish(status)

    def _fail(self, error: Exception, token: CancellationToken, state: RunState) -> RunStatus:
        if token.cancelled:
            # An abort that surfaced as a transport error is still a cancel.
            return RunStatus.CANCELLED
        self.last_error = error
        self.recorder.critical(f"Error: {error}", state.unit_count)
        return RunStatus.FAILED

    def _publish(self, record: Record, escalations: int):
        with self._lock:
            self._records.append(record)
        self.health_monitor.update(record, escalations)
        self._notify(record)

    def _finish(self, status: RunStatus):
        with self._lock:
            previous = self._status
            self._status = status
        logger.info(
            "%s finished: %s (%d records)",
            "replay" if previous == RunStatus.REPLAYING else "run",
            status.name,
            len(self._records),
        )

    # =========================================================================
    # Cancellation / Override
    # =========================================================================

    def cancel(self):
        """Request cooperative cancellation. Idempotent; no-op when idle."""
        with self._lock:
            if self._token is not None and self._status.active:
                if not self._token.cancelled:
                    logger.info("cancel requested during %s", self._status.name)
                self._token.cancel()

    def request_escalation(self) -> bool:
        """
        Assert the manual override for the next unit.

        Only accepted while a run is active and the tier is not already
        Cloud. Returns whether the request was accepted.
        """
        with self._lock:
            if self._status != RunStatus.RUNNING or self._engine is None:
                return False
            if self._state is not None and self._state.tier == Tier.CLOUD:
                return False
            self._engine.latch.assert_()
            return True

    # =========================================================================
    # Replay
    # =========================================================================

    def replay(self):
        """
        Re-publish the captured records at a fixed cadence.

        Raises AlreadyRunning if a run or replay is active, NothingToReplay
        if no records exist.
        """
        with self._lock:
            if self._status.active:
                logger.warning("replay rejected: %s in progress", self._status.name)
                raise AlreadyRunning("replay")
            if not self._records:
                raise NothingToReplay()

            snapshot = list(self._records)
            token = CancellationToken()
            self._records = []
            self.recorder.reset()
            self._status = RunStatus.REPLAYING
            self._token = token

        logger.info("replay started: %d records", len(snapshot))
        self._thread = Thread(
            target=self._replay_loop,
            args=(snapshot, token),
            name="tier-governor-replay",
            daemon=True,
        )
        self._thread.start()

    def _replay_loop(self, snapshot: List[Record], token: CancellationToken):
        for record in snapshot:
            if token.cancelled:
                break
            with self._lock:
                self._records.append(record)
            self._notify(record)
            if token.sleep(self.replay_interval * self.time_scale):
                break

        self._finish(RunStatus.CANCELLED if token.cancelled else RunStatus.COMPLETED)

    def restore(self, records: Iterable[Record]):
        """Load previously exported records so they can be inspected or replayed."""
        with self._lock:
            if self._status.active:
                raise AlreadyRunning("restore")
            self._records = sorted(records, key=lambda r: r.index)
            self.recorder.reset()

    # =========================================================================
    # Waiting / Inspection
    # =========================================================================

    def wait(self, timeout: Optional[float] = None) -> RunStatus:
        """Block until the current run or replay finishes (or timeout)."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return self.status

    def result(self) -> RunStatus:
        """Terminal status, re-raising the source error of a failed run."""
        status = self.status
        if status == RunStatus.FAILED and self.last_error is not None:
            raise self.last_error
        return status

    @property
    def status(self) -> RunStatus:
        with self._lock:
            return self._status

    @property
    def records(self) -> Tuple[Record, ...]:
        with self._lock:
            return tuple(self._records)

    @property
    def events(self) -> Tuple[Event, ...]:
        return self.recorder.events

    @property
    def escalations(self) -> int:
        engine = self._engine
        return engine.escalations if engine is not None else 0

    @property
    def thresholds(self) -> Optional[TierThresholds]:
        engine = self._engine
        return engine.thresholds if engine is not None else None

    @property
    def health(self) -> SystemHealth:
        return self.health_monitor.current

    def summary(self) -> RunSummary:
        return summarize(self.records, self.escalations)

    def to_dict(self) -> Dict[str, Any]:
        """Export the run for later inspection or replay."""
        return {
            "source": self.source.get_info(),
            "config": self.config.to_dict() if self.config else None,
            "status": self.status.name,
            "summary": self.summary().to_dict(),
            "records": [r.to_dict() for r in self.records],
            "events": [e.to_dict() for e in self.events],
        }
