"""
Tests for the Run Controller

Verifies:
1. A run publishes every record in order and ends COMPLETED
2. Cancellation stops promptly and leaves no partial record
3. Concurrent start/replay is rejected
4. Replay re-publishes the same records at a fixed cadence
5. Source failures end the run FAILED with a critical event
6. The manual override is accepted only while running
"""

import time

import pytest

from tier_governor.control.modes import RunMode
from tier_governor.control.tiers import Tier
from tier_governor.errors import AlreadyRunning, NothingToReplay, SourceError
from tier_governor.events import EventKind
from tier_governor.runner import RunController, RunStatus
from tier_governor.signals import PerturbationWindow
from tier_governor.sources import MockTokenSource
from tier_governor.state import Record, RunConfig


def slow_source(n_chunks=400, delay=0.02):
    return MockTokenSource(n_chunks=n_chunks, chunk_delay=delay)


def test_run_completes(make_controller):
    controller = make_controller()
    published = []
    controller.subscribe(published.append)

    status = controller.run("Explain relativity.", RunConfig())

    assert status == RunStatus.COMPLETED
    records = controller.records
    assert [r.index for r in records] == list(range(1, len(records) + 1))
    assert [u for u in published if isinstance(u, Record)] == list(records)

    events = controller.events
    assert events[0].message == "Run started in STANDARD mode"
    assert events[0].unit_index == 0
    assert events[-1].message == "Generation complete."
    assert events[-1].unit_index == len(records)

    print("  PASS: run_completes")


def test_payloads_reassemble_stream(make_controller):
    source = MockTokenSource(chunks=["Hello, ", "wonderful ", "", "world!"])
    controller = make_controller(source, unit_size=3)

    controller.run("hi")

    assert [r.payload for r in controller.records] == [
        "Hel", "lo,", " ",
        "won", "der", "ful", " ",
        "wor", "ld!",
    ]
    assert source.prompts == ["hi"]


def test_baseline_run_all_edge(make_controller):
    controller = make_controller()

    controller.run("p", RunConfig(mode=RunMode.BASELINE))

    assert all(r.tier == Tier.EDGE for r in controller.records)
    assert controller.escalations == 0
    assert not any(e.kind == EventKind.MIGRATION for e in controller.events)


# Drift boost large enough that the first window unit crosses any threshold.
FORCED_SPIKE = PerturbationWindow(drift_boost=10.0)


def test_cloud_is_absorbing(make_controller):
    controller = make_controller(perturbation=FORCED_SPIKE)

    controller.run("p", RunConfig(mode=RunMode.AGGRESSIVE))

    tiers = [r.tier for r in controller.records]
    assert Tier.CLOUD in tiers
    first = tiers.index(Tier.CLOUD)
    assert first <= 30
    assert set(tiers[first:]) == {Tier.CLOUD}


def cloud_entries(records):
    previous = Tier.EDGE
    entries = []
    for record in records:
        if record.tier == Tier.CLOUD and previous != Tier.CLOUD:
            entries.append(record.index)
        previous = record.tier
    return entries


@pytest.mark.parametrize("seed", [1, 2, 3, 4, 5])
def test_escalation_count_standard_run(make_controller, seed):
    """standard mode, threshold 1.5, 60 chunks: counter equals threshold-driven Cloud entries."""
    controller = make_controller(MockTokenSource(n_chunks=60), seed=seed)

    controller.run("p", RunConfig(mode=RunMode.STANDARD, score_threshold=1.5))

    threshold_events = [
        e for e in controller.events
        if e.kind == EventKind.MIGRATION and e.message.startswith("Instability score")
    ]
    assert controller.escalations == len(threshold_events)
    assert [e.unit_index for e in threshold_events] == cloud_entries(controller.records)
    assert controller.summary().escalations == controller.escalations


def test_escalation_count_with_cloud_entry(make_controller):
    controller = make_controller(MockTokenSource(n_chunks=60), perturbation=FORCED_SPIKE)

    controller.run("p", RunConfig(mode=RunMode.STANDARD, score_threshold=1.5))

    assert cloud_entries(controller.records) == [31]
    assert controller.escalations == 1
    migrations = [e for e in controller.events if e.kind == EventKind.MIGRATION]
    assert [e.unit_index for e in migrations] == [31]
    assert migrations[0].message.endswith("exceeded threshold. Escalating to Cloud.")


def test_force_escalate_run(make_controller):
    controller = make_controller()

    controller.run("p", RunConfig(force_escalate=True))

    assert controller.records[0].tier == Tier.CLOUD
    migrations = [e for e in controller.events if e.kind == EventKind.MIGRATION]
    assert [e.message for e in migrations] == ["Manual override: escalated to Cloud."]


def test_seed_reproducible(make_controller):
    a = make_controller(seed=99)
    b = make_controller(seed=99)

    a.run("p")
    b.run("p")

    assert [(r.score, r.tier) for r in a.records] == [(r.score, r.tier) for r in b.records]


def test_cancel_stops_run(make_controller):
    controller = make_controller(slow_source())

    controller.start("p")
    time.sleep(0.1)
    controller.cancel()
    status = controller.wait(5.0)

    assert status == RunStatus.CANCELLED
    records = controller.records
    assert len(records) < 400
    assert [r.index for r in records] == list(range(1, len(records) + 1))
    assert not any(e.message == "Generation complete." for e in controller.events)

    # Nothing more is published or recorded after the cancel settles.
    events = controller.events
    time.sleep(0.1)
    assert controller.records == records
    assert controller.events == events
    assert events[-1].kind != EventKind.CRITICAL


def test_cancel_wakes_pacing_sleep(make_controller):
    """With real pacing, cancel is observed within one pending sleep."""
    controller = make_controller(MockTokenSource(n_chunks=400), time_scale=50.0)

    controller.start("p")
    time.sleep(0.1)
    started = time.monotonic()
    controller.cancel()
    status = controller.wait(5.0)

    assert status == RunStatus.CANCELLED
    assert time.monotonic() - started < 1.0


def test_cancel_is_idempotent(make_controller):
    controller = make_controller()

    controller.cancel()
    assert controller.status == RunStatus.IDLE

    controller.run("p")
    controller.cancel()
    controller.cancel()
    assert controller.status == RunStatus.COMPLETED


def test_start_while_running_rejected(make_controller):
    controller = make_controller(slow_source())

    controller.start("p")
    with pytest.raises(AlreadyRunning):
        controller.start("p")
    with pytest.raises(AlreadyRunning):
        controller.replay()

    controller.cancel()
    controller.wait(5.0)


def test_replay_without_records(make_controller):
    controller = make_controller()

    with pytest.raises(NothingToReplay):
        controller.replay()


def test_replay_reproduces_records(make_controller):
    controller = make_controller()
    controller.run("p")
    original = controller.records
    original_summary = controller.summary().to_dict()

    published = []
    controller.subscribe(published.append)
    controller.replay()
    status = controller.wait(10.0)

    assert status == RunStatus.COMPLETED
    assert controller.records == original
    assert all(a is b for a, b in zip(controller.records, original))
    assert published == list(original)
    assert controller.events == ()
    assert controller.summary().to_dict()["total_cost"] == original_summary["total_cost"]

    print("  PASS: replay_reproduces_records")


def test_replay_cadence(make_controller):
    controller = make_controller(time_scale=1.0)
    scratch = make_controller()
    scratch.run("p")
    source_records = list(scratch.records[:20])

    controller.restore(source_records)
    started = time.monotonic()
    controller.replay()
    controller.wait(10.0)
    elapsed = time.monotonic() - started

    assert controller.records == tuple(source_records)
    assert elapsed >= 19 * 0.05 * 0.9


def test_replay_can_be_cancelled(make_controller):
    controller = make_controller(time_scale=1.0)
    scratch = make_controller()
    scratch.run("p")
    controller.restore(scratch.records)

    controller.replay()
    time.sleep(0.12)
    controller.cancel()
    status = controller.wait(5.0)

    assert status == RunStatus.CANCELLED
    assert 0 < len(controller.records) < len(scratch.records)


def test_source_error_fails_run(make_controller):
    source = MockTokenSource(n_chunks=20, fail_after=3)
    controller = make_controller(source)

    status = controller.run("p")

    assert status == RunStatus.FAILED
    critical = [e for e in controller.events if e.kind == EventKind.CRITICAL]
    assert len(critical) == 1
    assert critical[0].message == "Error: mock-source: mock transport failure"
    assert critical[0].unit_index == len(controller.records)
    assert len(controller.records) > 0
    assert isinstance(controller.last_error, SourceError)
    with pytest.raises(SourceError):
        controller.result()


def test_unexpected_error_fails_run(make_controller):
    class BrokenSource(MockTokenSource):
        def stream(self, prompt, token):
            yield "ok "
            raise RuntimeError("kaboom")

    controller = make_controller(BrokenSource())

    assert controller.run("p") == RunStatus.FAILED
    assert controller.events[-1].message == "Error: kaboom"


def test_request_escalation_idle(make_controller):
    controller = make_controller()

    assert controller.request_escalation() is False


def test_request_escalation_during_run(make_controller):
    controller = make_controller(slow_source(n_chunks=30), perturbation=None)

    controller.start("p")
    time.sleep(0.05)
    accepted = controller.request_escalation()
    status = controller.wait(10.0)

    assert accepted
    assert status == RunStatus.COMPLETED
    overrides = [e for e in controller.events if e.message.startswith("Manual override")]
    assert len(overrides) == 1
    assert controller.records[-1].tier == Tier.CLOUD
    assert controller.request_escalation() is False


def test_listener_errors_do_not_break_run(make_controller):
    controller = make_controller()

    def broken(update):
        raise RuntimeError("listener bug")

    controller.subscribe(broken)

    assert controller.run("p") == RunStatus.COMPLETED


def test_unsubscribe(make_controller):
    controller = make_controller()
    seen = []
    unsubscribe = controller.subscribe(seen.append)
    unsubscribe()

    controller.run("p")

    assert seen == []


def test_new_run_resets_history(make_controller):
    controller = make_controller()
    controller.run("p", RunConfig(force_escalate=True))

    controller.run("p", RunConfig(mode=RunMode.BASELINE))

    assert controller.records[0].tier == Tier.EDGE
    assert controller.events[0].message == "Run started in BASELINE mode"
    assert controller.escalations == 0


def test_export(make_controller):
    controller = make_controller()
    controller.run("p", RunConfig(mode=RunMode.ENERGY_SAVING))

    data = controller.to_dict()

    assert data["status"] == "COMPLETED"
    assert data["config"]["mode"] == "energy-saving"
    assert len(data["records"]) == len(controller.records)
    assert Record.from_dict(data["records"][0]) == controller.records[0]
    assert data["summary"]["units"] == len(controller.records)


def test_invalid_unit_size_rejected():
    with pytest.raises(ValueError):
        RunController(MockTokenSource(), unit_size=5)


def test_plain_iterator_source_completes(make_controller):
    """A source may return any iterator, not only a generator."""

    class ListSource(MockTokenSource):
        def stream(self, prompt, token):
            return iter(["hello ", "world"])

    controller = make_controller(ListSource())

    status = controller.run("p")

    assert status == RunStatus.COMPLETED
    assert [r.payload for r in controller.records] == ["hell", "o ", "worl", "d"]
    assert controller.events[-1].message == "Generation complete."
    assert not any(e.kind == EventKind.CRITICAL for e in controller.events)


def test_list_source_completes(make_controller):
    class ListSource(MockTokenSource):
        def stream(self, prompt, token):
            return ["abc"]

    controller = make_controller(ListSource())

    assert controller.run("p") == RunStatus.COMPLETED
    assert [r.payload for r in controller.records] == ["abc"]


def test_generator_source_is_closed(make_controller):
    """Generators are closed on the way out, so their cleanup runs."""
    cleaned = []

    class TrackingSource(MockTokenSource):
        def stream(self, prompt, token):
            try:
                while True:
                    yield "tick "
            finally:
                cleaned.append(True)

    controller = make_controller(TrackingSource(), time_scale=1.0)
    controller.start("p")
    time.sleep(0.1)
    controller.cancel()

    assert controller.wait(5.0) == RunStatus.CANCELLED
    assert cleaned == [True]
