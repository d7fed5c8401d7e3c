"""
Tests for the Cancellation Token

Verifies:
1. cancel() is idempotent
2. sleep() wakes early on cancel
3. Abort callbacks run once, immediately if already cancelled
"""

import threading
import time

from tier_governor.cancellation import CancellationToken


def test_cancel_idempotent():
    token = CancellationToken()
    assert not token.cancelled

    token.cancel()
    token.cancel()

    assert token.cancelled


def test_sleep_wakes_on_cancel():
    token = CancellationToken()
    threading.Timer(0.05, token.cancel).start()

    started = time.monotonic()
    assert token.sleep(5.0) is True
    assert time.monotonic() - started < 1.0


def test_zero_sleep_reports_state():
    token = CancellationToken()
    assert token.sleep(0) is False

    token.cancel()
    assert token.sleep(0) is True


def test_callbacks_run_once_on_cancel():
    token = CancellationToken()
    calls = []
    token.add_callback(lambda: calls.append("close"))

    assert calls == []
    token.cancel()
    token.cancel()

    assert calls == ["close"]


def test_callback_after_cancel_runs_immediately():
    token = CancellationToken()
    token.cancel()
    calls = []

    token.add_callback(lambda: calls.append("close"))

    assert calls == ["close"]


def test_failing_callback_does_not_stop_others():
    token = CancellationToken()
    calls = []

    def broken():
        raise RuntimeError("already closed")

    token.add_callback(broken)
    token.add_callback(lambda: calls.append("second"))
    token.cancel()

    assert token.cancelled
    assert calls == ["second"]
