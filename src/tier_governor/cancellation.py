"""
Cooperative cancellation.

One token per run or replay. It is checked at the top of every loop
iteration and used for the only suspension point (the pacing sleep), so a
cancel request is observed within one pending sleep. Token sources receive
the same token and stop pulling from the provider when it fires.

A source blocked on the network never reaches its next check, so it
registers an abort callback (usually the response's close()) that cancel()
runs immediately.
"""

import logging
from threading import Event, Lock
from typing import Callable, List

logger = logging.getLogger(__name__)


class CancellationToken:
    """Idempotent cancel flag with an interruptible sleep and abort callbacks."""

    def __init__(self):
        self._event = Event()
        self._lock = Lock()
        self._callbacks: List[Callable[[], None]] = []

    def cancel(self):
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run(callback)

    def add_callback(self, callback: Callable[[], None]):
        """
        Run callback on cancel. Runs it at once if already cancelled.

        Each callback runs at most once.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        self._run(callback)

    def _run(self, callback: Callable[[], None]):
        try:
            callback()
        except Exception:
            logger.exception("cancel callback %r failed", callback)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def sleep(self, seconds: float) -> bool:
        """
        Sleep up to seconds, waking early on cancel.

        Returns True if the token is cancelled.
        """
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)
