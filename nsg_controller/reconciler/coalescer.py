#!/usr/bin/env python3
"""
Event Coalescer / Rate Limiter

Turns a bursty stream of "something changed" signals into a bounded rate of
reconciliation passes:

- signal() never blocks; it only enqueues a message
- one control thread owns both flags and runs every pass itself
- at most one pass per cooldown window, however many signals arrived
- a signal is never lost, even when it arrives during a pass
"""

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

_SIGNAL = object()
_STOP = object()


@dataclass
class CoalescerState:
    """
    The two flags of the rate limiter plus the cooldown deadline.

    Starts Pending-Ready so the first pass runs as soon as the loop starts.
    """

    pending: bool = True
    cooldown_elapsed: bool = True
    deadline: Optional[float] = None

    @property
    def name(self) -> str:
        if not self.pending:
            return "idle"
        if self.cooldown_elapsed:
            return "pending-ready"
        return "pending-blocked"

    def ready(self) -> bool:
        return self.pending and self.cooldown_elapsed

    def on_signal(self):
        self.pending = True

    def on_cooldown_elapsed(self):
        self.cooldown_elapsed = True
        self.deadline = None

    def cooldown_expired(self, now: float) -> bool:
        return not self.cooldown_elapsed and self.deadline is not None and now >= self.deadline

    def begin_pass(self):
        self.pending = False
        self.cooldown_elapsed = False
        self.deadline = None

    def end_pass(self, now: float, cooldown: float, success: bool):
        self.deadline = now + cooldown
        if not success:
            # retry the whole pass once the cooldown is over
            self.pending = True


class EventCoalescer:
    """
    Runs ``action`` on its own thread, at most once per ``cooldown`` seconds,
    whenever a signal is pending.

    ``action`` returns True on success. A failed or raising action re-arms the
    pending flag, so the cooldown doubles as the retry backoff.
    """

    def __init__(
        self,
        action: Callable[[], bool],
        cooldown: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.action = action
        self.cooldown = cooldown
        self._clock = clock
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._state = CoalescerState()
        self._thread: Optional[threading.Thread] = None
        self.passes = 0
        self.failures = 0

    def signal(self):
        """Request a pass. Safe to call from any thread; never blocks."""
        self._queue.put_nowait(_SIGNAL)

    def start(self):
        if self._thread is not None:
            logger.warning("Event coalescer already running")
            return
        self._thread = threading.Thread(target=self.run, name="nsg-coalescer", daemon=True)
        self._thread.start()
        logger.info(f"Event coalescer started (cooldown {self.cooldown}s)")

    def stop(self, timeout: Optional[float] = None):
        """Stop the control thread after any pass in progress completes."""
        self._queue.put_nowait(_STOP)
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run(self):
        """Control loop. Owns the coalescer state for its whole lifetime."""
        while self.step():
            pass
        logger.info("Event coalescer stopped")

    def step(self) -> bool:
        """
        Process one event: run a pass, expire the cooldown, or consume one
        queued message. Returns False once a stop request was consumed.
        """
        state = self._state

        if state.ready():
            self._run_pass()
            return True

        if state.cooldown_expired(self._clock()):
            logger.debug("Cooldown elapsed")
            state.on_cooldown_elapsed()
            return True

        timeout = None
        if state.deadline is not None:
            timeout = max(0.0, state.deadline - self._clock())

        try:
            message = self._queue.get(timeout=timeout)
        except queue.Empty:
            state.on_cooldown_elapsed()
            return True

        if message is _STOP:
            return False

        if not state.pending:
            logger.debug("Update signaled")
        state.on_signal()
        return True

    def _run_pass(self):
        self._state.begin_pass()
        self.passes += 1
        try:
            success = bool(self.action())
        except Exception as e:
            logger.exception(f"Reconciliation pass raised: {e}")
            success = False
        if not success:
            self.failures += 1
        self._state.end_pass(self._clock(), self.cooldown, success)

    def snapshot(self) -> Dict[str, Any]:
        state = self._state
        return {
            "state": state.name,
            "pending": state.pending,
            "cooldown_elapsed": state.cooldown_elapsed,
            "queued_signals": self._queue.qsize(),
            "passes": self.passes,
            "failures": self.failures,
        }
