"""Deferred callback scheduling.

Components that need "run this later" (e.g. lifting a temporary IP block)
depend on the CallbackScheduler abstraction instead of a concrete timer, so
tests can drive time by hand and hosts can swap the implementation.
"""

import heapq
import itertools
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

from xianfeast.app.core.logging import get_logger

logger = get_logger(__name__)


class ScheduledCall(ABC):
    """Handle for a pending callback."""

    @abstractmethod
    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call more than once."""
        pass


class CallbackScheduler(ABC):
    """Abstract base class for deferred callback schedulers."""

    @abstractmethod
    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        """Run ``callback`` once after ``delay`` seconds.

        Args:
            delay: Seconds to wait before invoking the callback
            callback: Zero-argument callable

        Returns:
            Handle that can cancel the pending call
        """
        pass


class _HeapCall(ScheduledCall):
    def __init__(self, callback: Callable[[], None]):
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class TimerHeapScheduler(CallbackScheduler):
    """Scheduler running every pending callback on one shared daemon thread.

    Calls are kept in a heap ordered by due time; the thread sleeps until the
    earliest one is due. The thread count stays at one however many calls are
    pending. Cancelled calls are skipped when they reach the top of the heap.

    Works whether or not an event loop is running. Pending calls are lost
    when the process exits.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: List[Tuple[float, int, _HeapCall]] = []
        self._sequence = itertools.count()
        self._condition = threading.Condition()
        self._thread: Optional[threading.Thread] = None

    def schedule(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        call = _HeapCall(callback)
        due = self._clock() + max(0.0, delay)
        with self._condition:
            heapq.heappush(self._heap, (due, next(self._sequence), call))
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(
                    target=self._run, name="xianfeast-timers", daemon=True
                )
                self._thread.start()
            self._condition.notify()
        return call

    def pending(self) -> int:
        """Number of calls that are neither cancelled nor run yet."""
        with self._condition:
            return sum(1 for _, _, call in self._heap if not call.cancelled)

    def _next_due_call(self) -> _HeapCall:
        with self._condition:
            while True:
                while self._heap and self._heap[0][2].cancelled:
                    heapq.heappop(self._heap)
                if not self._heap:
                    self._condition.wait()
                    continue
                wait = self._heap[0][0] - self._clock()
                if wait <= 0:
                    return heapq.heappop(self._heap)[2]
                self._condition.wait(timeout=wait)

    def _run(self) -> None:
        while True:
            call = self._next_due_call()
            try:
                call.callback()
            except Exception:
                logger.exception("Scheduled callback failed")
