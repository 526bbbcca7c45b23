# drivermon/runtime/scheduler.py
from __future__ import annotations

import heapq
import itertools
import logging
import time
from typing import Callable, List, Optional, Tuple

TimerCallback = Callable[[], None]


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class TimerHandle:
    """Cancellable one-shot or repeating timer owned by a Scheduler."""

    def __init__(self, deadline_ms: int, callback: TimerCallback, interval_ms: Optional[int] = None):
        self.deadline_ms = int(deadline_ms)
        self.callback = callback
        self.interval_ms = interval_ms
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class Scheduler:
    """
    Single-threaded timer queue.

    Nothing runs on its own: the owner drives it with run_pending() or
    run_for(). Callbacks execute on the caller's thread, one at a time.
    """

    def __init__(
        self,
        *,
        clock: Optional[Callable[[], int]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._clock = clock or wall_clock_ms
        self._sleep = sleep or time.sleep
        self._log = logger or logging.getLogger(__name__)
        self._heap: List[Tuple[int, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return int(self._clock())

    def call_later(self, delay_ms: int, callback: TimerCallback) -> TimerHandle:
        h = TimerHandle(self.now_ms() + max(0, int(delay_ms)), callback)
        self._push(h)
        return h

    def call_every(self, interval_ms: int, callback: TimerCallback) -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        h = TimerHandle(self.now_ms() + int(interval_ms), callback, interval_ms=int(interval_ms))
        self._push(h)
        return h

    @property
    def pending_count(self) -> int:
        return sum(1 for _, _, h in self._heap if not h.cancelled)

    def next_deadline_ms(self) -> Optional[int]:
        self._drop_cancelled_head()
        return self._heap[0][0] if self._heap else None

    def run_pending(self) -> int:
        """Fire every timer that is due now. Returns the number of callbacks run."""
        fired = 0
        now = self.now_ms()
        while True:
            self._drop_cancelled_head()
            if not self._heap or self._heap[0][0] > now:
                return fired

            _, _, h = heapq.heappop(self._heap)
            if h.interval_ms is not None:
                h.deadline_ms += h.interval_ms
                self._push(h)

            try:
                h.callback()
            except Exception:
                self._log.exception("TIMER_CALLBACK_ERROR")
            fired += 1

    def run_for(self, duration_ms: int) -> None:
        """Drive timers in real time for `duration_ms`."""
        end = self.now_ms() + int(duration_ms)
        while True:
            self.run_pending()
            now = self.now_ms()
            if now >= end:
                return
            nxt = self.next_deadline_ms()
            wake = end if nxt is None else min(end, nxt)
            self._sleep(max(0, wake - now) / 1000.0)

    def _push(self, h: TimerHandle) -> None:
        heapq.heappush(self._heap, (h.deadline_ms, next(self._seq), h))

    def _drop_cancelled_head(self) -> None:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)


class ManualScheduler(Scheduler):
    """Scheduler on a virtual clock, advanced explicitly (tests, replay)."""

    def __init__(self, start_ms: int = 0, *, logger: Optional[logging.Logger] = None):
        self._now = int(start_ms)
        super().__init__(clock=lambda: self._now, sleep=lambda _s: None, logger=logger)

    def set_time(self, now_ms: int) -> None:
        self._now = int(now_ms)

    def advance(self, delta_ms: int) -> None:
        """Move time forward, firing timers in deadline order on the way."""
        target = self._now + int(delta_ms)
        while True:
            nxt = self.next_deadline_ms()
            if nxt is None or nxt > target:
                break
            self._now = max(self._now, nxt)
            self.run_pending()
        self._now = target
        self.run_pending()

    def run_for(self, duration_ms: int) -> None:
        self.advance(duration_ms)
