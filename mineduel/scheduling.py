"""Deterministic timer queue for driving the bot without a real event loop."""

import heapq
import itertools
from typing import Any, Callable, List, Optional, Tuple


class TimerHandle:
    """Cancellable reference to a scheduled callback."""

    def __init__(self, when: float, callback: Callable[..., Any], args: Tuple[Any, ...]) -> None:
        self.when = when
        self._callback = callback
        self._args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def _run(self) -> None:
        self._callback(*self._args)


class VirtualScheduler:
    """
    Single-threaded virtual clock with ``time``/``call_later`` like an asyncio loop.

    The orchestrator only needs those two methods, so an ``asyncio`` event loop
    can be passed instead for real-time play. Time is in seconds.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        handle = TimerHandle(self._now + max(0.0, delay), callback, args)
        heapq.heappush(self._queue, (handle.when, next(self._counter), handle))
        return handle

    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled())

    def next_due(self) -> Optional[float]:
        while self._queue and self._queue[0][2].cancelled():
            heapq.heappop(self._queue)
        return self._queue[0][0] if self._queue else None

    def step(self) -> bool:
        """Advance to the next live timer and run it. Returns False when idle."""
        when = self.next_due()
        if when is None:
            return False
        _, _, handle = heapq.heappop(self._queue)
        self._now = max(self._now, when)
        handle._run()
        return True

    def advance(self, seconds: float) -> int:
        """Run every timer due within ``seconds`` from now; returns how many ran."""
        deadline = self._now + seconds
        ran = 0
        while True:
            when = self.next_due()
            if when is None or when > deadline:
                break
            self.step()
            ran += 1
        self._now = deadline
        return ran
