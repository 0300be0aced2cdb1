"""
Delayed job scheduler for the in-process queue.

Holds jobs that become ready at a given time. Nothing runs on its own:
the owner polls due() and moves ready jobs back into its buffer, which
keeps retry timing testable with a fake clock.
"""
import heapq
import itertools
import time
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class DelayedScheduler(Generic[T]):
    """Min-heap of (ready_at, seq, item)."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._heap: list[tuple[float, int, T]] = []
        self._seq = itertools.count()

    def schedule(self, item: T, delay_seconds: float) -> float:
        """Hold item until now + delay_seconds. Returns the ready time."""
        ready_at = self._clock() + max(delay_seconds, 0.0)
        heapq.heappush(self._heap, (ready_at, next(self._seq), item))
        return ready_at

    def due(self) -> list[T]:
        """Pop every item whose ready time has passed, in ready order."""
        now = self._clock()
        ready = []
        while self._heap and self._heap[0][0] <= now:
            ready.append(heapq.heappop(self._heap)[2])
        return ready

    def next_ready_at(self) -> float | None:
        return self._heap[0][0] if self._heap else None

    def __len__(self) -> int:
        return len(self._heap)
