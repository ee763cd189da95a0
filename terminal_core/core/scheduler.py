"""Scheduled-task abstraction driving simulated operations.

Operations never create their own timers. They ask a Scheduler for a
one-shot (``call_later``) or repeating (``call_every``) task and keep the
returned ``ScheduledTask`` handle to cancel it. Every implementation runs
callbacks one at a time on a single thread, so a callback always runs to
completion before the next one starts and the entity store never sees
concurrent writers.

Implementations:
    ManualScheduler  - virtual clock advanced explicitly (tests, offline runs)
    AsyncioScheduler - wall-clock timers on an asyncio event loop

Usage:
    scheduler = ManualScheduler()
    task = scheduler.call_every(1.0, tick)
    scheduler.advance(5.0)      # runs tick five times
    task.cancel()
"""

import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class ScheduledTask:
    """Cancellable handle for a scheduled callback.

    Attributes:
        due_time: Scheduler time of the next firing
        interval: Repeat interval in seconds, None for one-shot tasks
    """

    def __init__(self, callback: Callback, due_time: float, interval: Optional[float] = None):
        self.callback = callback
        self.due_time = due_time
        self.interval = interval
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def cancel(self) -> bool:
        """Prevent future firings. Returns False if already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        return True

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "pending"
        return f"<ScheduledTask due={self.due_time:.3f} interval={self.interval} {state}>"


class Scheduler(ABC):
    """Single-threaded timer source."""

    @abstractmethod
    def now(self) -> float:
        """Current scheduler time in seconds."""
        pass

    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> ScheduledTask:
        """Run ``callback`` once after ``delay`` seconds."""
        pass

    @abstractmethod
    def call_every(self, interval: float, callback: Callback) -> ScheduledTask:
        """Run ``callback`` every ``interval`` seconds, first after one interval.

        Raises:
            ValueError: If interval is not positive
        """
        pass


class ManualScheduler(Scheduler):
    """Deterministic scheduler on a virtual clock.

    Nothing fires until ``advance`` or ``run_until_idle`` is called. Tasks due
    at the same instant fire in scheduling order. A callback that raises
    propagates out of ``advance``; its task is not rescheduled.
    """

    def __init__(self, start_time: float = 0.0):
        self._now = start_time
        self._queue: List[Tuple[float, int, ScheduledTask]] = []
        self._sequence = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback) -> ScheduledTask:
        task = ScheduledTask(callback, self._now + max(0.0, delay))
        self._push(task)
        return task

    def call_every(self, interval: float, callback: Callback) -> ScheduledTask:
        if interval <= 0:
            raise ValueError(f"Repeat interval must be positive, got {interval}")
        task = ScheduledTask(callback, self._now + interval, interval=interval)
        self._push(task)
        return task

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing every task that falls due.

        Returns:
            Number of callbacks executed
        """
        if seconds < 0:
            raise ValueError("Cannot move the clock backwards")
        target = self._now + seconds
        fired = 0

        while self._queue and self._queue[0][0] <= target:
            due, _, task = heapq.heappop(self._queue)
            if task.cancelled:
                continue
            self._now = due
            task.callback()
            fired += 1
            if task.repeating and not task.cancelled:
                task.due_time = due + task.interval
                self._push(task)

        self._now = target
        return fired

    def run_until_idle(self, max_time: float = 3600.0) -> int:
        """Fire tasks in due order until none remain or ``max_time`` elapses.

        Returns:
            Number of callbacks executed
        """
        deadline = self._now + max_time
        fired = 0
        while True:
            next_due = self.next_due_time()
            if next_due is None or next_due > deadline:
                break
            fired += self.advance(next_due - self._now)
        return fired

    def next_due_time(self) -> Optional[float]:
        while self._queue and self._queue[0][2].cancelled:
            heapq.heappop(self._queue)
        return self._queue[0][0] if self._queue else None

    def pending_count(self) -> int:
        return sum(1 for _, _, task in self._queue if not task.cancelled)

    def _push(self, task: ScheduledTask) -> None:
        heapq.heappush(self._queue, (task.due_time, next(self._sequence), task))


class _LoopTask(ScheduledTask):
    """ScheduledTask bound to an asyncio TimerHandle."""

    def __init__(self, callback: Callback, due_time: float, interval: Optional[float] = None):
        super().__init__(callback, due_time, interval)
        self.handle: Optional[asyncio.TimerHandle] = None

    def cancel(self) -> bool:
        if not super().cancel():
            return False
        if self.handle is not None:
            self.handle.cancel()
        return True


class AsyncioScheduler(Scheduler):
    """Scheduler backed by an asyncio event loop.

    Args:
        loop: Event loop to schedule on. Defaults to the running loop, so
            construct it from inside a coroutine when omitted.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self._loop.time()

    def call_later(self, delay: float, callback: Callback) -> ScheduledTask:
        task = _LoopTask(callback, self.now() + max(0.0, delay))
        task.handle = self._loop.call_at(task.due_time, self._fire, task)
        return task

    def call_every(self, interval: float, callback: Callback) -> ScheduledTask:
        if interval <= 0:
            raise ValueError(f"Repeat interval must be positive, got {interval}")
        task = _LoopTask(callback, self.now() + interval, interval=interval)
        task.handle = self._loop.call_at(task.due_time, self._fire, task)
        return task

    def _fire(self, task: _LoopTask) -> None:
        if task.cancelled:
            return
        try:
            task.callback()
        finally:
            if task.repeating and not task.cancelled:
                task.due_time += task.interval
                task.handle = self._loop.call_at(task.due_time, self._fire, task)
