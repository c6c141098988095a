"""Named periodic tasks and one-shot timers driven by a single clock.

Two ways to drive the scheduler:

- ``advance(seconds)`` for simulated time: every job due inside the window
  runs in due-time order and the ``SimulatedClock`` is moved to each due
  time first. Jobs scheduled while advancing (cascade timers) are picked up
  in the same call when they fall inside the window.
- ``run()`` for wall-clock time: due jobs are launched concurrently and the
  loop sleeps until the next due time.

Each job body is isolated: an exception is logged and counted, never
propagated. A periodic job that is still running when it comes due again is
skipped for that period instead of overlapping itself.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from .clock import Clock, SimulatedClock
from .logging_utils import log_deterministic, log_error

JobCallback = Callable[[], Awaitable[Any]]


@dataclass
class ScheduledJob:
    """A periodic task (``interval`` set) or a one-shot timer (``interval`` None)."""

    name: str
    callback: JobCallback
    due: datetime
    interval: Optional[float] = None
    running: bool = False
    runs: int = 0
    failures: int = 0
    skipped: int = 0

    @property
    def periodic(self) -> bool:
        return self.interval is not None


@dataclass
class TaskScheduler:
    clock: Clock
    poll_seconds: float = 1.0
    jobs: Dict[str, ScheduledJob] = field(default_factory=dict)
    _queue: List[Tuple[datetime, int, ScheduledJob]] = field(default_factory=list)
    _sequence: Any = field(default_factory=itertools.count)
    _inflight: Set[asyncio.Task] = field(default_factory=set)
    _stopping: bool = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def every(
        self,
        name: str,
        seconds: float,
        callback: JobCallback,
        *,
        run_immediately: bool = False,
    ) -> ScheduledJob:
        """Register a named periodic task.

        Raises:
            ValueError: Duplicate name or non-positive interval.
        """
        if seconds <= 0:
            raise ValueError(f"Interval for task '{name}' must be positive, got {seconds}")
        if name in self.jobs:
            raise ValueError(f"Task '{name}' is already scheduled")
        first = self.clock.now() if run_immediately else self.clock.now() + timedelta(seconds=seconds)
        job = ScheduledJob(name=name, callback=callback, due=first, interval=seconds)
        self.jobs[name] = job
        self._push(job)
        return job

    def call_later(self, delay_seconds: float, callback: JobCallback, *, name: str = "timer") -> ScheduledJob:
        """Schedule a one-shot job. Timers cannot be cancelled."""
        job = ScheduledJob(
            name=name,
            callback=callback,
            due=self.clock.now() + timedelta(seconds=max(0.0, delay_seconds)),
        )
        self._push(job)
        return job

    def _push(self, job: ScheduledJob) -> None:
        heapq.heappush(self._queue, (job.due, next(self._sequence), job))

    @property
    def pending(self) -> int:
        return len(self._queue)

    def next_due(self) -> Optional[datetime]:
        return self._queue[0][0] if self._queue else None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _claim(self, job: ScheduledJob) -> bool:
        if job.running:
            job.skipped += 1
            log_deterministic(f"Task '{job.name}' still running, skipping this period")
            return False
        job.running = True
        return True

    async def _execute(self, job: ScheduledJob) -> None:
        if self._claim(job):
            await self._run_claimed(job)

    async def _run_claimed(self, job: ScheduledJob) -> None:
        try:
            await job.callback()
            job.runs += 1
        except Exception as exc:
            job.failures += 1
            log_error(f"Task '{job.name}' failed: {exc}")
        finally:
            job.running = False

    def _pop_due(self, moment: datetime) -> Optional[Tuple[datetime, ScheduledJob]]:
        """Pop the earliest job due at or before ``moment``; periodic jobs are re-queued."""
        if not self._queue or self._queue[0][0] > moment:
            return None
        due, _, job = heapq.heappop(self._queue)
        if job.periodic:
            job.due = due + timedelta(seconds=job.interval)
            self._push(job)
        return due, job

    async def advance(self, seconds: float) -> int:
        """Run every job due within the next ``seconds`` of simulated time.

        Returns the number of jobs executed.

        Raises:
            TypeError: If the scheduler is not driven by a ``SimulatedClock``.
        """
        if not isinstance(self.clock, SimulatedClock):
            raise TypeError("advance() requires a SimulatedClock; use run() for wall-clock time")
        target = self.clock.now() + timedelta(seconds=seconds)
        executed = 0
        while True:
            popped = self._pop_due(target)
            if popped is None:
                break
            due, job = popped
            if due > self.clock.now():
                self.clock.set(due)
            await self._execute(job)
            executed += 1
        if target > self.clock.now():
            self.clock.set(target)
        return executed

    async def run_pending(self) -> None:
        """Launch every job due now as concurrent tasks (wall-clock mode)."""
        now = self.clock.now()
        while True:
            popped = self._pop_due(now)
            if popped is None:
                break
            _, job = popped
            if not self._claim(job):
                continue
            task = asyncio.get_running_loop().create_task(self._run_claimed(job))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def run(self) -> None:
        """Drive the scheduler against the clock until ``stop()`` is called."""
        self._stopping = False
        log_deterministic(f"Scheduler started with {len(self.jobs)} periodic task(s)")
        try:
            while not self._stopping:
                await self.run_pending()
                upcoming = self.next_due()
                delay = self.poll_seconds
                if upcoming is not None:
                    delay = min(delay, max(0.0, (upcoming - self.clock.now()).total_seconds()))
                await self.clock.sleep(delay)
        finally:
            await self.wait_idle()
            log_deterministic("Scheduler stopped")

    def stop(self) -> None:
        self._stopping = True

    async def wait_idle(self) -> None:
        """Wait for in-flight job tasks launched by ``run_pending``."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight))
