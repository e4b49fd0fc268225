"""
Countdown timer for rest steps.

One asyncio task drives the countdown. Every start/stop/skip/pause bumps a
generation counter; a run only acts while its generation is current, so a
cancelled or skipped timer can never fire a late completion.
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable
from datetime import datetime, timedelta
from enum import Enum

from app.core.clock import utc_now

logger = logging.getLogger(__name__)


class TimerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CountdownTimer:
    def __init__(
        self,
        on_complete: Callable[[], None] | None = None,
        on_tick: Callable[[int], None] | None = None,
        tick_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.on_complete = on_complete
        self.on_tick = on_tick
        self._tick_interval = tick_interval
        self._clock = clock
        self._state = TimerState.IDLE
        self._generation = 0
        self._end_time = 0.0
        self._paused_remaining = 0.0
        self._last_tick_ms: int | None = None
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> TimerState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_active(self) -> bool:
        return self._state in (TimerState.RUNNING, TimerState.PAUSED)

    @property
    def remaining_ms(self) -> int:
        if self._state is TimerState.RUNNING:
            return max(0, math.ceil((self._end_time - self._clock()) * 1000))
        if self._state is TimerState.PAUSED:
            return max(0, math.ceil(self._paused_remaining * 1000))
        return 0

    @property
    def ends_at(self) -> datetime | None:
        """Wall-clock end time of a running countdown."""
        if self._state is not TimerState.RUNNING:
            return None
        return utc_now() + timedelta(milliseconds=self.remaining_ms)

    def start(self, duration_sec: float) -> None:
        """Start (or restart) the countdown. Must be called from a running event loop."""
        self._cancel_task()
        self._generation += 1
        self._end_time = self._clock() + duration_sec
        self._state = TimerState.RUNNING
        self._last_tick_ms = None
        self._spawn()

    def start_paused(self, duration_sec: float) -> None:
        """Load a countdown in the paused state; resume() starts it."""
        self._cancel_task()
        self._generation += 1
        self._paused_remaining = max(0.0, duration_sec)
        self._state = TimerState.PAUSED
        self._last_tick_ms = None

    def stop(self) -> bool:
        """Cancel without firing completion."""
        if not self.is_active:
            return False
        self._cancel_task()
        self._generation += 1
        self._state = TimerState.CANCELLED
        return True

    def skip(self) -> bool:
        """Complete immediately; no further ticks."""
        if not self.is_active:
            return False
        self._cancel_task()
        self._finish(self._generation)
        return True

    def adjust(self, delta_sec: float) -> None:
        # Moves the end time in place; the run loop picks it up on its next tick
        if self._state is TimerState.RUNNING:
            self._end_time += delta_sec
            self._last_tick_ms = None
            if self._end_time - self._clock() <= 0:
                self._cancel_task()
                self._finish(self._generation)
        elif self._state is TimerState.PAUSED:
            self._paused_remaining = max(0.0, self._paused_remaining + delta_sec)
            if self._paused_remaining <= 0:
                self._finish(self._generation)

    def pause(self) -> bool:
        if self._state is not TimerState.RUNNING:
            return False
        self._paused_remaining = max(0.0, self._end_time - self._clock())
        self._cancel_task()
        self._generation += 1
        self._state = TimerState.PAUSED
        return True

    def resume(self) -> bool:
        if self._state is not TimerState.PAUSED:
            return False
        self._generation += 1
        self._end_time = self._clock() + self._paused_remaining
        self._state = TimerState.RUNNING
        self._last_tick_ms = None
        self._spawn()
        return True

    def _spawn(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation))

    def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, generation: int) -> None:
        while generation == self._generation and self._state is TimerState.RUNNING:
            remaining = self._end_time - self._clock()
            if remaining <= 0:
                self._finish(generation)
                return
            self._emit_tick(remaining)
            await asyncio.sleep(min(self._tick_interval, remaining))

    def _emit_tick(self, remaining_sec: float) -> None:
        remaining_ms = math.ceil(remaining_sec * 1000)
        # Never report more time than the previous tick unless adjusted
        if self._last_tick_ms is not None:
            remaining_ms = min(remaining_ms, self._last_tick_ms)
        self._last_tick_ms = remaining_ms
        if self.on_tick is None:
            return
        try:
            self.on_tick(remaining_ms)
        except Exception:
            logger.exception("Timer tick callback failed")

    def _finish(self, generation: int) -> None:
        if generation != self._generation or not self.is_active:
            logger.debug("Ignoring stale timer completion (generation %s)", generation)
            return
        self._generation += 1
        self._state = TimerState.COMPLETED
        self._task = None
        if self.on_complete is None:
            return
        try:
            self.on_complete()
        except Exception:
            logger.exception("Timer completion callback failed")
