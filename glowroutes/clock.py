"""Logical game clock with cancellable scheduled events.

The clock only moves when ``advance`` is called, so tests step it frame by
frame while the deck front end drives it from a ``ClockThread``. Every
scheduled event carries a token (the session id); ``cancel(token)`` makes
all of a superseded session's events inert.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import math
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

log = logging.getLogger(__name__)


@dataclass(order=True)
class ScheduledEvent:
    due: int
    seq: int
    token: Any = field(compare=False)
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class GameClock:
    def __init__(self, tick_rate: float = 60.0):
        if tick_rate <= 0:
            raise ValueError(f"tick_rate must be positive, got {tick_rate}")
        self.tick_rate = float(tick_rate)
        self.frame = 0
        self._queue: list[ScheduledEvent] = []
        self._seq = itertools.count()

    @property
    def now(self) -> float:
        """Seconds elapsed on the logical clock."""
        return self.frame / self.tick_rate

    def frames_for(self, seconds: float) -> int:
        # rounding first keeps 0.3 * 60 at 18 frames, not 19
        return max(0, math.ceil(round(seconds * self.tick_rate, 6)))

    def schedule(self, delay: float, callback: Callable[[], None], token: Any = None) -> ScheduledEvent:
        """Run ``callback`` once ``delay`` seconds of clock time have passed."""
        event = ScheduledEvent(self.frame + self.frames_for(delay), next(self._seq), token, callback)
        heapq.heappush(self._queue, event)
        return event

    def cancel(self, token: Any) -> int:
        """Cancel every pending event scheduled with ``token``."""
        count = 0
        for event in self._queue:
            if event.token == token and not event.cancelled:
                event.cancel()
                count += 1
        if count:
            log.debug("cancelled %d pending event(s) for token %r", count, token)
        return count

    def pending(self, token: Any = None) -> int:
        return sum(1 for e in self._queue
                   if not e.cancelled and (token is None or e.token == token))

    def _fire_due(self) -> None:
        while self._queue and self._queue[0].due <= self.frame:
            event = heapq.heappop(self._queue)
            if not event.cancelled:
                event.callback()

    def advance(self, frames: int = 1) -> None:
        """Move the clock forward, firing events as their frame comes up."""
        self._fire_due()
        for _ in range(frames):
            self.frame += 1
            self._fire_due()

    def advance_seconds(self, seconds: float) -> None:
        self.advance(self.frames_for(seconds))


class ClockThread(threading.Thread):
    """Background thread that calls ``tick`` at a fixed rate."""

    def __init__(self, tick: Callable[[int], None], tick_rate: float = 60.0):
        super().__init__(daemon=True)
        self.tick = tick
        self.interval = 1.0 / tick_rate
        self._stop_event = threading.Event()

    def stop(self):
        """Signal the clock thread to stop."""
        self._stop_event.set()

    def run(self):
        while not self._stop_event.is_set():
            try:
                self.tick(1)
            except Exception:
                log.exception("clock tick failed")
            self._stop_event.wait(self.interval)
