"""Round controller — one state machine for every route.

    idle -> playing (rounds 1..8) -> finished

While playing, each round moves through sub-phases:

    intro    moving routes wait a moment before the marker starts
    showing  Signal Flow plays its sequence back
    waiting  input accepted (taps, lane choice, stop)
    resolved round scored, transition pause before the next round

Delays run on a GameClock. Every event is scheduled with the session id as
token; starting a new game or resetting cancels the token, and callbacks
re-check it, so a superseded session can never be mutated.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
import random
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from glowroutes.clock import GameClock
from glowroutes.config import GameConfig
from glowroutes.errors import InvalidInputIndex, InvalidTransition, PersistenceError
from glowroutes.models import (
    TOTAL_ROUNDS,
    GameKind,
    RoundOutcome,
    SessionSummary,
    glow_shards_for,
)
from glowroutes.scoring import FRAME_RATE, SignalFlowStrategy, strategy_for
from glowroutes.stats import StatsStore

log = logging.getLogger(__name__)

IDLE = "idle"
INTRO = "intro"
SHOWING = "showing"
WAITING = "waiting"
RESOLVED = "resolved"
FINISHED = "finished"


@dataclass
class SessionState:
    session_id: int
    kind: GameKind
    round_index: int = 1
    total_rounds: int = TOTAL_ROUNDS
    total_score: int = 0
    streak: int = 0
    phase: str = INTRO
    challenge: Any = None
    entered: list[int] = field(default_factory=list)
    last_outcome: RoundOutcome | None = None
    phase_frame: int = 0
    deadline_frame: int | None = None


@dataclass(frozen=True)
class Snapshot:
    """Read-only view of the controller for the front end."""

    status: str
    phase: str = IDLE
    kind: GameKind | None = None
    round_index: int = 0
    total_rounds: int = TOTAL_ROUNDS
    total_score: int = 0
    streak: int = 0
    challenge: Any = None
    motion: float | None = None
    active_light: int | None = None
    entered: tuple[int, ...] = ()
    time_left: float | None = None
    last_outcome: RoundOutcome | None = None
    summary: SessionSummary | None = None


class RoundController:
    def __init__(self, stats: StatsStore, config: GameConfig | None = None,
                 clock: GameClock | None = None, rng: random.Random | None = None,
                 on_change: Callable[[Snapshot], None] | None = None):
        self.stats = stats
        self.config = config or GameConfig()
        self.clock = clock or GameClock(self.config.tick_rate)
        self.rng = rng or random.Random(self.config.seed)
        self.lock = threading.RLock()
        self.session: SessionState | None = None
        self.summary: SessionSummary | None = None
        self.strategy = None
        self._ids = itertools.count(1)
        self._listeners: list[Callable[[Snapshot], None]] = []
        if on_change:
            self.subscribe(on_change)

    # -- observers --

    def subscribe(self, listener: Callable[[Snapshot], None]) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[Snapshot], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                # a failing display must not stall the round
                log.exception("listener %r failed", listener)

    # -- state queries --

    @property
    def status(self) -> str:
        if self.session is None:
            return IDLE
        if self.summary is not None:
            return FINISHED
        return "playing"

    @property
    def phase(self) -> str:
        return self.session.phase if self.session else IDLE

    def _elapsed(self) -> float:
        return (self.clock.frame - self.session.phase_frame) / self.clock.tick_rate

    def motion_value(self) -> float | None:
        """Current marker position / pointer angle for moving routes."""
        s = self.session
        if s is None or not self.strategy.moving or s.phase not in (INTRO, WAITING):
            return None
        elapsed = self._elapsed() if s.phase == WAITING else 0.0
        return self.strategy.motion(s.challenge, elapsed * FRAME_RATE)

    def snapshot(self) -> Snapshot:
        with self.lock:
            s = self.session
            if s is None:
                return Snapshot(status=IDLE)
            light = None
            if s.phase == SHOWING:
                light = self.strategy.active_light(s.challenge, self._elapsed())
            time_left = None
            if s.deadline_frame is not None:
                time_left = max(0.0, (s.deadline_frame - self.clock.frame) / self.clock.tick_rate)
            return Snapshot(
                status=self.status,
                phase=s.phase,
                kind=s.kind,
                round_index=s.round_index,
                total_rounds=s.total_rounds,
                total_score=s.total_score,
                streak=s.streak,
                challenge=s.challenge,
                motion=self.motion_value(),
                active_light=light,
                entered=tuple(s.entered),
                time_left=time_left,
                last_outcome=s.last_outcome,
                summary=self.summary,
            )

    # -- clock --

    def tick(self, frames: int = 1) -> None:
        with self.lock:
            self.clock.advance(frames)

    def advance_seconds(self, seconds: float) -> None:
        with self.lock:
            self.clock.advance_seconds(seconds)

    def _schedule(self, delay: float, action: Callable[[], None]) -> None:
        sid = self.session.session_id

        def fire():
            # the token is cancelled on reset; this catches anything already dequeued
            if self.session is None or self.session.session_id != sid:
                log.debug("dropping stale event for session %d", sid)
                return
            action()

        self.clock.schedule(delay, fire, token=sid)

    def _enter(self, phase: str) -> None:
        self.session.phase = phase
        self.session.phase_frame = self.clock.frame

    # -- lifecycle --

    def start(self, kind: GameKind) -> Snapshot:
        """Begin a new 8-round session, superseding any current one."""
        with self.lock:
            self._discard()
            self.strategy = strategy_for(kind)
            self.session = SessionState(session_id=next(self._ids), kind=kind)
            log.info("session %d: starting %s", self.session.session_id, kind.label)
            self._begin_round()
            return self.snapshot()

    def reset(self) -> None:
        """Drop the current session (finished or not) and return to idle."""
        with self.lock:
            self._discard()
            self._notify()

    def _discard(self) -> None:
        if self.session is not None:
            self.clock.cancel(self.session.session_id)
            if self.summary is None:
                log.info("session %d: abandoned in round %d",
                         self.session.session_id, self.session.round_index)
        self.session = None
        self.summary = None

    def _begin_round(self) -> None:
        s = self.session
        s.challenge = self.strategy.generate(s.round_index, self.rng)
        s.entered = []
        s.last_outcome = None
        s.deadline_frame = None
        if isinstance(self.strategy, SignalFlowStrategy):
            self._enter(SHOWING)
            self._schedule(s.challenge.playback_time, self._open_input)
        else:
            intro = self.config.intro_for(s.kind)
            if intro > 0:
                self._enter(INTRO)
                self._schedule(intro, self._open_input)
            else:
                self._open_input()
                return
        self._notify()

    def _open_input(self) -> None:
        s = self.session
        self._enter(WAITING)
        timeout = self.config.timeout_for(s.kind)
        if timeout is not None:
            s.deadline_frame = self.clock.frame + self.clock.frames_for(timeout)
            self._schedule(timeout, self._on_timeout)
        self._notify()

    def _on_timeout(self) -> None:
        s = self.session
        if s.phase != WAITING:
            return
        frames = self._elapsed() * FRAME_RATE
        value = self.strategy.default_input(s.challenge, self.rng, frames, s.entered)
        log.info("session %d: round %d timed out, using %r", s.session_id, s.round_index, value)
        outcome = self.strategy.evaluate(s.challenge, value, s.streak)
        self._resolve(dataclasses.replace(outcome, timed_out=True))

    # -- input --

    def _require_waiting(self) -> SessionState:
        if self.session is None or self.session.phase != WAITING:
            raise InvalidTransition(f"input not accepted while {self.phase}")
        return self.session

    def submit_input(self, value) -> RoundOutcome:
        """Evaluate a complete input for the current round."""
        with self.lock:
            s = self._require_waiting()
            outcome = self.strategy.evaluate(s.challenge, value, s.streak)
            self._resolve(outcome)
            return outcome

    def tap(self, value=None) -> RoundOutcome | None:
        """One press from the player.

        Moving routes capture the marker where it is now and take no value.
        Signal Flow takes one grid index and returns None until the round is
        decided. Crossway Split takes the lane index.
        """
        with self.lock:
            s = self._require_waiting()
            if self.strategy.moving:
                if value is not None:
                    raise InvalidInputIndex(f"{s.kind.label} captures the marker; got {value!r}")
                return self.submit_input(self.motion_value())
            if self.strategy.incremental:
                s.entered.append(self.strategy.check_tap(s.challenge, value))
                if not self.strategy.resolved(s.challenge, s.entered):
                    self._notify()
                    return None
                return self.submit_input(tuple(s.entered))
            return self.submit_input(value)

    def _resolve(self, outcome: RoundOutcome) -> None:
        s = self.session
        self.clock.cancel(s.session_id)
        s.deadline_frame = None
        s.total_score += outcome.points
        s.streak = outcome.streak
        s.last_outcome = outcome
        log.info("session %d: round %d/%d %s +%d (score %d, streak %d)",
                 s.session_id, s.round_index, s.total_rounds,
                 "hit" if outcome.success else "miss", outcome.points,
                 s.total_score, s.streak)
        self._enter(RESOLVED)
        pause = self.config.pause_for(s.kind)
        if pause > 0:
            self._schedule(pause, self._advance)
            self._notify()
        else:
            self._notify()
            self._advance()

    def _advance(self) -> None:
        s = self.session
        if s.round_index < s.total_rounds:
            s.round_index += 1
            self._begin_round()
        else:
            self._finish()

    def _finish(self) -> None:
        s = self.session
        shards = glow_shards_for(s.total_score, s.streak)
        previous_best = self.stats.game_stats(s.kind).best_score
        persisted = True
        try:
            self.stats.record_session(s.kind, s.total_score, shards, s.streak)
        except PersistenceError as exc:
            log.error("session %d: result not saved: %s", s.session_id, exc)
            persisted = False
        self.summary = SessionSummary(
            kind=s.kind,
            total_score=s.total_score,
            glow_shards=shards,
            final_streak=s.streak,
            best_score=self.stats.game_stats(s.kind).best_score,
            new_best=s.total_score > previous_best,
            persisted=persisted,
        )
        self._enter(FINISHED)
        log.info("session %d: finished with %d points, %d glow shards",
                 s.session_id, s.total_score, shards)
        self._notify()

    def retry_persist(self) -> SessionSummary | None:
        """Save stats again after a failed end-of-session write.

        Raises PersistenceError if storage is still failing.
        """
        with self.lock:
            if self.summary is None or self.summary.persisted:
                return self.summary
            self.stats.save()
            self.summary = dataclasses.replace(self.summary, persisted=True)
            self._notify()
            return self.summary
