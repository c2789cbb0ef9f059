"""Challenge generation and scoring for the four routes.

Every strategy follows the same contract so the round controller can drive
any of them:

    config = strategy.round_config(r)
    challenge = strategy.generate(r, rng)
    outcome = strategy.evaluate(challenge, value, streak)

Challenges are immutable. ``evaluate`` is pure: the same challenge, input
and previous streak always give the same outcome.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import Any, Sequence

from glowroutes.errors import InvalidInputIndex
from glowroutes.models import TOTAL_ROUNDS, GameKind, RoundOutcome

log = logging.getLogger(__name__)

FRAME_RATE = 60.0  # speeds are expressed per frame at this rate

# -- lane dash ---------------------------------------------------------------
ZONE_WIDTH_MIN = 0.15
ZONE_WIDTH_MAX = 0.25
ZONE_START_MIN = 0.2
ZONE_END_MAX = 0.8
MARKER_STEP = 0.01  # fraction of the lane per frame at speed 1.0

# -- signal flow -------------------------------------------------------------
GRID_SIZE = 9
SEQUENCE_BASE = 3
SEQUENCE_MAX = 7
SHOW_TIME = 0.6
GAP_TIME = 0.2
INPUT_DELAY = 0.5  # after the last gap, before taps are accepted

# -- crossway split ----------------------------------------------------------
LANE_COUNT = 3
SEGMENT_COUNT = 6
SAFE_POINTS = 100

# -- timing arcs -------------------------------------------------------------
ARC_WIDTH_MIN = 40.0
ARC_WIDTH_MAX = 70.0
SPIN_BASE = 2.0   # seconds per revolution at round 0
SPIN_STEP = 0.15  # seconds shaved off per round


def _check_round(r: int) -> None:
    if not 1 <= r <= TOTAL_ROUNDS:
        raise ValueError(f"round index must be in 1..{TOTAL_ROUNDS}, got {r}")


def _number(value: Any, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise InvalidInputIndex(f"{what} must be a finite number, got {value!r}")
    return float(value)


def _index(value: Any, upper: int, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < upper:
        raise InvalidInputIndex(f"{what} must be an integer in [0, {upper}), got {value!r}")
    return value


def _streak(success: bool, streak: int) -> int:
    return streak + 1 if success else 0


@dataclass(frozen=True)
class RoundConfig:
    """Difficulty knobs for one round of one route."""

    round_index: int
    speed: float = 0.0
    sequence_length: int = 0
    lane_count: int = 0
    segment_count: int = 0


# -- challenges --------------------------------------------------------------

@dataclass(frozen=True)
class LaneDashChallenge:
    round_index: int
    speed: float
    zone_start: float
    zone_end: float

    @property
    def center(self) -> float:
        return (self.zone_start + self.zone_end) / 2

    @property
    def half_width(self) -> float:
        return (self.zone_end - self.zone_start) / 2


@dataclass(frozen=True)
class SignalFlowChallenge:
    round_index: int
    sequence: tuple[int, ...]
    grid_size: int = GRID_SIZE

    @property
    def playback_time(self) -> float:
        """Seconds from round start until taps are accepted."""
        return len(self.sequence) * (SHOW_TIME + GAP_TIME) + INPUT_DELAY


@dataclass(frozen=True)
class CrosswayChallenge:
    round_index: int
    lanes: tuple[tuple[bool, ...], ...]

    @property
    def safe_lanes(self) -> list[int]:
        return [i for i, lane in enumerate(self.lanes) if lane[-1]]


@dataclass(frozen=True)
class TimingArcsChallenge:
    round_index: int
    speed: float  # degrees per frame
    arc_start: float
    arc_end: float

    @property
    def center(self) -> float:
        return (self.arc_start + self.arc_end) / 2

    @property
    def half_width(self) -> float:
        return (self.arc_end - self.arc_start) / 2

    def contains(self, angle: float) -> bool:
        end = self.arc_end
        if end > 360:
            end -= 360
            return angle >= self.arc_start or angle <= end
        return self.arc_start <= angle <= end


# -- strategies --------------------------------------------------------------

class Strategy:
    """Base strategy. Subclasses fill in generation and scoring."""

    kind: GameKind
    moving = False      # input is captured from a moving element
    incremental = False  # input arrives one tap at a time

    def round_config(self, r: int) -> RoundConfig:
        raise NotImplementedError

    def generate(self, r: int, rng: random.Random):
        raise NotImplementedError

    def evaluate(self, challenge, value, streak: int = 0) -> RoundOutcome:
        raise NotImplementedError

    def winning_input(self, challenge):
        raise NotImplementedError

    def default_input(self, challenge, rng: random.Random, frames: int = 0,
                      entered: Sequence[int] = ()):
        """Input synthesized when the player lets the round time out."""
        return self.motion(challenge, frames)

    def motion(self, challenge, frames: int) -> float | None:
        return None


class LaneDashStrategy(Strategy):
    kind = GameKind.LANE_DASH
    moving = True

    def round_config(self, r: int) -> RoundConfig:
        _check_round(r)
        return RoundConfig(round_index=r, speed=1.0 + 0.2 * r)

    def generate(self, r: int, rng: random.Random) -> LaneDashChallenge:
        cfg = self.round_config(r)
        width = rng.uniform(ZONE_WIDTH_MIN, ZONE_WIDTH_MAX)
        start = rng.uniform(ZONE_START_MIN, ZONE_END_MAX - width)
        return LaneDashChallenge(r, cfg.speed, start, start + width)

    def motion(self, challenge: LaneDashChallenge, frames: int) -> float:
        """Marker position after ``frames`` ticks, bouncing between 0 and 1."""
        travel = (frames * challenge.speed * MARKER_STEP) % 2.0
        return travel if travel <= 1.0 else 2.0 - travel

    def evaluate(self, challenge: LaneDashChallenge, value, streak: int = 0) -> RoundOutcome:
        pos = _number(value, "stop position")
        if not 0.0 <= pos <= 1.0:
            raise InvalidInputIndex(f"stop position must be within [0, 1], got {pos}")
        points = 0
        if challenge.zone_start <= pos <= challenge.zone_end:
            accuracy = 1.0 - abs(pos - challenge.center) / challenge.half_width
            points = max(0, round(100 * accuracy))
        success = points > 0
        return RoundOutcome(success, points, _streak(success, streak), pos)

    def winning_input(self, challenge: LaneDashChallenge) -> float:
        return challenge.center


class SignalFlowStrategy(Strategy):
    kind = GameKind.SIGNAL_FLOW
    incremental = True

    def round_config(self, r: int) -> RoundConfig:
        _check_round(r)
        return RoundConfig(round_index=r, sequence_length=min(SEQUENCE_BASE + r, SEQUENCE_MAX))

    def generate(self, r: int, rng: random.Random) -> SignalFlowChallenge:
        cfg = self.round_config(r)
        seq = tuple(rng.randrange(GRID_SIZE) for _ in range(cfg.sequence_length))
        return SignalFlowChallenge(r, seq)

    def check_tap(self, challenge: SignalFlowChallenge, index) -> int:
        return _index(index, challenge.grid_size, "grid index")

    def resolved(self, challenge: SignalFlowChallenge, entered: Sequence[int]) -> bool:
        """True once the taps so far decide the round."""
        if len(entered) >= len(challenge.sequence):
            return True
        return any(a != b for a, b in zip(entered, challenge.sequence))

    def evaluate(self, challenge: SignalFlowChallenge, value, streak: int = 0) -> RoundOutcome:
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise InvalidInputIndex(f"expected a sequence of grid taps, got {value!r}")
        taps = tuple(self.check_tap(challenge, i) for i in value)
        success = len(taps) >= len(challenge.sequence)
        for tap, expected in zip(taps, challenge.sequence):
            if tap != expected:
                success = False
                break
        points = 100 + 10 * len(challenge.sequence) if success else 0
        return RoundOutcome(success, points, _streak(success, streak), taps)

    def winning_input(self, challenge: SignalFlowChallenge) -> tuple[int, ...]:
        return challenge.sequence

    def default_input(self, challenge, rng, frames=0, entered=()):
        return tuple(entered)

    def active_light(self, challenge: SignalFlowChallenge, elapsed: float) -> int | None:
        """Grid cell lit during playback ``elapsed`` seconds into the round."""
        if elapsed < 0:
            return None
        slot = int(elapsed // (SHOW_TIME + GAP_TIME))
        if slot >= len(challenge.sequence):
            return None
        if elapsed - slot * (SHOW_TIME + GAP_TIME) < SHOW_TIME:
            return challenge.sequence[slot]
        return None


class CrosswayStrategy(Strategy):
    kind = GameKind.CROSSWAY_SPLIT

    def round_config(self, r: int) -> RoundConfig:
        _check_round(r)
        return RoundConfig(round_index=r, lane_count=LANE_COUNT, segment_count=SEGMENT_COUNT)

    def generate(self, r: int, rng: random.Random) -> CrosswayChallenge:
        cfg = self.round_config(r)
        lanes = [[rng.random() < 0.5 for _ in range(cfg.segment_count)]
                 for _ in range(cfg.lane_count)]
        if not any(lane[-1] for lane in lanes):
            forced = rng.randrange(cfg.lane_count)
            lanes[forced][-1] = True
            log.debug("round %d: no safe lane rolled, forcing lane %d", r, forced)
        return CrosswayChallenge(r, tuple(tuple(lane) for lane in lanes))

    def evaluate(self, challenge: CrosswayChallenge, value, streak: int = 0) -> RoundOutcome:
        lane = _index(value, len(challenge.lanes), "lane")
        success = challenge.lanes[lane][-1]
        points = SAFE_POINTS if success else 0
        return RoundOutcome(success, points, _streak(success, streak), lane)

    def winning_input(self, challenge: CrosswayChallenge) -> int:
        return challenge.safe_lanes[0]

    def default_input(self, challenge, rng, frames=0, entered=()):
        return rng.randrange(len(challenge.lanes))


class TimingArcsStrategy(Strategy):
    kind = GameKind.TIMING_ARCS
    moving = True

    def round_config(self, r: int) -> RoundConfig:
        _check_round(r)
        seconds_per_turn = SPIN_BASE - SPIN_STEP * r
        return RoundConfig(round_index=r, speed=360.0 / (seconds_per_turn * FRAME_RATE))

    def generate(self, r: int, rng: random.Random) -> TimingArcsChallenge:
        cfg = self.round_config(r)
        width = ARC_WIDTH_MIN + rng.random() * (ARC_WIDTH_MAX - ARC_WIDTH_MIN)
        start = rng.random() * (360.0 - width)
        return TimingArcsChallenge(r, cfg.speed, start, start + width)

    def motion(self, challenge: TimingArcsChallenge, frames: int) -> float:
        return (frames * challenge.speed) % 360.0

    def evaluate(self, challenge: TimingArcsChallenge, value, streak: int = 0) -> RoundOutcome:
        angle = _number(value, "stop angle") % 360.0
        points = 0
        if challenge.contains(angle):
            center = challenge.center
            distance = min(abs(angle - center), abs(angle - center + 360), abs(angle - center - 360))
            points = round(100 * max(0.0, 1.0 - distance / challenge.half_width))
        success = points > 0
        return RoundOutcome(success, points, _streak(success, streak), angle)

    def winning_input(self, challenge: TimingArcsChallenge) -> float:
        return challenge.center % 360.0


STRATEGIES: dict[GameKind, Strategy] = {
    s.kind: s for s in (
        LaneDashStrategy(),
        SignalFlowStrategy(),
        CrosswayStrategy(),
        TimingArcsStrategy(),
    )
}


def strategy_for(kind: GameKind) -> Strategy:
    return STRATEGIES[kind]
