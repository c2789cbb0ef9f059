"""Game kinds, stats records and round results."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

TOTAL_ROUNDS = 8


class GameKind(Enum):
    LANE_DASH = "lane_dash"
    SIGNAL_FLOW = "signal_flow"
    CROSSWAY_SPLIT = "crossway_split"
    TIMING_ARCS = "timing_arcs"

    @property
    def label(self) -> str:
        return _LABELS[self][0]

    @property
    def description(self) -> str:
        return _LABELS[self][1]

    @property
    def icon(self) -> str:
        return _LABELS[self][2]

    @classmethod
    def parse(cls, name: str) -> GameKind:
        """Accept a kind value ("lane_dash"), member name or display label."""
        for kind in cls:
            if name in (kind.value, kind.name, kind.label):
                return kind
        raise ValueError(f"Unknown game kind: {name!r}")


_LABELS = {
    GameKind.LANE_DASH: ("Lane Dash", "Stop in the glow zone", "lane_dash.png"),
    GameKind.SIGNAL_FLOW: ("Signal Flow", "Follow the signal pattern", "signal_flow.png"),
    GameKind.CROSSWAY_SPLIT: ("Crossway Split", "Choose the safe lane", "crossway_split.png"),
    GameKind.TIMING_ARCS: ("Timing Arcs", "Time the perfect arc", "timing_arcs.png"),
}


def _count(raw: dict, key: str) -> int:
    value = raw.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer, got {value!r}")
    return value


@dataclass
class GameStats:
    best_score: int = 0
    total_plays: int = 0
    best_streak: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Any) -> GameStats:
        if not isinstance(raw, dict):
            raise ValueError(f"expected a mapping, got {type(raw).__name__}")
        return cls(
            best_score=_count(raw, "best_score"),
            total_plays=_count(raw, "total_plays"),
            best_streak=_count(raw, "best_streak"),
        )


@dataclass
class GlobalStats:
    total_glow_shards: int = 0
    total_routes_played: int = 0
    longest_streak_overall: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Any) -> GlobalStats:
        if not isinstance(raw, dict):
            raise ValueError(f"expected a mapping, got {type(raw).__name__}")
        return cls(
            total_glow_shards=_count(raw, "total_glow_shards"),
            total_routes_played=_count(raw, "total_routes_played"),
            longest_streak_overall=_count(raw, "longest_streak_overall"),
        )


@dataclass(frozen=True)
class RoundOutcome:
    """Result of evaluating one round's input against its challenge."""

    success: bool
    points: int
    streak: int
    input: Any = None
    timed_out: bool = False


def glow_shards_for(total_score: int, final_streak: int) -> int:
    """Reward currency earned by a finished session."""
    return total_score // 10 + final_streak * 2


@dataclass(frozen=True)
class SessionSummary:
    kind: GameKind
    total_score: int
    glow_shards: int
    final_streak: int
    best_score: int = 0
    new_best: bool = False
    persisted: bool = True
