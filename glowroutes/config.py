"""Config loader — YAML to dataclasses."""

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from glowroutes.models import GameKind
from glowroutes.stats import DEFAULT_PATH


def _per_kind(raw: dict | None) -> dict[GameKind, float | None]:
    return {GameKind.parse(k): (None if v is None else float(v)) for k, v in (raw or {}).items()}


def _default_intro() -> dict[GameKind, float | None]:
    return {GameKind.LANE_DASH: 0.3, GameKind.TIMING_ARCS: 0.5}


def _default_pause() -> dict[GameKind, float | None]:
    return {
        GameKind.LANE_DASH: 1.2,
        GameKind.SIGNAL_FLOW: 1.5,
        GameKind.CROSSWAY_SPLIT: 1.6,
        GameKind.TIMING_ARCS: 1.5,
    }


def _default_timeout() -> dict[GameKind, float | None]:
    return {GameKind.CROSSWAY_SPLIT: 3.0}


@dataclass
class DeckConfig:
    brightness: int = 60


@dataclass
class StatsConfig:
    path: str = DEFAULT_PATH


@dataclass
class GameConfig:
    tick_rate: float = 60.0
    seed: int | None = None
    intro_delay: dict[GameKind, float | None] = field(default_factory=_default_intro)
    transition_pause: dict[GameKind, float | None] = field(default_factory=_default_pause)
    input_timeout: dict[GameKind, float | None] = field(default_factory=_default_timeout)

    def intro_for(self, kind: GameKind) -> float:
        return self.intro_delay.get(kind) or 0.0

    def pause_for(self, kind: GameKind) -> float:
        return self.transition_pause.get(kind) or 0.0

    def timeout_for(self, kind: GameKind) -> float | None:
        """Seconds before input is synthesized; None waits forever."""
        return self.input_timeout.get(kind)


@dataclass
class AppConfig:
    deck: DeckConfig = field(default_factory=DeckConfig)
    stats: StatsConfig = field(default_factory=StatsConfig)
    game: GameConfig = field(default_factory=GameConfig)


def load_config(path: Path) -> AppConfig:
    """Load config from YAML file."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    deck = DeckConfig(**{k: v for k, v in (raw.get("deck") or {}).items()})
    stats = StatsConfig(**{k: v for k, v in (raw.get("stats") or {}).items()})

    game_raw = dict(raw.get("game") or {})
    game = GameConfig()
    if "tick_rate" in game_raw:
        game.tick_rate = float(game_raw.pop("tick_rate"))
    if "seed" in game_raw:
        game.seed = game_raw.pop("seed")
    # per-kind maps override the defaults key by key
    for name in ("intro_delay", "transition_pause", "input_timeout"):
        if name in game_raw:
            getattr(game, name).update(_per_kind(game_raw.pop(name)))
    if game_raw:
        raise ValueError(f"Unknown game settings: {', '.join(sorted(game_raw))}")

    return AppConfig(deck=deck, stats=stats, game=game)
