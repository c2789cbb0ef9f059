"""Persistent statistics for Glow Routes.

Stores per-route and global stats plus the onboarding flag as three named
entries in a key-value backend, by default ~/.glow-routes/stats.json.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from glowroutes.errors import PersistenceError
from glowroutes.models import GameKind, GameStats, GlobalStats

log = logging.getLogger(__name__)

DEFAULT_PATH = "~/.glow-routes/stats.json"

GLOBAL_KEY = "globalStats"
GAMES_KEY = "gameStats"
ONBOARDING_KEY = "hasCompletedOnboarding"


# -- backends ----------------------------------------------------------------

class MemoryBackend:
    """In-process key-value backend."""

    def __init__(self, data: dict | None = None):
        self.data: dict[str, Any] = copy.deepcopy(data) if data else {}

    def read(self) -> dict[str, Any]:
        return copy.deepcopy(self.data)

    def write(self, entries: dict[str, Any]) -> None:
        self.data.update(copy.deepcopy(entries))


class JsonFileBackend:
    """All entries in one JSON document, replaced atomically on write."""

    def __init__(self, path: str | os.PathLike = DEFAULT_PATH):
        self.path = Path(os.path.expanduser(str(path)))

    def read(self) -> dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"{self.path} does not hold a JSON object")
        return data

    def write(self, entries: dict[str, Any]) -> None:
        try:
            data = self.read()
        except PersistenceError:
            log.warning("overwriting unreadable stats file %s", self.path)
            data = {}
        data.update(entries)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise PersistenceError(f"cannot write {self.path}: {exc}") from exc


# -- store -------------------------------------------------------------------

def _fresh_games() -> dict[GameKind, GameStats]:
    return {kind: GameStats() for kind in GameKind}


class StatsStore:
    """Owns GlobalStats and every GameStats; all mutations go through here.

    Create one per process and hand it to the controller and the front end.
    Reads always succeed (bad data falls back to zeroed defaults); writes
    raise PersistenceError after the in-memory update has been applied, so
    a caller can retry with ``save()``.
    """

    def __init__(self, backend=None):
        self.backend = backend if backend is not None else MemoryBackend()
        self._lock = threading.Lock()
        self._global = GlobalStats()
        self._games = _fresh_games()
        self._onboarded = False
        self.dirty = False

    # -- reading --

    def load(self) -> tuple[GlobalStats, dict[GameKind, GameStats]]:
        """Read persisted state, falling back to defaults entry by entry."""
        with self._lock:
            try:
                raw = self.backend.read()
            except PersistenceError as exc:
                log.warning("stats unreadable, starting fresh: %s", exc)
                raw = {}

            try:
                self._global = GlobalStats.from_dict(raw.get(GLOBAL_KEY, {}))
            except ValueError as exc:
                log.warning("bad %s entry, using defaults: %s", GLOBAL_KEY, exc)
                self._global = GlobalStats()

            self._games = _fresh_games()
            games_raw = raw.get(GAMES_KEY, {})
            if not isinstance(games_raw, dict):
                log.warning("bad %s entry, using defaults", GAMES_KEY)
                games_raw = {}
            for key, value in games_raw.items():
                try:
                    kind = GameKind.parse(key)
                    self._games[kind] = GameStats.from_dict(value)
                except ValueError as exc:
                    log.warning("skipping %s[%r]: %s", GAMES_KEY, key, exc)

            flag = raw.get(ONBOARDING_KEY, False)
            self._onboarded = flag if isinstance(flag, bool) else False
            self._reconcile()
            self.dirty = False
            return self._snapshot()

    def _reconcile(self) -> None:
        plays = sum(s.total_plays for s in self._games.values())
        best = max(s.best_streak for s in self._games.values())
        if self._global.total_routes_played != plays:
            log.warning("total_routes_played %d != sum of plays %d, using the sum",
                        self._global.total_routes_played, plays)
            self._global.total_routes_played = plays
        if self._global.longest_streak_overall < best:
            self._global.longest_streak_overall = best

    def _snapshot(self) -> tuple[GlobalStats, dict[GameKind, GameStats]]:
        return copy.copy(self._global), {k: copy.copy(v) for k, v in self._games.items()}

    @property
    def global_stats(self) -> GlobalStats:
        with self._lock:
            return copy.copy(self._global)

    def game_stats(self, kind: GameKind) -> GameStats:
        with self._lock:
            return copy.copy(self._games[kind])

    def all_game_stats(self) -> dict[GameKind, GameStats]:
        with self._lock:
            return self._snapshot()[1]

    @property
    def has_completed_onboarding(self) -> bool:
        with self._lock:
            return self._onboarded

    # -- writing --

    def record_session(self, kind: GameKind, total_score: int, glow_shards_earned: int,
                       final_streak: int) -> tuple[GlobalStats, GameStats]:
        """Fold a finished session into the stats and persist them."""
        for name, value in (("total_score", total_score),
                            ("glow_shards_earned", glow_shards_earned),
                            ("final_streak", final_streak)):
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        with self._lock:
            stats = self._games[kind]
            stats.total_plays += 1
            stats.best_score = max(stats.best_score, total_score)
            stats.best_streak = max(stats.best_streak, final_streak)

            self._global.total_glow_shards += glow_shards_earned
            self._global.total_routes_played += 1
            self._global.longest_streak_overall = max(self._global.longest_streak_overall,
                                                      final_streak)
            log.info("recorded %s: score=%d shards=%d streak=%d (plays=%d)",
                     kind.value, total_score, glow_shards_earned, final_streak,
                     stats.total_plays)
            self._save_locked()
            return copy.copy(self._global), copy.copy(stats)

    def reset_all(self) -> None:
        """Zero every stat and persist. The onboarding flag is kept."""
        with self._lock:
            self._global = GlobalStats()
            self._games = _fresh_games()
            log.info("all progress reset")
            self._save_locked()

    def complete_onboarding(self) -> None:
        self._set_onboarding(True)

    def restart_onboarding(self) -> None:
        self._set_onboarding(False)

    def _set_onboarding(self, done: bool) -> None:
        with self._lock:
            self._onboarded = done
            self._save_locked()

    def save(self) -> None:
        """Persist the current in-memory state (retry after a failed write)."""
        with self._lock:
            self._save_locked()

    def _save_locked(self) -> None:
        self.dirty = True
        entries = {
            GLOBAL_KEY: self._global.to_dict(),
            GAMES_KEY: {kind.value: s.to_dict() for kind, s in self._games.items()},
            ONBOARDING_KEY: self._onboarded,
        }
        try:
            self.backend.write(entries)
        except PersistenceError:
            log.error("failed to persist stats; in-memory state kept")
            raise
        except OSError as exc:
            log.error("failed to persist stats; in-memory state kept")
            raise PersistenceError(str(exc)) from exc
        self.dirty = False
