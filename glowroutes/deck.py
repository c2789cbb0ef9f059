# glowroutes/deck.py
"""Glow Routes — Stream Deck front end.

Top row is the HUD, the three rows below are the play field. The deck only
turns controller snapshots into key faces and key presses into controller
calls; all game rules live in the controller and scoring modules.
"""

import argparse
import logging
import sys
import threading
from pathlib import Path

from StreamDeck.DeviceManager import DeviceManager
from StreamDeck.ImageHelpers import PILHelper

from glowroutes import renderer
from glowroutes.clock import ClockThread
from glowroutes.config import AppConfig, load_config
from glowroutes.controller import FINISHED, IDLE, INTRO, RESOLVED, SHOWING, WAITING, RoundController, Snapshot
from glowroutes.errors import InvalidState, PersistenceError
from glowroutes.models import GameKind, GameStats, GlobalStats
from glowroutes.renderer import KeyFace
from glowroutes.stats import JsonFileBackend, StatsStore

log = logging.getLogger(__name__)

KEY_COUNT = 32
GAME_KEYS = range(8, 32)
BACK_KEY = 0
HUB_KEYS = {8: GameKind.LANE_DASH, 9: GameKind.SIGNAL_FLOW,
            10: GameKind.CROSSWAY_SPLIT, 11: GameKind.TIMING_ARCS}
STATS_KEY = 15
WELCOME_KEY = 20
PLAY_AGAIN_KEY = 20
RETRY_KEY = 14
INTRO_KEY = 30
RESET_KEY = 31
TRACK_KEYS = range(16, 24)  # lane / dial cells for the moving routes
GRID_ORIGIN = 10            # top-left cell of the 3x3 signal grid


def find_deck():
    """Find first visual Stream Deck device."""
    for deck in DeviceManager().enumerate():
        if deck.is_visual():
            return deck
    return None


def grid_key(index: int) -> int:
    row, col = divmod(index, 3)
    return GRID_ORIGIN + row * 8 + col


def key_to_grid(key: int) -> int | None:
    row, col = divmod(key - GRID_ORIGIN, 8)
    if 0 <= row < 3 and 0 <= col < 3:
        return row * 3 + col
    return None


def key_to_lane(key: int) -> int | None:
    if key in GAME_KEYS:
        return (key - GAME_KEYS.start) // 8
    return None


# -- layout ------------------------------------------------------------------

def _hud(snap: Snapshot, best: int, shards: int) -> dict[int, KeyFace]:
    hud = renderer.HUD_BG
    faces = {
        0: KeyFace(("HUB",), "#374151", renderer.GLOW),
        1: KeyFace(("ROUND", f"{snap.round_index}/{snap.total_rounds}"), hud),
        2: KeyFace(("SCORE", str(snap.total_score)), hud, renderer.GLOW),
        3: KeyFace(("STREAK", str(snap.streak)), hud),
        6: KeyFace(("BEST", str(best)), hud, renderer.GLOW_SOFT),
        7: KeyFace(("SHARDS", str(shards)), hud, renderer.GLOW_SOFT),
    }
    outcome = snap.last_outcome
    if outcome is None:
        faces[4] = KeyFace((), hud)
    elif outcome.success:
        faces[4] = KeyFace(("HIT!", f"+{outcome.points}"), renderer.phase_color("hit"))
    else:
        faces[4] = KeyFace(("MISS",), renderer.phase_color("miss"))
    if snap.phase == SHOWING:
        faces[5] = KeyFace(("WATCH",), renderer.phase_color(SHOWING))
    elif snap.phase == WAITING and snap.time_left is not None:
        faces[5] = KeyFace(("GO!", f"{snap.time_left:.1f}s"), renderer.phase_color(WAITING))
    elif snap.phase == WAITING:
        faces[5] = KeyFace(("GO!",), renderer.phase_color(WAITING))
    else:
        faces[5] = KeyFace((), hud)
    return faces


def _track(snap: Snapshot) -> dict[int, KeyFace]:
    """Lane Dash lane or Timing Arcs dial unrolled over eight keys."""
    c = snap.challenge
    cells = len(TRACK_KEYS)
    if snap.kind == GameKind.LANE_DASH:
        span, lo, hi = 1.0, c.zone_start, c.zone_end
    else:
        span, lo, hi = 360.0, c.arc_start, c.arc_end
    faces = {}
    marker = None
    if snap.motion is not None:
        marker = min(cells - 1, int(snap.motion / span * cells))
    for i, key in enumerate(TRACK_KEYS):
        cell_lo, cell_hi = i * span / cells, (i + 1) * span / cells
        glowing = cell_lo < hi and cell_hi > lo
        if hi > span:  # wrapped arc
            glowing = glowing or cell_lo < hi - span
        bg = renderer.GLOW if glowing else renderer.LANE
        faces[key] = KeyFace(("(o)",) if i == marker else (), bg, renderer.MARKER)
    return faces


def _grid(snap: Snapshot) -> dict[int, KeyFace]:
    faces = {}
    for index in range(snap.challenge.grid_size):
        lit = snap.active_light == index
        faces[grid_key(index)] = KeyFace((), renderer.GLOW if lit else renderer.LANE)
    if snap.entered:
        faces[grid_key(snap.entered[-1])] = KeyFace((str(len(snap.entered)),),
                                                    renderer.GLOW_SOFT, renderer.DARK)
    return faces


def _lanes(snap: Snapshot) -> dict[int, KeyFace]:
    faces = {}
    picked = snap.last_outcome.input if snap.last_outcome else None
    for lane, segments in enumerate(snap.challenge.lanes):
        base = GAME_KEYS.start + lane * 8
        for seg, safe in enumerate(segments):
            faces[base + seg] = KeyFace((), renderer.SAFE if safe else renderer.BLOCKED)
        label = ("PICKED",) if picked == lane else ("GO",)
        faces[base + 7] = KeyFace(label, renderer.phase_color(WAITING), renderer.GLOW)
    return faces


def _hub(games: dict[GameKind, GameStats], totals: GlobalStats, onboarded: bool) -> dict[int, KeyFace]:
    faces = {0: KeyFace(("GLOW", "ROUTES"), "#4c1d95", renderer.GLOW),
             1: KeyFace(("SHARDS", str(totals.total_glow_shards)), renderer.HUD_BG, renderer.GLOW_SOFT),
             2: KeyFace(("STREAK", str(totals.longest_streak_overall)), renderer.HUD_BG)}
    if not onboarded:
        faces[WELCOME_KEY] = KeyFace(("ENTER", "THE NIGHT", "ROADS"), "#065f46")
        return faces
    for key, kind in HUB_KEYS.items():
        faces[key] = KeyFace((kind.label.split()[0].upper(), kind.label.split()[-1].upper(),
                              f"best {games[kind].best_score}"), "#1e3a5f")
    faces[STATS_KEY] = KeyFace(("ROUTES", str(totals.total_routes_played)), renderer.HUD_BG)
    faces[INTRO_KEY] = KeyFace(("INTRO",), "#374151")
    faces[RESET_KEY] = KeyFace(("RESET",), "#7c2d12")
    return faces


def _result(snap: Snapshot) -> dict[int, KeyFace]:
    summary = snap.summary
    best_label = "NEW!" if summary.new_best else "BEST"
    faces = {
        11: KeyFace(("FINAL", str(summary.total_score)), renderer.HUD_BG, renderer.GLOW),
        12: KeyFace(("SHARDS", f"+{summary.glow_shards}"), renderer.HUD_BG, renderer.GLOW_SOFT),
        13: KeyFace((best_label, str(summary.best_score)), renderer.HUD_BG),
        PLAY_AGAIN_KEY: KeyFace(("PLAY", "AGAIN"), "#065f46"),
    }
    if not summary.persisted:
        faces[RETRY_KEY] = KeyFace(("SAVE", "FAILED", "retry"), renderer.phase_color("miss"))
    return faces


def layout(snap: Snapshot, games: dict[GameKind, GameStats], totals: GlobalStats,
           onboarded: bool = True) -> dict[int, KeyFace]:
    """Key faces for every key given the controller and stats state."""
    faces = {key: KeyFace() for key in range(KEY_COUNT)}
    if snap.status == IDLE:
        faces.update(_hub(games, totals, onboarded))
        return faces
    faces.update(_hud(snap, games[snap.kind].best_score, totals.total_glow_shards))
    if snap.phase == FINISHED:
        faces.update(_result(snap))
    elif snap.kind in (GameKind.LANE_DASH, GameKind.TIMING_ARCS):
        faces.update(_track(snap))
    elif snap.kind == GameKind.SIGNAL_FLOW:
        faces.update(_grid(snap))
    else:
        faces.update(_lanes(snap))
    return faces


# -- app ---------------------------------------------------------------------

class GlowRoutesDeck:
    """Main application class."""

    def __init__(self, config: AppConfig, deck, stats: StatsStore):
        self.config = config
        self.deck = deck
        self.stats = stats
        self.controller = RoundController(stats, config.game)
        self._faces: dict[int, KeyFace] = {}
        self._reset_armed = False
        self.clock_thread: ClockThread | None = None

    def start(self):
        """Initialize deck and start the game clock."""
        self.deck.open()
        self.deck.reset()
        self.deck.set_brightness(self.config.deck.brightness)
        self.refresh()
        self.controller.subscribe(lambda _snap: self.refresh())
        self.clock_thread = ClockThread(self._tick, self.config.game.tick_rate)
        self.clock_thread.start()
        self.deck.set_key_callback(self.on_key)

    def stop(self):
        """Shutdown cleanly."""
        if self.clock_thread:
            self.clock_thread.stop()
            self.clock_thread.join(timeout=1.0)
        self.deck.reset()
        self.deck.close()

    def _tick(self, frames: int):
        self.controller.tick(frames)
        if self.controller.phase in (INTRO, WAITING, SHOWING, RESOLVED):
            self.refresh()

    def refresh(self):
        """Push every key whose face changed since the last refresh."""
        # controller lock first, stats lock second, same order as the game code
        with self.controller.lock:
            faces = layout(self.controller.snapshot(), self.stats.all_game_stats(),
                           self.stats.global_stats, self.stats.has_completed_onboarding)
            changed = {k: f for k, f in faces.items() if self._faces.get(k) != f}
            self._faces.update(changed)
        for key, face in changed.items():
            native = PILHelper.to_native_key_format(self.deck, renderer.render_face(face))
            with self.deck:
                self.deck.set_key_image(key, native)

    def on_key(self, _deck, key: int, pressed: bool):
        """Handle physical button press."""
        if not pressed:
            return
        try:
            self._handle_key(key)
        except InvalidState as exc:
            log.debug("key %d ignored: %s", key, exc)
        except PersistenceError as exc:
            log.error("could not save stats: %s", exc)
        self.refresh()

    def _handle_key(self, key: int):
        ctl = self.controller
        if ctl.status == IDLE:
            self._handle_hub(key)
            return
        if key == BACK_KEY:
            ctl.reset()
            return
        if ctl.status == FINISHED:
            if key == PLAY_AGAIN_KEY:
                ctl.start(ctl.session.kind)
            elif key == RETRY_KEY and not ctl.summary.persisted:
                ctl.retry_persist()
            return
        if key not in GAME_KEYS:
            return
        kind = ctl.session.kind
        if kind in (GameKind.LANE_DASH, GameKind.TIMING_ARCS):
            ctl.tap()
        elif kind == GameKind.SIGNAL_FLOW:
            index = key_to_grid(key)
            if index is not None:
                ctl.tap(index)
        else:
            ctl.tap(key_to_lane(key))

    def _handle_hub(self, key: int):
        if not self.stats.has_completed_onboarding:
            if key == WELCOME_KEY:
                self.stats.complete_onboarding()
            return
        # only two presses of RESET in a row confirm
        armed, self._reset_armed = self._reset_armed, False
        if key in HUB_KEYS:
            self.controller.start(HUB_KEYS[key])
        elif key == RESET_KEY:
            if armed:
                self.stats.reset_all()
            else:
                self._reset_armed = True
        elif key == INTRO_KEY:
            self.stats.restart_onboarding()


def main():
    parser = argparse.ArgumentParser(description="Glow Routes on a Stream Deck")
    parser.add_argument("--config", default="config.yaml", help="Config file path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_path = Path(args.config)
    if not config_path.exists():
        log.error("Config not found: %s", config_path)
        sys.exit(1)
    config = load_config(config_path)

    stats = StatsStore(JsonFileBackend(config.stats.path))
    stats.load()

    deck = find_deck()
    if deck is None:
        log.error("No Stream Deck found. Is it plugged in?")
        sys.exit(1)

    app = GlowRoutesDeck(config=config, deck=deck, stats=stats)
    log.info("Connected: %s (%d keys)", deck.deck_type(), deck.key_count())
    app.start()

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        log.info("Shutting down...")
    finally:
        app.stop()


if __name__ == "__main__":
    main()
