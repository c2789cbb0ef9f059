"""Tests for config loader — YAML to dataclasses."""

import tempfile
from pathlib import Path

import pytest
import yaml

from glowroutes.models import GameKind


def _write(raw) -> Path:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(raw, f)
        return Path(f.name)


def test_load_config_parses_sections():
    """load_config should map YAML sections onto the dataclasses."""
    raw = {
        "deck": {"brightness": 80},
        "stats": {"path": "/tmp/glow/stats.json"},
        "game": {
            "tick_rate": 30,
            "seed": 7,
            "transition_pause": {"lane_dash": 0.5},
            "input_timeout": {"timing_arcs": 4},
        },
    }
    from glowroutes.config import load_config

    cfg = load_config(_write(raw))
    assert cfg.deck.brightness == 80
    assert cfg.stats.path == "/tmp/glow/stats.json"
    assert cfg.game.tick_rate == 30.0
    assert cfg.game.seed == 7
    assert cfg.game.pause_for(GameKind.LANE_DASH) == 0.5
    # keys not mentioned keep their defaults
    assert cfg.game.pause_for(GameKind.CROSSWAY_SPLIT) == 1.6
    assert cfg.game.timeout_for(GameKind.TIMING_ARCS) == 4.0
    assert cfg.game.timeout_for(GameKind.CROSSWAY_SPLIT) == 3.0


def test_load_config_defaults():
    """An empty file gives the stock timings."""
    from glowroutes.config import load_config

    cfg = load_config(_write({}))
    assert cfg.deck.brightness == 60
    assert cfg.stats.path.endswith("stats.json")
    assert cfg.game.tick_rate == 60.0
    assert cfg.game.intro_for(GameKind.LANE_DASH) == 0.3
    assert cfg.game.intro_for(GameKind.TIMING_ARCS) == 0.5
    assert cfg.game.intro_for(GameKind.CROSSWAY_SPLIT) == 0.0
    assert cfg.game.timeout_for(GameKind.LANE_DASH) is None
    assert cfg.game.timeout_for(GameKind.SIGNAL_FLOW) is None


def test_null_timeout_disables_auto_pick():
    from glowroutes.config import load_config

    cfg = load_config(_write({"game": {"input_timeout": {"crossway_split": None}}}))
    assert cfg.game.timeout_for(GameKind.CROSSWAY_SPLIT) is None


def test_kind_labels_are_accepted():
    from glowroutes.config import load_config

    cfg = load_config(_write({"game": {"intro_delay": {"Lane Dash": 1.0}}}))
    assert cfg.game.intro_for(GameKind.LANE_DASH) == 1.0


def test_unknown_names_are_rejected():
    from glowroutes.config import load_config

    with pytest.raises(ValueError):
        load_config(_write({"game": {"intro_delay": {"pong": 1.0}}}))
    with pytest.raises(ValueError):
        load_config(_write({"game": {"rounds": 10}}))


def test_sample_config_loads():
    from glowroutes.config import load_config

    cfg = load_config(Path(__file__).parent.parent / "config.yaml")
    assert cfg.game.timeout_for(GameKind.CROSSWAY_SPLIT) == 3.0
    assert cfg.game.pause_for(GameKind.SIGNAL_FLOW) == 1.5
