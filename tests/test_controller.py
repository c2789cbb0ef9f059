"""Tests for the round controller state machine."""

import random

import pytest

from glowroutes.config import GameConfig
from glowroutes.controller import FINISHED, IDLE, INTRO, RESOLVED, SHOWING, WAITING, RoundController
from glowroutes.errors import InvalidInputIndex, InvalidTransition, PersistenceError
from glowroutes.models import GameKind
from glowroutes.stats import MemoryBackend, StatsStore


class FlakyBackend(MemoryBackend):
    def __init__(self):
        super().__init__()
        self.failing = True

    def write(self, entries):
        if self.failing:
            raise PersistenceError("storage offline")
        super().write(entries)


def make(config=None, stats=None, seed=1):
    if stats is None:
        stats = StatsStore(MemoryBackend())
        stats.load()
    return RoundController(stats, config or GameConfig(), rng=random.Random(seed))


def instant():
    """No intro, no transition pause, no timeouts."""
    return GameConfig(intro_delay={}, transition_pause={}, input_timeout={})


def wait_for_input(ctl, limit=2000):
    for _ in range(limit):
        if ctl.phase in (WAITING, FINISHED):
            return
        ctl.tick()
    raise AssertionError(f"still {ctl.phase} after {limit} frames")


def test_idle_until_started():
    ctl = make()
    assert ctl.status == IDLE
    assert ctl.snapshot().status == IDLE
    with pytest.raises(InvalidTransition):
        ctl.submit_input(0.5)


def test_start_sets_round_one():
    ctl = make()
    snap = ctl.start(GameKind.LANE_DASH)
    assert snap.status == "playing"
    assert snap.round_index == 1
    assert snap.total_rounds == 8
    assert snap.total_score == 0
    assert snap.streak == 0
    assert snap.phase == INTRO
    assert snap.challenge is not None


def test_lane_dash_intro_blocks_input():
    ctl = make()
    ctl.start(GameKind.LANE_DASH)
    with pytest.raises(InvalidTransition):
        ctl.tap()
    ctl.advance_seconds(0.3)
    assert ctl.phase == WAITING
    assert ctl.snapshot().time_left is None


def test_tap_captures_marker_position():
    ctl = make(instant())
    ctl.start(GameKind.LANE_DASH)
    assert ctl.phase == WAITING
    ctl.tick(10)
    expected = ctl.motion_value()
    assert expected == pytest.approx(10 * 1.2 * 0.01)
    outcome = ctl.tap()
    assert outcome.input == pytest.approx(expected)


def test_moving_route_tap_takes_no_value():
    ctl = make(instant())
    ctl.start(GameKind.TIMING_ARCS)
    with pytest.raises(InvalidInputIndex):
        ctl.tap(90)
    assert ctl.phase == WAITING


def test_lane_dash_all_misses_end_to_end():
    stats = StatsStore(MemoryBackend())
    stats.load()
    stats.record_session(GameKind.LANE_DASH, 300, 30, 3)
    ctl = make(stats=stats)
    ctl.start(GameKind.LANE_DASH)
    for r in range(1, 9):
        wait_for_input(ctl)
        assert ctl.session.round_index == r
        outcome = ctl.submit_input(0.0)  # the glow zone never starts before 0.2
        assert outcome.points == 0
        assert ctl.phase == RESOLVED
    ctl.advance_seconds(1.2)

    assert ctl.status == FINISHED
    summary = ctl.summary
    assert summary.total_score == 0
    assert summary.final_streak == 0
    assert summary.glow_shards == 0
    assert summary.new_best is False
    assert summary.best_score == 300
    lane = stats.game_stats(GameKind.LANE_DASH)
    assert lane.total_plays == 2
    assert lane.best_score == 300


def test_double_submission_is_rejected():
    ctl = make()
    ctl.start(GameKind.CROSSWAY_SPLIT)
    lane = ctl.session.challenge.safe_lanes[0]
    ctl.submit_input(lane)
    with pytest.raises(InvalidTransition):
        ctl.submit_input(lane)
    assert ctl.session.total_score == 100
    assert ctl.session.streak == 1


def test_invalid_index_leaves_round_open():
    ctl = make()
    ctl.start(GameKind.CROSSWAY_SPLIT)
    with pytest.raises(InvalidInputIndex):
        ctl.submit_input(7)
    assert ctl.phase == WAITING
    assert ctl.session.total_score == 0


def test_crossway_times_out_with_random_lane():
    ctl = make()
    ctl.start(GameKind.CROSSWAY_SPLIT)
    assert ctl.phase == WAITING
    assert ctl.snapshot().time_left == pytest.approx(3.0)
    ctl.advance_seconds(2.9)
    assert ctl.phase == WAITING
    ctl.advance_seconds(0.1)
    assert ctl.phase == RESOLVED
    outcome = ctl.session.last_outcome
    assert outcome.timed_out
    assert outcome.input in (0, 1, 2)


def test_choice_cancels_pending_timeout():
    ctl = make()
    ctl.start(GameKind.CROSSWAY_SPLIT)
    ctl.advance_seconds(1.0)
    ctl.submit_input(ctl.session.challenge.safe_lanes[0])
    ctl.advance_seconds(1.6)
    assert ctl.session.round_index == 2
    assert ctl.phase == WAITING
    ctl.advance_seconds(2.5)
    assert ctl.phase == WAITING
    assert ctl.session.last_outcome is None


def test_signal_flow_playback_then_taps():
    ctl = make()
    ctl.start(GameKind.SIGNAL_FLOW)
    challenge = ctl.session.challenge
    assert len(challenge.sequence) == 4
    assert ctl.phase == SHOWING
    assert ctl.snapshot().active_light == challenge.sequence[0]
    with pytest.raises(InvalidTransition):
        ctl.tap(challenge.sequence[0])

    ctl.advance_seconds(challenge.playback_time)
    assert ctl.phase == WAITING
    for index in challenge.sequence[:-1]:
        assert ctl.tap(index) is None
    assert ctl.snapshot().entered == challenge.sequence[:-1]
    outcome = ctl.tap(challenge.sequence[-1])
    assert outcome.success
    assert outcome.points == 140
    assert ctl.session.total_score == 140

    ctl.advance_seconds(1.5)
    assert ctl.session.round_index == 2
    assert len(ctl.session.challenge.sequence) == 5
    assert ctl.phase == SHOWING


def test_signal_flow_wrong_tap_ends_round():
    ctl = make(instant())
    ctl.start(GameKind.SIGNAL_FLOW)
    ctl.advance_seconds(ctl.session.challenge.playback_time)
    first = ctl.session.challenge.sequence[0]
    outcome = ctl.tap((first + 1) % 9)
    assert not outcome.success
    assert ctl.session.round_index == 2


def test_signal_flow_bad_tap_is_not_recorded():
    ctl = make()
    ctl.start(GameKind.SIGNAL_FLOW)
    ctl.advance_seconds(ctl.session.challenge.playback_time)
    with pytest.raises(InvalidInputIndex):
        ctl.tap(9)
    assert ctl.session.entered == []
    assert ctl.phase == WAITING


def test_perfect_crossway_session_awards_shards():
    ctl = make(instant())
    ctl.start(GameKind.CROSSWAY_SPLIT)
    for _ in range(8):
        ctl.submit_input(ctl.session.challenge.safe_lanes[0])
    assert ctl.status == FINISHED
    summary = ctl.summary
    assert summary.total_score == 800
    assert summary.final_streak == 8
    assert summary.glow_shards == 80 + 16
    assert summary.new_best is True
    totals = ctl.stats.global_stats
    assert totals.total_glow_shards == 96
    assert totals.longest_streak_overall == 8
    assert totals.total_routes_played == 1


def test_score_and_streak_rules_hold_round_by_round():
    ctl = make(instant(), seed=9)
    picker = random.Random(4)
    ctl.start(GameKind.TIMING_ARCS)
    strategy = ctl.strategy
    last_score, last_streak = 0, 0
    while ctl.status == "playing":
        challenge = ctl.session.challenge
        if picker.random() < 0.5:
            angle = strategy.winning_input(challenge)
        else:
            angle = (challenge.arc_end + 90) % 360
        outcome = ctl.submit_input(angle)
        snap = ctl.snapshot()
        assert snap.total_score >= last_score
        assert snap.total_score == last_score + outcome.points
        assert snap.streak == (last_streak + 1 if outcome.success else 0)
        last_score, last_streak = snap.total_score, snap.streak
    assert ctl.summary.final_streak == last_streak


def test_reset_makes_pending_events_inert():
    ctl = make()
    ctl.start(GameKind.CROSSWAY_SPLIT)
    old_id = ctl.session.session_id
    ctl.reset()
    assert ctl.status == IDLE
    assert ctl.clock.pending(old_id) == 0
    ctl.advance_seconds(5.0)
    assert ctl.status == IDLE
    assert ctl.stats.global_stats.total_routes_played == 0


def test_restart_ignores_previous_session_timers():
    ctl = make()
    ctl.start(GameKind.CROSSWAY_SPLIT)
    ctl.advance_seconds(2.0)
    ctl.start(GameKind.CROSSWAY_SPLIT)
    ctl.advance_seconds(1.5)  # the first session's timeout would have fired here
    assert ctl.phase == WAITING
    assert ctl.session.round_index == 1
    assert ctl.session.last_outcome is None


def test_restart_from_a_pending_transition():
    ctl = make()
    ctl.start(GameKind.LANE_DASH)
    wait_for_input(ctl)
    ctl.submit_input(0.0)
    ctl.start(GameKind.TIMING_ARCS)
    ctl.advance_seconds(3.0)
    assert ctl.session.kind == GameKind.TIMING_ARCS
    assert ctl.session.round_index == 1


def test_configured_tap_timeout_uses_marker_position():
    config = GameConfig(intro_delay={}, input_timeout={GameKind.LANE_DASH: 2.0})
    ctl = make(config)
    ctl.start(GameKind.LANE_DASH)
    ctl.advance_seconds(2.0)
    outcome = ctl.session.last_outcome
    assert outcome is not None
    assert outcome.timed_out
    assert 0.0 <= outcome.input <= 1.0


def test_failed_save_is_retryable():
    backend = FlakyBackend()
    stats = StatsStore(backend)
    ctl = make(instant(), stats=stats)
    ctl.start(GameKind.CROSSWAY_SPLIT)
    for _ in range(8):
        ctl.submit_input(0)
    assert ctl.status == FINISHED
    assert ctl.summary.persisted is False
    assert stats.game_stats(GameKind.CROSSWAY_SPLIT).total_plays == 1

    with pytest.raises(PersistenceError):
        ctl.retry_persist()
    backend.failing = False
    assert ctl.retry_persist().persisted is True
    assert backend.read()["gameStats"]["crossway_split"]["total_plays"] == 1


def test_reset_from_finished_returns_to_idle():
    ctl = make(instant())
    ctl.start(GameKind.CROSSWAY_SPLIT)
    for _ in range(8):
        ctl.submit_input(0)
    ctl.reset()
    assert ctl.status == IDLE
    assert ctl.summary is None
    assert ctl.snapshot().status == IDLE


def test_observers_see_every_phase():
    ctl = make()
    seen = []
    ctl.subscribe(lambda snap: seen.append(snap.phase))
    ctl.start(GameKind.LANE_DASH)
    wait_for_input(ctl)
    ctl.tap()
    assert seen[:3] == [INTRO, WAITING, RESOLVED]


def test_failing_observer_does_not_stall_the_session():
    ctl = make()

    def unplugged(snap):
        if snap.phase == RESOLVED:
            raise OSError("usb write failed")

    ctl.subscribe(unplugged)
    ctl.start(GameKind.CROSSWAY_SPLIT)
    ctl.submit_input(0)
    assert ctl.phase == RESOLVED
    assert ctl.clock.pending(ctl.session.session_id) == 1
    ctl.advance_seconds(1.6)
    assert ctl.phase == WAITING
    assert ctl.session.round_index == 2


def test_failing_observer_without_pause_still_advances():
    ctl = make(instant())
    ctl.subscribe(lambda snap: 1 / 0)
    ctl.start(GameKind.CROSSWAY_SPLIT)
    ctl.submit_input(0)
    assert ctl.phase == WAITING
    assert ctl.session.round_index == 2
