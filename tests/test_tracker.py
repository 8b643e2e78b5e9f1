"""Tests for the per-device gesture state machine."""

import numpy as np
import pytest

from handshake_engine.config import TrackerConfig
from handshake_engine.devices import GestureState, Pose
from handshake_engine.tracker import GestureTracker


def make_tracker(pitch: int = 90, pose: Pose = Pose.UNKNOWN) -> GestureTracker:
    return GestureTracker(1, GestureState(pitch=pitch, pose=pose), TrackerConfig())


def run(tracker: GestureTracker, ticks: int, pitch=None):
    if pitch is not None:
        tracker.update_pitch(pitch)
    for _ in range(ticks):
        tracker.advance()


class TestWarmup:
    def test_no_analysis_before_25_ticks(self):
        t = make_tracker()
        run(t, 24)
        assert not t.state.analyzing
        assert t.state.arc_counter == 24

    def test_analysis_starts_on_25th_tick(self):
        t = make_tracker()
        run(t, 25)
        assert t.state.analyzing
        # first analysis tick runs in the same tick and seeds the range
        assert t.state.range_high == t.state.range_low == 90
        assert t.state.arc_counter == 26

    def test_leaving_band_resets_progress(self):
        t = make_tracker()
        run(t, 20)
        run(t, 1, pitch=130)
        assert t.state.arc_counter == 0
        run(t, 24, pitch=90)
        assert not t.state.analyzing

    @pytest.mark.parametrize("pitch", [60, 120, 0, 180, 45])
    def test_band_is_exclusive(self, pitch):
        t = make_tracker(pitch=pitch)
        run(t, 40)
        assert t.state.arc_counter == 0
        assert not t.state.analyzing

    @pytest.mark.parametrize("pitch", [61, 119])
    def test_band_edges_count(self, pitch):
        t = make_tracker(pitch=pitch)
        run(t, 10)
        assert t.state.arc_counter == 10

    def test_idle_amplitude_is_zero(self):
        t = make_tracker()
        run(t, 10)
        assert t.swing_amplitude == 0


class TestAnalysis:
    def _analyzing(self) -> GestureTracker:
        t = make_tracker()
        run(t, 25)
        assert t.state.analyzing
        return t

    def test_band_ignored_once_analyzing(self):
        t = self._analyzing()
        run(t, 5, pitch=20)
        assert t.state.analyzing
        assert t.state.arc_counter == 31

    def test_range_tracks_swing(self):
        t = self._analyzing()
        run(t, 1, pitch=110)
        run(t, 1, pitch=72)
        run(t, 1, pitch=95)
        assert t.state.range_high == 110
        assert t.state.range_low == 72
        assert t.swing_amplitude == 38

    def test_outliers_excluded(self):
        t = self._analyzing()
        run(t, 1, pitch=130)
        run(t, 1, pitch=50)
        run(t, 1, pitch=175)
        run(t, 1, pitch=2)
        assert t.state.range_high == 90
        assert t.state.range_low == 90

        run(t, 1, pitch=129)
        run(t, 1, pitch=51)
        assert t.swing_amplitude == 78

    def test_range_invariant_random_walk(self):
        rng = np.random.default_rng(11)
        t = self._analyzing()
        for pitch in rng.integers(0, 181, size=170):
            t.update_pitch(int(pitch))
            t.advance()
            if t.state.analyzing:
                assert t.state.range_high >= t.state.range_low
                assert t.swing_amplitude >= 0


class TestReadiness:
    def test_ready_window(self):
        """30 ticks level, then fist: analyzing at 25, ready from 51 to 199."""
        t = make_tracker()
        for tick in range(1, 201):
            if tick == 31:
                t.update_pose(Pose.FIST)
            t.advance()
            if tick == 25:
                assert t.state.analyzing
            assert t.ready == (51 <= tick <= 199), tick

    def test_not_ready_without_fist(self):
        t = make_tracker(pose=Pose.FINGERS_SPREAD)
        for _ in range(150):
            t.advance()
            assert not t.ready

    def test_ready_follows_pose(self):
        t = make_tracker(pose=Pose.FIST)
        run(t, 60)
        assert t.ready
        t.update_pose(Pose.REST)
        t.advance()
        assert not t.ready


class TestTimeout:
    def test_timeout_resets_regardless_of_pose(self):
        t = make_tracker(pose=Pose.FIST)
        run(t, 199)
        assert t.state.analyzing
        assert t.state.arc_counter == 200

        timed_out = t.advance()
        assert timed_out
        assert not t.state.analyzing
        assert t.state.arc_counter == 0
        assert t.swing_amplitude == 0
        assert t.state.range_high is None
        assert not t.ready

    def test_restarts_after_timeout(self):
        t = make_tracker()
        run(t, 200)
        t.advance()
        assert t.state.arc_counter == 1
        assert not t.state.analyzing

    def test_counter_never_exceeds_timeout(self):
        t = make_tracker(pose=Pose.FIST)
        for _ in range(600):
            t.advance()
            assert 0 <= t.state.arc_counter <= 200


class TestCustomConfig:
    def test_shorter_windows(self):
        cfg = TrackerConfig(warmup_ticks=3, ready_after=5, timeout_ticks=10)
        t = GestureTracker(1, GestureState(pose=Pose.FIST), cfg)
        run(t, 3)
        assert t.state.analyzing
        run(t, 3)
        assert t.ready
        run(t, 4)
        assert not t.state.analyzing

    def test_reset(self):
        t = make_tracker(pose=Pose.FIST)
        run(t, 80)
        t.reset()
        assert not t.state.analyzing
        assert t.state.arc_counter == 0
        assert "analyzing=False" in repr(t)
