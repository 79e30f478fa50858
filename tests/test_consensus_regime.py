"""
Tests for src/consensus/regime.py - Velocity, fragility, belief flips and stress.
"""

import tempfile
from pathlib import Path

import pytest

from src.consensus import regime
from src.consensus.config import (
    BAND_MULTIPLIER,
    DEFAULT_BAND,
    HIGH_STRESS_THRESHOLD,
    MED_STRESS_THRESHOLD,
    VELOCITY_MULTIPLIER,
)
from src.consensus.models import SignalPoint


def _series(values, low=None, high=None):
    """Daily points from a list of probabilities."""
    return [
        SignalPoint(date=f"2026-01-{i + 1:02d}", p=p, low=low, high=high)
        for i, p in enumerate(values)
    ]


def _cumulative(start, deltas):
    values = [start]
    for d in deltas:
        values.append(values[-1] + d)
    return values


class TestConstants:

    def test_pinned_values(self):
        assert VELOCITY_MULTIPLIER == 4.0
        assert BAND_MULTIPLIER == 1.2
        assert HIGH_STRESS_THRESHOLD == 0.45
        assert MED_STRESS_THRESHOLD == 0.28
        assert DEFAULT_BAND == 0.18


class TestVelocity:
    """Tests for velocity, acceleration and jerk."""

    def test_three_day_sma(self):
        points = _series([0.1, 0.2, 0.4, 0.7])
        assert regime.calculate_velocity(points) == pytest.approx(0.2)

    def test_uses_last_four_points(self):
        points = _series([0.9, 0.1, 0.2, 0.4, 0.7])
        assert regime.calculate_velocity(points) == pytest.approx(0.2)

    def test_insufficient_points(self):
        assert regime.calculate_velocity(_series([0.1, 0.2, 0.3])) == 0.0
        assert regime.calculate_velocity([]) == 0.0

    def test_velocity_series(self):
        series = regime.velocity_series(_series([0.0, 0.1, 0.3, 0.6, 0.8]))

        assert len(series) == 2
        assert series[0] == pytest.approx(0.2)
        assert series[1] == pytest.approx(0.7 / 3)

    def test_acceleration(self):
        points = _series([0.0, 0.1, 0.3, 0.6, 0.8])
        assert regime.calculate_acceleration(points) == pytest.approx(0.7 / 3 - 0.2)
        assert regime.calculate_acceleration(points[:4]) == 0.0

    def test_jerk(self):
        points = _series(_cumulative(0.2, [0.05, 0.05, 0.05, 0.02, 0.02, 0.08]))
        # velocities .05 .04 .03 .04, accelerations -.01 -.01 .01
        assert regime.calculate_jerk(points) == pytest.approx(0.02)
        assert regime.calculate_jerk(points[:5]) == 0.0

    def test_constant_series(self):
        points = _series([0.5] * 8)
        assert regime.calculate_velocity(points) == 0.0
        assert regime.calculate_acceleration(points) == 0.0
        assert regime.calculate_jerk(points) == 0.0

    def test_input_not_mutated(self):
        points = _series([0.1, 0.2, 0.4, 0.7])
        before = list(points)

        regime.summarize_signal(points)

        assert points == before


class TestDetectFragility:
    """Tests for detect_fragility function."""

    def test_rising_with_widening_band(self):
        points = [
            SignalPoint(date="2026-01-01", p=0.40, low=0.35, high=0.45),
            SignalPoint(date="2026-01-02", p=0.45, low=0.375, high=0.525),
        ]
        assert regime.detect_fragility(points) is True

    def test_rising_with_narrowing_band(self):
        points = [
            SignalPoint(date="2026-01-01", p=0.40, low=0.35, high=0.45),
            SignalPoint(date="2026-01-02", p=0.45, low=0.425, high=0.475),
        ]
        assert regime.detect_fragility(points) is False

    def test_falling_with_widening_band(self):
        points = [
            SignalPoint(date="2026-01-01", p=0.45, low=0.40, high=0.50),
            SignalPoint(date="2026-01-02", p=0.40, low=0.30, high=0.50),
        ]
        assert regime.detect_fragility(points) is False

    def test_missing_bounds_count_as_zero(self):
        points = [
            SignalPoint(date="2026-01-01", p=0.40),
            SignalPoint(date="2026-01-02", p=0.45, low=0.40, high=0.50),
        ]
        assert regime.detect_fragility(points) is True

    def test_too_short(self):
        assert regime.detect_fragility(_series([0.5])) is False
        assert regime.detect_fragility([]) is False


class TestDetectBeliefFlip:
    """Tests for detect_belief_flip function."""

    def test_bullish_flip(self):
        points = _series(_cumulative(0.2, [0.05, 0.05, 0.05, 0.02, 0.02, 0.08]))

        flip = regime.detect_belief_flip(points)

        assert flip.has_flip is True
        assert flip.flip_type == "bullish"
        assert flip.strength == pytest.approx(0.01)

    def test_bearish_flip(self):
        points = _series(_cumulative(0.5, [0.02, 0.02, 0.02, 0.05, 0.05, -0.01]))

        flip = regime.detect_belief_flip(points)

        assert flip.has_flip is True
        assert flip.flip_type == "bearish"
        assert flip.strength == pytest.approx(0.01)

    def test_weak_crossing_ignored(self):
        points = _series(_cumulative(0.5, [0.001, 0.001, 0.001, 0.0004, 0.0004, 0.0016]))

        flip = regime.detect_belief_flip(points)

        assert flip.has_flip is False
        assert flip.flip_type is None

    def test_custom_threshold(self):
        points = _series(_cumulative(0.5, [0.001, 0.001, 0.001, 0.0004, 0.0004, 0.0016]))

        flip = regime.detect_belief_flip(points, min_strength=0.0001)

        assert flip.has_flip is True
        assert flip.flip_type == "bullish"

    def test_no_crossing(self):
        points = _series(_cumulative(0.1, [0.01, 0.02, 0.03, 0.04, 0.05, 0.06]))
        assert regime.detect_belief_flip(points).has_flip is False

    def test_insufficient_history(self):
        points = _series(_cumulative(0.2, [0.05, 0.05, 0.02, 0.08]))

        assert len(points) == 5
        assert regime.detect_belief_flip(points).has_flip is False

    def test_six_points_is_enough(self):
        points = _series(_cumulative(0.2, [0.05, 0.05, 0.05, 0.02, 0.08]))

        flip = regime.detect_belief_flip(points)

        assert len(points) == 6
        assert flip.has_flip is True
        assert flip.flip_type == "bullish"
        assert flip.strength == pytest.approx(0.01)


class TestComputeStress:
    """Tests for compute_stress function."""

    def test_insufficient_history(self):
        result = regime.compute_stress(_series([0.5, 0.6, 0.7]))

        assert result.level == "med"
        assert "Insufficient history" in result.rationale
        assert result.rationale == "Insufficient history; defaulting to Elevated."

    def test_flat_series_with_zero_band(self):
        result = regime.compute_stress(_series([0.5] * 5, low=0.5, high=0.5))

        assert result.level == "low"
        assert result.score == 0.0
        assert result.rationale.startswith("Stable regime (velocity=0.00pp/d, dispersion=0.0pp).")
        assert "not outcome certainty" in result.rationale

    def test_missing_band_uses_default(self):
        result = regime.compute_stress(_series([0.5] * 4))

        assert result.score == pytest.approx(0.18 * 1.2)
        assert result.level == "low"
        assert "dispersion=18.0pp" in result.rationale

    def test_high_stress(self):
        result = regime.compute_stress(_series([0.1, 0.2, 0.3, 0.4]))

        assert result.level == "high"
        assert result.rationale.startswith("Transitioning regime (velocity=10.00pp/d, dispersion=18.0pp).")

    def test_med_stress(self):
        result = regime.compute_stress(_series([0.50, 0.52, 0.54, 0.56]))

        assert result.score == pytest.approx(0.02 * 4.0 + 0.18 * 1.2)
        assert result.level == "med"
        assert result.rationale.startswith("Elevated regime risk (velocity=2.00pp/d")

    def test_falling_uses_magnitude(self):
        rising = regime.compute_stress(_series([0.1, 0.2, 0.3, 0.4]))
        falling = regime.compute_stress(_series([0.4, 0.3, 0.2, 0.1]))

        assert falling.level == rising.level
        assert falling.score == pytest.approx(rising.score)

    def test_wide_band_alone_is_high(self):
        result = regime.compute_stress(_series([0.5] * 4, low=0.1, high=0.5))
        assert result.level == "high"

    def test_custom_thresholds(self):
        result = regime.compute_stress(_series([0.5] * 4), med_threshold=0.2)
        assert result.level == "med"

    @pytest.mark.parametrize("high, expected", [
        (0.45, "high"),
        (0.4499, "med"),
        (0.28, "med"),
        (0.2799, "low"),
    ])
    def test_default_threshold_boundaries(self, high, expected):
        """Test that a score landing exactly on a threshold takes the higher level."""
        points = _series([0.2] * 4, low=0.0, high=high)

        result = regime.compute_stress(points, band_multiplier=1.0)

        assert result.score == high
        assert result.level == expected

    def test_threshold_equal_to_score(self):
        points = _series([0.50, 0.52, 0.54, 0.56])
        score = regime.compute_stress(points).score

        assert regime.compute_stress(points, high_threshold=score).level == "high"
        assert regime.compute_stress(points, high_threshold=score + 0.01, med_threshold=score).level == "med"


class TestClassifyRegime:
    """Tests for classify_regime function."""

    def test_short_series_is_stable(self):
        assert regime.classify_regime([0.05, 0.95] * 4) == "stable"

    def test_flat(self):
        assert regime.classify_regime([0.5] * 12) == "stable"

    def test_tail(self):
        assert regime.classify_regime([0.95, 0.05] * 6) == "tail"

    def test_volatile(self):
        assert regime.classify_regime([0.4, 0.6] * 6) == "volatile"

    def test_transitioning(self):
        assert regime.classify_regime([0.4] * 6 + [0.55] * 6) == "transitioning"

    def test_uses_recent_window(self):
        history = [0.95, 0.05] * 10 + [0.5] * 24
        assert regime.classify_regime(history) == "stable"


class TestStressIndex:

    def test_empty(self):
        assert regime.compute_stress_index([]) == 0.0

    def test_mixed_entries(self):
        entries = [
            {"regime": "volatile", "velocity": 0.02},
            {"regime": "stable", "velocity": 0.0},
        ]
        # regime stress 0.4 / 2 = 0.2, velocity stress 0.01 / 0.02 = 0.5
        assert regime.compute_stress_index(entries) == pytest.approx(0.2 * 0.6 + 0.5 * 0.4)

    def test_velocity_stress_capped(self):
        entries = [{"regime": "tail", "velocity": -0.5}]
        assert regime.compute_stress_index(entries) == pytest.approx(0.4 * 0.6 + 1.0 * 0.4)


class TestAverageLiquidity:

    def test_missing_values_use_default(self):
        points = [
            SignalPoint(date="2026-01-01", p=0.5, liquidity=0.2),
            SignalPoint(date="2026-01-02", p=0.5),
        ]

        assert points[1].liquidity is None
        assert regime.average_liquidity(points) == pytest.approx(0.6)
        assert regime.average_liquidity(points, default_liquidity=0.4) == pytest.approx(0.3)

    def test_empty_series(self):
        assert regime.average_liquidity([]) == 1.0
        assert regime.average_liquidity([], default_liquidity=0.5) == 0.5

    def test_summary_uses_configured_default(self):
        config = {"signal_point": {"default_liquidity": 0.5}}
        assert regime.summarize_signal(_series([0.5] * 4), config)["avg_liquidity"] == 0.5


class TestSummarizeSignal:

    def test_collects_metrics(self):
        points = _series(_cumulative(0.2, [0.05, 0.05, 0.05, 0.02, 0.02, 0.08]))

        summary = regime.summarize_signal(points)

        assert summary["points"] == 7
        assert summary["latest_p"] == pytest.approx(0.47)
        assert summary["belief_flip"]["flip_type"] == "bullish"
        assert summary["stress"]["level"] in ("low", "med", "high")
        assert summary["regime"] == "stable"
        assert summary["avg_liquidity"] == 1.0

    def test_empty_series(self):
        summary = regime.summarize_signal([])

        assert summary["points"] == 0
        assert summary["latest_p"] is None
        assert summary["stress"]["level"] == "med"
        assert summary["fragile"] is False

    def test_config_overrides(self):
        config = {"stress": {"med_threshold": 0.1}, "signal_point": {"default_band": 0.18}}

        summary = regime.summarize_signal(_series([0.5] * 4), config)

        assert summary["stress"]["level"] == "med"


class TestLoadSignalCsv:
    """Tests for load_signal_csv function."""

    @pytest.fixture
    def temp_dir(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield Path(tmpdir)

    def test_parses_sorts_and_clamps(self, temp_dir):
        path = temp_dir / "signal.csv"
        path.write_text(
            "date,p,low,high,liquidity,sentiment,ref_value\n"
            "2026-01-03,1.4,0.8,1.2,,Bullish,101.5\n"
            "2026-01-01,0.40,0.35,0.45,0.6,,\n"
            "2026-01-02,abc,,,,,\n"
        )

        points = regime.load_signal_csv(path)

        assert [p.date for p in points] == ["2026-01-01", "2026-01-02", "2026-01-03"]
        assert points[0].liquidity == 0.6
        assert points[0].sentiment is None
        assert points[1].p == 0.0
        assert points[1].has_band is False
        assert points[2].p == 1.0
        assert points[2].high == 1.0
        assert points[2].liquidity == 1.0
        assert points[2].sentiment == "Bullish"
        assert points[2].ref_value == 101.5

    def test_skips_inverted_band(self, temp_dir):
        path = temp_dir / "signal.csv"
        path.write_text(
            "date,p,low,high\n"
            "2026-01-01,0.5,0.6,0.4\n"
            "2026-01-02,0.5,0.4,0.6\n"
        )

        points = regime.load_signal_csv(path)

        assert [p.date for p in points] == ["2026-01-02"]

    def test_missing_file(self, temp_dir):
        assert regime.load_signal_csv(temp_dir / "missing.csv") == []

    def test_default_liquidity_override(self, temp_dir):
        path = temp_dir / "signal.csv"
        path.write_text("date,p\n2026-01-01,0.5\n")

        points = regime.load_signal_csv(path, default_liquidity=0.25)

        assert points[0].liquidity == 0.25
