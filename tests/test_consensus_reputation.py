"""
Tests for src/consensus/reputation.py - Rank-decayed reputation.
"""

import pytest

from src.consensus import reputation
from src.consensus.config import DECAY_FACTOR
from src.consensus.errors import NotFoundError
from src.consensus.models import Score
from src.consensus.store import MemoryStore


def _score(brier, stake=1.0, resolved_at="2026-01-01T00:00:00+00:00", forecaster_id="f1", market_id="m1"):
    return Score(
        score_id=f"s-{market_id}-{resolved_at}",
        prediction_id=f"p-{market_id}",
        forecaster_id=forecaster_id,
        market_id=market_id,
        predicted_probability=0.5,
        actual_outcome=1,
        brier_score=brier,
        stake=stake,
        resolved_at_utc=resolved_at,
    )


class TestComputeReputation:
    """Tests for compute_reputation function."""

    def test_decay_factor_constant(self):
        assert DECAY_FACTOR == 0.95

    def test_no_scores_is_neutral(self):
        assert reputation.compute_reputation([]) == 0.5

    def test_single_perfect_score(self):
        """Test that one perfect score gives full reputation."""
        assert reputation.compute_reputation([_score(0.0, stake=1.0)]) == 1.0

    def test_rank_based_decay(self):
        """Test that the most recent score gets weight 1 and the next 0.95."""
        scores = [
            _score(1.0, resolved_at="2026-01-01T00:00:00+00:00", market_id="old"),
            _score(0.0, resolved_at="2026-02-01T00:00:00+00:00", market_id="new"),
        ]

        expected = (1.0 * 1.0 + 0.0 * 0.95) / (1.0 + 0.95)
        assert reputation.compute_reputation(scores) == pytest.approx(expected)
        assert reputation.compute_reputation(scores) == pytest.approx(0.5128, abs=1e-4)

    def test_input_order_does_not_matter(self):
        older = _score(1.0, resolved_at="2026-01-01T00:00:00+00:00", market_id="old")
        newer = _score(0.0, resolved_at="2026-02-01T00:00:00+00:00", market_id="new")

        assert reputation.compute_reputation([older, newer]) == reputation.compute_reputation([newer, older])

    def test_decay_ignores_time_gaps(self):
        """Test that a year-old gap weighs the same as a one-day gap."""
        close = [
            _score(1.0, resolved_at="2026-01-01T00:00:00+00:00", market_id="a"),
            _score(0.0, resolved_at="2026-01-02T00:00:00+00:00", market_id="b"),
        ]
        far = [
            _score(1.0, resolved_at="2025-01-01T00:00:00+00:00", market_id="a"),
            _score(0.0, resolved_at="2026-01-02T00:00:00+00:00", market_id="b"),
        ]

        assert reputation.compute_reputation(close) == reputation.compute_reputation(far)

    def test_stake_weighting(self):
        scores = [
            _score(0.0, stake=3.0, resolved_at="2026-02-01T00:00:00+00:00", market_id="new"),
            _score(1.0, stake=1.0, resolved_at="2026-01-01T00:00:00+00:00", market_id="old"),
        ]

        expected = (1.0 * 3.0) / (3.0 + 0.95)
        assert reputation.compute_reputation(scores) == pytest.approx(expected)

    def test_zero_total_weight_is_neutral(self):
        assert reputation.compute_reputation([_score(0.0, stake=0.0)]) == 0.5

    def test_custom_decay(self):
        scores = [
            _score(0.0, resolved_at="2026-02-01T00:00:00+00:00", market_id="new"),
            _score(1.0, resolved_at="2026-01-01T00:00:00+00:00", market_id="old"),
        ]

        assert reputation.compute_reputation(scores, decay_factor=0.5) == pytest.approx(1.0 / 1.5)

    def test_backfilled_score_shifts_ranks(self):
        """Test that a score inserted mid-history changes every later weight."""
        base = [
            _score(0.0, resolved_at="2026-03-01T00:00:00+00:00", market_id="c"),
            _score(0.0, resolved_at="2026-01-01T00:00:00+00:00", market_id="a"),
        ]
        backfilled = base + [_score(1.0, resolved_at="2026-02-01T00:00:00+00:00", market_id="b")]

        expected = (1.0 + 0.0 * 0.95 + 1.0 * 0.95 ** 2) / (1.0 + 0.95 + 0.95 ** 2)
        assert reputation.compute_reputation(backfilled) == pytest.approx(expected)


class TestWeightedAvgBrier:

    def test_stake_weighted_mean(self):
        scores = [_score(0.1, stake=1.0, market_id="a"), _score(0.4, stake=2.0, market_id="b")]
        assert reputation.weighted_avg_brier(scores) == pytest.approx((0.1 + 0.8) / 3.0)

    def test_zero_stake_default(self):
        assert reputation.weighted_avg_brier([]) == 0.5
        assert reputation.weighted_avg_brier([_score(0.3, stake=0.0)]) == 0.5


class TestUpdateForecasterStats:
    """Tests for update_forecaster_stats function."""

    @pytest.fixture
    def store(self):
        store = MemoryStore()
        store.get_or_create_forecaster("f1")
        return store

    def test_no_scores_leaves_prior(self, store):
        """Test that a forecaster without scores keeps reputation 0.5."""
        assert reputation.update_forecaster_stats(store, "f1") is None

        forecaster = store.get_forecaster("f1")
        assert forecaster.reputation == 0.5
        assert forecaster.resolved_count == 0

    def test_persists_recomputed_stats(self, store):
        store.insert_scores([
            _score(0.0, resolved_at="2026-02-01T00:00:00+00:00", market_id="new"),
            _score(1.0, resolved_at="2026-01-01T00:00:00+00:00", market_id="old"),
        ])

        stats = reputation.update_forecaster_stats(store, "f1")

        forecaster = store.get_forecaster("f1")
        assert stats["resolved_count"] == 2
        assert forecaster.reputation == pytest.approx(1.0 / 1.95)
        assert forecaster.avg_brier_score == pytest.approx(0.5)
        assert forecaster.resolved_count == 2

    def test_full_recomputation_each_call(self, store):
        store.insert_scores([_score(0.0, resolved_at="2026-01-01T00:00:00+00:00", market_id="a")])
        reputation.update_forecaster_stats(store, "f1")
        assert store.get_forecaster("f1").reputation == 1.0

        store.insert_scores([_score(1.0, resolved_at="2026-02-01T00:00:00+00:00", market_id="b")])
        reputation.update_forecaster_stats(store, "f1")

        assert store.get_forecaster("f1").reputation == pytest.approx(0.95 / 1.95)
        assert store.get_forecaster("f1").resolved_count == 2

    def test_unknown_forecaster_with_scores(self, store):
        store.insert_scores([_score(0.0, forecaster_id="ghost")])

        with pytest.raises(NotFoundError):
            reputation.update_forecaster_stats(store, "ghost")
