"""
Forecaster reputation from resolved score history.

Reputation is an exponentially decayed, stake-weighted mean of accuracy
(1 - Brier). Decay is applied by rank, not elapsed time: the k-th most
recent score (0-indexed) carries weight decay^k * stake_k. Because ranks
shift whenever a score is added, including backfilled resolutions that land
in the middle of the history, reputation is always recomputed from the
full history.
"""

import logging
from typing import Dict, List, Optional, Any

from .config import DECAY_FACTOR, DEFAULT_AVG_BRIER, DEFAULT_REPUTATION
from .models import Score, parse_iso_datetime
from .scorer import accuracy
from .store import Store

logger = logging.getLogger(__name__)


def sort_most_recent_first(scores: List[Score]) -> List[Score]:
    """Order scores by resolution time, newest first. Ties keep input order."""
    return sorted(scores, key=lambda s: parse_iso_datetime(s.resolved_at_utc), reverse=True)


def weighted_avg_brier(scores: List[Score]) -> float:
    """
    Stake-weighted mean Brier score.

    Args:
        scores: Score records

    Returns:
        Σ(brier·stake) / Σ(stake), or 0.5 when total stake is zero
    """
    total_weighted = 0.0
    total_stake = 0.0
    for score in scores:
        total_weighted += score.brier_score * score.stake
        total_stake += score.stake

    return total_weighted / total_stake if total_stake > 0 else DEFAULT_AVG_BRIER


def compute_reputation(scores: List[Score], decay_factor: float = DECAY_FACTOR) -> float:
    """
    Compute rank-decayed, stake-weighted accuracy.

    Args:
        scores: All resolved scores for one forecaster
        decay_factor: Per-rank decay (0.95)

    Returns:
        Reputation in [0, 1]; 0.5 with no scores or zero total weight
    """
    if not scores:
        return DEFAULT_REPUTATION

    weighted_sum = 0.0
    total_weight = 0.0
    for rank, score in enumerate(sort_most_recent_first(scores)):
        weight = (decay_factor ** rank) * score.stake
        weighted_sum += accuracy(score.brier_score) * weight
        total_weight += weight

    return weighted_sum / total_weight if total_weight > 0 else DEFAULT_REPUTATION


def update_forecaster_stats(
    store: Store,
    forecaster_id: str,
    decay_factor: float = DECAY_FACTOR
) -> Optional[Dict[str, Any]]:
    """
    Recompute and persist a forecaster's reputation from full history.

    Runs under the store's per-forecaster lock and inside a store
    transaction, so two updates for the same forecaster cannot interleave
    their read and write, whether they come from threads sharing a store or
    from separate processes sharing a ledger.

    Args:
        store: Store holding the score ledger
        forecaster_id: Forecaster to update
        decay_factor: Per-rank decay

    Returns:
        Dict with reputation, avg_brier_score, resolved_count; None when the
        forecaster has no scores (stats are left untouched)

    Raises:
        NotFoundError: If the store has no such forecaster
    """
    with store.forecaster_lock(forecaster_id), store.transaction():
        scores = store.get_scores_for_forecaster(forecaster_id)
        if not scores:
            return None

        stats = {
            "reputation": compute_reputation(scores, decay_factor),
            "avg_brier_score": weighted_avg_brier(scores),
            "resolved_count": len(scores),
        }
        store.update_forecaster_stats(forecaster_id, **stats)

    logger.debug(
        f"Forecaster {forecaster_id}: reputation={stats['reputation']:.4f} "
        f"over {stats['resolved_count']} score(s)"
    )
    return stats
