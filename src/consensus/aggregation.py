"""
Reputation-weighted aggregation of active predictions into market signals.

Each prediction carries weight = stake × reputation × confidence. The
signal probability and confidence are weight-averaged; when every weight
is zero the signal falls back to probability 0.5 and confidence 0.

Signals are recomputed from the store on every call.
"""

from collections import OrderedDict
from typing import Dict, List, Mapping, Optional

from .config import DEFAULT_REPUTATION
from .models import MarketSignal, Prediction, utc_now_iso
from .store import Store


def prediction_weight(prediction: Prediction, reputation: float) -> float:
    """stake × reputation × confidence."""
    return prediction.stake * reputation * prediction.confidence


def aggregate_predictions(
    predictions: List[Prediction],
    reputations: Mapping[str, float],
    market_id: Optional[str] = None,
    default_reputation: float = DEFAULT_REPUTATION
) -> Optional[MarketSignal]:
    """
    Combine predictions on one market into a weighted signal.

    Args:
        predictions: Active predictions on a single market
        reputations: forecaster_id -> reputation; forecasters missing from
            the map count with default_reputation
        market_id: Market id for the signal (defaults to the first
            prediction's market)
        default_reputation: Reputation for unknown forecasters (0.5)

    Returns:
        MarketSignal, or None when there are no predictions
    """
    if not predictions:
        return None

    weighted_prob_sum = 0.0
    weighted_conf_sum = 0.0
    total_weight = 0.0
    total_stake = 0.0

    for prediction in predictions:
        reputation = reputations.get(prediction.forecaster_id, default_reputation)
        weight = prediction_weight(prediction, reputation)

        weighted_prob_sum += prediction.probability * weight
        weighted_conf_sum += prediction.confidence * weight
        total_weight += weight
        total_stake += prediction.stake

    return MarketSignal(
        market_id=market_id or predictions[0].market_id,
        probability=weighted_prob_sum / total_weight if total_weight > 0 else 0.5,
        confidence=weighted_conf_sum / total_weight if total_weight > 0 else 0.0,
        contributor_count=len(predictions),
        total_stake=total_stake,
        updated_at_utc=utc_now_iso(),
    )


def group_by_market(predictions: List[Prediction]) -> Dict[str, List[Prediction]]:
    """Group predictions by market id, markets in sorted order."""
    grouped: Dict[str, List[Prediction]] = {}
    for prediction in predictions:
        grouped.setdefault(prediction.market_id, []).append(prediction)
    return OrderedDict(sorted(grouped.items()))


def calculate_market_signal(
    store: Store,
    market_id: str,
    default_reputation: float = DEFAULT_REPUTATION
) -> Optional[MarketSignal]:
    """
    Signal for one market from its active predictions.

    Returns:
        MarketSignal, or None when the market has no active predictions
    """
    predictions = store.get_active_predictions(market_id)
    if not predictions:
        return None

    reputations = store.get_reputations(p.forecaster_id for p in predictions)
    return aggregate_predictions(predictions, reputations, market_id, default_reputation)


def calculate_all_signals(store: Store, default_reputation: float = DEFAULT_REPUTATION) -> List[MarketSignal]:
    """
    Signals for every market with active predictions.

    One reputation lookup covers all forecasters; each market then goes
    through the same kernel as calculate_market_signal, so bulk and
    per-market results match.
    """
    predictions = store.get_all_active_predictions()
    if not predictions:
        return []

    reputations = store.get_reputations(p.forecaster_id for p in predictions)

    signals = []
    for market_id, market_predictions in group_by_market(predictions).items():
        signal = aggregate_predictions(market_predictions, reputations, market_id, default_reputation)
        if signal is not None:
            signals.append(signal)
    return signals
