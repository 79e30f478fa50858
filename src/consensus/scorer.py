"""
Brier scoring of individual predictions.

Brier = (p_forecast - outcome)²

Lower is better. Perfect = 0, worst = 1.
"""

import uuid
from typing import Iterable, List

from .models import Prediction, Score


def brier_score(probability: float, outcome: int) -> float:
    """
    Compute the Brier score of one prediction against a binary outcome.

    Args:
        probability: Predicted probability of the event (0.0 to 1.0)
        outcome: Realized outcome, 0 or 1

    Returns:
        Squared error (0.0 to 1.0)
    """
    return (probability - outcome) ** 2


def accuracy(brier: float) -> float:
    """Accuracy used for reputation: 1 - Brier."""
    return 1.0 - brier


def score_predictions(
    predictions: Iterable[Prediction],
    outcome: int,
    resolved_at_utc: str
) -> List[Score]:
    """
    Build one Score record per prediction for a resolved market.

    The stake is captured as it stood at resolution time.

    Args:
        predictions: Active predictions on the resolving market
        outcome: Realized outcome, 0 or 1
        resolved_at_utc: Resolution timestamp stamped on every score

    Returns:
        List of Score records in prediction order
    """
    scores = []
    for prediction in predictions:
        scores.append(Score(
            score_id=str(uuid.uuid4()),
            prediction_id=prediction.prediction_id,
            forecaster_id=prediction.forecaster_id,
            market_id=prediction.market_id,
            predicted_probability=prediction.probability,
            actual_outcome=outcome,
            brier_score=brier_score(prediction.probability, outcome),
            stake=prediction.stake,
            resolved_at_utc=resolved_at_utc,
        ))
    return scores
