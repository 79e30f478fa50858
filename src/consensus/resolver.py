"""
Market resolution and prediction scoring.

A market moves from unresolved to resolved exactly once. Resolving it
records a ResolvedMarket, scores every active prediction on it, marks those
predictions resolved and recomputes the reputation of every forecaster
touched.

Resolutions come either from a periodic sweep against a market feed
(check_for_resolutions) or from an explicit manual call
(manually_resolve_market).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import reputation
from . import scorer
from .config import DECAY_FACTOR
from .errors import ConflictError, NotFoundError
from .feed import MarketFeed
from .models import Prediction, ResolvedMarket, parse_iso_datetime, utc_now_iso
from .store import Store
from .validation import validate_outcome

logger = logging.getLogger(__name__)


def _coerce_timestamp(value: Any) -> str:
    """
    Normalize a feed timestamp to an ISO 8601 UTC string.

    Accepts ISO strings and epoch numbers (seconds or milliseconds). Missing
    or unparseable values fall back to the current time.
    """
    if value is None or value == "":
        return utc_now_iso()

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()

    try:
        return parse_iso_datetime(str(value)).isoformat()
    except ValueError:
        logger.warning(f"Unparseable resolution timestamp {value!r}; using current time")
        return utc_now_iso()


def _score_and_update(
    store: Store,
    market_id: str,
    predictions: List[Prediction],
    outcome: int,
    resolved_at_utc: str,
    decay_factor: float
) -> int:
    scores = scorer.score_predictions(predictions, outcome, resolved_at_utc)

    store.insert_scores(scores)
    store.mark_predictions_resolved(p.prediction_id for p in predictions)

    forecaster_ids = sorted({p.forecaster_id for p in predictions})
    for forecaster_id in forecaster_ids:
        try:
            reputation.update_forecaster_stats(store, forecaster_id, decay_factor)
        except NotFoundError as e:
            logger.warning(f"Skipping reputation update for market {market_id}: {e}")

    return len(predictions)


def score_market_predictions(
    store: Store,
    market_id: str,
    outcome: int,
    resolved_at_utc: Optional[str] = None,
    decay_factor: float = DECAY_FACTOR
) -> int:
    """
    Score all active predictions on a market and update reputations.

    Args:
        store: Prediction/score store
        market_id: Market being resolved
        outcome: Realized outcome, 0 or 1
        resolved_at_utc: Timestamp stamped on the scores (default: now)
        decay_factor: Per-rank reputation decay

    Returns:
        Number of predictions scored
    """
    predictions = store.get_active_predictions(market_id)
    if not predictions:
        return 0

    resolved_at_utc = resolved_at_utc or utc_now_iso()
    return _score_and_update(store, market_id, predictions, outcome, resolved_at_utc, decay_factor)


def rescore_stranded_predictions(
    store: Store,
    market_id: str,
    decay_factor: float = DECAY_FACTOR
) -> int:
    """
    Finish scoring a market whose resolution was recorded but not scored.

    Only predictions last updated before the resolution was recorded are
    scored, against the recorded outcome. Predictions placed after the
    resolution stay untouched.

    Args:
        store: Prediction/score store
        market_id: Resolved market
        decay_factor: Per-rank reputation decay

    Returns:
        Number of predictions scored
    """
    record = store.get_resolved_market(market_id)
    if record is None or not record.created_at_utc:
        return 0

    recorded_at = parse_iso_datetime(record.created_at_utc)
    stranded = [
        p for p in store.get_active_predictions(market_id)
        if p.updated_at_utc and parse_iso_datetime(p.updated_at_utc) < recorded_at
    ]
    if not stranded:
        return 0

    logger.warning(f"Market {market_id} has {len(stranded)} unscored prediction(s); scoring now")
    return _score_and_update(
        store, market_id, stranded, record.outcome, record.resolved_at_utc, decay_factor
    )


def _resolve_market(
    store: Store,
    market_id: str,
    outcome: int,
    platform: str,
    title: str,
    resolved_at_utc: str,
    decay_factor: float = DECAY_FACTOR
) -> int:
    store.insert_resolved_market(ResolvedMarket(
        market_id=market_id,
        outcome=outcome,
        platform=platform,
        title=title,
        resolved_at_utc=resolved_at_utc,
    ))
    return score_market_predictions(store, market_id, outcome, resolved_at_utc, decay_factor)


def check_for_resolutions(
    store: Store,
    feed: MarketFeed,
    decay_factor: float = DECAY_FACTOR
) -> Dict[str, int]:
    """
    Resolve every market with active predictions whose outcome is now known.

    Safe to run repeatedly: markets without a reported binary outcome are
    skipped, and markets already resolved are only revisited to score
    predictions an earlier failed sweep left active. A failure while
    resolving one market is logged and counted; the sweep continues with
    the rest.

    Args:
        store: Prediction/score store
        feed: Market feed reporting known outcomes
        decay_factor: Per-rank reputation decay

    Returns:
        Dict with checked, resolved, scored and failed counts

    Raises:
        FeedError: If the feed itself cannot be read
    """
    active = store.get_all_active_predictions()
    market_ids: List[str] = sorted({p.market_id for p in active})

    if not market_ids:
        return {"checked": 0, "resolved": 0, "scored": 0, "failed": 0}

    resolved = 0
    scored = 0
    failed = 0

    pending: List[str] = []
    for market_id in market_ids:
        if not store.is_market_resolved(market_id):
            pending.append(market_id)
            continue
        try:
            scored += rescore_stranded_predictions(store, market_id, decay_factor)
        except Exception as e:
            failed += 1
            logger.error(f"Failed to finish scoring market {market_id}: {e}")

    if not pending:
        return {"checked": len(market_ids), "resolved": resolved, "scored": scored, "failed": failed}

    wanted = set(pending)
    for entry in feed.get_markets_with_known_outcome(pending):
        market_id = entry.get("market_id")
        if market_id not in wanted:
            continue
        if store.is_market_resolved(market_id):
            continue

        try:
            outcome = validate_outcome(entry.get("outcome"))
            predictions_scored = _resolve_market(
                store,
                market_id,
                outcome,
                platform=entry.get("platform") or "",
                title=entry.get("title") or "",
                resolved_at_utc=_coerce_timestamp(entry.get("resolved_at_utc")),
                decay_factor=decay_factor,
            )
        except ConflictError:
            # Another sweep resolved it between the check and the insert
            logger.info(f"Market {market_id} resolved concurrently; skipping")
            continue
        except Exception as e:
            failed += 1
            logger.error(f"Failed to resolve market {market_id}: {e}")
            continue

        resolved += 1
        scored += predictions_scored
        logger.info(
            f"Resolved market \"{entry.get('title') or market_id}\" "
            f"(outcome={outcome}) - scored {predictions_scored} prediction(s)"
        )

    return {
        "checked": len(market_ids),
        "resolved": resolved,
        "scored": scored,
        "failed": failed,
    }


def manually_resolve_market(
    store: Store,
    market_id: str,
    outcome: Any,
    platform: str = "",
    title: str = "",
    decay_factor: float = DECAY_FACTOR
) -> Dict[str, int]:
    """
    Resolve one market with an explicit outcome.

    Args:
        store: Prediction/score store
        market_id: Market to resolve
        outcome: Must be exactly 0 or 1
        platform: Market platform label
        title: Market title
        decay_factor: Per-rank reputation decay

    Returns:
        Dict with the number of predictions scored

    Raises:
        ValidationError: If outcome is not 0 or 1
        ConflictError: If the market is already resolved
    """
    outcome = validate_outcome(outcome)

    if store.is_market_resolved(market_id):
        raise ConflictError(f"Market already resolved: {market_id}")

    scored = _resolve_market(store, market_id, outcome, platform, title, utc_now_iso(), decay_factor)
    logger.info(f"Manually resolved market {market_id} (outcome={outcome}) - scored {scored} prediction(s)")
    return {"scored": scored}
