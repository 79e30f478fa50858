"""
Store interface for predictions, forecasters, scores and resolutions.

The scoring and aggregation code only talks to ``Store``. Subclasses supply
the storage primitives; submission, cancellation, stat updates and the
resolved-market check-and-insert are implemented once here on top of them,
inside ``transaction()`` so they are atomic for each backend.
"""

import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import ConflictError, NotFoundError, ValidationError
from .models import (
    Forecaster,
    Prediction,
    PredictionStatus,
    ResolvedMarket,
    Score,
    utc_now_iso,
)
from .validation import validate_prediction


class Store(ABC):
    """Abstract store used by the consensus core."""

    def __init__(self):
        self._lock = threading.RLock()
        self._forecaster_locks: Dict[str, threading.Lock] = {}
        self._forecaster_locks_guard = threading.Lock()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Serialize a read-modify-write sequence against this store."""
        with self._lock:
            yield

    def forecaster_lock(self, forecaster_id: str) -> threading.Lock:
        """Lock serializing reputation recomputation for one forecaster."""
        with self._forecaster_locks_guard:
            lock = self._forecaster_locks.get(forecaster_id)
            if lock is None:
                lock = threading.Lock()
                self._forecaster_locks[forecaster_id] = lock
            return lock

    # ------------------------------------------------------------------
    # Storage primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def get_prediction(self, prediction_id: str) -> Optional[Prediction]:
        pass

    @abstractmethod
    def get_forecaster(self, forecaster_id: str) -> Optional[Forecaster]:
        pass

    @abstractmethod
    def list_forecasters(self) -> List[Forecaster]:
        pass

    @abstractmethod
    def get_active_predictions(self, market_id: str) -> List[Prediction]:
        """Active predictions on one market, in submission order."""
        pass

    @abstractmethod
    def get_all_active_predictions(self) -> List[Prediction]:
        """Active predictions across all markets, in submission order."""
        pass

    @abstractmethod
    def get_predictions_for_forecaster(self, forecaster_id: str) -> List[Prediction]:
        pass

    @abstractmethod
    def insert_scores(self, scores: Iterable[Score]) -> None:
        pass

    @abstractmethod
    def get_scores_for_forecaster(self, forecaster_id: str) -> List[Score]:
        pass

    @abstractmethod
    def get_market_scores(self, market_id: str) -> List[Score]:
        pass

    @abstractmethod
    def is_market_resolved(self, market_id: str) -> bool:
        pass

    @abstractmethod
    def get_resolved_market(self, market_id: str) -> Optional[ResolvedMarket]:
        pass

    @abstractmethod
    def get_resolved_markets(self, limit: Optional[int] = None) -> List[ResolvedMarket]:
        """Resolved markets ordered by resolution time, oldest first."""
        pass

    @abstractmethod
    def _put_prediction(self, prediction: Prediction) -> None:
        pass

    @abstractmethod
    def _put_forecaster(self, forecaster: Forecaster) -> None:
        pass

    @abstractmethod
    def _put_resolved_market(self, record: ResolvedMarket) -> None:
        pass

    @abstractmethod
    def _find_active_prediction(self, forecaster_id: str, market_id: str) -> Optional[Prediction]:
        pass

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_reputations(self, forecaster_ids: Iterable[str]) -> Dict[str, float]:
        """
        Current reputation of each known forecaster.

        Unknown ids are left out of the map; callers apply the default.
        """
        reputations = {}
        for forecaster_id in set(forecaster_ids):
            forecaster = self.get_forecaster(forecaster_id)
            if forecaster is not None:
                reputations[forecaster_id] = forecaster.reputation
        return reputations

    def get_or_create_forecaster(self, forecaster_id: str) -> Forecaster:
        """Return the forecaster, creating it with neutral stats if new."""
        with self.transaction():
            forecaster = self.get_forecaster(forecaster_id)
            if forecaster is None:
                now = utc_now_iso()
                forecaster = Forecaster(
                    forecaster_id=forecaster_id,
                    created_at_utc=now,
                    updated_at_utc=now,
                )
                self._put_forecaster(forecaster)
            return forecaster

    def submit_prediction(
        self,
        forecaster_id: str,
        market_id: str,
        probability: float,
        confidence: float,
        stake: float,
        platform: str = ""
    ) -> Tuple[Prediction, bool]:
        """
        Create or update a forecaster's active prediction on a market.

        A forecaster holds at most one active prediction per market;
        resubmitting updates that row in place and adjusts total_stake by
        the stake difference without bumping prediction_count.

        Returns:
            Tuple of (prediction, created)

        Raises:
            ValidationError: If any field is out of range
        """
        validate_prediction({
            "forecaster_id": forecaster_id,
            "market_id": market_id,
            "platform": platform,
            "probability": probability,
            "confidence": confidence,
            "stake": stake,
        })

        with self.transaction():
            forecaster = self.get_or_create_forecaster(forecaster_id)
            now = utc_now_iso()
            existing = self._find_active_prediction(forecaster_id, market_id)

            if existing is not None:
                forecaster.total_stake = forecaster.total_stake - existing.stake + stake
                existing.probability = probability
                existing.confidence = confidence
                existing.stake = stake
                existing.updated_at_utc = now
                prediction, created = existing, False
            else:
                prediction = Prediction(
                    prediction_id=str(uuid.uuid4()),
                    forecaster_id=forecaster_id,
                    market_id=market_id,
                    probability=probability,
                    confidence=confidence,
                    stake=stake,
                    platform=platform,
                    status=PredictionStatus.ACTIVE.value,
                    created_at_utc=now,
                    updated_at_utc=now,
                )
                forecaster.total_stake += stake
                forecaster.prediction_count += 1
                created = True

            forecaster.updated_at_utc = now
            self._put_prediction(prediction)
            self._put_forecaster(forecaster)
            return prediction, created

    def cancel_prediction(self, prediction_id: str, forecaster_id: str) -> Prediction:
        """
        Withdraw an active prediction.

        Raises:
            NotFoundError: If the prediction does not exist or its forecaster row is missing
            ValidationError: If it belongs to another forecaster or is not active
        """
        with self.transaction():
            prediction = self.get_prediction(prediction_id)
            if prediction is None:
                raise NotFoundError(f"Prediction not found: {prediction_id}")
            if prediction.forecaster_id != forecaster_id:
                raise ValidationError(
                    f"Prediction {prediction_id} does not belong to {forecaster_id}",
                    field="forecaster_id",
                )
            if not prediction.is_active:
                raise ValidationError(
                    f"Can only cancel active predictions (status={prediction.status})",
                    field="status",
                )

            forecaster = self.get_forecaster(forecaster_id)
            if forecaster is None:
                raise NotFoundError(f"Forecaster not found: {forecaster_id}")

            now = utc_now_iso()
            prediction.status = PredictionStatus.CANCELLED.value
            prediction.updated_at_utc = now
            self._put_prediction(prediction)

            forecaster.total_stake -= prediction.stake
            forecaster.updated_at_utc = now
            self._put_forecaster(forecaster)
            return prediction

    def mark_predictions_resolved(self, prediction_ids: Iterable[str]) -> None:
        with self.transaction():
            now = utc_now_iso()
            for prediction_id in prediction_ids:
                prediction = self.get_prediction(prediction_id)
                if prediction is None:
                    raise NotFoundError(f"Prediction not found: {prediction_id}")
                prediction.status = PredictionStatus.RESOLVED.value
                prediction.updated_at_utc = now
                self._put_prediction(prediction)

    def update_forecaster_stats(
        self,
        forecaster_id: str,
        reputation: float,
        avg_brier_score: float,
        resolved_count: int
    ) -> Forecaster:
        """
        Persist recomputed reputation statistics.

        Raises:
            NotFoundError: If the forecaster does not exist
        """
        with self.transaction():
            forecaster = self.get_forecaster(forecaster_id)
            if forecaster is None:
                raise NotFoundError(f"Forecaster not found: {forecaster_id}")
            forecaster.reputation = reputation
            forecaster.avg_brier_score = avg_brier_score
            forecaster.resolved_count = resolved_count
            forecaster.updated_at_utc = utc_now_iso()
            self._put_forecaster(forecaster)
            return forecaster

    def insert_resolved_market(self, record: ResolvedMarket) -> None:
        """
        Record a market resolution. Check and insert happen atomically.

        Raises:
            ConflictError: If the market was already resolved
        """
        with self.transaction():
            if self.is_market_resolved(record.market_id):
                raise ConflictError(f"Market already resolved: {record.market_id}")
            if not record.created_at_utc:
                record.created_at_utc = utc_now_iso()
            self._put_resolved_market(record)


class MemoryStore(Store):
    """In-process store backed by dicts."""

    def __init__(self):
        super().__init__()
        self._predictions: Dict[str, Prediction] = {}
        self._forecasters: Dict[str, Forecaster] = {}
        self._scores: List[Score] = []
        self._resolved: Dict[str, ResolvedMarket] = {}

    def get_prediction(self, prediction_id: str) -> Optional[Prediction]:
        return self._predictions.get(prediction_id)

    def get_forecaster(self, forecaster_id: str) -> Optional[Forecaster]:
        return self._forecasters.get(forecaster_id)

    def list_forecasters(self) -> List[Forecaster]:
        return list(self._forecasters.values())

    def get_active_predictions(self, market_id: str) -> List[Prediction]:
        return [p for p in self._predictions.values() if p.market_id == market_id and p.is_active]

    def get_all_active_predictions(self) -> List[Prediction]:
        return [p for p in self._predictions.values() if p.is_active]

    def get_predictions_for_forecaster(self, forecaster_id: str) -> List[Prediction]:
        return [p for p in self._predictions.values() if p.forecaster_id == forecaster_id]

    def insert_scores(self, scores: Iterable[Score]) -> None:
        with self.transaction():
            self._scores.extend(scores)

    def get_scores_for_forecaster(self, forecaster_id: str) -> List[Score]:
        return [s for s in self._scores if s.forecaster_id == forecaster_id]

    def get_market_scores(self, market_id: str) -> List[Score]:
        return [s for s in self._scores if s.market_id == market_id]

    def is_market_resolved(self, market_id: str) -> bool:
        return market_id in self._resolved

    def get_resolved_market(self, market_id: str) -> Optional[ResolvedMarket]:
        return self._resolved.get(market_id)

    def get_resolved_markets(self, limit: Optional[int] = None) -> List[ResolvedMarket]:
        markets = sorted(self._resolved.values(), key=lambda m: m.resolved_at_utc)
        return markets[:limit] if limit is not None else markets

    def _put_prediction(self, prediction: Prediction) -> None:
        self._predictions[prediction.prediction_id] = prediction

    def _put_forecaster(self, forecaster: Forecaster) -> None:
        self._forecasters[forecaster.forecaster_id] = forecaster

    def _put_resolved_market(self, record: ResolvedMarket) -> None:
        self._resolved[record.market_id] = record

    def _find_active_prediction(self, forecaster_id: str, market_id: str) -> Optional[Prediction]:
        for prediction in self._predictions.values():
            if (prediction.forecaster_id == forecaster_id
                    and prediction.market_id == market_id
                    and prediction.is_active):
                return prediction
        return None
