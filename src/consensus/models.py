"""
Data models for forecasters, predictions, scores and signal points.

Records are plain dataclasses. ``to_dict``/``from_dict`` convert to the flat
JSON shape stored in the ledger; unknown keys (e.g. ``record_type``) are
ignored on load.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .config import DEFAULT_AVG_BRIER, DEFAULT_REPUTATION


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso_datetime(dt_str: str) -> datetime:
    """
    Parse ISO 8601 datetime string to datetime object.

    Args:
        dt_str: ISO format datetime string

    Returns:
        Parsed datetime with UTC timezone
    """
    dt_str = dt_str.replace('Z', '+00:00')
    dt = datetime.fromisoformat(dt_str)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class PredictionStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class _Record:
    """Dict conversion shared by the ledger dataclasses."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class Forecaster(_Record):
    forecaster_id: str
    reputation: float = DEFAULT_REPUTATION
    total_stake: float = 0.0
    prediction_count: int = 0
    resolved_count: int = 0
    avg_brier_score: float = DEFAULT_AVG_BRIER
    created_at_utc: str = ""
    updated_at_utc: str = ""


@dataclass
class Prediction(_Record):
    prediction_id: str
    forecaster_id: str
    market_id: str
    probability: float
    confidence: float
    stake: float
    platform: str = ""
    status: str = PredictionStatus.ACTIVE.value
    created_at_utc: str = ""
    updated_at_utc: str = ""

    @property
    def is_active(self) -> bool:
        return self.status == PredictionStatus.ACTIVE.value


@dataclass
class Score(_Record):
    score_id: str
    prediction_id: str
    forecaster_id: str
    market_id: str
    predicted_probability: float
    actual_outcome: int
    brier_score: float
    stake: float
    resolved_at_utc: str


@dataclass
class ResolvedMarket(_Record):
    market_id: str
    outcome: int
    platform: str = ""
    title: str = ""
    resolved_at_utc: str = ""
    created_at_utc: str = ""


@dataclass
class MarketSignal(_Record):
    market_id: str
    probability: float
    confidence: float
    contributor_count: int
    total_stake: float
    updated_at_utc: str = ""


@dataclass(frozen=True)
class SignalPoint:
    """One observation of a probability trajectory.

    ``low``/``high`` bound the dispersion band. The market-structure extras
    (``ref_value``, ``concentration``, ``cost_to_move``) are carried through
    untouched. For every optional field ``None`` means it was absent from
    the source row; readers apply their own default liquidity.
    """
    date: str
    p: float
    low: Optional[float] = None
    high: Optional[float] = None
    liquidity: Optional[float] = None
    sentiment: Optional[str] = None
    ref_value: Optional[float] = None
    concentration: Optional[float] = None
    cost_to_move: Optional[float] = None

    @property
    def has_band(self) -> bool:
        return self.low is not None and self.high is not None

    def band_width(self) -> Optional[float]:
        """high - low, or None when either bound is missing."""
        if not self.has_band:
            return None
        return self.high - self.low

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
