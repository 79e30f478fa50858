"""
Belief dynamics over a probability trajectory.

All functions take a date-ascending list of SignalPoint and never mutate it.
Short or degenerate series produce neutral results instead of errors.

Finite differences:
    velocity[i]     = ((p[i]-p[i-1]) + (p[i-1]-p[i-2]) + (p[i-2]-p[i-3])) / 3
    acceleration[i] = velocity[i] - velocity[i-1]
    jerk[i]         = acceleration[i] - acceleration[i-1]

so velocity needs 4 points, acceleration 5 and jerk 6. Units are
probability per day (per day², per day³) for daily series.
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from .config import (
    BAND_MULTIPLIER,
    DEFAULT_BAND,
    DEFAULT_LIQUIDITY,
    FLIP_MIN_STRENGTH,
    HIGH_STRESS_THRESHOLD,
    MED_STRESS_THRESHOLD,
    MIN_HISTORY_POINTS,
    VELOCITY_MULTIPLIER,
)
from .errors import ValidationError
from .models import SignalPoint
from .validation import validate_signal_point

logger = logging.getLogger(__name__)

STRESS_LOW = "low"
STRESS_MED = "med"
STRESS_HIGH = "high"

REGIME_STABLE = "stable"
REGIME_TRANSITIONING = "transitioning"
REGIME_VOLATILE = "volatile"
REGIME_TAIL = "tail"

FLIP_BULLISH = "bullish"
FLIP_BEARISH = "bearish"

_RISK_NOTE = (
    "Regime Risk measures belief instability and consensus breakdown, "
    "not outcome certainty."
)


@dataclass(frozen=True)
class StressResult:
    level: str
    rationale: str
    score: Optional[float] = None


@dataclass(frozen=True)
class BeliefFlip:
    has_flip: bool
    flip_type: Optional[str] = None
    strength: float = 0.0


def _probabilities(points: Sequence[SignalPoint]) -> np.ndarray:
    return np.array([point.p for point in points], dtype=float)


def dispersion(point: SignalPoint, default: float = 0.0) -> float:
    """Band width high - low, or ``default`` when a bound is missing."""
    width = point.band_width()
    return default if width is None else width


def velocity_series(points: Sequence[SignalPoint]) -> np.ndarray:
    """3-day SMA of day-over-day deltas at every index with 3 prior points."""
    if len(points) < 4:
        return np.array([], dtype=float)
    deltas = np.diff(_probabilities(points))
    return (deltas[2:] + deltas[1:-1] + deltas[:-2]) / 3.0


def acceleration_series(points: Sequence[SignalPoint]) -> np.ndarray:
    return np.diff(velocity_series(points))


def jerk_series(points: Sequence[SignalPoint]) -> np.ndarray:
    return np.diff(acceleration_series(points))


def calculate_velocity(points: Sequence[SignalPoint]) -> float:
    """
    Calculate velocity using a 3-day simple moving average.

    Args:
        points: Signal points sorted by date ascending

    Returns:
        Average daily probability change over the last 3 days
        (e.g. 0.004 = +0.4pp/d); 0.0 with fewer than 4 points
    """
    series = velocity_series(points)
    return float(series[-1]) if series.size else 0.0


def calculate_acceleration(points: Sequence[SignalPoint]) -> float:
    """Latest change in velocity; 0.0 with fewer than 5 points."""
    series = acceleration_series(points)
    return float(series[-1]) if series.size else 0.0


def calculate_jerk(points: Sequence[SignalPoint]) -> float:
    """Latest change in acceleration; 0.0 with fewer than 6 points."""
    series = jerk_series(points)
    return float(series[-1]) if series.size else 0.0


def detect_fragility(points: Sequence[SignalPoint]) -> bool:
    """
    Detect fragile conviction: probability rising while the band widens.

    Compares the latest point with the previous one. Missing bounds count
    as zero width.

    Args:
        points: Signal points sorted by date ascending

    Returns:
        True if p rose and dispersion widened; False with fewer than 2 points
    """
    if len(points) < 2:
        return False

    current = points[-1]
    previous = points[-2]

    prob_rising = current.p > previous.p
    dispersion_widening = dispersion(current) > dispersion(previous)

    return prob_rising and dispersion_widening


def detect_belief_flip(
    points: Sequence[SignalPoint],
    min_strength: float = FLIP_MIN_STRENGTH
) -> BeliefFlip:
    """
    Detect an inflection: acceleration crossing zero between the last two steps.

    A crossing from <= 0 to > 0 is bullish, from >= 0 to < 0 is bearish.
    Strength is the magnitude of the latest acceleration; weaker crossings
    are ignored.

    Args:
        points: Signal points sorted by date ascending
        min_strength: Minimum |acceleration| for a flip to count

    Returns:
        BeliefFlip; has_flip is False with fewer than 6 points
    """
    series = acceleration_series(points)
    if series.size < 2:
        return BeliefFlip(has_flip=False)

    previous = float(series[-2])
    current = float(series[-1])

    if previous <= 0 < current:
        flip_type = FLIP_BULLISH
    elif previous >= 0 > current:
        flip_type = FLIP_BEARISH
    else:
        return BeliefFlip(has_flip=False)

    strength = abs(current)
    if strength < min_strength:
        return BeliefFlip(has_flip=False)

    return BeliefFlip(has_flip=True, flip_type=flip_type, strength=strength)


def compute_stress(
    points: Sequence[SignalPoint],
    velocity_multiplier: float = VELOCITY_MULTIPLIER,
    band_multiplier: float = BAND_MULTIPLIER,
    high_threshold: float = HIGH_STRESS_THRESHOLD,
    med_threshold: float = MED_STRESS_THRESHOLD,
    default_band: float = DEFAULT_BAND
) -> StressResult:
    """
    Compute regime stress from belief velocity and dispersion.

    score = |velocity| × 4.0 + band × 1.2, where band is the latest point's
    high - low (0.18 when bounds are absent). score >= 0.45 is high,
    >= 0.28 is med, otherwise low.

    Args:
        points: Signal points sorted by date ascending

    Returns:
        StressResult with level and rationale; ``med`` with fewer than 4 points
    """
    if len(points) < MIN_HISTORY_POINTS:
        return StressResult(
            level=STRESS_MED,
            rationale="Insufficient history; defaulting to Elevated.",
        )

    velocity = abs(calculate_velocity(points))
    band = dispersion(points[-1], default=default_band)
    score = (velocity * velocity_multiplier) + (band * band_multiplier)

    velocity_pp = f"{velocity * 100:.2f}"
    dispersion_pp = f"{band * 100:.1f}"
    metrics = f"(velocity={velocity_pp}pp/d, dispersion={dispersion_pp}pp)"

    if score >= high_threshold:
        return StressResult(STRESS_HIGH, f"Transitioning regime {metrics}. {_RISK_NOTE}", score)
    if score >= med_threshold:
        return StressResult(STRESS_MED, f"Elevated regime risk {metrics}. {_RISK_NOTE}", score)
    return StressResult(STRESS_LOW, f"Stable regime {metrics}. {_RISK_NOTE}", score)


def classify_regime(probabilities: Sequence[float], window: int = 24) -> str:
    """
    Classify a price trajectory as stable, transitioning, volatile or tail.

    Uses the last ``window`` points. Tail: std > 0.15, or the window spans
    both p > 0.9 and p < 0.1. Volatile: std > 0.08. Transitioning: the
    second-half mean moved more than 0.1 from the first-half mean.

    Args:
        probabilities: Prices oldest first

    Returns:
        Regime label; stable with fewer than 10 points
    """
    if len(probabilities) < 10:
        return REGIME_STABLE

    prices = np.asarray(probabilities, dtype=float)[-window:]
    std_dev = float(np.std(prices))

    half = len(prices) // 2
    trend = abs(float(prices[half:].mean()) - float(prices[:half].mean()))

    if std_dev > 0.15 or (bool(np.any(prices > 0.9)) and bool(np.any(prices < 0.1))):
        return REGIME_TAIL
    if std_dev > 0.08:
        return REGIME_VOLATILE
    if trend > 0.1:
        return REGIME_TRANSITIONING
    return REGIME_STABLE


def compute_stress_index(entries: Sequence[Mapping[str, Any]]) -> float:
    """
    Cross-market belief stress index in [0, 1].

    Args:
        entries: Dicts with "regime" and "velocity" (probability per period)

    Returns:
        0.6 × regime stress + 0.4 × velocity stress; 0.0 for no entries
    """
    if not entries:
        return 0.0

    n = len(entries)
    volatile_count = sum(1 for e in entries if e.get("regime") in (REGIME_VOLATILE, REGIME_TAIL))
    transitioning_count = sum(1 for e in entries if e.get("regime") == REGIME_TRANSITIONING)
    avg_abs_velocity = sum(abs(e.get("velocity", 0.0)) for e in entries) / n

    regime_stress = (volatile_count * 0.4 + transitioning_count * 0.2) / n
    velocity_stress = min(1.0, avg_abs_velocity / 0.02)

    return regime_stress * 0.6 + velocity_stress * 0.4


def average_liquidity(
    points: Sequence[SignalPoint],
    default_liquidity: float = DEFAULT_LIQUIDITY
) -> float:
    """Mean liquidity, counting missing values as ``default_liquidity``."""
    if not points:
        return default_liquidity
    values = [default_liquidity if point.liquidity is None else point.liquidity for point in points]
    return float(np.mean(values))


def summarize_signal(
    points: Sequence[SignalPoint],
    config: Optional[Mapping[str, Any]] = None
) -> Dict[str, Any]:
    """
    Collect every metric for a series into one dict.

    Args:
        points: Signal points sorted by date ascending
        config: Loaded config; its stress, signal_point and belief_flip
            sections override the module defaults
    """
    config = config or {}
    default_band = config.get("signal_point", {}).get("default_band", DEFAULT_BAND)
    default_liquidity = config.get("signal_point", {}).get("default_liquidity", DEFAULT_LIQUIDITY)
    min_strength = config.get("belief_flip", {}).get("min_strength", FLIP_MIN_STRENGTH)

    stress = compute_stress(points, default_band=default_band, **config.get("stress", {}))
    flip = detect_belief_flip(points, min_strength=min_strength)
    latest = points[-1] if points else None

    return {
        "points": len(points),
        "latest_p": latest.p if latest else None,
        "latest_date": latest.date if latest else None,
        "dispersion": dispersion(latest) if latest else 0.0,
        "velocity": calculate_velocity(points),
        "acceleration": calculate_acceleration(points),
        "jerk": calculate_jerk(points),
        "fragile": detect_fragility(points),
        "belief_flip": {
            "has_flip": flip.has_flip,
            "flip_type": flip.flip_type,
            "strength": flip.strength,
        },
        "stress": {
            "level": stress.level,
            "rationale": stress.rationale,
            "score": stress.score,
        },
        "regime": classify_regime([point.p for point in points]),
        "avg_liquidity": average_liquidity(points, default_liquidity),
    }


def _parse_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _clamp_optional(value: Optional[float]) -> Optional[float]:
    return None if value is None else _clamp(value)


def load_signal_csv(path: Path, default_liquidity: float = DEFAULT_LIQUIDITY) -> List[SignalPoint]:
    """
    Load a signal series from CSV.

    Columns: date, p and optionally low, high, liquidity, sentiment,
    ref_value, concentration, cost_to_move. Probabilities are clamped to
    [0, 1]; an unparseable p reads as 0. Rows failing validation
    (e.g. low > high) are skipped with a warning.

    Args:
        path: CSV file path
        default_liquidity: Liquidity for rows without one

    Returns:
        Points sorted by date ascending; empty if the file does not exist
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Signal file not found: {path}")
        return []

    points = []
    with open(path, newline='') as f:
        for row in csv.DictReader(f):
            p = _parse_float(row.get("p"))
            liquidity = _parse_float(row.get("liquidity"))
            sentiment = (row.get("sentiment") or "").strip()

            fields = {
                "date": (row.get("date") or "").strip(),
                "p": _clamp(p or 0.0),
                "low": _clamp_optional(_parse_float(row.get("low"))),
                "high": _clamp_optional(_parse_float(row.get("high"))),
                "liquidity": _clamp(liquidity) if liquidity is not None else default_liquidity,
                "sentiment": sentiment or None,
                "ref_value": _parse_float(row.get("ref_value")),
                "concentration": _clamp_optional(_parse_float(row.get("concentration"))),
                "cost_to_move": _parse_float(row.get("cost_to_move")),
            }

            try:
                validate_signal_point(fields)
            except ValidationError as e:
                logger.warning(f"Skipping row in {path.name}: {e}")
                continue

            points.append(SignalPoint(**fields))

    return sorted(points, key=lambda point: point.date)
