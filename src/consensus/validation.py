"""
Input validation for predictions, outcomes and signal points.

Everything entering the core passes through here first; the scoring,
aggregation and classification functions assume validated input.
"""

import math
from typing import Any, Dict, Iterable

import jsonschema
from jsonschema.exceptions import best_match

from .errors import ValidationError


PREDICTION_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["forecaster_id", "market_id", "probability", "confidence", "stake"],
    "properties": {
        "forecaster_id": {"type": "string", "minLength": 1},
        "market_id": {"type": "string", "minLength": 1},
        "platform": {"type": "string"},
        "probability": {"type": "number", "minimum": 0, "maximum": 1},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "stake": {"type": "number", "exclusiveMinimum": 0},
    },
}

SIGNAL_POINT_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["date", "p"],
    "properties": {
        "date": {"type": "string", "minLength": 1},
        "p": {"type": "number", "minimum": 0, "maximum": 1},
        "low": {"type": ["number", "null"], "minimum": 0, "maximum": 1},
        "high": {"type": ["number", "null"], "minimum": 0, "maximum": 1},
        "liquidity": {"type": ["number", "null"], "minimum": 0, "maximum": 1},
        "concentration": {"type": ["number", "null"], "minimum": 0, "maximum": 1},
        "sentiment": {"type": ["string", "null"]},
        "ref_value": {"type": ["number", "null"]},
        "cost_to_move": {"type": ["number", "null"]},
    },
}

_prediction_validator = jsonschema.Draft7Validator(PREDICTION_SCHEMA)
_signal_point_validator = jsonschema.Draft7Validator(SIGNAL_POINT_SCHEMA)


def _raise_first_error(validator: jsonschema.Draft7Validator, instance: Dict[str, Any], label: str) -> None:
    error = best_match(validator.iter_errors(instance))
    if error is None:
        return
    field = ".".join(str(p) for p in error.absolute_path)
    if error.validator == "required":
        # message looks like "'stake' is a required property"
        field = error.message.split("'")[1] if "'" in error.message else field
        raise ValidationError(f"{label} missing required field: {field}", field=field)
    prefix = f"{label} field '{field}'" if field else label
    raise ValidationError(f"{prefix}: {error.message}", field=field)


def _require_finite(instance: Dict[str, Any], keys: Iterable[str], label: str) -> None:
    # NaN slips through minimum/maximum checks
    for key in keys:
        value = instance.get(key)
        if isinstance(value, float) and not math.isfinite(value):
            raise ValidationError(f"{label} field '{key}' must be finite, got {value}", field=key)


def validate_prediction(submission: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a prediction submission.

    Args:
        submission: Dict with forecaster_id, market_id, probability,
            confidence, stake and optional platform

    Returns:
        The submission, unchanged

    Raises:
        ValidationError: If a field is missing or out of range
    """
    _raise_first_error(_prediction_validator, submission, "Prediction")
    _require_finite(submission, ("probability", "confidence", "stake"), "Prediction")
    return submission


def validate_outcome(outcome: Any) -> int:
    """
    Validate a binary market outcome.

    Args:
        outcome: Candidate outcome value

    Returns:
        The outcome as int 0 or 1

    Raises:
        ValidationError: Unless outcome is exactly 0 or 1
    """
    if isinstance(outcome, bool) or not isinstance(outcome, (int, float)):
        raise ValidationError(f"Outcome must be 0 or 1, got {outcome!r}", field="outcome")
    if outcome != 0 and outcome != 1:
        raise ValidationError(f"Outcome must be 0 or 1, got {outcome!r}", field="outcome")
    return int(outcome)


def validate_signal_point(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate a signal point row.

    Raises:
        ValidationError: If p or a bound is outside [0, 1], or low > high
    """
    _raise_first_error(_signal_point_validator, row, "Signal point")
    _require_finite(row, ("p", "low", "high", "liquidity"), "Signal point")

    low = row.get("low")
    high = row.get("high")
    if low is not None and high is not None and low > high:
        raise ValidationError(
            f"Signal point {row['date']}: low ({low}) exceeds high ({high})",
            field="low",
        )
    return row
