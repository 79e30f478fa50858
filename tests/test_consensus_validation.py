"""
Tests for src/consensus/validation.py - Input validation.
"""

import pytest

from src.consensus.errors import ValidationError
from src.consensus.validation import validate_outcome, validate_prediction, validate_signal_point


@pytest.fixture
def submission():
    return {
        "forecaster_id": "f1",
        "market_id": "m1",
        "probability": 0.6,
        "confidence": 0.8,
        "stake": 5.0,
    }


class TestValidatePrediction:
    """Tests for validate_prediction function."""

    def test_valid(self, submission):
        assert validate_prediction(submission) is submission

    def test_bounds_inclusive(self, submission):
        submission.update(probability=0.0, confidence=1.0)
        validate_prediction(submission)
        submission.update(probability=1.0, confidence=0.0)
        validate_prediction(submission)

    def test_missing_field(self, submission):
        del submission["stake"]

        with pytest.raises(ValidationError) as exc_info:
            validate_prediction(submission)

        assert exc_info.value.field == "stake"
        assert "missing required field: stake" in str(exc_info.value)

    def test_empty_forecaster_id(self, submission):
        submission["forecaster_id"] = ""

        with pytest.raises(ValidationError) as exc_info:
            validate_prediction(submission)

        assert exc_info.value.field == "forecaster_id"

    def test_string_probability(self, submission):
        submission["probability"] = "0.6"

        with pytest.raises(ValidationError):
            validate_prediction(submission)

    def test_infinite_stake(self, submission):
        submission["stake"] = float("inf")

        with pytest.raises(ValidationError) as exc_info:
            validate_prediction(submission)

        assert exc_info.value.field == "stake"


class TestValidateOutcome:
    """Tests for validate_outcome function."""

    @pytest.mark.parametrize("outcome", [0, 1, 0.0, 1.0])
    def test_binary(self, outcome):
        assert validate_outcome(outcome) in (0, 1)
        assert isinstance(validate_outcome(outcome), int)

    @pytest.mark.parametrize("outcome", [0.5, 2, -1, None, "0", True, False, float("nan")])
    def test_rejected(self, outcome):
        with pytest.raises(ValidationError) as exc_info:
            validate_outcome(outcome)

        assert exc_info.value.field == "outcome"


class TestValidateSignalPoint:

    def test_valid(self):
        row = {"date": "2026-01-01", "p": 0.5, "low": 0.4, "high": 0.6, "liquidity": 1.0}
        assert validate_signal_point(row) is row

    def test_optional_fields_may_be_none(self):
        validate_signal_point({"date": "2026-01-01", "p": 0.5, "low": None, "high": None})

    def test_p_out_of_range(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_signal_point({"date": "2026-01-01", "p": 1.5})

        assert exc_info.value.field == "p"

    def test_inverted_band(self):
        with pytest.raises(ValidationError, match="exceeds high"):
            validate_signal_point({"date": "2026-01-01", "p": 0.5, "low": 0.7, "high": 0.3})
