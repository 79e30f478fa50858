"""
Error taxonomy shared by the consensus core.

ValidationError - malformed input (outcome not 0/1, probability out of range)
ConflictError   - state transition already taken (market already resolved)
NotFoundError   - unknown market, forecaster or prediction
"""


class ConsensusError(Exception):
    """Base class for consensus core errors."""
    pass


class ValidationError(ConsensusError):
    """Raised when an input fails validation."""

    def __init__(self, message: str, field: str = ""):
        self.field = field
        super().__init__(message)


class ConflictError(ConsensusError):
    """Raised when an operation conflicts with existing state."""
    pass


class NotFoundError(ConsensusError):
    """Raised when a referenced record does not exist."""
    pass
