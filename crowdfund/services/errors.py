"""Error taxonomy for the proposal engine.

Every error leaves the proposal data unchanged. The API layer maps each class
onto an HTTP status via its ``code``.
"""
from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for all proposal engine errors"""
    code = "engine_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.extra}


class ValidationError(EngineError):
    """Malformed creation parameters or identities"""
    code = "validation_error"


class DuplicateProposalId(EngineError):
    code = "duplicate_proposal_id"


class NotFound(EngineError):
    code = "not_found"


class Unauthorized(EngineError):
    """Caller lacks the proposer role"""
    code = "unauthorized"


class InvalidState(EngineError):
    """Operation not legal in the current lifecycle state"""
    code = "invalid_state"


class ProposalNotAcceptingInvestment(EngineError):
    code = "proposal_not_accepting_investment"


class FundingCapExceeded(EngineError):
    code = "funding_cap_exceeded"


class ThresholdNotReached(EngineError):
    code = "threshold_not_reached"


class CooldownNotElapsed(EngineError):
    """Distribution attempted before the cooldown ended"""
    code = "cooldown_not_elapsed"

    def __init__(self, message: str, remaining_seconds: int):
        super().__init__(message, remaining_seconds=remaining_seconds)
        self.remaining_seconds = remaining_seconds


class AmountError(EngineError, ArithmeticError):
    """Overflow, underflow or an otherwise unusable amount"""
    code = "arithmetic_error"


class InvalidAmount(AmountError):
    """Amount that must be positive was zero or negative"""


class TransferFailed(EngineError):
    """External fund transfer did not complete"""
    code = "transfer_failed"

    def __init__(self, message: str, reference: Optional[str] = None):
        super().__init__(message, reference=reference)
        self.reference = reference


class IdempotencyConflict(EngineError):
    """Idempotency key reused for a different request"""
    code = "idempotency_conflict"


class JournalError(EngineError):
    """Event journal could not be written"""
    code = "journal_error"
