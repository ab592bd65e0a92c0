"""
Error taxonomy for the deal lifecycle engine.

Every business-rule violation is raised as a DealError subclass before any
write happens. The API layer renders them through a single exception
handler; `kind` and `status_code` are stable and part of the contract.
"""

from typing import Any, Dict


class DealError(Exception):
    """Base exception for engine errors."""
    kind = "DealError"
    status_code = 400
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": self.message, "details": self.details}


class NotFound(DealError):
    """Raised when a referenced request, bid, consortium or user does not exist."""
    kind = "NotFound"
    status_code = 404


class NotEligible(DealError):
    """Raised when the caller's role or KYC state does not permit the action."""
    kind = "NotEligible"
    status_code = 403


class RequestClosed(DealError):
    """Raised when the request's status or deadline no longer admits the action."""
    kind = "RequestClosed"
    status_code = 409


class DuplicateActiveBid(DealError):
    kind = "DuplicateActiveBid"
    status_code = 409


class InvalidRange(DealError):
    """Raised when a numeric or textual field violates its constraints."""
    kind = "InvalidRange"
    status_code = 422


class OverTarget(DealError):
    kind = "OverTarget"
    status_code = 422


class IncompleteCoverage(DealError):
    kind = "IncompleteCoverage"
    status_code = 422


class IllegalTransition(DealError):
    """Raised when a state machine is asked for a transition it does not allow."""
    kind = "IllegalTransition"
    status_code = 409


class ResubmissionExhausted(DealError):
    kind = "ResubmissionExhausted"
    status_code = 409


class ConcurrentModification(DealError):
    """Raised when another writer changed the request first. Safe to retry."""
    kind = "ConcurrentModification"
    status_code = 409
    retryable = True
