# Overview: Error taxonomy shared by services and routes.

"""
Service errors

Services raise these; routes translate them into JSON responses with the
class's HTTP status. Every error carries a stable machine-readable code and
an optional details dict, e.g.

    {"error": "Insufficient wallet balance", "code": "INSUFFICIENT_BALANCE",
     "details": {"available_paise": 1000, "required_paise": 4500}}

Raising any of these inside a service transaction rolls the whole
transaction back before the error reaches the caller.
"""

from __future__ import annotations


class CanteenError(Exception):
    """Base class for all expected service failures."""
    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class ValidationError(CanteenError):
    """400-level input problem (rejected before any mutation)."""
    status_code = 400
    default_code = "VALIDATION_ERROR"


class PaymentVerificationError(CanteenError):
    """Gateway payment details missing or signature mismatch."""
    status_code = 400
    default_code = "PAYMENT_VERIFICATION_FAILED"


class ForbiddenError(CanteenError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(CanteenError):
    status_code = 404
    default_code = "NOT_FOUND"


class BusinessRuleViolation(CanteenError):
    """409-level conflict with current state (stock, balance, coupon rules)."""
    status_code = 409
    default_code = "BUSINESS_RULE_VIOLATION"


class InvalidTransitionError(BusinessRuleViolation):
    """Order status change not allowed from the current status."""
    status_code = 400
    default_code = "INVALID_TRANSITION"


class InternalError(CanteenError):
    status_code = 500
    default_code = "INTERNAL_ERROR"
