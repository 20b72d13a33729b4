"""
Custom exceptions for the Referral Engine

This module defines the typed errors returned by the referral services.
Every error carries a stable machine-readable ``code`` that callers can
render directly (e.g. ``"DISCOUNT_TYPE_NOT_ALLOWED"``).

Hierarchy:
    ReferralEngineError
    ├── BadRequestError
    │   ├── ValidationFailedError
    │   └── ReferralCodeGenerationError
    ├── ForbiddenError
    ├── NotFoundError
    └── InternalError
"""
from typing import Optional


class ReferralEngineError(Exception):
    """Base class for all referral engine errors."""

    default_code = "REFERRAL_ENGINE_ERROR"

    def __init__(self, code: Optional[str] = None, message: Optional[str] = None):
        self.code = code or self.default_code
        self.message = message or self.code
        super().__init__(self.message)


class BadRequestError(ReferralEngineError):
    """
    Raised when a request violates a business rule.

    Example:
        >>> raise BadRequestError("PROFILE_ALREADY_USED_REFERRAL_CODE")
    """

    default_code = "BAD_REQUEST"


class ValidationFailedError(BadRequestError):
    """
    Raised when an input value is out of range or not allowed.

    The offending field is kept in ``field`` so callers can point at it.

    Example:
        >>> if data.total_discount < 0:
        ...     raise ValidationFailedError(
        ...         "TOTAL_DISCOUNT_MUST_BE_POSITIVE", field="total_discount"
        ...     )
    """

    default_code = "VALIDATION_FAILED"

    def __init__(self, code: Optional[str] = None, field: Optional[str] = None, message: Optional[str] = None):
        self.field = field
        super().__init__(code, message)


class ReferralCodeGenerationError(BadRequestError):
    """
    Raised when no unique referral code could be generated.

    Every attempt collided with an existing code value. This shares the
    bad-request family with validation errors but indicates a structural
    problem (alphabet too small or the store misbehaving), so it is logged
    at error level by the issuance service.
    """

    default_code = "FAILED_TO_GENERATE_UNIQUE_REFERRAL_CODE"


class ForbiddenError(ReferralEngineError):
    """Raised when the actor lacks the role required for an operation."""

    default_code = "FORBIDDEN"


class NotFoundError(ReferralEngineError):
    """Raised when a referenced entity does not exist."""

    default_code = "NOT_FOUND"


class InternalError(ReferralEngineError):
    """
    Raised when storage fails or something unexpected happens.

    The underlying exception is chained (``raise ... from exc``) for logs;
    the public message never includes it.
    """

    default_code = "INTERNAL_SERVER_ERROR"

    def __init__(self, code: Optional[str] = None, message: Optional[str] = None):
        super().__init__(code, message or "Internal server error")
