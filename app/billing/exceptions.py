"""
Billing-specific exceptions.

Exception Hierarchy:
    BillingError (base for the billing domain)
    ├── BillingValidationError - Invalid service input
    ├── InsufficientCreditsError - Grant would make a balance negative
    ├── WebhookPayloadError - Event is missing data a handler needs
    ├── WebhookHandlerError - Handler reported a failed ServiceResult
    └── StripeError - Base for all Stripe errors
        ├── StripeInvalidRequestError - Invalid request or missing object (permanent)
        │   └── StripeSignatureVerificationError - Bad or missing webhook signature
        ├── StripeRateLimitError - Rate limited (transient)
        └── StripeAPIUnavailableError - Network or Stripe server error (transient)

    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from billing.exceptions import InsufficientCreditsError

    raise InsufficientCreditsError(
        f"User {user_id} has {balance} credits, cannot apply {amount}",
        details={"user_id": user_id, "balance": balance, "amount": amount},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError, ValidationError

if TYPE_CHECKING:
    from typing import Any


class BillingError(BaseApplicationError):
    """
    Base exception for all billing operations.

    Webhook failures are recorded with this error's message, so messages
    should name the Stripe object involved.
    """

    default_error_code: str = "BILLING_ERROR"


class BillingValidationError(BillingError, ValidationError):
    """Raised when a billing service receives invalid input."""

    default_error_code: str = "BILLING_VALIDATION_ERROR"


class InsufficientCreditsError(BillingError):
    """
    Raised when applying an amount would leave a credit balance negative.

    Balances are never allowed below zero; the grant is rejected and no
    transaction row is written.
    """

    default_error_code: str = "INSUFFICIENT_CREDITS"


class WebhookPayloadError(BillingError):
    """Raised when a verified event lacks fields its handler requires."""

    default_error_code: str = "INVALID_WEBHOOK_PAYLOAD"


class WebhookHandlerError(BillingError):
    """
    Raised by the dispatcher when a handler returns a failed ServiceResult.

    Raising rolls back everything the handler wrote before it reported
    the failure.
    """

    default_error_code: str = "WEBHOOK_HANDLER_FAILED"


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(BillingError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's error code, when Stripe supplied one
        is_retryable: Whether the same call may succeed later

    Webhook handlers let these propagate. The event is logged as failed
    and Stripe redelivers it, which is the only retry mechanism.
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code


class StripeInvalidRequestError(StripeError):
    """
    Invalid request sent to Stripe, or the requested object does not exist.

    Permanent: repeating the same call will not succeed.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


class StripeSignatureVerificationError(StripeInvalidRequestError):
    """
    Webhook payload failed signature verification.

    The message is returned to the caller in the 400 response body.
    """

    default_error_code: str = "INVALID_WEBHOOK_SIGNATURE"


class StripeRateLimitError(StripeError):
    """Too many requests to Stripe. Transient."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """Stripe could not be reached or returned a server error. Transient."""

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


# =============================================================================
# Concurrency Exceptions
# =============================================================================


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock cannot be acquired.

    Another worker holds the lock and it was not released within the
    timeout. For webhook processing this means a concurrent delivery of
    the same event is still running; the failure is logged and Stripe
    retries later.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
