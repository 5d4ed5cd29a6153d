"""
Stripe API adapter for billing operations.

All Stripe calls go through StripeAdapter so errors are translated to
billing exceptions and every call is logged with timing. Webhook handlers
use it to re-fetch the authoritative state of objects named in an event
instead of trusting the copies embedded in the payload.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_VERSION: Pinned API version
- STRIPE_MAX_RETRIES: SDK-level network retries (default: 2)

Usage:
    from billing.adapters import StripeAdapter

    event = StripeAdapter.verify_webhook_signature(request.body, signature)
    customer = StripeAdapter.retrieve_customer("cus_123")
    for item in StripeAdapter.list_checkout_line_items("cs_123"):
        price = StripeAdapter.retrieve_price(item.price_id)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any

import stripe
from django.conf import settings

from billing.exceptions import (
    StripeAPIUnavailableError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeSignatureVerificationError,
)


# =============================================================================
# Field Access Helpers
# =============================================================================


def stripe_field(obj: Any, name: str, default: Any = None) -> Any:
    """
    Read a field from a StripeObject or a plain event dict.

    Item access works for both, and avoids clashes between Stripe field
    names and dict methods (a subscription's "items").
    """
    if obj is None:
        return default
    try:
        value = obj[name]
    except (KeyError, TypeError, IndexError):
        return default
    return default if value is None else value


def stripe_id(value: Any) -> str | None:
    """Return the id of an expandable field, expanded or not."""
    if value is None or isinstance(value, str):
        return value
    return stripe_field(value, "id")


def from_timestamp(value: Any) -> datetime | None:
    """Convert a Stripe epoch timestamp to an aware UTC datetime."""
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CustomerResult:
    """
    Customer details from Stripe.

    Attributes:
        id: Customer ID (cus_xxx)
        email: Email on file, empty string if none
        name: Name on file, empty string if none
        deleted: True if the customer was deleted in Stripe
    """

    id: str
    email: str = ""
    name: str = ""
    deleted: bool = False


@dataclass
class LineItemResult:
    """
    One line item of a Checkout Session.

    Attributes:
        id: Line item ID (li_xxx)
        price_id: Price ID (price_xxx)
        quantity: Quantity purchased
    """

    id: str
    price_id: str | None
    quantity: int = 1


@dataclass
class PriceResult:
    """Price details: the product a price belongs to."""

    id: str
    product_id: str | None


@dataclass
class SubscriptionResult:
    """
    Subscription details from Stripe.

    Attributes:
        id: Subscription ID (sub_xxx)
        customer_id: Customer ID (cus_xxx)
        status: Stripe status string
        product_id: Product of the first subscription item
        current_period_start: Start of the current period
        current_period_end: End of the current period
        cancel_at_period_end: Whether Stripe cancels at period end
    """

    id: str
    customer_id: str | None
    status: str
    product_id: str | None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False

    @classmethod
    def from_stripe(cls, subscription: Any) -> SubscriptionResult:
        """
        Build from a StripeObject or an event's data.object dict.

        Newer API versions report the billing period on each subscription
        item instead of the subscription, so both places are read.
        """
        items = stripe_field(stripe_field(subscription, "items"), "data", [])
        first_item = items[0] if items else None
        price = stripe_field(first_item, "price")

        period_start = stripe_field(subscription, "current_period_start") or stripe_field(
            first_item, "current_period_start"
        )
        period_end = stripe_field(subscription, "current_period_end") or stripe_field(
            first_item, "current_period_end"
        )

        return cls(
            id=stripe_field(subscription, "id"),
            customer_id=stripe_id(stripe_field(subscription, "customer")),
            status=stripe_field(subscription, "status", ""),
            product_id=stripe_id(stripe_field(price, "product")),
            current_period_start=from_timestamp(period_start),
            current_period_end=from_timestamp(period_end),
            cancel_at_period_end=bool(stripe_field(subscription, "cancel_at_period_end", False)),
        )


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods; no instance state is kept. Every API
    call translates SDK exceptions through _handle_stripe_error().

    Usage:
        customer = StripeAdapter.retrieve_customer("cus_123")
        subscription = StripeAdapter.retrieve_subscription("sub_123")
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.api_version = settings.STRIPE_API_VERSION
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 2)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _call(cls, operation: str, log_context: dict[str, Any], func, *args, **kwargs):
        """Run one SDK call with timing logs and error translation."""
        cls._configure_stripe()
        logger = cls.get_logger()
        log_context = {"operation": operation, **log_context}

        start_time = time.monotonic()
        logger.debug("Starting Stripe operation", extra=log_context)
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        logger.debug(
            "Stripe operation completed",
            extra={**log_context, "duration_ms": (time.monotonic() - start_time) * 1000},
        )
        return result

    # =========================================================================
    # Retrieval
    # =========================================================================

    @classmethod
    def retrieve_customer(cls, customer_id: str) -> CustomerResult:
        """
        Retrieve a Customer by ID.

        Raises:
            StripeInvalidRequestError: Customer not found
        """
        customer = cls._call(
            "retrieve_customer",
            {"stripe_customer_id": customer_id},
            stripe.Customer.retrieve,
            customer_id,
        )
        return CustomerResult(
            id=stripe_field(customer, "id", customer_id),
            email=stripe_field(customer, "email", ""),
            name=stripe_field(customer, "name", ""),
            deleted=bool(stripe_field(customer, "deleted", False)),
        )

    @classmethod
    def list_checkout_line_items(cls, session_id: str) -> list[LineItemResult]:
        """
        List every line item of a Checkout Session, following pagination.

        Raises:
            StripeInvalidRequestError: Session not found
        """

        def fetch_all() -> list[Any]:
            page = stripe.checkout.Session.list_line_items(session_id, limit=100)
            return list(page.auto_paging_iter())

        raw_items = cls._call(
            "list_checkout_line_items",
            {"checkout_session_id": session_id},
            fetch_all,
        )

        items = []
        for item in raw_items:
            price = stripe_field(item, "price")
            items.append(
                LineItemResult(
                    id=stripe_field(item, "id"),
                    price_id=stripe_id(price),
                    quantity=int(stripe_field(item, "quantity", 1)),
                )
            )
        return items

    @classmethod
    def retrieve_price(cls, price_id: str) -> PriceResult:
        """
        Retrieve a Price to learn which product it belongs to.

        Raises:
            StripeInvalidRequestError: Price not found
        """
        price = cls._call(
            "retrieve_price",
            {"price_id": price_id},
            stripe.Price.retrieve,
            price_id,
        )
        return PriceResult(
            id=stripe_field(price, "id", price_id),
            product_id=stripe_id(stripe_field(price, "product")),
        )

    @classmethod
    def retrieve_subscription(cls, subscription_id: str) -> SubscriptionResult:
        """
        Retrieve a Subscription by ID.

        Raises:
            StripeInvalidRequestError: Subscription not found
        """
        subscription = cls._call(
            "retrieve_subscription",
            {"stripe_subscription_id": subscription_id},
            stripe.Subscription.retrieve,
            subscription_id,
        )
        return SubscriptionResult.from_stripe(subscription)

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify a Stripe webhook signature and parse the event.

        Args:
            payload: Raw request body bytes, exactly as received
            signature: Stripe-Signature header value

        Returns:
            Parsed event dict (the raw JSON, not a StripeObject)

        Raises:
            StripeSignatureVerificationError: Missing or invalid signature,
                or a payload that is not valid JSON
        """
        if not signature:
            raise StripeSignatureVerificationError(
                "Missing Stripe-Signature header",
                stripe_code="missing_signature",
            )

        try:
            stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
            )
        except stripe.SignatureVerificationError as e:
            raise StripeSignatureVerificationError(
                f"Webhook signature verification failed: {e.user_message or e}",
                stripe_code="signature_verification_failed",
            ) from e
        except ValueError as e:
            raise StripeSignatureVerificationError(
                f"Invalid webhook payload: {e}",
                stripe_code="invalid_payload",
            ) from e

        return json.loads(payload)

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to billing exceptions.

        Raises:
            StripeInvalidRequestError: Invalid request, missing object or bad API key
            StripeRateLimitError: Rate limited
            StripeAPIUnavailableError: Network failure, Stripe server error or
                anything unexpected
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise StripeInvalidRequestError(
                str(error.user_message or error),
                stripe_code=error.code,
            ) from error

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        elif isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise StripeAPIUnavailableError(
                f"Unexpected Stripe error: {error}",
                stripe_code="unknown_error",
            ) from error
