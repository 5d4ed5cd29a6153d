"""
Webhook event handlers for Stripe events.

This module provides a handler registry keyed by WebhookEventType and one
handler per recognized event. Handlers re-fetch the Stripe objects they
depend on, resolve products through the catalog and write to the ledger
only through the billing services.

Handlers return a ServiceResult with a small summary dict. Expected
failures (a payload missing required ids) are failed results; anything
unexpected propagates. Either way the dispatcher rolls back and logs the
event as failed.

Usage:
    from billing.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler(WebhookEventType.CHECKOUT_SESSION_COMPLETED)
    def handle_checkout(event: StripeEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(event)
"""

from __future__ import annotations

import logging
from typing import Callable

from django.db import transaction

from core.services import ServiceResult

from billing.adapters import StripeAdapter, SubscriptionResult
from billing.adapters.stripe_adapter import stripe_field, stripe_id
from billing.catalog import ProductEntry, get_product_catalog
from billing.exceptions import WebhookHandlerError
from billing.services import CreditService, CustomerService, SubscriptionService
from billing.webhooks.events import StripeEvent, WebhookEventType

logger = logging.getLogger(__name__)

INITIAL_INVOICE_REASON = "subscription_create"


# =============================================================================
# Handler Registry
# =============================================================================


WEBHOOK_HANDLERS: dict[WebhookEventType, Callable[[StripeEvent], ServiceResult]] = {}


def register_handler(kind: WebhookEventType) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler(WebhookEventType.INVOICE_PAYMENT_SUCCEEDED)
        def handle_invoice(event: StripeEvent) -> ServiceResult:
            ...
    """
    if kind is WebhookEventType.UNRECOGNIZED:
        raise ValueError("Cannot register a handler for unrecognized events")

    def decorator(func: Callable[[StripeEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[kind] = func
        logger.debug(f"Registered webhook handler for {kind.value}")
        return func

    return decorator


def dispatch_webhook(event: StripeEvent) -> ServiceResult:
    """
    Route a verified event to its handler.

    Unrecognized event types are acknowledged without any state change.

    Raises:
        WebhookHandlerError: A recognized event type has no handler
    """
    if event.kind is WebhookEventType.UNRECOGNIZED:
        logger.info(
            f"Ignoring unrecognized event type: {event.type}",
            extra=event.log_context,
        )
        return ServiceResult.success({"action": "ignored"})

    handler = WEBHOOK_HANDLERS.get(event.kind)
    if handler is None:
        raise WebhookHandlerError(
            f"No handler registered for event type: {event.type}",
            details=event.log_context,
        )

    logger.info(f"Dispatching {event.type} to handler", extra=event.log_context)
    return handler(event)


def _resolve_line_item_products(session_id: str) -> list[tuple[str, ProductEntry]]:
    """Fetch a session's line items and keep those sold in the catalog."""
    catalog = get_product_catalog()
    resolved = []

    for item in StripeAdapter.list_checkout_line_items(session_id):
        product_id = None
        if item.price_id:
            product_id = StripeAdapter.retrieve_price(item.price_id).product_id

        entry = catalog.lookup(product_id)
        if entry is None:
            logger.info(
                f"Skipping unknown product {product_id}",
                extra={
                    "checkout_session_id": session_id,
                    "line_item_id": item.id,
                    "product_id": product_id,
                },
            )
            continue
        resolved.append((item.id, entry))

    return resolved


# =============================================================================
# Checkout Handlers
# =============================================================================


@register_handler(WebhookEventType.CHECKOUT_SESSION_COMPLETED)
def handle_checkout_session_completed(event: StripeEvent) -> ServiceResult:
    """
    Grant the credits bought in a completed Checkout Session.

    Each known line item is granted once, keyed on the session and line
    item ids. Purchases by a customer without a linked user are parked
    as pending credits. Subscription products also set the user's plan
    and record the subscription.
    """
    session = event.data_object
    session_id = stripe_field(session, "id")
    stripe_customer_id = stripe_id(stripe_field(session, "customer"))

    if not session_id or not stripe_customer_id:
        logger.error(
            "checkout.session.completed: missing session or customer id",
            extra=event.log_context,
        )
        return ServiceResult.failure(
            "Checkout session has no customer id",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    log_context = {
        **event.log_context,
        "checkout_session_id": session_id,
        "stripe_customer_id": stripe_customer_id,
    }
    logger.info("Processing checkout.session.completed", extra=log_context)

    customer = CustomerService.resolve_customer(stripe_customer_id)
    products = _resolve_line_item_products(session_id)
    subscription_id = stripe_id(stripe_field(session, "subscription"))
    payment_intent_id = stripe_id(stripe_field(session, "payment_intent"))

    granted = 0
    deferred = 0
    with transaction.atomic():
        customer = CustomerService.lock(customer)

        for line_item_id, entry in products:
            if customer.is_linked:
                if entry.credits:
                    CreditService.credit_user(
                        user_id=customer.user_id,
                        amount=entry.credits,
                        description=entry.purchase_description(),
                        source_payment_id=payment_intent_id,
                        idempotency_key=f"checkout:{session_id}:{line_item_id}",
                    )
                    granted += entry.credits
                if entry.is_subscription:
                    CreditService.set_plan(customer.user_id, entry.plan, entry.credits)
            else:
                CustomerService.add_pending(
                    customer,
                    entry.credits,
                    entry.plan if entry.is_subscription else None,
                )
                deferred += entry.credits

            if entry.is_subscription and subscription_id:
                SubscriptionService.record_checkout(customer, subscription_id, entry)

    logger.info(
        "Completed checkout.session.completed",
        extra={**log_context, "granted": granted, "deferred": deferred},
    )
    return ServiceResult.success(
        {
            "action": "granted" if customer.is_linked else "deferred",
            "granted": granted,
            "deferred": deferred,
            "line_items": len(products),
        }
    )


# =============================================================================
# Invoice Handlers
# =============================================================================


def _invoice_subscription_id(invoice) -> str | None:
    """Subscription of an invoice, from either API version's layout."""
    subscription = stripe_id(stripe_field(invoice, "subscription"))
    if subscription:
        return subscription
    details = stripe_field(stripe_field(invoice, "parent"), "subscription_details")
    return stripe_id(stripe_field(details, "subscription"))


@register_handler(WebhookEventType.INVOICE_PAYMENT_SUCCEEDED)
def handle_invoice_payment_succeeded(event: StripeEvent) -> ServiceResult:
    """
    Grant a subscription's monthly credits for a paid renewal invoice.

    The first invoice of a subscription is skipped since its credits were
    granted at checkout. Grants are keyed on the invoice id.
    """
    invoice = event.data_object
    invoice_id = stripe_field(invoice, "id")
    subscription_id = _invoice_subscription_id(invoice)
    log_context = {
        **event.log_context,
        "invoice_id": invoice_id,
        "stripe_subscription_id": subscription_id,
    }

    if not subscription_id:
        logger.info("Ignoring invoice without a subscription", extra=log_context)
        return ServiceResult.success({"action": "ignored"})

    if stripe_field(invoice, "billing_reason") == INITIAL_INVOICE_REASON:
        logger.info("Skipping initial subscription invoice", extra=log_context)
        return ServiceResult.success({"action": "skipped", "reason": INITIAL_INVOICE_REASON})

    if not invoice_id:
        return ServiceResult.failure(
            "Invoice has no id",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    stripe_subscription = StripeAdapter.retrieve_subscription(subscription_id)
    entry = get_product_catalog().lookup(stripe_subscription.product_id)
    if entry is None:
        logger.info(
            f"Skipping renewal for unknown product {stripe_subscription.product_id}",
            extra={**log_context, "product_id": stripe_subscription.product_id},
        )
        return ServiceResult.success({"action": "skipped", "reason": "unknown_product"})

    stripe_customer_id = (
        stripe_id(stripe_field(invoice, "customer")) or stripe_subscription.customer_id
    )
    customer = CustomerService.get_by_stripe_id(stripe_customer_id)
    if customer is None or not customer.is_linked:
        logger.info(
            "Skipping renewal for customer without a linked user",
            extra={**log_context, "stripe_customer_id": stripe_customer_id},
        )
        return ServiceResult.success({"action": "skipped", "reason": "unlinked_customer"})

    if not entry.credits:
        return ServiceResult.success({"action": "skipped", "reason": "no_credits"})

    balance = CreditService.credit_user(
        user_id=customer.user_id,
        amount=entry.credits,
        description=entry.renewal_description(),
        source_payment_id=stripe_id(stripe_field(invoice, "payment_intent")),
        idempotency_key=f"invoice:{invoice_id}",
    )
    return ServiceResult.success(
        {"action": "granted", "granted": entry.credits, "balance": balance}
    )


# =============================================================================
# Subscription Handlers
# =============================================================================


@register_handler(WebhookEventType.CUSTOMER_SUBSCRIPTION_UPDATED)
def handle_subscription_updated(event: StripeEvent) -> ServiceResult:
    """Sync status, plan and billing period onto the local subscription."""
    stripe_subscription = SubscriptionResult.from_stripe(event.data_object)
    if not stripe_subscription.id:
        return ServiceResult.failure(
            "Subscription event has no subscription id",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    entry = get_product_catalog().lookup(stripe_subscription.product_id)
    subscription = SubscriptionService.sync_from_stripe(stripe_subscription, entry)

    if subscription is None:
        return ServiceResult.success({"action": "ignored"})
    return ServiceResult.success(
        {"action": "updated", "status": subscription.status, "plan": subscription.plan}
    )


@register_handler(WebhookEventType.CUSTOMER_SUBSCRIPTION_DELETED)
def handle_subscription_deleted(event: StripeEvent) -> ServiceResult:
    """
    Cancel the local subscription and return its user to the free plan.

    The subscription may already be canceled by an earlier
    customer.subscription.updated event; the plan is still reset as long
    as the user is on the subscription's plan. Credits already granted
    stay on the balance. Once both are done, repeated events change
    nothing.
    """
    subscription_id = stripe_field(event.data_object, "id")
    if not subscription_id:
        return ServiceResult.failure(
            "Subscription event has no subscription id",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    log_context = {**event.log_context, "stripe_subscription_id": subscription_id}

    subscription, changed = SubscriptionService.cancel(subscription_id)
    if subscription is None:
        logger.info("No local subscription to cancel", extra=log_context)
        return ServiceResult.success({"action": "ignored"})

    if subscription.user_id:
        plan_ended = CreditService.end_plan(subscription.user_id, subscription.plan)
    else:
        plan_ended = CustomerService.clear_pending_plan(
            subscription.customer, subscription.plan
        )

    if not changed and not plan_ended:
        logger.info("Subscription already canceled", extra=log_context)
        return ServiceResult.success({"action": "ignored"})

    return ServiceResult.success({"action": "canceled", "user_id": subscription.user_id})
