"""
Subscription record upserts and status synchronization.

All writes lock the Subscription row first. A canceled subscription is
terminal: later updates for it are ignored and it is never reactivated.
"""

from __future__ import annotations

from django.db import IntegrityError, transaction
from django.utils import timezone

from core.services import BaseService

from billing.adapters import SubscriptionResult
from billing.catalog import ProductEntry
from billing.models import Customer, Subscription
from billing.state_machines import SubscriptionStatus

UNKNOWN_PLAN = "unknown"


class SubscriptionService(BaseService):
    """Service for Subscription records."""

    @staticmethod
    def _locked(stripe_subscription_id: str) -> Subscription | None:
        return (
            Subscription.objects.select_for_update()
            .filter(stripe_subscription_id=stripe_subscription_id)
            .first()
        )

    @classmethod
    def record_checkout(
        cls,
        customer: Customer,
        stripe_subscription_id: str,
        entry: ProductEntry,
    ) -> Subscription:
        """
        Upsert the subscription bought in a checkout session as ACTIVE.

        The period start is the time of checkout; the period end arrives
        with the subscription.updated event.
        """
        logger = cls.get_logger()
        now = timezone.now()
        log_context = {
            "stripe_subscription_id": stripe_subscription_id,
            "stripe_customer_id": customer.stripe_customer_id,
            "plan": entry.plan,
        }

        with cls.atomic():
            subscription = cls._locked(stripe_subscription_id)

            if subscription is None:
                try:
                    with transaction.atomic():
                        subscription = Subscription.objects.create(
                            customer=customer,
                            user_id=customer.user_id,
                            stripe_subscription_id=stripe_subscription_id,
                            stripe_product_id=entry.product_id,
                            plan=entry.plan,
                            status=SubscriptionStatus.ACTIVE,
                            credits_monthly=entry.credits,
                            current_period_start=now,
                        )
                    logger.info("Recorded new subscription", extra=log_context)
                    return subscription
                except IntegrityError:
                    # Created concurrently by another delivery
                    subscription = cls._locked(stripe_subscription_id)

            if subscription.is_canceled:
                logger.info("Ignoring checkout for canceled subscription", extra=log_context)
                return subscription

            subscription.customer = customer
            subscription.user_id = customer.user_id or subscription.user_id
            subscription.stripe_product_id = entry.product_id
            subscription.plan = entry.plan
            subscription.credits_monthly = entry.credits
            subscription.current_period_start = now
            if subscription.status != SubscriptionStatus.ACTIVE:
                subscription.apply_status(SubscriptionStatus.ACTIVE)
            subscription.save()

        logger.info("Updated subscription from checkout", extra=log_context)
        return subscription

    @classmethod
    def sync_from_stripe(
        cls,
        stripe_subscription: SubscriptionResult,
        entry: ProductEntry | None,
    ) -> Subscription | None:
        """
        Apply a subscription.updated event to the local record.

        Products no longer in the catalog are recorded as plan "unknown"
        with 0 monthly credits. Returns None when no local record exists.
        """
        logger = cls.get_logger()
        log_context = {
            "stripe_subscription_id": stripe_subscription.id,
            "status": stripe_subscription.status,
            "product_id": stripe_subscription.product_id,
        }

        with cls.atomic():
            subscription = cls._locked(stripe_subscription.id)

            if subscription is None:
                logger.info("No local subscription to update", extra=log_context)
                return None

            if subscription.is_canceled:
                logger.info("Ignoring update for canceled subscription", extra=log_context)
                return subscription

            subscription.plan = (entry.plan if entry else None) or UNKNOWN_PLAN
            subscription.credits_monthly = entry.credits if entry else 0
            if stripe_subscription.product_id:
                subscription.stripe_product_id = stripe_subscription.product_id
            subscription.current_period_end = stripe_subscription.current_period_end
            subscription.cancel_at_period_end = stripe_subscription.cancel_at_period_end

            new_status = stripe_subscription.status
            if new_status == SubscriptionStatus.CANCELED:
                subscription.cancel()
            elif new_status in SubscriptionStatus.open_statuses():
                subscription.apply_status(new_status)
            else:
                logger.warning(
                    f"Unrecognized subscription status '{new_status}', keeping {subscription.status}",
                    extra=log_context,
                )

            subscription.save()

        logger.info("Synced subscription from Stripe", extra=log_context)
        return subscription

    @classmethod
    def cancel(cls, stripe_subscription_id: str) -> tuple[Subscription | None, bool]:
        """
        Move a subscription to CANCELED.

        Returns:
            (subscription, changed). changed is False when the record does
            not exist or was already canceled.
        """
        with cls.atomic():
            subscription = cls._locked(stripe_subscription_id)
            if subscription is None or subscription.is_canceled:
                return subscription, False

            subscription.cancel()
            subscription.save()

        cls.get_logger().info(
            "Canceled subscription",
            extra={"stripe_subscription_id": stripe_subscription_id},
        )
        return subscription, True
