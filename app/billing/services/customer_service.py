"""
Customer resolution, pending credits and account linkage.

Credits bought by a Stripe customer that is not yet tied to a user are
parked on the Customer row. When the customer is linked (at creation if
the email already belongs to a user, or later when that user signs up)
the pending credits and plan are moved into the ledger.
"""

from __future__ import annotations

from django.contrib.auth import get_user_model
from django.db.models import F
from django.utils import timezone

from core.services import BaseService, ServiceResult

from billing.adapters import StripeAdapter
from billing.catalog import get_product_catalog
from billing.models import Customer, Subscription
from billing.services.credit_service import CreditService


class CustomerService(BaseService):
    """Service for billing customers."""

    @staticmethod
    def get_by_stripe_id(stripe_customer_id: str | None) -> Customer | None:
        if not stripe_customer_id:
            return None
        return Customer.objects.filter(stripe_customer_id=stripe_customer_id).first()

    @staticmethod
    def lock(customer: Customer) -> Customer:
        """Re-read the customer with a row lock. Call inside a transaction."""
        return Customer.objects.select_for_update().get(pk=customer.pk)

    @classmethod
    def resolve_customer(cls, stripe_customer_id: str) -> Customer:
        """
        Return the Customer for a Stripe customer id, creating it if needed.

        On creation the customer is fetched from Stripe for its email and
        name, and linked to the user owning that email if there is one.
        Existing customers are returned as stored; email and name are only
        captured once.

        Raises:
            StripeError: The customer could not be fetched from Stripe
        """
        customer = cls.get_by_stripe_id(stripe_customer_id)
        if customer is not None:
            return customer

        details = StripeAdapter.retrieve_customer(stripe_customer_id)
        user = cls._find_user_by_email(details.email)

        with cls.atomic():
            customer, created = Customer.objects.get_or_create(
                stripe_customer_id=stripe_customer_id,
                defaults={
                    "email": details.email,
                    "name": details.name,
                    "user": user,
                },
            )

        if created:
            cls.get_logger().info(
                f"Created billing customer {stripe_customer_id}",
                extra={
                    "stripe_customer_id": stripe_customer_id,
                    "user_id": customer.user_id,
                },
            )
        return customer

    @staticmethod
    def _find_user_by_email(email: str):
        if not email:
            return None
        return get_user_model().objects.filter(email__iexact=email).first()

    @classmethod
    def add_pending(cls, customer: Customer, credits: int, plan: str | None) -> Customer:
        """
        Park credits (and a plan) on an unlinked customer.

        Credits accumulate; a plan replaces any earlier pending plan. Credit
        packs carry no plan and leave the pending plan unchanged.
        """
        updates = {
            "pending_credits": F("pending_credits") + credits,
            "updated_at": timezone.now(),
        }
        if plan:
            updates["pending_plan"] = plan

        with cls.atomic():
            Customer.objects.filter(pk=customer.pk).update(**updates)
            customer.refresh_from_db(fields=["pending_credits", "pending_plan"])

        cls.get_logger().info(
            f"Deferred {credits} credits for unlinked customer {customer.stripe_customer_id}",
            extra={
                "stripe_customer_id": customer.stripe_customer_id,
                "pending_credits": customer.pending_credits,
                "pending_plan": customer.pending_plan,
            },
        )
        return customer

    @classmethod
    def clear_pending_plan(cls, customer: Customer, plan: str) -> bool:
        """
        Drop a pending plan whose subscription ended before linkage.

        Returns:
            True if the customer still had that plan pending
        """
        updated = Customer.objects.filter(pk=customer.pk, pending_plan=plan).update(
            pending_plan=None,
            updated_at=timezone.now(),
        )
        return updated > 0

    @classmethod
    def link_user(cls, customer: Customer, user) -> ServiceResult[int]:
        """
        Link a customer to a user and claim its pending credits and plan.

        Subscriptions recorded before the link are attached to the user
        too, so later renewals and cancellations reach their balance.

        Returns:
            ServiceResult with the number of credits claimed, or a failure
            if the customer already belongs to another user
        """
        logger = cls.get_logger()

        with cls.atomic():
            locked = cls.lock(customer)

            if locked.user_id is not None and locked.user_id != user.pk:
                return ServiceResult.failure(
                    f"Customer {locked.stripe_customer_id} is linked to another user",
                    error_code="CUSTOMER_ALREADY_LINKED",
                )

            claimed = locked.pending_credits
            pending_plan = locked.pending_plan

            if claimed:
                CreditService.credit_user(
                    user_id=user.pk,
                    amount=claimed,
                    description=f"Claimed {claimed} pending credits",
                )
            if pending_plan:
                entry = get_product_catalog().find_by_plan(pending_plan)
                CreditService.set_plan(user.pk, pending_plan, entry.credits if entry else 0)

            locked.user = user
            locked.pending_credits = 0
            locked.pending_plan = None
            locked.save(update_fields=["user", "pending_credits", "pending_plan", "updated_at"])

            Subscription.objects.filter(customer=locked, user__isnull=True).update(
                user=user,
                updated_at=timezone.now(),
            )

        customer.refresh_from_db()
        logger.info(
            f"Linked customer {customer.stripe_customer_id} to user {user.pk}",
            extra={
                "stripe_customer_id": customer.stripe_customer_id,
                "user_id": user.pk,
                "claimed_credits": claimed,
                "claimed_plan": pending_plan,
            },
        )
        return ServiceResult.success(claimed)

    @classmethod
    def link_customers_by_email(cls, user) -> int:
        """
        Link every unlinked customer whose email matches the user's.

        Returns:
            Total credits claimed
        """
        total = 0
        customers = Customer.objects.filter(user__isnull=True, email__iexact=user.email)
        for customer in customers:
            result = cls.link_user(customer, user)
            if result.success:
                total += result.data
        return total
