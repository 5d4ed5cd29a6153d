"""
Subscription model mirroring Stripe subscriptions that grant plan credits.

Records are upserted by stripe_subscription_id from checkout and kept in
sync by customer.subscription.* events. Status changes go through
django-fsm transitions so a canceled subscription can never be reopened.

Usage:
    from billing.models import Subscription

    subscription = Subscription.objects.get(stripe_subscription_id="sub_123")
    if not subscription.is_canceled:
        subscription.cancel()
        subscription.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import RETURN_VALUE, FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from billing.state_machines import SubscriptionStatus

OPEN_STATUSES = SubscriptionStatus.open_statuses()


class Subscription(UUIDPrimaryKeyMixin, BaseModel):
    """
    A Stripe subscription and the plan credits it grants.

    Fields:
        customer: Billing customer paying for the subscription
        user: Linked user, copied from the customer when known
        stripe_subscription_id: Stripe Subscription ID (sub_xxx), unique
        stripe_product_id: Product of the subscription's first item
        plan: Plan name from the catalog ("unknown" if no longer sold)
        status: Stripe status (managed by FSM)
        credits_monthly: Credits granted per billing period
        current_period_start / current_period_end: Billing period bounds
        cancel_at_period_end: Whether Stripe will cancel at period end
        canceled_at: When the subscription reached CANCELED

    State Transitions:
        apply_status(): any open status → any open status
        cancel(): any open status → CANCELED (terminal)
    """

    customer = models.ForeignKey(
        "billing.Customer",
        on_delete=models.PROTECT,
        related_name="subscriptions",
        help_text="Billing customer paying for this subscription",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="billing_subscriptions",
        help_text="Linked application user",
    )

    stripe_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Subscription ID (sub_xxx)",
    )
    stripe_product_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Product ID (prod_xxx) of the subscribed plan",
    )
    plan = models.CharField(
        max_length=50,
        help_text="Plan name",
    )

    status = FSMField(
        default=SubscriptionStatus.ACTIVE,
        choices=SubscriptionStatus.choices,
        db_index=True,
        help_text="Stripe subscription status (managed by FSM)",
    )

    credits_monthly = models.PositiveIntegerField(
        default=0,
        help_text="Credits granted per billing period",
    )
    current_period_start = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Start of current billing period",
    )
    current_period_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="End of current billing period",
    )
    cancel_at_period_end = models.BooleanField(
        default=False,
        help_text="Whether subscription will cancel at period end",
    )
    canceled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When subscription was canceled",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        indexes = [
            models.Index(fields=["user", "status"], name="billing_sub_user_id_5c2a41_idx"),
            models.Index(fields=["customer", "status"], name="billing_sub_custome_9e1d07_idx"),
        ]

    def __str__(self) -> str:
        return f"Subscription({self.stripe_subscription_id}, {self.plan}, {self.status})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=OPEN_STATUSES,
        target=RETURN_VALUE(*OPEN_STATUSES),
    )
    def apply_status(self, new_status: str) -> str:
        """
        Move to another open status reported by Stripe.

        Use cancel() for CANCELED.
        """
        return new_status

    @transition(
        field=status,
        source=OPEN_STATUSES,
        target=SubscriptionStatus.CANCELED,
    )
    def cancel(self):
        """Transition: any open status -> CANCELED."""
        self.canceled_at = timezone.now()

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED
