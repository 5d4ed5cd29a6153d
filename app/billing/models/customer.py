"""
Customer model linking a Stripe customer to an application user.

A Customer row is created the first time any event references a Stripe
customer id. Until the customer is linked to a user, purchased credits
are parked on pending_credits / pending_plan and claimed at link time.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class Customer(UUIDPrimaryKeyMixin, BaseModel):
    """
    A Stripe customer as seen by the billing ledger.

    Fields:
        stripe_customer_id: Stripe Customer ID (cus_xxx), unique
        email: Email from Stripe at creation time
        name: Name from Stripe at creation time
        user: Linked application user, null until linked
        pending_credits: Credits bought before the user was linked
        pending_plan: Last subscription plan bought before linkage
    """

    stripe_customer_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Customer ID (cus_xxx)",
    )
    email = models.EmailField(
        max_length=254,
        blank=True,
        default="",
        db_index=True,
        help_text="Customer email captured from Stripe on creation",
    )
    name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Customer name captured from Stripe on creation",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="billing_customers",
        help_text="Application user this customer belongs to",
    )
    pending_credits = models.PositiveIntegerField(
        default=0,
        help_text="Credits awaiting account linkage",
    )
    pending_plan = models.CharField(
        max_length=50,
        null=True,
        blank=True,
        help_text="Plan awaiting account linkage",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Customer"
        verbose_name_plural = "Customers"

    def __str__(self) -> str:
        return f"Customer({self.stripe_customer_id}, {self.email or 'no email'})"

    @property
    def is_linked(self) -> bool:
        return self.user_id is not None
