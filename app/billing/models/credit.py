"""
Credit ledger models.

CreditBalance holds one running balance per user. CreditTransaction is the
append-only log that justifies it: every change to a balance is written in
the same database transaction as exactly one CreditTransaction whose
balance_after equals the new balance. Use CreditService for all writes.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

FREE_PLAN = "free"


class CreditBalance(BaseModel):
    """
    Current credit balance and plan for one user.

    Fields:
        user: Owner (one row per user)
        balance: Spendable credits, never negative
        plan: Current plan name ("free" when not subscribed)
        plan_credits_monthly: Credits the current plan grants per period
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="credit_balance",
        help_text="User owning this balance",
    )
    balance = models.BigIntegerField(
        default=0,
        help_text="Current credit balance",
    )
    plan = models.CharField(
        max_length=50,
        default=FREE_PLAN,
        help_text="Current plan name",
    )
    plan_credits_monthly = models.PositiveIntegerField(
        default=0,
        help_text="Credits granted per billing period by the current plan",
    )

    class Meta:
        verbose_name = "Credit Balance"
        verbose_name_plural = "Credit Balances"
        constraints = [
            models.CheckConstraint(
                condition=Q(balance__gte=0),
                name="credit_balance_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"CreditBalance(user={self.user_id}, {self.balance}, {self.plan})"


class CreditTransaction(UUIDPrimaryKeyMixin, models.Model):
    """
    One immutable change to a user's credit balance.

    Fields:
        user: User whose balance changed
        amount: Signed change applied
        description: Human-readable reason ("STARTER renewal: 100 credits")
        balance_after: Balance immediately after this change
        source_payment_id: Stripe PaymentIntent that paid for it, if any
        idempotency_key: Unique key that blocks repeated grants
            (e.g. "invoice:in_123"), null for ungated changes
        created_at: When the change was recorded
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this transaction was recorded",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="credit_transactions",
        help_text="User whose balance changed",
    )
    amount = models.BigIntegerField(
        help_text="Signed credit change",
    )
    description = models.CharField(
        max_length=255,
        help_text="Reason for the change",
    )
    balance_after = models.BigIntegerField(
        help_text="Balance after this change was applied",
    )
    source_payment_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe PaymentIntent ID (pi_xxx) behind this change",
    )
    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Unique key to prevent duplicate grants",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Credit Transaction"
        verbose_name_plural = "Credit Transactions"
        indexes = [
            models.Index(fields=["user", "created_at"], name="billing_cre_user_id_0b7f3e_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~Q(amount=0),
                name="credit_transaction_amount_non_zero",
            ),
            models.CheckConstraint(
                condition=Q(balance_after__gte=0),
                name="credit_transaction_balance_after_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.description} ({self.amount:+d}, balance {self.balance_after})"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("CreditTransaction rows are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("CreditTransaction rows are immutable")
