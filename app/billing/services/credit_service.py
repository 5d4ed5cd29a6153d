"""
Credit accounting service.

CreditService is the only writer of CreditBalance and CreditTransaction.
Every balance change happens inside one database transaction that:

1. Locks the user's CreditBalance row (select_for_update), creating it at 0
2. Checks the idempotency key, if one was given
3. Increments the balance with an F() expression
4. Appends a CreditTransaction with balance_after = the new balance

Concurrent grants to the same user queue on the row lock, so no grant is
lost to a read-modify-write race.

Usage:
    from billing.services import CreditService

    new_balance = CreditService.credit_user(
        user_id=user.pk,
        amount=100,
        description="STARTER renewal: 100 credits",
        source_payment_id="pi_123",
        idempotency_key="invoice:in_123",
    )
"""

from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings
from django.db.models import F
from django.utils import timezone

from core.services import BaseService

from billing.exceptions import BillingValidationError, InsufficientCreditsError
from billing.models import FREE_PLAN, CreditBalance, CreditTransaction


@dataclass
class CreditSummary:
    """Read model for a user's balance, plan and latest transactions."""

    balance: int
    plan: str
    plan_credits_monthly: int
    recent_transactions: list[CreditTransaction]


class CreditService(BaseService):
    """Service for credit balance changes and plan assignment."""

    @staticmethod
    def _lock_balance(user_id: int) -> CreditBalance:
        """Lock the user's balance row, creating it at 0 if absent."""
        balance, _ = CreditBalance.objects.select_for_update().get_or_create(user_id=user_id)
        return balance

    @classmethod
    def credit_user(
        cls,
        user_id: int,
        amount: int,
        description: str,
        source_payment_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> int:
        """
        Apply a signed credit change and record it.

        Args:
            user_id: User whose balance changes
            amount: Signed change; positive for grants
            description: Reason stored on the transaction
            source_payment_id: Stripe PaymentIntent that paid for the grant
            idempotency_key: If a transaction with this key exists, nothing
                is written and the current balance is returned

        Returns:
            The balance after the change

        Raises:
            BillingValidationError: amount is zero
            InsufficientCreditsError: the change would make the balance negative
        """
        if amount == 0:
            raise BillingValidationError(
                "Credit amount must be non-zero",
                details={"user_id": user_id},
            )

        logger = cls.get_logger()
        log_context = {
            "user_id": user_id,
            "amount": amount,
            "idempotency_key": idempotency_key,
        }

        with cls.atomic():
            balance = cls._lock_balance(user_id)

            if (
                idempotency_key
                and CreditTransaction.objects.filter(idempotency_key=idempotency_key).exists()
            ):
                logger.info("Credit change already applied, skipping", extra=log_context)
                return balance.balance

            if balance.balance + amount < 0:
                raise InsufficientCreditsError(
                    f"User {user_id} has {balance.balance} credits, cannot apply {amount}",
                    details={"user_id": user_id, "balance": balance.balance, "amount": amount},
                )

            CreditBalance.objects.filter(pk=balance.pk).update(
                balance=F("balance") + amount,
                updated_at=timezone.now(),
            )
            balance.refresh_from_db(fields=["balance"])

            CreditTransaction.objects.create(
                user_id=user_id,
                amount=amount,
                description=description,
                balance_after=balance.balance,
                source_payment_id=source_payment_id,
                idempotency_key=idempotency_key,
            )

        logger.info(
            f"Applied {amount:+d} credits to user {user_id}",
            extra={**log_context, "balance_after": balance.balance},
        )
        return balance.balance

    @classmethod
    def set_plan(cls, user_id: int, plan: str, monthly_credits: int) -> CreditBalance:
        """Overwrite the user's plan fields. The balance is not touched."""
        with cls.atomic():
            balance = cls._lock_balance(user_id)
            balance.plan = plan
            balance.plan_credits_monthly = monthly_credits
            balance.save(update_fields=["plan", "plan_credits_monthly", "updated_at"])

        cls.get_logger().info(
            f"Set plan for user {user_id} to {plan}",
            extra={"user_id": user_id, "plan": plan, "monthly_credits": monthly_credits},
        )
        return balance

    @classmethod
    def reset_plan(cls, user_id: int) -> CreditBalance:
        """Return the user to the free plan. Granted credits are kept."""
        return cls.set_plan(user_id, FREE_PLAN, 0)

    @classmethod
    def end_plan(cls, user_id: int, plan: str) -> bool:
        """
        Return the user to the free plan if they are still on the given plan.

        Used when a subscription ends: a plan bought since then, or an
        earlier reset, is left alone.

        Returns:
            True if the plan was reset
        """
        with cls.atomic():
            balance = (
                CreditBalance.objects.select_for_update().filter(user_id=user_id).first()
            )
            if balance is None or balance.plan != plan:
                return False
            cls.reset_plan(user_id)
        return True

    @staticmethod
    def get_summary(user_id: int, limit: int | None = None) -> CreditSummary:
        """
        Read the user's balance, plan and most recent transactions.

        Users without a balance row are reported as free with 0 credits.
        """
        limit = limit or settings.BILLING_RECENT_TRANSACTIONS_LIMIT
        balance = CreditBalance.objects.filter(user_id=user_id).first()
        transactions = list(
            CreditTransaction.objects.filter(user_id=user_id).order_by("-created_at")[:limit]
        )
        if balance is None:
            return CreditSummary(
                balance=0,
                plan=FREE_PLAN,
                plan_credits_monthly=0,
                recent_transactions=transactions,
            )
        return CreditSummary(
            balance=balance.balance,
            plan=balance.plan,
            plan_credits_monthly=balance.plan_credits_monthly,
            recent_transactions=transactions,
        )
