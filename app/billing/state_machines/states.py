"""
Status enums for billing models.

SubscriptionStatus mirrors the statuses Stripe reports for a subscription.
Transitions are enforced on the Subscription model with django-fsm.
"""

from django.db import models


class SubscriptionStatus(models.TextChoices):
    """
    Status of a Stripe subscription as recorded locally.

    State Flow:
        any open status → any open status (customer.subscription.updated)
        any open status → CANCELED (terminal)

    A canceled subscription is never reopened. Stripe creates a new
    subscription id when a customer subscribes again.
    """

    INCOMPLETE = "incomplete", "Incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired", "Incomplete Expired"
    TRIALING = "trialing", "Trialing"
    ACTIVE = "active", "Active"
    PAST_DUE = "past_due", "Past Due"
    UNPAID = "unpaid", "Unpaid"
    PAUSED = "paused", "Paused"
    CANCELED = "canceled", "Canceled"

    @classmethod
    def open_statuses(cls) -> list[str]:
        """All statuses a subscription can still leave."""
        return [status for status in cls.values if status != cls.CANCELED]


class WebhookEventStatus(models.TextChoices):
    """
    Outcome recorded for one delivery of a Stripe event.

    Every verified delivery appends exactly one row:
        PROCESSED - Handler ran and its effects were committed
        DUPLICATE - Event id was already processed; nothing ran
        FAILED - Handler raised; its effects were rolled back
    """

    PROCESSED = "processed", "Processed"
    DUPLICATE = "duplicate", "Duplicate"
    FAILED = "failed", "Failed"
