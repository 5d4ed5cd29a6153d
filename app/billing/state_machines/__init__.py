"""
Status enums for billing models.
"""

from billing.state_machines.states import SubscriptionStatus, WebhookEventStatus

__all__ = [
    "SubscriptionStatus",
    "WebhookEventStatus",
]
