"""
Billing domain models.

- Customer: Stripe customer, optionally linked to a user, with pending credits
- CreditBalance: Per-user running balance and plan
- CreditTransaction: Append-only log of balance changes
- Subscription: Stripe subscription granting plan credits
- WebhookEvent: One row per verified Stripe webhook delivery
"""

from billing.models.credit import FREE_PLAN, CreditBalance, CreditTransaction
from billing.models.customer import Customer
from billing.models.subscription import Subscription
from billing.models.webhook_event import WebhookEvent

__all__ = [
    "FREE_PLAN",
    "CreditBalance",
    "CreditTransaction",
    "Customer",
    "Subscription",
    "WebhookEvent",
]
