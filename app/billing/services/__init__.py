"""
Billing services.

- CreditService: Balance changes, plan assignment, summaries
- CustomerService: Customer resolution, pending credits, account linkage
- SubscriptionService: Subscription upserts and status sync
"""

from billing.services.credit_service import CreditService, CreditSummary
from billing.services.customer_service import CustomerService
from billing.services.subscription_service import UNKNOWN_PLAN, SubscriptionService

__all__ = [
    "CreditService",
    "CreditSummary",
    "CustomerService",
    "SubscriptionService",
    "UNKNOWN_PLAN",
]
