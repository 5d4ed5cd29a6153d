"""
External service adapters for billing.
"""

from billing.adapters.stripe_adapter import (
    CustomerResult,
    LineItemResult,
    PriceResult,
    StripeAdapter,
    SubscriptionResult,
)

__all__ = [
    "CustomerResult",
    "LineItemResult",
    "PriceResult",
    "StripeAdapter",
    "SubscriptionResult",
]
