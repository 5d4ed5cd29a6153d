"""
Pytest fixtures for webhook tests.

FakeStripe stands in for the Stripe API behind StripeAdapter: tests
register customers, prices, checkout line items and subscriptions, and
the adapter's retrieval methods answer from those tables.
"""

import pytest

from billing.adapters import (
    CustomerResult,
    LineItemResult,
    PriceResult,
    StripeAdapter,
    SubscriptionResult,
)
from billing.exceptions import StripeInvalidRequestError


class FakeStripe:
    """In-memory Stripe objects served through patched StripeAdapter methods."""

    def __init__(self, mocker):
        self.customers: dict[str, CustomerResult] = {}
        self.prices: dict[str, PriceResult] = {}
        self.line_items: dict[str, list[LineItemResult]] = {}
        self.subscriptions: dict[str, SubscriptionResult] = {}

        self.retrieve_customer = mocker.patch.object(
            StripeAdapter, "retrieve_customer", side_effect=self._get(self.customers)
        )
        self.retrieve_price = mocker.patch.object(
            StripeAdapter, "retrieve_price", side_effect=self._get(self.prices)
        )
        self.list_checkout_line_items = mocker.patch.object(
            StripeAdapter, "list_checkout_line_items", side_effect=self._get(self.line_items)
        )
        self.retrieve_subscription = mocker.patch.object(
            StripeAdapter, "retrieve_subscription", side_effect=self._get(self.subscriptions)
        )

    @staticmethod
    def _get(table):
        def lookup(object_id):
            try:
                return table[object_id]
            except KeyError:
                raise StripeInvalidRequestError(
                    f"No such object: '{object_id}'", stripe_code="resource_missing"
                ) from None

        return lookup

    def add_customer(self, customer_id, email="", name=""):
        self.customers[customer_id] = CustomerResult(id=customer_id, email=email, name=name)

    def add_checkout(self, session_id, product_ids):
        """Register a session whose line items each use a price of the given product."""
        items = []
        for index, product_id in enumerate(product_ids, start=1):
            price_id = f"price_{session_id}_{index}"
            self.prices[price_id] = PriceResult(id=price_id, product_id=product_id)
            items.append(LineItemResult(id=f"li_{session_id}_{index}", price_id=price_id))
        self.line_items[session_id] = items

    def add_subscription(self, subscription_id, customer_id, product_id, status="active"):
        self.subscriptions[subscription_id] = SubscriptionResult(
            id=subscription_id,
            customer_id=customer_id,
            status=status,
            product_id=product_id,
        )


@pytest.fixture
def fake_stripe(mocker):
    """Patch StripeAdapter retrieval with in-memory Stripe objects."""
    return FakeStripe(mocker)
