"""
Product catalog mapping Stripe product ids to credit grants.

The catalog is built once per process from settings.BILLING_PRODUCT_CATALOG
and exposed read-only. Unknown product ids are an expected outcome: callers
receive None, log it, and move on to the next line item.

Usage:
    from billing.catalog import get_product_catalog

    entry = get_product_catalog().lookup("prod_TX1iwTUdlTE1Ku")
    if entry is None:
        logger.info("Skipping unknown product")
    elif entry.is_subscription:
        CreditService.set_plan(user, entry.plan, entry.credits)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Any

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.core.signals import setting_changed
from django.dispatch import receiver

logger = logging.getLogger(__name__)


class ProductKind(str, Enum):
    """What buying the product grants."""

    SUBSCRIPTION = "subscription"
    CREDITS = "credits"


@dataclass(frozen=True)
class ProductEntry:
    """
    One purchasable Stripe product.

    Attributes:
        product_id: Stripe product id (prod_xxx)
        credits: Credits granted per purchase or per billing period
        kind: SUBSCRIPTION for plans, CREDITS for one-time packs
        plan: Plan name for subscriptions, None for credit packs
    """

    product_id: str
    credits: int
    kind: ProductKind
    plan: str | None = None

    def __post_init__(self) -> None:
        if self.credits < 0:
            raise ValueError(f"credits must be >= 0 for {self.product_id}")
        if self.kind is ProductKind.SUBSCRIPTION and not self.plan:
            raise ValueError(f"subscription product {self.product_id} needs a plan")

    @property
    def is_subscription(self) -> bool:
        return self.kind is ProductKind.SUBSCRIPTION

    @property
    def plan_label(self) -> str:
        return (self.plan or "credits").upper()

    def purchase_description(self) -> str:
        """Transaction description for a checkout grant."""
        if self.is_subscription:
            return f"{self.plan_label} subscription: {self.credits} credits"
        return f"Purchased {self.credits} credits"

    def renewal_description(self) -> str:
        """Transaction description for a recurring invoice grant."""
        return f"{self.plan_label} renewal: {self.credits} credits"


class ProductCatalog:
    """
    Immutable lookup table of ProductEntry objects keyed by product id.

    Build it with from_mapping() using the settings format:

        {
            "prod_xxx": {"credits": 100, "plan": "starter", "kind": "subscription"},
            "prod_yyy": {"credits": 50, "kind": "credits"},
        }
    """

    def __init__(self, entries: Iterable[ProductEntry]) -> None:
        self._entries: Mapping[str, ProductEntry] = MappingProxyType(
            {entry.product_id: entry for entry in entries}
        )

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Mapping[str, Any]]) -> ProductCatalog:
        entries = []
        for product_id, config in raw.items():
            try:
                entries.append(
                    ProductEntry(
                        product_id=product_id,
                        credits=int(config["credits"]),
                        kind=ProductKind(config["kind"]),
                        plan=config.get("plan"),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise ImproperlyConfigured(
                    f"Invalid BILLING_PRODUCT_CATALOG entry for {product_id}: {e}"
                ) from e
        return cls(entries)

    @property
    def entries(self) -> Mapping[str, ProductEntry]:
        return self._entries

    def lookup(self, product_id: str | None) -> ProductEntry | None:
        """Return the entry for a product id, or None if it is not sold here."""
        if not product_id:
            return None
        return self._entries.get(product_id)

    def find_by_plan(self, plan: str | None) -> ProductEntry | None:
        """
        Return the first subscription entry for a plan name.

        Used when a pending plan is claimed and only the plan name was
        stored on the customer.
        """
        if not plan:
            return None
        for entry in self._entries.values():
            if entry.is_subscription and entry.plan == plan:
                return entry
        return None

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._entries

    def __iter__(self) -> Iterator[ProductEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


@lru_cache(maxsize=1)
def get_product_catalog() -> ProductCatalog:
    """Build the process-wide catalog from settings on first use."""
    catalog = ProductCatalog.from_mapping(settings.BILLING_PRODUCT_CATALOG)
    logger.info(f"Loaded product catalog with {len(catalog)} products")
    return catalog


@receiver(setting_changed)
def reset_product_catalog(*, setting, **kwargs):
    """Rebuild the catalog when tests override BILLING_PRODUCT_CATALOG."""
    if setting == "BILLING_PRODUCT_CATALOG":
        get_product_catalog.cache_clear()
