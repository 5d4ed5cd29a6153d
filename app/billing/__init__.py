"""
Billing application.

Receives Stripe webhooks and maintains user credit balances, plans and
subscriptions.

Usage:
    from billing.services import CreditService
    from billing.catalog import get_product_catalog
"""
