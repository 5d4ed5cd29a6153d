"""
Billing app configuration.

This app turns Stripe webhook events into a per-user credit ledger:
- Product catalog mapping Stripe products to credit grants
- Credit balances with an append-only transaction log
- Subscription records kept in sync with Stripe
- Webhook verification, dispatch and audit logging
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"

    def ready(self):
        """Register webhook handlers and the catalog reset receiver."""
        from billing import catalog  # noqa: F401
        from billing.webhooks import handlers  # noqa: F401
