"""
URL configuration for the billing app.

Routes:
    - POST /webhooks/stripe/ - Stripe webhook endpoint
    - GET /credits/ - Credit summary for the current user

All routes are prefixed with /api/v1/billing/ when included in the main URLconf.
"""

from django.urls import path

from billing.views import CreditSummaryView
from billing.webhooks.views import stripe_webhook

app_name = "billing"

urlpatterns = [
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    path("credits/", CreditSummaryView.as_view(), name="credit_summary"),
]
