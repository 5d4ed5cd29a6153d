"""
Webhook handling for Stripe events.

Events are verified, deduplicated under a per-event lock, handled
synchronously and logged with one WebhookEvent row per delivery.

Usage:
    # In urls.py
    from billing.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""
