"""
Tests for Stripe webhook handling.

- test_events.py: StripeEvent parsing and event types
- test_handlers.py: Handler registry and per-event handlers
- test_dispatcher.py: Locking, deduplication and the webhook log
- test_views.py: HTTP endpoint
"""
