"""
Tests for the billing app.

- test_catalog.py: Product catalog lookup and configuration
- test_models.py: Ledger model invariants and subscription transitions
- test_credit_service.py: Balance changes, idempotency, plans
- test_customer_service.py: Customer resolution, pending credits, linkage
- test_subscription_service.py: Subscription upserts and sync
- test_concurrency.py: Concurrent grants (PostgreSQL only)
- test_locks.py: DistributedLock
- test_adapters.py: StripeAdapter error translation and parsing
- test_tasks.py: Celery tasks
- test_views.py: Credit summary API

Usage:
    pytest app/billing/
"""
