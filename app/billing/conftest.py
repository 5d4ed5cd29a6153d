"""
Pytest fixtures shared by billing and billing.webhooks tests.

Redis is never reached from tests: get_redis_connection is replaced with
a MagicMock whose SET NX always succeeds.
"""

import pytest

from authentication.tests.factories import UserFactory
from billing.catalog import get_product_catalog
from billing.tests.factories import CreditBalanceFactory, CustomerFactory


@pytest.fixture(autouse=True)
def mock_redis(mocker):
    """Mock the Redis connection used by DistributedLock."""
    redis = mocker.MagicMock()
    redis.set.return_value = True
    redis.eval.return_value = 1
    mocker.patch("billing.locks.get_redis_connection", return_value=redis)
    return redis


@pytest.fixture(autouse=True)
def fresh_product_catalog():
    """Rebuild the cached catalog around every test."""
    get_product_catalog.cache_clear()
    yield
    get_product_catalog.cache_clear()


@pytest.fixture
def user(db):
    """Create a test user."""
    return UserFactory()


@pytest.fixture
def balance(user):
    """A balance row at 0 on the free plan."""
    return CreditBalanceFactory(user=user)


@pytest.fixture
def linked_customer(user):
    """Customer already linked to the test user."""
    return CustomerFactory(user=user, email=user.email)


@pytest.fixture
def unlinked_customer(db):
    """Customer whose email belongs to no user yet."""
    return CustomerFactory(email="future.user@example.com")
