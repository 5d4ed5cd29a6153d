"""
Redis-based distributed lock for webhook processing.

Stripe may deliver the same event to several web workers at once. The
dispatcher holds a DistributedLock keyed on the event id while it checks
the webhook log and runs the handler, so only one delivery of an event is
ever applied.

Usage:
    from billing.locks import DistributedLock

    lock = DistributedLock(f"stripe_event:{event_id}", ttl=60, timeout=10)
    lock.acquire()
    try:
        if not WebhookEvent.objects.has_processed(event_id):
            run_handler()
    finally:
        lock.release()

Note:
    Per-user credit serialization does not use this lock. It relies on
    select_for_update() of the CreditBalance row inside the database
    transaction.
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django_redis import get_redis_connection

from billing.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from redis import Redis


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Features:
        - TTL releases the lock if the holder crashes
        - Token-based ownership so a worker only releases its own lock
        - acquire() polls until the lock is free or the timeout passes

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds
        timeout: Maximum wait time in seconds
    """

    # Atomic check-and-delete so an expired lock taken by another
    # worker is not released by the previous holder
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    POLL_INTERVAL = 0.05

    def __init__(self, key: str, ttl: int = 30, timeout: float = 10.0) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock, waiting up to the timeout.

        Returns:
            True once the lock is held

        Raises:
            LockAcquisitionError: If the lock is held elsewhere and was not
                freed within the timeout
        """
        self._token = str(uuid_module.uuid4())
        redis = self._get_redis()

        end_time = time.monotonic() + self.timeout
        while time.monotonic() < end_time:
            if redis.set(self.key, self._token, nx=True, ex=self.ttl):
                return True
            time.sleep(self.POLL_INTERVAL)

        self._token = None
        raise LockAcquisitionError(
            f"Failed to acquire lock '{self.key}' within {self.timeout}s",
            details={"key": self.key, "timeout": self.timeout},
        )

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Returns:
            True if the lock was released, False if we no longer held it
        """
        if self._token is None:
            return False

        redis = self._get_redis()
        result = redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)
