"""
Webhook dispatcher: lock, deduplicate, handle and log one Stripe event.

For every verified event the dispatcher appends exactly one WebhookEvent
row:

    processed  - handler ran; row committed with the handler's writes
    duplicate  - a processed row already existed for the event id
    failed     - lock, handler or ledger error; handler writes rolled back

The duplicate check and the handler run under a Redis lock keyed on the
event id, so concurrent redeliveries of one event apply it at most once.
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.db import transaction

from billing.exceptions import WebhookHandlerError
from billing.locks import DistributedLock
from billing.models import WebhookEvent
from billing.webhooks.events import StripeEvent
from billing.webhooks.handlers import dispatch_webhook

logger = logging.getLogger(__name__)


def _error_message(error: Exception) -> str:
    return getattr(error, "message", None) or str(error) or error.__class__.__name__


class WebhookDispatcher:
    """Runs verified events through their handlers and records the outcome."""

    @staticmethod
    def _lock_for(event: StripeEvent) -> DistributedLock:
        return DistributedLock(
            f"stripe_event:{event.id}",
            ttl=settings.BILLING_WEBHOOK_LOCK_TTL_SECONDS,
            timeout=settings.BILLING_WEBHOOK_LOCK_TIMEOUT_SECONDS,
        )

    @classmethod
    def process(cls, event: StripeEvent) -> WebhookEvent:
        """
        Process one verified event.

        Never raises for handler or lock errors; they are recorded on the
        returned failed row instead.

        Returns:
            The WebhookEvent row written for this delivery
        """
        lock = cls._lock_for(event)

        try:
            lock.acquire()
        except Exception as e:
            logger.warning(
                f"Could not lock event {event.id}: {e}",
                extra=event.log_context,
            )
            return WebhookEvent.objects.record_failed(
                event.id, event.type, event.payload, _error_message(e)
            )

        try:
            return cls._process_locked(event)
        except Exception as e:
            logger.exception(
                f"Webhook handler failed for {event.type}",
                extra=event.log_context,
            )
            return WebhookEvent.objects.record_failed(
                event.id, event.type, event.payload, _error_message(e)
            )
        finally:
            try:
                lock.release()
            except Exception:
                # The lock TTL frees the key
                logger.warning(
                    f"Failed to release lock for event {event.id}",
                    extra=event.log_context,
                    exc_info=True,
                )

    @staticmethod
    def _process_locked(event: StripeEvent) -> WebhookEvent:
        if WebhookEvent.objects.has_processed(event.id):
            logger.info("Event already processed, recording duplicate", extra=event.log_context)
            return WebhookEvent.objects.record_duplicate(event.id, event.type, event.payload)

        with transaction.atomic():
            result = dispatch_webhook(event)
            if not result.success:
                raise WebhookHandlerError(
                    result.error or f"Handler for {event.type} failed",
                    error_code=result.error_code,
                    details=event.log_context,
                )
            webhook_event = WebhookEvent.objects.record_processed(
                event.id, event.type, event.payload
            )

        logger.info(
            f"Processed {event.type}",
            extra={**event.log_context, "result": result.data},
        )
        return webhook_event
