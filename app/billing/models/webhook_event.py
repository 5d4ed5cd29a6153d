"""
WebhookEvent model: the audit log of Stripe event deliveries.

One row is appended per verified delivery, whatever the outcome. The same
stripe_event_id may appear several times (a failed attempt followed by a
processed one, or a processed one followed by duplicates), so the column
is indexed but not unique.

Usage:
    from billing.models import WebhookEvent

    if WebhookEvent.objects.has_processed("evt_123"):
        WebhookEvent.objects.record_duplicate(event_id, event_type, payload)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from billing.state_machines import WebhookEventStatus

if TYPE_CHECKING:
    from typing import Any


class WebhookEventManager(models.Manager):
    """Append-only writers for the webhook log."""

    def has_processed(self, stripe_event_id: str) -> bool:
        """Check whether a delivery of this event was already applied."""
        return self.filter(
            stripe_event_id=stripe_event_id,
            status=WebhookEventStatus.PROCESSED,
        ).exists()

    def _record(
        self,
        stripe_event_id: str,
        event_type: str,
        payload: dict[str, Any],
        status: str,
        error_message: str | None = None,
    ) -> WebhookEvent:
        return self.create(
            stripe_event_id=stripe_event_id,
            event_type=event_type,
            payload=payload,
            status=status,
            error_message=error_message,
            processed_at=timezone.now(),
        )

    def record_processed(self, stripe_event_id, event_type, payload) -> WebhookEvent:
        return self._record(
            stripe_event_id, event_type, payload, WebhookEventStatus.PROCESSED
        )

    def record_duplicate(self, stripe_event_id, event_type, payload) -> WebhookEvent:
        return self._record(
            stripe_event_id, event_type, payload, WebhookEventStatus.DUPLICATE
        )

    def record_failed(
        self, stripe_event_id, event_type, payload, error_message: str
    ) -> WebhookEvent:
        return self._record(
            stripe_event_id,
            event_type,
            payload,
            WebhookEventStatus.FAILED,
            error_message=error_message,
        )


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    One verified delivery of a Stripe webhook event.

    Fields:
        stripe_event_id: Stripe Event ID (evt_xxx)
        event_type: Stripe event type string as delivered
        payload: Full event JSON
        status: PROCESSED, DUPLICATE or FAILED
        error_message: Failure text for FAILED rows
        processed_at: When the outcome was recorded

    Rows are never updated after insert.
    """

    stripe_event_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Stripe Event ID (evt_xxx)",
    )
    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Stripe event type (e.g., 'checkout.session.completed')",
    )
    payload = models.JSONField(
        help_text="Full webhook payload from Stripe (JSON)",
    )
    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        db_index=True,
        help_text="Outcome of this delivery",
    )
    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )
    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the outcome was recorded",
    )

    objects = WebhookEventManager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["stripe_event_id", "status"], name="billing_web_stripe__3a8f52_idx"),
            models.Index(fields=["event_type", "created_at"], name="billing_web_event_t_71c4be_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.stripe_event_id}, {self.event_type}, {self.status})"
