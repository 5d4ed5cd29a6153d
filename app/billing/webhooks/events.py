"""
Typed view of a verified Stripe event.

Event types are a closed enum. Anything Stripe sends that is not listed
maps to UNRECOGNIZED, which the dispatcher acknowledges without running
a handler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from billing.exceptions import WebhookPayloadError


class WebhookEventType(str, Enum):
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    CUSTOMER_SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    CUSTOMER_SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    UNRECOGNIZED = "unrecognized"

    @classmethod
    def from_stripe(cls, event_type: str) -> WebhookEventType:
        try:
            return cls(event_type)
        except ValueError:
            return cls.UNRECOGNIZED


@dataclass(frozen=True)
class StripeEvent:
    """
    A verified Stripe event.

    Attributes:
        id: Stripe Event ID (evt_xxx)
        type: Event type exactly as Stripe sent it
        kind: Parsed WebhookEventType
        data_object: The event's data.object
        payload: Full event JSON, stored in the webhook log
    """

    id: str
    type: str
    kind: WebhookEventType
    data_object: dict[str, Any] = field(repr=False)
    payload: dict[str, Any] = field(repr=False)

    @classmethod
    def from_payload(cls, payload: Any) -> StripeEvent:
        """
        Parse a verified event body.

        Raises:
            WebhookPayloadError: Body is not an event object with id, type
                and an object-valued data.object
        """
        if not isinstance(payload, dict):
            raise WebhookPayloadError("Webhook payload is not a JSON object")

        event_id = payload.get("id")
        event_type = payload.get("type")
        if not event_id or not event_type:
            raise WebhookPayloadError(
                "Webhook payload is missing id or type",
                details={"id": event_id, "type": event_type},
            )

        data = payload.get("data") or {}
        data_object = (data.get("object") or {}) if isinstance(data, dict) else None
        if not isinstance(data_object, dict):
            raise WebhookPayloadError(
                "Webhook payload data.object is not a JSON object",
                details={"id": event_id, "type": event_type},
            )

        return cls(
            id=event_id,
            type=event_type,
            kind=WebhookEventType.from_stripe(event_type),
            data_object=data_object,
            payload=payload,
        )

    @property
    def log_context(self) -> dict[str, str]:
        return {"stripe_event_id": self.id, "event_type": self.type}
