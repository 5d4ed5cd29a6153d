"""
Webhook endpoint view for Stripe.

The view:
1. Accepts POST only
2. Verifies the raw body against the Stripe-Signature header
3. Hands the event to WebhookDispatcher, which logs exactly one row
4. Maps the logged outcome to the response Stripe sees

Stripe treats any non-2xx response as a failed delivery and redelivers
the event later, which is the only retry mechanism.

Usage:
    # In urls.py
    from billing.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from billing.adapters import StripeAdapter
from billing.exceptions import StripeSignatureVerificationError, WebhookPayloadError
from billing.state_machines import WebhookEventStatus
from billing.webhooks.dispatcher import WebhookDispatcher
from billing.webhooks.events import StripeEvent

logger = logging.getLogger(__name__)


@csrf_exempt
def stripe_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive, verify and process a Stripe webhook event.

    Returns:
        JsonResponse with status:
        - 200: Event processed, ignored or a duplicate
        - 400: Missing or invalid signature, or malformed event
        - 405: Not a POST
        - 500: Handler failed; Stripe will redeliver

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    if request.method != "POST":
        response = JsonResponse({"error": "Method not allowed"}, status=405)
        response["Allow"] = "POST"
        return response

    signature = request.headers.get("Stripe-Signature", "")

    try:
        payload = StripeAdapter.verify_webhook_signature(request.body, signature)
        event = StripeEvent.from_payload(payload)
    except StripeSignatureVerificationError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": e.message, "stripe_code": e.stripe_code},
        )
        return JsonResponse({"error": e.message}, status=400)
    except WebhookPayloadError as e:
        logger.warning("Webhook event is malformed", extra={"error": e.message})
        return JsonResponse({"error": e.message}, status=400)

    logger.info(f"Received Stripe webhook: {event.type}", extra=event.log_context)

    webhook_event = WebhookDispatcher.process(event)

    if webhook_event.status == WebhookEventStatus.FAILED:
        return JsonResponse({"error": webhook_event.error_message}, status=500)
    if webhook_event.status == WebhookEventStatus.DUPLICATE:
        return JsonResponse({"received": True, "duplicate": True})
    return JsonResponse({"received": True})
