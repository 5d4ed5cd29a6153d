"""
Tests for StripeAdapter.

Stripe SDK calls are patched at billing.adapters.stripe_adapter.stripe.
"""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from billing.adapters import StripeAdapter, SubscriptionResult
from billing.adapters.stripe_adapter import from_timestamp, stripe_field, stripe_id
from billing.exceptions import (
    StripeAPIUnavailableError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeSignatureVerificationError,
)

ADAPTER = "billing.adapters.stripe_adapter.stripe"


class TestFieldHelpers:
    def test_stripe_field_reads_dicts_and_defaults(self):
        assert stripe_field({"a": 1}, "a") == 1
        assert stripe_field({"a": None}, "a", "x") == "x"
        assert stripe_field({}, "a", 0) == 0
        assert stripe_field(None, "a") is None

    def test_stripe_id_handles_expanded_objects(self):
        assert stripe_id("cus_1") == "cus_1"
        assert stripe_id({"id": "cus_2", "object": "customer"}) == "cus_2"
        assert stripe_id(None) is None

    def test_from_timestamp(self):
        assert from_timestamp(0).isoformat() == "1970-01-01T00:00:00+00:00"
        assert from_timestamp(None) is None


class TestRetrieval:
    """Tests for retrieval methods and result parsing."""

    def test_retrieve_customer(self, mocker):
        mocker.patch(
            f"{ADAPTER}.Customer.retrieve",
            return_value={"id": "cus_1", "email": "a@example.com", "name": None},
        )

        result = StripeAdapter.retrieve_customer("cus_1")

        assert result.id == "cus_1"
        assert result.email == "a@example.com"
        assert result.name == ""
        assert result.deleted is False

    def test_retrieve_price(self, mocker):
        mocker.patch(
            f"{ADAPTER}.Price.retrieve",
            return_value={"id": "price_1", "product": "prod_TX1iwTUdlTE1Ku"},
        )

        assert StripeAdapter.retrieve_price("price_1").product_id == "prod_TX1iwTUdlTE1Ku"

    def test_list_checkout_line_items_follows_pagination(self, mocker):
        page = mocker.MagicMock()
        page.auto_paging_iter.return_value = iter(
            [
                {"id": "li_1", "price": {"id": "price_1"}, "quantity": 1},
                {"id": "li_2", "price": "price_2", "quantity": 3},
            ]
        )
        mock_list = mocker.patch(f"{ADAPTER}.checkout.Session.list_line_items", return_value=page)

        items = StripeAdapter.list_checkout_line_items("cs_1")

        mock_list.assert_called_once_with("cs_1", limit=100)
        assert [(i.id, i.price_id, i.quantity) for i in items] == [
            ("li_1", "price_1", 1),
            ("li_2", "price_2", 3),
        ]

    def test_retrieve_subscription(self, mocker):
        mocker.patch(
            f"{ADAPTER}.Subscription.retrieve",
            return_value={
                "id": "sub_1",
                "customer": "cus_1",
                "status": "active",
                "cancel_at_period_end": False,
                "items": {
                    "data": [
                        {
                            "price": {"id": "price_1", "product": "prod_TX1ixXF1tiYr7F"},
                            "current_period_start": 1700000000,
                            "current_period_end": 1702592000,
                        }
                    ]
                },
            },
        )

        result = StripeAdapter.retrieve_subscription("sub_1")

        assert result.product_id == "prod_TX1ixXF1tiYr7F"
        assert result.customer_id == "cus_1"
        assert result.current_period_end == from_timestamp(1702592000)

    def test_subscription_period_prefers_top_level(self):
        result = SubscriptionResult.from_stripe(
            {
                "id": "sub_1",
                "status": "trialing",
                "current_period_end": 1800000000,
                "items": {"data": [{"current_period_end": 1700000000, "price": {}}]},
            }
        )

        assert result.current_period_end == from_timestamp(1800000000)
        assert result.product_id is None

    def test_configures_sdk_from_settings(self, mocker, settings):
        settings.STRIPE_SECRET_KEY = "sk_test_configured"
        settings.STRIPE_API_VERSION = "2023-10-16"
        mocker.patch(f"{ADAPTER}.Customer.retrieve", return_value={"id": "cus_1"})

        StripeAdapter.retrieve_customer("cus_1")

        assert stripe.api_key == "sk_test_configured"
        assert stripe.api_version == "2023-10-16"


class TestErrorTranslation:
    """Stripe SDK exceptions become billing exceptions."""

    @pytest.mark.parametrize(
        "sdk_error,expected,retryable",
        [
            (stripe.InvalidRequestError("No such customer", param="id"), StripeInvalidRequestError, False),
            (stripe.RateLimitError("slow down"), StripeRateLimitError, True),
            (stripe.APIConnectionError("network down"), StripeAPIUnavailableError, True),
            (stripe.AuthenticationError("bad key"), StripeInvalidRequestError, False),
            (stripe.APIError("server error"), StripeAPIUnavailableError, True),
            (RuntimeError("unexpected"), StripeAPIUnavailableError, True),
        ],
    )
    def test_translation(self, mocker, sdk_error, expected, retryable):
        mocker.patch(f"{ADAPTER}.Customer.retrieve", side_effect=sdk_error)

        with pytest.raises(expected) as exc_info:
            StripeAdapter.retrieve_customer("cus_missing")

        assert exc_info.value.is_retryable is retryable
        assert exc_info.value.__cause__ is sdk_error


class TestVerifyWebhookSignature:
    """Tests for verify_webhook_signature()."""

    def test_returns_parsed_payload(self, mocker):
        payload = {"id": "evt_1", "type": "checkout.session.completed"}
        mock_construct = mocker.patch(f"{ADAPTER}.Webhook.construct_event")

        result = StripeAdapter.verify_webhook_signature(json.dumps(payload).encode(), "t=1,v1=x")

        assert result == payload
        mock_construct.assert_called_once()

    def test_missing_signature(self, mocker):
        mock_construct = mocker.patch(f"{ADAPTER}.Webhook.construct_event")

        with pytest.raises(StripeSignatureVerificationError, match="Missing Stripe-Signature"):
            StripeAdapter.verify_webhook_signature(b"{}", "")

        mock_construct.assert_not_called()

    def test_invalid_signature(self, mocker):
        mocker.patch(
            f"{ADAPTER}.Webhook.construct_event",
            side_effect=stripe.SignatureVerificationError("No signatures found", "t=1,v1=x"),
        )

        with pytest.raises(StripeSignatureVerificationError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"{}", "t=1,v1=x")

        assert exc_info.value.stripe_code == "signature_verification_failed"

    def test_real_signature_round_trip(self, settings):
        settings.STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
        payload = json.dumps({"id": "evt_signed", "object": "event", "type": "invoice.paid"})
        timestamp = int(time.time())
        signature = hmac.new(
            b"whsec_test_secret",
            f"{timestamp}.{payload}".encode(),
            hashlib.sha256,
        ).hexdigest()

        result = StripeAdapter.verify_webhook_signature(
            payload.encode(), f"t={timestamp},v1={signature}"
        )

        assert result["id"] == "evt_signed"
