"""
Tests for webhook handlers.

Handlers are called through dispatch_webhook with Stripe retrieval served
by FakeStripe, so each test sees exactly the Stripe state it registered.
"""

import pytest

from billing.exceptions import StripeInvalidRequestError, WebhookHandlerError
from billing.models import CreditBalance, CreditTransaction, Customer, Subscription
from billing.state_machines import SubscriptionStatus
from billing.tests.factories import (
    CREDITS_50_PRODUCT_ID,
    CREDITS_200_PRODUCT_ID,
    PRO_PRODUCT_ID,
    STARTER_PRODUCT_ID,
    CreditBalanceFactory,
    SubscriptionFactory,
)
from billing.webhooks.events import WebhookEventType
from billing.webhooks.handlers import WEBHOOK_HANDLERS, dispatch_webhook, register_handler
from billing.webhooks.tests.payloads import (
    checkout_session,
    invoice,
    make_event,
    subscription_object,
)

UNKNOWN_PRODUCT_ID = "prod_not_in_catalog"


def checkout_event(session_id, customer_id, subscription_id=None):
    return make_event(
        "checkout.session.completed",
        checkout_session(session_id, customer_id, subscription_id),
    )


class TestHandlerRegistry:
    def test_all_recognized_types_have_handlers(self):
        recognized = set(WebhookEventType) - {WebhookEventType.UNRECOGNIZED}

        assert set(WEBHOOK_HANDLERS) == recognized

    def test_cannot_register_unrecognized(self):
        with pytest.raises(ValueError):
            register_handler(WebhookEventType.UNRECOGNIZED)

    def test_unrecognized_event_is_ignored(self, db, fake_stripe):
        result = dispatch_webhook(make_event("charge.refunded", {"id": "ch_1"}))

        assert result.success
        assert result.data == {"action": "ignored"}
        assert not CreditTransaction.objects.exists()
        fake_stripe.retrieve_customer.assert_not_called()

    def test_missing_handler_raises(self, mocker):
        mocker.patch.dict(WEBHOOK_HANDLERS, clear=True)

        with pytest.raises(WebhookHandlerError):
            dispatch_webhook(make_event("invoice.payment_succeeded", {"id": "in_1"}))


@pytest.mark.django_db
class TestCheckoutSessionCompleted:
    def test_starter_subscription_for_new_customer_with_existing_user(self, user, fake_stripe):
        fake_stripe.add_customer("cus_new", email=user.email, name="Buyer")
        fake_stripe.add_checkout("cs_1", [STARTER_PRODUCT_ID])

        result = dispatch_webhook(checkout_event("cs_1", "cus_new", subscription_id="sub_1"))

        assert result.success
        assert result.data["action"] == "granted"
        assert result.data["granted"] == 100

        customer = Customer.objects.get(stripe_customer_id="cus_new")
        assert customer.user == user
        assert customer.pending_credits == 0

        balance = CreditBalance.objects.get(user=user)
        assert balance.balance == 100
        assert balance.plan == "starter"
        assert balance.plan_credits_monthly == 100

        transaction = CreditTransaction.objects.get(user=user)
        assert transaction.amount == 100
        assert transaction.balance_after == 100
        assert transaction.description == "STARTER subscription: 100 credits"
        assert transaction.source_payment_id == "pi_test_1"
        assert transaction.idempotency_key == "checkout:cs_1:li_cs_1_1"

        subscription = Subscription.objects.get(stripe_subscription_id="sub_1")
        assert subscription.user == user
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.plan == "starter"
        assert subscription.credits_monthly == 100

    def test_credit_pack_adds_to_balance_without_plan_change(self, linked_customer, fake_stripe):
        user = linked_customer.user
        CreditBalanceFactory(user=user, balance=30, plan="pro", plan_credits_monthly=500)
        fake_stripe.add_checkout("cs_2", [CREDITS_50_PRODUCT_ID])

        result = dispatch_webhook(checkout_event("cs_2", linked_customer.stripe_customer_id))

        assert result.success
        balance = CreditBalance.objects.get(user=user)
        assert balance.balance == 80
        assert balance.plan == "pro"
        assert balance.plan_credits_monthly == 500
        assert CreditTransaction.objects.get(user=user).description == "Purchased 50 credits"
        assert not Subscription.objects.exists()
        fake_stripe.retrieve_customer.assert_not_called()

    def test_each_known_line_item_is_granted(self, linked_customer, fake_stripe):
        fake_stripe.add_checkout("cs_3", [CREDITS_50_PRODUCT_ID, CREDITS_200_PRODUCT_ID])

        dispatch_webhook(checkout_event("cs_3", linked_customer.stripe_customer_id))

        balance = CreditBalance.objects.get(user=linked_customer.user)
        assert balance.balance == 250
        assert CreditTransaction.objects.filter(user=linked_customer.user).count() == 2

    def test_unknown_line_item_does_not_block_known_sibling(self, linked_customer, fake_stripe):
        fake_stripe.add_checkout("cs_4", [UNKNOWN_PRODUCT_ID, CREDITS_50_PRODUCT_ID])

        result = dispatch_webhook(checkout_event("cs_4", linked_customer.stripe_customer_id))

        assert result.success
        assert result.data["line_items"] == 1
        assert CreditBalance.objects.get(user=linked_customer.user).balance == 50

    def test_only_unknown_products_change_nothing(self, linked_customer, fake_stripe):
        fake_stripe.add_checkout("cs_5", [UNKNOWN_PRODUCT_ID])

        result = dispatch_webhook(checkout_event("cs_5", linked_customer.stripe_customer_id))

        assert result.success
        assert result.data["granted"] == 0
        assert not CreditTransaction.objects.exists()
        assert not CreditBalance.objects.filter(user=linked_customer.user).exists()

    def test_redelivered_session_grants_once(self, linked_customer, fake_stripe):
        fake_stripe.add_checkout("cs_6", [CREDITS_50_PRODUCT_ID])
        event = checkout_event("cs_6", linked_customer.stripe_customer_id)

        dispatch_webhook(event)
        dispatch_webhook(event)

        assert CreditBalance.objects.get(user=linked_customer.user).balance == 50
        assert CreditTransaction.objects.count() == 1

    def test_unlinked_customer_accumulates_pending(self, unlinked_customer, fake_stripe):
        fake_stripe.add_checkout("cs_7", [STARTER_PRODUCT_ID])
        fake_stripe.add_checkout("cs_8", [CREDITS_50_PRODUCT_ID])

        first = dispatch_webhook(
            checkout_event("cs_7", unlinked_customer.stripe_customer_id, subscription_id="sub_7")
        )
        dispatch_webhook(checkout_event("cs_8", unlinked_customer.stripe_customer_id))

        assert first.data["action"] == "deferred"
        unlinked_customer.refresh_from_db()
        assert unlinked_customer.pending_credits == 150
        assert unlinked_customer.pending_plan == "starter"
        assert not CreditBalance.objects.exists()
        assert not CreditTransaction.objects.exists()

        subscription = Subscription.objects.get(stripe_subscription_id="sub_7")
        assert subscription.customer == unlinked_customer
        assert subscription.user is None

    def test_later_plan_replaces_pending_plan(self, unlinked_customer, fake_stripe):
        fake_stripe.add_checkout("cs_9", [STARTER_PRODUCT_ID])
        fake_stripe.add_checkout("cs_10", [PRO_PRODUCT_ID])

        dispatch_webhook(checkout_event("cs_9", unlinked_customer.stripe_customer_id))
        dispatch_webhook(checkout_event("cs_10", unlinked_customer.stripe_customer_id))

        unlinked_customer.refresh_from_db()
        assert unlinked_customer.pending_credits == 600
        assert unlinked_customer.pending_plan == "pro"

    def test_new_customer_without_matching_user_is_unlinked(self, db, fake_stripe):
        fake_stripe.add_customer("cus_stranger", email="stranger@example.com")
        fake_stripe.add_checkout("cs_11", [CREDITS_200_PRODUCT_ID])

        dispatch_webhook(checkout_event("cs_11", "cus_stranger"))

        customer = Customer.objects.get(stripe_customer_id="cus_stranger")
        assert customer.user is None
        assert customer.email == "stranger@example.com"
        assert customer.pending_credits == 200

    @pytest.mark.parametrize(
        "session",
        [
            {"id": "cs_12", "customer": None},
            {"id": None, "customer": "cus_1"},
            {},
        ],
    )
    def test_missing_ids_fail(self, db, fake_stripe, session):
        result = dispatch_webhook(make_event("checkout.session.completed", session))

        assert not result.success
        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"
        assert not Customer.objects.exists()
        fake_stripe.list_checkout_line_items.assert_not_called()

    def test_stripe_error_propagates(self, linked_customer, fake_stripe):
        # No line items registered for this session
        with pytest.raises(StripeInvalidRequestError):
            dispatch_webhook(checkout_event("cs_missing", linked_customer.stripe_customer_id))


@pytest.mark.django_db
class TestInvoicePaymentSucceeded:
    def test_renewal_grants_monthly_credits(self, linked_customer, fake_stripe):
        user = linked_customer.user
        CreditBalanceFactory(user=user, balance=40, plan="starter", plan_credits_monthly=100)
        fake_stripe.add_subscription("sub_1", linked_customer.stripe_customer_id, STARTER_PRODUCT_ID)

        result = dispatch_webhook(
            make_event(
                "invoice.payment_succeeded",
                invoice("in_1", linked_customer.stripe_customer_id, "sub_1"),
            )
        )

        assert result.success
        assert result.data == {"action": "granted", "granted": 100, "balance": 140}

        transaction = CreditTransaction.objects.get(user=user)
        assert transaction.description == "STARTER renewal: 100 credits"
        assert transaction.idempotency_key == "invoice:in_1"
        assert transaction.source_payment_id == "pi_in_1"
        assert transaction.balance_after == 140

    def test_redelivered_invoice_grants_once(self, linked_customer, fake_stripe):
        fake_stripe.add_subscription("sub_1", linked_customer.stripe_customer_id, PRO_PRODUCT_ID)
        event = make_event(
            "invoice.payment_succeeded",
            invoice("in_2", linked_customer.stripe_customer_id, "sub_1"),
        )

        dispatch_webhook(event)
        dispatch_webhook(event)

        assert CreditBalance.objects.get(user=linked_customer.user).balance == 500
        assert CreditTransaction.objects.count() == 1

    def test_reads_subscription_from_invoice_parent(self, linked_customer, fake_stripe):
        fake_stripe.add_subscription("sub_1", linked_customer.stripe_customer_id, STARTER_PRODUCT_ID)
        data = invoice("in_3", linked_customer.stripe_customer_id, None)
        data["parent"] = {"subscription_details": {"subscription": "sub_1"}}

        result = dispatch_webhook(make_event("invoice.payment_succeeded", data))

        assert result.data["action"] == "granted"
        fake_stripe.retrieve_subscription.assert_called_once_with("sub_1")

    def test_first_invoice_is_skipped(self, linked_customer, fake_stripe):
        data = invoice(
            "in_4",
            linked_customer.stripe_customer_id,
            "sub_1",
            billing_reason="subscription_create",
        )

        result = dispatch_webhook(make_event("invoice.payment_succeeded", data))

        assert result.success
        assert result.data["action"] == "skipped"
        assert not CreditTransaction.objects.exists()
        fake_stripe.retrieve_subscription.assert_not_called()

    def test_invoice_without_subscription_is_ignored(self, linked_customer, fake_stripe):
        data = invoice("in_5", linked_customer.stripe_customer_id, None)

        result = dispatch_webhook(make_event("invoice.payment_succeeded", data))

        assert result.data == {"action": "ignored"}
        assert not CreditTransaction.objects.exists()

    def test_unknown_product_changes_nothing(self, linked_customer, fake_stripe):
        fake_stripe.add_subscription("sub_1", linked_customer.stripe_customer_id, UNKNOWN_PRODUCT_ID)

        result = dispatch_webhook(
            make_event(
                "invoice.payment_succeeded",
                invoice("in_6", linked_customer.stripe_customer_id, "sub_1"),
            )
        )

        assert result.success
        assert result.data["reason"] == "unknown_product"
        assert not CreditTransaction.objects.exists()

    def test_unlinked_customer_is_skipped(self, unlinked_customer, fake_stripe):
        fake_stripe.add_subscription("sub_1", unlinked_customer.stripe_customer_id, STARTER_PRODUCT_ID)

        result = dispatch_webhook(
            make_event(
                "invoice.payment_succeeded",
                invoice("in_7", unlinked_customer.stripe_customer_id, "sub_1"),
            )
        )

        assert result.data["reason"] == "unlinked_customer"
        unlinked_customer.refresh_from_db()
        assert unlinked_customer.pending_credits == 0
        assert not CreditTransaction.objects.exists()

    def test_falls_back_to_subscription_customer(self, linked_customer, fake_stripe):
        fake_stripe.add_subscription("sub_1", linked_customer.stripe_customer_id, STARTER_PRODUCT_ID)
        data = invoice("in_8", None, "sub_1")

        result = dispatch_webhook(make_event("invoice.payment_succeeded", data))

        assert result.data["action"] == "granted"
        assert CreditBalance.objects.get(user=linked_customer.user).balance == 100


@pytest.mark.django_db
class TestSubscriptionUpdated:
    def test_syncs_status_plan_and_period(self, linked_customer):
        subscription = SubscriptionFactory(customer=linked_customer, stripe_subscription_id="sub_1")

        result = dispatch_webhook(
            make_event(
                "customer.subscription.updated",
                subscription_object(
                    "sub_1",
                    linked_customer.stripe_customer_id,
                    PRO_PRODUCT_ID,
                    status="past_due",
                    cancel_at_period_end=True,
                ),
            )
        )

        assert result.success
        assert result.data == {"action": "updated", "status": "past_due", "plan": "pro"}

        subscription.refresh_from_db()
        assert subscription.status == SubscriptionStatus.PAST_DUE
        assert subscription.plan == "pro"
        assert subscription.credits_monthly == 500
        assert subscription.stripe_product_id == PRO_PRODUCT_ID
        assert subscription.cancel_at_period_end is True
        assert subscription.current_period_end is not None

    def test_does_not_touch_balance(self, linked_customer):
        CreditBalanceFactory(user=linked_customer.user, balance=10, plan="starter")
        SubscriptionFactory(customer=linked_customer, stripe_subscription_id="sub_1")

        dispatch_webhook(
            make_event(
                "customer.subscription.updated",
                subscription_object("sub_1", linked_customer.stripe_customer_id, PRO_PRODUCT_ID),
            )
        )

        balance = CreditBalance.objects.get(user=linked_customer.user)
        assert balance.balance == 10
        assert balance.plan == "starter"

    def test_unknown_subscription_is_ignored(self, db):
        result = dispatch_webhook(
            make_event(
                "customer.subscription.updated",
                subscription_object("sub_missing", "cus_1", STARTER_PRODUCT_ID),
            )
        )

        assert result.data == {"action": "ignored"}
        assert not Subscription.objects.exists()

    def test_missing_id_fails(self, db):
        result = dispatch_webhook(make_event("customer.subscription.updated", {"status": "active"}))

        assert not result.success
        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"


@pytest.mark.django_db
class TestSubscriptionDeleted:
    def test_cancels_and_returns_user_to_free_plan(self, linked_customer):
        user = linked_customer.user
        CreditBalanceFactory(user=user, balance=75, plan="starter", plan_credits_monthly=100)
        subscription = SubscriptionFactory(customer=linked_customer, stripe_subscription_id="sub_1")

        result = dispatch_webhook(
            make_event("customer.subscription.deleted", {"id": "sub_1", "status": "canceled"})
        )

        assert result.data == {"action": "canceled", "user_id": user.pk}

        subscription.refresh_from_db()
        assert subscription.status == SubscriptionStatus.CANCELED
        assert subscription.canceled_at is not None

        balance = CreditBalance.objects.get(user=user)
        assert balance.plan == "free"
        assert balance.plan_credits_monthly == 0
        assert balance.balance == 75

    def test_second_delete_is_a_no_op(self, linked_customer):
        CreditBalanceFactory(user=linked_customer.user, plan="starter", plan_credits_monthly=100)
        SubscriptionFactory(customer=linked_customer, stripe_subscription_id="sub_1")
        event = make_event("customer.subscription.deleted", {"id": "sub_1"})
        dispatch_webhook(event)
        assert CreditBalance.objects.get(user=linked_customer.user).plan == "free"
        # Plan bought after the cancellation
        CreditBalance.objects.filter(user=linked_customer.user).update(plan="pro")

        result = dispatch_webhook(event)

        assert result.data == {"action": "ignored"}
        assert CreditBalance.objects.get(user=linked_customer.user).plan == "pro"

    def test_delete_after_canceled_update_still_resets_plan(self, linked_customer):
        user = linked_customer.user
        CreditBalanceFactory(user=user, balance=60, plan="starter", plan_credits_monthly=100)
        subscription = SubscriptionFactory(customer=linked_customer, stripe_subscription_id="sub_1")
        dispatch_webhook(
            make_event(
                "customer.subscription.updated",
                subscription_object(
                    "sub_1",
                    linked_customer.stripe_customer_id,
                    STARTER_PRODUCT_ID,
                    status="canceled",
                ),
            )
        )
        subscription.refresh_from_db()
        assert subscription.status == SubscriptionStatus.CANCELED
        assert CreditBalance.objects.get(user=user).plan == "starter"

        result = dispatch_webhook(make_event("customer.subscription.deleted", {"id": "sub_1"}))

        assert result.data == {"action": "canceled", "user_id": user.pk}
        balance = CreditBalance.objects.get(user=user)
        assert balance.plan == "free"
        assert balance.plan_credits_monthly == 0
        assert balance.balance == 60

        again = dispatch_webhook(make_event("customer.subscription.deleted", {"id": "sub_1"}))

        assert again.data == {"action": "ignored"}

    def test_delete_without_balance_row_creates_none(self, linked_customer):
        SubscriptionFactory(customer=linked_customer, stripe_subscription_id="sub_1")

        result = dispatch_webhook(make_event("customer.subscription.deleted", {"id": "sub_1"}))

        assert result.data["action"] == "canceled"
        assert not CreditBalance.objects.filter(user=linked_customer.user).exists()

    def test_unlinked_customer_loses_pending_plan(self, unlinked_customer):
        Customer.objects.filter(pk=unlinked_customer.pk).update(
            pending_credits=100, pending_plan="starter"
        )
        SubscriptionFactory(customer=unlinked_customer, stripe_subscription_id="sub_1")

        dispatch_webhook(make_event("customer.subscription.deleted", {"id": "sub_1"}))

        unlinked_customer.refresh_from_db()
        assert unlinked_customer.pending_plan is None
        assert unlinked_customer.pending_credits == 100

    def test_unknown_subscription_is_ignored(self, db):
        result = dispatch_webhook(make_event("customer.subscription.deleted", {"id": "sub_x"}))

        assert result.data == {"action": "ignored"}
