"""
Billing admin configuration.

Credit transactions and webhook events are audit trails and are shown
read-only.
"""

from django.contrib import admin

from billing.models import (
    CreditBalance,
    CreditTransaction,
    Customer,
    Subscription,
    WebhookEvent,
)


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    """Stripe customers and their pending (unlinked) purchases."""

    list_display = [
        "stripe_customer_id",
        "email",
        "user",
        "pending_credits",
        "pending_plan",
        "created_at",
    ]
    list_filter = ["pending_plan", "created_at"]
    search_fields = ["stripe_customer_id", "email", "user__email"]
    readonly_fields = ["id", "stripe_customer_id", "created_at", "updated_at"]
    raw_id_fields = ["user"]
    ordering = ["-created_at"]


@admin.register(CreditBalance)
class CreditBalanceAdmin(admin.ModelAdmin):
    list_display = ["user", "balance", "plan", "plan_credits_monthly", "updated_at"]
    list_filter = ["plan"]
    search_fields = ["user__email"]
    # Balance changes must go through CreditService
    readonly_fields = ["balance", "created_at", "updated_at"]
    raw_id_fields = ["user"]


@admin.register(CreditTransaction)
class CreditTransactionAdmin(admin.ModelAdmin):
    """Append-only ledger entries."""

    list_display = [
        "created_at",
        "user",
        "amount",
        "balance_after",
        "description",
        "source_payment_id",
    ]
    search_fields = ["user__email", "description", "source_payment_id", "idempotency_key"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = [
        "stripe_subscription_id",
        "customer",
        "user",
        "plan",
        "status",
        "credits_monthly",
        "current_period_end",
        "cancel_at_period_end",
    ]
    list_filter = ["status", "plan", "cancel_at_period_end"]
    search_fields = ["stripe_subscription_id", "customer__stripe_customer_id", "user__email"]
    readonly_fields = ["id", "status", "canceled_at", "created_at", "updated_at"]
    raw_id_fields = ["customer", "user"]
    ordering = ["-created_at"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    One row per delivery; rows are immutable once written.
    """

    list_display = [
        "stripe_event_id",
        "event_type",
        "status",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["stripe_event_id", "event_type"]
    readonly_fields = [
        "id",
        "stripe_event_id",
        "event_type",
        "status",
        "payload",
        "error_message",
        "processed_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "stripe_event_id", "event_type", "status", "processed_at"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_message",),
                "classes": ("collapse",),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False
