"""
DRF serializers for the billing app.

Usage:
    summary = CreditService.get_summary(request.user.pk)
    return Response(CreditSummarySerializer(summary).data)
"""

from __future__ import annotations

from rest_framework import serializers

from billing.models import CreditTransaction


class CreditTransactionSerializer(serializers.ModelSerializer):
    """Read-only view of one ledger entry."""

    class Meta:
        model = CreditTransaction
        fields = [
            "id",
            "amount",
            "description",
            "balance_after",
            "source_payment_id",
            "created_at",
        ]
        read_only_fields = fields


class CreditSummarySerializer(serializers.Serializer):
    """
    Serializer for a CreditSummary.

    Fields:
        balance: Current spendable credits
        plan: Current plan name
        plan_credits_monthly: Credits the plan grants per period
        recent_transactions: Latest ledger entries, newest first
    """

    balance = serializers.IntegerField(read_only=True)
    plan = serializers.CharField(read_only=True)
    plan_credits_monthly = serializers.IntegerField(read_only=True)
    recent_transactions = CreditTransactionSerializer(many=True, read_only=True)
