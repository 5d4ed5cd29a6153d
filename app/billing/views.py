"""
DRF views for the billing app.

Endpoints:
    GET /api/v1/billing/credits/ - Current user's balance, plan and recent transactions
"""

from __future__ import annotations

from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.serializers import CreditSummarySerializer
from billing.services import CreditService


class CreditSummaryView(APIView):
    """
    Get the authenticated user's credit summary.

    GET /api/v1/billing/credits/

    Returns:
        {
            "balance": 150,
            "plan": "starter",
            "plan_credits_monthly": 100,
            "recent_transactions": [...]
        }
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        summary = CreditService.get_summary(request.user.pk)
        return Response(CreditSummarySerializer(summary).data)
