"""
Celery tasks for billing.

Usage:
    from billing.tasks import link_customers_for_user

    # Queue linkage after a user is created
    transaction.on_commit(lambda: link_customers_for_user.delay(user.pk))
"""

from __future__ import annotations

import logging

from celery import shared_task
from django.contrib.auth import get_user_model

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": 3},
    acks_late=True,
)
def link_customers_for_user(self, user_id: int) -> dict:
    """
    Link unlinked billing customers with the user's email to the user.

    Pending credits and plans on those customers are claimed into the
    user's balance.

    Args:
        user_id: Primary key of the new user

    Returns:
        Dict with the linkage result
    """
    from billing.services import CustomerService

    User = get_user_model()
    try:
        user = User.objects.get(pk=user_id)
    except User.DoesNotExist:
        logger.error("User not found for customer linkage", extra={"user_id": user_id})
        return {"status": "not_found", "user_id": user_id}

    claimed = CustomerService.link_customers_by_email(user)

    logger.info(
        f"Linked billing customers for user {user_id}",
        extra={"user_id": user_id, "claimed_credits": claimed},
    )
    return {"status": "linked", "user_id": user_id, "claimed_credits": claimed}
