"""
Django signals for authentication.

When a new user registers, any Stripe customer that bought credits under
the same email before the account existed is linked to the user and its
pending credits are claimed. The work runs in a Celery task queued after
the registering transaction commits.

Related files:
    - apps.py: Signal import in ready()
    - billing/tasks.py: link_customers_for_user task
"""

import logging

from django.conf import settings
from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

logger = logging.getLogger(__name__)


@receiver(post_save, sender=settings.AUTH_USER_MODEL)
def queue_billing_customer_linkage(sender, instance, created, **kwargs):
    """
    Queue linkage of unclaimed billing customers for a newly created user.

    Args:
        sender: The User model class
        instance: The User instance that was saved
        created: Boolean indicating if this is a new record
        **kwargs: Additional signal arguments
    """
    if not created:
        return

    from billing.tasks import link_customers_for_user

    user_id = instance.pk
    transaction.on_commit(lambda: link_customers_for_user.delay(user_id))
    logger.debug(
        "Queued billing customer linkage",
        extra={"user_id": user_id},
    )
