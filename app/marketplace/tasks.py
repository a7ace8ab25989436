"""
Celery tasks for the marketplace.

This module provides periodic tasks for:
- Applying webhook events held until their charge is linked
- Reconciling connected accounts that have not synced recently

Both are scheduled with django-celery-beat (see migration 0002).

Usage:
    from marketplace.tasks import link_held_charge_events

    link_held_charge_events.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from marketplace.models import ConnectedAccount
from marketplace.state_machines import OnboardingStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

HELD_EVENTS_BATCH_SIZE = 100
RECONCILE_BATCH_SIZE = 100


# =============================================================================
# Webhook Tasks
# =============================================================================


@shared_task(acks_late=True)
def link_held_charge_events(limit: int = HELD_EVENTS_BATCH_SIZE) -> dict:
    """
    Apply held charge events whose transaction can now be found.

    Covers the case where checkout stored the charge id but its own call
    to link held events failed, or the charge id was linked from a later
    webhook's metadata.
    """
    from marketplace.webhooks.processor import WebhookProcessor

    applied = WebhookProcessor.retry_held_events(limit=limit)
    logger.info("Held webhook sweep finished", extra={"applied": applied})
    return {"applied": applied}


# =============================================================================
# Reconciliation Tasks
# =============================================================================


@shared_task(acks_late=True)
def reconcile_stale_accounts(limit: int = RECONCILE_BATCH_SIZE) -> dict:
    """
    Poll the processor for accounts whose state may have drifted.

    Picks accounts that started onboarding and have not been synced for
    ACCOUNT_RECONCILE_AFTER_HOURS, oldest first.
    """
    from marketplace.services import OnboardingOrchestrator

    hours = getattr(settings, "ACCOUNT_RECONCILE_AFTER_HOURS", 24)
    cutoff = timezone.now() - timedelta(hours=hours)

    provider_ids = list(
        ConnectedAccount.objects.exclude(onboarding_status=OnboardingStatus.NOT_STARTED)
        .filter(Q(last_synced_at__isnull=True) | Q(last_synced_at__lt=cutoff))
        .order_by("last_synced_at")
        .values_list("provider_id", flat=True)[:limit]
    )

    refreshed = 0
    failed = 0
    for provider_id in provider_ids:
        result = OnboardingOrchestrator.refresh_status(provider_id)
        if result.success:
            refreshed += 1
        else:
            failed += 1
            logger.warning(
                "Account reconciliation failed",
                extra={
                    "provider_id": str(provider_id),
                    "error_code": result.error_code,
                },
            )

    logger.info(
        "Account reconciliation finished",
        extra={"refreshed": refreshed, "failed": failed},
    )
    return {"refreshed": refreshed, "failed": failed}
