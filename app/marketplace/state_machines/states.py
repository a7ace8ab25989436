"""
State enums for marketplace models.

These are Django TextChoices for database storage and admin integration.

State Machines Overview:

ConnectedAccount onboarding status (derived from processor capabilities):
    not_started → link_issued → in_progress → complete
    any → restricted (processor disabled the account)
    restricted → complete (processor re-enabled it)

BookingTransaction status (django-fsm):
    pending → succeeded → refunded
    pending → failed
    pending → refunded (refund observed before the success event)
    failed → succeeded (late success for a charge reported as failed)

WebhookEvent ledger status:
    pending → processed | held | failed
    held → processed (once the charge is linked to its transaction)
"""

from django.db import models


class OnboardingStatus(models.TextChoices):
    """
    Onboarding status for a provider's ConnectedAccount.

    Only COMPLETE accounts have both charges and payouts enabled.
    """

    NOT_STARTED = "not_started", "Not Started"
    LINK_ISSUED = "link_issued", "Link Issued"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETE = "complete", "Complete"
    RESTRICTED = "restricted", "Restricted"


class TransactionStatus(models.TextChoices):
    """
    States for the BookingTransaction lifecycle.

    Terminal states: REFUNDED. FAILED is terminal for the transaction but
    the booking itself stays eligible for a new checkout attempt.
    """

    PENDING = "pending", "Pending"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class WebhookEventStatus(models.TextChoices):
    """
    Ledger status for a received webhook event.

    PENDING only exists inside the processing transaction; committed rows
    are PROCESSED, HELD or FAILED.
    """

    PENDING = "pending", "Pending"
    PROCESSED = "processed", "Processed"
    HELD = "held", "Held for Linking"
    FAILED = "failed", "Failed"


class FeeType(models.TextChoices):
    """Platform fee model applied to a booking."""

    PERCENTAGE = "percentage", "Percentage"
    FIXED = "fixed", "Fixed Amount"


__all__ = [
    "FeeType",
    "OnboardingStatus",
    "TransactionStatus",
    "WebhookEventStatus",
]
