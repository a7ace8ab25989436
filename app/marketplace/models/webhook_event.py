"""
WebhookEvent model: the ledger of processor events received.

One row per processor event id. The unique event_id makes redelivered events
detectable; the row is inserted in the same database transaction that
applies the event, so a rolled-back attempt leaves no row and the event is
accepted again on redelivery.

Usage:
    from marketplace.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        event_id="evt_1234567890",
        defaults={"event_type": "payment_intent.succeeded", "payload": data},
    )
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from marketplace.state_machines import WebhookEventStatus


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    A processor event and the outcome of applying it.

    Fields:
        event_id: Processor event ID (evt_xxx), unique
        event_type: Event type (e.g. 'account.updated')
        payload: Full event payload (JSON)
        event_created_at: Processor's timestamp for the event
        status: Processing outcome
        processed_at: When the event was applied
        held_charge_id: Charge the event refers to while no transaction
            is linked to it yet
        error_message: Why processing failed or was held

    Note:
        received_at is created_at; the ledger row is written on receipt.
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Processor event ID (evt_xxx), unique for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Processor event type (e.g. 'payment_intent.succeeded')",
    )

    payload = models.JSONField(
        help_text="Full webhook payload (JSON)",
    )

    event_created_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the processor created the event",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the event was applied",
    )

    held_charge_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Charge ID awaiting a linked transaction",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error or hold reason",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_event_status_idx"),
            models.Index(fields=["event_type", "created_at"], name="webhook_event_type_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_id}, {self.event_type})"

    @property
    def received_at(self):
        return self.created_at

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_held(self) -> bool:
        return self.status == WebhookEventStatus.HELD

    # ==========================================================================
    # Helper Methods (none of these save)
    # ==========================================================================

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.held_charge_id = None
        self.error_message = None

    def mark_held(self, charge_id: str, reason: str | None = None) -> None:
        """Park the event until a transaction is linked to charge_id."""
        self.status = WebhookEventStatus.HELD
        self.held_charge_id = charge_id
        self.error_message = reason

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

    def get_object(self) -> dict:
        """Return payload.data.object, or an empty dict."""
        try:
            return self.payload.get("data", {}).get("object", {}) or {}
        except (AttributeError, TypeError):
            return {}

    def get_object_id(self) -> str | None:
        return self.get_object().get("id")
