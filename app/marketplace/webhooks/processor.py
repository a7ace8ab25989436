"""
Webhook event processor.

Applies a verified processor event exactly once. The ledger row and the
event's effects are written in one database transaction:

    1. Insert WebhookEvent (unique event_id). An existing row means the
       event was already applied or held: acknowledge without effect.
    2. Dispatch to the handler registered for the event type.
    3. Commit. A handler exception, or a retryable handler failure, rolls
       back the insert too, so the processor's redelivery is processed.

Non-retryable handler failures (a malformed payload) are recorded as
FAILED and acknowledged; redelivering them would not help.

Usage:
    from marketplace.webhooks.processor import WebhookProcessor

    result = WebhookProcessor.process_event(event_data)
    if result.success and result.data.duplicate:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from datetime import timezone as dt_timezone
from typing import Any

from core.services import BaseService, ServiceResult

from marketplace.exceptions import WebhookProcessingError
from marketplace.models import WebhookEvent
from marketplace.state_machines import WebhookEventStatus
from marketplace.webhooks.handlers import dispatch_webhook


@dataclass
class WebhookProcessResult:
    """
    Outcome of process_event.

    Attributes:
        event: The ledger row
        duplicate: True when the event id was already in the ledger
    """

    event: WebhookEvent
    duplicate: bool = False

    @property
    def held(self) -> bool:
        return self.event.status == WebhookEventStatus.HELD


def _event_created_at(event_data: dict[str, Any]) -> datetime | None:
    created = event_data.get("created")
    if isinstance(created, (int, float)) and not isinstance(created, bool):
        return datetime.fromtimestamp(created, tz=dt_timezone.utc)
    return None


class WebhookProcessor(BaseService):
    """
    Idempotent application of processor events.

    All methods are class methods - no instance state is maintained.
    """

    @classmethod
    def process_event(
        cls, event_data: dict[str, Any]
    ) -> ServiceResult[WebhookProcessResult]:
        """
        Record and apply one verified event.

        Returns:
            ServiceResult with WebhookProcessResult, or INVALID_EVENT when the
            payload has no id or type

        Raises:
            WebhookProcessingError: A handler failed transiently; nothing
                was committed
        """
        logger = cls.get_logger()

        event_id = event_data.get("id")
        event_type = event_data.get("type")
        if not event_id or not event_type:
            logger.warning("Webhook missing required fields")
            return ServiceResult.failure(
                "Event id and type are required",
                error_code="INVALID_EVENT",
            )

        log_context = {"event_id": event_id, "event_type": event_type}

        with cls.atomic():
            webhook_event, created = WebhookEvent.objects.get_or_create(
                event_id=event_id,
                defaults={
                    "event_type": event_type,
                    "payload": event_data,
                    "event_created_at": _event_created_at(event_data),
                    "status": WebhookEventStatus.PENDING,
                },
            )

            if not created:
                logger.info(
                    "Webhook already recorded, skipping",
                    extra={**log_context, "status": webhook_event.status},
                )
                return ServiceResult.success(
                    WebhookProcessResult(event=webhook_event, duplicate=True)
                )

            cls._apply(webhook_event)

        logger.info(
            "Webhook processed",
            extra={**log_context, "status": webhook_event.status},
        )
        return ServiceResult.success(WebhookProcessResult(event=webhook_event))

    @classmethod
    def _apply(cls, webhook_event: WebhookEvent) -> None:
        """Dispatch and record the outcome. Must run inside a transaction."""
        result = dispatch_webhook(webhook_event)

        if not result.success:
            if result.retryable:
                raise WebhookProcessingError(
                    result.error or "Webhook handler failed",
                    details={
                        "event_id": webhook_event.event_id,
                        "handler_error_code": result.error_code,
                    },
                )
            cls.get_logger().error(
                "Webhook handler failed",
                extra={
                    "event_id": webhook_event.event_id,
                    "error_code": result.error_code,
                    "error": result.error,
                },
            )
            webhook_event.mark_failed(result.error or "Webhook handler failed")
        elif not webhook_event.is_held:
            webhook_event.mark_processed()

        webhook_event.save()

    @classmethod
    def link_held_events(cls, charge_id: str) -> int:
        """
        Apply events held for charge_id, oldest first.

        Each event is applied in its own transaction. Failures are logged and
        left for the periodic sweep.

        Returns:
            Number of events that were applied
        """
        logger = cls.get_logger()
        held_ids = list(
            WebhookEvent.objects.filter(
                status=WebhookEventStatus.HELD,
                held_charge_id=charge_id,
            )
            .order_by("event_created_at", "created_at")
            .values_list("pk", flat=True)
        )

        applied = 0
        for pk in held_ids:
            try:
                with cls.atomic():
                    webhook_event = WebhookEvent.objects.select_for_update().get(pk=pk)
                    if webhook_event.status != WebhookEventStatus.HELD:
                        continue
                    cls._apply(webhook_event)
            except Exception:
                logger.exception(
                    "Could not apply held webhook event",
                    extra={"webhook_event_id": str(pk), "processor_charge_id": charge_id},
                )
                continue

            if webhook_event.status == WebhookEventStatus.PROCESSED:
                applied += 1

        if applied:
            logger.info(
                "Applied held webhook events",
                extra={"processor_charge_id": charge_id, "applied": applied},
            )
        return applied

    @classmethod
    def retry_held_events(cls, limit: int = 100) -> int:
        """Sweep held events for up to limit charges. Returns events applied."""
        charge_ids = (
            WebhookEvent.objects.filter(
                status=WebhookEventStatus.HELD,
                held_charge_id__isnull=False,
            )
            .order_by("held_charge_id")
            .values_list("held_charge_id", flat=True)
            .distinct()[:limit]
        )
        return sum(cls.link_held_events(charge_id) for charge_id in list(charge_ids))
