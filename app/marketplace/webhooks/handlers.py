"""
Webhook event handlers for processor events.

This module provides a handler registry and the handlers for the events
the marketplace reacts to. Handlers run inside the WebhookProcessor's
database transaction, together with the ledger insert; they must not
commit on their own.

A handler that cannot find the transaction for a charge parks the event
as HELD (webhook_event.mark_held) instead of failing. The event is
applied once checkout stores the charge id.

Usage:
    from marketplace.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from django.core.exceptions import ValidationError as DjangoValidationError
from django.utils import timezone
from django_fsm import can_proceed

from core.services import ServiceResult

from marketplace.exceptions import ChargeAlreadyLinkedError
from marketplace.models import BookingTransaction, WebhookEvent
from marketplace.services.account_store import AccountStore, CapabilityUpdate
from marketplace.state_machines import TransactionStatus


logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("payment_intent.succeeded")
        def handle_payment_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
            ...
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types are recorded and acknowledged without effect.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"event_id": webhook_event.event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"event_id": webhook_event.event_id},
    )

    return handler(webhook_event)


# =============================================================================
# Transaction Lookup
# =============================================================================


def find_transaction_for_charge(
    charge_id: str, metadata: dict[str, Any] | None
) -> BookingTransaction | None:
    """
    Locate and lock the transaction a charge belongs to.

    Looks up by processor_charge_id first, then by the transaction_id
    checkout put in the charge metadata. A metadata match links the charge
    id to the transaction (checkout may have failed to store it).

    Raises:
        ChargeAlreadyLinkedError: The metadata points at a transaction
            already linked to a different charge
    """
    txn = (
        BookingTransaction.objects.select_for_update()
        .filter(processor_charge_id=charge_id)
        .first()
    )
    if txn is not None:
        return txn

    transaction_id = (metadata or {}).get("transaction_id")
    if not transaction_id:
        return None

    try:
        txn = (
            BookingTransaction.objects.select_for_update()
            .filter(pk=transaction_id)
            .first()
        )
    except (DjangoValidationError, ValueError):
        logger.warning(
            "Malformed transaction_id in charge metadata",
            extra={"processor_charge_id": charge_id, "transaction_id": transaction_id},
        )
        return None

    if txn is not None and txn.attach_charge(charge_id):
        txn.save(update_fields=["processor_charge_id", "updated_at"])
        logger.info(
            "Linked charge to transaction from metadata",
            extra={"transaction_id": str(txn.id), "processor_charge_id": charge_id},
        )
    return txn


def _hold(webhook_event: WebhookEvent, charge_id: str) -> ServiceResult:
    logger.info(
        "No transaction for charge yet, holding event",
        extra={
            "event_id": webhook_event.event_id,
            "event_type": webhook_event.event_type,
            "processor_charge_id": charge_id,
        },
    )
    webhook_event.mark_held(charge_id, reason="No transaction linked to this charge yet")
    return ServiceResult.success(None)


def _invalid_payload(webhook_event: WebhookEvent, field_name: str) -> ServiceResult:
    logger.error(
        f"{webhook_event.event_type}: Could not extract {field_name}",
        extra={"event_id": webhook_event.event_id},
    )
    return ServiceResult.failure(
        f"Could not extract {field_name} from webhook",
        error_code="INVALID_WEBHOOK_PAYLOAD",
    )


def _charge_conflict(webhook_event: WebhookEvent, error: ChargeAlreadyLinkedError) -> ServiceResult:
    logger.error(
        "Charge metadata points at a transaction linked to another charge",
        extra={"event_id": webhook_event.event_id, **error.details},
    )
    return ServiceResult.failure(error.message, error_code=error.error_code)


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Finalize a transaction as SUCCEEDED.

    A success for a transaction already marked FAILED (the charge call
    timed out locally but settled remotely) revives it when the booking is
    still free. If a newer attempt holds the booking the customer has paid
    twice; the transaction is flagged for a manual refund instead.
    """
    intent = webhook_event.get_object()
    charge_id = intent.get("id")
    if not charge_id:
        return _invalid_payload(webhook_event, "payment_intent_id")

    try:
        txn = find_transaction_for_charge(charge_id, intent.get("metadata"))
    except ChargeAlreadyLinkedError as e:
        return _charge_conflict(webhook_event, e)

    if txn is None:
        return _hold(webhook_event, charge_id)

    log_extra = {
        "event_id": webhook_event.event_id,
        "transaction_id": str(txn.id),
        "current_status": txn.status,
    }

    if txn.status == TransactionStatus.PENDING:
        txn.mark_succeeded()
        txn.save()
        logger.info("Transaction succeeded", extra=log_extra)

    elif txn.status == TransactionStatus.FAILED:
        if can_proceed(txn.revive_succeeded):
            txn.revive_succeeded()
            txn.save()
            logger.warning("Late success revived failed transaction", extra=log_extra)
        else:
            txn.metadata = {
                **txn.metadata,
                "requires_manual_refund": True,
                "late_success_event_id": webhook_event.event_id,
            }
            txn.save(update_fields=["metadata", "updated_at"])
            logger.error(
                "Late success for a booking already held by another transaction",
                extra=log_extra,
            )

    else:
        logger.info("Transaction already finalized, no state change", extra=log_extra)

    return ServiceResult.success(txn)


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """Mark a PENDING transaction FAILED; the booking may be checked out again."""
    intent = webhook_event.get_object()
    charge_id = intent.get("id")
    if not charge_id:
        return _invalid_payload(webhook_event, "payment_intent_id")

    try:
        txn = find_transaction_for_charge(charge_id, intent.get("metadata"))
    except ChargeAlreadyLinkedError as e:
        return _charge_conflict(webhook_event, e)

    if txn is None:
        return _hold(webhook_event, charge_id)

    last_error = intent.get("last_payment_error") or {}
    failure_code = last_error.get("decline_code") or last_error.get("code")
    failure_reason = last_error.get("message") or "Payment failed"

    if can_proceed(txn.mark_failed):
        txn.mark_failed(code=failure_code, reason=failure_reason)
        txn.save()
        logger.info(
            "Transaction failed",
            extra={
                "event_id": webhook_event.event_id,
                "transaction_id": str(txn.id),
                "failure_code": failure_code,
            },
        )
    else:
        logger.info(
            "Payment failure ignored for non-pending transaction",
            extra={
                "event_id": webhook_event.event_id,
                "transaction_id": str(txn.id),
                "current_status": txn.status,
            },
        )

    return ServiceResult.success(txn)


# =============================================================================
# Refund Handler
# =============================================================================


@register_handler("charge.refunded")
def handle_charge_refunded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Mark a transaction REFUNDED once the charge is fully refunded.

    REFUNDED is terminal; repeated refund events are no-ops. Partial
    refunds only record the refunded amount.
    """
    charge = webhook_event.get_object()
    charge_id = charge.get("payment_intent")
    if not charge_id:
        return _invalid_payload(webhook_event, "payment_intent")

    try:
        txn = find_transaction_for_charge(charge_id, charge.get("metadata"))
    except ChargeAlreadyLinkedError as e:
        return _charge_conflict(webhook_event, e)

    if txn is None:
        return _hold(webhook_event, charge_id)

    amount_refunded = charge.get("amount_refunded") or 0
    log_extra = {
        "event_id": webhook_event.event_id,
        "transaction_id": str(txn.id),
        "amount_refunded": amount_refunded,
        "current_status": txn.status,
    }

    if txn.status == TransactionStatus.REFUNDED:
        logger.info("Transaction already refunded, no state change", extra=log_extra)
        return ServiceResult.success(txn)

    txn.metadata = {**txn.metadata, "amount_refunded_cents": amount_refunded}

    if charge.get("refunded") and can_proceed(txn.mark_refunded):
        txn.mark_refunded()
        txn.save()
        logger.info("Transaction refunded", extra=log_extra)
    elif charge.get("refunded"):
        txn.save(update_fields=["metadata", "updated_at"])
        logger.warning("Refund for a transaction that cannot be refunded", extra=log_extra)
    else:
        txn.save(update_fields=["metadata", "updated_at"])
        logger.info("Partial refund recorded", extra=log_extra)

    return ServiceResult.success(txn)


# =============================================================================
# Connected Account Handler
# =============================================================================


@register_handler("account.updated")
def handle_account_updated(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Apply the capability flags of a connected account.

    Ordered by the event's creation time; AccountStore discards snapshots
    older than the last one applied. Accounts we do not know are ignored.
    """
    account_object = webhook_event.get_object()
    stripe_account_id = account_object.get("id")
    if not stripe_account_id:
        return _invalid_payload(webhook_event, "account_id")

    result = AccountStore.apply_capabilities(
        stripe_account_id,
        CapabilityUpdate.from_payload(account_object),
        observed_at=webhook_event.event_created_at or timezone.now(),
    )

    if not result.success and result.error_code == "ACCOUNT_NOT_FOUND":
        logger.info(
            "ConnectedAccount not found, may be external account",
            extra={
                "stripe_account_id": stripe_account_id,
                "event_id": webhook_event.event_id,
            },
        )
        return ServiceResult.success(None)

    return result
