"""
Checkout orchestrator for split-payment bookings.

Moves money from a customer to a provider with a single destination
charge: the platform keeps the application fee and the remainder settles
to the provider's connected account.

Execution:
    1. Gate on the provider account (charges and payouts enabled)
    2. Persist a PENDING BookingTransaction in its own database transaction;
       the partial unique index on booking_id serializes concurrent attempts
    3. Charge through the processor with the transaction id as idempotency key
    4. Store the processor charge id; the transaction stays PENDING until
       the payment_intent.* webhook finalizes it

A processor error marks the transaction FAILED right away, which frees the
booking for another attempt.

Usage:
    from marketplace.services import CheckoutOrchestrator, CheckoutParams

    result = CheckoutOrchestrator.checkout(
        CheckoutParams(
            booking_id=booking.id,
            customer_id=request.user.id,
            provider_id=pro.id,
            gross_amount_cents=10000,
            payment_method_token="pm_card_visa",
        )
    )
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from django.conf import settings
from django.db import DatabaseError, IntegrityError
from django_fsm import can_proceed

from core.services import BaseService, ServiceResult

from marketplace.adapters import DestinationChargeParams, StripeAdapter
from marketplace.exceptions import (
    AlreadyPaidError,
    ProcessorError,
    ProviderNotEligibleError,
)
from marketplace.models import BookingTransaction
from marketplace.services.account_store import AccountStore
from marketplace.services.fees import FeeRule, compute_platform_fee


@dataclass
class CheckoutParams:
    """
    Parameters for a booking checkout.

    Attributes:
        booking_id: Booking being paid for
        customer_id: User being charged
        provider_id: ServicePro receiving the funds
        gross_amount_cents: Amount charged to the customer
        payment_method_token: Customer's payment method (pm_xxx)
        fee_rule: Platform fee model (defaults to PLATFORM_FEE_PERCENT)
        currency: Settlement currency (defaults to SETTLEMENT_CURRENCY)
        metadata: Extra metadata stored on the transaction
    """

    booking_id: uuid.UUID
    customer_id: Any
    provider_id: uuid.UUID
    gross_amount_cents: int
    payment_method_token: str
    fee_rule: FeeRule | None = None
    currency: str | None = None
    metadata: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.gross_amount_cents <= 0:
            raise ValueError("gross_amount_cents must be positive")
        if not self.payment_method_token:
            raise ValueError("payment_method_token is required")
        if self.fee_rule is None:
            self.fee_rule = FeeRule.default()
        if not self.currency:
            self.currency = getattr(settings, "SETTLEMENT_CURRENCY", "usd")
        self.currency = self.currency.lower()


class CheckoutOrchestrator(BaseService):
    """
    Entry point for booking checkout.

    Never marks a transaction SUCCEEDED: only the processor's webhook does.

    Error codes:
        PROVIDER_NOT_ELIGIBLE: Provider account missing or not fully enabled
        ALREADY_PAID: Booking already has a non-failed transaction
        CARD_DECLINED: Customer's card was declined
        ACCOUNT_INELIGIBLE: Processor refused the destination account
        PROCESSOR_UNAVAILABLE: Transient processor failure (retryable)
    """

    @classmethod
    def checkout(cls, params: CheckoutParams) -> ServiceResult[BookingTransaction]:
        log = cls.get_logger()
        log_context = {
            "booking_id": str(params.booking_id),
            "provider_id": str(params.provider_id),
            "gross_amount_cents": params.gross_amount_cents,
        }
        log.info("Starting checkout", extra=log_context)

        # Step 1: Eligibility gate, no processor call when it fails
        account = AccountStore.get(params.provider_id)
        if account is None or not account.can_receive_funds:
            log.warning(
                "Provider not eligible for checkout",
                extra={
                    **log_context,
                    "payouts_on_hold": bool(account and account.payouts_on_hold),
                },
            )
            return ServiceResult.from_exception(
                ProviderNotEligibleError("This provider cannot accept payments yet")
            )

        if (
            BookingTransaction.objects.active()
            .filter(booking_id=params.booking_id)
            .exists()
        ):
            return cls._already_paid(params)

        platform_fee_cents = compute_platform_fee(
            params.gross_amount_cents, params.fee_rule
        )

        # Step 2: Persist PENDING before any money moves
        try:
            with cls.atomic():
                txn = BookingTransaction.objects.create(
                    booking_id=params.booking_id,
                    customer_id=params.customer_id,
                    provider_id=params.provider_id,
                    account=account,
                    gross_amount_cents=params.gross_amount_cents,
                    platform_fee_cents=platform_fee_cents,
                    fee_type=params.fee_rule.fee_type,
                    fee_rate=params.fee_rule.rate,
                    currency=params.currency,
                    metadata=params.metadata or {},
                )
        except IntegrityError:
            # Lost the race to a concurrent attempt for the same booking
            return cls._already_paid(params)

        log_context["transaction_id"] = str(txn.id)
        log_context["platform_fee_cents"] = platform_fee_cents

        # Step 3: Charge
        try:
            charge = StripeAdapter.create_destination_charge(
                DestinationChargeParams(
                    amount_cents=txn.gross_amount_cents,
                    currency=txn.currency,
                    payment_method_token=params.payment_method_token,
                    destination_account_id=account.stripe_account_id,
                    application_fee_cents=txn.platform_fee_cents,
                    idempotency_key=str(txn.id),
                    metadata={
                        "transaction_id": str(txn.id),
                        "booking_id": str(params.booking_id),
                        "customer_id": str(params.customer_id),
                        "provider_id": str(params.provider_id),
                    },
                )
            )
        except ProcessorError as e:
            cls._record_failure(txn, e)
            return cls.handle_exception(e, "Checkout charge failed", logging.WARNING)

        # Step 4: Link the charge id; the webhook metadata lookup covers a failure here
        try:
            with cls.atomic():
                locked = BookingTransaction.objects.select_for_update().get(pk=txn.pk)
                if locked.attach_charge(charge.id):
                    locked.save(update_fields=["processor_charge_id", "updated_at"])
                txn = locked
        except DatabaseError:
            log.error(
                "Could not store processor charge id, leaving transaction pending",
                extra={**log_context, "processor_charge_id": charge.id},
                exc_info=True,
            )
            return ServiceResult.success(txn)

        log.info(
            "Checkout charge issued",
            extra={
                **log_context,
                "processor_charge_id": charge.id,
                "charge_status": charge.status,
            },
        )

        # A charge webhook that beat us here was held; apply it now
        from marketplace.webhooks.processor import WebhookProcessor

        WebhookProcessor.link_held_events(charge.id)
        txn = BookingTransaction.objects.get(pk=txn.pk)

        return ServiceResult.success(txn)

    @classmethod
    def _already_paid(cls, params: CheckoutParams) -> ServiceResult:
        cls.get_logger().info(
            "Booking already has an active transaction",
            extra={"booking_id": str(params.booking_id)},
        )
        return ServiceResult.from_exception(
            AlreadyPaidError("This booking has already been paid")
        )

    @classmethod
    def _record_failure(cls, txn: BookingTransaction, error: ProcessorError) -> None:
        with cls.atomic():
            locked = BookingTransaction.objects.select_for_update().get(pk=txn.pk)
            if not can_proceed(locked.mark_failed):
                # A webhook already recorded the outcome
                return
            locked.mark_failed(code=error.error_code, reason=error.message)
            locked.save()
