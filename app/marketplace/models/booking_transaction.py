"""
BookingTransaction model: one checkout attempt for a booking.

A transaction is created PENDING before the processor is contacted; its id
doubles as the processor idempotency key. Only webhook events move it to
SUCCEEDED, FAILED (besides synchronous processor errors) or REFUNDED.

Invariants enforced by the database:
    - platform_fee_cents <= gross_amount_cents
    - at most one non-failed transaction per booking_id
    - processor_charge_id is unique across transactions

Usage:
    from marketplace.models import BookingTransaction

    txn = BookingTransaction.objects.active().filter(booking_id=booking_id).first()

    # State transitions using django-fsm
    txn.mark_succeeded()
    txn.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

from marketplace.exceptions import ChargeAlreadyLinkedError
from marketplace.state_machines import FeeType, TransactionStatus


class BookingTransactionQuerySet(models.QuerySet):
    def active(self):
        """Transactions that still hold the booking (anything but failed)."""
        return self.exclude(status=TransactionStatus.FAILED)

    def for_charge(self, charge_id: str):
        return self.filter(processor_charge_id=charge_id)


def _no_other_active_transaction(instance: BookingTransaction) -> bool:
    """Condition for reviving a failed attempt: nothing else holds the booking."""
    return (
        not BookingTransaction.objects.active()
        .filter(booking_id=instance.booking_id)
        .exclude(pk=instance.pk)
        .exists()
    )


class BookingTransaction(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    Money movement for one checkout attempt of a booking.

    State Flow:
        PENDING -> SUCCEEDED -> REFUNDED
        PENDING -> FAILED
        PENDING -> REFUNDED
        FAILED -> SUCCEEDED (late success, only if the booking is free)

    Fields:
        booking_id: Booking being paid (owned by the booking layer)
        customer: User paying for the booking
        provider: ServicePro receiving the funds
        account: Destination ConnectedAccount at checkout time
        gross_amount_cents: Amount charged to the customer
        platform_fee_cents: Application fee retained by the platform
        fee_type/fee_rate: Fee rule snapshot used to compute the fee
        currency: ISO 4217 currency code
        processor_charge_id: Processor charge reference (pi_xxx), set once
        status: Current FSM state
        failure_code/failure_reason: Why the attempt failed
        finalized_at: When a terminal outcome was recorded
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    booking_id = models.UUIDField(
        db_index=True,
        help_text="Booking this transaction pays for",
    )

    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="booking_transactions",
        help_text="Customer being charged",
    )

    provider = models.ForeignKey(
        "marketplace.ServicePro",
        on_delete=models.PROTECT,
        related_name="booking_transactions",
        help_text="Provider receiving the funds",
    )

    account = models.ForeignKey(
        "marketplace.ConnectedAccount",
        on_delete=models.PROTECT,
        related_name="booking_transactions",
        help_text="Destination connected account",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    gross_amount_cents = models.PositiveBigIntegerField(
        help_text="Amount charged to the customer in the smallest currency unit",
    )

    platform_fee_cents = models.PositiveBigIntegerField(
        help_text="Platform fee retained, computed once at checkout",
    )

    fee_type = models.CharField(
        max_length=20,
        choices=FeeType.choices,
        default=FeeType.PERCENTAGE,
        help_text="Fee model used for this transaction",
    )

    fee_rate = models.DecimalField(
        max_digits=7,
        decimal_places=4,
        null=True,
        blank=True,
        help_text="Fee rate snapshot for percentage fees (0.15 = 15%)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # Processor Reference & State
    # ==========================================================================

    processor_charge_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Processor charge ID (pi_xxx), immutable once set",
    )

    status = FSMField(
        default=TransactionStatus.PENDING,
        choices=TransactionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the transaction (managed by FSM)",
    )

    finalized_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When a terminal outcome was recorded",
    )

    failure_code = models.CharField(
        max_length=64,
        null=True,
        blank=True,
        help_text="Machine-readable failure code",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Detailed reason if the charge failed",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata",
    )

    objects = BookingTransactionQuerySet.as_manager()

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Booking Transaction"
        verbose_name_plural = "Booking Transactions"
        indexes = [
            models.Index(fields=["booking_id", "status"], name="booking_txn_booking_status_idx"),
            models.Index(fields=["provider", "created_at"], name="booking_txn_provider_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(gross_amount_cents__gt=0),
                name="booking_txn_gross_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(platform_fee_cents__lte=models.F("gross_amount_cents")),
                name="booking_txn_fee_within_gross",
            ),
            models.UniqueConstraint(
                fields=["booking_id"],
                condition=~models.Q(status=TransactionStatus.FAILED),
                name="booking_txn_one_active_per_booking",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.gross_amount_cents / 100:.2f} {self.currency.upper()}"
        return f"BookingTransaction({self.id}, {self.status}, {amount_display})"

    @property
    def provider_amount_cents(self) -> int:
        """Amount settled to the provider after the platform fee."""
        return self.gross_amount_cents - self.platform_fee_cents

    def attach_charge(self, charge_id: str) -> bool:
        """
        Record the processor charge id.

        Returns True if the id was newly set, False if it was already set
        to the same value. Does not save.

        Raises:
            ChargeAlreadyLinkedError: A different charge id is already stored
        """
        if self.processor_charge_id == charge_id:
            return False
        if self.processor_charge_id:
            raise ChargeAlreadyLinkedError(
                f"Transaction {self.id} is already linked to another charge",
                details={
                    "transaction_id": str(self.id),
                    "existing_charge_id": self.processor_charge_id,
                    "new_charge_id": charge_id,
                },
            )
        self.processor_charge_id = charge_id
        return True

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=TransactionStatus.PENDING,
        target=TransactionStatus.SUCCEEDED,
    )
    def mark_succeeded(self):
        """Transition: PENDING -> SUCCEEDED, on the processor's success event."""
        self.finalized_at = timezone.now()

    @transition(
        field=status,
        source=TransactionStatus.FAILED,
        target=TransactionStatus.SUCCEEDED,
        conditions=[_no_other_active_transaction],
    )
    def revive_succeeded(self):
        """
        Transition: FAILED -> SUCCEEDED.

        A charge call that failed locally (timeout) may still have settled
        remotely. The success is honored only while no newer attempt holds
        the booking.
        """
        self.finalized_at = timezone.now()
        self.failure_code = None
        self.failure_reason = None

    @transition(
        field=status,
        source=TransactionStatus.PENDING,
        target=TransactionStatus.FAILED,
    )
    def mark_failed(self, code: str | None = None, reason: str | None = None):
        """Transition: PENDING -> FAILED. The booking may be checked out again."""
        self.finalized_at = timezone.now()
        self.failure_code = code
        self.failure_reason = reason

    @transition(
        field=status,
        source=[TransactionStatus.PENDING, TransactionStatus.SUCCEEDED],
        target=TransactionStatus.REFUNDED,
    )
    def mark_refunded(self):
        """Transition: PENDING/SUCCEEDED -> REFUNDED. Terminal."""
        self.finalized_at = timezone.now()
