"""
ConnectedAccount model for Stripe Connect integration.

Each ServicePro that accepts payments has exactly one ConnectedAccount: the
processor-hosted account that receives destination charges.

Capability flags (charges_enabled, payouts_enabled, details_submitted) mirror
the processor's authoritative state. They are written only by
AccountStore.apply_capabilities, which is driven by account webhooks or an
explicit reconciliation poll, never by client requests.

Usage:
    from marketplace.models import ConnectedAccount

    account = ConnectedAccount.objects.get(provider=pro)
    if account.can_receive_funds:
        # Destination charges may be issued to this account
        ...
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin

from marketplace.state_machines import OnboardingStatus


class ConnectedAccount(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A provider's processor account and its eligibility to receive funds.

    Fields:
        provider: OneToOne link to the owning ServicePro
        stripe_account_id: Processor account ID (acct_xxx), immutable once issued
        onboarding_status: Derived from the capability flags
        charges_enabled: Processor allows charges to this account
        payouts_enabled: Processor allows payouts from this account
        details_submitted: Provider finished submitting onboarding details
        disabled_reason: Processor's reason the account is disabled, if any
        last_synced_at: Processor timestamp of the newest applied update
        payouts_on_hold: Platform-side payout hold, set from the admin
        payout_hold_reason: Free-text reason for the hold
        version: Optimistic locking version field
        metadata: Flexible JSON storage for additional data

    Lifecycle:
        1. Created NOT_STARTED when the provider starts onboarding
        2. LINK_ISSUED once an onboarding link was handed out
        3. IN_PROGRESS after the provider submitted details
        4. COMPLETE when charges and payouts are both enabled
        5. RESTRICTED whenever the processor disables the account

    Note:
        Accounts are never deleted. The provider FK uses PROTECT so a
        provider with an account cannot be removed by accident.
    """

    provider = models.OneToOneField(
        "marketplace.ServicePro",
        on_delete=models.PROTECT,
        related_name="connected_account",
        help_text="Provider this connected account belongs to",
    )

    stripe_account_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Processor account ID (acct_xxx)",
    )

    onboarding_status = models.CharField(
        max_length=20,
        choices=OnboardingStatus.choices,
        default=OnboardingStatus.NOT_STARTED,
        db_index=True,
        help_text="Current onboarding status",
    )

    # ==========================================================================
    # Capabilities (processor-owned)
    # ==========================================================================

    charges_enabled = models.BooleanField(
        default=False,
        help_text="Whether the processor has enabled charges for this account",
    )

    payouts_enabled = models.BooleanField(
        default=False,
        help_text="Whether the processor has enabled payouts for this account",
    )

    details_submitted = models.BooleanField(
        default=False,
        help_text="Whether the provider has submitted onboarding details",
    )

    disabled_reason = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Processor's disabled reason (e.g. 'rejected.fraud')",
    )

    last_synced_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp of the newest processor state applied",
    )

    # ==========================================================================
    # Payout risk (platform-owned)
    # ==========================================================================

    payouts_on_hold = models.BooleanField(
        default=False,
        help_text="Manual hold set by ops; a held provider cannot take new charges",
    )

    payout_hold_reason = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Why payouts are held (e.g. 'active_dispute', 'manual_hold')",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Connected Account"
        verbose_name_plural = "Connected Accounts"
        indexes = [
            models.Index(
                fields=["onboarding_status", "last_synced_at"],
                name="conn_acct_status_sync_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"ConnectedAccount({self.stripe_account_id}, {self.onboarding_status})"

    @property
    def is_fully_enabled(self) -> bool:
        """True when both charges and payouts are enabled."""
        return self.charges_enabled and self.payouts_enabled

    @property
    def can_receive_funds(self) -> bool:
        """True when the processor enables the account and no payout hold is set."""
        return self.is_fully_enabled and not self.payouts_on_hold

    @property
    def onboarding_complete(self) -> bool:
        """True once the provider has nothing left to submit."""
        return (
            self.details_submitted
            and self.onboarding_status != OnboardingStatus.RESTRICTED
        )
