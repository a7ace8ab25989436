"""
Connected account store.

The single writer of ConnectedAccount rows. Capability flags are written
only through apply_capabilities, which is driven by account webhooks or the
reconciliation poll; updates are ordered by the processor's timestamp so a
late, stale event can never regress an account's eligibility.

Usage:
    from marketplace.services import AccountStore, CapabilityUpdate

    result = AccountStore.apply_capabilities(
        "acct_123",
        CapabilityUpdate(charges_enabled=True, payouts_enabled=True,
                         details_submitted=True),
        observed_at=event_created_at,
    )
    if result.success and not result.data.applied:
        # Stale update, discarded
        ...
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from django.db import IntegrityError

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult

from marketplace.models import ConnectedAccount
from marketplace.state_machines import OnboardingStatus

if TYPE_CHECKING:
    from marketplace.adapters import AccountResult


# Stripe prefixes "requirements." to reasons that only mean "details outstanding"
REQUIREMENTS_REASON_PREFIX = "requirements."


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CapabilityUpdate:
    """Capability booleans reported by the processor for one account."""

    charges_enabled: bool
    payouts_enabled: bool
    details_submitted: bool
    disabled_reason: str | None = None

    @classmethod
    def from_account_result(cls, result: AccountResult) -> CapabilityUpdate:
        return cls(
            charges_enabled=result.charges_enabled,
            payouts_enabled=result.payouts_enabled,
            details_submitted=result.details_submitted,
            disabled_reason=result.disabled_reason,
        )

    @classmethod
    def from_payload(cls, account_object: dict[str, Any]) -> CapabilityUpdate:
        """Build from the data.object of an account.updated event."""
        requirements = account_object.get("requirements") or {}
        return cls(
            charges_enabled=bool(account_object.get("charges_enabled")),
            payouts_enabled=bool(account_object.get("payouts_enabled")),
            details_submitted=bool(account_object.get("details_submitted")),
            disabled_reason=requirements.get("disabled_reason"),
        )


@dataclass
class AccountSyncResult:
    """
    Outcome of apply_capabilities.

    Attributes:
        account: The account after the call (unchanged when not applied)
        applied: False when the update was older than last_synced_at
    """

    account: ConnectedAccount
    applied: bool


def derive_onboarding_status(current: str, update: CapabilityUpdate) -> str:
    """
    Derive the onboarding status from the capability flags.

    - A disable reason outside "requirements.*" restricts the account
    - Charges and payouts both enabled means complete
    - A complete (or restricted) account that lost a capability is restricted
    - Submitted details mean onboarding is in progress
    - Otherwise the status is left alone
    """
    reason = update.disabled_reason or ""
    if reason and not reason.startswith(REQUIREMENTS_REASON_PREFIX):
        return OnboardingStatus.RESTRICTED
    if update.charges_enabled and update.payouts_enabled:
        return OnboardingStatus.COMPLETE
    if current in (OnboardingStatus.COMPLETE, OnboardingStatus.RESTRICTED):
        return OnboardingStatus.RESTRICTED
    if update.details_submitted:
        return OnboardingStatus.IN_PROGRESS
    return current


# =============================================================================
# Account Store
# =============================================================================


class AccountStore(BaseService):
    """
    Durable record of provider accounts and their capability state.

    All methods are class methods - no instance state is maintained.
    """

    @classmethod
    def upsert(
        cls, stripe_account_id: str, provider_id: uuid.UUID | str
    ) -> ConnectedAccount:
        """
        Create the provider's account record, or return the existing one.

        The stored account id is never changed once issued.

        Raises:
            ConflictError: The provider already has a different account, or
                the account id belongs to another provider
        """
        try:
            with cls.atomic():
                account, created = ConnectedAccount.objects.get_or_create(
                    provider_id=provider_id,
                    defaults={
                        "stripe_account_id": stripe_account_id,
                        "onboarding_status": OnboardingStatus.NOT_STARTED,
                    },
                )
        except IntegrityError as e:
            raise ConflictError(
                "Account id is already registered to another provider",
                error_code="ACCOUNT_ID_CONFLICT",
                details={"stripe_account_id": stripe_account_id},
            ) from e

        if not created and account.stripe_account_id != stripe_account_id:
            raise ConflictError(
                "Provider already has a connected account",
                error_code="ACCOUNT_ID_CONFLICT",
                details={
                    "provider_id": str(provider_id),
                    "existing_account_id": account.stripe_account_id,
                },
            )

        if created:
            cls.get_logger().info(
                "Connected account recorded",
                extra={
                    "provider_id": str(provider_id),
                    "stripe_account_id": stripe_account_id,
                },
            )
        return account

    @classmethod
    def get(cls, provider_id: uuid.UUID | str) -> ConnectedAccount | None:
        return ConnectedAccount.objects.filter(provider_id=provider_id).first()

    @classmethod
    def get_by_account_id(cls, stripe_account_id: str) -> ConnectedAccount | None:
        return ConnectedAccount.objects.filter(
            stripe_account_id=stripe_account_id
        ).first()

    @classmethod
    def mark_link_issued(cls, account: ConnectedAccount) -> ConnectedAccount:
        """Move a NOT_STARTED account to LINK_ISSUED. Other states are kept."""
        with cls.atomic():
            locked = ConnectedAccount.objects.select_for_update().get(pk=account.pk)
            if locked.onboarding_status == OnboardingStatus.NOT_STARTED:
                locked.onboarding_status = OnboardingStatus.LINK_ISSUED
                locked.save(update_fields=["onboarding_status", "updated_at"])
        return locked

    @classmethod
    def apply_capabilities(
        cls,
        stripe_account_id: str,
        update: CapabilityUpdate,
        observed_at: datetime,
    ) -> ServiceResult[AccountSyncResult]:
        """
        Apply a capability snapshot observed by the processor at observed_at.

        The row is locked for the duration. The update is applied only when
        observed_at is strictly newer than last_synced_at (or nothing has
        been synced yet); older or equal snapshots are discarded.

        Returns:
            ServiceResult with AccountSyncResult, or ACCOUNT_NOT_FOUND
        """
        with cls.atomic():
            account = (
                ConnectedAccount.objects.select_for_update()
                .filter(stripe_account_id=stripe_account_id)
                .first()
            )
            if account is None:
                return ServiceResult.failure(
                    f"No connected account {stripe_account_id}",
                    error_code="ACCOUNT_NOT_FOUND",
                )

            if account.last_synced_at is not None and observed_at <= account.last_synced_at:
                cls.get_logger().info(
                    "Discarding stale capability update",
                    extra={
                        "stripe_account_id": stripe_account_id,
                        "observed_at": observed_at.isoformat(),
                        "last_synced_at": account.last_synced_at.isoformat(),
                    },
                )
                return ServiceResult.success(AccountSyncResult(account, applied=False))

            previous_status = account.onboarding_status
            account.charges_enabled = update.charges_enabled
            account.payouts_enabled = update.payouts_enabled
            account.details_submitted = update.details_submitted
            account.disabled_reason = update.disabled_reason
            account.onboarding_status = derive_onboarding_status(previous_status, update)
            account.last_synced_at = observed_at
            account.save()

        log_extra = {
            "stripe_account_id": stripe_account_id,
            "charges_enabled": update.charges_enabled,
            "payouts_enabled": update.payouts_enabled,
            "previous_status": previous_status,
            "onboarding_status": account.onboarding_status,
        }
        if account.onboarding_status == OnboardingStatus.RESTRICTED and (
            previous_status != OnboardingStatus.RESTRICTED
        ):
            cls.get_logger().warning(
                "Connected account restricted",
                extra={**log_extra, "disabled_reason": update.disabled_reason},
            )
        else:
            cls.get_logger().info("Capabilities applied", extra=log_extra)

        return ServiceResult.success(AccountSyncResult(account, applied=True))
