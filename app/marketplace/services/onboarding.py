"""
Onboarding orchestrator for provider connected accounts.

Creates the provider's processor account on first use, hands out
time-boxed onboarding links, and reconciles the account state when the
provider returns from the hosted flow.

Flow:
    1. start_onboarding: account created (NOT_STARTED) and committed
    2. link issued, account moves to LINK_ISSUED
    3. provider completes the hosted form
    4. account.updated webhooks (or refresh_status) drive the status onward

Usage:
    from marketplace.services import OnboardingOrchestrator

    result = OnboardingOrchestrator.start_onboarding(
        provider_id=pro.id,
        return_url="https://app.example.com/pro/onboarding/return",
        refresh_url="https://app.example.com/pro/onboarding/refresh",
    )
    if result.success:
        redirect(result.data.url)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from django.utils import timezone

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult

from marketplace.accessors import get_provider_profile
from marketplace.adapters import (
    CreateAccountParams,
    IdempotencyKeyGenerator,
    OnboardingLinkParams,
    StripeAdapter,
)
from marketplace.exceptions import ProcessorError
from marketplace.models import ConnectedAccount, OnboardingLink
from marketplace.services.account_store import AccountStore, CapabilityUpdate
from marketplace.state_machines import OnboardingStatus


def poll_observed_at() -> datetime:
    """
    Timestamp a poll result so it ranks below any webhook of the same second.

    Stripe's event.created has one-second resolution. A poll stamped with
    the full local time would win over an account.updated created later in
    the same second and make that newer event look stale.
    """
    return timezone.now().replace(microsecond=0) - timedelta(seconds=1)


@dataclass
class AccountStatusSummary:
    """Read-only view of a provider's payment readiness."""

    onboarding_status: str
    ready_to_receive_payments: bool
    onboarding_complete: bool
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    payouts_on_hold: bool = False
    last_synced_at: datetime | None = None

    @classmethod
    def from_account(cls, account: ConnectedAccount | None) -> AccountStatusSummary:
        if account is None:
            return cls(
                onboarding_status=OnboardingStatus.NOT_STARTED,
                ready_to_receive_payments=False,
                onboarding_complete=False,
            )
        return cls(
            onboarding_status=account.onboarding_status,
            ready_to_receive_payments=account.can_receive_funds,
            onboarding_complete=account.onboarding_complete,
            charges_enabled=account.charges_enabled,
            payouts_enabled=account.payouts_enabled,
            details_submitted=account.details_submitted,
            payouts_on_hold=account.payouts_on_hold,
            last_synced_at=account.last_synced_at,
        )


class OnboardingOrchestrator(BaseService):
    """
    Entry point for provider onboarding.

    All methods are class methods - no instance state is maintained.
    Capability flags are never written here; refresh_status goes through
    AccountStore.apply_capabilities like a webhook would.
    """

    @classmethod
    def start_onboarding(
        cls,
        provider_id: uuid.UUID | str,
        return_url: str,
        refresh_url: str,
    ) -> ServiceResult[OnboardingLink]:
        """
        Return an onboarding link for the provider, creating the account first
        if needed.

        An unexpired link is returned as is. If link issuance fails, the
        committed account stays NOT_STARTED and a retry resumes from there.
        A link that comes back already expired (a replayed response) is
        requested once more under a fresh idempotency key.

        Error codes:
            INVALID_PROFILE: Unknown or inactive provider, or rejected profile
            PROCESSOR_UNAVAILABLE: Retryable processor failure
            ACCOUNT_NOT_FOUND: Processor no longer knows the stored account
        """
        logger = cls.get_logger()

        provider = get_provider_profile(provider_id)
        if provider is None or not provider.is_active:
            logger.warning(
                "Onboarding requested for unknown or inactive provider",
                extra={"provider_id": str(provider_id)},
            )
            return ServiceResult.failure(
                "Provider profile is missing or inactive",
                error_code="INVALID_PROFILE",
            )

        logger.info(
            "Starting onboarding",
            extra={"provider_id": str(provider.id)},
        )

        try:
            account = AccountStore.get(provider.id)
            if account is None:
                created = StripeAdapter.create_account(
                    CreateAccountParams(
                        provider_id=provider.id,
                        idempotency_key=IdempotencyKeyGenerator.generate(
                            operation="create_account",
                            entity_id=provider.id,
                        ),
                        country=provider.country,
                        email=provider.contact_email or None,
                        display_name=provider.display_name,
                    )
                )
                # Committed on its own so a failed link request can resume
                account = AccountStore.upsert(created.id, provider.id)

            latest = account.onboarding_links.order_by("-created_at").first()
            if latest is not None and not latest.is_expired:
                logger.info(
                    "Reusing unexpired onboarding link",
                    extra={
                        "provider_id": str(provider.id),
                        "link_id": str(latest.id),
                    },
                )
                return ServiceResult.success(latest)

            attempt = account.onboarding_links.count() + 1
            link_result = cls._request_link(account, return_url, refresh_url, attempt)
            if link_result.expires_at <= timezone.now():
                # Same key after a lost response: Stripe replayed a dead link
                logger.warning(
                    "Processor returned an expired onboarding link, requesting a fresh one",
                    extra={
                        "provider_id": str(provider.id),
                        "stripe_account_id": account.stripe_account_id,
                        "attempt": attempt,
                    },
                )
                link_result = cls._request_link(
                    account,
                    return_url,
                    refresh_url,
                    attempt,
                    nonce=uuid.uuid4().hex[:12],
                )
                if link_result.expires_at <= timezone.now():
                    return ServiceResult.failure(
                        "Stripe returned an expired onboarding link. Please retry.",
                        error_code="PROCESSOR_UNAVAILABLE",
                        retryable=True,
                    )

        except ProcessorError as e:
            return cls.handle_exception(
                e,
                f"Onboarding failed for provider {provider.id}",
                logging.WARNING,
            )
        except ConflictError as e:
            return cls.handle_exception(e, "Onboarding account conflict")

        with cls.atomic():
            link = OnboardingLink.objects.create(
                account=account,
                url=link_result.url,
                expires_at=link_result.expires_at,
            )
            AccountStore.mark_link_issued(account)

        logger.info(
            "Onboarding link issued",
            extra={
                "provider_id": str(provider.id),
                "stripe_account_id": account.stripe_account_id,
                "link_id": str(link.id),
                "expires_at": link.expires_at.isoformat(),
            },
        )
        return ServiceResult.success(link)

    @classmethod
    def _request_link(
        cls,
        account: ConnectedAccount,
        return_url: str,
        refresh_url: str,
        attempt: int,
        nonce: str | None = None,
    ):
        return StripeAdapter.create_onboarding_link(
            OnboardingLinkParams(
                stripe_account_id=account.stripe_account_id,
                return_url=return_url,
                refresh_url=refresh_url,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    operation="account_link",
                    entity_id=account.id,
                    attempt=attempt,
                    nonce=nonce,
                ),
            )
        )

    @classmethod
    def refresh_status(cls, provider_id: uuid.UUID | str) -> ServiceResult[ConnectedAccount]:
        """
        Poll the processor for the account's current capabilities.

        Used when the provider lands on the return URL (webhooks may lag)
        and by the reconciliation task.
        """
        account = AccountStore.get(provider_id)
        if account is None:
            return ServiceResult.failure(
                "Provider has not started onboarding",
                error_code="ACCOUNT_NOT_FOUND",
            )

        try:
            remote = StripeAdapter.retrieve_account(account.stripe_account_id)
        except ProcessorError as e:
            return cls.handle_exception(
                e,
                f"Status refresh failed for account {account.stripe_account_id}",
                logging.WARNING,
            )

        result = AccountStore.apply_capabilities(
            account.stripe_account_id,
            CapabilityUpdate.from_account_result(remote),
            observed_at=poll_observed_at(),
        )
        return result.map(lambda sync: sync.account)

    @classmethod
    def get_status(cls, provider_id: uuid.UUID | str) -> AccountStatusSummary:
        return AccountStatusSummary.from_account(AccountStore.get(provider_id))
