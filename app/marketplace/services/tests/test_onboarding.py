"""
Tests for OnboardingOrchestrator.

Tests cover:
- Account creation on first use and link issuance
- Reuse of an unexpired link, replacement of an expired one
- Resuming after a failed link request
- A replayed, already expired link requested again under a fresh key
- Status refresh through the account store
- The read-only status summary
"""

from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from unittest.mock import patch

import pytest
from django.utils import timezone
from freezegun import freeze_time

from marketplace.adapters import AccountResult, OnboardingLinkResult
from marketplace.exceptions import (
    AccountNotFoundError,
    InvalidProfileError,
    ProcessorUnavailableError,
)
from marketplace.models import ConnectedAccount, OnboardingLink
from marketplace.services.account_store import AccountStore, CapabilityUpdate
from marketplace.services.onboarding import OnboardingOrchestrator
from marketplace.state_machines import OnboardingStatus
from marketplace.tests.factories import OnboardingLinkFactory


RETURN_URL = "https://app.example.com/pro/onboarding/return"
REFRESH_URL = "https://app.example.com/pro/onboarding/refresh"


@pytest.fixture
def mock_adapter():
    """Patch the StripeAdapter used by the orchestrator."""
    with patch("marketplace.services.onboarding.StripeAdapter") as mock:
        mock.create_account.return_value = AccountResult(id="acct_created")
        mock.create_onboarding_link.return_value = OnboardingLinkResult(
            url="https://connect.stripe.com/setup/e/acct_created/xyz",
            expires_at=timezone.now() + timedelta(minutes=5),
        )
        yield mock


def start(provider):
    return OnboardingOrchestrator.start_onboarding(
        provider_id=provider.id,
        return_url=RETURN_URL,
        refresh_url=REFRESH_URL,
    )


# =============================================================================
# start_onboarding
# =============================================================================


@pytest.mark.django_db
class TestStartOnboarding:
    """Tests for OnboardingOrchestrator.start_onboarding."""

    def test_first_call_creates_account_and_link(self, provider, mock_adapter):
        result = start(provider)

        assert result.success
        assert result.data.url == "https://connect.stripe.com/setup/e/acct_created/xyz"

        account = ConnectedAccount.objects.get(provider=provider)
        assert account.stripe_account_id == "acct_created"
        assert account.onboarding_status == OnboardingStatus.LINK_ISSUED
        assert account.is_fully_enabled is False
        assert result.data.account_id == account.id

        create_params = mock_adapter.create_account.call_args[0][0]
        assert create_params.provider_id == provider.id
        assert create_params.display_name == "Harbor Sound Studio"
        assert create_params.idempotency_key.startswith(f"create_account:{provider.id}:1:")

        link_params = mock_adapter.create_onboarding_link.call_args[0][0]
        assert link_params.stripe_account_id == "acct_created"
        assert link_params.return_url == RETURN_URL
        assert link_params.refresh_url == REFRESH_URL

    def test_existing_account_is_not_recreated(self, not_started_account, mock_adapter):
        result = start(not_started_account.provider)

        assert result.success
        mock_adapter.create_account.assert_not_called()
        link_params = mock_adapter.create_onboarding_link.call_args[0][0]
        assert link_params.stripe_account_id == "acct_test_not_started"

    def test_unexpired_link_is_reused(self, not_started_account, mock_adapter):
        """Reloading the onboarding page does not burn a new link."""
        existing = OnboardingLinkFactory(account=not_started_account)

        result = start(not_started_account.provider)

        assert result.success
        assert result.data.pk == existing.pk
        mock_adapter.create_onboarding_link.assert_not_called()

    def test_expired_link_is_replaced(self, not_started_account, mock_adapter):
        expired = OnboardingLinkFactory(
            account=not_started_account,
            expires_at=timezone.now() - timedelta(seconds=1),
        )

        result = start(not_started_account.provider)

        assert result.success
        assert result.data.pk != expired.pk
        assert OnboardingLink.objects.filter(account=not_started_account).count() == 2

        link_params = mock_adapter.create_onboarding_link.call_args[0][0]
        assert link_params.idempotency_key.startswith(
            f"account_link:{not_started_account.id}:2:"
        )

    def test_replayed_expired_link_is_requested_again(self, not_started_account, mock_adapter):
        """A retry after a lost response gets Stripe's cached, expired link back."""
        fresh_expiry = timezone.now() + timedelta(minutes=5)
        mock_adapter.create_onboarding_link.side_effect = [
            OnboardingLinkResult(
                url="https://connect.stripe.com/setup/e/acct_test_not_started/stale",
                expires_at=timezone.now() - timedelta(minutes=10),
            ),
            OnboardingLinkResult(
                url="https://connect.stripe.com/setup/e/acct_test_not_started/fresh",
                expires_at=fresh_expiry,
            ),
        ]

        result = start(not_started_account.provider)

        assert result.success
        assert result.data.url.endswith("/fresh")
        assert result.data.is_expired is False
        assert OnboardingLink.objects.filter(account=not_started_account).count() == 1

        first, second = [
            call.args[0].idempotency_key
            for call in mock_adapter.create_onboarding_link.call_args_list
        ]
        assert first.startswith(f"account_link:{not_started_account.id}:1:")
        assert second.startswith(f"account_link:{not_started_account.id}:1-")
        assert first != second

    def test_expired_link_twice_is_a_retryable_failure(self, not_started_account, mock_adapter):
        mock_adapter.create_onboarding_link.return_value = OnboardingLinkResult(
            url="https://connect.stripe.com/setup/e/acct_test_not_started/stale",
            expires_at=timezone.now() - timedelta(minutes=10),
        )

        result = start(not_started_account.provider)

        assert not result.success
        assert result.error_code == "PROCESSOR_UNAVAILABLE"
        assert result.retryable is True
        assert mock_adapter.create_onboarding_link.call_count == 2
        assert not OnboardingLink.objects.exists()
        assert ConnectedAccount.objects.get(pk=not_started_account.pk).onboarding_status == (
            OnboardingStatus.NOT_STARTED
        )

    def test_link_failure_keeps_account_for_retry(self, provider, mock_adapter):
        """The account survives a failed link request; the retry resumes."""
        mock_adapter.create_onboarding_link.side_effect = ProcessorUnavailableError(
            "Could not connect to Stripe. Please retry."
        )

        result = start(provider)

        assert not result.success
        assert result.error_code == "PROCESSOR_UNAVAILABLE"
        assert result.retryable is True
        account = ConnectedAccount.objects.get(provider=provider)
        assert account.onboarding_status == OnboardingStatus.NOT_STARTED
        assert not OnboardingLink.objects.exists()

        mock_adapter.create_onboarding_link.side_effect = None
        retry = start(provider)

        assert retry.success
        assert mock_adapter.create_account.call_count == 1
        account = ConnectedAccount.objects.get(provider=provider)
        assert account.onboarding_status == OnboardingStatus.LINK_ISSUED

    def test_rejected_profile(self, provider, mock_adapter):
        mock_adapter.create_account.side_effect = InvalidProfileError(
            "Country is not supported"
        )

        result = start(provider)

        assert not result.success
        assert result.error_code == "INVALID_PROFILE"
        assert not ConnectedAccount.objects.filter(provider=provider).exists()

    def test_inactive_provider(self, inactive_provider, mock_adapter):
        result = start(inactive_provider)

        assert not result.success
        assert result.error_code == "INVALID_PROFILE"
        mock_adapter.create_account.assert_not_called()

    def test_unknown_provider(self, db, mock_adapter):
        result = OnboardingOrchestrator.start_onboarding(
            provider_id="00000000-0000-0000-0000-000000000000",
            return_url=RETURN_URL,
            refresh_url=REFRESH_URL,
        )

        assert not result.success
        assert result.error_code == "INVALID_PROFILE"

    @pytest.mark.parametrize(
        "status",
        [OnboardingStatus.IN_PROGRESS, OnboardingStatus.RESTRICTED],
    )
    def test_new_link_does_not_move_status_backwards(
        self, provider, mock_adapter, status
    ):
        account = ConnectedAccount.objects.create(
            provider=provider,
            stripe_account_id="acct_midway",
            onboarding_status=status,
            details_submitted=True,
        )

        result = start(provider)

        assert result.success
        assert ConnectedAccount.objects.get(pk=account.pk).onboarding_status == status

    def test_unknown_account_on_processor(self, not_started_account, mock_adapter):
        mock_adapter.create_onboarding_link.side_effect = AccountNotFoundError(
            "No such account: 'acct_test_not_started'"
        )

        result = start(not_started_account.provider)

        assert not result.success
        assert result.error_code == "ACCOUNT_NOT_FOUND"


# =============================================================================
# refresh_status / get_status
# =============================================================================


@pytest.mark.django_db
class TestRefreshStatus:
    """Tests for OnboardingOrchestrator.refresh_status."""

    def test_applies_remote_capabilities(self, in_progress_account, mock_adapter):
        mock_adapter.retrieve_account.return_value = AccountResult(
            id="acct_test_in_progress",
            charges_enabled=True,
            payouts_enabled=True,
            details_submitted=True,
        )

        result = OnboardingOrchestrator.refresh_status(in_progress_account.provider_id)

        assert result.success
        assert result.data.onboarding_status == OnboardingStatus.COMPLETE
        mock_adapter.retrieve_account.assert_called_once_with("acct_test_in_progress")

    def test_webhook_from_the_same_second_wins_over_poll(self, in_progress_account, mock_adapter):
        """event.created has whole-second resolution; the poll must not shadow it."""
        mock_adapter.retrieve_account.return_value = AccountResult(
            id="acct_test_in_progress",
            charges_enabled=True,
            payouts_enabled=True,
            details_submitted=True,
        )
        ConnectedAccount.objects.filter(pk=in_progress_account.pk).update(last_synced_at=None)

        with freeze_time("2026-03-01 12:00:00.700000"):
            OnboardingOrchestrator.refresh_status(in_progress_account.provider_id)
        account = ConnectedAccount.objects.get(pk=in_progress_account.pk)
        assert account.last_synced_at == datetime(2026, 3, 1, 11, 59, 59, tzinfo=dt_timezone.utc)

        result = AccountStore.apply_capabilities(
            "acct_test_in_progress",
            CapabilityUpdate(
                charges_enabled=False,
                payouts_enabled=False,
                details_submitted=True,
                disabled_reason="rejected.fraud",
            ),
            observed_at=datetime(2026, 3, 1, 12, 0, 0, tzinfo=dt_timezone.utc),
        )

        assert result.data.applied is True
        assert result.data.account.onboarding_status == OnboardingStatus.RESTRICTED

    def test_restriction_is_applied(self, complete_account, mock_adapter):
        mock_adapter.retrieve_account.return_value = AccountResult(
            id="acct_test_complete",
            charges_enabled=False,
            payouts_enabled=False,
            details_submitted=True,
            disabled_reason="rejected.terms_of_service",
        )

        result = OnboardingOrchestrator.refresh_status(complete_account.provider_id)

        assert result.data.onboarding_status == OnboardingStatus.RESTRICTED
        assert result.data.is_fully_enabled is False

    def test_no_account(self, provider, mock_adapter):
        result = OnboardingOrchestrator.refresh_status(provider.id)

        assert not result.success
        assert result.error_code == "ACCOUNT_NOT_FOUND"
        mock_adapter.retrieve_account.assert_not_called()

    def test_processor_failure_leaves_state(self, in_progress_account, mock_adapter):
        mock_adapter.retrieve_account.side_effect = ProcessorUnavailableError(
            "Stripe is temporarily unavailable."
        )

        result = OnboardingOrchestrator.refresh_status(in_progress_account.provider_id)

        assert not result.success
        assert result.retryable is True
        account = ConnectedAccount.objects.get(pk=in_progress_account.pk)
        assert account.onboarding_status == OnboardingStatus.IN_PROGRESS


@pytest.mark.django_db
class TestGetStatus:
    def test_without_account(self, provider):
        summary = OnboardingOrchestrator.get_status(provider.id)

        assert summary.onboarding_status == OnboardingStatus.NOT_STARTED
        assert summary.ready_to_receive_payments is False
        assert summary.onboarding_complete is False
        assert summary.last_synced_at is None

    def test_complete_account(self, complete_account):
        summary = OnboardingOrchestrator.get_status(complete_account.provider_id)

        assert summary.onboarding_status == OnboardingStatus.COMPLETE
        assert summary.ready_to_receive_payments is True
        assert summary.onboarding_complete is True
        assert summary.last_synced_at == complete_account.last_synced_at

    def test_restricted_account(self, restricted_account):
        """Submitted details do not count as complete while restricted."""
        summary = OnboardingOrchestrator.get_status(restricted_account.provider_id)

        assert summary.onboarding_status == OnboardingStatus.RESTRICTED
        assert summary.ready_to_receive_payments is False
        assert summary.onboarding_complete is False

    def test_held_account_is_not_ready(self, complete_account):
        complete_account.payouts_on_hold = True
        complete_account.payout_hold_reason = "manual_hold"
        complete_account.save()

        summary = OnboardingOrchestrator.get_status(complete_account.provider_id)

        assert summary.onboarding_complete is True
        assert summary.ready_to_receive_payments is False
        assert summary.payouts_on_hold is True
