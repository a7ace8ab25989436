"""
Pytest fixtures shared by the marketplace test packages.

Fixtures provide providers and accounts in each onboarding state, and
booking transactions in each FSM state.

Usage:
    def test_checkout(complete_account, customer):
        result = CheckoutOrchestrator.checkout(...)
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from marketplace.state_machines import OnboardingStatus, TransactionStatus
from marketplace.tests.factories import (
    BookingTransactionFactory,
    ConnectedAccountFactory,
    FeatureFlagFactory,
    ServiceProFactory,
    UserFactory,
)


# =============================================================================
# User and Provider Fixtures
# =============================================================================


@pytest.fixture
def customer(db):
    """A customer paying for bookings."""
    return UserFactory(username="customer")


@pytest.fixture
def provider(db):
    """An active provider with a login user and no connected account."""
    return ServiceProFactory(display_name="Harbor Sound Studio")


@pytest.fixture
def inactive_provider(db):
    return ServiceProFactory(is_active=False)


# =============================================================================
# Connected Account Fixtures
# =============================================================================


@pytest.fixture
def not_started_account(db, provider):
    """Account created on the processor, no link issued yet."""
    return ConnectedAccountFactory(
        provider=provider,
        stripe_account_id="acct_test_not_started",
        onboarding_status=OnboardingStatus.NOT_STARTED,
        charges_enabled=False,
        payouts_enabled=False,
        details_submitted=False,
        last_synced_at=None,
    )


@pytest.fixture
def in_progress_account(db, provider):
    """Provider submitted details; capabilities not enabled yet."""
    return ConnectedAccountFactory(
        provider=provider,
        stripe_account_id="acct_test_in_progress",
        onboarding_status=OnboardingStatus.IN_PROGRESS,
        charges_enabled=False,
        payouts_enabled=False,
        details_submitted=True,
    )


@pytest.fixture
def complete_account(db, provider):
    """Account that can receive destination charges."""
    return ConnectedAccountFactory(
        provider=provider,
        stripe_account_id="acct_test_complete",
    )


@pytest.fixture
def restricted_account(db, provider):
    return ConnectedAccountFactory(
        provider=provider,
        stripe_account_id="acct_test_restricted",
        onboarding_status=OnboardingStatus.RESTRICTED,
        charges_enabled=False,
        payouts_enabled=True,
        disabled_reason="rejected.fraud",
    )


# =============================================================================
# BookingTransaction State Fixtures
# =============================================================================


@pytest.fixture
def pending_transaction(db, complete_account, customer):
    """PENDING transaction linked to charge pi_test_pending."""
    return BookingTransactionFactory(
        account=complete_account,
        customer=customer,
        processor_charge_id="pi_test_pending",
    )


@pytest.fixture
def succeeded_transaction(db, complete_account, customer):
    txn = BookingTransactionFactory(
        account=complete_account,
        customer=customer,
        processor_charge_id="pi_test_succeeded",
    )
    txn.mark_succeeded()
    txn.save()
    return txn


@pytest.fixture
def failed_transaction(db, complete_account, customer):
    """FAILED transaction, e.g. a charge call that timed out locally."""
    return BookingTransactionFactory(
        account=complete_account,
        customer=customer,
        processor_charge_id="pi_test_failed",
        status=TransactionStatus.FAILED,
        failure_code="PROCESSOR_UNAVAILABLE",
        failure_reason="Could not connect to Stripe. Please retry.",
    )


# =============================================================================
# Feature Flag Fixtures
# =============================================================================


@pytest.fixture
def checkout_enabled(db, settings):
    """Turn the checkout feature on in both the environment and the database."""
    settings.FEATURE_FLAGS = ["checkout"]
    return FeatureFlagFactory(key="checkout", enabled=True)


# =============================================================================
# API Client Fixtures
# =============================================================================


def _jwt_client(user) -> APIClient:
    client = APIClient()
    refresh = RefreshToken.for_user(user)
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
    return client


@pytest.fixture
def api_client():
    """Return unauthenticated API client."""
    return APIClient()


@pytest.fixture
def customer_client(customer):
    """API client authenticated as the customer with a JWT."""
    return _jwt_client(customer)


@pytest.fixture
def provider_client(provider):
    """API client authenticated as the provider's login user."""
    return _jwt_client(provider.user)


@pytest.fixture
def staff_client(db):
    return _jwt_client(UserFactory(username="ops", is_staff=True))
