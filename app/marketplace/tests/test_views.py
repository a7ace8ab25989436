"""
Tests for the marketplace API views.

Tests cover:
- Onboarding start, refresh and status for the caller's provider profile
- Checkout gating, request validation and error mapping
- Transaction visibility to the parties of the transaction
"""

import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone
from rest_framework import status

from core.services import ServiceResult
from marketplace.adapters import AccountResult, ChargeResult, OnboardingLinkResult
from marketplace.exceptions import CardDeclinedError, ProcessorUnavailableError
from marketplace.models import BookingTransaction
from marketplace.state_machines import FeeType, OnboardingStatus, TransactionStatus
from marketplace.tests.factories import (
    BookingTransactionFactory,
    FeatureFlagFactory,
    UserFactory,
)


# =============================================================================
# URL Constants
# =============================================================================


ONBOARDING_URL = "/api/v1/marketplace/onboarding/"
ONBOARDING_REFRESH_URL = "/api/v1/marketplace/onboarding/refresh/"
ONBOARDING_STATUS_URL = "/api/v1/marketplace/onboarding/status/"
CHECKOUT_URL = "/api/v1/marketplace/checkout/"


def transaction_detail_url(transaction_id):
    return f"/api/v1/marketplace/transactions/{transaction_id}/"


@pytest.fixture
def mock_adapter():
    """Patch the StripeAdapter used by the orchestrators."""
    with patch("marketplace.services.onboarding.StripeAdapter") as onboarding, patch(
        "marketplace.services.checkout.StripeAdapter"
    ) as checkout:
        onboarding.create_account.return_value = AccountResult(id="acct_api")
        onboarding.create_onboarding_link.return_value = OnboardingLinkResult(
            url="https://connect.stripe.com/setup/e/acct_api/abc",
            expires_at=timezone.now() + timedelta(minutes=5),
        )
        checkout.create_destination_charge.return_value = ChargeResult(
            id="pi_api",
            status="processing",
            amount_cents=10000,
            currency="usd",
        )
        yield onboarding, checkout


# =============================================================================
# Onboarding
# =============================================================================


@pytest.mark.django_db
class TestOnboardingViews:
    """Tests for the onboarding endpoints."""

    def test_requires_authentication(self, api_client):
        response = api_client.post(ONBOARDING_URL)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_start_returns_link(self, provider_client, provider, mock_adapter):
        response = provider_client.post(ONBOARDING_URL, {}, format="json")

        assert response.status_code == status.HTTP_200_OK
        assert response.data["url"] == "https://connect.stripe.com/setup/e/acct_api/abc"
        assert "expires_at" in response.data
        assert provider.connected_account.onboarding_status == OnboardingStatus.LINK_ISSUED

    def test_start_uses_default_urls(self, provider_client, settings, mock_adapter):
        settings.ONBOARDING_RETURN_URL = "https://app.example.com/return"
        settings.ONBOARDING_REFRESH_URL = "https://app.example.com/refresh"

        provider_client.post(ONBOARDING_URL, {}, format="json")

        onboarding, _ = mock_adapter
        link_params = onboarding.create_onboarding_link.call_args[0][0]
        assert link_params.return_url == "https://app.example.com/return"
        assert link_params.refresh_url == "https://app.example.com/refresh"

    def test_start_with_custom_urls(self, provider_client, mock_adapter):
        provider_client.post(
            ONBOARDING_URL,
            {
                "return_url": "https://pro.example.com/done",
                "refresh_url": "https://pro.example.com/again",
            },
            format="json",
        )

        onboarding, _ = mock_adapter
        link_params = onboarding.create_onboarding_link.call_args[0][0]
        assert link_params.return_url == "https://pro.example.com/done"

    def test_start_rejects_invalid_url(self, provider_client, mock_adapter):
        response = provider_client.post(
            ONBOARDING_URL, {"return_url": "not a url"}, format="json"
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_start_without_provider_profile(self, customer_client, mock_adapter):
        response = customer_client.post(ONBOARDING_URL, {}, format="json")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error"] == "No provider profile for this user"

    def test_start_processor_unavailable(self, provider_client, mock_adapter):
        onboarding, _ = mock_adapter
        onboarding.create_account.side_effect = ProcessorUnavailableError(
            "Stripe is temporarily unavailable."
        )

        response = provider_client.post(ONBOARDING_URL, {}, format="json")

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.data["error_code"] == "PROCESSOR_UNAVAILABLE"
        assert response.data["retryable"] is True
        assert response.data["error"] == (
            "Payments are temporarily unavailable. Please try again shortly."
        )

    def test_refresh(self, provider_client, in_progress_account, mock_adapter):
        onboarding, _ = mock_adapter
        onboarding.retrieve_account.return_value = AccountResult(
            id="acct_test_in_progress",
            charges_enabled=True,
            payouts_enabled=True,
            details_submitted=True,
        )

        response = provider_client.post(ONBOARDING_REFRESH_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["onboarding_status"] == OnboardingStatus.COMPLETE
        assert response.data["ready_to_receive_payments"] is True

    def test_refresh_before_onboarding(self, provider_client, mock_adapter):
        response = provider_client.post(ONBOARDING_REFRESH_URL)

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data["error_code"] == "ACCOUNT_NOT_FOUND"

    def test_status(self, provider_client, restricted_account):
        response = provider_client.get(ONBOARDING_STATUS_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["onboarding_status"] == OnboardingStatus.RESTRICTED
        assert response.data["ready_to_receive_payments"] is False
        assert response.data["onboarding_complete"] is False
        assert response.data["charges_enabled"] is False
        assert response.data["payouts_enabled"] is True
        assert response.data["payouts_on_hold"] is False

    def test_status_without_account(self, provider_client):
        response = provider_client.get(ONBOARDING_STATUS_URL)

        assert response.status_code == status.HTTP_200_OK
        assert response.data["onboarding_status"] == OnboardingStatus.NOT_STARTED
        assert response.data["last_synced_at"] is None


# =============================================================================
# Checkout
# =============================================================================


def checkout_body(provider, **overrides):
    body = {
        "booking_id": str(uuid.uuid4()),
        "provider_id": str(provider.id),
        "gross_amount_cents": 10000,
        "payment_method_token": "pm_card_visa",
    }
    body.update(overrides)
    return body


@pytest.mark.django_db
class TestCheckoutView:
    """Tests for POST /checkout/."""

    def test_creates_pending_transaction(
        self, customer_client, customer, complete_account, checkout_enabled, mock_adapter
    ):
        response = customer_client.post(
            CHECKOUT_URL, checkout_body(complete_account.provider), format="json"
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["status"] == TransactionStatus.PENDING
        assert response.data["processor_charge_id"] == "pi_api"
        assert response.data["platform_fee_cents"] == 1500
        assert response.data["provider_amount_cents"] == 8500
        assert "payment_method_token" not in response.data
        txn = BookingTransaction.objects.get(pk=response.data["id"])
        assert txn.customer == customer

    def test_disabled_by_environment(
        self, customer_client, complete_account, settings, mock_adapter
    ):
        settings.FEATURE_FLAGS = []
        FeatureFlagFactory(key="checkout", enabled=True)

        response = customer_client.post(
            CHECKOUT_URL, checkout_body(complete_account.provider), format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        _, checkout = mock_adapter
        checkout.create_destination_charge.assert_not_called()

    def test_disabled_in_database(
        self, customer_client, complete_account, settings, mock_adapter
    ):
        settings.FEATURE_FLAGS = ["checkout"]
        FeatureFlagFactory(key="checkout", enabled=False)

        response = customer_client.post(
            CHECKOUT_URL, checkout_body(complete_account.provider), format="json"
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    @pytest.mark.parametrize(
        "overrides",
        [
            {"gross_amount_cents": 0},
            {"booking_id": "not-a-uuid"},
            {"payment_method_token": ""},
            {"fee_type": FeeType.FIXED},
            {"currency": "dollars"},
        ],
    )
    def test_invalid_request(
        self, customer_client, complete_account, checkout_enabled, mock_adapter, overrides
    ):
        response = customer_client.post(
            CHECKOUT_URL,
            checkout_body(complete_account.provider, **overrides),
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert not BookingTransaction.objects.exists()

    def test_fee_override_ignored_for_customers(
        self, customer_client, complete_account, checkout_enabled, mock_adapter
    ):
        response = customer_client.post(
            CHECKOUT_URL,
            checkout_body(complete_account.provider, fee_type=FeeType.FIXED, fee_value="0"),
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["platform_fee_cents"] == 1500

    def test_fee_override_for_staff(
        self, staff_client, complete_account, checkout_enabled, mock_adapter
    ):
        response = staff_client.post(
            CHECKOUT_URL,
            checkout_body(complete_account.provider, fee_type=FeeType.FIXED, fee_value="700"),
            format="json",
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data["platform_fee_cents"] == 700
        assert response.data["fee_type"] == FeeType.FIXED

    def test_invalid_percentage_rejected(
        self, staff_client, complete_account, checkout_enabled, mock_adapter
    ):
        response = staff_client.post(
            CHECKOUT_URL,
            checkout_body(
                complete_account.provider, fee_type=FeeType.PERCENTAGE, fee_value="1.5"
            ),
            format="json",
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "fee_value" in response.data

    def test_provider_not_eligible(
        self, customer_client, in_progress_account, checkout_enabled, mock_adapter
    ):
        response = customer_client.post(
            CHECKOUT_URL, checkout_body(in_progress_account.provider), format="json"
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "PROVIDER_NOT_ELIGIBLE"

    def test_already_paid(
        self, customer_client, pending_transaction, checkout_enabled, mock_adapter
    ):
        response = customer_client.post(
            CHECKOUT_URL,
            checkout_body(
                pending_transaction.provider,
                booking_id=str(pending_transaction.booking_id),
            ),
            format="json",
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data["error_code"] == "ALREADY_PAID"

    def test_card_declined(
        self, customer_client, complete_account, checkout_enabled, mock_adapter
    ):
        _, checkout = mock_adapter
        checkout.create_destination_charge.side_effect = CardDeclinedError(
            "Your card was declined.", decline_code="generic_decline"
        )

        response = customer_client.post(
            CHECKOUT_URL, checkout_body(complete_account.provider), format="json"
        )

        assert response.status_code == status.HTTP_402_PAYMENT_REQUIRED
        assert response.data["error_code"] == "CARD_DECLINED"
        assert response.data["error"] == "Your card was declined."

    def test_unmapped_error_code_is_bad_request(
        self, customer_client, complete_account, checkout_enabled
    ):
        with patch(
            "marketplace.views.CheckoutOrchestrator.checkout",
            return_value=ServiceResult.failure("Odd", error_code="SOMETHING_ELSE"),
        ):
            response = customer_client.post(
                CHECKOUT_URL, checkout_body(complete_account.provider), format="json"
            )

        assert response.status_code == status.HTTP_400_BAD_REQUEST


# =============================================================================
# Transaction Detail
# =============================================================================


@pytest.mark.django_db
class TestTransactionDetailView:
    """Tests for GET /transactions/{id}/."""

    def test_customer_can_read(self, customer_client, pending_transaction):
        response = customer_client.get(transaction_detail_url(pending_transaction.id))

        assert response.status_code == status.HTTP_200_OK
        assert response.data["id"] == str(pending_transaction.id)
        assert response.data["status"] == TransactionStatus.PENDING

    def test_provider_can_read(self, provider_client, pending_transaction):
        response = provider_client.get(transaction_detail_url(pending_transaction.id))

        assert response.status_code == status.HTTP_200_OK

    def test_other_user_gets_404(self, api_client, pending_transaction):
        api_client.force_authenticate(user=UserFactory(username="stranger"))

        response = api_client.get(transaction_detail_url(pending_transaction.id))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_unknown_id(self, customer_client):
        response = customer_client.get(transaction_detail_url(uuid.uuid4()))

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_failure_details_shown(self, customer_client, customer, complete_account):
        txn = BookingTransactionFactory(
            account=complete_account,
            customer=customer,
            status=TransactionStatus.FAILED,
            failure_code="CARD_DECLINED",
            failure_reason="Your card was declined.",
        )

        response = customer_client.get(transaction_detail_url(txn.id))

        assert response.data["failure_code"] == "CARD_DECLINED"
        assert response.data["failure_reason"] == "Your card was declined."
