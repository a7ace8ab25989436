"""
Views for the marketplace API.

Endpoints:
    POST /api/v1/marketplace/onboarding/ - Start (or resume) onboarding
    POST /api/v1/marketplace/onboarding/refresh/ - Re-sync account from Stripe
    GET /api/v1/marketplace/onboarding/status/ - Payment readiness
    POST /api/v1/marketplace/checkout/ - Pay for a booking
    GET /api/v1/marketplace/transactions/{id}/ - Transaction detail

The Stripe webhook endpoint lives in marketplace.webhooks.views.

Permissions:
    - All endpoints require authentication
    - Onboarding endpoints act on the caller's own ServicePro profile
    - Transactions are visible to their customer and their provider only
"""

from __future__ import annotations

from django.db.models import Q
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.services import ServiceResult

from marketplace.accessors import get_provider_for_user
from marketplace.models import BookingTransaction
from marketplace.serializers import (
    AccountStatusSerializer,
    BookingTransactionSerializer,
    CheckoutSerializer,
    OnboardingLinkSerializer,
    OnboardingStartSerializer,
)
from marketplace.services import (
    CheckoutOrchestrator,
    CheckoutParams,
    OnboardingOrchestrator,
    is_enabled,
)


# =============================================================================
# Error Mapping
# =============================================================================

ERROR_STATUS = {
    "INVALID_PROFILE": status.HTTP_400_BAD_REQUEST,
    "INVALID_PROCESSOR_REQUEST": status.HTTP_400_BAD_REQUEST,
    "CARD_DECLINED": status.HTTP_402_PAYMENT_REQUIRED,
    "ACCOUNT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PROVIDER_NOT_ELIGIBLE": status.HTTP_409_CONFLICT,
    "ALREADY_PAID": status.HTTP_409_CONFLICT,
    "ACCOUNT_INELIGIBLE": status.HTTP_409_CONFLICT,
    "ACCOUNT_ID_CONFLICT": status.HTTP_409_CONFLICT,
    "PROCESSOR_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
}

PROCESSOR_UNAVAILABLE_MESSAGE = (
    "Payments are temporarily unavailable. Please try again shortly."
)


def failure_response(result: ServiceResult) -> Response:
    """Translate a failed ServiceResult into an API error response."""
    body = result.to_response()
    if result.error_code == "PROCESSOR_UNAVAILABLE":
        body["error"] = PROCESSOR_UNAVAILABLE_MESSAGE
    http_status = ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST)
    return Response(body, status=http_status)


def _no_provider_profile() -> Response:
    return Response(
        {"success": False, "error": "No provider profile for this user"},
        status=status.HTTP_404_NOT_FOUND,
    )


# =============================================================================
# Onboarding
# =============================================================================


class OnboardingStartView(APIView):
    """
    Start onboarding for the caller's provider profile.

    POST /api/v1/marketplace/onboarding/

    Request body (both optional):
        {"return_url": "https://...", "refresh_url": "https://..."}

    Returns:
        {"url": "https://connect.stripe.com/...", "expires_at": "..."}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="start_onboarding",
        summary="Start provider onboarding",
        request=OnboardingStartSerializer,
        responses={
            200: OnboardingLinkSerializer,
            400: OpenApiResponse(description="Invalid provider profile"),
            404: OpenApiResponse(description="No provider profile"),
            503: OpenApiResponse(description="Payment processor unavailable"),
        },
        tags=["Marketplace - Onboarding"],
    )
    def post(self, request):
        provider = get_provider_for_user(request.user)
        if provider is None:
            return _no_provider_profile()

        serializer = OnboardingStartSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = OnboardingOrchestrator.start_onboarding(
            provider_id=provider.id,
            return_url=serializer.validated_data["return_url"],
            refresh_url=serializer.validated_data["refresh_url"],
        )
        if not result.success:
            return failure_response(result)

        return Response(OnboardingLinkSerializer(result.data).data)


class OnboardingRefreshView(APIView):
    """
    Re-sync the caller's connected account from Stripe.

    POST /api/v1/marketplace/onboarding/refresh/

    Called when the provider lands on the return URL, since the
    account.updated webhook may not have arrived yet.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="refresh_onboarding",
        summary="Refresh onboarding status",
        request=None,
        responses={
            200: AccountStatusSerializer,
            404: OpenApiResponse(description="Onboarding not started"),
            503: OpenApiResponse(description="Payment processor unavailable"),
        },
        tags=["Marketplace - Onboarding"],
    )
    def post(self, request):
        provider = get_provider_for_user(request.user)
        if provider is None:
            return _no_provider_profile()

        result = OnboardingOrchestrator.refresh_status(provider.id)
        if not result.success:
            return failure_response(result)

        summary = OnboardingOrchestrator.get_status(provider.id)
        return Response(AccountStatusSerializer(summary).data)


class OnboardingStatusView(APIView):
    """
    Read the caller's payment readiness from local state.

    GET /api/v1/marketplace/onboarding/status/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_onboarding_status",
        summary="Get onboarding status",
        responses={
            200: AccountStatusSerializer,
            404: OpenApiResponse(description="No provider profile"),
        },
        tags=["Marketplace - Onboarding"],
    )
    def get(self, request):
        provider = get_provider_for_user(request.user)
        if provider is None:
            return _no_provider_profile()

        summary = OnboardingOrchestrator.get_status(provider.id)
        return Response(AccountStatusSerializer(summary).data)


# =============================================================================
# Checkout
# =============================================================================


class CheckoutView(APIView):
    """
    Pay for a booking with a split payment.

    POST /api/v1/marketplace/checkout/

    Request body:
        {
            "booking_id": "uuid",
            "provider_id": "uuid",
            "gross_amount_cents": 10000,
            "payment_method_token": "pm_xxx"
        }

    Returns:
        201 with the PENDING transaction. The final outcome arrives by
        webhook; poll the transaction detail endpoint for it.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="checkout_booking",
        summary="Pay for a booking",
        request=CheckoutSerializer,
        responses={
            201: BookingTransactionSerializer,
            402: OpenApiResponse(description="Card declined"),
            403: OpenApiResponse(description="Checkout is disabled"),
            409: OpenApiResponse(description="Provider not eligible or booking already paid"),
            503: OpenApiResponse(description="Payment processor unavailable"),
        },
        tags=["Marketplace - Checkout"],
    )
    def post(self, request):
        if not is_enabled("checkout"):
            return Response(
                {"success": False, "error": "Checkout is currently disabled"},
                status=status.HTTP_403_FORBIDDEN,
            )

        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        fee_rule = data.get("fee_rule") if request.user.is_staff else None

        result = CheckoutOrchestrator.checkout(
            CheckoutParams(
                booking_id=data["booking_id"],
                customer_id=request.user.pk,
                provider_id=data["provider_id"],
                gross_amount_cents=data["gross_amount_cents"],
                payment_method_token=data["payment_method_token"],
                fee_rule=fee_rule,
                currency=data.get("currency"),
            )
        )
        if not result.success:
            return failure_response(result)

        return Response(
            BookingTransactionSerializer(result.data).data,
            status=status.HTTP_201_CREATED,
        )


class TransactionDetailView(APIView):
    """
    Get a booking transaction.

    GET /api/v1/marketplace/transactions/{id}/

    Returns 404 for transactions the caller is not a party to.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_booking_transaction",
        summary="Get booking transaction",
        responses={
            200: BookingTransactionSerializer,
            404: OpenApiResponse(description="Transaction not found"),
        },
        tags=["Marketplace - Checkout"],
    )
    def get(self, request, pk):
        txn = (
            BookingTransaction.objects.filter(pk=pk)
            .filter(Q(customer=request.user) | Q(provider__user=request.user))
            .first()
        )
        if txn is None:
            return Response(
                {"success": False, "error": "Transaction not found"},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(BookingTransactionSerializer(txn).data)
