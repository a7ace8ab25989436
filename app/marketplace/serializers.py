"""
Serializers for the marketplace API.

This module provides DRF serializers for:
- Onboarding requests and the provider's payment readiness
- Checkout requests
- BookingTransaction read operations

Related files:
    - views.py: Views that use these serializers
    - services/: OnboardingOrchestrator and CheckoutOrchestrator

Security:
    - Capability flags are read-only; only the processor changes them
    - Payment method tokens are write-only and never echoed back
"""

from django.conf import settings
from rest_framework import serializers

from marketplace.models import BookingTransaction, OnboardingLink
from marketplace.services.fees import FeeRule
from marketplace.state_machines import FeeType


# =============================================================================
# Onboarding
# =============================================================================


class OnboardingStartSerializer(serializers.Serializer):
    """
    Request body for starting onboarding.

    Both URLs are optional and fall back to ONBOARDING_RETURN_URL and
    ONBOARDING_REFRESH_URL.
    """

    return_url = serializers.URLField(required=False)
    refresh_url = serializers.URLField(required=False)

    def validate(self, attrs):
        attrs.setdefault("return_url", getattr(settings, "ONBOARDING_RETURN_URL", ""))
        attrs.setdefault("refresh_url", getattr(settings, "ONBOARDING_REFRESH_URL", ""))
        if not attrs["return_url"] or not attrs["refresh_url"]:
            raise serializers.ValidationError(
                "return_url and refresh_url are required"
            )
        return attrs


class OnboardingLinkSerializer(serializers.ModelSerializer):
    """Onboarding URL handed to the provider."""

    class Meta:
        model = OnboardingLink
        fields = ["url", "expires_at"]
        read_only_fields = fields


class AccountStatusSerializer(serializers.Serializer):
    """Serializes an AccountStatusSummary."""

    onboarding_status = serializers.CharField(read_only=True)
    ready_to_receive_payments = serializers.BooleanField(read_only=True)
    onboarding_complete = serializers.BooleanField(read_only=True)
    charges_enabled = serializers.BooleanField(read_only=True)
    payouts_enabled = serializers.BooleanField(read_only=True)
    details_submitted = serializers.BooleanField(read_only=True)
    payouts_on_hold = serializers.BooleanField(read_only=True)
    last_synced_at = serializers.DateTimeField(read_only=True, allow_null=True)


# =============================================================================
# Checkout
# =============================================================================


class CheckoutSerializer(serializers.Serializer):
    """
    Request body for paying a booking.

    The booking layer owns the price; the amount is passed through as is.
    A fee override is only honored for staff callers (see CheckoutView).
    """

    booking_id = serializers.UUIDField()
    provider_id = serializers.UUIDField()
    gross_amount_cents = serializers.IntegerField(min_value=1)
    payment_method_token = serializers.CharField(max_length=255, write_only=True)
    currency = serializers.CharField(max_length=3, min_length=3, required=False)
    fee_type = serializers.ChoiceField(choices=FeeType.choices, required=False)
    fee_value = serializers.DecimalField(
        max_digits=12,
        decimal_places=4,
        required=False,
        min_value=0,
    )

    def validate(self, attrs):
        fee_type = attrs.pop("fee_type", None)
        fee_value = attrs.pop("fee_value", None)
        if (fee_type is None) != (fee_value is None):
            raise serializers.ValidationError(
                "fee_type and fee_value must be given together"
            )
        if fee_type is not None:
            try:
                attrs["fee_rule"] = FeeRule(fee_type, fee_value)
            except ValueError as e:
                raise serializers.ValidationError({"fee_value": str(e)})
        return attrs


class BookingTransactionSerializer(serializers.ModelSerializer):
    """BookingTransaction read serializer."""

    provider_amount_cents = serializers.IntegerField(read_only=True)

    class Meta:
        model = BookingTransaction
        fields = [
            "id",
            "booking_id",
            "provider",
            "status",
            "gross_amount_cents",
            "platform_fee_cents",
            "provider_amount_cents",
            "fee_type",
            "fee_rate",
            "currency",
            "processor_charge_id",
            "failure_code",
            "failure_reason",
            "finalized_at",
            "created_at",
        ]
        read_only_fields = fields
