"""
URL configuration for the marketplace app.

All routes are prefixed with /api/v1/marketplace/ when included in the main URLconf.
"""

from django.urls import path

from marketplace.views import (
    CheckoutView,
    OnboardingRefreshView,
    OnboardingStartView,
    OnboardingStatusView,
    TransactionDetailView,
)
from marketplace.webhooks.views import stripe_connect_webhook, stripe_webhook

app_name = "marketplace"

urlpatterns = [
    # Onboarding
    path("onboarding/", OnboardingStartView.as_view(), name="onboarding_start"),
    path(
        "onboarding/refresh/",
        OnboardingRefreshView.as_view(),
        name="onboarding_refresh",
    ),
    path(
        "onboarding/status/",
        OnboardingStatusView.as_view(),
        name="onboarding_status",
    ),
    # Checkout
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path(
        "transactions/<uuid:pk>/",
        TransactionDetailView.as_view(),
        name="transaction_detail",
    ),
    # Webhook endpoints
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    path(
        "webhooks/stripe/connect/",
        stripe_connect_webhook,
        name="stripe_connect_webhook",
    ),
]
