"""
Marketplace services.

This module provides:
- AccountStore: Single writer of connected account state
- OnboardingOrchestrator: Account creation, onboarding links, status polls
- CheckoutOrchestrator: Split-payment checkout with a platform fee
- FeeRule / compute_platform_fee: Platform fee model
- is_enabled: Runtime feature gate

Usage:
    from marketplace.services import CheckoutOrchestrator, CheckoutParams

    result = CheckoutOrchestrator.checkout(CheckoutParams(...))
"""

from marketplace.services.account_store import (
    AccountStore,
    AccountSyncResult,
    CapabilityUpdate,
    derive_onboarding_status,
)
from marketplace.services.checkout import CheckoutOrchestrator, CheckoutParams
from marketplace.services.feature_flags import is_enabled
from marketplace.services.fees import FeeRule, compute_platform_fee
from marketplace.services.onboarding import (
    AccountStatusSummary,
    OnboardingOrchestrator,
)

__all__ = [
    "AccountStatusSummary",
    "AccountStore",
    "AccountSyncResult",
    "CapabilityUpdate",
    "CheckoutOrchestrator",
    "CheckoutParams",
    "FeeRule",
    "OnboardingOrchestrator",
    "compute_platform_fee",
    "derive_onboarding_status",
    "is_enabled",
]
