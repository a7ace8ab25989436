"""
Marketplace domain models.

- ServicePro: Provider who can be booked and paid
- ConnectedAccount: Provider's processor account and its capabilities
- OnboardingLink: Time-boxed onboarding URLs issued for an account
- BookingTransaction: One checkout attempt for a booking
- WebhookEvent: Ledger of processor events for idempotent processing
- FeatureFlag: Database side of the runtime feature gate
"""

from marketplace.models.booking_transaction import BookingTransaction
from marketplace.models.connected_account import ConnectedAccount
from marketplace.models.feature_flag import FeatureFlag
from marketplace.models.onboarding_link import OnboardingLink
from marketplace.models.provider import ServicePro
from marketplace.models.webhook_event import WebhookEvent

__all__ = [
    "BookingTransaction",
    "ConnectedAccount",
    "FeatureFlag",
    "OnboardingLink",
    "ServicePro",
    "WebhookEvent",
]
