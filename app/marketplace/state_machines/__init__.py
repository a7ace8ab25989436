"""
State machine enums for marketplace models.
"""

from marketplace.state_machines.states import (
    FeeType,
    OnboardingStatus,
    TransactionStatus,
    WebhookEventStatus,
)

__all__ = [
    "FeeType",
    "OnboardingStatus",
    "TransactionStatus",
    "WebhookEventStatus",
]
