"""
External service adapters for the marketplace.

StripeAdapter is the only code allowed to talk to the payment processor.
"""

from marketplace.adapters.stripe_adapter import (
    AccountResult,
    ChargeResult,
    CreateAccountParams,
    DestinationChargeParams,
    IdempotencyKeyGenerator,
    OnboardingLinkParams,
    OnboardingLinkResult,
    StripeAdapter,
    backoff_delay,
    is_retryable_processor_error,
)

__all__ = [
    "AccountResult",
    "ChargeResult",
    "CreateAccountParams",
    "DestinationChargeParams",
    "IdempotencyKeyGenerator",
    "OnboardingLinkParams",
    "OnboardingLinkResult",
    "StripeAdapter",
    "backoff_delay",
    "is_retryable_processor_error",
]
