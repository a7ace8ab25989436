"""
Marketplace exceptions for provider accounts, checkout and webhooks.

Payment processor errors are translated into this taxonomy by the
StripeAdapter; callers never see raw Stripe SDK exceptions.

Exception Hierarchy:
    MarketplaceError (base for the marketplace domain)
    ├── ProcessorError - Base for all translated processor errors
    │   ├── ProcessorUnavailableError - Timeout, network, 5xx, rate limit (retry)
    │   ├── InvalidProfileError - Processor rejected the provider profile
    │   ├── CardDeclinedError - Customer's card declined (user-correctable)
    │   ├── AccountNotFoundError - Connected account unknown to the processor
    │   ├── AccountIneligibleError - Destination account cannot receive funds
    │   ├── InvalidProcessorRequestError - Malformed request or bad credentials
    │   └── SignatureInvalidError - Webhook signature verification failed
    ├── ProviderNotEligibleError - Provider account cannot receive charges yet
    ├── AlreadyPaidError - Booking already has an active transaction
    └── WebhookProcessingError - Event could not be applied, redelivery expected

    ChargeAlreadyLinkedError - processor charge id is immutable (ConflictError)

Usage:
    from marketplace.exceptions import ProcessorError

    try:
        StripeAdapter.create_destination_charge(params)
    except ProcessorError as e:
        if e.is_retryable:
            return ServiceResult.failure(..., retryable=True)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Marketplace Domain Exceptions
# =============================================================================


class MarketplaceError(BaseApplicationError):
    """Base exception for all marketplace operations."""

    default_error_code: str = "MARKETPLACE_ERROR"
    is_retryable: bool = False


class WebhookProcessingError(MarketplaceError):
    """
    Raised when a webhook event could not be applied.

    Raising inside the processing transaction rolls back the ledger insert
    together with any partial effects; the endpoint answers non-2xx and the
    processor redelivers the event.
    """

    default_error_code: str = "WEBHOOK_PROCESSING_ERROR"
    is_retryable: bool = True


# =============================================================================
# Checkout Exceptions
# =============================================================================


class ProviderNotEligibleError(MarketplaceError):
    """The provider has no account, or its account cannot take charges yet."""

    default_error_code: str = "PROVIDER_NOT_ELIGIBLE"


class AlreadyPaidError(MarketplaceError):
    """The booking already has a pending, succeeded or refunded transaction."""

    default_error_code: str = "ALREADY_PAID"


# =============================================================================
# Processor Exceptions
# =============================================================================


class ProcessorError(MarketplaceError):
    """
    Base exception for translated payment processor errors.

    Attributes:
        processor_code: The processor's own error code, when it sent one
        decline_code: Card decline reason (card errors only)
        is_retryable: True for transient failures that are safe to repeat
            with the same idempotency key
    """

    default_error_code: str = "PROCESSOR_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        processor_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if processor_code:
            details["processor_code"] = processor_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.processor_code = processor_code
        self.decline_code = decline_code


class ProcessorUnavailableError(ProcessorError):
    """
    The processor could not be reached or failed transiently.

    Covers timeouts, connection errors, 5xx responses and rate limiting.
    The operation may have succeeded remotely; retrying with the same
    idempotency key returns the original result instead of repeating it.
    """

    default_error_code: str = "PROCESSOR_UNAVAILABLE"
    is_retryable: bool = True


class InvalidProfileError(ProcessorError):
    """The processor rejected the provider details sent on account creation."""

    default_error_code: str = "INVALID_PROFILE"


class CardDeclinedError(ProcessorError):
    """
    Customer's card was declined by the issuer.

    decline_code carries the reason (generic_decline, insufficient_funds,
    expired_card, ...). The customer must use a different payment method.
    """

    default_error_code: str = "CARD_DECLINED"


class AccountNotFoundError(ProcessorError):
    """The connected account does not exist on the processor side."""

    default_error_code: str = "ACCOUNT_NOT_FOUND"


class AccountIneligibleError(ProcessorError):
    """
    The destination account exists but cannot receive a destination charge.

    Usually a missing transfers capability. Local eligibility flags lag the
    processor; the next account webhook brings them in line.
    """

    default_error_code: str = "ACCOUNT_INELIGIBLE"


class InvalidProcessorRequestError(ProcessorError):
    """
    The request itself was rejected (bad parameters, credentials, key reuse).

    This usually indicates a bug or misconfiguration on our side. It is
    never retried automatically.
    """

    default_error_code: str = "INVALID_PROCESSOR_REQUEST"


class SignatureInvalidError(ProcessorError):
    """
    Webhook signature verification failed.

    Indicates tampering or a misconfigured signing secret. The event is
    logged and dropped, never retried.
    """

    default_error_code: str = "SIGNATURE_INVALID"


# =============================================================================
# Conflict Exceptions
# =============================================================================


class ChargeAlreadyLinkedError(ConflictError):
    """Raised when a transaction already carries a different processor charge id."""

    default_error_code: str = "CHARGE_ALREADY_LINKED"


__all__ = [
    "AccountIneligibleError",
    "AccountNotFoundError",
    "AlreadyPaidError",
    "CardDeclinedError",
    "ChargeAlreadyLinkedError",
    "InvalidProcessorRequestError",
    "InvalidProfileError",
    "MarketplaceError",
    "ProcessorError",
    "ProcessorUnavailableError",
    "ProviderNotEligibleError",
    "SignatureInvalidError",
    "WebhookProcessingError",
]
