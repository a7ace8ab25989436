"""
Stripe API adapter for Connect accounts and destination charges.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions of the marketplace. All Stripe calls go through
this adapter to ensure consistent error handling, timeouts, idempotency,
and observability.

Features:
- Configurable timeouts on all API calls
- SDK network retries that reuse the caller's idempotency key
- Automatic error translation to marketplace exceptions
- Structured logging with timing metrics
- Thread-safe for use from Celery workers

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Platform webhook signing secret
- STRIPE_CONNECT_WEBHOOK_SECRET: Connect webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Network retries per call (default: 3)
- ONBOARDING_LINK_TTL_SECONDS: Fallback lifetime of an account link

Usage:
    from marketplace.adapters import StripeAdapter, DestinationChargeParams

    result = StripeAdapter.create_destination_charge(
        DestinationChargeParams(
            amount_cents=10000,
            currency="usd",
            payment_method_token="pm_card_visa",
            destination_account_id="acct_123",
            application_fee_cents=1500,
            idempotency_key=str(txn.id),
            metadata={"transaction_id": str(txn.id)},
        )
    )
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import Any

import stripe
from django.conf import settings
from django.utils import timezone

from marketplace.exceptions import (
    AccountIneligibleError,
    AccountNotFoundError,
    CardDeclinedError,
    InvalidProcessorRequestError,
    InvalidProfileError,
    ProcessorError,
    ProcessorUnavailableError,
    SignatureInvalidError,
)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreateAccountParams:
    """
    Parameters for creating an Express connected account.

    Attributes:
        provider_id: ServicePro id, stored in the account metadata
        idempotency_key: Unique key for idempotent creation
        country: ISO 3166-1 alpha-2 country code
        email: Provider contact email (optional)
        display_name: Business name shown on the processor dashboard
    """

    provider_id: uuid.UUID | str
    idempotency_key: str
    country: str = "US"
    email: str | None = None
    display_name: str | None = None

    def __post_init__(self) -> None:
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.country or len(self.country) != 2:
            raise ValueError("country must be a two-letter code")


@dataclass
class AccountResult:
    """
    Capability snapshot of a connected account.

    Attributes:
        id: Connected account ID (acct_xxx)
        charges_enabled: Account may receive charges
        payouts_enabled: Account may be paid out
        details_submitted: Provider finished the onboarding form
        disabled_reason: Processor's requirements.disabled_reason, if any
        raw_response: Full Stripe response dict (for debugging)
    """

    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    disabled_reason: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class OnboardingLinkParams:
    """Parameters for an account onboarding link."""

    stripe_account_id: str
    return_url: str
    refresh_url: str
    idempotency_key: str

    def __post_init__(self) -> None:
        if not self.stripe_account_id:
            raise ValueError("stripe_account_id is required")
        if not self.return_url or not self.refresh_url:
            raise ValueError("return_url and refresh_url are required")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")


@dataclass
class OnboardingLinkResult:
    url: str
    expires_at: datetime


@dataclass
class DestinationChargeParams:
    """
    Parameters for a destination charge.

    The customer is charged amount_cents; the platform keeps
    application_fee_cents and the rest settles to the destination account.

    Attributes:
        amount_cents: Gross amount in the smallest currency unit
        currency: ISO 4217 currency code
        payment_method_token: Customer's payment method (pm_xxx)
        destination_account_id: Connected account receiving the funds
        application_fee_cents: Platform fee retained
        idempotency_key: Unique key for idempotent creation
        metadata: Key-value pairs attached to the PaymentIntent
    """

    amount_cents: int
    currency: str
    payment_method_token: str
    destination_account_id: str
    application_fee_cents: int
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if self.application_fee_cents < 0:
            raise ValueError("application_fee_cents must not be negative")
        if self.application_fee_cents > self.amount_cents:
            raise ValueError("application_fee_cents cannot exceed amount_cents")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.currency:
            raise ValueError("currency is required")
        if not self.payment_method_token:
            raise ValueError("payment_method_token is required")
        if not self.destination_account_id:
            raise ValueError("destination_account_id is required")


@dataclass
class ChargeResult:
    """
    Result of a destination charge.

    Attributes:
        id: PaymentIntent ID (pi_xxx), stored as processor_charge_id
        status: PaymentIntent status (succeeded, processing, ...)
        amount_cents: Amount charged
        currency: Currency code
        metadata: Attached metadata
        raw_response: Full Stripe response dict
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The hash component provides uniqueness across environments sharing
    one Stripe account while the structured format aids debugging.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="create_account",
            entity_id=provider.id,
        )
        # Result: "create_account:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
        nonce: str | None = None,
    ) -> str:
        """
        nonce makes the key unique within an attempt; use it only when the
        processor must not replay a cached response (e.g. an expired link).
        """
        entity_str = str(entity_id)
        attempt_str = f"{attempt}-{nonce}" if nonce else str(attempt)
        hash_input = f"{operation}:{entity_str}:{attempt_str}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt_str}:{short_hash}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_processor_error(error: Exception) -> bool:
    """
    Check if an error is a transient processor failure.

    Use this in Celery tasks to decide whether to retry:

        @shared_task(bind=True, max_retries=3)
        def refresh(self, provider_id):
            try:
                StripeAdapter.retrieve_account(...)
            except Exception as e:
                if is_retryable_processor_error(e):
                    raise self.retry(exc=e, countdown=backoff_delay(self.request.retries))
                raise
    """
    if isinstance(error, ProcessorError):
        return getattr(error, "is_retryable", False)
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)
    """
    delay = min(base * (2**attempt), max_delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


def _field(obj: Any, name: str) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _decline_code(error: Exception) -> str | None:
    code = getattr(error, "decline_code", None)
    if code:
        return code
    return _field(getattr(error, "error", None), "decline_code")


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe Connect operations.

    All methods are classmethods - no instance state is maintained, and no
    local database state is touched.

    Usage:
        account = StripeAdapter.create_account(params)
        link = StripeAdapter.create_onboarding_link(link_params)
        charge = StripeAdapter.create_destination_charge(charge_params)
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        """Configure the Stripe client with API key, timeout and retries."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
        # The SDK resends the same Idempotency-Key header on each retry
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 3)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @staticmethod
    def _to_account_result(account: Any) -> AccountResult:
        requirements = _field(account, "requirements")
        return AccountResult(
            id=account.id,
            charges_enabled=bool(account.charges_enabled),
            payouts_enabled=bool(account.payouts_enabled),
            details_submitted=bool(account.details_submitted),
            disabled_reason=_field(requirements, "disabled_reason"),
            raw_response=account.to_dict(),
        )

    # =========================================================================
    # Connected Accounts
    # =========================================================================

    @classmethod
    def create_account(cls, params: CreateAccountParams) -> AccountResult:
        """
        Create an Express connected account for a provider.

        The platform collects fees; the account requests the card_payments
        and transfers capabilities.

        Raises:
            InvalidProfileError: Stripe rejected the provider details
            ProcessorUnavailableError: Stripe unreachable or failing
            InvalidProcessorRequestError: Misconfiguration (e.g. bad API key)
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_account",
            "provider_id": str(params.provider_id),
            "country": params.country,
            "idempotency_key": params.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            create_params: dict[str, Any] = {
                "type": "express",
                "country": params.country,
                "capabilities": {
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                "metadata": {"provider_id": str(params.provider_id)},
            }
            if params.email:
                create_params["email"] = params.email
            if params.display_name:
                create_params["business_profile"] = {"name": params.display_name}

            account = stripe.Account.create(
                idempotency_key=params.idempotency_key,
                **create_params,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "stripe_account_id": account.id,
                    "duration_ms": duration_ms,
                },
            )

            return cls._to_account_result(account)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    def retrieve_account(cls, stripe_account_id: str) -> AccountResult:
        """
        Fetch the current capability state of a connected account.

        Raises:
            AccountNotFoundError: Account does not exist
            ProcessorUnavailableError: Stripe unreachable or failing
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "retrieve_account",
            "stripe_account_id": stripe_account_id,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            account = stripe.Account.retrieve(stripe_account_id)

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "charges_enabled": account.charges_enabled,
                    "payouts_enabled": account.payouts_enabled,
                    "duration_ms": duration_ms,
                },
            )

            return cls._to_account_result(account)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    @classmethod
    def create_onboarding_link(
        cls, params: OnboardingLinkParams
    ) -> OnboardingLinkResult:
        """
        Create a hosted onboarding link for a connected account.

        Stripe links expire a few minutes after creation. When the response
        has no expires_at, ONBOARDING_LINK_TTL_SECONDS is used.

        Raises:
            AccountNotFoundError: Account does not exist
            ProcessorUnavailableError: Stripe unreachable or failing
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_onboarding_link",
            "stripe_account_id": params.stripe_account_id,
            "idempotency_key": params.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            link = stripe.AccountLink.create(
                account=params.stripe_account_id,
                return_url=params.return_url,
                refresh_url=params.refresh_url,
                type="account_onboarding",
                idempotency_key=params.idempotency_key,
            )

            if link.expires_at:
                expires_at = datetime.fromtimestamp(link.expires_at, tz=dt_timezone.utc)
            else:
                ttl = getattr(settings, "ONBOARDING_LINK_TTL_SECONDS", 300)
                expires_at = timezone.now() + timedelta(seconds=ttl)

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "expires_at": expires_at.isoformat(),
                    "duration_ms": duration_ms,
                },
            )

            return OnboardingLinkResult(url=link.url, expires_at=expires_at)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    # =========================================================================
    # Charges
    # =========================================================================

    @classmethod
    def create_destination_charge(cls, params: DestinationChargeParams) -> ChargeResult:
        """
        Charge the customer and route the funds to a connected account.

        Creates and confirms a PaymentIntent in one call. Redirect-based
        payment methods are disabled so the outcome is known synchronously
        or via webhook.

        Raises:
            CardDeclinedError: Card was declined (decline_code set)
            AccountIneligibleError: Destination cannot receive transfers
            ProcessorUnavailableError: Stripe unreachable or failing
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_destination_charge",
            "amount_cents": params.amount_cents,
            "application_fee_cents": params.application_fee_cents,
            "currency": params.currency,
            "destination_account_id": params.destination_account_id,
            "idempotency_key": params.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.create(
                amount=params.amount_cents,
                currency=params.currency,
                payment_method=params.payment_method_token,
                confirm=True,
                automatic_payment_methods={
                    "enabled": True,
                    "allow_redirects": "never",
                },
                application_fee_amount=params.application_fee_cents,
                transfer_data={"destination": params.destination_account_id},
                metadata=params.metadata,
                idempotency_key=params.idempotency_key,
            )

            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "payment_intent_id": intent.id,
                    "status": intent.status,
                    "duration_ms": duration_ms,
                },
            )

            return ChargeResult(
                id=intent.id,
                status=intent.status,
                amount_cents=intent.amount,
                currency=intent.currency,
                metadata=dict(intent.metadata or {}),
                raw_response=intent.to_dict(),
            )

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
        secret: str | None = None,
    ) -> dict[str, Any]:
        """
        Verify a webhook payload against its Stripe-Signature header.

        Each Stripe endpoint has its own signing secret; secret defaults to
        STRIPE_WEBHOOK_SECRET (the platform endpoint).

        Returns:
            The event as plain JSON data

        Raises:
            SignatureInvalidError: Signature does not match the signing secret
            InvalidProcessorRequestError: Payload is not valid JSON
        """
        try:
            stripe.Webhook.construct_event(
                payload,
                signature,
                secret or settings.STRIPE_WEBHOOK_SECRET,
            )
        except stripe.SignatureVerificationError as e:
            cls.get_logger().warning(
                "Webhook signature verification failed",
                extra={"error": str(e)},
            )
            raise SignatureInvalidError(
                "Invalid webhook signature",
                processor_code="signature_verification_failed",
            ) from e
        except ValueError as e:
            raise InvalidProcessorRequestError(
                "Invalid webhook payload",
                processor_code="invalid_payload",
                details={"error": str(e)},
            ) from e

        return json.loads(payload)

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to marketplace exceptions.

        The operation name in log_context decides how an invalid request
        is classified: on a charge an account problem means the destination
        is ineligible, on account creation anything else is a bad profile.
        """
        logger = cls.get_logger()

        log_context = {**log_context, "duration_ms": duration_ms}
        operation = log_context.get("operation")

        if isinstance(error, stripe.CardError):
            decline_code = _decline_code(error)
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            raise CardDeclinedError(
                str(error.user_message or "Your card was declined."),
                processor_code=error.code,
                decline_code=decline_code,
            )

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            message = str(error.user_message or error)
            mentions_account = "account" in message.lower() or (
                error.param or ""
            ).startswith(("account", "transfer_data"))

            if operation == "create_destination_charge" and mentions_account:
                raise AccountIneligibleError(
                    "The provider's account cannot receive this payment",
                    processor_code=error.code,
                )
            if mentions_account and (
                error.code == "resource_missing" or "no such account" in message.lower()
            ):
                raise AccountNotFoundError(
                    "Connected account not found",
                    processor_code=error.code,
                )
            if operation == "create_account":
                raise InvalidProfileError(
                    message,
                    processor_code=error.code,
                    details={"param": error.param} if error.param else None,
                )
            raise InvalidProcessorRequestError(
                message,
                processor_code=error.code,
            )

        elif isinstance(error, stripe.RateLimitError):
            logger.warning(
                "Rate limited by Stripe",
                extra=log_context,
            )
            raise ProcessorUnavailableError(
                "Stripe rate limit exceeded. Please retry.",
                processor_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            logger.error(
                "Connection error to Stripe",
                extra=log_context,
                exc_info=True,
            )
            raise ProcessorUnavailableError(
                "Could not connect to Stripe. Please retry.",
                processor_code="api_connection_error",
            )

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise InvalidProcessorRequestError(
                "Stripe authentication failed",
                processor_code="authentication_error",
            )

        elif isinstance(error, (stripe.PermissionError, stripe.IdempotencyError)):
            logger.error(
                "Stripe rejected the request",
                extra={**log_context, "stripe_code": error.code},
            )
            raise InvalidProcessorRequestError(
                str(error.user_message or error),
                processor_code=error.code or type(error).__name__,
            )

        elif isinstance(error, stripe.APIError):
            logger.error(
                "Stripe API error",
                extra=log_context,
                exc_info=True,
            )
            raise ProcessorUnavailableError(
                "Stripe service error. Please retry.",
                processor_code="api_error",
            )

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise ProcessorUnavailableError(
                f"Unexpected Stripe error: {error}",
                processor_code="unknown_error",
            )
