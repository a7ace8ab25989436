"""
Pytest fixtures for webhook tests.

Provides builders for processor event payloads and ledger rows. Transaction
and account fixtures come from the marketplace conftest.
"""

import time
import uuid
from datetime import datetime
from datetime import timezone as dt_timezone

import pytest

from marketplace.models import WebhookEvent
from marketplace.state_machines import WebhookEventStatus


def _event(event_type: str, obj: dict, event_id: str | None = None, created: int | None = None) -> dict:
    return {
        "id": event_id or f"evt_test_{uuid.uuid4().hex[:12]}",
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "data": {"object": obj},
    }


# =============================================================================
# Event Payload Builders
# =============================================================================


@pytest.fixture
def payment_succeeded_event():
    """Build a payment_intent.succeeded event."""

    def _create(
        charge_id: str = "pi_test_pending",
        metadata: dict | None = None,
        event_id: str | None = None,
        created: int | None = None,
    ) -> dict:
        return _event(
            "payment_intent.succeeded",
            {
                "id": charge_id,
                "object": "payment_intent",
                "amount": 10000,
                "currency": "usd",
                "status": "succeeded",
                "metadata": metadata or {},
            },
            event_id=event_id,
            created=created,
        )

    return _create


@pytest.fixture
def payment_failed_event():
    """Build a payment_intent.payment_failed event."""

    def _create(
        charge_id: str = "pi_test_pending",
        decline_code: str | None = "insufficient_funds",
        message: str = "Your card has insufficient funds.",
        metadata: dict | None = None,
        event_id: str | None = None,
    ) -> dict:
        return _event(
            "payment_intent.payment_failed",
            {
                "id": charge_id,
                "object": "payment_intent",
                "status": "requires_payment_method",
                "metadata": metadata or {},
                "last_payment_error": {
                    "code": "card_declined",
                    "decline_code": decline_code,
                    "message": message,
                },
            },
            event_id=event_id,
        )

    return _create


@pytest.fixture
def charge_refunded_event():
    """Build a charge.refunded event."""

    def _create(
        charge_id: str = "pi_test_succeeded",
        refunded: bool = True,
        amount_refunded: int = 10000,
        event_id: str | None = None,
    ) -> dict:
        return _event(
            "charge.refunded",
            {
                "id": f"ch_{charge_id[3:]}",
                "object": "charge",
                "payment_intent": charge_id,
                "amount": 10000,
                "amount_refunded": amount_refunded,
                "refunded": refunded,
                "metadata": {},
            },
            event_id=event_id,
        )

    return _create


@pytest.fixture
def account_updated_event():
    """Build an account.updated event."""

    def _create(
        stripe_account_id: str = "acct_test_in_progress",
        charges_enabled: bool = True,
        payouts_enabled: bool = True,
        details_submitted: bool = True,
        disabled_reason: str | None = None,
        created: int | None = None,
        event_id: str | None = None,
    ) -> dict:
        return _event(
            "account.updated",
            {
                "id": stripe_account_id,
                "object": "account",
                "charges_enabled": charges_enabled,
                "payouts_enabled": payouts_enabled,
                "details_submitted": details_submitted,
                "requirements": {"disabled_reason": disabled_reason},
            },
            event_id=event_id,
            created=created,
        )

    return _create


# =============================================================================
# Ledger Fixtures
# =============================================================================


@pytest.fixture
def make_webhook_event(db):
    """Create a PENDING ledger row, as the processor does before dispatch."""

    def _create(event_data: dict) -> WebhookEvent:
        return WebhookEvent.objects.create(
            event_id=event_data["id"],
            event_type=event_data["type"],
            payload=event_data,
            event_created_at=datetime.fromtimestamp(event_data["created"], tz=dt_timezone.utc),
            status=WebhookEventStatus.PENDING,
        )

    return _create
