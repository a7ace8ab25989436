"""
Webhook endpoint views for Stripe.

Stripe signs each endpoint with its own secret: the platform endpoint
receives charge events, the Connect endpoint receives events from connected
accounts (account.updated). Both feed the same processor.

Each view:
1. Verifies the webhook signature before anything else
2. Records and applies the event in one database transaction
3. Answers 200 only once the effect is committed

Events are applied synchronously: acknowledging first and applying later
would let a lost task drop an event that Stripe will never resend.

Usage:
    # In urls.py
    from marketplace.webhooks.views import stripe_connect_webhook, stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
        path(
            "webhooks/stripe/connect/",
            stripe_connect_webhook,
            name="stripe_connect_webhook",
        ),
    ]
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from marketplace.adapters import StripeAdapter
from marketplace.exceptions import SignatureInvalidError
from marketplace.webhooks.processor import WebhookProcessor


logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive, verify and apply a Stripe webhook event.

    Returns:
        HttpResponse with status:
        - 200: Event applied, held for linking, or a duplicate
        - 400: Missing or invalid signature, or malformed event
        - 500: Processing failed; Stripe retries the delivery

    Example Stripe-Signature header:
        t=1614556800,v1=xxx,v0=yyy
    """
    return _handle_webhook(request, settings.STRIPE_WEBHOOK_SECRET)


@csrf_exempt
@require_POST
def stripe_connect_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive events from connected accounts.

    Verified with STRIPE_CONNECT_WEBHOOK_SECRET, or STRIPE_WEBHOOK_SECRET
    when no separate Connect secret is configured.
    """
    secret = (
        getattr(settings, "STRIPE_CONNECT_WEBHOOK_SECRET", "")
        or settings.STRIPE_WEBHOOK_SECRET
    )
    return _handle_webhook(request, secret)


def _handle_webhook(request: HttpRequest, secret: str) -> HttpResponse:
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    # Step 1: Verify signature
    try:
        event_data = StripeAdapter.verify_webhook_signature(
            payload, signature, secret=secret
        )
    except SignatureInvalidError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error": str(e)},
        )
        return HttpResponse("Invalid signature", status=400)
    except Exception as e:
        logger.error(
            f"Unexpected error verifying webhook: {type(e).__name__}",
            exc_info=True,
        )
        return HttpResponse("Verification error", status=400)

    logger.info(
        f"Received Stripe webhook: {event_data.get('type')}",
        extra={
            "event_id": event_data.get("id"),
            "event_type": event_data.get("type"),
        },
    )

    # Step 2: Record and apply
    try:
        result = WebhookProcessor.process_event(event_data)
    except Exception as e:
        logger.error(
            f"Webhook processing failed: {type(e).__name__}",
            extra={"event_id": event_data.get("id")},
            exc_info=True,
        )
        return HttpResponse("Processing error", status=500)

    if not result.success:
        return HttpResponse("Invalid event", status=400)

    if result.data.duplicate:
        return HttpResponse("Already processed", status=200)

    return HttpResponse("Processed", status=200)
