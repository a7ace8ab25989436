"""
Webhook handling for processor events from Stripe.

Webhooks are verified, recorded in the WebhookEvent ledger and applied in
the same database transaction.

Usage:
    # In urls.py
    from marketplace.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from marketplace.webhooks.handlers import dispatch_webhook, register_handler
from marketplace.webhooks.processor import WebhookProcessor
from marketplace.webhooks.views import stripe_webhook

__all__ = [
    "WebhookProcessor",
    "dispatch_webhook",
    "register_handler",
    "stripe_webhook",
]
