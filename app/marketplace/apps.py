"""
Marketplace app configuration.

This app provides the provider payment flows:
- Connected account onboarding
- Split-payment checkout (destination charges)
- Processor webhook handling
"""

from django.apps import AppConfig


class MarketplaceConfig(AppConfig):
    """Configuration for the marketplace application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "marketplace"
    verbose_name = "Marketplace"
