"""
ServicePro model: the provider side of the marketplace.

Only the fields the payment flows need live here. Listings, availability
and reviews belong to the catalog layer and are read elsewhere.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class ServicePro(UUIDPrimaryKeyMixin, BaseModel):
    """
    An independent service provider ("pro") who can be booked and paid.

    Fields:
        user: Login account of the pro (nullable for imported providers)
        display_name: Public name shown to customers and sent to the processor
        contact_email: Email the processor uses for onboarding communication
        country: ISO 3166-1 alpha-2 country of the provider's business
        is_active: Inactive providers cannot onboard or be booked
    """

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="service_pro",
        help_text="Login account of this provider",
    )

    display_name = models.CharField(
        max_length=200,
        help_text="Public display name",
    )

    contact_email = models.EmailField(
        blank=True,
        help_text="Contact email passed to the payment processor",
    )

    country = models.CharField(
        max_length=2,
        default="US",
        help_text="ISO 3166-1 alpha-2 country code",
    )

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether this provider can onboard and accept bookings",
    )

    class Meta:
        ordering = ["display_name"]
        verbose_name = "Service Pro"
        verbose_name_plural = "Service Pros"

    def __str__(self) -> str:
        return f"ServicePro({self.display_name})"
