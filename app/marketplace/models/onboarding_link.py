"""
OnboardingLink model: time-boxed processor onboarding URLs.

Links are single-use by processor convention. An unexpired link is handed
back on re-entry (a provider reloading the page); an expired one is never
reused and a fresh link is requested instead. Old links are kept as history.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin


class OnboardingLink(UUIDPrimaryKeyMixin, BaseModel):
    """
    An onboarding URL issued for a ConnectedAccount.

    Fields:
        account: The ConnectedAccount the link onboards
        url: Processor-hosted onboarding URL
        expires_at: When the processor stops accepting the URL
    """

    account = models.ForeignKey(
        "marketplace.ConnectedAccount",
        on_delete=models.PROTECT,
        related_name="onboarding_links",
        help_text="Account this link onboards",
    )

    url = models.URLField(
        max_length=2048,
        help_text="Processor-hosted onboarding URL",
    )

    expires_at = models.DateTimeField(
        help_text="When this link expires",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Onboarding Link"
        verbose_name_plural = "Onboarding Links"
        indexes = [
            models.Index(fields=["account", "created_at"], name="onboarding_link_account_idx"),
        ]

    def __str__(self) -> str:
        return f"OnboardingLink({self.account_id}, expires={self.expires_at})"

    @property
    def is_expired(self) -> bool:
        return timezone.now() >= self.expires_at
