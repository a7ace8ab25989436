"""
FeatureFlag model backing the runtime feature gate.

A feature is on only when both the environment master switch
(settings.FEATURE_FLAGS) and the enabled row here agree. See
marketplace.services.feature_flags.is_enabled.
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel


class FeatureFlag(BaseModel):
    """Database toggle for a named feature."""

    key = models.SlugField(
        max_length=100,
        unique=True,
        help_text="Feature key, e.g. 'checkout'",
    )

    enabled = models.BooleanField(
        default=False,
        help_text="Whether the feature is turned on in this database",
    )

    description = models.CharField(
        max_length=255,
        blank=True,
        help_text="What the flag controls",
    )

    class Meta:
        ordering = ["key"]
        verbose_name = "Feature Flag"
        verbose_name_plural = "Feature Flags"

    def __str__(self) -> str:
        state = "on" if self.enabled else "off"
        return f"FeatureFlag({self.key}, {state})"
