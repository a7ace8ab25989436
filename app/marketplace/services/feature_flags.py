"""
Runtime feature gate.

A feature is enabled only when the environment master switch lists it
(settings.FEATURE_FLAGS) and its FeatureFlag row is enabled. The database
is read on every call so a flag can be flipped without a deploy; any read
error fails closed.
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.db import DatabaseError

from marketplace.models import FeatureFlag

logger = logging.getLogger(__name__)


def is_enabled(key: str) -> bool:
    """Return True only if both the environment and the database enable key."""
    if key not in getattr(settings, "FEATURE_FLAGS", []):
        return False

    try:
        return FeatureFlag.objects.filter(key=key, enabled=True).exists()
    except DatabaseError:
        logger.error(
            "Feature flag read failed, treating as disabled",
            extra={"flag": key},
            exc_info=True,
        )
        return False
