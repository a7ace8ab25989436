"""
Read accessors over provider data owned by the catalog layer.

The payment flows reach provider rows only through these functions.
"""

from __future__ import annotations

import uuid

from django.core.exceptions import ValidationError as DjangoValidationError

from marketplace.models import ServicePro


def get_provider_profile(provider_id: uuid.UUID | str) -> ServicePro | None:
    """Return the provider, or None if the id is unknown or malformed."""
    try:
        return ServicePro.objects.filter(pk=provider_id).first()
    except (DjangoValidationError, ValueError):
        return None


def get_provider_for_user(user) -> ServicePro | None:
    """Return the provider profile owned by a logged-in user, if any."""
    if user is None or not user.is_authenticated:
        return None
    return ServicePro.objects.filter(user=user).first()
