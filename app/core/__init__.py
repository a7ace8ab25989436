"""
Core Application - Shared Infrastructure

Generic building blocks used by the marketplace domain app. Nothing in
this package knows about providers, bookings, or the payment processor.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic-locking version counter bumped on save

Services (import from core.services):
    - BaseService: Base class for the service layer
    - ServiceResult: Result wrapper for expected success/failure outcomes

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ConflictError: State conflicts (duplicates, immutable fields)

Views (import from core.views):
    - health_check: Liveness/readiness endpoint
"""
