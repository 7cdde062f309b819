"""
Core Application - Infrastructure & Base Classes

Shared, domain-agnostic building blocks used by the payments and
notifications apps.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic-lock version counter

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError, NotFoundError, ConflictError, ExternalServiceError

Helpers (import from core.helpers):
    - parse_uuid: Reference parsing
    - to_minor_units / from_minor_units: Kobo/cent conversion
    - calculate_pagination: Pagination metadata calculation

Views (import from core.views):
    - health_check: Liveness endpoint for load balancers
"""
