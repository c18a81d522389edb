"""Service error hierarchy for webhook reconciliation and metadata storage.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (storage outages, network, rate limits)
- PermanentError: Non-retryable errors (authentication, validation, conflicts)

Every error carries the HTTP status code and a short machine-readable reason
used by the API exception handler.
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    status_code: int = 500
    reason: str = "service_error"

    def __init__(self, message: str = "", reason: str | None = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Database unavailable or serialization failure
    - Blob storage timeout
    - Rate limit exceeded (429)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Signature verification failures
    - Malformed webhook payloads
    - Race capacity exceeded
    """

    status_code = 400
    reason = "permanent_error"


# Webhook authentication and configuration errors
class AuthenticationError(PermanentError):
    """Webhook signature is invalid (401)."""

    status_code = 401
    reason = "invalid_signature"


class MissingSignatureError(PermanentError):
    """Webhook signature header is absent (400)."""

    status_code = 400
    reason = "missing_signature"


class ConfigurationError(PermanentError):
    """Required server configuration is missing (500)."""

    status_code = 500
    reason = "configuration_error"


class ValidationError(PermanentError):
    """Payload is malformed or fails structural validation (400)."""

    status_code = 400
    reason = "validation_error"


# Entity state errors
class NotFoundError(PermanentError):
    """Mutation references an entity that is not in the store (404)."""

    status_code = 404
    reason = "not_found"


class ConflictError(PermanentError):
    """Mutation collides with existing state (409)."""

    status_code = 409
    reason = "conflict"


class DuplicateEventError(ConflictError):
    """Event natural key is already recorded in the idempotency ledger."""

    reason = "duplicate"


class InvalidStateError(PermanentError):
    """Operation is not allowed in the aggregate's current status (409)."""

    status_code = 409
    reason = "invalid_state"


class StorageError(TransientError):
    """Database operation failed (500)."""

    status_code = 500
    reason = "storage_error"


# Blob storage errors
class BlobStorageError(ServiceError):
    """Base exception for metadata blob upload errors."""

    status_code = 500
    reason = "blob_storage_error"


class BlobRateLimitError(BlobStorageError, TransientError):
    """Rate limit exceeded (429)."""

    pass


class BlobNetworkError(BlobStorageError, TransientError):
    """Network timeout or service unavailable."""

    pass


class BlobAuthError(BlobStorageError, PermanentError):
    """Authentication failure (401, 403)."""

    pass
