"""Service error hierarchy for generation jobs and their collaborators.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- ErrorKind: Closed set of failure kinds recorded on a job
- GenerationJobError: Domain failures raised inside the executor, each bound to a kind
- ProviderError: Failures reported by the generation provider (blocked, rate_limited, generic)
- BlobStoreError: Failures reported by the blob store
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure kinds recorded in a job's error field."""

    TRANSIENT_NETWORK = "transient_network"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    UNKNOWN = "unknown_error"
    CONTENT_POLICY_BLOCK = "content_policy_block"
    INVALID_INPUT = "invalid_input"
    MISSING_PREREQUISITE = "missing_prerequisite"
    BANNED_OWNER = "banned_owner"
    QUOTA_EXCEEDED = "quota_exceeded"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS


RETRYABLE_KINDS = frozenset(
    {ErrorKind.TRANSIENT_NETWORK, ErrorKind.UPSTREAM_UNAVAILABLE, ErrorKind.UNKNOWN}
)

# Recorded instead of the failure kind once the attempt budget is spent
MAX_RETRIES_EXCEEDED = "max_retries_exceeded"


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


# Domain errors raised inside the executor's unsafe zone
class GenerationJobError(ServiceError):
    """Base for failures that carry their own classification."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class TransientNetworkError(GenerationJobError):
    """Network timeout or dropped connection."""

    kind = ErrorKind.TRANSIENT_NETWORK


class UpstreamUnavailableError(GenerationJobError):
    """A collaborator service is down or overloaded."""

    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class ContentPolicyBlockError(GenerationJobError):
    """Request refused on content policy grounds."""

    kind = ErrorKind.CONTENT_POLICY_BLOCK


class InvalidInputError(GenerationJobError):
    """Style parameters or inputs cannot be used as given."""

    kind = ErrorKind.INVALID_INPUT


class MissingPrerequisiteError(GenerationJobError):
    """A source artifact, owner or base version required for generation is absent."""

    kind = ErrorKind.MISSING_PREREQUISITE


class BannedOwnerError(GenerationJobError):
    """Owner is banned or shadowbanned."""

    kind = ErrorKind.BANNED_OWNER


class QuotaExceededError(GenerationJobError):
    """Owner or provider account has no remaining quota."""

    kind = ErrorKind.QUOTA_EXCEEDED


# Generation provider errors
class ProviderError(ServiceError):
    """Generic provider failure.

    Attributes:
        status_code: HTTP status reported by the provider, if any
        request_id: Provider-issued prediction id, if one was created
    """

    def __init__(self, message: str, status_code: int | None = None, request_id: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.request_id = request_id


class ProviderBlockedError(ProviderError):
    """Provider refused the prompt or references (safety filter)."""

    pass


class ProviderRateLimitedError(ProviderError):
    """Provider throttled the request (429)."""

    pass


# Blob store errors
class BlobStoreError(ServiceError):
    """Base exception for blob store errors."""

    pass


class BlobNotFoundError(BlobStoreError):
    """Referenced blob does not exist."""

    pass


class BlobAuthError(BlobStoreError):
    """Blob store rejected our credentials (401, 403)."""

    pass
