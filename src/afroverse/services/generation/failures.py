"""Failure classification and retry decisions for generation jobs."""

from dataclasses import dataclass
from datetime import datetime

import httpx

from afroverse.models.generation import JobStatus
from afroverse.services.exceptions import (
    MAX_RETRIES_EXCEEDED,
    BlobAuthError,
    BlobNotFoundError,
    ErrorKind,
    GenerationJobError,
    ProviderBlockedError,
    ProviderError,
    ProviderRateLimitedError,
)
from afroverse.services.generation.backoff import calculate_retry_after


@dataclass(frozen=True)
class FailureClassification:
    """Classified failure of one execution attempt."""

    kind: ErrorKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


@dataclass(frozen=True)
class FailureDecision:
    """What the failure path writes to the job record."""

    status: JobStatus
    error: dict
    retry_after: datetime | None


def _kind_for_status(status_code: int | None) -> ErrorKind:
    if status_code is None:
        return ErrorKind.UPSTREAM_UNAVAILABLE
    if status_code == 402:
        return ErrorKind.QUOTA_EXCEEDED
    if status_code == 429 or status_code >= 500:
        return ErrorKind.UPSTREAM_UNAVAILABLE
    if 400 <= status_code < 500:
        return ErrorKind.INVALID_INPUT
    return ErrorKind.UPSTREAM_UNAVAILABLE


def classify_failure(exc: BaseException) -> FailureClassification:
    """Map an exception raised during execution to a failure kind.

    Classification rules:
        - GenerationJobError subclasses → their own kind
        - ProviderBlockedError → content_policy_block
        - ProviderRateLimitedError → upstream_unavailable
        - ProviderError → by status (402 quota, other 4xx invalid input, else upstream)
        - BlobNotFoundError → missing_prerequisite
        - BlobAuthError → missing_prerequisite
        - httpx.HTTPStatusError → by response status
        - httpx.TransportError, TimeoutError, ConnectionError, OSError → transient_network
        - Anything else → unknown_error (retryable, bounded by max_attempts)

    Args:
        exc: Exception raised inside the executor's unsafe zone

    Returns:
        FailureClassification with kind and message
    """
    message = str(exc) or type(exc).__name__

    if isinstance(exc, GenerationJobError):
        kind = exc.kind
    elif isinstance(exc, ProviderBlockedError):
        kind = ErrorKind.CONTENT_POLICY_BLOCK
    elif isinstance(exc, ProviderRateLimitedError):
        kind = ErrorKind.UPSTREAM_UNAVAILABLE
    elif isinstance(exc, ProviderError):
        kind = _kind_for_status(exc.status_code)
    elif isinstance(exc, (BlobNotFoundError, BlobAuthError)):
        kind = ErrorKind.MISSING_PREREQUISITE
    elif isinstance(exc, httpx.HTTPStatusError):
        kind = _kind_for_status(exc.response.status_code)
    elif isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError, OSError)):
        kind = ErrorKind.TRANSIENT_NETWORK
    else:
        kind = ErrorKind.UNKNOWN

    return FailureClassification(kind=kind, message=message[:1000])


def decide_failure(
    classification: FailureClassification,
    attempts: int,
    max_attempts: int,
    now: datetime,
) -> FailureDecision:
    """Decide the job's next state after a failed attempt.

    Terminal kinds fail immediately regardless of remaining budget. Retryable
    kinds requeue with backoff until ``attempts`` reaches ``max_attempts``.

    Args:
        classification: Classified failure
        attempts: Attempt count after the failed attempt's lock acquisition
        max_attempts: Attempt ceiling configured on the job
        now: Failure timestamp

    Returns:
        FailureDecision with target status, error payload and retry_after
    """
    if not classification.retryable:
        return FailureDecision(
            status=JobStatus.FAILED,
            error={
                "code": classification.kind.value,
                "message": classification.message,
                "retryable": False,
            },
            retry_after=None,
        )

    if attempts >= max_attempts:
        return FailureDecision(
            status=JobStatus.FAILED,
            error={
                "code": MAX_RETRIES_EXCEEDED,
                "message": classification.message,
                "retryable": False,
            },
            retry_after=None,
        )

    return FailureDecision(
        status=JobStatus.QUEUED,
        error={
            "code": classification.kind.value,
            "message": classification.message,
            "retryable": True,
        },
        retry_after=calculate_retry_after(attempts, now),
    )
