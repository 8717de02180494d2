"""Error taxonomy for the reconcilers.

Every failure is either *permanent* or *transient*. Transient errors are
raised out of ``reconcile`` so the dispatcher retries with backoff. Permanent
errors are recorded on the resource (Ready=False plus ``failure_time``) and the
reconcile reports success, because retrying cannot help until the resource
itself changes.
"""

from enum import Enum
from typing import Iterable, Optional


class ErrorClass(str, Enum):
    """Retry classification of an error."""

    PERMANENT = "permanent"
    TRANSIENT = "transient"


class IssuerError(Exception):
    """Base class for all controller errors."""


class ConfigError(IssuerError):
    """Raised when the configuration is unusable."""


## Permanent errors ############################################################


class PermanentError(IssuerError):
    """A failure that will not resolve by retrying.

    Signers raise this (or a subclass) to stop further attempts.
    """

    reason = "Failed"


class IssuerRefError(PermanentError):
    """The issuerRef names a kind this controller does not serve."""


class RequestDeniedError(PermanentError):
    """The CertificateRequest was denied by an approver."""

    reason = "Denied"


class InvalidRequestError(PermanentError):
    """The CertificateRequest does not carry a usable CSR."""


class PolicyError(PermanentError):
    """The certificate template violates the signing policy."""


class SignerExpiredError(PolicyError):
    """The signing CA is past its validity window."""


class MaxRetryDurationExceededError(PermanentError):
    """Signing kept failing for longer than the configured retry window."""


## Transient errors ############################################################


class ResourceNotFoundError(IssuerError):
    """A resource lookup missed."""

    def __init__(self, kind: str, key):
        self.kind = kind
        self.key = key
        super().__init__(f'{kind} "{key}" not found')


class ConflictError(IssuerError):
    """A status write lost an optimistic-concurrency race."""


class IssuerNotFoundError(IssuerError):
    """The referenced Issuer or ClusterIssuer could not be fetched."""


class SecretNotFoundError(IssuerError):
    """The Secret holding issuer credentials could not be fetched."""


class IssuerNotReadyError(IssuerError):
    """The referenced issuer does not have Ready=True."""


class HealthCheckerBuilderError(IssuerError):
    """The health checker could not be constructed."""


class HealthCheckError(IssuerError):
    """The issuer health check failed."""


class SignerBuilderError(IssuerError):
    """The signer could not be constructed."""


class SigningError(IssuerError):
    """The signer failed to produce a certificate."""


class AggregateError(IssuerError):
    """Several errors raised by one reconcile, e.g. a failure plus a failed status write."""

    def __init__(self, errors: Iterable[Optional[BaseException]]):
        self.errors = [e for e in errors if e is not None]
        if len(self.errors) == 1:
            message = str(self.errors[0])
        else:
            message = "[" + ", ".join(str(e) for e in self.errors) + "]"
        super().__init__(message)

    def contains(self, error_type: type) -> bool:
        """Return True if any aggregated error is an instance of ``error_type``."""
        return any(isinstance(e, error_type) for e in self.errors)


## Classification ##############################################################


def classify(error: BaseException) -> ErrorClass:
    """
    Classify an error as permanent or transient.

    Args:
        error: Error raised during a reconcile

    Returns:
        ErrorClass.PERMANENT for PermanentError subclasses, TRANSIENT otherwise
    """
    if isinstance(error, PermanentError):
        return ErrorClass.PERMANENT
    return ErrorClass.TRANSIENT


def is_permanent(error: BaseException) -> bool:
    """Return True if retrying ``error`` cannot succeed."""
    return classify(error) is ErrorClass.PERMANENT


def failure_reason(error: BaseException) -> str:
    """Ready condition reason for a permanent error."""
    return getattr(error, "reason", PermanentError.reason)
