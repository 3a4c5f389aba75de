"""
Error Types

Exception hierarchy shared by the adapters, the state repositories and the
reconciliation engine. Every error raised out of a sync run is an
IdpScimSyncError so callers can report it and exit non-zero.
"""

from typing import Any, Dict, Optional


# Phases of a reconciliation run, used to annotate SyncError
PHASE_FETCH = "fetch"
PHASE_DIFF = "diff"
PHASE_APPLY = "apply"
PHASE_PERSIST = "persist"

# Status codes worth another attempt, everything else in 4xx is final
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class IdpScimSyncError(Exception):
    """Base exception for all idp-scim-sync errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(IdpScimSyncError):
    """Raised when configuration is invalid or missing. Fatal before any network I/O."""


class EntityValidationError(IdpScimSyncError):
    """Raised when an entity or snapshot breaks a model invariant."""


class AdapterError(IdpScimSyncError):
    """Raised when an external service call fails."""

    @property
    def retryable(self) -> bool:
        return False


class TransportError(AdapterError):
    """Network failure or timeout talking to an external service."""

    @property
    def retryable(self) -> bool:
        return True


class HTTPStatusError(AdapterError):
    """An external service answered with an error status."""

    def __init__(
        self,
        status_code: int,
        detail: Optional[str] = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        self.detail = detail
        self.method = method
        self.url = url
        target = " ".join(part for part in (method, url) if part) or "request"
        message = f"{target} returned HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, details=details)

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class SCIMHTTPError(HTTPStatusError):
    """Error response from the SCIM provisioning API."""

    def __init__(self, status_code: int, detail: Optional[str] = None, scim_type: Optional[str] = None, **kwargs: Any):
        self.scim_type = scim_type
        super().__init__(status_code, detail=detail, **kwargs)


class DirectoryError(HTTPStatusError):
    """Error response from the identity directory API."""


class SecretsError(AdapterError):
    """Raised when a secret cannot be retrieved from the secrets store."""


class StateRepositoryError(IdpScimSyncError):
    """Base error for state repository failures."""


class StateReadError(StateRepositoryError):
    """The stored state could not be read or decoded."""


class StateWriteError(StateRepositoryError):
    """The new state could not be written."""


class SyncError(IdpScimSyncError):
    """
    Failure during a reconciliation run, annotated with the phase and the
    entity being processed. The underlying exception is kept as ``cause``
    and chained with ``raise ... from``.
    """

    def __init__(self, phase: str, entity: str, cause: Optional[BaseException] = None):
        self.phase = phase
        self.entity = entity
        self.cause = cause
        message = f"{phase} phase failed for {entity}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, details={"phase": phase, "entity": entity})


class SyncCancelledError(IdpScimSyncError):
    """The run was cancelled or its deadline passed before completion."""

    def __init__(self, phase: str, message: str = "sync cancelled"):
        self.phase = phase
        super().__init__(f"{message} during {phase} phase", details={"phase": phase})
