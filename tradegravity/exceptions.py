"""Custom exception hierarchy for tradegravity.

Exception Hierarchy:
    TradeGravityError (base)
    ├── ConfigurationError
    └── DataProviderError
        ├── ProviderAuthError
        ├── ProviderRateLimitError
        ├── QuotaExceededError
        ├── ProviderRequestError
        ├── ProviderResponseError
        ├── NoRecordsError
        └── MissingCodeError

Cancellation (``asyncio.CancelledError``) is never wrapped in any of these,
so callers can detect it uniformly.
"""
from __future__ import annotations

from typing import Optional, Dict, Any


class TradeGravityError(Exception):
    """Base exception for all tradegravity errors.

    Attributes:
        message: Human-readable error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for reports and logs."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(TradeGravityError):
    """Raised when there's a configuration problem.

    Examples:
        - Missing API key for a provider that requires one
        - Missing base URL or reference URL
        - Unknown provider id
    """
    pass


class DataProviderError(TradeGravityError):
    """Base class for data provider errors.

    Attributes:
        provider: Name of the provider that failed
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.provider = provider
        details = details or {}
        if provider:
            details["provider"] = provider
        if provider and not message.startswith(f"{provider}:"):
            message = f"{provider}: {message}"
        super().__init__(message, code, details)


class _StatusError(DataProviderError):
    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, provider, code, details)


class ProviderAuthError(_StatusError):
    """401/403 not related to quota. The current key is abandoned."""
    pass


class ProviderRateLimitError(_StatusError):
    """429 from the provider.

    Attributes:
        retry_after: Seconds to wait before retrying
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = retry_after
        details = details or {}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(message, provider, 429, code, details)


class QuotaExceededError(_StatusError):
    """Account-level quota exhausted. Fatal for the whole run."""
    pass


class ProviderRequestError(_StatusError):
    """Non-2xx response or transport failure for the current key."""
    pass


class ProviderResponseError(DataProviderError):
    """Malformed JSON/XML or an unexpected payload shape."""
    pass


class NoRecordsError(DataProviderError):
    """The provider has no data for the requested slice.

    Recoverable: callers treat it as "skip this slice".
    """
    pass


class MissingCodeError(DataProviderError):
    """No provider code for an ISO3 and ISO3 fallback is disabled."""

    def __init__(
        self,
        kind: str,
        iso3: str,
        provider: Optional[str] = None,
    ):
        self.kind = kind
        self.iso3 = iso3
        super().__init__(
            f"missing {kind} code for {iso3}",
            provider,
            details={"kind": kind, "iso3": iso3},
        )


def is_retryable_error(error: BaseException) -> bool:
    """Check if an error is temporary and the same call may be retried later."""
    return isinstance(error, (ProviderRateLimitError, ProviderRequestError))


def is_fatal_error(error: BaseException) -> bool:
    """Errors that must stop a whole collection run, not just one slice."""
    return isinstance(error, (QuotaExceededError, ConfigurationError))
