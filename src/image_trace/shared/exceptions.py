"""
Unified Exception Hierarchy for image-trace.

Exception Hierarchy:
    ImageTraceError (base)
    ├── ProviderError
    │   ├── ProviderTimeoutError
    │   ├── ProviderAuthError
    │   ├── ProviderQuotaError
    │   ├── ProviderNetworkError
    │   └── MalformedResponseError
    ├── SearchFailedError
    │   └── OrchestrationTimeout
    ├── PersistenceError
    │   └── EncryptionError
    ├── EntitlementDenied
    │   └── SearchLimitExceeded
    ├── AccessDeniedError
    ├── ValidationError
    │   ├── InvalidImageError
    │   └── InvalidParameterError
    ├── NotFoundError
    └── ConfigurationError

Provider errors never leave the orchestrator: they are converted into
usage-report entries. Only SearchFailedError and PersistenceError reach the
caller of a search.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from image_trace.domain.entities.response import SearchResponse


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    WARNING = auto()  # Recoverable, can continue
    ERROR = auto()  # Failed but can retry
    CRITICAL = auto()  # Cannot continue
    TRANSIENT = auto()  # Temporary, should retry automatically


class ErrorCategory(Enum):
    """Categories for error classification."""

    PROVIDER = "provider"
    SEARCH = "search"
    PERSISTENCE = "persistence"
    ACCESS = "access"
    VALIDATION = "validation"
    DATA = "data"
    CONFIGURATION = "config"


class ProviderErrorKind(str, Enum):
    """Tagged failure kinds an adapter may report."""

    TIMEOUT = "timeout"
    AUTH = "auth"
    QUOTA = "quota"
    NETWORK = "network"
    MALFORMED_RESPONSE = "malformed-response"


@dataclass(frozen=True, slots=True)
class ErrorContext:
    """Rich context for error messages."""

    operation: str | None = None
    input_value: Any = None
    suggestion: str | None = None
    retry_after: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ImageTraceError(Exception):
    """
    Base exception for all image-trace errors.

    Provides:
    - Structured error context
    - Severity classification
    - Retry guidance
    - JSON-friendly formatting
    """

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        category: ErrorCategory = ErrorCategory.SEARCH,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.context = context or ErrorContext()
        self.severity = severity
        self.category = category
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "error": str(self),
            "category": self.category.value,
            "severity": self.severity.name.lower(),
            "retryable": self.retryable,
        }
        if self.context.suggestion:
            result["suggestion"] = self.context.suggestion
        if self.context.retry_after:
            result["retry_after_seconds"] = self.context.retry_after
        return result


# =============================================================================
# Provider Errors
# =============================================================================


class ProviderError(ImageTraceError):
    """Base class for adapter failures. Always carries a ``kind`` tag."""

    kind: ProviderErrorKind = ProviderErrorKind.NETWORK

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        context: ErrorContext | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(
            f"{provider}: {message}" if provider else message,
            context=context,
            severity=ErrorSeverity.ERROR,
            category=ErrorCategory.PROVIDER,
            retryable=retryable,
        )
        self.provider = provider

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["kind"] = self.kind.value
        if self.provider:
            result["provider"] = self.provider
        return result


class ProviderTimeoutError(ProviderError):
    """Raised when a provider call exceeds its time budget."""

    kind = ProviderErrorKind.TIMEOUT

    def __init__(self, message: str = "Search timed out", *, provider: str = "") -> None:
        super().__init__(message, provider=provider)
        self.severity = ErrorSeverity.TRANSIENT


class ProviderAuthError(ProviderError):
    """Raised when a provider rejects the configured credentials."""

    kind = ProviderErrorKind.AUTH

    def __init__(self, message: str = "Authentication rejected", *, provider: str = "") -> None:
        super().__init__(
            message,
            provider=provider,
            context=ErrorContext(suggestion="Check the provider API key"),
            retryable=False,
        )


class ProviderQuotaError(ProviderError):
    """Raised when a provider's request quota is exhausted."""

    kind = ProviderErrorKind.QUOTA

    def __init__(
        self,
        message: str = "Request quota exhausted",
        *,
        provider: str = "",
        retry_after: float | None = None,
    ) -> None:
        super().__init__(
            message,
            provider=provider,
            context=ErrorContext(suggestion="Wait for the quota window to reset", retry_after=retry_after),
        )
        self.severity = ErrorSeverity.TRANSIENT


class ProviderNetworkError(ProviderError):
    """Raised for connectivity problems and upstream 5xx responses."""

    kind = ProviderErrorKind.NETWORK

    def __init__(self, message: str = "Network connection failed", *, provider: str = "") -> None:
        super().__init__(message, provider=provider)


class MalformedResponseError(ProviderError):
    """Raised when a provider response cannot be parsed."""

    kind = ProviderErrorKind.MALFORMED_RESPONSE

    def __init__(self, message: str = "Malformed response", *, provider: str = "") -> None:
        super().__init__(message, provider=provider, retryable=False)


# =============================================================================
# Search Errors
# =============================================================================


class SearchFailedError(ImageTraceError):
    """
    Raised when a search produced no usable provider outcome.

    ``search_id`` is set whenever a (possibly fallback) record was written,
    so history and retry tooling can still reference the search.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str = "all_providers_failed",
        search_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, category=ErrorCategory.SEARCH, retryable=True)
        self.kind = kind
        self.search_id = search_id
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind,
            "message": str(self),
            "details": self.details,
            "search_id": self.search_id,
        }


class OrchestrationTimeout(SearchFailedError):
    """Raised when the shared deadline expired before any provider succeeded."""

    def __init__(
        self,
        timeout: float,
        *,
        search_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            f"Search deadline of {timeout:.1f}s exceeded",
            kind="orchestration_timeout",
            search_id=search_id,
            details=details,
        )
        self.timeout = timeout
        self.severity = ErrorSeverity.TRANSIENT


# =============================================================================
# Persistence Errors
# =============================================================================


class PersistenceError(ImageTraceError):
    """
    Raised when neither the full nor the fallback record could be written.

    The shaped response computed before persistence is attached as
    ``partial_response`` so the caller can still show it.
    """

    def __init__(
        self,
        message: str,
        *,
        search_id: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.PERSISTENCE,
            retryable=True,
        )
        self.search_id = search_id
        self.partial_response: SearchResponse | None = None


class EncryptionError(PersistenceError):
    """Raised when encryption or decryption fails."""

    def __init__(self, message: str = "Encryption failure") -> None:
        super().__init__(message)
        self.retryable = False


# =============================================================================
# Access Errors
# =============================================================================


class EntitlementDenied(ImageTraceError):
    """Raised when a plan does not include the requested feature."""

    def __init__(self, feature: str, plan: str, *, context: ErrorContext | None = None) -> None:
        super().__init__(
            f"'{feature}' is not available on the {plan} plan",
            context=context or ErrorContext(suggestion="Upgrade to a premium plan"),
            severity=ErrorSeverity.WARNING,
            category=ErrorCategory.ACCESS,
        )
        self.feature = feature
        self.plan = plan


class SearchLimitExceeded(EntitlementDenied):
    """Raised when an account has used all searches of its current window."""

    def __init__(self, plan: str, used: int, limit: int, *, retry_after: float | None = None) -> None:
        super().__init__(
            "search",
            plan,
            context=ErrorContext(
                suggestion="Wait for the search allowance to reset or upgrade the plan",
                retry_after=retry_after,
                metadata={"used": used, "limit": limit},
            ),
        )
        self.used = used
        self.limit = limit

    def __str__(self) -> str:
        return f"Search limit reached ({self.used}/{self.limit}) on the {self.plan} plan"


class AccessDeniedError(ImageTraceError):
    """Raised when a requester touches a record it does not own."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            message,
            severity=ErrorSeverity.WARNING,
            category=ErrorCategory.ACCESS,
        )


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(ImageTraceError):
    """Base class for validation errors."""

    def __init__(self, message: str, *, context: ErrorContext | None = None) -> None:
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.WARNING,
            category=ErrorCategory.VALIDATION,
        )


class InvalidImageError(ValidationError):
    """Raised when the query payload is not a decodable image."""

    def __init__(self, reason: str = "Image payload is empty") -> None:
        super().__init__(
            f"Invalid image: {reason}",
            context=ErrorContext(suggestion="Send JPEG, PNG, GIF or WebP bytes or a base64 data URL"),
        )


class InvalidParameterError(ValidationError):
    """Raised when a parameter value is invalid."""

    def __init__(self, param_name: str, value: Any, expected: str) -> None:
        super().__init__(
            f"Invalid parameter '{param_name}': {value!r} (expected {expected})",
            context=ErrorContext(input_value=value, suggestion=f"Expected {expected}"),
        )
        self.param_name = param_name


# =============================================================================
# Data / Configuration Errors
# =============================================================================


class NotFoundError(ImageTraceError):
    """Raised when requested data is not found."""

    def __init__(self, resource: str, identifier: str | None = None) -> None:
        msg = f"{resource} not found"
        if identifier:
            msg = f"{resource} not found: {identifier}"
        super().__init__(
            msg,
            context=ErrorContext(input_value=identifier),
            category=ErrorCategory.DATA,
        )


class ConfigurationError(ImageTraceError):
    """Raised for configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.CONFIGURATION,
        )


# =============================================================================
# Utilities
# =============================================================================


def is_retryable_error(error: BaseException) -> bool:
    """Check if an error should be retried."""
    if isinstance(error, ImageTraceError):
        return error.retryable
    # Storage-level transient failures
    return isinstance(error, (TimeoutError, ConnectionError, BlockingIOError, InterruptedError))
