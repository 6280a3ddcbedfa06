"""
Tests for the unified exception hierarchy.
"""

import pytest

from image_trace.shared.exceptions import (
    AccessDeniedError,
    ConfigurationError,
    EncryptionError,
    EntitlementDenied,
    ErrorCategory,
    ErrorSeverity,
    ImageTraceError,
    InvalidImageError,
    InvalidParameterError,
    MalformedResponseError,
    NotFoundError,
    OrchestrationTimeout,
    PersistenceError,
    ProviderAuthError,
    ProviderError,
    ProviderErrorKind,
    ProviderNetworkError,
    ProviderQuotaError,
    ProviderTimeoutError,
    SearchFailedError,
    SearchLimitExceeded,
    ValidationError,
    is_retryable_error,
)


class TestProviderErrors:
    """Every adapter failure carries a kind tag."""

    @pytest.mark.parametrize(
        ("error_cls", "kind"),
        [
            (ProviderTimeoutError, ProviderErrorKind.TIMEOUT),
            (ProviderAuthError, ProviderErrorKind.AUTH),
            (ProviderQuotaError, ProviderErrorKind.QUOTA),
            (ProviderNetworkError, ProviderErrorKind.NETWORK),
            (MalformedResponseError, ProviderErrorKind.MALFORMED_RESPONSE),
        ],
    )
    def test_kind_tag(self, error_cls, kind):
        error = error_cls(provider="tineye")
        assert isinstance(error, ProviderError)
        assert error.kind == kind
        assert error.provider == "tineye"
        assert str(error).startswith("tineye: ")

    def test_to_dict_includes_kind_and_provider(self):
        data = ProviderQuotaError("HTTP 429", provider="google_vision", retry_after=30).to_dict()
        assert data["kind"] == "quota"
        assert data["provider"] == "google_vision"
        assert data["retry_after_seconds"] == 30
        assert data["category"] == "provider"

    def test_auth_and_malformed_not_retryable(self):
        assert not ProviderAuthError().retryable
        assert not MalformedResponseError().retryable
        assert ProviderNetworkError().retryable

    def test_timeout_is_transient(self):
        assert ProviderTimeoutError().severity == ErrorSeverity.TRANSIENT


class TestSearchFailedError:
    def test_to_dict_shape(self):
        error = SearchFailedError(
            "All search providers failed",
            kind="all_providers_failed",
            search_id="abc123",
            details={"providers_failed": [{"provider": "tineye", "error": "auth: rejected"}]},
        )
        data = error.to_dict()
        assert data == {
            "error": "all_providers_failed",
            "message": "All search providers failed",
            "details": {"providers_failed": [{"provider": "tineye", "error": "auth: rejected"}]},
            "search_id": "abc123",
        }

    def test_orchestration_timeout_is_search_failure(self):
        error = OrchestrationTimeout(15.0, search_id="s1")
        assert isinstance(error, SearchFailedError)
        assert error.kind == "orchestration_timeout"
        assert error.timeout == 15.0
        assert "15.0s" in str(error)


class TestAccessErrors:
    def test_search_limit_message(self):
        error = SearchLimitExceeded("free", 3, 3, retry_after=3600)
        assert isinstance(error, EntitlementDenied)
        assert str(error) == "Search limit reached (3/3) on the free plan"
        assert error.to_dict()["retry_after_seconds"] == 3600

    def test_entitlement_denied(self):
        error = EntitlementDenied("delete", "free")
        assert error.category == ErrorCategory.ACCESS
        assert "'delete'" in str(error)
        assert "suggestion" in error.to_dict()

    def test_access_denied_default(self):
        assert str(AccessDeniedError()) == "Access denied"


class TestValidationErrors:
    def test_invalid_image(self):
        error = InvalidImageError("payload is not valid base64")
        assert isinstance(error, ValidationError)
        assert str(error) == "Invalid image: payload is not valid base64"

    def test_invalid_parameter(self):
        error = InvalidParameterError("max_results", 0, "a positive integer")
        assert error.param_name == "max_results"
        assert "'max_results'" in str(error)
        assert error.context.input_value == 0


class TestDataErrors:
    def test_not_found(self):
        assert str(NotFoundError("Search", "abc")) == "Search not found: abc"
        assert str(NotFoundError("Search")) == "Search not found"

    def test_persistence_error_carries_partial_response(self):
        error = PersistenceError("disk full")
        assert error.partial_response is None
        assert error.severity == ErrorSeverity.CRITICAL

    def test_encryption_error(self):
        error = EncryptionError()
        assert isinstance(error, PersistenceError)
        assert not error.retryable

    def test_configuration_error(self):
        error = ConfigurationError("bad")
        assert isinstance(error, ImageTraceError)
        assert error.category == ErrorCategory.CONFIGURATION


class TestIsRetryable:
    def test_image_trace_errors_use_flag(self):
        assert is_retryable_error(ProviderNetworkError())
        assert not is_retryable_error(ProviderAuthError())

    def test_transient_os_errors(self):
        assert is_retryable_error(TimeoutError())
        assert is_retryable_error(ConnectionError())
        assert not is_retryable_error(PermissionError())
        assert not is_retryable_error(ValueError())
