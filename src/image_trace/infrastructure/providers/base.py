"""
Search Provider Base - common HTTP pattern for reverse image search backends.

Every adapter shares:
- httpx.AsyncClient management
- Circuit breaker for fault tolerance
- A lock-protected QuotaCounter (per-minute / per-day)
- Mapping of HTTP status codes and transport errors to typed ProviderError kinds
- Result-count capping and status heuristics

Subclasses set ``provider_id`` / ``display_name`` / ``default_priority`` and
implement ``_search()``; they can override ``_probe()`` for availability.

Example:
    class MyProvider(SearchProvider):
        provider_id = "my_provider"

        async def _search(self, query, options):
            data = await self._request_json("POST", "/match", json={...})
            return [...]
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx
from typing_extensions import Self

from image_trace.domain.entities import ProviderResult, ResultStatus, SearchType
from image_trace.shared.async_utils import CircuitBreaker, CircuitOpenError, QuotaCounter
from image_trace.shared.exceptions import (
    MalformedResponseError,
    ProviderAuthError,
    ProviderError,
    ProviderNetworkError,
    ProviderQuotaError,
    ProviderTimeoutError,
)

if TYPE_CHECKING:
    from image_trace.domain.entities import SearchQuery

logger = logging.getLogger(__name__)


# Substrings in a URL/domain that suggest non-consensual or leaked content
VIOLATION_INDICATORS: tuple[str, ...] = (
    "leaked",
    "expose",
    "revenge",
    "ex-gf",
    "ex-bf",
    "stolen",
    "hacked",
    "private",
    "candid",
    "voyeur",
)

# Substrings typical of image hosts and galleries
REVIEW_INDICATORS: tuple[str, ...] = ("tube", "pics", "gallery", "upload", "imagehost")

HIGH_RISK_DOMAINS: tuple[str, ...] = (
    "leaked",
    "expose",
    "revenge",
    "stolen",
    "hacked",
    "pirated",
    "torrent",
)

MEDIUM_RISK_DOMAINS: tuple[str, ...] = (
    "tube",
    "pics",
    "gallery",
    "amateur",
    "upload",
    "share",
    "host",
    "twitter",
    "instagram",
    "facebook",
    "reddit",
    "tumblr",
    "pinterest",
)


def extract_domain(url: str) -> str:
    """Host name of ``url`` without a leading ``www.``; ``"unknown"`` if unparseable."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return "unknown"
    if not host:
        return "unknown"
    return host.removeprefix("www.")


def classify_status(url: str, domain: str = "") -> ResultStatus:
    """Keyword heuristic: high-risk terms mark a violation, host/gallery terms a review."""
    haystack = f"{domain} {url}".lower()
    if any(term in haystack for term in VIOLATION_INDICATORS):
        return ResultStatus.VIOLATION
    if any(term in haystack for term in REVIEW_INDICATORS):
        return ResultStatus.PENDING_REVIEW
    return ResultStatus.FOUND


def assess_copyright_risk(domain: str) -> str:
    domain = domain.lower()
    if any(term in domain for term in HIGH_RISK_DOMAINS):
        return "high"
    if any(term in domain for term in MEDIUM_RISK_DOMAINS):
        return "medium"
    return "low"


def clamp_similarity(value: float) -> float:
    return float(min(100.0, max(0.0, value)))


# =============================================================================
# Adapter call options and outcomes
# =============================================================================


@dataclass(frozen=True)
class ProviderSearchOptions:
    """What an adapter needs to know about the resolved search configuration."""

    max_results: int = 20
    minimum_similarity: float = 70.0
    search_type: SearchType = SearchType.GENERAL


@dataclass(frozen=True)
class ProviderSuccess:
    provider: str
    results: list[ProviderResult]
    duration_ms: int

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class ProviderFailure:
    provider: str
    error: ProviderError
    duration_ms: int

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> str:
        return self.error.kind.value


ProviderOutcome = ProviderSuccess | ProviderFailure


# =============================================================================
# Base adapter
# =============================================================================


class SearchProvider:
    """
    Base class for reverse image search adapters.

    Provides common infrastructure:
    - httpx.AsyncClient management (an injected client is used as-is)
    - Circuit breaker wrapping every backend call
    - Quota reservation in :meth:`execute`
    - Consistent error mapping: 401/403 -> auth, 402/429 -> quota,
      5xx and transport errors -> network, timeouts -> timeout,
      undecodable bodies -> malformed-response
    """

    provider_id: str = "provider"
    display_name: str = "Provider"
    default_priority: int = 5
    requires_api_key: bool = True
    description: str = ""
    capabilities: tuple[str, ...] = ()
    coverage: str = "global"
    cost_per_search: float | None = None

    def __init__(
        self,
        *,
        base_url: str = "",
        api_key: str | None = None,
        timeout: float = 30.0,
        priority: int | None = None,
        enabled: bool = True,
        quota: QuotaCounter | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """
        Args:
            base_url: Base URL of the backend API
            api_key: Credential; adapters with ``requires_api_key`` are
                     unavailable without one
            timeout: Per-request timeout in seconds
            priority: Ranking weight, defaults to ``default_priority``
            enabled: Administrative switch
            quota: Shared quota counter (default 60/min, 10000/day)
            circuit_breaker: Defaults to threshold=5, recovery=60s
            client: Pre-built httpx client (tests pass a MockTransport client)
        """
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key or None
        self._timeout = timeout
        self.priority = priority if priority is not None else self.default_priority
        self.enabled = enabled
        self.quota = quota or QuotaCounter()
        self._circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=60.0)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self._timeout,
            headers=headers or {},
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
                keepalive_expiry=30.0,
            ),
        )
        if client is not None and headers:
            self._client.headers.update(headers)

    # ── Configuration ────────────────────────────────────────────────────

    @property
    def configured(self) -> bool:
        if self.requires_api_key and not self._api_key:
            return False
        return bool(self._base_url)

    @property
    def circuit_open(self) -> bool:
        return self._circuit_breaker.is_open

    def validate(self) -> list[str]:
        """Configuration warnings for this adapter."""
        warnings = []
        if self.requires_api_key and not self._api_key:
            warnings.append(f"{self.display_name}: API key not configured")
        if not self._base_url:
            warnings.append(f"{self.display_name}: base URL not configured")
        return warnings

    def metadata(self) -> dict[str, Any]:
        return {
            "provider": self.provider_id,
            "name": self.display_name,
            "description": self.description,
            "capabilities": list(self.capabilities),
            "coverage": self.coverage,
            "cost_per_search": self.cost_per_search,
            "priority": self.priority,
            "circuit": self._circuit_breaker.state,
            "quota": self.quota.snapshot(),
        }

    # ── Availability ─────────────────────────────────────────────────────

    async def is_available(self) -> bool:
        """Enabled, configured, circuit closed, quota left and the probe passes."""
        if not self.enabled or not self.configured:
            return False
        if self.circuit_open:
            logger.info(f"{self.provider_id}: circuit open, reporting unavailable")
            return False
        if self.quota.remaining <= 0:
            logger.info(f"{self.provider_id}: quota exhausted, reporting unavailable")
            return False
        try:
            return await self._probe()
        except Exception as e:
            logger.warning(f"{self.provider_id}: availability probe failed: {e}")
            return False

    async def _probe(self) -> bool:
        """Lightweight backend check. Override in subclasses."""
        return True

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, query: SearchQuery, options: ProviderSearchOptions) -> list[ProviderResult]:
        """
        Run the backend search.

        Raises:
            ProviderError: one of the typed kinds; nothing else escapes
        """
        try:
            async with self._circuit_breaker:
                results = await self._search(query, options)
        except ProviderError:
            raise
        except CircuitOpenError as e:
            raise ProviderNetworkError(str(e), provider=self.provider_id) from e
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(provider=self.provider_id) from e
        except httpx.RequestError as e:
            raise ProviderNetworkError(f"{type(e).__name__}: {e}", provider=self.provider_id) from e
        except (ValueError, KeyError, TypeError, IndexError) as e:
            raise MalformedResponseError(f"{type(e).__name__}: {e}", provider=self.provider_id) from e

        return self._cap(results, options)

    async def _search(self, query: SearchQuery, options: ProviderSearchOptions) -> list[ProviderResult]:
        raise NotImplementedError

    async def execute(self, query: SearchQuery, options: ProviderSearchOptions) -> ProviderOutcome:
        """
        Reserve quota, search, and return an outcome value instead of raising.

        Unexpected adapter exceptions are reported as malformed-response
        failures so one broken adapter never aborts the whole search.
        """
        start = time.monotonic()
        try:
            await self.quota.acquire(self.provider_id)
            results = await self.search(query, options)
        except ProviderError as e:
            duration = int((time.monotonic() - start) * 1000)
            logger.warning(f"{self.provider_id} failed ({e.kind.value}) after {duration}ms: {e}")
            return ProviderFailure(provider=self.provider_id, error=e, duration_ms=duration)
        except Exception as e:
            duration = int((time.monotonic() - start) * 1000)
            logger.exception(f"{self.provider_id} raised unexpectedly")
            error = MalformedResponseError(f"{type(e).__name__}: {e}", provider=self.provider_id)
            return ProviderFailure(provider=self.provider_id, error=error, duration_ms=duration)

        duration = int((time.monotonic() - start) * 1000)
        logger.info(f"{self.provider_id}: {len(results)} results in {duration}ms")
        return ProviderSuccess(provider=self.provider_id, results=results, duration_ms=duration)

    # ── HTTP helpers ─────────────────────────────────────────────────────

    def _build_url(self, url: str) -> str:
        """Build full URL from path or full URL."""
        if url.startswith(("http://", "https://")):
            return url
        return f"{self._base_url}{url}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request and map error statuses to ProviderError kinds."""
        response = await self._client.request(method, self._build_url(url), **kwargs)
        await self._raise_for_status(response)
        return response

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._request(method, url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError("Response body is not valid JSON", provider=self.provider_id) from e

    async def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        if status in (401, 403):
            raise ProviderAuthError(f"HTTP {status}", provider=self.provider_id)
        if status in (402, 429):
            retry_after = self._get_retry_after(response)
            await self.quota.mark_exhausted(retry_after)
            raise ProviderQuotaError(f"HTTP {status}", provider=self.provider_id, retry_after=retry_after)
        if status >= 500:
            raise ProviderNetworkError(f"HTTP {status}: {response.reason_phrase}", provider=self.provider_id)
        raise MalformedResponseError(f"Unexpected HTTP {status}", provider=self.provider_id)

    @staticmethod
    def _get_retry_after(response: httpx.Response, default: float = 60.0) -> float:
        """Extract Retry-After from response headers."""
        try:
            return float(response.headers.get("Retry-After", default))
        except (ValueError, TypeError):
            return default

    # ── Result helpers ───────────────────────────────────────────────────

    @staticmethod
    def _cap(results: list[ProviderResult], options: ProviderSearchOptions) -> list[ProviderResult]:
        """Drop results below the threshold and keep the best ``max_results``."""
        kept = [r for r in results if r.similarity >= options.minimum_similarity]
        kept.sort(key=lambda r: r.similarity, reverse=True)
        return kept[: options.max_results]

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close the underlying HTTP client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_id={self.provider_id!r}, priority={self.priority})"
