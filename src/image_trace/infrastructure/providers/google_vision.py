"""
Google Cloud Vision web detection adapter.

Uses ``images:annotate`` with WEB_DETECTION and SAFE_SEARCH_DETECTION.
Match kinds are scored at fixed levels:

    full matching image      100
    partial matching image    95
    visually similar image    92
    page with matching image  90
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any

from image_trace.domain.entities import ProviderResult, ResultStatus
from image_trace.shared.exceptions import (
    MalformedResponseError,
    ProviderAuthError,
    ProviderQuotaError,
)

from .base import (
    ProviderSearchOptions,
    SearchProvider,
    assess_copyright_risk,
    classify_status,
    extract_domain,
)

if TYPE_CHECKING:
    from image_trace.domain.entities import SearchQuery

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://vision.googleapis.com/v1"

FULL_MATCH_SCORE = 100.0
PARTIAL_MATCH_SCORE = 95.0
SIMILAR_SCORE = 92.0
PAGE_SCORE = 90.0

# 1x1 transparent PNG used by the availability probe
_PROBE_IMAGE = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8/5+hHgAHggJ/PchI7wAAAABJRU5ErkJggg=="

_LIKELY = ("LIKELY", "VERY_LIKELY")

# google.rpc.Code values
_AUTH_CODES = (7, 16)
_QUOTA_CODE = 8


class GoogleVisionProvider(SearchProvider):
    """Google Vision API web detection."""

    provider_id = "google_vision"
    display_name = "Google Vision"
    default_priority = 8
    description = "Google Vision API reverse image search with web detection"
    capabilities = ("reverse_image_search", "safe_search", "web_detection", "visual_similarity")
    cost_per_search = 0.0015

    def __init__(self, *, api_key: str | None = None, base_url: str = DEFAULT_BASE_URL, **kwargs: Any) -> None:
        super().__init__(base_url=base_url, api_key=api_key, **kwargs)

    async def _annotate(self, content: str, features: list[dict[str, Any]]) -> dict[str, Any]:
        body = {"requests": [{"image": {"content": content}, "features": features}]}
        data = await self._request_json("POST", "/images:annotate", params={"key": self._api_key}, json=body)
        responses = data.get("responses")
        if not isinstance(responses, list) or not responses:
            raise MalformedResponseError("Missing 'responses'", provider=self.provider_id)
        first = responses[0]
        if "error" in first:
            self._raise_api_error(first["error"])
        return first

    def _raise_api_error(self, error: dict[str, Any]) -> None:
        code = error.get("code")
        message = error.get("message", "Vision API error")
        if code in _AUTH_CODES:
            raise ProviderAuthError(message, provider=self.provider_id)
        if code == _QUOTA_CODE:
            raise ProviderQuotaError(message, provider=self.provider_id)
        raise MalformedResponseError(message, provider=self.provider_id)

    async def _probe(self) -> bool:
        await self._annotate(_PROBE_IMAGE, [{"type": "WEB_DETECTION", "maxResults": 1}])
        return True

    async def _search(self, query: SearchQuery, options: ProviderSearchOptions) -> list[ProviderResult]:
        content = base64.b64encode(query.image_bytes).decode("ascii")
        features = [
            {"type": "WEB_DETECTION", "maxResults": max(options.max_results, 10)},
            {"type": "SAFE_SEARCH_DETECTION"},
        ]
        annotation = await self._annotate(content, features)

        web = annotation.get("webDetection")
        if not web:
            logger.info("Vision API returned no web detection data")
            return []
        safe_search = annotation.get("safeSearchAnnotation") or {}
        return self._parse_web_detection(web, safe_search)

    def _parse_web_detection(self, web: dict[str, Any], safe_search: dict[str, Any]) -> list[ProviderResult]:
        pages = web.get("pagesWithMatchingImages") or []
        full_urls = {img["url"] for img in web.get("fullMatchingImages") or []}
        partial_urls = {img["url"] for img in web.get("partialMatchingImages") or []}

        results: list[ProviderResult] = []
        for img in web.get("fullMatchingImages") or []:
            results.append(self._image_result(img["url"], FULL_MATCH_SCORE, pages, safe_search))
        for img in web.get("partialMatchingImages") or []:
            results.append(self._image_result(img["url"], PARTIAL_MATCH_SCORE, pages, safe_search))
        for img in web.get("visuallySimilarImages") or []:
            url = img["url"]
            if url in full_urls or url in partial_urls:
                continue
            results.append(self._image_result(url, SIMILAR_SCORE, pages, safe_search))
        for page in pages:
            results.append(self._page_result(page))
        return results

    def _image_result(
        self,
        url: str,
        similarity: float,
        pages: list[dict[str, Any]],
        safe_search: dict[str, Any],
    ) -> ProviderResult:
        domain = extract_domain(url)
        page = _find_containing_page(pages, url)
        page_title = _strip_tags(page.get("pageTitle", "")) if page else ""
        return ProviderResult(
            url=url,
            site_name=domain,
            title=page_title or f"Image on {domain}",
            similarity=similarity,
            status=_status_from_safe_search(safe_search, url, domain),
            thumbnail=url,
            page_url=page.get("url") if page else None,
            provider=self.provider_id,
            metadata={
                "domain": domain,
                "is_adult_content": _is_adult(safe_search),
                "copyright_risk": assess_copyright_risk(domain),
                "context_text": page_title or None,
                "content_analysis": _content_analysis(safe_search),
            },
        )

    def _page_result(self, page: dict[str, Any]) -> ProviderResult:
        page_url = page["url"]
        domain = extract_domain(page_url)
        full = page.get("fullMatchingImages") or []
        partial = page.get("partialMatchingImages") or []
        if full:
            image_url, match_type = full[0]["url"], "full"
        elif partial:
            image_url, match_type = partial[0]["url"], "partial"
        else:
            image_url, match_type = None, "generic"
        title = _strip_tags(page.get("pageTitle", ""))
        return ProviderResult(
            url=image_url or page_url,
            site_name=domain,
            title=title or f"Web page on {domain}",
            similarity=PAGE_SCORE,
            status=classify_status(page_url, domain),
            thumbnail=image_url,
            page_url=page_url,
            provider=self.provider_id,
            metadata={
                "domain": domain,
                "copyright_risk": assess_copyright_risk(domain),
                "match_type": match_type,
                "image_count": len(full) + len(partial),
            },
        )


def _find_containing_page(pages: list[dict[str, Any]], image_url: str) -> dict[str, Any] | None:
    for page in pages:
        for img in (page.get("fullMatchingImages") or []) + (page.get("partialMatchingImages") or []):
            if img.get("url") == image_url:
                return page
    return None


def _strip_tags(text: str) -> str:
    # Vision wraps matched terms in <b>...</b>
    return text.replace("<b>", "").replace("</b>", "").strip()


def _is_adult(safe_search: dict[str, Any]) -> bool:
    return safe_search.get("adult") in _LIKELY or safe_search.get("racy") in _LIKELY


def _content_analysis(safe_search: dict[str, Any]) -> dict[str, str] | None:
    if not safe_search:
        return None
    return {k: safe_search.get(k, "UNKNOWN") for k in ("adult", "racy", "violence", "medical", "spoof")}


def _status_from_safe_search(safe_search: dict[str, Any], url: str, domain: str) -> ResultStatus:
    if _is_adult(safe_search):
        return ResultStatus.VIOLATION
    if safe_search.get("adult") == "POSSIBLE" or safe_search.get("racy") == "POSSIBLE":
        return ResultStatus.PENDING_REVIEW
    return classify_status(url, domain)
