"""
TinEye API adapter.

Exact-match specialist: the image is uploaded as multipart ``image_upload``
to ``/search/``; ``/remaining_searches/`` doubles as the availability probe
and refreshes the local quota counter from the account bundle.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from image_trace.domain.entities import ProviderResult
from image_trace.shared.exceptions import MalformedResponseError

from .base import (
    ProviderSearchOptions,
    SearchProvider,
    assess_copyright_risk,
    clamp_similarity,
    classify_status,
    extract_domain,
)

if TYPE_CHECKING:
    from image_trace.domain.entities import SearchQuery

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.tineye.com/rest"


class TinEyeProvider(SearchProvider):
    """TinEye reverse image search."""

    provider_id = "tineye"
    display_name = "TinEye"
    default_priority = 9
    description = "TinEye reverse image search API, specialized in exact and modified copies"
    capabilities = ("reverse_image_search", "exact_match", "modification_detection")
    cost_per_search = 0.20

    def __init__(self, *, api_key: str | None = None, base_url: str = DEFAULT_BASE_URL, **kwargs: Any) -> None:
        headers = {"x-api-key": api_key} if api_key else {}
        super().__init__(base_url=base_url, api_key=api_key, headers=headers, **kwargs)

    async def _probe(self) -> bool:
        data = await self._request_json("GET", "/remaining_searches/")
        remaining = _remaining_searches(data)
        if remaining is not None:
            await self.quota.sync_remaining(remaining)
            return remaining > 0
        return True

    async def _search(self, query: SearchQuery, options: ProviderSearchOptions) -> list[ProviderResult]:
        files = {"image_upload": ("query", query.image_bytes, query.mime_type)}
        params = {"limit": options.max_results, "offset": 0, "sort": "score", "order": "desc"}
        data = await self._request_json("POST", "/search/", files=files, data=params)

        results = data.get("results")
        if not isinstance(results, dict) or not isinstance(results.get("matches"), list):
            raise MalformedResponseError("Missing 'results.matches'", provider=self.provider_id)
        return [self._to_result(m) for m in results["matches"]]

    def _to_result(self, match: dict[str, Any]) -> ProviderResult:
        url = match["image_url"]
        domain = match.get("domain") or extract_domain(url)
        backlinks = match.get("backlinks") or []
        page_url = backlinks[0].get("backlink") if backlinks else None

        metadata: dict[str, Any] = {
            "domain": domain,
            "copyright_risk": assess_copyright_risk(domain),
            "backlink_count": len(backlinks),
        }
        if match.get("width") and match.get("height"):
            metadata["image_size"] = {"width": match["width"], "height": match["height"]}
        if backlinks and backlinks[0].get("crawl_date"):
            metadata["first_crawled"] = backlinks[0]["crawl_date"]

        return ProviderResult(
            url=url,
            site_name=domain,
            title=domain,
            similarity=clamp_similarity(float(match.get("score", 0.0))),
            status=classify_status(url, domain),
            thumbnail=url,
            page_url=page_url,
            provider=self.provider_id,
            metadata=metadata,
        )


def _remaining_searches(data: Any) -> int | None:
    if not isinstance(data, dict):
        return None
    results = data.get("results")
    if isinstance(results, dict) and "total_remaining_searches" in results:
        return int(results["total_remaining_searches"])
    return None
