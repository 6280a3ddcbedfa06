"""
Proprietary perceptual-hash scanner.

The query image is reduced to a 64-bit pHash (ImageHash) and sent to the
internal scanner service, which returns indexed images within a Hamming
distance. Similarity is ``(1 - distance / 64) * 100`` unless the scanner
reports its own score.
"""

from __future__ import annotations

import asyncio
import io
import logging
from typing import TYPE_CHECKING, Any

import imagehash
from PIL import Image, UnidentifiedImageError

from image_trace.domain.entities import ProviderResult, ResultStatus
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

HASH_BITS = 64

_RISK_STATUS = {
    "high": ResultStatus.VIOLATION,
    "medium": ResultStatus.PENDING_REVIEW,
}


def compute_phash(image_bytes: bytes) -> str:
    """Hex pHash of an image payload."""
    with Image.open(io.BytesIO(image_bytes)) as img:
        return str(imagehash.phash(img.convert("RGB")))


def max_distance_for(minimum_similarity: float) -> int:
    """Largest Hamming distance whose similarity still meets the threshold."""
    return max(0, int((1 - minimum_similarity / 100.0) * HASH_BITS))


def similarity_from_distance(distance: int) -> float:
    return clamp_similarity((1 - distance / HASH_BITS) * 100.0)


class ProprietaryProvider(SearchProvider):
    """Internal scanner of high-risk sites, matched by perceptual hash."""

    provider_id = "proprietary"
    display_name = "Proprietary Scanner"
    default_priority = 10
    requires_api_key = False
    description = "Perceptual-hash scanner over an index of high-risk sites"
    capabilities = ("hash_matching", "revenge_detection", "leak_detection")
    coverage = "specialized"

    def __init__(self, *, scanner_url: str = "", api_key: str | None = None, **kwargs: Any) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        super().__init__(base_url=scanner_url, api_key=api_key, headers=headers, **kwargs)

    async def _probe(self) -> bool:
        response = await self._client.get(self._build_url("/v1/health"))
        return response.status_code == 200

    async def _search(self, query: SearchQuery, options: ProviderSearchOptions) -> list[ProviderResult]:
        try:
            phash = await asyncio.to_thread(compute_phash, query.image_bytes)
        except (UnidentifiedImageError, OSError) as e:
            raise MalformedResponseError(f"Cannot hash image: {e}", provider=self.provider_id) from e

        payload = {
            "phash": phash,
            "sha256": query.image_hash,
            "max_distance": max_distance_for(options.minimum_similarity),
            "limit": options.max_results,
            "search_type": options.search_type.value,
        }
        data = await self._request_json("POST", "/v1/match", json=payload)
        matches = data.get("matches")
        if not isinstance(matches, list):
            raise MalformedResponseError("Missing 'matches' list", provider=self.provider_id)

        logger.debug(f"Scanner returned {len(matches)} candidates for pHash {phash}")
        return [self._to_result(m) for m in matches]

    def _to_result(self, match: dict[str, Any]) -> ProviderResult:
        url = match["url"]
        domain = match.get("site_name") or extract_domain(url)
        if match.get("similarity") is not None:
            similarity = clamp_similarity(float(match["similarity"]))
        else:
            similarity = similarity_from_distance(int(match["distance"]))

        risk = match.get("risk_level")
        status = _RISK_STATUS.get(risk) or classify_status(url, domain)

        metadata: dict[str, Any] = {
            "domain": domain,
            "copyright_risk": risk or assess_copyright_risk(domain),
        }
        if match.get("distance") is not None:
            metadata["hamming_distance"] = int(match["distance"])
        if match.get("category"):
            metadata["category"] = match["category"]

        return ProviderResult(
            url=url,
            site_name=domain,
            title=match.get("title") or "",
            similarity=similarity,
            status=status,
            thumbnail=match.get("thumbnail"),
            page_url=match.get("page_url"),
            provider=self.provider_id,
            metadata=metadata,
        )
