"""
Access Shaper - plan-based field redaction.

Pure masking: output has the same length and order as the input; nothing is
re-ranked, added or dropped. Redacted fields are None on the ShapedResult and
absent from its serialized form.

Plans that cannot see the URL also get an opaque result id (HMAC of the URL
under a server key) so a guessed URL cannot be confirmed from the plain
URL digest.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass

from image_trace.domain.entities import AggregatedResult, PlanTier, ShapedResult

PLACEHOLDER_TITLE = "Match found"


@dataclass(frozen=True)
class ViewPolicy:
    """Which fields a plan may see."""

    show_url: bool = False
    show_title: bool = False
    show_thumbnail: bool = False
    show_metadata: bool = False
    show_providers: bool = False


DEFAULT_POLICIES: dict[PlanTier, ViewPolicy] = {
    PlanTier.ANONYMOUS: ViewPolicy(),
    PlanTier.FREE: ViewPolicy(),
    PlanTier.BASIC: ViewPolicy(show_url=True, show_title=True),
    PlanTier.PRO: ViewPolicy(
        show_url=True,
        show_title=True,
        show_thumbnail=True,
        show_metadata=True,
        show_providers=True,
    ),
}


class AccessShaper:
    """
    Args:
        policies: Per-plan overrides of DEFAULT_POLICIES
        id_key: Server secret keying the ids of URL-redacted results;
                a random per-process key when not given
    """

    def __init__(
        self,
        policies: dict[PlanTier, ViewPolicy] | None = None,
        id_key: str | bytes | None = None,
    ) -> None:
        self._policies = dict(DEFAULT_POLICIES)
        if policies:
            self._policies.update(policies)
        if isinstance(id_key, str):
            id_key = id_key.encode("utf-8")
        self._id_key = id_key or secrets.token_bytes(32)

    def policy_for(self, plan: PlanTier | str) -> ViewPolicy:
        return self._policies.get(PlanTier(plan), ViewPolicy())

    def shape(self, results: list[AggregatedResult], plan: PlanTier | str) -> list[ShapedResult]:
        policy = self.policy_for(plan)
        return [self._shape_one(r, policy) for r in results]

    def opaque_id(self, url: str) -> str:
        digest = hmac.new(self._id_key, b"result-id:" + url.encode("utf-8"), hashlib.sha256)
        return digest.hexdigest()[:16]

    def _shape_one(self, result: AggregatedResult, policy: ViewPolicy) -> ShapedResult:
        return ShapedResult(
            result_id=result.result_id if policy.show_url else self.opaque_id(result.url),
            site_name=result.site_name,
            similarity=result.similarity,
            status=result.status,
            title=(result.title or PLACEHOLDER_TITLE) if policy.show_title else PLACEHOLDER_TITLE,
            url=result.url if policy.show_url else None,
            page_url=result.page_url if policy.show_url else None,
            thumbnail=result.thumbnail if policy.show_thumbnail else None,
            metadata=dict(result.metadata) if policy.show_metadata else None,
            providers=result.providers if policy.show_providers else None,
        )
