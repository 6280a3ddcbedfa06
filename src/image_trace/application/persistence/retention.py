"""
Data retention policy.

Searches of non-premium owners (anonymous, free) are deleted once they are
older than ``retention_days``. Premium searches stay until their owner
deletes them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from image_trace.domain.entities import PlanTier
from image_trace.shared.exceptions import ImageTraceError

if TYPE_CHECKING:
    from image_trace.infrastructure.storage import JsonRecordStore

    from .archive import SearchArchive

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 180


@dataclass
class PurgeReport:
    cutoff: datetime
    examined: int = 0
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cutoff": self.cutoff.isoformat(),
            "examined": self.examined,
            "deleted": len(self.deleted),
            "failed": len(self.failed),
        }


class RetentionPolicy:
    def __init__(
        self,
        records: JsonRecordStore,
        archive: SearchArchive,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ) -> None:
        self._records = records
        self._archive = archive
        self.retention_days = retention_days

    def is_expired(self, owner_plan: str, created_at: datetime, now: datetime) -> bool:
        try:
            plan = PlanTier(owner_plan)
        except ValueError:
            plan = PlanTier.ANONYMOUS
        if plan.is_premium:
            return False
        return created_at < now - timedelta(days=self.retention_days)

    async def purge(self, now: datetime | None = None) -> PurgeReport:
        """Delete every expired non-premium search. A record that cannot be removed is reported, not fatal."""
        now = now or datetime.now(timezone.utc)
        report = PurgeReport(cutoff=now - timedelta(days=self.retention_days))
        records = await asyncio.to_thread(lambda: list(self._records.iter_records()))
        for record in records:
            report.examined += 1
            if self.is_expired(record.owner_plan, record.created_at, now):
                try:
                    await self._archive.remove(record)
                except (ImageTraceError, OSError, ValueError) as e:
                    logger.error(f"Retention: could not remove search {record.search_id}: {e}")
                    report.failed.append(record.search_id)
                    continue
                report.deleted.append(record.search_id)
        logger.info(f"Retention purge: {report.to_dict()}")
        return report
