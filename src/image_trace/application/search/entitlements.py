"""
Plan entitlement table.

Which providers each plan may use, its result caps, search deadline and
monthly search allowance. The built-in table can be replaced from a YAML
file of the form::

    plans:
      free:
        providers: [proprietary]
        max_results: 10
        max_results_per_provider: 10
        timeout_seconds: 15
        searches: 3
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from image_trace.domain.entities import PlanTier
from image_trace.shared.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanEntitlement:
    plan: PlanTier
    providers: tuple[str, ...]
    max_results: int
    max_results_per_provider: int
    timeout_seconds: float
    searches: int | None = None  # None: no account allowance (anonymous)

    @property
    def can_delete(self) -> bool:
        """Explicit deletion of own searches is a premium feature."""
        return self.plan.is_premium

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.value,
            "providers": list(self.providers),
            "max_results": self.max_results,
            "max_results_per_provider": self.max_results_per_provider,
            "timeout_seconds": self.timeout_seconds,
            "searches": self.searches,
        }


DEFAULT_ENTITLEMENTS: dict[PlanTier, PlanEntitlement] = {
    PlanTier.ANONYMOUS: PlanEntitlement(
        plan=PlanTier.ANONYMOUS,
        providers=("proprietary",),
        max_results=5,
        max_results_per_provider=10,
        timeout_seconds=15.0,
    ),
    PlanTier.FREE: PlanEntitlement(
        plan=PlanTier.FREE,
        providers=("proprietary",),
        max_results=10,
        max_results_per_provider=10,
        timeout_seconds=15.0,
        searches=3,
    ),
    PlanTier.BASIC: PlanEntitlement(
        plan=PlanTier.BASIC,
        providers=("proprietary", "google_vision"),
        max_results=20,
        max_results_per_provider=20,
        timeout_seconds=30.0,
        searches=10,
    ),
    PlanTier.PRO: PlanEntitlement(
        plan=PlanTier.PRO,
        providers=("proprietary", "tineye", "google_vision"),
        max_results=50,
        max_results_per_provider=25,
        timeout_seconds=60.0,
        searches=999,
    ),
}


class EntitlementTable:
    """Read-only lookup of plan entitlements."""

    def __init__(self, entitlements: dict[PlanTier, PlanEntitlement] | None = None) -> None:
        self._entitlements = dict(entitlements or DEFAULT_ENTITLEMENTS)
        missing = set(PlanTier) - set(self._entitlements)
        if missing:
            msg = f"Entitlement table is missing plans: {sorted(p.value for p in missing)}"
            raise ConfigurationError(msg)

    def for_plan(self, plan: PlanTier | str) -> PlanEntitlement:
        return self._entitlements[PlanTier(plan)]

    def is_entitled(self, plan: PlanTier | str, provider_id: str) -> bool:
        return provider_id in self.for_plan(plan).providers

    def to_dict(self) -> dict[str, Any]:
        return {plan.value: ent.to_dict() for plan, ent in self._entitlements.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EntitlementTable:
        """Overlay ``{"plans": {plan: {...}}}`` on the default table."""
        plans = data.get("plans", data)
        if not isinstance(plans, dict):
            msg = "Entitlement overrides must be a mapping of plan -> settings"
            raise ConfigurationError(msg)

        merged = dict(DEFAULT_ENTITLEMENTS)
        for name, overrides in plans.items():
            try:
                plan = PlanTier(name)
            except ValueError as e:
                msg = f"Unknown plan in entitlement overrides: {name!r}"
                raise ConfigurationError(msg) from e
            overrides = dict(overrides or {})
            if "providers" in overrides:
                overrides["providers"] = tuple(overrides["providers"])
            if "timeout_seconds" in overrides:
                overrides["timeout_seconds"] = float(overrides["timeout_seconds"])
            unknown = set(overrides) - {
                "providers",
                "max_results",
                "max_results_per_provider",
                "timeout_seconds",
                "searches",
            }
            if unknown:
                msg = f"Unknown entitlement fields for {name}: {sorted(unknown)}"
                raise ConfigurationError(msg)
            merged[plan] = replace(merged[plan], **overrides)
        return cls(merged)

    @classmethod
    def from_yaml(cls, path: str | Path | None) -> EntitlementTable:
        """Load overrides from ``path``; the default table when no path is given."""
        if not path:
            return cls()
        file = Path(path).expanduser()
        if not file.exists():
            msg = f"Entitlement file not found: {file}"
            raise ConfigurationError(msg)
        try:
            data = yaml.safe_load(file.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            msg = f"Invalid entitlement YAML in {file}: {e}"
            raise ConfigurationError(msg) from e
        logger.info(f"Loaded plan entitlements from {file}")
        return cls.from_dict(data)
