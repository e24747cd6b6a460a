from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import RLock
from typing import Dict, List, Optional, Union

from .keys import PlanTier, parse_feature_key, parse_usage_metric
from .models import PlanDefinition, PlansConfig

logger = logging.getLogger(__name__)

_VALID_INTERVALS = ("month", "year")


class PlanCatalog:
    """Loads the static plan catalog from plans.json with reload support."""

    def __init__(self, config_path: Union[str, Path]) -> None:
        self._config_path = Path(config_path)
        self._lock = RLock()
        self._config: PlansConfig
        self._provider_index: Dict[str, str] = {}
        self.reload()

    def reload(self) -> None:
        """Reload config from disk (for safe process restart workflows)."""
        raw = self._read_config_file()
        parsed = self._parse_config(raw)
        index: Dict[str, str] = {}
        for plan in parsed.plans.values():
            for provider_plan_id in plan.provider_plan_ids:
                if provider_plan_id in index:
                    raise ValueError(f"provider plan id {provider_plan_id!r} mapped by more than one plan")
                index[provider_plan_id] = plan.plan_id
        with self._lock:
            self._config = parsed
            self._provider_index = index
        logger.info("Loaded plan catalog", extra={"path": str(self._config_path), "plans": len(parsed.plans)})

    @property
    def default_plan(self) -> PlanDefinition:
        with self._lock:
            return self._config.default_plan

    def get_plan(self, plan_id: str) -> PlanDefinition:
        if not plan_id:
            raise ValueError("plan_id is required")
        with self._lock:
            plan = self._config.plans.get(plan_id.strip())
        if plan is None:
            raise KeyError(f"unknown plan_id: {plan_id}")
        return plan

    def find_plan(self, plan_id: Optional[str]) -> Optional[PlanDefinition]:
        """Resolve a catalog id or a billing-provider plan id; None if unknown."""
        if not plan_id or not str(plan_id).strip():
            return None
        key = str(plan_id).strip()
        with self._lock:
            plan = self._config.plans.get(key)
            if plan is None and key in self._provider_index:
                plan = self._config.plans[self._provider_index[key]]
        return plan

    def active_plans(self) -> List[PlanDefinition]:
        with self._lock:
            plans = [p for p in self._config.plans.values() if p.is_active]
        return sorted(plans, key=lambda p: (p.price_cents, p.plan_id))

    def _read_config_file(self) -> dict:
        with self._config_path.open("r", encoding="utf-8") as handle:
            raw = json.load(handle)
        if not isinstance(raw, dict):
            raise ValueError("plans.json must contain a top-level object")
        return raw

    @staticmethod
    def _parse_config(raw: dict) -> PlansConfig:
        plans_raw = raw.get("plans")
        if not isinstance(plans_raw, dict):
            raise ValueError("plans.json must include an object field named 'plans'")

        plans: Dict[str, PlanDefinition] = {}
        for plan_id, plan_data in plans_raw.items():
            if not isinstance(plan_id, str) or not plan_id.strip():
                raise ValueError("each plan id must be a non-empty string")
            plan_id = plan_id.strip()
            if not isinstance(plan_data, dict):
                raise ValueError(f"plan '{plan_id}' must be an object")

            try:
                tier = PlanTier(str(plan_data.get("tier", plan_id)).strip())
            except ValueError:
                raise ValueError(f"plan '{plan_id}' has unknown tier: {plan_data.get('tier')!r}")

            features = plan_data.get("features", [])
            if not isinstance(features, list):
                raise ValueError(f"plan '{plan_id}' features must be a list of feature keys")
            feature_keys = frozenset(parse_feature_key(f) for f in features)

            limits = plan_data.get("limits", {})
            if not isinstance(limits, dict):
                raise ValueError(f"plan '{plan_id}' limits must be an object")
            normalized_limits = {}
            for limit_key, limit_value in limits.items():
                metric = parse_usage_metric(limit_key)
                if limit_value is None:
                    normalized_limits[metric] = None
                    continue
                value = int(limit_value)
                if value < 0:
                    raise ValueError(f"plan '{plan_id}' limit {metric.value} must not be negative")
                normalized_limits[metric] = value

            interval = str(plan_data.get("billing_interval", "month")).strip()
            if interval not in _VALID_INTERVALS:
                raise ValueError(f"plan '{plan_id}' billing_interval must be one of {_VALID_INTERVALS}")

            provider_ids = plan_data.get("provider_plan_ids", [])
            if not isinstance(provider_ids, list):
                raise ValueError(f"plan '{plan_id}' provider_plan_ids must be a list")

            plans[plan_id] = PlanDefinition(
                plan_id=plan_id,
                name=str(plan_data.get("name", plan_id)),
                tier=tier,
                feature_keys=feature_keys,
                limits=normalized_limits,
                price_cents=int(plan_data.get("price_cents", 0)),
                currency=str(plan_data.get("currency", "INR")),
                billing_interval=interval,
                is_active=bool(plan_data.get("is_active", True)),
                provider_plan_ids=tuple(str(p).strip() for p in provider_ids if str(p).strip()),
            )

        if not plans:
            raise ValueError("plans.json must define at least one plan")

        default_plan_id = str(raw.get("default_plan", PlanTier.FREE.value)).strip()
        if default_plan_id not in plans:
            raise ValueError(f"default_plan '{default_plan_id}' is not defined")

        return PlansConfig(plans=plans, default_plan_id=default_plan_id)


_catalog: Optional[PlanCatalog] = None


def get_plan_catalog() -> PlanCatalog:
    """Process-wide catalog, loaded from PLANS_CONFIG_PATH on first use."""
    global _catalog
    if _catalog is None:
        from genbook.config.settings import get_settings

        _catalog = PlanCatalog(get_settings().plans_config_path)
    return _catalog
