"""
Tests for the static plan catalog.

CRITICAL: unknown feature keys or metrics in plans.json must fail at load
time, never at request time.
"""

import json

import pytest

from genbook.config.settings import DEFAULT_PLANS_PATH
from genbook.entitlements.keys import FeatureKey, PlanTier, UsageMetric, parse_feature_key
from genbook.entitlements.loader import PlanCatalog


def _write(tmp_path, config) -> str:
    path = tmp_path / "plans.json"
    path.write_text(json.dumps(config), encoding="utf-8")
    return str(path)


def _minimal(**free_overrides):
    free = {
        "name": "Free",
        "tier": "free",
        "features": ["basic_analytics"],
        "limits": {"appointments_per_month": 50},
    }
    free.update(free_overrides)
    return {"default_plan": "free", "plans": {"free": free}}


class TestBundledCatalog:
    @pytest.fixture
    def catalog(self):
        return PlanCatalog(DEFAULT_PLANS_PATH)

    def test_default_plan_is_free(self, catalog):
        assert catalog.default_plan.plan_id == "free"
        assert catalog.default_plan.tier is PlanTier.FREE

    def test_free_limits(self, catalog):
        free = catalog.get_plan("free")
        assert free.limit_for(UsageMetric.APPOINTMENTS_PER_MONTH) == 50
        assert free.limit_for(UsageMetric.CHAT_MESSAGES_PER_MONTH) == 100
        assert free.limit_for(UsageMetric.TEAM_MEMBERS) == 1
        assert free.feature_keys == frozenset({FeatureKey.BASIC_ANALYTICS})

    def test_professional_has_voice_but_not_api_access(self, catalog):
        pro = catalog.get_plan("professional")
        assert pro.has_feature(FeatureKey.VOICE_COMMANDS)
        assert pro.has_feature(FeatureKey.ADVANCED_ANALYTICS)
        assert not pro.has_feature(FeatureKey.API_ACCESS)
        assert pro.limit_for(UsageMetric.APPOINTMENTS_PER_MONTH) == 2000

    def test_enterprise_has_every_feature_and_no_limits(self, catalog):
        enterprise = catalog.get_plan("enterprise")
        assert all(enterprise.has_feature(key) for key in FeatureKey)
        assert all(enterprise.limit_for(metric) is None for metric in UsageMetric)

    def test_find_plan_by_provider_plan_id(self, catalog):
        assert catalog.find_plan("plan_professional_monthly").plan_id == "professional"
        assert catalog.find_plan("pro").plan_id == "professional"

    def test_find_plan_unknown_returns_none(self, catalog):
        assert catalog.find_plan("plan_does_not_exist") is None
        assert catalog.find_plan("") is None
        assert catalog.find_plan(None) is None

    def test_get_plan_unknown_raises(self, catalog):
        with pytest.raises(KeyError):
            catalog.get_plan("gold")

    def test_active_plans_sorted_by_price(self, catalog):
        assert [p.plan_id for p in catalog.active_plans()] == ["free", "professional", "enterprise"]

    def test_plan_definition_is_immutable(self, catalog):
        free = catalog.get_plan("free")
        with pytest.raises(TypeError):
            free.limits[UsageMetric.APPOINTMENTS_PER_MONTH] = 10


class TestCatalogValidation:
    def test_unknown_feature_key_rejected(self, tmp_path):
        path = _write(tmp_path, _minimal(features=["teleportation"]))
        with pytest.raises(ValueError, match="unknown feature key"):
            PlanCatalog(path)

    def test_unknown_metric_rejected(self, tmp_path):
        path = _write(tmp_path, _minimal(limits={"seats": 3}))
        with pytest.raises(ValueError):
            PlanCatalog(path)

    def test_negative_limit_rejected(self, tmp_path):
        path = _write(tmp_path, _minimal(limits={"appointments_per_month": -1}))
        with pytest.raises(ValueError):
            PlanCatalog(path)

    def test_null_limit_means_unlimited(self, tmp_path):
        path = _write(tmp_path, _minimal(limits={"appointments_per_month": None}))
        catalog = PlanCatalog(path)
        assert catalog.default_plan.limit_for(UsageMetric.APPOINTMENTS_PER_MONTH) is None

    def test_missing_default_plan_rejected(self, tmp_path):
        config = _minimal()
        config["default_plan"] = "starter"
        with pytest.raises(ValueError):
            PlanCatalog(_write(tmp_path, config))

    def test_duplicate_provider_plan_id_rejected(self, tmp_path):
        config = _minimal(provider_plan_ids=["plan_x"])
        config["plans"]["professional"] = {
            "name": "Professional",
            "tier": "professional",
            "features": [],
            "limits": {},
            "provider_plan_ids": ["plan_x"],
        }
        with pytest.raises(ValueError, match="more than one plan"):
            PlanCatalog(_write(tmp_path, config))

    def test_reload_picks_up_changes(self, tmp_path):
        path = _write(tmp_path, _minimal())
        catalog = PlanCatalog(path)
        _write(tmp_path, _minimal(limits={"appointments_per_month": 75}))
        catalog.reload()
        assert catalog.default_plan.limit_for(UsageMetric.APPOINTMENTS_PER_MONTH) == 75


def test_parse_feature_key_accepts_enum_and_string():
    assert parse_feature_key("voice_commands") is FeatureKey.VOICE_COMMANDS
    assert parse_feature_key(FeatureKey.AI_INSIGHTS) is FeatureKey.AI_INSIGHTS
    with pytest.raises(ValueError):
        parse_feature_key("voice")
