"""
Tests unitaires ConfigValidator

Comportements testés:
- Erreurs de schéma (pydantic) retournées seules, règle "SCHEMA"
- Règles TOP_001 à TOP_010 sur la topologie 3-tiers
- Toutes les erreurs sont retournées (pas fail-fast)
- Nombre pair de votants = warning non bloquant
"""

import copy
from typing import Any, Dict

import pytest

from tierwatch.core import ConfigValidator, IConfigValidator, TopologyConfig, ValidationSeverity


# ══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ══════════════════════════════════════════════════════════════════════════════


BASE_TOPOLOGY: Dict[str, Any] = {
    "version": "1.0",
    "deployment_id": "workshop",
    "tiers": [
        {
            "name": "web",
            "members": [
                {"id": "vm-web-1", "endpoint": "10.0.1.4"},
                {"id": "vm-web-2", "endpoint": "10.0.1.5", "zone": "2"},
            ],
        },
        {
            "name": "app",
            "members": [{"id": "vm-app-1", "endpoint": "10.0.2.4:3000"}],
        },
        {
            "name": "db",
            "quorum_required": True,
            "probe_kind": "tcp",
            "members": [
                {"id": "vm-db-1", "endpoint": "10.0.3.4:27017"},
                {"id": "vm-db-2", "endpoint": "10.0.3.5:27017"},
                {"id": "vm-db-3", "endpoint": "10.0.3.6:27017"},
            ],
        },
    ],
}


@pytest.fixture
def validator() -> ConfigValidator:
    return ConfigValidator()


@pytest.fixture
def topology() -> Dict[str, Any]:
    """Copie modifiable d'une topologie valide."""
    return copy.deepcopy(BASE_TOPOLOGY)


def tier(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    return next(t for t in config["tiers"] if t["name"] == name)


# ══════════════════════════════════════════════════════════════════════════════
# TESTS
# ══════════════════════════════════════════════════════════════════════════════


class TestValidTopology:
    """Tests d'une topologie valide."""

    def test_implements_interface(self, validator):
        assert isinstance(validator, IConfigValidator)

    def test_valid(self, validator, topology):
        result = validator.validate(topology)

        assert result.valid is True
        assert result.errors == []
        assert result.warnings == []

    def test_rule_ids(self, validator):
        assert validator.rule_ids == [f"TOP_{i:03d}" for i in range(1, 11)]

    def test_unknown_rule(self, validator, topology):
        error = validator.validate_rule("TOP_999", TopologyConfig.model_validate(topology))

        assert error is not None
        assert error.severity == ValidationSeverity.BLOCKING


class TestSchema:
    """Tests des erreurs de schéma."""

    def test_missing_version(self, validator, topology):
        del topology["version"]

        result = validator.validate(topology)

        assert result.valid is False
        assert [e.rule_id for e in result.errors] == ["SCHEMA"]
        assert result.errors[0].location == "version"

    def test_unknown_tier_name(self, validator, topology):
        topology["tiers"][0]["name"] = "cache"

        result = validator.validate(topology)

        assert result.valid is False
        assert result.errors[0].rule_id == "SCHEMA"

    def test_votes_out_of_range(self, validator, topology):
        tier(topology, "db")["members"][0]["votes"] = 2

        assert validator.validate(topology).valid is False


class TestRules:
    """Tests des règles de cohérence."""

    def test_top_001_duplicate_member_id(self, validator, topology):
        tier(topology, "app")["members"][0]["id"] = "vm-web-1"

        result = validator.validate(topology)

        assert [e.rule_id for e in result.errors] == ["TOP_001"]
        assert result.errors[0].value == "vm-web-1"

    def test_top_002_duplicate_tier(self, validator, topology):
        topology["tiers"].append({"name": "web", "members": [{"id": "vm-web-9", "endpoint": "10.0.1.12"}]})

        result = validator.validate(topology)

        assert "TOP_002" in [e.rule_id for e in result.errors]

    def test_top_003_empty_tier(self, validator, topology):
        tier(topology, "app")["members"] = []

        result = validator.validate(topology)

        assert [e.rule_id for e in result.errors] == ["TOP_003"]

    def test_top_003_no_tier(self, validator, topology):
        topology["tiers"] = []

        assert validator.validate(topology).errors[0].rule_id == "TOP_003"

    def test_top_004_db_without_quorum(self, validator, topology):
        tier(topology, "db")["quorum_required"] = False

        result = validator.validate(topology)

        assert "TOP_004" in [e.rule_id for e in result.errors]

    def test_top_004_db_http_probe(self, validator, topology):
        tier(topology, "db")["probe_kind"] = "http"

        error = validator.validate(topology).errors[0]

        assert error.rule_id == "TOP_004"
        assert error.location == "tiers[db].probe_kind"

    def test_top_004_web_with_quorum(self, validator, topology):
        tier(topology, "web")["quorum_required"] = True

        assert "TOP_004" in [e.rule_id for e in validator.validate(topology).errors]

    def test_top_005_timeout_not_below_interval(self, validator, topology):
        tier(topology, "web").update(probe_timeout_seconds=15, probe_interval_seconds=15)

        assert [e.rule_id for e in validator.validate(topology).errors] == ["TOP_005"]

    def test_top_006_invalid_db_endpoint(self, validator, topology):
        tier(topology, "db")["members"][1]["endpoint"] = "10.0.3.5:mongo"

        assert [e.rule_id for e in validator.validate(topology).errors] == ["TOP_006"]

    def test_top_006_mongodb_uri_accepted(self, validator, topology):
        tier(topology, "db")["members"][0]["endpoint"] = "mongodb://admin:pw@10.0.3.4:27017/admin"

        assert validator.validate(topology).valid is True

    def test_top_007_no_voter(self, validator, topology):
        for member in tier(topology, "db")["members"]:
            member["votes"] = 0

        assert "TOP_007" in [e.rule_id for e in validator.validate(topology).errors]

    def test_top_008_even_voters_is_warning(self, validator, topology):
        tier(topology, "db")["members"].pop()

        result = validator.validate(topology)

        assert result.valid is True
        assert [w.rule_id for w in result.warnings] == ["TOP_008"]
        assert result.warnings[0].severity == ValidationSeverity.WARNING

    def test_top_009_missing_pool(self, validator, topology):
        topology["routing"] = {"mode": "backend_pool", "pool_names": {"web": "web-backend-pool"}}

        error = validator.validate(topology).errors[0]

        assert error.rule_id == "TOP_009"
        assert error.value == "app"

    def test_top_009_unknown_pool_tier(self, validator, topology):
        topology["routing"] = {
            "mode": "backend_pool",
            "pool_names": {"web": "web-backend-pool", "app": "app-backend-pool", "cache": "cache-pool"},
        }

        errors = validator.validate(topology).errors

        assert [(e.rule_id, e.value) for e in errors] == [("TOP_009", "cache")]
        assert errors[0].location == "routing.pool_names"

    def test_top_009_db_pool_rejected_in_any_mode(self, validator, topology):
        topology["routing"] = {"pool_names": {"db": "db-pool"}}

        errors = validator.validate(topology).errors

        assert [(e.rule_id, e.value) for e in errors] == [("TOP_009", "db")]

    def test_top_010_probe_timeout_limit(self, validator, topology):
        tier(topology, "web").update(probe_timeout_seconds=90, probe_interval_seconds=120)

        assert [e.rule_id for e in validator.validate(topology).errors] == ["TOP_010"]

    def test_top_010_routing_timeout_limit(self, validator, topology):
        topology["routing"] = {"call_timeout_seconds": 300}

        assert [e.rule_id for e in validator.validate(topology).errors] == ["TOP_010"]

    def test_all_errors_returned(self, validator, topology):
        """Pas fail-fast: une erreur par règle violée."""
        tier(topology, "app")["members"][0]["id"] = "vm-web-1"
        tier(topology, "db")["quorum_required"] = False
        tier(topology, "web").update(probe_timeout_seconds=20, probe_interval_seconds=10)

        rule_ids = [e.rule_id for e in validator.validate(topology).errors]

        assert rule_ids == ["TOP_001", "TOP_004", "TOP_005"]
