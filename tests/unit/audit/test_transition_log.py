"""
Tests unitaires TransitionAuditLog

Comportements testés:
    - Chaînage SHA-384 depuis le hash genesis
    - Détection d'altération (verify_chain)
    - Journal borné, filtrage par type et par membre
"""

import pytest

from tierwatch.audit import AuditLogError, AuditRecordType, TransitionAuditLog
from tierwatch.ha import HealthState, TierName


class TestChain:
    """Tests du chaînage."""

    def test_first_record_chains_genesis(self):
        log = TransitionAuditLog()

        record = log.append(AuditRecordType.ROUTING_CHANGE, {"member_id": "vm-web-1", "active": False})

        assert record.sequence == 1
        assert record.previous_hash == TransitionAuditLog.GENESIS_HASH
        assert len(record.hash_value) == 96
        assert log.last_hash == record.hash_value

    def test_records_chained(self, make_event):
        log = TransitionAuditLog()

        first = log.record_transition(make_event("vm-db-1", TierName.DB, HealthState.HEALTHY, HealthState.UNHEALTHY))
        second = log.append(AuditRecordType.QUORUM_CHANGE, {"tier": "db", "held": False})

        assert second.previous_hash == first.hash_value
        assert first.payload["to_state"] == "unhealthy"
        assert log.verify_chain() is True

    def test_tampered_payload_detected(self):
        log = TransitionAuditLog()
        record = log.append(AuditRecordType.ROLE_CHANGE, {"member_id": "vm-db-1", "role": "primary"})
        log.append(AuditRecordType.ROLE_CHANGE, {"member_id": "vm-db-2", "role": "secondary"})

        record.payload["role"] = "secondary"

        assert log.verify_chain() is False

    def test_payload_is_json_normalized(self):
        log = TransitionAuditLog()

        record = log.append(AuditRecordType.QUORUM_CHANGE, {"tier": "db", "members": ("vm-db-1", "vm-db-2")})

        assert record.payload["members"] == ["vm-db-1", "vm-db-2"]
        assert log.verify_chain() is True

    def test_to_dict(self):
        record = TransitionAuditLog().append(AuditRecordType.ROUTING_CHANGE, {"member_id": "vm-app-1"})

        data = record.to_dict()

        assert data["record_type"] == "routing_change"
        assert data["sequence"] == 1


class TestRetention:
    """Tests de la rétention et des filtres."""

    def test_invalid_max_records(self):
        with pytest.raises(AuditLogError):
            TransitionAuditLog(max_records=0)

    def test_bounded_chain_still_verifies(self):
        log = TransitionAuditLog(max_records=3)

        for i in range(5):
            log.append(AuditRecordType.ROUTING_CHANGE, {"member_id": f"vm-web-{i}"})

        assert len(log) == 3
        assert [r.sequence for r in log.get_records()] == [3, 4, 5]
        assert log.verify_chain() is True

    def test_filters(self, make_event):
        log = TransitionAuditLog()
        log.record_transition(make_event("vm-web-1", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))
        log.record_transition(make_event("vm-web-2", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))
        log.append(AuditRecordType.ROUTING_CHANGE, {"member_id": "vm-web-1", "active": False})

        assert len(log.get_records(record_type=AuditRecordType.STATE_TRANSITION)) == 2
        assert len(log.get_records(member_id="vm-web-1")) == 2
        assert len(log.get_records(AuditRecordType.ROUTING_CHANGE, "vm-web-2")) == 0
