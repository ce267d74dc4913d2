"""
TIERWATCH - Audit - Transition Log

Journal d'audit chaîné des décisions du moteur de failover.

Chaque entrée porte le hash SHA-384 de sa représentation canonique,
qui inclut le hash de l'entrée précédente: toute altération d'une
entrée conservée casse la chaîne (verify_chain).
"""

import hashlib
import json
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional

if TYPE_CHECKING:
    from tierwatch.ha.interfaces import StateTransitionEvent


class AuditLogError(Exception):
    """Erreur du journal d'audit."""

    pass


class AuditRecordType(Enum):
    """Types d'entrées du journal."""

    STATE_TRANSITION = "state_transition"
    ROUTING_CHANGE = "routing_change"
    QUORUM_CHANGE = "quorum_change"
    ROLE_CHANGE = "role_change"


@dataclass(frozen=True)
class AuditRecord:
    """Entrée immuable du journal."""

    sequence: int
    record_type: AuditRecordType
    recorded_at: datetime
    payload: Dict[str, Any]
    previous_hash: str
    hash_value: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "record_type": self.record_type.value,
            "recorded_at": self.recorded_at.isoformat(),
            "payload": self.payload,
            "previous_hash": self.previous_hash,
            "hash_value": self.hash_value,
        }


class TransitionAuditLog:
    """
    Journal borné, chaîné par SHA-384.

    Example:
        log = TransitionAuditLog()
        log.record_transition(event)
        assert log.verify_chain()
    """

    # Hash de départ de la chaîne
    GENESIS_HASH: str = "0" * 96

    MAX_RECORDS: int = 10000

    def __init__(self, max_records: int = MAX_RECORDS) -> None:
        if max_records <= 0:
            raise AuditLogError("max_records must be positive")
        self._records: Deque[AuditRecord] = deque(maxlen=max_records)
        self._sequence = 0
        self._last_hash = self.GENESIS_HASH

    def append(self, record_type: AuditRecordType, payload: Dict[str, Any]) -> AuditRecord:
        """
        Ajoute une entrée chaînée.

        Args:
            record_type: Type d'entrée
            payload: Données JSON-sérialisables

        Returns:
            Entrée créée
        """
        self._sequence += 1
        recorded_at = datetime.now(timezone.utc)
        clean_payload = json.loads(json.dumps(payload, default=str))

        hash_value = self.compute_hash(self._sequence, record_type, recorded_at, clean_payload, self._last_hash)
        record = AuditRecord(
            sequence=self._sequence,
            record_type=record_type,
            recorded_at=recorded_at,
            payload=clean_payload,
            previous_hash=self._last_hash,
            hash_value=hash_value,
        )
        self._records.append(record)
        self._last_hash = hash_value
        return record

    def record_transition(self, event: "StateTransitionEvent") -> AuditRecord:
        """Consigne une transition consommée par le contrôleur."""
        return self.append(AuditRecordType.STATE_TRANSITION, event.to_dict())

    @staticmethod
    def compute_hash(
        sequence: int,
        record_type: AuditRecordType,
        recorded_at: datetime,
        payload: Dict[str, Any],
        previous_hash: str,
    ) -> str:
        """
        Calcule le hash SHA-384 d'une entrée.

        Returns:
            Hash hexadécimal (96 caractères)
        """
        canonical = json.dumps(
            {
                "sequence": sequence,
                "record_type": record_type.value,
                "recorded_at": recorded_at.isoformat(),
                "payload": payload,
                "previous_hash": previous_hash,
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha384(canonical.encode("utf-8")).hexdigest()

    def verify_chain(self) -> bool:
        """
        Vérifie l'intégrité des entrées conservées.

        Returns:
            True si chaque hash est correct et chaîné au précédent
        """
        previous: Optional[str] = None
        for record in self._records:
            if previous is not None and record.previous_hash != previous:
                return False
            expected = self.compute_hash(
                record.sequence,
                record.record_type,
                record.recorded_at,
                record.payload,
                record.previous_hash,
            )
            if expected != record.hash_value:
                return False
            previous = record.hash_value
        return True

    def get_records(
        self,
        record_type: Optional[AuditRecordType] = None,
        member_id: Optional[str] = None,
    ) -> List[AuditRecord]:
        """
        Entrées conservées, filtrées par type et/ou membre.
        """
        return [
            r
            for r in self._records
            if (record_type is None or r.record_type == record_type)
            and (member_id is None or r.payload.get("member_id") == member_id)
        ]

    def __len__(self) -> int:
        return len(self._records)

    @property
    def last_hash(self) -> str:
        return self._last_hash
