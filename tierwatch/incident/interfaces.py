"""
TIERWATCH - Incident - Interfaces

Définit les contrats pour les alertes opérateur et les incidents
nécessitant une intervention manuelle.

Règles:
    - Perte de quorum Db = incident OPEN + alerte, jamais résolu automatiquement
    - Backend pool vide = alerte POOL_EXHAUSTED (pas de fail-open)
    - Retries de routage épuisés = exactement une alerte ROUTING_FAILED
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional


class AlertKind(Enum):
    """Types d'alertes opérateur."""

    POOL_EXHAUSTED = "pool_exhausted"
    ROUTING_FAILED = "routing_failed"
    QUORUM_LOST = "quorum_lost"


class AlertSeverity(Enum):
    """Niveaux de sévérité des alertes."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IncidentStatus(Enum):
    """Cycle de vie d'un incident (human-in-the-loop)."""

    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


@dataclass(frozen=True)
class Alert:
    """Alerte levée vers l'opérateur."""

    alert_id: str
    kind: AlertKind
    severity: AlertSeverity
    tier: str
    message: str
    timestamp: datetime
    member_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convertit en dict pour la surface opérateur."""
        return {
            "alert_id": self.alert_id,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "tier": self.tier,
            "member_id": self.member_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class Incident:
    """
    Incident enregistré pour intervention manuelle.

    Remplacé (jamais muté) à chaque changement de statut.
    """

    incident_id: str
    tier: str
    reason: str
    status: IncidentStatus
    opened_at: datetime
    recommended_actions: List[str] = field(default_factory=list)
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        """True tant que l'incident n'est pas résolu."""
        return self.status != IncidentStatus.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        """Convertit en dict pour la surface opérateur."""
        return {
            "incident_id": self.incident_id,
            "tier": self.tier,
            "reason": self.reason,
            "status": self.status.value,
            "opened_at": self.opened_at.isoformat(),
            "recommended_actions": list(self.recommended_actions),
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_note": self.resolution_note,
        }


# Notifier externe (webhook, Teams, email...) branché sur le dispatcher
AlertNotifier = Callable[[Alert], Awaitable[None]]


class IAlertDispatcher(ABC):
    """
    Interface pour la levée d'alertes opérateur.

    Responsabilités:
        - Enregistrer l'alerte (surface opérateur)
        - Notifier les canaux externes configurés
    """

    @abstractmethod
    async def raise_alert(
        self,
        kind: AlertKind,
        tier: str,
        message: str,
        member_id: Optional[str] = None,
        severity: Optional[AlertSeverity] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Alert:
        """
        Lève une alerte.

        Args:
            kind: Type d'alerte
            tier: Tier concerné
            message: Description lisible par l'opérateur
            member_id: Membre concerné (optionnel)
            severity: Sévérité (défaut selon le type)
            metadata: Contexte additionnel

        Returns:
            Alerte enregistrée
        """
        pass

    @abstractmethod
    def get_alerts(self, kind: Optional[AlertKind] = None) -> List[Alert]:
        """
        Récupère les alertes levées.

        Args:
            kind: Filtre optionnel par type
        """
        pass
