"""
TIERWATCH - HA - Interfaces

Définit les contrats du moteur de failover multi-tiers: sondes,
registre des membres, moniteur de santé, contrôleur de failover,
routage backend pool et orchestration de la reprise.

Règles:
    - Le registre est l'unique propriétaire des Member (single writer)
    - Le moniteur propose des états via des événements, ne mute jamais
    - Web/App: rotation dans le backend pool selon la santé
    - Db: quorum = votes healthy > votes totaux / 2, pas de promotion auto
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from tierwatch.incident.interfaces import Incident


class TierName(Enum):
    """Tiers de l'architecture 3-tiers."""

    WEB = "web"
    APP = "app"
    DB = "db"


class HealthState(Enum):
    """
    État de santé d'un membre.

    SUSPECT est interne au moniteur: jamais publié dans un événement.
    """

    HEALTHY = "healthy"
    SUSPECT = "suspect"
    UNHEALTHY = "unhealthy"
    RECOVERING = "recovering"
    UNKNOWN = "unknown"


class DbRole(Enum):
    """Rôle replica set MongoDB (tier Db uniquement)."""

    PRIMARY = "primary"
    SECONDARY = "secondary"
    UNKNOWN = "unknown"


class ProbeKind(Enum):
    """Types de sonde."""

    HTTP = "http"
    TCP = "tcp"


class ProbeErrorKind(Enum):
    """Classification normalisée des échecs de sonde."""

    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    BAD_STATUS = "bad_status"
    UNKNOWN = "unknown"


class DegradedCondition(Enum):
    """Conditions dégradées d'un tier."""

    NO_QUORUM = "degraded_no_quorum"
    POOL_EXHAUSTED = "pool_exhausted"


@dataclass(frozen=True)
class Member:
    """
    Instance backend (VM) d'un tier.

    Enregistrement immuable: chaque mise à jour produit un nouveau Member.
    """

    id: str
    tier: TierName
    endpoint: str
    zone: str = "1"
    role: Optional[DbRole] = None
    health_state: HealthState = HealthState.UNKNOWN
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_probe_at: Optional[datetime] = None
    last_transition_at: Optional[datetime] = None
    votes: int = 1
    priority: float = 1.0

    @property
    def is_healthy(self) -> bool:
        return self.health_state == HealthState.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        """Convertit en dict pour la surface opérateur."""
        return {
            "id": self.id,
            "tier": self.tier.value,
            "endpoint": self.endpoint,
            "zone": self.zone,
            "role": self.role.value if self.role else None,
            "health_state": self.health_state.value,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "last_probe_at": self.last_probe_at.isoformat() if self.last_probe_at else None,
            "last_transition_at": (
                self.last_transition_at.isoformat() if self.last_transition_at else None
            ),
            "votes": self.votes,
        }


@dataclass(frozen=True)
class Tier:
    """Groupe de membres partageant une politique de failover."""

    name: TierName
    quorum_required: bool
    voting_members: int
    member_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProbeObservation:
    """Compteurs d'hystérésis d'un membre après une sonde."""

    member_id: str
    probed_at: datetime
    consecutive_failures: int
    consecutive_successes: int


@dataclass(frozen=True)
class ProbeResult:
    """Résultat éphémère d'une sonde."""

    member_id: str
    timestamp: datetime
    success: bool
    latency_ms: float
    error_kind: Optional[ProbeErrorKind] = None
    status_code: Optional[int] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class StateTransitionEvent:
    """
    Transition d'état publiée par le moniteur.

    Consommée une seule fois par le FailoverController, puis conservée
    uniquement dans le journal d'audit.
    """

    member_id: str
    tier: TierName
    from_state: HealthState
    to_state: HealthState
    timestamp: datetime
    reason: str
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "member_id": self.member_id,
            "tier": self.tier.value,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
        }


@dataclass(frozen=True)
class ProbePolicy:
    """Politique de sonde et d'hystérésis d'un tier."""

    kind: ProbeKind = ProbeKind.HTTP
    health_path: str = "/health"
    interval_seconds: float = 15.0
    unhealthy_threshold: int = 2
    healthy_threshold: int = 2


@dataclass(frozen=True)
class Ack:
    """
    Accusé de réception d'un changement de rotation.

    Le backend pool est éventuellement cohérent: l'effet n'est observable
    qu'après propagation_delay_seconds.
    """

    member_id: str
    active: bool
    changed: bool
    acknowledged_at: datetime
    propagation_delay_seconds: float = 0.0


@dataclass(frozen=True)
class RestartAck:
    """Accusé de fin de redémarrage d'un membre."""

    member_id: str
    requested_at: datetime
    completed_at: datetime
    probe_forced: bool
    events: List[StateTransitionEvent] = field(default_factory=list)


# Récepteur des événements publiés par le moniteur
EventSink = Callable[[StateTransitionEvent], None]

# Récepteur des compteurs de chaque sonde (FailoverController.record_probe)
ObservationSink = Callable[[ProbeObservation], Any]

# Appel SDK backend pool: (pool_name, member_id, endpoint, active)
PoolClient = Callable[[str, str, str, bool], Awaitable[None]]

# Action externe de redémarrage d'une instance
RestartAction = Callable[[Member], Awaitable[None]]

# Source rs.status(): retourne le document de statut du replica set
ReplicaStatusSource = Callable[[], Awaitable[Dict[str, Any]]]


class IProbeClient(ABC):
    """Interface client de sonde (feuille I/O)."""

    @abstractmethod
    async def probe(
        self,
        endpoint: str,
        kind: ProbeKind,
        member_id: str = "",
        timeout: float = 5.0,
    ) -> ProbeResult:
        """
        Sonde un endpoint.

        Ne lève jamais: tout échec est normalisé en ProbeResult.success=False.

        Args:
            endpoint: URL (HTTP) ou host:port / URI mongodb (TCP)
            kind: Type de sonde
            member_id: Membre sondé
            timeout: Timeout en secondes
        """
        pass


class IMemberRegistry(ABC):
    """Interface registre des membres."""

    @abstractmethod
    def get(self, member_id: str) -> Member:
        """
        Récupère un membre.

        Raises:
            NotFoundError: Si member_id inconnu
        """
        pass

    @abstractmethod
    def apply_transition(self, event: StateTransitionEvent) -> Member:
        """
        Applique une transition (idempotent).

        Returns:
            Member mis à jour, ou inchangé s'il est déjà dans to_state.
        """
        pass

    @abstractmethod
    def snapshot(self, tier: TierName) -> List[Member]:
        """Membres d'un tier dans l'ordre d'enregistrement."""
        pass


class IHealthMonitor(ABC):
    """Interface moniteur de santé."""

    @abstractmethod
    async def start(self) -> None:
        """Démarre une tâche de polling par membre."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Arrête toutes les tâches de polling."""
        pass

    @abstractmethod
    async def probe_now(self, member_id: str) -> List[StateTransitionEvent]:
        """
        Exécute immédiatement un cycle de sonde.

        Returns:
            Événements publiés par ce cycle.
        """
        pass

    @abstractmethod
    def request_probe(self, member_id: str) -> None:
        """Réveille la boucle de polling d'un membre."""
        pass


class ITrafficRouter(ABC):
    """Interface vers le backend pool (Application Gateway / Load Balancer)."""

    @abstractmethod
    async def set_member_active(self, member_id: str, active: bool) -> Ack:
        """
        Ajoute ou retire un membre de la rotation (idempotent).

        Raises:
            RoutingError: Si l'appel au backend pool échoue
        """
        pass


class IRecoveryOrchestrator(ABC):
    """Interface orchestrateur de reprise."""

    @abstractmethod
    def request_manual_intervention(self, tier: TierName, reason: str) -> Incident:
        """Enregistre un incident nécessitant une intervention humaine."""
        pass

    @abstractmethod
    def pending_incidents(self) -> List[Incident]:
        """Incidents OPEN et ACKNOWLEDGED."""
        pass

    @abstractmethod
    async def restart_member(self, member_id: str) -> RestartAck:
        """
        Redémarre un membre Web/App puis force une sonde.

        Raises:
            RecoveryError: Membre Db, action inconnue ou redémarrage en échec
        """
        pass


class IDegradedModeController(ABC):
    """Interface contrôleur des conditions dégradées par tier."""

    @abstractmethod
    def enter_degraded_mode(self, tier: TierName, condition: DegradedCondition, reason: str) -> bool:
        """
        Active une condition dégradée.

        Returns:
            True si la condition vient d'être activée.
        """
        pass

    @abstractmethod
    def exit_degraded_mode(self, tier: TierName, condition: DegradedCondition) -> bool:
        """
        Désactive une condition dégradée.

        Returns:
            True si la condition était active.
        """
        pass

    @abstractmethod
    def is_degraded(self, tier: TierName, condition: Optional[DegradedCondition] = None) -> bool:
        """Vérifie si un tier est dégradé (toute condition si None)."""
        pass

    @abstractmethod
    def get_degraded_since(self, tier: TierName, condition: DegradedCondition) -> Optional[datetime]:
        """Timestamp d'activation d'une condition, None si inactive."""
        pass
