"""
TIERWATCH - Core - Interfaces
Modèles de topologie et contrats du chargement de configuration.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from tierwatch.ha.interfaces import ProbeKind, TierName


# ══════════════════════════════════════════════════════════════════════════════
# TOPOLOGIE
# ══════════════════════════════════════════════════════════════════════════════


class MemberConfig(BaseModel):
    """Membre déclaré dans la topologie statique."""

    id: str = Field(min_length=1)
    endpoint: str = Field(min_length=1)
    zone: str = "1"
    # Replica set: 0 = membre non votant
    votes: int = Field(default=1, ge=0, le=1)
    priority: float = Field(default=1.0, ge=0)


class TierConfig(BaseModel):
    """Tier et sa politique de sonde."""

    name: TierName
    quorum_required: bool = False
    probe_kind: ProbeKind = ProbeKind.HTTP
    health_path: str = "/health"
    probe_timeout_seconds: float = Field(default=5.0, gt=0)
    probe_interval_seconds: float = Field(default=15.0, gt=0)
    unhealthy_threshold: int = Field(default=2, ge=1)
    healthy_threshold: int = Field(default=2, ge=1)
    members: list[MemberConfig] = []


class RoutingConfig(BaseModel):
    """Backend pools et retry des appels de routage."""

    mode: str = Field(default="in_memory", pattern="^(in_memory|backend_pool)$")
    pool_names: dict[str, str] = {}
    max_attempts: int = Field(default=5, ge=1)
    initial_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)
    call_timeout_seconds: float = Field(default=30.0, gt=0)
    propagation_delay_seconds: float = Field(default=60.0, ge=0)


class ReplicaSetConfig(BaseModel):
    """Replica set MongoDB du tier Db."""

    name: str = "rs0"
    status_interval_seconds: float = Field(default=10.0, gt=0)


class LoggingConfig(BaseModel):
    """Logging structuré du harnais."""

    min_level: str = "INFO"
    output: str = Field(default="stderr", pattern="^(stderr|capture)$")
    mask_sensitive: bool = True


class TopologyConfig(BaseModel):
    """Topologie complète d'un déploiement."""

    version: str
    deployment_id: str = Field(min_length=1)
    tiers: list[TierConfig]
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    replica_set: ReplicaSetConfig = Field(default_factory=ReplicaSetConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def get_tier(self, name: TierName) -> Optional[TierConfig]:
        for tier in self.tiers:
            if tier.name == name:
                return tier
        return None


# ══════════════════════════════════════════════════════════════════════════════
# VALIDATION
# ══════════════════════════════════════════════════════════════════════════════


class ValidationSeverity(Enum):
    BLOCKING = "blocking"
    WARNING = "warning"
    INFO = "info"


class ValidationError(BaseModel):
    """Erreur de validation d'une règle de topologie."""

    rule_id: str
    message: str
    location: str
    value: Optional[str] = None
    severity: ValidationSeverity = ValidationSeverity.BLOCKING


class ValidationResult(BaseModel):
    """Résultat de validation d'une configuration."""

    valid: bool
    errors: list[ValidationError] = []
    warnings: list[ValidationError] = []
    checked_at: datetime


# ══════════════════════════════════════════════════════════════════════════════
# INTERFACES
# ══════════════════════════════════════════════════════════════════════════════


class IConfigLoader(ABC):
    """Charge une topologie depuis YAML et vérifie sa cohérence."""

    @abstractmethod
    async def load(self, deployment_id: str) -> TopologyConfig:
        """
        Charge la topologie d'un déploiement.

        Raises:
            ConfigIntegrityError: Fichier absent, YAML invalide ou règle bloquante violée
        """
        pass


class IConfigValidator(ABC):
    """Valide une topologie contre les règles de cohérence."""

    @abstractmethod
    def validate(self, config: dict[str, Any]) -> ValidationResult:
        """
        Valide une config contre TOUTES les règles.
        Retourne TOUTES les erreurs (pas fail-fast).
        """
        pass

    @abstractmethod
    def validate_rule(self, rule_id: str, config: TopologyConfig) -> Optional[ValidationError]:
        """Valide UNE règle spécifique."""
        pass
