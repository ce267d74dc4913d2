"""
TIERWATCH - Core - Config Validator
Valide une topologie contre les règles de cohérence multi-tiers.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as SchemaError

from tierwatch.ha.interfaces import ProbeKind, TierName
from tierwatch.ha.probe_client import ProbeClient, ProbeTargetError
from tierwatch.network import TimeoutManager

from .interfaces import (
    IConfigValidator,
    TopologyConfig,
    ValidationError,
    ValidationResult,
    ValidationSeverity,
)

RuleValidator = Callable[[TopologyConfig], Optional[ValidationError]]


class ConfigValidator(IConfigValidator):
    """
    Validation des topologies.

    Règles:
        TOP_001: Ids de membres uniques (tous tiers confondus)
        TOP_002: Chaque tier déclaré une seule fois
        TOP_003: Chaque tier a au moins un membre
        TOP_004: Db = quorum + sonde TCP; Web/App sans quorum
        TOP_005: Timeout de sonde < intervalle de sonde
        TOP_006: Endpoints Db au format host:port ou URI mongodb://
        TOP_007: Tier à quorum avec au moins un membre votant
        TOP_008: Nombre pair de votants = ne survit pas à une perte (warning)
        TOP_009: Mode backend_pool = pool déclaré pour chaque tier Web/App,
            aucun pool pour un tier inconnu ou Db
        TOP_010: Timeouts dans les limites du TimeoutManager
    """

    def __init__(self) -> None:
        self._validators: Dict[str, RuleValidator] = {
            "TOP_001": self._validate_top_001,
            "TOP_002": self._validate_top_002,
            "TOP_003": self._validate_top_003,
            "TOP_004": self._validate_top_004,
            "TOP_005": self._validate_top_005,
            "TOP_006": self._validate_top_006,
            "TOP_007": self._validate_top_007,
            "TOP_008": self._validate_top_008,
            "TOP_009": self._validate_top_009,
            "TOP_010": self._validate_top_010,
        }

    @property
    def rule_ids(self) -> List[str]:
        return list(self._validators)

    def validate(self, config: Dict[str, Any]) -> ValidationResult:
        """
        Valide une config contre TOUTES les règles.
        Retourne TOUTES les erreurs (pas fail-fast).

        Une config qui ne respecte pas le schéma n'est pas évaluée
        par les règles: les erreurs de schéma sont retournées seules.
        """
        try:
            topology = TopologyConfig.model_validate(config)
        except SchemaError as e:
            errors = [
                ValidationError(
                    rule_id="SCHEMA",
                    message=err["msg"],
                    location=".".join(str(part) for part in err["loc"]) or "config",
                    value=str(err.get("input"))[:200] if err.get("input") is not None else None,
                    severity=ValidationSeverity.BLOCKING,
                )
                for err in e.errors()
            ]
            return ValidationResult(valid=False, errors=errors, warnings=[], checked_at=datetime.now())

        return self.validate_topology(topology)

    def validate_topology(self, topology: TopologyConfig) -> ValidationResult:
        """Valide une topologie déjà parsée."""
        errors = []
        warnings = []

        for rule_id in self._validators:
            error = self.validate_rule(rule_id, topology)
            if error:
                if error.severity == ValidationSeverity.BLOCKING:
                    errors.append(error)
                elif error.severity == ValidationSeverity.WARNING:
                    warnings.append(error)

        return ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings, checked_at=datetime.now())

    def validate_rule(self, rule_id: str, config: TopologyConfig) -> Optional[ValidationError]:
        """Valide UNE règle spécifique."""
        if rule_id not in self._validators:
            return ValidationError(
                rule_id=rule_id,
                message=f"Règle inconnue: {rule_id}",
                location="config",
                severity=ValidationSeverity.BLOCKING,
            )

        return self._validators[rule_id](config)

    def _validate_top_001(self, config: TopologyConfig) -> Optional[ValidationError]:
        """TOP_001: Ids de membres uniques."""
        seen = set()
        for tier in config.tiers:
            for member in tier.members:
                if member.id in seen:
                    return ValidationError(
                        rule_id="TOP_001",
                        message=f"Id de membre dupliqué: {member.id}",
                        location=f"tiers[{tier.name.value}].members",
                        value=member.id,
                    )
                seen.add(member.id)
        return None

    def _validate_top_002(self, config: TopologyConfig) -> Optional[ValidationError]:
        """TOP_002: Tier déclaré une seule fois."""
        seen = set()
        for tier in config.tiers:
            if tier.name in seen:
                return ValidationError(
                    rule_id="TOP_002",
                    message=f"Tier déclaré plusieurs fois: {tier.name.value}",
                    location="tiers",
                    value=tier.name.value,
                )
            seen.add(tier.name)
        return None

    def _validate_top_003(self, config: TopologyConfig) -> Optional[ValidationError]:
        """TOP_003: Au moins un membre par tier."""
        if not config.tiers:
            return ValidationError(rule_id="TOP_003", message="Aucun tier déclaré", location="tiers")

        for tier in config.tiers:
            if not tier.members:
                return ValidationError(
                    rule_id="TOP_003",
                    message=f"Tier {tier.name.value} sans membre",
                    location=f"tiers[{tier.name.value}].members",
                )
        return None

    def _validate_top_004(self, config: TopologyConfig) -> Optional[ValidationError]:
        """TOP_004: Db = quorum + TCP, Web/App sans quorum."""
        for tier in config.tiers:
            location = f"tiers[{tier.name.value}]"
            if tier.name == TierName.DB:
                if not tier.quorum_required:
                    return ValidationError(
                        rule_id="TOP_004",
                        message="Le tier Db doit avoir quorum_required: true (replica set)",
                        location=f"{location}.quorum_required",
                        value="false",
                    )
                if tier.probe_kind != ProbeKind.TCP:
                    return ValidationError(
                        rule_id="TOP_004",
                        message="Le tier Db doit être sondé en TCP (pas d'endpoint HTTP MongoDB)",
                        location=f"{location}.probe_kind",
                        value=tier.probe_kind.value,
                    )
            elif tier.quorum_required:
                return ValidationError(
                    rule_id="TOP_004",
                    message=f"Le tier {tier.name.value} est load-balancé: quorum_required interdit",
                    location=f"{location}.quorum_required",
                    value="true",
                )
        return None

    def _validate_top_005(self, config: TopologyConfig) -> Optional[ValidationError]:
        """TOP_005: Timeout de sonde strictement inférieur à l'intervalle."""
        for tier in config.tiers:
            if tier.probe_timeout_seconds >= tier.probe_interval_seconds:
                return ValidationError(
                    rule_id="TOP_005",
                    message=(
                        f"Timeout de sonde ({tier.probe_timeout_seconds}s) >= intervalle "
                        f"({tier.probe_interval_seconds}s) pour le tier {tier.name.value}"
                    ),
                    location=f"tiers[{tier.name.value}].probe_timeout_seconds",
                    value=str(tier.probe_timeout_seconds),
                )
        return None

    def _validate_top_006(self, config: TopologyConfig) -> Optional[ValidationError]:
        """TOP_006: Endpoints TCP parsables."""
        for tier in config.tiers:
            if tier.probe_kind != ProbeKind.TCP:
                continue
            for member in tier.members:
                try:
                    ProbeClient.parse_tcp_target(member.endpoint)
                except ProbeTargetError as e:
                    return ValidationError(
                        rule_id="TOP_006",
                        message=str(e),
                        location=f"tiers[{tier.name.value}].members[{member.id}].endpoint",
                    )
        return None

    def _validate_top_007(self, config: TopologyConfig) -> Optional[ValidationError]:
        """TOP_007: Au moins un votant dans un tier à quorum."""
        for tier in config.tiers:
            if tier.quorum_required and tier.members and sum(m.votes for m in tier.members) == 0:
                return ValidationError(
                    rule_id="TOP_007",
                    message=f"Tier {tier.name.value} à quorum sans membre votant",
                    location=f"tiers[{tier.name.value}].members",
                )
        return None

    def _validate_top_008(self, config: TopologyConfig) -> Optional[ValidationError]:
        """TOP_008: Nombre pair de votants (warning)."""
        for tier in config.tiers:
            if not tier.quorum_required:
                continue
            voters = sum(m.votes for m in tier.members)
            if voters > 0 and voters % 2 == 0:
                return ValidationError(
                    rule_id="TOP_008",
                    message=(
                        f"{voters} membres votants dans le tier {tier.name.value}: la perte d'un seul "
                        f"membre fait perdre le quorum (intervention manuelle requise)"
                    ),
                    location=f"tiers[{tier.name.value}].members",
                    value=str(voters),
                    severity=ValidationSeverity.WARNING,
                )
        return None

    def _validate_top_009(self, config: TopologyConfig) -> Optional[ValidationError]:
        """TOP_009: Pools déclarés en mode backend_pool, uniquement pour des tiers Web/App déclarés."""
        routed = {tier.name.value for tier in config.tiers if not tier.quorum_required}
        for name in config.routing.pool_names:
            if name not in routed:
                return ValidationError(
                    rule_id="TOP_009",
                    message=f"Backend pool déclaré pour un tier inconnu ou non load-balancé: {name}",
                    location="routing.pool_names",
                    value=name,
                )

        if config.routing.mode != "backend_pool":
            return None

        for tier in config.tiers:
            if tier.quorum_required:
                continue
            if not config.routing.pool_names.get(tier.name.value):
                return ValidationError(
                    rule_id="TOP_009",
                    message=f"Aucun backend pool déclaré pour le tier {tier.name.value}",
                    location="routing.pool_names",
                    value=tier.name.value,
                )
        return None

    def _validate_top_010(self, config: TopologyConfig) -> Optional[ValidationError]:
        """TOP_010: Timeouts dans les limites."""
        for tier in config.tiers:
            if tier.probe_timeout_seconds > TimeoutManager.MAX_PROBE_TIMEOUT:
                return ValidationError(
                    rule_id="TOP_010",
                    message=(
                        f"Timeout de sonde {tier.probe_timeout_seconds}s au-delà du maximum "
                        f"{TimeoutManager.MAX_PROBE_TIMEOUT}s"
                    ),
                    location=f"tiers[{tier.name.value}].probe_timeout_seconds",
                    value=str(tier.probe_timeout_seconds),
                )

        if config.routing.call_timeout_seconds > TimeoutManager.MAX_ROUTING_TIMEOUT:
            return ValidationError(
                rule_id="TOP_010",
                message=(
                    f"Timeout de routage {config.routing.call_timeout_seconds}s au-delà du maximum "
                    f"{TimeoutManager.MAX_ROUTING_TIMEOUT}s"
                ),
                location="routing.call_timeout_seconds",
                value=str(config.routing.call_timeout_seconds),
            )
        return None
