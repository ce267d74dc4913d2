"""
TIERWATCH - HA - Recovery Orchestrator

Actions de reprise et surface human-in-the-loop.

Règles:
    - Perte de quorum Db: incident OPEN, aucune remédiation automatique
    - Incidents résolus uniquement par un opérateur (resolve)
    - restart_member: Web/App uniquement, puis sonde forcée immédiate
      (borne la latence de détection de la reprise)
"""

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tierwatch.ha.interfaces import (
    IHealthMonitor,
    IRecoveryOrchestrator,
    RestartAck,
    RestartAction,
    TierName,
)
from tierwatch.ha.member_registry import MemberRegistry
from tierwatch.incident.interfaces import Incident, IncidentStatus
from tierwatch.logging import StructuredLogger, get_logger
from tierwatch.network import TimeoutManager, TimeoutType


class RecoveryError(Exception):
    """Erreur d'une action de reprise."""

    pass


class RecoveryOrchestrator(IRecoveryOrchestrator):
    """
    Orchestrateur de reprise.

    Le moniteur est lié après construction (bind_monitor): le moniteur
    publie vers le contrôleur, qui référence cet orchestrateur.
    """

    # Actions recommandées à l'opérateur, par tier
    RUNBOOKS: Dict[TierName, List[str]] = {
        TierName.DB: [
            "Check the failed Db VM state and restart it if it is stopped",
            "Run rs.status() on the surviving member to confirm it is SECONDARY without a majority",
            "If the failed member cannot return, force a reconfiguration from the survivor: "
            "rs.reconfig(cfg, {force: true}) with only reachable members",
            "Re-add the repaired member with rs.add() once it is back",
        ],
        TierName.APP: [
            "Restart unhealthy App instances with restart_member()",
            "Check the Express /health endpoint and its database connection",
        ],
        TierName.WEB: [
            "Restart unhealthy Web instances with restart_member()",
            "Check NGINX status and its proxy to the App tier",
        ],
    }

    def __init__(
        self,
        registry: MemberRegistry,
        restart_actions: Optional[Dict[TierName, RestartAction]] = None,
        timeout_manager: Optional[TimeoutManager] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Args:
            registry: Registre (lecture seule)
            restart_actions: Action de redémarrage par tier (Web/App)
            timeout_manager: Timeout des redémarrages
            logger: Logger structuré

        Raises:
            RecoveryError: Si une action est fournie pour le tier Db
        """
        self._registry = registry
        self._restart_actions: Dict[TierName, RestartAction] = {}
        self._timeouts = timeout_manager or TimeoutManager()
        self._logger = logger or get_logger("ha.recovery_orchestrator")
        self._monitor: Optional[IHealthMonitor] = None
        self._incidents: Dict[str, Incident] = {}

        for tier, action in (restart_actions or {}).items():
            self.set_restart_action(tier, action)

    def bind_monitor(self, monitor: IHealthMonitor) -> None:
        """Lie le moniteur utilisé pour les sondes forcées."""
        self._monitor = monitor

    def set_restart_action(self, tier: TierName, action: RestartAction) -> None:
        """
        Configure l'action de redémarrage d'un tier.

        Raises:
            RecoveryError: Si tier Db (pas de redémarrage automatique)
        """
        if tier == TierName.DB:
            raise RecoveryError("Db members are never restarted automatically")
        self._restart_actions[tier] = action

    # ══════════════════════════════════════════════════════════════════════════
    # Incidents (intervention manuelle)
    # ══════════════════════════════════════════════════════════════════════════

    def request_manual_intervention(self, tier: TierName, reason: str) -> Incident:
        """
        Enregistre un incident OPEN.

        Args:
            tier: Tier concerné
            reason: Raison (ex: perte de quorum avec décompte des votes)

        Returns:
            Incident créé

        Raises:
            RecoveryError: Si reason vide
        """
        if not reason:
            raise RecoveryError("reason is required for a manual intervention")

        incident = Incident(
            incident_id=str(uuid.uuid4()),
            tier=tier.value,
            reason=reason,
            status=IncidentStatus.OPEN,
            opened_at=datetime.now(timezone.utc),
            recommended_actions=list(self.RUNBOOKS.get(tier, [])),
        )
        self._incidents[incident.incident_id] = incident

        self._logger.with_context(correlation_id=incident.incident_id).critical(
            "Manual intervention required",
            tier=tier.value,
            reason=reason,
        )
        return incident

    def pending_incidents(self) -> List[Incident]:
        """Incidents OPEN et ACKNOWLEDGED, par ordre d'ouverture."""
        return [i for i in self._incidents.values() if i.is_pending]

    def all_incidents(self) -> List[Incident]:
        return list(self._incidents.values())

    def get_incident(self, incident_id: str) -> Incident:
        """
        Raises:
            RecoveryError: Si incident inconnu
        """
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise RecoveryError(f"Unknown incident: {incident_id}")
        return incident

    def acknowledge(self, incident_id: str, operator: str = "operator") -> Incident:
        """
        Prise en charge d'un incident par un opérateur.

        Raises:
            RecoveryError: Incident inconnu ou déjà résolu
        """
        incident = self.get_incident(incident_id)
        if incident.status == IncidentStatus.RESOLVED:
            raise RecoveryError(f"Incident {incident_id} is already resolved")
        if incident.status == IncidentStatus.ACKNOWLEDGED:
            return incident

        updated = replace(
            incident,
            status=IncidentStatus.ACKNOWLEDGED,
            acknowledged_at=datetime.now(timezone.utc),
            acknowledged_by=operator,
        )
        self._incidents[incident_id] = updated
        self._logger.with_context(correlation_id=incident_id).info("Incident acknowledged", operator=operator)
        return updated

    def resolve(self, incident_id: str, note: str) -> Incident:
        """
        Résolution opérateur (seul chemin de résolution).

        Raises:
            RecoveryError: Incident inconnu, déjà résolu ou note vide
        """
        if not note:
            raise RecoveryError("A resolution note is required")

        incident = self.get_incident(incident_id)
        if incident.status == IncidentStatus.RESOLVED:
            raise RecoveryError(f"Incident {incident_id} is already resolved")

        updated = replace(
            incident,
            status=IncidentStatus.RESOLVED,
            resolved_at=datetime.now(timezone.utc),
            resolution_note=note,
        )
        self._incidents[incident_id] = updated
        self._logger.with_context(correlation_id=incident_id).info("Incident resolved", note=note)
        return updated

    # ══════════════════════════════════════════════════════════════════════════
    # Redémarrage Web/App
    # ══════════════════════════════════════════════════════════════════════════

    async def restart_member(self, member_id: str) -> RestartAck:
        """
        Redémarre une instance Web/App puis force une sonde.

        Args:
            member_id: Membre à redémarrer

        Returns:
            RestartAck avec les transitions issues de la sonde forcée

        Raises:
            NotFoundError: Si member_id inconnu
            RecoveryError: Membre Db, aucune action configurée, échec
                ou timeout du redémarrage
        """
        member = self._registry.get(member_id)
        if member.tier == TierName.DB:
            raise RecoveryError(f"Member {member_id} is a Db member: recovery is manual")

        action = self._restart_actions.get(member.tier)
        if action is None:
            raise RecoveryError(f"No restart action configured for tier {member.tier.value}")

        log = self._logger.with_context(correlation_id=member_id)
        requested_at = datetime.now(timezone.utc)
        timeout = self._timeouts.get_timeout(TimeoutType.RESTART, member.tier.value)
        log.info("Restart requested", timeout_seconds=timeout)

        try:
            await asyncio.wait_for(action(member), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise RecoveryError(f"Restart of {member_id} timed out after {timeout}s") from e
        except Exception as e:
            log.error("Restart failed", error=str(e))
            raise RecoveryError(f"Restart of {member_id} failed: {e}") from e

        events = []
        if self._monitor is not None:
            events = await self._monitor.probe_now(member_id)

        completed_at = datetime.now(timezone.utc)
        log.info(
            "Restart completed",
            probe_forced=self._monitor is not None,
            transitions=len(events),
        )

        return RestartAck(
            member_id=member_id,
            requested_at=requested_at,
            completed_at=completed_at,
            probe_forced=self._monitor is not None,
            events=list(events),
        )

    def get_status(self) -> Dict[str, Any]:
        """Vue opérateur des incidents."""
        return {
            "pending_incidents": [i.to_dict() for i in self.pending_incidents()],
            "resolved_count": sum(1 for i in self._incidents.values() if not i.is_pending),
            "restart_tiers": [t.value for t in self._restart_actions],
        }
