"""
TIERWATCH - HA - Failover Controller

Consomme les transitions publiées par le moniteur et applique la
politique de failover de chaque tier.

Règles:
    - FIFO par tier (une file et un worker par tier), pas d'ordre inter-tiers
    - Chaque événement est appliqué au registre AVANT l'évaluation de la
      politique sur le snapshot courant
    - Web/App → Unhealthy: retrait du backend pool (jamais un membre Healthy);
      plus aucun membre en rotation (Healthy ou Unknown) = alerte
      POOL_EXHAUSTED (pas de fail-open)
    - Web/App → Healthy: retour dans le backend pool
    - Db: quorum = votes healthy > votes totaux / 2
        held → lost: NO_QUORUM + alerte + intervention manuelle (une fois),
            aucune promotion automatique
        jamais atteint alors que tous les membres ont rapporté: même escalade
        lost → held: NO_QUORUM levé, les incidents restent ouverts
    - Compteurs de sonde: appliqués au registre par record_probe
    - Routage: retry backoff exponentiel (1s, plafond 30s, 5 tentatives),
      épuisement = une seule alerte ROUTING_FAILED
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

from tierwatch.audit import AuditRecordType, TransitionAuditLog
from tierwatch.ha.degraded_mode_controller import DegradedModeController
from tierwatch.ha.interfaces import (
    DbRole,
    DegradedCondition,
    HealthState,
    IRecoveryOrchestrator,
    ITrafficRouter,
    Member,
    ProbeObservation,
    StateTransitionEvent,
    TierName,
)
from tierwatch.ha.member_registry import MemberRegistry
from tierwatch.ha.traffic_router import RoutingError
from tierwatch.incident.interfaces import AlertKind, IAlertDispatcher
from tierwatch.logging import StructuredLogger, get_logger
from tierwatch.network import RetryConfig, RetryHandler, TimeoutManager, TimeoutType


class FailoverError(Exception):
    """Erreur du contrôleur de failover."""

    pass


def default_routing_retry_config() -> RetryConfig:
    """Retry des appels backend pool: 5 tentatives, 1s → 30s max."""
    return RetryConfig(
        max_attempts=5,
        initial_delay=1.0,
        max_delay=30.0,
        exponential_base=2.0,
        retryable_exceptions=(RoutingError,),
    )


class FailoverController:
    """
    Contrôleur de failover multi-tiers.

    Unique écrivain du registre (apply_transition, record_probe, update_role).

    Example:
        controller = FailoverController(registry, router, orchestrator, alerts)
        monitor = HealthMonitor(
            registry,
            event_sink=controller.submit,
            observation_sink=controller.record_probe,
        )
        await controller.start()
    """

    def __init__(
        self,
        registry: MemberRegistry,
        router: ITrafficRouter,
        orchestrator: IRecoveryOrchestrator,
        alerts: IAlertDispatcher,
        degraded: Optional[DegradedModeController] = None,
        retry_handler: Optional[RetryHandler] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout_manager: Optional[TimeoutManager] = None,
        audit_log: Optional[TransitionAuditLog] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """
        Initialise le contrôleur.

        Le quorum initial de chaque tier Db est calculé sur le registre
        au moment de la construction.

        Args:
            registry: Registre des membres
            router: Adaptateur backend pool
            orchestrator: Orchestrateur de reprise (incidents)
            alerts: Dispatcher d'alertes opérateur
            degraded: Conditions dégradées par tier
            retry_handler: Gestionnaire de retry
            retry_config: Politique de retry du routage
            timeout_manager: Timeout des appels de routage
            audit_log: Journal d'audit des décisions
            logger: Logger structuré
        """
        self._registry = registry
        self._router = router
        self._orchestrator = orchestrator
        self._alerts = alerts
        self._degraded = degraded or DegradedModeController()
        self._retry = retry_handler or RetryHandler()
        self._retry_config = retry_config or default_routing_retry_config()
        self._timeouts = timeout_manager or TimeoutManager()
        self._audit = audit_log or TransitionAuditLog()
        self._logger = logger or get_logger("ha.failover_controller")

        self._queues: Dict[TierName, asyncio.Queue] = {}
        self._workers: Dict[TierName, asyncio.Task] = {}
        self._routing_inconsistent: Dict[str, bool] = {}
        self._quorum_held: Dict[TierName, bool] = {}
        self._processed_count = 0

        for tier in registry.tiers():
            self._queues[tier] = asyncio.Queue()
            if registry.get_tier(tier).quorum_required:
                _, _, held = self.compute_quorum(tier)
                self._quorum_held[tier] = held

    @property
    def degraded(self) -> DegradedModeController:
        return self._degraded

    @property
    def audit_log(self) -> TransitionAuditLog:
        return self._audit

    # ══════════════════════════════════════════════════════════════════════════
    # File d'événements par tier
    # ══════════════════════════════════════════════════════════════════════════

    def submit(self, event: StateTransitionEvent) -> None:
        """
        Met un événement en file (EventSink du moniteur).

        Raises:
            NotFoundError: Si le tier de l'événement est inconnu
        """
        queue = self._queues.get(event.tier)
        if queue is None:
            self._registry.get_tier(event.tier)
            queue = self._queues.setdefault(event.tier, asyncio.Queue())
        queue.put_nowait(event)

    async def start(self) -> None:
        """Démarre un worker par tier."""
        for tier, queue in self._queues.items():
            if tier not in self._workers or self._workers[tier].done():
                self._workers[tier] = asyncio.create_task(self._worker(tier, queue), name=f"failover:{tier.value}")

    async def stop(self) -> None:
        """Arrête les workers (les événements en file sont abandonnés)."""
        workers = list(self._workers.values())
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()

    async def drain(self) -> None:
        """Attend que toutes les files soient traitées."""
        await asyncio.gather(*(queue.join() for queue in self._queues.values()))

    async def _worker(self, tier: TierName, queue: asyncio.Queue) -> None:
        while True:
            event = await queue.get()
            try:
                await self.process_event(event)
            except Exception as e:
                self._logger.critical(
                    "Failover policy evaluation failed",
                    correlation_id=event.member_id,
                    tier=tier.value,
                    event_id=event.event_id,
                    error=f"{type(e).__name__}: {e}",
                )
            finally:
                queue.task_done()

    # ══════════════════════════════════════════════════════════════════════════
    # Politique
    # ══════════════════════════════════════════════════════════════════════════

    def record_probe(self, observation: ProbeObservation) -> Member:
        """
        Applique les compteurs d'hystérésis d'une sonde au registre.

        Appelé à chaque sonde, y compris celles qui ne franchissent aucun
        seuil; aucune évaluation de politique.

        Raises:
            NotFoundError: Si member_id inconnu
        """
        return self._registry.record_probe(observation)

    async def process_event(self, event: StateTransitionEvent) -> Member:
        """
        Applique un événement au registre puis évalue la politique du tier.

        Args:
            event: Transition publiée par le moniteur

        Returns:
            Member après application

        Raises:
            NotFoundError: Si member_id inconnu
        """
        before = self._registry.get(event.member_id)
        member = self._registry.apply_transition(event)
        self._audit.record_transition(event)
        self._processed_count += 1

        if before.health_state == event.to_state:
            self._logger.debug(
                "Transition already applied",
                correlation_id=event.member_id,
                event_id=event.event_id,
            )
            return member

        tier = self._registry.get_tier(member.tier)
        if tier.quorum_required:
            await self._evaluate_quorum(member.tier, event)
        else:
            await self._evaluate_rotation(member, event)

        return member

    async def _evaluate_rotation(self, member: Member, event: StateTransitionEvent) -> None:
        """Politique Web/App: rotation dans le backend pool."""
        if event.to_state == HealthState.UNHEALTHY:
            await self._set_rotation(member, active=False)

            # Unknown: pas encore sondé, jamais retiré du pool
            in_rotation = [
                m
                for m in self._registry.snapshot(member.tier)
                if m.health_state in (HealthState.HEALTHY, HealthState.UNKNOWN)
            ]
            if not in_rotation:
                reason = f"No member left in rotation for tier {member.tier.value} after {member.id} became unhealthy"
                if self._degraded.enter_degraded_mode(member.tier, DegradedCondition.POOL_EXHAUSTED, reason):
                    await self._alerts.raise_alert(
                        AlertKind.POOL_EXHAUSTED,
                        member.tier.value,
                        reason,
                        member_id=member.id,
                    )

        elif event.to_state == HealthState.HEALTHY:
            await self._set_rotation(member, active=True)
            self._degraded.exit_degraded_mode(member.tier, DegradedCondition.POOL_EXHAUSTED)

    def compute_quorum(self, tier: TierName) -> Tuple[int, int, bool]:
        """
        Calcule le quorum d'un tier.

        Returns:
            (healthy_votes, voting_members, quorum_held)
        """
        members = self._registry.snapshot(tier)
        voting_members = sum(m.votes for m in members)
        healthy_votes = sum(m.votes for m in members if m.is_healthy)
        return healthy_votes, voting_members, voting_members > 0 and healthy_votes * 2 > voting_members

    async def _evaluate_quorum(self, tier: TierName, event: StateTransitionEvent) -> None:
        """
        Politique Db: observation passive tant que le quorum tient.

        Escalade une seule fois par période sans quorum: à la perte
        (held → lost), ou quand le quorum n'a jamais été atteint alors
        qu'aucun membre n'est plus Unknown. Tant qu'un membre n'a pas
        rapporté, l'absence de quorum au démarrage n'est pas une perte.
        """
        healthy_votes, voting_members, held = self.compute_quorum(tier)
        was_held = self._quorum_held.get(tier, False)
        self._quorum_held[tier] = held

        if was_held != held:
            self._audit.append(
                AuditRecordType.QUORUM_CHANGE,
                {
                    "tier": tier.value,
                    "member_id": event.member_id,
                    "quorum_held": held,
                    "healthy_votes": healthy_votes,
                    "voting_members": voting_members,
                },
            )

        if held:
            if not was_held:
                self._degraded.exit_degraded_mode(tier, DegradedCondition.NO_QUORUM)
                self._logger.info(
                    "Quorum regained",
                    correlation_id=tier.value,
                    healthy_votes=healthy_votes,
                    voting_members=voting_members,
                )
            return

        if self._degraded.is_degraded(tier, DegradedCondition.NO_QUORUM):
            return

        if was_held:
            reason = (
                f"Quorum lost on tier {tier.value}: {healthy_votes}/{voting_members} healthy votes "
                f"after {event.member_id} went {event.from_state.value} -> {event.to_state.value}; "
                f"no automatic promotion without a voting majority"
            )
        elif all(m.health_state != HealthState.UNKNOWN for m in self._registry.snapshot(tier)):
            reason = (
                f"Quorum never reached on tier {tier.value}: {healthy_votes}/{voting_members} healthy votes "
                f"once every member reported; no automatic promotion without a voting majority"
            )
        else:
            return

        await self._escalate_no_quorum(tier, reason, event.member_id)

    async def _escalate_no_quorum(self, tier: TierName, reason: str, member_id: str) -> None:
        self._degraded.enter_degraded_mode(tier, DegradedCondition.NO_QUORUM, reason)
        self._demote_primaries(tier)
        await self._alerts.raise_alert(AlertKind.QUORUM_LOST, tier.value, reason, member_id=member_id)
        self._orchestrator.request_manual_intervention(tier, reason)

    def _demote_primaries(self, tier: TierName) -> None:
        """Sans quorum, aucun primary n'est garanti: rôle UNKNOWN."""
        for member in self._registry.snapshot(tier):
            if member.role == DbRole.PRIMARY:
                self._registry.update_role(member.id, DbRole.UNKNOWN)
                self._audit.append(
                    AuditRecordType.ROLE_CHANGE,
                    {"member_id": member.id, "from_role": "primary", "to_role": "unknown", "cause": "quorum_lost"},
                )

    def is_quorum_held(self, tier: TierName) -> bool:
        return self._quorum_held.get(tier, False)

    # ══════════════════════════════════════════════════════════════════════════
    # Rôles replica set (flux rs.status())
    # ══════════════════════════════════════════════════════════════════════════

    def apply_replica_roles(self, roles: Dict[str, DbRole]) -> List[Member]:
        """
        Applique les rôles observés par le flux rs.status().

        Sans quorum, un PRIMARY rapporté est enregistré UNKNOWN. Avec
        quorum, plusieurs PRIMARY simultanés (élection en cours) sont
        tous enregistrés UNKNOWN.

        Args:
            roles: Rôle par member_id

        Returns:
            Membres dont le rôle a changé

        Raises:
            NotFoundError: Si un member_id est inconnu
            FailoverError: Si un membre n'appartient pas à un tier à quorum
        """
        primaries = [mid for mid, role in roles.items() if role == DbRole.PRIMARY]
        changed: List[Member] = []

        for member_id, role in roles.items():
            member = self._registry.get(member_id)
            if member.tier not in self._quorum_held:
                raise FailoverError(f"Member {member_id} is not a replica-set member")
            effective = role
            if role == DbRole.PRIMARY:
                if not self.is_quorum_held(member.tier):
                    effective = DbRole.UNKNOWN
                elif len(primaries) > 1:
                    effective = DbRole.UNKNOWN

            if member.role == effective:
                continue

            updated = self._registry.update_role(member_id, effective)
            changed.append(updated)
            self._audit.append(
                AuditRecordType.ROLE_CHANGE,
                {
                    "member_id": member_id,
                    "from_role": member.role.value if member.role else None,
                    "to_role": effective.value,
                    "reported_role": role.value,
                },
            )

        if len(primaries) > 1:
            self._logger.warn("Multiple primaries reported", primaries=primaries)

        return changed

    # ══════════════════════════════════════════════════════════════════════════
    # Routage avec retry
    # ══════════════════════════════════════════════════════════════════════════

    async def _set_rotation(self, member: Member, active: bool) -> bool:
        """
        Change la rotation d'un membre avec retry.

        Returns:
            True si le backend pool a accusé réception
        """
        if not active and self._registry.get(member.id).is_healthy:
            self._logger.warn("Refusing to remove a healthy member from rotation", correlation_id=member.id)
            return False

        def on_failure(attempt: int, error: Exception, next_delay: float) -> None:
            self._logger.warn(
                "Routing call failed",
                correlation_id=member.id,
                attempt=attempt,
                max_attempts=self._retry_config.max_attempts,
                active=active,
                error=str(error),
                next_delay_seconds=next_delay,
            )

        result = await self._retry.execute_with_retry(
            self._call_router,
            member.id,
            active,
            config=self._retry_config,
            observer=on_failure,
        )

        self._audit.append(
            AuditRecordType.ROUTING_CHANGE,
            {
                "member_id": member.id,
                "active": active,
                "success": result.success,
                "attempts": result.attempts,
            },
        )

        if result.success:
            self._routing_inconsistent.pop(member.id, None)
            return True

        self._routing_inconsistent[member.id] = active
        await self._alerts.raise_alert(
            AlertKind.ROUTING_FAILED,
            member.tier.value,
            f"Could not set {member.id} active={active} after {result.attempts} attempts: {result.last_error}",
            member_id=member.id,
            metadata={"attempts": result.attempts, "desired_active": active},
        )
        return False

    async def _call_router(self, member_id: str, active: bool) -> Any:
        timeout = self._timeouts.get_timeout(TimeoutType.ROUTING)
        try:
            return await asyncio.wait_for(self._router.set_member_active(member_id, active), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise RoutingError(member_id, f"No acknowledgement within {timeout}s") from e

    def routing_inconsistent_members(self) -> Dict[str, bool]:
        """Membres dont la rotation souhaitée n'a pas pu être appliquée."""
        return dict(self._routing_inconsistent)

    # ══════════════════════════════════════════════════════════════════════════
    # Surface opérateur
    # ══════════════════════════════════════════════════════════════════════════

    def is_degraded(self, tier: TierName) -> bool:
        return self._degraded.is_degraded(tier)

    def get_tier_status(self, tier: TierName) -> Dict[str, Any]:
        """Vue d'un tier: membres, quorum, conditions dégradées."""
        info = self._registry.get_tier(tier)
        members = self._registry.snapshot(tier)
        status: Dict[str, Any] = {
            "tier": tier.value,
            "quorum_required": info.quorum_required,
            "members": [m.to_dict() for m in members],
            "healthy_members": [m.id for m in members if m.is_healthy],
            "degraded_conditions": [e.condition.value for e in self._degraded.active_conditions(tier)],
            "routing_inconsistent": sorted(mid for mid in self._routing_inconsistent if mid in info.member_ids),
            "pending_events": self._queues[tier].qsize() if tier in self._queues else 0,
        }
        if info.quorum_required:
            healthy_votes, voting_members, held = self.compute_quorum(tier)
            status.update(
                {
                    "healthy_votes": healthy_votes,
                    "voting_members": voting_members,
                    "quorum_held": held,
                    "degraded_no_quorum": self._degraded.is_degraded(tier, DegradedCondition.NO_QUORUM),
                }
            )
        return status

    def get_status(self) -> Dict[str, Any]:
        return {
            "processed_events": self._processed_count,
            "workers_running": sum(1 for w in self._workers.values() if not w.done()),
            "routing_calls": self._retry.get_outcomes(),
            "tiers": {tier.value: self.get_tier_status(tier) for tier in self._registry.tiers()},
        }
