"""
TIERWATCH - HA - Health Monitor

Moniteur de santé: une tâche de polling par membre, hystérésis par
tier, publication des transitions vers le FailoverController.

Règles:
    - Healthy → Suspect après 1 échec (Suspect reste interne, non publié)
    - Suspect → Unhealthy après unhealthy_threshold échecs consécutifs
    - Unhealthy → Recovering après 1 succès
    - Recovering → Healthy après healthy_threshold succès consécutifs
    - Échec pendant Recovering → Unhealthy immédiatement
    - Unknown (démarrage) → Healthy après 1 succès,
      → Unhealthy après unhealthy_threshold échecs
    - Exactement un événement par transition publiée
    - Compteurs de chaque sonde proposés au registre via observation_sink
    - Sonde annulée de force à 2x son timeout (échec TIMEOUT)
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from tierwatch.ha.interfaces import (
    EventSink,
    HealthState,
    IHealthMonitor,
    IProbeClient,
    Member,
    ObservationSink,
    ProbeErrorKind,
    ProbeKind,
    ProbeObservation,
    ProbePolicy,
    ProbeResult,
    StateTransitionEvent,
    TierName,
)
from tierwatch.ha.member_registry import MemberRegistry
from tierwatch.ha.probe_client import ProbeClient
from tierwatch.logging import ContextualLogger, StructuredLogger, get_logger
from tierwatch.network import TimeoutManager, TimeoutType


class HealthMonitorError(Exception):
    """Erreur du moniteur de santé."""

    pass


class MemberStateMachine:
    """
    Machine à états d'hystérésis d'un membre.

    Pure: ne fait aucune I/O, consomme des ProbeResult et retourne
    les transitions publiées.
    """

    def __init__(
        self,
        member_id: str,
        tier: TierName,
        unhealthy_threshold: int = 2,
        healthy_threshold: int = 2,
        initial_state: HealthState = HealthState.UNKNOWN,
    ) -> None:
        if unhealthy_threshold < 1 or healthy_threshold < 1:
            raise HealthMonitorError("Hysteresis thresholds must be >= 1")

        self.member_id = member_id
        self.tier = tier
        self.unhealthy_threshold = unhealthy_threshold
        self.healthy_threshold = healthy_threshold
        self.state = initial_state
        self.consecutive_failures = 0
        self.consecutive_successes = 0
        self.last_probe_at: Optional[datetime] = None
        self.last_result: Optional[ProbeResult] = None

    @property
    def published_state(self) -> HealthState:
        """État visible hors du moniteur (Suspect publié comme Healthy)."""
        if self.state == HealthState.SUSPECT:
            return HealthState.HEALTHY
        return self.state

    def observe(self, result: ProbeResult) -> List[StateTransitionEvent]:
        """
        Intègre un résultat de sonde.

        Args:
            result: Résultat de la sonde

        Returns:
            Transitions publiées (0, 1, ou 2 si healthy_threshold=1
            fait passer Unhealthy → Recovering → Healthy)
        """
        self.last_probe_at = result.timestamp
        self.last_result = result

        if result.success:
            self.consecutive_successes += 1
            self.consecutive_failures = 0
            return self._on_success(result)

        self.consecutive_failures += 1
        self.consecutive_successes = 0
        return self._on_failure(result)

    def _on_success(self, result: ProbeResult) -> List[StateTransitionEvent]:
        events: List[StateTransitionEvent] = []

        if self.state == HealthState.SUSPECT:
            self.state = HealthState.HEALTHY
        elif self.state == HealthState.UNKNOWN:
            events.append(self._transition(HealthState.HEALTHY, result, "first successful probe"))
        elif self.state == HealthState.UNHEALTHY:
            events.append(self._transition(HealthState.RECOVERING, result, "probe succeeded while unhealthy"))

        if (
            self.state == HealthState.RECOVERING
            and self.consecutive_successes >= self.healthy_threshold
        ):
            events.append(
                self._transition(
                    HealthState.HEALTHY,
                    result,
                    f"{self.consecutive_successes} consecutive successful probes",
                )
            )

        return events

    def _on_failure(self, result: ProbeResult) -> List[StateTransitionEvent]:
        kind = result.error_kind.value if result.error_kind else ProbeErrorKind.UNKNOWN.value

        if self.state == HealthState.RECOVERING:
            return [self._transition(HealthState.UNHEALTHY, result, f"probe failed while recovering ({kind})")]

        if self.state == HealthState.HEALTHY:
            self.state = HealthState.SUSPECT

        if (
            self.state in (HealthState.SUSPECT, HealthState.UNKNOWN)
            and self.consecutive_failures >= self.unhealthy_threshold
        ):
            return [
                self._transition(
                    HealthState.UNHEALTHY,
                    result,
                    f"{self.consecutive_failures} consecutive failed probes ({kind})",
                )
            ]

        return []

    def _transition(self, to_state: HealthState, result: ProbeResult, reason: str) -> StateTransitionEvent:
        event = StateTransitionEvent(
            member_id=self.member_id,
            tier=self.tier,
            from_state=self.published_state,
            to_state=to_state,
            timestamp=result.timestamp,
            reason=reason,
            consecutive_failures=self.consecutive_failures,
            consecutive_successes=self.consecutive_successes,
        )
        self.state = to_state
        return event

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member_id": self.member_id,
            "state": self.state.value,
            "published_state": self.published_state.value,
            "consecutive_failures": self.consecutive_failures,
            "consecutive_successes": self.consecutive_successes,
            "last_probe_at": self.last_probe_at.isoformat() if self.last_probe_at else None,
            "last_error": (
                self.last_result.error_kind.value
                if self.last_result and self.last_result.error_kind
                else None
            ),
        }


class HealthMonitor(IHealthMonitor):
    """
    Moniteur de santé multi-tiers.

    Chaque membre a sa tâche, son verrou (ordre strict des sondes d'un
    même membre) et son événement de réveil (request_probe). Aucun
    ordre n'est garanti entre membres.
    """

    DEFAULT_INTERVAL_SECONDS: float = 15.0

    def __init__(
        self,
        registry: MemberRegistry,
        event_sink: EventSink,
        probe_client: Optional[IProbeClient] = None,
        policies: Optional[Dict[TierName, ProbePolicy]] = None,
        timeout_manager: Optional[TimeoutManager] = None,
        logger: Optional[StructuredLogger] = None,
        observation_sink: Optional[ObservationSink] = None,
    ) -> None:
        """
        Initialise le moniteur.

        Args:
            registry: Registre (lecture seule pour le moniteur)
            event_sink: Récepteur des transitions (FailoverController.submit)
            probe_client: Client de sonde (défaut: ProbeClient httpx)
            policies: Politique de sonde par tier
            timeout_manager: Timeouts de sonde par tier
            logger: Logger structuré
            observation_sink: Récepteur des compteurs de chaque sonde
                (FailoverController.record_probe)
        """
        self._registry = registry
        self._sink = event_sink
        self._observation_sink = observation_sink
        self._probe = probe_client or ProbeClient()
        self._policies: Dict[TierName, ProbePolicy] = dict(policies or {})
        self._timeouts = timeout_manager or TimeoutManager()
        self._logger = logger or get_logger("ha.health_monitor")

        self._machines: Dict[str, MemberStateMachine] = {}
        self._member_logs: Dict[str, ContextualLogger] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._wake: Dict[str, asyncio.Event] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

        for member in registry.all_members():
            policy = self.get_policy(member.tier)
            self._machines[member.id] = MemberStateMachine(
                member.id,
                member.tier,
                unhealthy_threshold=policy.unhealthy_threshold,
                healthy_threshold=policy.healthy_threshold,
                initial_state=member.health_state,
            )
            self._member_logs[member.id] = self._logger.with_context(correlation_id=member.id)
            self._locks[member.id] = asyncio.Lock()
            self._wake[member.id] = asyncio.Event()

    def get_policy(self, tier: TierName) -> ProbePolicy:
        """Politique du tier (Db: TCP par défaut)."""
        policy = self._policies.get(tier)
        if policy is None:
            policy = ProbePolicy(kind=ProbeKind.TCP) if tier == TierName.DB else ProbePolicy()
            self._policies[tier] = policy
        return policy

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Démarre une tâche de polling par membre."""
        if self._running:
            return

        self._running = True
        for member_id in self._machines:
            self._tasks[member_id] = asyncio.create_task(
                self._run_member(member_id),
                name=f"probe:{member_id}",
            )

        self._logger.info("Health monitor started", members=len(self._tasks))

    async def stop(self) -> None:
        """Arrête et attend toutes les tâches de polling."""
        if not self._running:
            return

        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        self._logger.info("Health monitor stopped")

    async def _run_member(self, member_id: str) -> None:
        """Boucle de polling d'un membre."""
        wake = self._wake[member_id]
        interval = self.get_policy(self._machines[member_id].tier).interval_seconds

        while self._running:
            await self.poll_once(member_id)
            try:
                await asyncio.wait_for(wake.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            wake.clear()

    async def poll_once(self, member_id: str) -> List[StateTransitionEvent]:
        """
        Exécute un cycle: sonde, hystérésis, publication.

        Args:
            member_id: Membre à sonder

        Returns:
            Transitions publiées par ce cycle

        Raises:
            NotFoundError: Si member_id inconnu
        """
        member = self._registry.get(member_id)
        machine = self._machines[member_id]

        async with self._locks[member_id]:
            result = await self._probe_with_deadline(member)
            events = machine.observe(result)

            if self._observation_sink is not None:
                self._observation_sink(
                    ProbeObservation(
                        member_id=member_id,
                        probed_at=result.timestamp,
                        consecutive_failures=machine.consecutive_failures,
                        consecutive_successes=machine.consecutive_successes,
                    )
                )

            if not result.success:
                self._member_logs[member_id].debug(
                    "Probe failed",
                    error_kind=result.error_kind.value if result.error_kind else None,
                    detail=result.detail,
                    consecutive_failures=machine.consecutive_failures,
                )

            for event in events:
                self._publish(event)

        return events

    async def probe_now(self, member_id: str) -> List[StateTransitionEvent]:
        """
        Force un cycle immédiat (après redémarrage d'une instance).

        Respecte l'ordre séquentiel du membre: attend le cycle en cours.
        """
        self._registry.get(member_id)
        self._member_logs[member_id].info("Forced probe")
        return await self.poll_once(member_id)

    def request_probe(self, member_id: str) -> None:
        """
        Réveille la boucle de polling d'un membre.

        Raises:
            NotFoundError: Si member_id inconnu
        """
        self._registry.get(member_id)
        self._wake[member_id].set()

    async def _probe_with_deadline(self, member: Member) -> ProbeResult:
        """
        Sonde avec annulation dure à HARD_DEADLINE_FACTOR x timeout.

        Toute exception du client est normalisée ici: aucune faute
        réseau ne remonte au-delà du moniteur.
        """
        policy = self.get_policy(member.tier)
        timeout = self._timeouts.get_timeout(TimeoutType.PROBE, member.tier.value)
        deadline = self._timeouts.get_hard_deadline(member.tier.value)
        target = self._probe_target(member, policy)

        try:
            return await asyncio.wait_for(
                self._probe.probe(target, policy.kind, member_id=member.id, timeout=timeout),
                timeout=deadline,
            )
        except asyncio.TimeoutError:
            return self._failed_result(
                member.id,
                ProbeErrorKind.TIMEOUT,
                f"Probe cancelled after hard deadline {deadline}s",
                deadline * 1000,
            )
        except Exception as e:
            return self._failed_result(member.id, ProbeErrorKind.UNKNOWN, f"Probe client error: {e}", 0.0)

    @staticmethod
    def _probe_target(member: Member, policy: ProbePolicy) -> str:
        if policy.kind == ProbeKind.HTTP:
            return ProbeClient.http_url(member.endpoint, policy.health_path)
        return member.endpoint

    @staticmethod
    def _failed_result(member_id: str, kind: ProbeErrorKind, detail: str, latency_ms: float) -> ProbeResult:
        return ProbeResult(
            member_id=member_id,
            timestamp=datetime.now(timezone.utc),
            success=False,
            latency_ms=latency_ms,
            error_kind=kind,
            detail=detail,
        )

    def _publish(self, event: StateTransitionEvent) -> None:
        self._member_logs[event.member_id].info(
            f"Member transition {event.from_state.value} -> {event.to_state.value}",
            tier=event.tier.value,
            reason=event.reason,
            event_id=event.event_id,
        )
        self._sink(event)

    def get_probe_state(self, member_id: str) -> Dict[str, Any]:
        """
        État interne d'hystérésis d'un membre (Suspect visible ici).

        Raises:
            NotFoundError: Si member_id inconnu
        """
        self._registry.get(member_id)
        return self._machines[member_id].to_dict()

    def get_status(self) -> Dict[str, Any]:
        """Status complet du moniteur."""
        return {
            "running": self._running,
            "active_tasks": sum(1 for t in self._tasks.values() if not t.done()),
            "policies": {
                tier.value: {
                    "kind": policy.kind.value,
                    "health_path": policy.health_path,
                    "interval_seconds": policy.interval_seconds,
                    "unhealthy_threshold": policy.unhealthy_threshold,
                    "healthy_threshold": policy.healthy_threshold,
                    "timeout_seconds": self._timeouts.get_timeout(TimeoutType.PROBE, tier.value),
                }
                for tier, policy in self._policies.items()
            },
            "members": {member_id: m.to_dict() for member_id, m in self._machines.items()},
        }
