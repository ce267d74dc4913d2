"""
TIERWATCH - Resiliency Harness

Assemble le moteur de failover à partir d'une topologie:
registre scellé, moniteur, contrôleur, routeur, orchestrateur
et, si le tier Db est déclaré avec une source rs.status(), le
poller de rôles.

La surface opérateur (status) n'expose que l'état modélisé:
santé des membres, quorum, conditions dégradées, incidents et
alertes. Aucune exception brute.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from tierwatch.audit import TransitionAuditLog
from tierwatch.core import ConfigLoader, TierConfig, TopologyConfig
from tierwatch.ha import (
    BackendPoolRouter,
    DegradedModeController,
    FailoverController,
    HealthMonitor,
    IProbeClient,
    ITrafficRouter,
    InMemoryTrafficRouter,
    Member,
    MemberRegistry,
    PoolClient,
    ProbeClient,
    ProbePolicy,
    RecoveryOrchestrator,
    ReplicaStatusPoller,
    ReplicaStatusSource,
    RestartAction,
    RoutingError,
    TierName,
)
from tierwatch.incident import AlertDispatcher, AlertNotifier
from tierwatch.logging import LogConfig, LogLevel, SensitiveMasker, StructuredLogger, stderr_output
from tierwatch.network import RetryConfig, RetryHandler, TimeoutConfig, TimeoutManager


class ResiliencyHarness:
    """
    Harnais de résilience d'un déploiement 3-tiers.

    Example:
        harness = ResiliencyHarness.from_file("fixtures/configs/workshop.yaml")
        await harness.start()
        print(harness.status())
        await harness.stop()
    """

    def __init__(
        self,
        config: TopologyConfig,
        probe_client: Optional[IProbeClient] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        pool_client: Optional[PoolClient] = None,
        router: Optional[ITrafficRouter] = None,
        restart_actions: Optional[Dict[TierName, RestartAction]] = None,
        replica_status_source: Optional[ReplicaStatusSource] = None,
        notifiers: Optional[List[AlertNotifier]] = None,
        output_handler: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Construit tous les composants.

        Args:
            config: Topologie validée
            probe_client: Client de sonde (défaut: ProbeClient httpx)
            http_client: Client httpx partagé par les sondes HTTP
            pool_client: Appel SDK backend pool (mode backend_pool)
            router: Routeur explicite (prioritaire sur routing.mode)
            restart_actions: Redémarrage des instances Web/App
            replica_status_source: Source rs.status() du tier Db
            notifiers: Canaux d'alerte externes
            output_handler: Sortie des logs (défaut selon logging.output)

        Raises:
            RegistryError: Topologie incohérente (id dupliqué, tier inconnu)
            InvalidTimeoutError: Timeout hors limites
            RecoveryError: Action de redémarrage fournie pour le tier Db
        """
        self._config = config
        self._logger = self._build_logger(config, output_handler)
        self._masker = SensitiveMasker()

        self._registry = self._build_registry(config)
        self._timeouts = self._build_timeouts(config)

        self._router = router or self._build_router(config, pool_client)
        self._alerts = AlertDispatcher(
            notifiers=list(notifiers or []),
            logger=self._logger.child("alerts"),
        )
        self._degraded = DegradedModeController(logger=self._logger.child("degraded"))
        self._audit = TransitionAuditLog()

        self._orchestrator = RecoveryOrchestrator(
            self._registry,
            restart_actions=restart_actions,
            timeout_manager=self._timeouts,
            logger=self._logger.child("recovery"),
        )
        self._controller = FailoverController(
            self._registry,
            self._router,
            self._orchestrator,
            self._alerts,
            degraded=self._degraded,
            retry_handler=RetryHandler(),
            retry_config=self._routing_retry_config(config),
            timeout_manager=self._timeouts,
            audit_log=self._audit,
            logger=self._logger.child("failover"),
        )
        self._monitor = HealthMonitor(
            self._registry,
            event_sink=self._controller.submit,
            observation_sink=self._controller.record_probe,
            probe_client=probe_client or ProbeClient(http_client),
            policies={tier.name: self._probe_policy(tier) for tier in config.tiers},
            timeout_manager=self._timeouts,
            logger=self._logger.child("monitor"),
        )
        self._orchestrator.bind_monitor(self._monitor)

        self._replica_poller: Optional[ReplicaStatusPoller] = None
        if replica_status_source is not None and config.get_tier(TierName.DB) is not None:
            self._replica_poller = ReplicaStatusPoller(
                replica_status_source,
                self._registry,
                self._controller,
                interval_seconds=config.replica_set.status_interval_seconds,
                logger=self._logger.child("replica_status"),
            )

        self._running = False

    # ══════════════════════════════════════════════════════════════════════════
    # Construction
    # ══════════════════════════════════════════════════════════════════════════

    @classmethod
    def from_file(cls, path: Union[str, Path], **kwargs: Any) -> "ResiliencyHarness":
        """
        Charge une topologie YAML puis construit le harnais.

        Raises:
            ConfigIntegrityError: Topologie absente ou invalide
        """
        return cls(ConfigLoader().load_path(path), **kwargs)

    @classmethod
    async def from_deployment(
        cls, deployment_id: str, configs_path: str = "fixtures/configs", **kwargs: Any
    ) -> "ResiliencyHarness":
        """Charge la topologie d'un déploiement depuis configs_path."""
        config = await ConfigLoader(configs_path).load(deployment_id)
        return cls(config, **kwargs)

    @staticmethod
    def _build_logger(
        config: TopologyConfig, output_handler: Optional[Callable[[str], None]]
    ) -> StructuredLogger:
        log_config = LogConfig(
            min_level=LogLevel.from_name(config.logging.min_level),
            mask_sensitive=config.logging.mask_sensitive,
            default_deployment_id=config.deployment_id,
        )
        if output_handler is None and config.logging.output == "stderr":
            output_handler = stderr_output
        return StructuredLogger("tierwatch", log_config, output_handler=output_handler)

    @staticmethod
    def _build_registry(config: TopologyConfig) -> MemberRegistry:
        registry = MemberRegistry()
        for tier in config.tiers:
            registry.register_tier(tier.name, quorum_required=tier.quorum_required)
            for member in tier.members:
                registry.register_member(
                    Member(
                        id=member.id,
                        tier=tier.name,
                        endpoint=member.endpoint,
                        zone=member.zone,
                        votes=member.votes,
                        priority=member.priority,
                    )
                )
        registry.seal()
        return registry

    @staticmethod
    def _build_timeouts(config: TopologyConfig) -> TimeoutManager:
        routing_timeout = config.routing.call_timeout_seconds
        manager = TimeoutManager(TimeoutConfig(routing_timeout=routing_timeout))
        for tier in config.tiers:
            manager.set_tier_timeout(
                tier.name.value,
                TimeoutConfig(probe_timeout=tier.probe_timeout_seconds, routing_timeout=routing_timeout),
            )
        return manager

    def _build_router(self, config: TopologyConfig, pool_client: Optional[PoolClient]) -> ITrafficRouter:
        if config.routing.mode == "backend_pool":
            pool_names = {TierName(name): pool for name, pool in config.routing.pool_names.items()}
            return BackendPoolRouter(
                self._registry,
                pool_names,
                pool_client=pool_client,
                propagation_delay_seconds=config.routing.propagation_delay_seconds,
                logger=self._logger.child("router"),
            )

        # Rotation initiale: tous les membres Web/App en pool
        initial = [
            member.id
            for tier in config.tiers
            if not tier.quorum_required
            for member in tier.members
        ]
        return InMemoryTrafficRouter(initial_active=initial)

    @staticmethod
    def _probe_policy(tier: TierConfig) -> ProbePolicy:
        return ProbePolicy(
            kind=tier.probe_kind,
            health_path=tier.health_path,
            interval_seconds=tier.probe_interval_seconds,
            unhealthy_threshold=tier.unhealthy_threshold,
            healthy_threshold=tier.healthy_threshold,
        )

    @staticmethod
    def _routing_retry_config(config: TopologyConfig) -> RetryConfig:
        return RetryConfig(
            max_attempts=config.routing.max_attempts,
            initial_delay=config.routing.initial_delay_seconds,
            max_delay=config.routing.max_delay_seconds,
            exponential_base=2.0,
            retryable_exceptions=(RoutingError,),
        )

    # ══════════════════════════════════════════════════════════════════════════
    # Cycle de vie
    # ══════════════════════════════════════════════════════════════════════════

    async def start(self) -> None:
        """Démarre workers, sondes et poller de rôles."""
        if self._running:
            return
        await self._controller.start()
        await self._monitor.start()
        if self._replica_poller is not None:
            await self._replica_poller.start()
        self._running = True
        self._logger.info(
            "Harness started",
            tiers=[t.name.value for t in self._config.tiers],
            members=len(self._registry.all_members()),
        )

    async def stop(self) -> None:
        """Arrête les sondes puis les workers (file restante traitée)."""
        if not self._running:
            return
        if self._replica_poller is not None:
            await self._replica_poller.stop()
        await self._monitor.stop()
        await self._controller.drain()
        await self._controller.stop()
        self._running = False
        self._logger.info("Harness stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # ══════════════════════════════════════════════════════════════════════════
    # Accès composants
    # ══════════════════════════════════════════════════════════════════════════

    @property
    def config(self) -> TopologyConfig:
        return self._config

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def registry(self) -> MemberRegistry:
        return self._registry

    @property
    def monitor(self) -> HealthMonitor:
        return self._monitor

    @property
    def controller(self) -> FailoverController:
        return self._controller

    @property
    def router(self) -> ITrafficRouter:
        return self._router

    @property
    def orchestrator(self) -> RecoveryOrchestrator:
        return self._orchestrator

    @property
    def alerts(self) -> AlertDispatcher:
        return self._alerts

    @property
    def audit_log(self) -> TransitionAuditLog:
        return self._audit

    @property
    def replica_poller(self) -> Optional[ReplicaStatusPoller]:
        return self._replica_poller

    def add_notifier(self, notifier: AlertNotifier) -> None:
        self._alerts.add_notifier(notifier)

    # ══════════════════════════════════════════════════════════════════════════
    # Surface opérateur
    # ══════════════════════════════════════════════════════════════════════════

    def status(self) -> Dict[str, Any]:
        """
        Vue opérateur complète.

        Returns:
            Dictionnaire sérialisable: tiers, incidents en attente,
            alertes, conditions dégradées, membres routing-inconsistent.
            Credentials des endpoints masqués
        """
        controller_status = self._controller.get_status()
        status = {
            "deployment_id": self._config.deployment_id,
            "running": self._running,
            "tiers": controller_status["tiers"],
            "processed_events": controller_status["processed_events"],
            "routing_calls": controller_status["routing_calls"],
            "pending_incidents": [i.to_dict() for i in self._orchestrator.pending_incidents()],
            "alerts": [a.to_dict() for a in self._alerts.get_alerts()],
            "degraded": self._degraded.get_status(),
            "routing_inconsistent": self._controller.routing_inconsistent_members(),
            "audit_records": len(self._audit),
            "audit_chain_valid": self._audit.verify_chain(),
        }
        # Les endpoints Db peuvent porter des credentials (URI mongodb://)
        return self._masker.mask(status) if self._config.logging.mask_sensitive else status
