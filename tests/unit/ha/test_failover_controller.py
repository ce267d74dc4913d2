"""
Tests unitaires FailoverController

Comportements testés:
    - Événement appliqué au registre avant l'évaluation de la politique
    - Web/App: retrait/retour en rotation, POOL_EXHAUSTED sans fail-open
    - Membre Unknown compté en rotation (pas encore sondé)
    - Routage: retry borné puis une seule alerte ROUTING_FAILED
    - Db: quorum = votes healthy > votes / 2, perte = une seule intervention
    - Quorum jamais atteint: escalade une fois tous les membres rapportés
    - Rôles replica set: jamais de PRIMARY sans quorum
    - File FIFO par tier, worker résistant aux erreurs
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from tierwatch.audit import AuditRecordType
from tierwatch.ha import (
    DbRole,
    DegradedCondition,
    FailoverController,
    FailoverError,
    HealthState,
    InMemoryTrafficRouter,
    IRecoveryOrchestrator,
    ITrafficRouter,
    ProbeObservation,
    RoutingError,
    TierName,
    default_routing_retry_config,
)
from tierwatch.incident import AlertDispatcher, AlertKind
from tierwatch.network import RetryConfig, TimeoutConfig, TimeoutManager


# ══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def router(registry):
    """Active set en mémoire, tous les membres Web/App en rotation."""
    members = registry.snapshot(TierName.WEB) + registry.snapshot(TierName.APP)
    return InMemoryTrafficRouter([m.id for m in members])


@pytest.fixture
def mock_orchestrator():
    """Orchestrateur mocké."""
    orchestrator = Mock(spec=IRecoveryOrchestrator)
    orchestrator.request_manual_intervention = Mock()
    return orchestrator


@pytest.fixture
def alerts(capture_logger):
    """Dispatcher d'alertes réel, capture seule."""
    return AlertDispatcher(logger=capture_logger)


@pytest.fixture
def controller(registry, router, mock_orchestrator, alerts, fast_retry_config, capture_logger):
    """FailoverController sur la topologie de l'atelier."""
    return FailoverController(
        registry,
        router,
        mock_orchestrator,
        alerts,
        retry_config=fast_retry_config,
        logger=capture_logger,
    )


@pytest.fixture
def bring_up(controller, make_event):
    """Passe des membres à Healthy via le contrôleur."""

    async def _bring_up(*members):
        for member_id, tier in members:
            await controller.process_event(make_event(member_id, tier, HealthState.UNKNOWN, HealthState.HEALTHY))

    return _bring_up


WEB_1 = ("vm-web-1", TierName.WEB)
WEB_2 = ("vm-web-2", TierName.WEB)
DB_1 = ("vm-db-1", TierName.DB)
DB_2 = ("vm-db-2", TierName.DB)


# ══════════════════════════════════════════════════════════════════════════════
# TESTS ROTATION WEB/APP
# ══════════════════════════════════════════════════════════════════════════════


class TestRotation:
    """Tests de la politique des tiers load-balancés."""

    @pytest.mark.asyncio
    async def test_event_applied_to_registry(self, controller, registry, bring_up):
        """Le registre reflète l'événement avant la politique."""
        await bring_up(WEB_1)
        assert registry.get("vm-web-1").health_state == HealthState.HEALTHY

    @pytest.mark.asyncio
    async def test_unhealthy_removed_from_rotation(self, controller, router, bring_up, make_event):
        """Web Unhealthy = retiré du backend pool."""
        await bring_up(WEB_1, WEB_2)

        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))

        assert router.active_members() >= {"vm-web-2"}
        assert not router.is_active("vm-web-1")
        assert not controller.is_degraded(TierName.WEB)

    @pytest.mark.asyncio
    async def test_healthy_returns_to_rotation(self, controller, router, bring_up, make_event):
        """Retour à Healthy = retour dans le pool."""
        await bring_up(WEB_1, WEB_2)
        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))
        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.UNHEALTHY, HealthState.RECOVERING))
        assert not router.is_active("vm-web-1")

        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.RECOVERING, HealthState.HEALTHY))

        assert router.is_active("vm-web-1")

    @pytest.mark.asyncio
    async def test_pool_exhausted_alert_once(self, controller, router, alerts, bring_up, make_event):
        """Dernier membre Unhealthy: retiré quand même, une seule alerte POOL_EXHAUSTED."""
        await bring_up(WEB_1, WEB_2)

        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))
        await controller.process_event(make_event("vm-web-2", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))

        assert not router.is_active("vm-web-1")
        assert not router.is_active("vm-web-2")
        assert controller.degraded.is_degraded(TierName.WEB, DegradedCondition.POOL_EXHAUSTED)
        assert alerts.count(AlertKind.POOL_EXHAUSTED) == 1

        # Recovering → Unhealthy ne relève pas d'alerte tant que le pool reste vide
        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.UNHEALTHY, HealthState.RECOVERING))
        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.RECOVERING, HealthState.UNHEALTHY))
        assert alerts.count(AlertKind.POOL_EXHAUSTED) == 1

    @pytest.mark.asyncio
    async def test_pool_exhausted_cleared_on_recovery(self, controller, bring_up, make_event):
        """Un membre Healthy lève POOL_EXHAUSTED."""
        await bring_up(WEB_1, WEB_2)
        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))
        await controller.process_event(make_event("vm-web-2", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))

        await controller.process_event(make_event("vm-web-2", TierName.WEB, HealthState.RECOVERING, HealthState.HEALTHY))

        assert not controller.is_degraded(TierName.WEB)

    @pytest.mark.asyncio
    async def test_duplicate_event_skips_policy(self, controller, router, bring_up, make_event):
        """Événement déjà appliqué: aucune nouvelle action de routage."""
        await bring_up(WEB_1, WEB_2)
        event = make_event("vm-web-1", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY)
        await controller.process_event(event)
        history = router.get_history()

        await controller.process_event(event)

        assert router.get_history() == history

    @pytest.mark.asyncio
    async def test_app_tier_independent_of_web(self, controller, router, bring_up, make_event):
        """Perte App n'affecte pas la rotation Web."""
        await bring_up(WEB_1, ("vm-app-1", TierName.APP))
        await controller.process_event(make_event("vm-app-1", TierName.APP, HealthState.HEALTHY, HealthState.UNHEALTHY))

        assert router.is_active("vm-web-1")
        assert not router.is_active("vm-app-1")

    @pytest.mark.asyncio
    async def test_unknown_peer_keeps_pool_open(self, controller, router, alerts, bring_up, make_event):
        """Un pair pas encore sondé reste en rotation: pas de POOL_EXHAUSTED."""
        await bring_up(WEB_1)

        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))

        assert router.is_active("vm-web-2")
        assert not controller.is_degraded(TierName.WEB)
        assert alerts.count(AlertKind.POOL_EXHAUSTED) == 0

    @pytest.mark.asyncio
    async def test_pool_exhausted_once_unknown_peer_fails(self, controller, router, alerts, bring_up, make_event):
        """Le pair Unknown devient Unhealthy: le pool est alors vide."""
        await bring_up(WEB_1)
        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))

        await controller.process_event(make_event("vm-web-2", TierName.WEB, HealthState.UNKNOWN, HealthState.UNHEALTHY))

        assert controller.degraded.is_degraded(TierName.WEB, DegradedCondition.POOL_EXHAUSTED)
        assert alerts.count(AlertKind.POOL_EXHAUSTED) == 1


# ══════════════════════════════════════════════════════════════════════════════
# TESTS ROUTAGE AVEC RETRY
# ══════════════════════════════════════════════════════════════════════════════


class TestRoutingRetry:
    """Tests du retry des appels backend pool."""

    def test_default_retry_config(self):
        """5 tentatives, 1s de base, plafond 30s, RoutingError seule retryable."""
        config = default_routing_retry_config()
        assert config.max_attempts == 5
        assert config.initial_delay == 1.0
        assert config.max_delay == 30.0
        assert config.retryable_exceptions == (RoutingError,)

    @pytest.fixture
    def failing_router(self):
        router = Mock(spec=ITrafficRouter)
        router.set_member_active = AsyncMock(side_effect=RoutingError("vm-web-1", "ARM 503"))
        return router

    @pytest.fixture
    def failing_controller(self, registry, failing_router, mock_orchestrator, alerts, fast_retry_config):
        return FailoverController(registry, failing_router, mock_orchestrator, alerts, retry_config=fast_retry_config)

    @pytest.mark.asyncio
    async def test_exhausted_retries_single_alert(self, failing_controller, failing_router, alerts, make_event):
        """5 tentatives puis exactement une alerte ROUTING_FAILED."""
        await failing_controller.process_event(
            make_event("vm-web-1", TierName.WEB, HealthState.UNKNOWN, HealthState.UNHEALTHY)
        )

        assert failing_router.set_member_active.await_count == 5
        assert alerts.count(AlertKind.ROUTING_FAILED) == 1
        assert failing_controller.routing_inconsistent_members() == {"vm-web-1": False}

    @pytest.mark.asyncio
    async def test_success_clears_inconsistency(self, failing_controller, failing_router, make_event):
        """Un appel réussi ensuite lève le marqueur routing-inconsistent."""
        await failing_controller.process_event(
            make_event("vm-web-1", TierName.WEB, HealthState.UNKNOWN, HealthState.UNHEALTHY)
        )
        failing_router.set_member_active.side_effect = None
        failing_router.set_member_active.return_value = None

        await failing_controller.process_event(
            make_event("vm-web-1", TierName.WEB, HealthState.RECOVERING, HealthState.HEALTHY)
        )

        assert failing_controller.routing_inconsistent_members() == {}

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, registry, mock_orchestrator, alerts, fast_retry_config, make_event):
        """Deux échecs puis succès: pas d'alerte."""
        router = Mock(spec=ITrafficRouter)
        router.set_member_active = AsyncMock(
            side_effect=[RoutingError("vm-app-1", "busy"), RoutingError("vm-app-1", "busy"), None]
        )
        controller = FailoverController(registry, router, mock_orchestrator, alerts, retry_config=fast_retry_config)

        await controller.process_event(make_event("vm-app-1", TierName.APP, HealthState.UNKNOWN, HealthState.UNHEALTHY))

        assert router.set_member_active.await_count == 3
        assert alerts.count(AlertKind.ROUTING_FAILED) == 0

    @pytest.mark.asyncio
    async def test_router_timeout_becomes_routing_error(self, registry, mock_orchestrator, alerts, make_event):
        """Routeur sans réponse dans le timeout = tentative échouée."""

        async def hang(member_id, active):
            await asyncio.sleep(10)

        router = Mock(spec=ITrafficRouter)
        router.set_member_active = AsyncMock(side_effect=hang)
        controller = FailoverController(
            registry,
            router,
            mock_orchestrator,
            alerts,
            retry_config=RetryConfig(max_attempts=2, initial_delay=0, max_delay=0, retryable_exceptions=(RoutingError,)),
            timeout_manager=TimeoutManager(TimeoutConfig(routing_timeout=0.05)),
        )

        await controller.process_event(make_event("vm-web-2", TierName.WEB, HealthState.UNKNOWN, HealthState.UNHEALTHY))

        assert router.set_member_active.await_count == 2
        assert "No acknowledgement" in alerts.get_alerts(AlertKind.ROUTING_FAILED)[0].message


# ══════════════════════════════════════════════════════════════════════════════
# TESTS QUORUM DB
# ══════════════════════════════════════════════════════════════════════════════


class TestQuorum:
    """Tests de la politique replica set."""

    def test_initial_quorum_not_held_with_unknown_members(self, controller):
        """Au démarrage (membres Unknown), le quorum n'est pas tenu."""
        assert controller.compute_quorum(TierName.DB) == (0, 2, False)
        assert controller.is_quorum_held(TierName.DB) is False

    @pytest.mark.asyncio
    async def test_startup_is_not_a_quorum_loss(self, controller, mock_orchestrator, alerts, bring_up):
        """Atteindre le quorum au démarrage ne lève rien."""
        await bring_up(DB_1, DB_2)

        assert controller.is_quorum_held(TierName.DB)
        mock_orchestrator.request_manual_intervention.assert_not_called()
        assert alerts.count() == 0

    @pytest.mark.asyncio
    async def test_two_member_loss_requires_manual_intervention(
        self, controller, mock_orchestrator, alerts, registry, bring_up, make_event
    ):
        """2 votants, 1 Unhealthy: quorum perdu, une intervention, primary démis."""
        await bring_up(DB_1, DB_2)
        controller.apply_replica_roles({"vm-db-1": DbRole.PRIMARY, "vm-db-2": DbRole.SECONDARY})

        await controller.process_event(make_event("vm-db-1", TierName.DB, HealthState.HEALTHY, HealthState.UNHEALTHY))

        assert controller.compute_quorum(TierName.DB) == (1, 2, False)
        assert controller.degraded.is_degraded(TierName.DB, DegradedCondition.NO_QUORUM)
        assert registry.get("vm-db-1").role == DbRole.UNKNOWN
        assert registry.get("vm-db-2").role == DbRole.SECONDARY
        assert alerts.count(AlertKind.QUORUM_LOST) == 1
        mock_orchestrator.request_manual_intervention.assert_called_once()
        tier, reason = mock_orchestrator.request_manual_intervention.call_args[0]
        assert tier == TierName.DB
        assert reason.startswith("Quorum lost on tier db")

    @pytest.mark.asyncio
    async def test_second_loss_does_not_repeat_intervention(
        self, controller, mock_orchestrator, bring_up, make_event
    ):
        """Déjà sans quorum: pas de nouvel incident."""
        await bring_up(DB_1, DB_2)
        await controller.process_event(make_event("vm-db-1", TierName.DB, HealthState.HEALTHY, HealthState.UNHEALTHY))
        await controller.process_event(make_event("vm-db-2", TierName.DB, HealthState.HEALTHY, HealthState.UNHEALTHY))

        mock_orchestrator.request_manual_intervention.assert_called_once()

    @pytest.mark.asyncio
    async def test_quorum_regained_clears_degraded(self, controller, mock_orchestrator, bring_up, make_event):
        """Quorum retrouvé: NO_QUORUM levé."""
        await bring_up(DB_1, DB_2)
        await controller.process_event(make_event("vm-db-1", TierName.DB, HealthState.HEALTHY, HealthState.UNHEALTHY))
        await controller.process_event(make_event("vm-db-1", TierName.DB, HealthState.UNHEALTHY, HealthState.RECOVERING))
        assert controller.degraded.is_degraded(TierName.DB, DegradedCondition.NO_QUORUM)

        await controller.process_event(make_event("vm-db-1", TierName.DB, HealthState.RECOVERING, HealthState.HEALTHY))

        assert controller.is_quorum_held(TierName.DB)
        assert not controller.degraded.is_degraded(TierName.DB, DegradedCondition.NO_QUORUM)

    @pytest.mark.asyncio
    async def test_quorum_never_reached_escalates_once(
        self, controller, mock_orchestrator, alerts, bring_up, make_event
    ):
        """Quorum jamais atteint: escalade dès que plus aucun membre n'est Unknown."""
        await bring_up(DB_1)
        mock_orchestrator.request_manual_intervention.assert_not_called()

        await controller.process_event(make_event("vm-db-2", TierName.DB, HealthState.UNKNOWN, HealthState.UNHEALTHY))

        assert controller.degraded.is_degraded(TierName.DB, DegradedCondition.NO_QUORUM)
        assert alerts.count(AlertKind.QUORUM_LOST) == 1
        mock_orchestrator.request_manual_intervention.assert_called_once()
        tier, reason = mock_orchestrator.request_manual_intervention.call_args[0]
        assert tier == TierName.DB
        assert reason.startswith("Quorum never reached on tier db")

        await controller.process_event(make_event("vm-db-2", TierName.DB, HealthState.UNHEALTHY, HealthState.RECOVERING))

        mock_orchestrator.request_manual_intervention.assert_called_once()
        assert alerts.count(AlertKind.QUORUM_LOST) == 1

    @pytest.mark.asyncio
    async def test_all_members_unhealthy_from_start(self, controller, mock_orchestrator, make_event):
        """Aucun membre Db ne répond dès le démarrage: une intervention."""
        await controller.process_event(make_event("vm-db-1", TierName.DB, HealthState.UNKNOWN, HealthState.UNHEALTHY))
        mock_orchestrator.request_manual_intervention.assert_not_called()

        await controller.process_event(make_event("vm-db-2", TierName.DB, HealthState.UNKNOWN, HealthState.UNHEALTHY))

        mock_orchestrator.request_manual_intervention.assert_called_once()
        assert controller.is_degraded(TierName.DB)

    @pytest.mark.asyncio
    async def test_three_voters_survive_single_loss(
        self, build_registry, router, mock_orchestrator, alerts, fast_retry_config, make_event
    ):
        """3 votants, 1 Unhealthy: quorum conservé."""
        registry = build_registry(db=3)
        controller = FailoverController(registry, router, mock_orchestrator, alerts, retry_config=fast_retry_config)
        for n in (1, 2, 3):
            await controller.process_event(
                make_event(f"vm-db-{n}", TierName.DB, HealthState.UNKNOWN, HealthState.HEALTHY)
            )

        await controller.process_event(make_event("vm-db-3", TierName.DB, HealthState.HEALTHY, HealthState.UNHEALTHY))

        assert controller.compute_quorum(TierName.DB) == (2, 3, True)
        mock_orchestrator.request_manual_intervention.assert_not_called()

    @pytest.mark.asyncio
    async def test_db_never_touches_router(self, controller, router, bring_up, make_event):
        """Le tier Db n'est jamais routé."""
        await bring_up(DB_1, DB_2)
        await controller.process_event(make_event("vm-db-1", TierName.DB, HealthState.HEALTHY, HealthState.UNHEALTHY))

        assert all(not mid.startswith("vm-db") for mid, _ in router.get_history())

    @pytest.mark.asyncio
    async def test_quorum_changes_audited(self, controller, bring_up, make_event):
        """Chaque changement de quorum est consigné."""
        await bring_up(DB_1, DB_2)
        await controller.process_event(make_event("vm-db-1", TierName.DB, HealthState.HEALTHY, HealthState.UNHEALTHY))

        records = controller.audit_log.get_records(AuditRecordType.QUORUM_CHANGE)
        assert [r.payload["quorum_held"] for r in records] == [True, False]
        assert controller.audit_log.verify_chain()


# ══════════════════════════════════════════════════════════════════════════════
# TESTS RÔLES REPLICA SET
# ══════════════════════════════════════════════════════════════════════════════


class TestReplicaRoles:
    """Tests apply_replica_roles."""

    @pytest.mark.asyncio
    async def test_primary_applied_with_quorum(self, controller, registry, bring_up):
        await bring_up(DB_1, DB_2)

        changed = controller.apply_replica_roles({"vm-db-1": DbRole.PRIMARY, "vm-db-2": DbRole.SECONDARY})

        assert {m.id for m in changed} == {"vm-db-1", "vm-db-2"}
        assert registry.get("vm-db-1").role == DbRole.PRIMARY

    def test_primary_without_quorum_recorded_unknown(self, controller, registry):
        """Sans quorum, un PRIMARY rapporté reste UNKNOWN."""
        changed = controller.apply_replica_roles({"vm-db-1": DbRole.PRIMARY, "vm-db-2": DbRole.SECONDARY})

        assert registry.get("vm-db-1").role == DbRole.UNKNOWN
        assert registry.get("vm-db-2").role == DbRole.SECONDARY
        assert [m.id for m in changed] == ["vm-db-2"]

    @pytest.mark.asyncio
    async def test_multiple_primaries_recorded_unknown(self, controller, registry, bring_up):
        """Deux PRIMARY simultanés: aucun n'est retenu."""
        await bring_up(DB_1, DB_2)

        controller.apply_replica_roles({"vm-db-1": DbRole.PRIMARY, "vm-db-2": DbRole.PRIMARY})

        assert registry.get("vm-db-1").role == DbRole.UNKNOWN
        assert registry.get("vm-db-2").role == DbRole.UNKNOWN

    def test_non_replica_member_rejected(self, controller):
        with pytest.raises(FailoverError):
            controller.apply_replica_roles({"vm-web-1": DbRole.SECONDARY})

    @pytest.mark.asyncio
    async def test_unchanged_roles_not_reported(self, controller, bring_up):
        await bring_up(DB_1, DB_2)
        controller.apply_replica_roles({"vm-db-1": DbRole.PRIMARY})

        assert controller.apply_replica_roles({"vm-db-1": DbRole.PRIMARY}) == []


# ══════════════════════════════════════════════════════════════════════════════
# TESTS FILE D'ÉVÉNEMENTS
# ══════════════════════════════════════════════════════════════════════════════


class TestEventQueue:
    """Tests submit / workers."""

    @pytest.mark.asyncio
    async def test_submit_processed_by_worker(self, controller, registry, make_event):
        """submit + start + drain: événement appliqué."""
        await controller.start()
        controller.submit(make_event("vm-web-1", TierName.WEB, HealthState.UNKNOWN, HealthState.HEALTHY))
        await controller.drain()
        await controller.stop()

        assert registry.get("vm-web-1").health_state == HealthState.HEALTHY

    @pytest.mark.asyncio
    async def test_fifo_per_tier(self, controller, registry, make_event):
        """Les événements d'un tier sont appliqués dans l'ordre de soumission."""
        controller.submit(make_event("vm-web-1", TierName.WEB, HealthState.UNKNOWN, HealthState.HEALTHY))
        controller.submit(make_event("vm-web-1", TierName.WEB, HealthState.HEALTHY, HealthState.UNHEALTHY))
        controller.submit(make_event("vm-web-1", TierName.WEB, HealthState.UNHEALTHY, HealthState.RECOVERING))

        await controller.start()
        await controller.drain()
        await controller.stop()

        records = controller.audit_log.get_records(AuditRecordType.STATE_TRANSITION, member_id="vm-web-1")
        assert [r.payload["to_state"] for r in records] == ["healthy", "unhealthy", "recovering"]
        assert registry.get("vm-web-1").health_state == HealthState.RECOVERING

    @pytest.mark.asyncio
    async def test_worker_survives_failure(self, controller, registry, capture_logger, make_event):
        """Une erreur de politique est loggée, le worker continue."""
        controller.submit(make_event("vm-ghost", TierName.WEB, HealthState.UNKNOWN, HealthState.HEALTHY))
        controller.submit(make_event("vm-web-2", TierName.WEB, HealthState.UNKNOWN, HealthState.HEALTHY))

        await controller.start()
        await controller.drain()
        await controller.stop()

        assert registry.get("vm-web-2").health_state == HealthState.HEALTHY
        assert any(e.level.value == "CRITICAL" for e in capture_logger.get_entries())

    @pytest.mark.asyncio
    async def test_status(self, controller, bring_up):
        await bring_up(DB_1, DB_2)
        status = controller.get_status()

        assert status["processed_events"] == 2
        assert status["tiers"]["db"]["quorum_held"] is True
        assert status["tiers"]["web"]["quorum_required"] is False

    def test_recorded_counters_update_registry(self, controller, registry):
        """Chaque sonde met à jour les compteurs via le contrôleur."""
        member = controller.record_probe(
            ProbeObservation("vm-web-1", datetime.now(timezone.utc), consecutive_failures=1, consecutive_successes=0)
        )

        assert member.consecutive_failures == 1
        assert registry.get("vm-web-1").consecutive_failures == 1
        assert registry.get("vm-web-1").health_state == HealthState.UNKNOWN

    @pytest.mark.asyncio
    async def test_status_reports_routing_calls(self, registry, mock_orchestrator, alerts, fast_retry_config, make_event):
        """Issues des appels backend pool exposées dans le statut."""
        router = Mock(spec=ITrafficRouter)
        router.set_member_active = AsyncMock(side_effect=RoutingError("vm-web-1", "ARM 503"))
        controller = FailoverController(registry, router, mock_orchestrator, alerts, retry_config=fast_retry_config)

        await controller.process_event(make_event("vm-web-1", TierName.WEB, HealthState.UNKNOWN, HealthState.UNHEALTHY))

        calls = controller.get_status()["routing_calls"]
        assert calls["exhausted"] == 1
        assert calls["failed_attempts"] == 5
