"""
TIERWATCH - Pytest Configuration
Fixtures partagées pour tous les tests.
"""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from tierwatch.ha import (
    HealthState,
    Member,
    MemberRegistry,
    ProbeErrorKind,
    ProbeResult,
    RoutingError,
    StateTransitionEvent,
    TierName,
)
from tierwatch.logging import LogConfig, LogLevel, StructuredLogger
from tierwatch.network import RetryConfig


@pytest.fixture
def fixtures_path() -> Path:
    """Chemin vers le dossier fixtures."""
    return Path(__file__).parent.parent / "fixtures"


@pytest.fixture
def configs_path(fixtures_path: Path) -> Path:
    """Chemin vers les topologies YAML."""
    return fixtures_path / "configs"


@pytest.fixture
def capture_logger() -> StructuredLogger:
    """Logger en capture seule, niveau DEBUG."""
    return StructuredLogger(
        "test",
        LogConfig(min_level=LogLevel.DEBUG, default_deployment_id="test-deployment"),
    )


@pytest.fixture
def fast_retry_config() -> RetryConfig:
    """Retry de routage sans attente."""
    return RetryConfig(
        max_attempts=5,
        initial_delay=0.0,
        max_delay=0.0,
        retryable_exceptions=(RoutingError,),
    )


@pytest.fixture
def build_registry():
    """
    Fabrique de registre 3-tiers scellé.

    Membres nommés vm-<tier>-<n>, endpoints 10.0.<i>.<n+3>.
    """

    def _build(web: int = 2, app: int = 2, db: int = 2, seal: bool = True) -> MemberRegistry:
        registry = MemberRegistry()
        for index, (tier, count) in enumerate(((TierName.WEB, web), (TierName.APP, app), (TierName.DB, db)), start=1):
            if count == 0:
                continue
            registry.register_tier(tier)
            for n in range(1, count + 1):
                endpoint = f"10.0.{index}.{n + 3}"
                if tier == TierName.DB:
                    endpoint = f"{endpoint}:27017"
                registry.register_member(
                    Member(id=f"vm-{tier.value}-{n}", tier=tier, endpoint=endpoint, zone=str(n))
                )
        if seal:
            registry.seal()
        return registry

    return _build


@pytest.fixture
def registry(build_registry) -> MemberRegistry:
    """Topologie de l'atelier: 2 Web, 2 App, 2 Db."""
    return build_registry()


@pytest.fixture
def make_event():
    """Fabrique de StateTransitionEvent."""

    def _make(
        member_id: str,
        tier: TierName,
        from_state: HealthState,
        to_state: HealthState,
        reason: str = "test transition",
    ) -> StateTransitionEvent:
        return StateTransitionEvent(
            member_id=member_id,
            tier=tier,
            from_state=from_state,
            to_state=to_state,
            timestamp=datetime.now(timezone.utc),
            reason=reason,
        )

    return _make


@pytest.fixture
def probe_ok():
    """Fabrique de ProbeResult réussi."""

    def _ok(member_id: str = "vm-web-1") -> ProbeResult:
        return ProbeResult(
            member_id=member_id,
            timestamp=datetime.now(timezone.utc),
            success=True,
            latency_ms=3.0,
            status_code=200,
        )

    return _ok


@pytest.fixture
def probe_fail():
    """Fabrique de ProbeResult en échec."""

    def _fail(member_id: str = "vm-web-1", kind: ProbeErrorKind = ProbeErrorKind.TIMEOUT) -> ProbeResult:
        return ProbeResult(
            member_id=member_id,
            timestamp=datetime.now(timezone.utc),
            success=False,
            latency_ms=5000.0,
            error_kind=kind,
            detail="probe failed",
        )

    return _fail
