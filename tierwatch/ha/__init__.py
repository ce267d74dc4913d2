"""
TIERWATCH - HA

Moteur de failover multi-tiers (Web / App / Db):
- Sondes HTTP/TCP et hystérésis par membre
- Rotation backend pool pour les tiers load-balancés
- Quorum replica set et intervention manuelle pour le tier Db
"""

from .interfaces import (
    # Enums
    TierName,
    HealthState,
    DbRole,
    ProbeKind,
    ProbeErrorKind,
    DegradedCondition,
    # Data classes
    Member,
    Tier,
    ProbeResult,
    ProbeObservation,
    StateTransitionEvent,
    ProbePolicy,
    Ack,
    RestartAck,
    # Type aliases
    EventSink,
    ObservationSink,
    PoolClient,
    RestartAction,
    ReplicaStatusSource,
    # Interfaces
    IProbeClient,
    IMemberRegistry,
    IHealthMonitor,
    ITrafficRouter,
    IRecoveryOrchestrator,
    IDegradedModeController,
)
from .probe_client import ProbeClient, ProbeTargetError
from .member_registry import MemberRegistry, RegistryError, NotFoundError
from .health_monitor import HealthMonitor, MemberStateMachine, HealthMonitorError
from .degraded_mode_controller import DegradedModeController, DegradedEntry, DegradedModeError
from .traffic_router import InMemoryTrafficRouter, BackendPoolRouter, RoutingError
from .recovery_orchestrator import RecoveryOrchestrator, RecoveryError
from .failover_controller import FailoverController, FailoverError, default_routing_retry_config
from .replica_status import ReplicaStatusPoller, ReplicaStatusError, parse_replica_status

__all__ = [
    # Enums
    "TierName",
    "HealthState",
    "DbRole",
    "ProbeKind",
    "ProbeErrorKind",
    "DegradedCondition",
    # Data classes
    "Member",
    "Tier",
    "ProbeResult",
    "ProbeObservation",
    "StateTransitionEvent",
    "ProbePolicy",
    "Ack",
    "RestartAck",
    "DegradedEntry",
    # Type aliases
    "EventSink",
    "ObservationSink",
    "PoolClient",
    "RestartAction",
    "ReplicaStatusSource",
    # Interfaces
    "IProbeClient",
    "IMemberRegistry",
    "IHealthMonitor",
    "ITrafficRouter",
    "IRecoveryOrchestrator",
    "IDegradedModeController",
    # Implementations
    "ProbeClient",
    "MemberRegistry",
    "HealthMonitor",
    "MemberStateMachine",
    "DegradedModeController",
    "InMemoryTrafficRouter",
    "BackendPoolRouter",
    "RecoveryOrchestrator",
    "FailoverController",
    "ReplicaStatusPoller",
    "parse_replica_status",
    "default_routing_retry_config",
    # Exceptions
    "ProbeTargetError",
    "RegistryError",
    "NotFoundError",
    "HealthMonitorError",
    "DegradedModeError",
    "RoutingError",
    "RecoveryError",
    "FailoverError",
    "ReplicaStatusError",
]
