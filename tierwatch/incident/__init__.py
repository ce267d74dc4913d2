"""
TIERWATCH - Incident

Alertes opérateur et incidents d'intervention manuelle:
- POOL_EXHAUSTED, ROUTING_FAILED, QUORUM_LOST
- Cycle de vie OPEN → ACKNOWLEDGED → RESOLVED
"""

from .interfaces import (
    # Enums
    AlertKind,
    AlertSeverity,
    IncidentStatus,
    # Data classes
    Alert,
    Incident,
    AlertNotifier,
    # Interfaces
    IAlertDispatcher,
)
from .alert_dispatcher import AlertDispatcher, AlertDispatcherError

__all__ = [
    # Enums
    "AlertKind",
    "AlertSeverity",
    "IncidentStatus",
    # Data classes
    "Alert",
    "Incident",
    "AlertNotifier",
    # Interfaces
    "IAlertDispatcher",
    # Implementations
    "AlertDispatcher",
    # Exceptions
    "AlertDispatcherError",
]
