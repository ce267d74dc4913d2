"""
TIERWATCH - Core
Topologie, chargement et validation de configuration.
"""

from .interfaces import (
    MemberConfig,
    TierConfig,
    RoutingConfig,
    ReplicaSetConfig,
    LoggingConfig,
    TopologyConfig,
    ValidationSeverity,
    ValidationError,
    ValidationResult,
    IConfigLoader,
    IConfigValidator,
)
from .config_validator import ConfigValidator
from .config_loader import ConfigLoader, ConfigIntegrityError

__all__ = [
    "MemberConfig",
    "TierConfig",
    "RoutingConfig",
    "ReplicaSetConfig",
    "LoggingConfig",
    "TopologyConfig",
    "ValidationSeverity",
    "ValidationError",
    "ValidationResult",
    "IConfigLoader",
    "IConfigValidator",
    "ConfigValidator",
    "ConfigLoader",
    "ConfigIntegrityError",
]
