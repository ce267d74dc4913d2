"""
TIERWATCH - Network

Module de gestion réseau avec:
- Timeouts par tier et annulation dure des sondes
- Retry avec backoff exponentiel des appels de routage
"""

from .interfaces import (
    # Enums
    TimeoutType,
    # Data classes
    TimeoutConfig,
    RetryConfig,
    RetryResult,
    # Interfaces
    ITimeoutManager,
    IRetryHandler,
)
from .retry_handler import RetryHandler
from .timeout_manager import TimeoutManager, InvalidTimeoutError

__all__ = [
    # Enums
    "TimeoutType",
    # Data classes
    "TimeoutConfig",
    "RetryConfig",
    "RetryResult",
    # Interfaces
    "ITimeoutManager",
    "IRetryHandler",
    # Implementations
    "TimeoutManager",
    "RetryHandler",
    # Exceptions
    "InvalidTimeoutError",
]
