"""
TIERWATCH - Logging

Module de logging structuré avec:
- Format JSON structuré
- Champs obligatoires (timestamp, level, correlation_id, deployment_id, message)
- Timestamp ISO 8601 UTC
- Masquage des credentials (clés sensibles et connection strings)
"""

from .interfaces import (
    # Enums
    LogLevel,
    # Dataclasses
    LogEntry,
    LogConfig,
    # Interfaces
    IStructuredLogger,
    ISensitiveMasker,
)
from .sensitive_masker import SensitiveMasker
from .structured_logger import (
    StructuredLogger,
    ContextualLogger,
    get_logger,
    stderr_output,
    # Exceptions
    MissingRequiredFieldError,
)

__all__ = [
    # Enums
    "LogLevel",
    # Dataclasses
    "LogEntry",
    "LogConfig",
    # Interfaces
    "IStructuredLogger",
    "ISensitiveMasker",
    # Implementations
    "SensitiveMasker",
    "StructuredLogger",
    "ContextualLogger",
    "get_logger",
    "stderr_output",
    # Exceptions
    "MissingRequiredFieldError",
]
