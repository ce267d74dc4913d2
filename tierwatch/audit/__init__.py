"""
TIERWATCH - Audit

Journal d'audit chaîné (SHA-384) des transitions et décisions.
"""

from .transition_log import (
    AuditLogError,
    AuditRecord,
    AuditRecordType,
    TransitionAuditLog,
)

__all__ = [
    "AuditLogError",
    "AuditRecord",
    "AuditRecordType",
    "TransitionAuditLog",
]
