"""
Activity logging infrastructure.

Operator-facing, append-only record of sweep outcomes and failures.
"""

from dealwatch.infrastructure.audit.audit_logger import (
    AUDIT_LEVELS,
    AuditLevel,
    AuditLogger,
    audit_logger,
)

__all__ = ["AUDIT_LEVELS", "AuditLevel", "AuditLogger", "audit_logger"]
