"""
AuditLogger - Append-only activity log for operators.

Every record lands in two places:
1. Database (activity_logs table) - shown in the admin dashboard log view
2. Structured logs (stdout) - real-time monitoring

Usage:
    from dealwatch.infrastructure.audit import audit_logger

    await audit_logger.record(
        "1 day expiration notification sent to Jane for 3 deal(s)",
        level="info",
        subject_id=member.id,
    )

Recording never raises. A failed insert is logged with enough context to
recreate the row by hand.
"""

from datetime import UTC, datetime
from typing import Literal
from uuid import UUID

from dealwatch.db.pool import db_pool
from dealwatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

AuditLevel = Literal["info", "warning", "error", "success"]

AUDIT_LEVELS: frozenset[str] = frozenset({"info", "warning", "error", "success"})

_STRUCTLOG_METHODS = {
    "info": "info",
    "success": "info",
    "warning": "warning",
    "error": "error",
}


class AuditLogger:
    """
    Centralized activity log writer.

    Thread-safe and async-ready; holds no state of its own.
    """

    @staticmethod
    async def record(
        message: str,
        level: AuditLevel = "info",
        subject_id: str | UUID | None = None,
    ) -> bool:
        """
        Append an activity log entry.

        Args:
            message: Human readable description shown to operators
            level: One of info, warning, error, success (anything else -> info)
            subject_id: User the entry is about (member, distributor), if any

        Returns:
            True if persisted, False otherwise (never raises)
        """
        if level not in AUDIT_LEVELS:
            logger.debug("Unknown audit level, using info", requested_level=level)
            level = "info"

        if isinstance(subject_id, UUID):
            subject_id = str(subject_id)

        log_method = getattr(logger, _STRUCTLOG_METHODS[level])
        log_method("Activity log", audit_message=message, audit_level=level, subject_id=subject_id)

        try:
            async with db_pool.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO activity_logs (message, type, user_id, created_at)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (message, level, subject_id, datetime.now(UTC)),
                )
            return True

        except Exception as e:
            logger.error(
                "Failed to write activity log to database",
                error=str(e),
                error_type=type(e).__name__,
                fallback_data={
                    "message": message,
                    "type": level,
                    "user_id": subject_id,
                    "timestamp": datetime.now(UTC).isoformat(),
                },
            )
            return False


# Global singleton instance
audit_logger = AuditLogger()
