"""
Member lookups for the expiration engine.
"""

from dealwatch.db.helpers import DatabaseError, fetch_all
from dealwatch.features.deal_expiration.domain import Member
from dealwatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class MemberRepositoryError(DatabaseError):
    """More specific exception for member lookups."""


class MemberRepository:
    """Postgres-backed member store."""

    @staticmethod
    def _row_to_member(row: dict) -> Member:
        return Member(
            id=str(row["id"]),
            email=row["email"],
            name=row.get("name") or "",
            phone=row.get("phone") or None,
            is_blocked=bool(row.get("is_blocked")),
            additional_emails=list(row.get("additional_emails") or []),
        )

    async def find_by_role_and_not_blocked(self, role: str) -> list[Member]:
        """All users holding ``role`` whose account is not blocked."""
        query = """
            SELECT id, name, email, phone, is_blocked, additional_emails
            FROM users
            WHERE role = %s
              AND is_blocked = false
            ORDER BY created_at ASC, id ASC
        """
        try:
            rows = await fetch_all(query, (role,))
        except DatabaseError as e:
            raise MemberRepositoryError(
                f"Failed to load users with role {role}: {e}", operation="find_members"
            ) from e

        members = [self._row_to_member(row) for row in rows]
        logger.debug("Loaded members", role=role, count=len(members))
        return members


member_repository = MemberRepository()
