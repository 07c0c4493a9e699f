"""
Persistence layer for deals touched by the expiration engine.

Reads join in the distributor's display name and the deal's commitments so
the email renderer has everything it needs without extra round trips.
"""

from datetime import UTC, datetime
from typing import Any

from psycopg.types.json import Jsonb

from dealwatch.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from dealwatch.db.pool import db_pool
from dealwatch.features.deal_expiration.domain import (
    Commitment,
    Deal,
    DealSize,
    DealStatus,
    NotificationHistory,
    SizeCommitment,
)
from dealwatch.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DealRepositoryError(DatabaseError):
    """More specific exception for deal persistence failures."""


class DealRepository:
    """Postgres-backed deal store."""

    DEAL_SELECT = """
        SELECT
            d.id, d.name, d.description, d.category, d.status, d.deal_ends_at,
            d.min_qty_for_discount, d.images, d.sizes, d.notification_history,
            d.distributor_id, u.name AS distributor_name,
            COALESCE(
                (
                    SELECT jsonb_agg(c.size_commitments ORDER BY c.created_at)
                    FROM commitments c
                    WHERE c.deal_id = d.id
                ),
                '[]'::jsonb
            ) AS commitments
        FROM deals d
        LEFT JOIN users u ON u.id = d.distributor_id
    """

    @staticmethod
    def _parse_commitments(raw: list[Any] | None) -> list[Commitment]:
        commitments = []
        for size_commitments in raw or []:
            commitments.append(
                Commitment(
                    size_commitments=[
                        SizeCommitment(
                            size=str(item.get("size", "")),
                            quantity=int(item.get("quantity") or 0),
                            price_per_unit=float(item.get("pricePerUnit") or 0),
                        )
                        for item in size_commitments or []
                    ]
                )
            )
        return commitments

    @staticmethod
    def _parse_sizes(raw: list[dict] | None) -> list[DealSize]:
        return [
            DealSize(
                size=str(item.get("size", "")),
                discount_price=float(item.get("discountPrice") or 0),
                original_cost=float(item["originalCost"]) if item.get("originalCost") is not None else None,
            )
            for item in raw or []
        ]

    @classmethod
    def _row_to_deal(cls, row: dict) -> Deal:
        ends_at = row["deal_ends_at"]
        if ends_at.tzinfo is None:
            ends_at = ends_at.replace(tzinfo=UTC)

        return Deal(
            id=str(row["id"]),
            name=row.get("name") or "",
            status=DealStatus(row["status"]),
            ends_at=ends_at,
            distributor_id=str(row["distributor_id"]) if row.get("distributor_id") else None,
            distributor_name=row.get("distributor_name"),
            category=row.get("category"),
            description=row.get("description"),
            min_qty_for_discount=row.get("min_qty_for_discount"),
            images=list(row.get("images") or []),
            sizes=cls._parse_sizes(row.get("sizes")),
            commitments=cls._parse_commitments(row.get("commitments")),
            notification_history=NotificationHistory.from_json(row.get("notification_history")),
        )

    async def find_by_status_and_ends_at_range(
        self, status: DealStatus, start: datetime, end: datetime
    ) -> list[Deal]:
        """Deals with the given status and ``start < deal_ends_at <= end``."""
        query = f"""
            {self.DEAL_SELECT}
            WHERE d.status = %s
              AND d.deal_ends_at > %s
              AND d.deal_ends_at <= %s
            ORDER BY d.deal_ends_at ASC, d.id ASC
        """
        rows = await fetch_all(query, (str(status), start, end))
        return [self._row_to_deal(row) for row in rows]

    async def find_by_status_and_ends_at_before(self, status: DealStatus, moment: datetime) -> list[Deal]:
        """Deals with the given status and ``deal_ends_at < moment``."""
        query = f"""
            {self.DEAL_SELECT}
            WHERE d.status = %s
              AND d.deal_ends_at < %s
            ORDER BY d.deal_ends_at ASC, d.id ASC
        """
        rows = await fetch_all(query, (str(status), moment))
        return [self._row_to_deal(row) for row in rows]

    async def save(self, deal: Deal) -> None:
        """
        Persist status and notification history.

        The deal row is locked for the duration of the read-modify-write so
        concurrent sweeps cannot drop each other's receipts. Stored receipts
        are merged with the in-memory ones, and a stored ``inactive`` status
        is never overwritten with ``active``.
        """
        try:
            async with db_pool.transaction() as conn:
                current = await fetch_one(
                    "SELECT status, notification_history FROM deals WHERE id = %s FOR UPDATE",
                    (deal.id,),
                    connection=conn,
                )
                if not current:
                    raise DealRepositoryError(f"Deal {deal.id} not found", operation="save_deal")

                stored_history = NotificationHistory.from_json(current.get("notification_history"))
                merged_history = stored_history.merge(deal.notification_history)

                status = deal.status
                if current["status"] == DealStatus.INACTIVE:
                    status = DealStatus.INACTIVE

                await execute_query(
                    """
                    UPDATE deals
                    SET status = %s,
                        notification_history = %s,
                        updated_at = NOW()
                    WHERE id = %s
                    """,
                    (str(status), Jsonb(merged_history.to_json()), deal.id),
                    connection=conn,
                )

        except DatabaseError:
            raise
        except Exception as e:
            logger.error("Deal save failed", deal_id=deal.id, error=str(e), error_type=type(e).__name__)
            raise DealRepositoryError(f"Failed to save deal {deal.id}: {e}", operation="save_deal") from e

        deal.status = status
        deal.notification_history = merged_history
        logger.debug("Deal saved", deal_id=deal.id, status=str(status))


# Singleton used by the job wiring
deal_repository = DealRepository()
