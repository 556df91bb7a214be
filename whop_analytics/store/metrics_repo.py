"""
Metrics repository: the filtered counts, sums and groupings MetricsEngine reads.

All amounts returned here are integer minor units. Dates are UTC calendar
dates, since timestamps are stored as naive UTC.
"""
from datetime import datetime, date
from typing import Optional, List, Sequence, Tuple

from whop_analytics.models import Membership, PaymentStatus
from whop_analytics.store.base import to_db_timestamp, from_db_timestamp


class MembershipFilter:
    """
    WHERE-clause builder for membership counts.

    Usage:
        where, params = MembershipFilter(company_id).valid(True).statuses(["active"]).build()
    """

    def __init__(self, company_id: str):
        self._conditions = ["company_id = ?"]
        self._params: list = [company_id]

    def valid(self, value: bool) -> "MembershipFilter":
        self._conditions.append("valid = ?")
        self._params.append(value)
        return self

    def statuses(self, values: Sequence[str]) -> "MembershipFilter":
        placeholders = ",".join("?" for _ in values)
        self._conditions.append(f"status IN ({placeholders})")
        self._params.extend(values)
        return self

    def created_before(self, moment: datetime) -> "MembershipFilter":
        self._conditions.append("created_at < ?")
        self._params.append(to_db_timestamp(moment))
        return self

    def expires_between(self, start: datetime, end: datetime) -> "MembershipFilter":
        self._conditions.append("expires_at >= ? AND expires_at <= ?")
        self._params.extend([to_db_timestamp(start), to_db_timestamp(end)])
        return self

    def build(self) -> Tuple[str, list]:
        return " AND ".join(self._conditions), list(self._params)


class MetricsMixin:
    """Read side of the store, used by MetricsEngine."""

    async def sum_paid_revenue(self, company_id: str, start: datetime, end: datetime) -> int:
        """Sum of paid final_amount with paid_at in [start, end]."""
        return int(await self._fetch_scalar(
            """
            SELECT SUM(final_amount) FROM payments
            WHERE company_id = ? AND status = ?
              AND paid_at >= ? AND paid_at <= ?
            """,
            [company_id, PaymentStatus.PAID.value, to_db_timestamp(start), to_db_timestamp(end)]
        ))

    async def count_memberships(self, flt: MembershipFilter) -> int:
        where, params = flt.build()
        return int(await self._fetch_scalar(
            f"SELECT COUNT(*) FROM memberships WHERE {where}", params
        ))

    async def paid_revenue_by_day(self, company_id: str, since: datetime) -> List[Tuple[date, int]]:
        """Daily paid revenue since a moment. Days without payments are absent."""
        rows = await self._fetch_all(
            """
            SELECT CAST(paid_at AS DATE) AS day, SUM(final_amount)
            FROM payments
            WHERE company_id = ? AND status = ?
              AND paid_at IS NOT NULL AND paid_at >= ?
            GROUP BY day
            ORDER BY day ASC
            """,
            [company_id, PaymentStatus.PAID.value, to_db_timestamp(since)]
        )
        return [(row[0], int(row[1])) for row in rows]

    async def memberships_created_by_day(self, company_id: str, since: datetime) -> List[Tuple[date, int]]:
        """Daily count of memberships created since a moment. Sparse."""
        rows = await self._fetch_all(
            """
            SELECT CAST(created_at AS DATE) AS day, COUNT(*)
            FROM memberships
            WHERE company_id = ? AND created_at IS NOT NULL AND created_at >= ?
            GROUP BY day
            ORDER BY day ASC
            """,
            [company_id, to_db_timestamp(since)]
        )
        return [(row[0], int(row[1])) for row in rows]

    async def paid_revenue_by_product(self, company_id: str, limit: int) -> List[Tuple[str, Optional[str], int, int]]:
        """
        Paid revenue grouped by product.

        Returns:
            (product_id, product_name or None, revenue_minor, count) rows,
            revenue descending, ties by product id ascending.
        """
        rows = await self._fetch_all(
            """
            SELECT p.product_id, pr.name, SUM(p.final_amount) AS revenue, COUNT(*) AS cnt
            FROM payments p
            LEFT JOIN products pr
                ON pr.company_id = p.company_id AND pr.id = p.product_id
            WHERE p.company_id = ? AND p.status = ? AND p.product_id IS NOT NULL
            GROUP BY p.product_id, pr.name
            ORDER BY revenue DESC, p.product_id ASC
            LIMIT ?
            """,
            [company_id, PaymentStatus.PAID.value, limit]
        )
        return [(row[0], row[1], int(row[2]), int(row[3])) for row in rows]

    async def count_paying_customers(self, company_id: str) -> int:
        """Distinct users with at least one paid payment."""
        return int(await self._fetch_scalar(
            """
            SELECT COUNT(DISTINCT user_id) FROM payments
            WHERE company_id = ? AND status = ? AND user_id IS NOT NULL
            """,
            [company_id, PaymentStatus.PAID.value]
        ))

    async def latest_memberships_of_paying_customers(self, company_id: str) -> List[Membership]:
        """Most recently created membership of every paying customer."""
        rows = await self._fetch_all(
            """
            WITH paying AS (
                SELECT DISTINCT user_id FROM payments
                WHERE company_id = ? AND status = ? AND user_id IS NOT NULL
            ),
            ranked AS (
                SELECT m.*,
                       ROW_NUMBER() OVER (
                           PARTITION BY m.user_id
                           ORDER BY m.created_at DESC NULLS LAST, m.id DESC
                       ) AS rn
                FROM memberships m
                JOIN paying ON paying.user_id = m.user_id
                WHERE m.company_id = ?
            )
            SELECT id, company_id, product_id, user_id, status, valid,
                   created_at, expires_at, renewal_period_start, renewal_period_end,
                   cancel_at_period_end
            FROM ranked
            WHERE rn = 1
            ORDER BY user_id
            """,
            [company_id, PaymentStatus.PAID.value, company_id]
        )
        return [
            Membership(
                id=row[0],
                company_id=row[1],
                product_id=row[2],
                user_id=row[3],
                status=row[4],
                valid=bool(row[5]),
                created_at=from_db_timestamp(row[6]),
                expires_at=from_db_timestamp(row[7]),
                renewal_period_start=from_db_timestamp(row[8]),
                renewal_period_end=from_db_timestamp(row[9]),
                cancel_at_period_end=bool(row[10]),
            )
            for row in rows
        ]
