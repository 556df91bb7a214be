"""
Metrics engine: derived business metrics computed from the cache store.

Every metric is recomputed from raw rows on each call; nothing here is
cached. Store errors propagate unchanged to the caller.

Conventions:
- Money is summed in minor units and converted/rounded only on output.
- "change" is percent vs. the equal-length window right before `start`,
  and 0 when the previous value is 0.
- Dates are UTC calendar days.
"""
import asyncio
import math
from datetime import datetime, date, time, timedelta, timezone
from typing import Callable, List, Optional, Tuple, Union

from whop_analytics.config import config, MetricsConfig
from whop_analytics.interfaces import MetricsStore
from whop_analytics.models import (
    CustomerSegment,
    DashboardSummary,
    Membership,
    MembershipStatus,
    MetricResult,
    ProductMetric,
    Segment,
    TimePoint,
    percent_change,
    round_currency,
    to_major_units,
    utc_now,
)
from whop_analytics.observability import get_logger, Timer
from whop_analytics.store.metrics_repo import MembershipFilter

logger = get_logger(__name__)

DateLike = Union[date, datetime]

SNAPSHOT_METRICS = ("daily_revenue", "active_members", "churn_rate", "mrr")


def _as_start(value: DateLike) -> datetime:
    """A bare date means the first instant of that UTC day."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _as_end(value: DateLike) -> datetime:
    """A bare date means the last instant of that UTC day."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


def period_days(start: datetime, end: datetime) -> int:
    """Range length rounded up to whole days, never negative."""
    seconds = (end - start).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def previous_period(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """The equal-length window immediately before `start`."""
    shift = timedelta(days=period_days(start, end))
    return start - shift, end - shift


def month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class MetricsEngine:
    """
    Computes dashboard metrics for one company at a time.

    Usage:
        engine = MetricsEngine(store)
        summary = await engine.summarize("biz_123")
        print(summary.revenue.value, summary.revenue.change)

    The clock is injectable so tests can pin "now".
    """

    def __init__(
        self,
        store: MetricsStore,
        clock: Callable[[], datetime] = utc_now,
        settings: Optional[MetricsConfig] = None,
    ):
        self.store = store
        self.clock = clock
        self.settings = settings or config.metrics

    # ─── Revenue ─────────────────────────────────────────────────────────────

    async def _revenue_minor(self, company_id: str, start: datetime, end: datetime) -> Tuple[int, int]:
        """(current, previous) paid revenue in minor units."""
        prev_start, prev_end = previous_period(start, end)
        current, previous = await asyncio.gather(
            self.store.sum_paid_revenue(company_id, start, end),
            self.store.sum_paid_revenue(company_id, prev_start, prev_end),
        )
        return current, previous

    async def revenue(self, company_id: str, start: DateLike, end: DateLike) -> MetricResult:
        """Paid revenue with paid_at in [start, end], vs. the preceding window."""
        current, previous = await self._revenue_minor(company_id, _as_start(start), _as_end(end))
        return MetricResult(
            value=round_currency(to_major_units(current)),
            change=percent_change(current, previous),
        )

    # ─── Members ─────────────────────────────────────────────────────────────

    def _live_members(self, company_id: str) -> MembershipFilter:
        return MembershipFilter(company_id).valid(True).statuses(MembershipStatus.live_statuses())

    async def _active_count(self, company_id: str) -> int:
        return await self.store.count_memberships(self._live_members(company_id))

    async def active_member_count(self, company_id: str) -> MetricResult:
        """Valid active/trialing memberships, vs. those created before the churn window."""
        window_start = self.clock() - timedelta(days=self.settings.churn_window_days)
        current, baseline = await asyncio.gather(
            self._active_count(company_id),
            self.store.count_memberships(
                self._live_members(company_id).created_before(window_start)
            ),
        )
        return MetricResult(value=current, change=percent_change(current, baseline))

    async def churn_rate(self, company_id: str) -> float:
        """
        Percent of members lost over the trailing churn window.

        churned / active_at_window_start * 100, where the denominator is valid
        memberships created before the window and the numerator is invalid
        cancelled/expired memberships whose expiry falls inside the window.
        """
        now = self.clock()
        window_start = now - timedelta(days=self.settings.churn_window_days)
        denominator, churned = await asyncio.gather(
            self.store.count_memberships(
                MembershipFilter(company_id).valid(True).created_before(window_start)
            ),
            self.store.count_memberships(
                MembershipFilter(company_id)
                .valid(False)
                .statuses(MembershipStatus.churned_statuses())
                .expires_between(window_start, now)
            ),
        )
        if not denominator:
            return 0.0
        return churned / denominator * 100

    # ─── Time series ─────────────────────────────────────────────────────────

    async def revenue_time_series(self, company_id: str, days: int = 30) -> List[TimePoint]:
        """Daily paid revenue over the trailing window. Sparse, ascending."""
        since = self.clock() - timedelta(days=days)
        rows = await self.store.paid_revenue_by_day(company_id, since)
        return [
            TimePoint(date=day.isoformat(), value=round_currency(to_major_units(minor)))
            for day, minor in rows
        ]

    async def member_growth_time_series(self, company_id: str, days: int = 30) -> List[TimePoint]:
        """Memberships created per day over the trailing window. Sparse, ascending."""
        since = self.clock() - timedelta(days=days)
        rows = await self.store.memberships_created_by_day(company_id, since)
        return [TimePoint(date=day.isoformat(), value=count) for day, count in rows]

    # ─── Products ────────────────────────────────────────────────────────────

    async def top_products(self, company_id: str, limit: Optional[int] = None) -> List[ProductMetric]:
        """Best-selling products by paid revenue; ties ordered by product id."""
        if limit is None:
            limit = self.settings.top_products_limit
        if limit <= 0:
            return []
        rows = await self.store.paid_revenue_by_product(company_id, limit)
        return [
            ProductMetric(
                product_id=product_id,
                product_name=name or "Unknown Product",
                revenue=round_currency(to_major_units(minor)),
                count=count,
            )
            for product_id, name, minor, count in rows
        ][:limit]

    # ─── Per-user ratios ─────────────────────────────────────────────────────

    async def _arpu_major(self, company_id: str, start: datetime, end: datetime) -> Tuple[float, float]:
        """(arpu, change) in unrounded major units.

        The previous-period ARPU divides by the current member count as well,
        so its change equals the revenue change whenever members > 0.
        """
        (current, previous), members = await asyncio.gather(
            self._revenue_minor(company_id, start, end),
            self._active_count(company_id),
        )
        if not members:
            return 0.0, 0.0
        arpu = to_major_units(current) / members
        previous_arpu = to_major_units(previous) / members
        return arpu, percent_change(arpu, previous_arpu)

    async def arpu(self, company_id: str, start: DateLike, end: DateLike) -> MetricResult:
        """Average revenue per active member over [start, end]."""
        value, change = await self._arpu_major(company_id, _as_start(start), _as_end(end))
        return MetricResult(value=round_currency(value), change=change)

    async def mrr(self, company_id: str) -> MetricResult:
        """Trailing-30-day paid revenue, or zero when nobody is subscribed."""
        members = await self._active_count(company_id)
        if not members:
            return MetricResult(value=0.0, change=0.0)
        now = self.clock()
        return await self.revenue(company_id, now - timedelta(days=30), now)

    async def clv(self, company_id: str) -> MetricResult:
        """Customer lifetime value from 90-day ARPU and the churn rate."""
        now = self.clock()
        (arpu, change), churn = await asyncio.gather(
            self._arpu_major(company_id, now - timedelta(days=self.settings.clv_window_days), now),
            self.churn_rate(company_id),
        )
        if churn > 0:
            value = arpu / (churn / 100)
        else:
            value = arpu * self.settings.clv_fallback_multiplier
        return MetricResult(value=round_currency(value), change=change)

    # ─── Segmentation ────────────────────────────────────────────────────────

    def _classify(self, membership: Membership, now: datetime) -> List[Segment]:
        """Every segment a membership matches. The filters may overlap."""
        window_start = now - timedelta(days=self.settings.churn_window_days)
        at_risk_until = now + timedelta(days=self.settings.at_risk_window_days)
        created = membership.created_at
        expires = membership.expires_at
        segments = []

        if membership.valid and created is not None and created > window_start:
            segments.append(Segment.NEW)
        if (
            membership.valid
            and membership.status == MembershipStatus.ACTIVE.value
            and created is not None
            and created <= window_start
        ):
            segments.append(Segment.ACTIVE)
        if membership.valid and expires is not None and now < expires < at_risk_until:
            segments.append(Segment.AT_RISK)
        if not membership.valid or membership.status in MembershipStatus.churned_statuses():
            segments.append(Segment.CHURNED)

        return segments

    async def customer_segmentation(self, company_id: str) -> List[CustomerSegment]:
        """
        Classify paying customers by their latest membership.

        Always returns four rows (new, active, at_risk, churned). Percentages
        are of all paying customers, so they need not sum to 100.
        """
        total, memberships = await asyncio.gather(
            self.store.count_paying_customers(company_id),
            self.store.latest_memberships_of_paying_customers(company_id),
        )
        now = self.clock()
        counts = {segment: 0 for segment in Segment}
        for membership in memberships:
            for segment in self._classify(membership, now):
                counts[segment] += 1

        return [
            CustomerSegment(
                segment=segment.value,
                count=counts[segment],
                percentage=(counts[segment] / total * 100) if total else 0.0,
                color=self.settings.get_color(segment.value),
            )
            for segment in Segment
        ]

    # ─── Composition ─────────────────────────────────────────────────────────

    async def summarize(
        self,
        company_id: str,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
    ) -> DashboardSummary:
        """
        All dashboard metrics for a date range, computed concurrently.

        end defaults to now and start to the first instant of end's month.
        Any failing metric fails the whole summary.
        """
        end_dt = _as_end(end) if end is not None else self.clock()
        start_dt = _as_start(start) if start is not None else month_start(end_dt)
        series_days = min(period_days(start_dt, end_dt), self.settings.max_time_series_days)

        with Timer("summarize", logger):
            (
                revenue,
                member_count,
                churn,
                arpu,
                mrr,
                clv,
                revenue_series,
                member_series,
                top_products,
                segments,
            ) = await asyncio.gather(
                self.revenue(company_id, start_dt, end_dt),
                self.active_member_count(company_id),
                self.churn_rate(company_id),
                self.arpu(company_id, start_dt, end_dt),
                self.mrr(company_id),
                self.clv(company_id),
                self.revenue_time_series(company_id, series_days),
                self.member_growth_time_series(company_id, series_days),
                self.top_products(company_id),
                self.customer_segmentation(company_id),
            )

        return DashboardSummary(
            revenue=revenue,
            member_count=member_count,
            churn_rate=churn,
            arpu=arpu,
            mrr=mrr,
            clv=clv,
            revenue_time_series=revenue_series,
            member_growth_time_series=member_series,
            top_products=top_products,
            customer_segments=segments,
            generated_at=self.clock(),
        )

    # ─── Snapshots ───────────────────────────────────────────────────────────

    async def record_snapshot(self, company_id: str) -> int:
        """
        Write today's headline metrics into the metrics_cache table.

        The snapshot is for history charts only. Returns the number of
        metrics written.
        """
        now = self.clock()
        today = now.date()
        day_start = _as_start(today)

        revenue, members, churn, mrr = await asyncio.gather(
            self.revenue(company_id, day_start, now),
            self.active_member_count(company_id),
            self.churn_rate(company_id),
            self.mrr(company_id),
        )
        values = {
            "daily_revenue": (revenue.value, {"change": revenue.change}),
            "active_members": (members.value, {"change": members.change}),
            "churn_rate": (churn, None),
            "mrr": (mrr.value, {"change": mrr.change}),
        }
        for metric_type in SNAPSHOT_METRICS:
            value, metadata = values[metric_type]
            await self.store.cache_metric(company_id, today, metric_type, value, metadata)

        logger.info(
            f"Recorded {len(values)} metric snapshots",
            extra={"company_id": company_id, "date": today.isoformat()}
        )
        return len(values)
