"""
Domain models for Whop analytics data.

Three groups of types live here:
- Upstream input types (UpstreamPayment, UpstreamMember, AccessPassRef):
  explicit, fully-optional views of the loosely-typed Whop payloads.
  Normalization happens once, in their from_api/to_* methods.
- Cache rows (Company, Product, Membership, Payment): the normalized
  schema written to the store. Money is integer minor units.
- Metric results (MetricResult, TimePoint, ProductMetric, CustomerSegment,
  SyncResult, SyncStatus, DashboardSummary): what the core hands back
  to callers. Money is major units here.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional, List, Dict, Any


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class PaymentStatus(str, Enum):
    """Normalized payment status stored in the cache."""
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"
    PENDING = "pending"
    UNKNOWN = "unknown"

    @classmethod
    def from_api(cls, raw: Optional[str]) -> "PaymentStatus":
        """Map an upstream receipt status. Whop reports successful receipts as 'succeeded'."""
        if not raw:
            return cls.UNKNOWN
        value = str(raw).lower()
        if value == "succeeded":
            return cls.PAID
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class MembershipStatus(str, Enum):
    """Normalized membership status stored in the cache."""
    TRIALING = "trialing"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PAST_DUE = "past_due"
    UNKNOWN = "unknown"

    @classmethod
    def from_api(cls, raw: Optional[str]) -> "MembershipStatus":
        if not raw:
            return cls.UNKNOWN
        value = str(raw).lower()
        if value == "canceled":
            return cls.CANCELLED
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def live_statuses(cls) -> List[str]:
        """Statuses counted as an active member."""
        return [cls.ACTIVE.value, cls.TRIALING.value]

    @classmethod
    def churned_statuses(cls) -> List[str]:
        """Statuses counted as churned."""
        return [cls.CANCELLED.value, cls.EXPIRED.value]


class Segment(str, Enum):
    """Customer segment buckets, in display order."""
    NEW = "new"
    ACTIVE = "active"
    AT_RISK = "at_risk"
    CHURNED = "churned"


# ═══════════════════════════════════════════════════════════════════════════════
# CONVERSIONS
# ═══════════════════════════════════════════════════════════════════════════════

def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def epoch_to_datetime(value: Any) -> Optional[datetime]:
    """Convert upstream epoch seconds to an aware UTC datetime.

    Missing, zero or unparseable values become None.
    """
    if value is None or value == "" or value == 0:
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (ValueError, TypeError, OverflowError, OSError):
        return None


def to_minor_units(amount: Any) -> int:
    """Convert a decimal major-unit amount (19.99) to integer minor units (1999)."""
    if amount is None or amount == "":
        return 0
    try:
        cents = Decimal(str(amount)) * 100
    except (InvalidOperation, ValueError):
        return 0
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_units(minor: float) -> float:
    """Convert minor units to major units. No rounding here."""
    return minor / 100


def round_currency(value: float) -> float:
    """Round a major-unit amount for output."""
    return round(value, 2)


def percent_change(current: float, previous: Optional[float]) -> float:
    """Period-over-period change in percent.

    Defined as 0 when there is no previous value, so 0 -> N reports 0%.
    """
    if not previous:
        return 0.0
    return (current - previous) / previous * 100


# ═══════════════════════════════════════════════════════════════════════════════
# CACHE ROWS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Company:
    """Company (tenant) row."""
    id: str
    last_sync: Optional[datetime] = None
    subscription_tier: str = "free"
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass
class Product:
    """Product (access pass) row."""
    id: str
    company_id: str
    name: str
    created_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "created_at": self.created_at,
            "metadata": self.metadata,
        }


@dataclass
class Membership:
    """Membership row."""
    id: str
    company_id: str
    status: str
    valid: bool
    product_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    renewal_period_start: Optional[datetime] = None
    renewal_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "status": self.status,
            "valid": self.valid,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "renewal_period_start": self.renewal_period_start,
            "renewal_period_end": self.renewal_period_end,
            "cancel_at_period_end": self.cancel_at_period_end,
        }


@dataclass
class Payment:
    """Payment row. final_amount is in minor units."""
    id: str
    company_id: str
    status: str
    final_amount: int
    currency: str = "usd"
    product_id: Optional[str] = None
    membership_id: Optional[str] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "product_id": self.product_id,
            "membership_id": self.membership_id,
            "user_id": self.user_id,
            "status": self.status,
            "final_amount": self.final_amount,
            "currency": self.currency,
            "created_at": self.created_at,
            "paid_at": self.paid_at,
            "refunded_at": self.refunded_at,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# UPSTREAM INPUT TYPES
# ═══════════════════════════════════════════════════════════════════════════════

def _nested_id(data: Optional[Dict[str, Any]]) -> Optional[str]:
    if isinstance(data, dict) and data.get("id"):
        return str(data["id"])
    return None


@dataclass(frozen=True)
class AccessPassRef:
    """Product reference embedded in a receipt."""
    id: str
    name: Optional[str] = None
    visibility: Optional[str] = None
    stock: Optional[int] = None
    initial_stock: Optional[int] = None

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> Optional["AccessPassRef"]:
        if not isinstance(data, dict) or not data.get("id"):
            return None
        return cls(
            id=str(data["id"]),
            name=data.get("name") or data.get("title"),
            visibility=data.get("visibility"),
            stock=data.get("stock"),
            initial_stock=data.get("initialStock"),
        )

    def to_product(self, company_id: str, seen_at: datetime) -> Product:
        return Product(
            id=self.id,
            company_id=company_id,
            name=self.name or "Unnamed Product",
            created_at=seen_at,
            metadata={
                "visibility": self.visibility,
                "stock": self.stock,
                "initial_stock": self.initial_stock,
            },
        )


@dataclass(frozen=True)
class UpstreamPayment:
    """A Whop receipt, with every optional field made explicit."""
    id: str
    status: Optional[str] = None
    final_amount: Any = None
    currency: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    access_pass: Optional[AccessPassRef] = None
    membership_id: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "UpstreamPayment":
        """Create UpstreamPayment from a Whop receipt node."""
        member = data.get("member") or {}
        return cls(
            id=str(data["id"]),
            status=data.get("status"),
            final_amount=data.get("finalAmount"),
            currency=data.get("currency"),
            created_at=epoch_to_datetime(data.get("createdAt")),
            paid_at=epoch_to_datetime(data.get("paidAt")),
            refunded_at=epoch_to_datetime(data.get("refundedAt")),
            access_pass=AccessPassRef.from_api(data.get("accessPass")),
            membership_id=_nested_id(data.get("membership")),
            user_id=_nested_id(member.get("user") if isinstance(member, dict) else None),
        )

    def to_payment(self, company_id: str) -> Payment:
        return Payment(
            id=self.id,
            company_id=company_id,
            status=PaymentStatus.from_api(self.status).value,
            final_amount=to_minor_units(self.final_amount),
            currency=(self.currency or "usd").lower(),
            product_id=self.access_pass.id if self.access_pass else None,
            membership_id=self.membership_id,
            user_id=self.user_id,
            created_at=self.created_at,
            paid_at=self.paid_at,
            refunded_at=self.refunded_at,
        )


@dataclass(frozen=True)
class UpstreamMember:
    """A Whop member record; membership fields are embedded in it."""
    id: str
    status: Optional[str] = None
    valid: Optional[bool] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    renewal_period_start: Optional[datetime] = None
    renewal_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    access_pass_ids: tuple = ()
    user_id: Optional[str] = None

    @classmethod
    def from_api(cls, data: Optional[Dict[str, Any]]) -> Optional["UpstreamMember"]:
        """Create UpstreamMember from a Whop member node. Records without an id yield None."""
        if not isinstance(data, dict) or not data.get("id"):
            return None
        passes = data.get("accessPasses") or []
        return cls(
            id=str(data["id"]),
            status=data.get("status"),
            valid=data.get("valid"),
            created_at=epoch_to_datetime(data.get("createdAt")),
            expires_at=epoch_to_datetime(data.get("expiresAt")),
            renewal_period_start=epoch_to_datetime(data.get("renewalPeriodStart")),
            renewal_period_end=epoch_to_datetime(data.get("renewalPeriodEnd")),
            cancel_at_period_end=data.get("cancelAtPeriodEnd"),
            access_pass_ids=tuple(p["id"] for p in passes if isinstance(p, dict) and p.get("id")),
            user_id=_nested_id(data.get("user")),
        )

    def to_membership(self, company_id: str) -> Membership:
        return Membership(
            id=self.id,
            company_id=company_id,
            product_id=str(self.access_pass_ids[0]) if self.access_pass_ids else None,
            user_id=self.user_id,
            status=MembershipStatus.from_api(self.status).value,
            valid=bool(self.valid),
            created_at=self.created_at,
            expires_at=self.expires_at,
            renewal_period_start=self.renewal_period_start,
            renewal_period_end=self.renewal_period_end,
            cancel_at_period_end=bool(self.cancel_at_period_end),
        )


def extract_products(
    payments: List[UpstreamPayment],
    company_id: str,
    seen_at: Optional[datetime] = None,
) -> List[Product]:
    """Unique products referenced by receipts. First occurrence wins."""
    seen_at = seen_at or utc_now()
    products: Dict[str, Product] = {}
    for payment in payments:
        ref = payment.access_pass
        if ref and ref.id not in products:
            products[ref.id] = ref.to_product(company_id, seen_at)
    return list(products.values())


# ═══════════════════════════════════════════════════════════════════════════════
# METRIC RESULTS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class MetricResult:
    """A metric value with its period-over-period change (percent)."""
    value: float
    change: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "change": self.change}


@dataclass
class TimePoint:
    """One point of a sparse daily series. date is YYYY-MM-DD."""
    date: str
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "value": self.value}


@dataclass
class ProductMetric:
    """Revenue and sale count for one product."""
    product_id: str
    product_name: str
    revenue: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "productId": self.product_id,
            "productName": self.product_name,
            "revenue": self.revenue,
            "count": self.count,
        }


@dataclass
class CustomerSegment:
    """Customer count in one segment."""
    segment: str
    count: int
    percentage: float
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segment": self.segment,
            "count": self.count,
            "percentage": self.percentage,
            "color": self.color,
        }


@dataclass
class SyncResult:
    """Outcome of one sync call. Failures are reported here, never raised."""
    success: bool
    synced_at: Optional[datetime]
    payments_count: int = 0
    memberships_count: int = 0
    products_count: int = 0
    error: Optional[str] = None
    skipped: bool = False

    @classmethod
    def failed(cls, error: str, synced_at: Optional[datetime] = None) -> "SyncResult":
        return cls(success=False, synced_at=synced_at, error=error)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": self.success,
            "paymentsCount": self.payments_count,
            "membershipsCount": self.memberships_count,
            "productsCount": self.products_count,
            "syncedAt": self.synced_at.isoformat() if self.synced_at else None,
            "skipped": self.skipped,
        }
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class SyncStatus:
    """Freshness of a company's cached data."""
    last_sync: Optional[datetime]
    needs_sync: bool
    minutes_since_sync: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastSync": self.last_sync.isoformat() if self.last_sync else None,
            "needsSync": self.needs_sync,
            "minutesSinceSync": self.minutes_since_sync,
        }


@dataclass
class DashboardSummary:
    """All dashboard metrics for one company and date range."""
    revenue: MetricResult
    member_count: MetricResult
    churn_rate: float
    arpu: MetricResult
    mrr: MetricResult
    clv: MetricResult
    revenue_time_series: List[TimePoint]
    top_products: List[ProductMetric]
    customer_segments: List[CustomerSegment]
    generated_at: datetime
    member_growth_time_series: List[TimePoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization (camelCase keys)."""
        return {
            "revenue": self.revenue.to_dict(),
            "memberCount": self.member_count.to_dict(),
            "churnRate": self.churn_rate,
            "arpu": self.arpu.to_dict(),
            "mrr": self.mrr.to_dict(),
            "clv": self.clv.to_dict(),
            "revenueTimeSeries": [p.to_dict() for p in self.revenue_time_series],
            "memberGrowthTimeSeries": [p.to_dict() for p in self.member_growth_time_series],
            "topProducts": [p.to_dict() for p in self.top_products],
            "customerSegments": [s.to_dict() for s in self.customer_segments],
            "generatedAt": self.generated_at.isoformat(),
        }
