"""
Pytest configuration and shared fixtures.
"""
import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Any, Optional
from unittest.mock import AsyncMock

from whop_analytics.models import Membership, Payment
from whop_analytics.store import DuckDBStore

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)
COMPANY_ID = "biz_test"


def epoch(moment: datetime) -> int:
    """Whop timestamps are epoch seconds."""
    return int(moment.timestamp())


@pytest.fixture
def now() -> datetime:
    """Fixed 'current time' shared by the injected clocks."""
    return NOW


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def company_id() -> str:
    return COMPANY_ID


@pytest.fixture
def sample_receipt() -> Dict[str, Any]:
    """Sample receipt node from the Whop GraphQL API."""
    return {
        "id": "pay_001",
        "status": "succeeded",
        "finalAmount": 19.99,
        "currency": "USD",
        "createdAt": epoch(NOW - timedelta(days=2, minutes=5)),
        "paidAt": epoch(NOW - timedelta(days=2)),
        "refundedAt": None,
        "accessPass": {
            "id": "prod_pro",
            "title": "Pro Plan",
            "visibility": "visible",
            "stock": 100,
            "initialStock": 120,
        },
        "membership": {"id": "mem_001"},
        "member": {"user": {"id": "user_001"}},
    }


@pytest.fixture
def sample_receipts(sample_receipt) -> List[Dict[str, Any]]:
    """Receipts for aggregation: two paid, one refunded, one without a product."""
    return [
        sample_receipt,
        {
            "id": "pay_002",
            "status": "succeeded",
            "finalAmount": "49.50",
            "currency": "usd",
            "createdAt": epoch(NOW - timedelta(days=1)),
            "paidAt": epoch(NOW - timedelta(days=1)),
            "accessPass": {"id": "prod_team", "name": "Team Plan"},
            "membership": {"id": "mem_002"},
            "member": {"user": {"id": "user_002"}},
        },
        {
            "id": "pay_003",
            "status": "refunded",
            "finalAmount": 19.99,
            "createdAt": epoch(NOW - timedelta(days=3)),
            "paidAt": epoch(NOW - timedelta(days=3)),
            "refundedAt": epoch(NOW - timedelta(days=1)),
            "accessPass": {"id": "prod_pro", "title": "Pro Plan (renamed)"},
            "member": {"user": {"id": "user_003"}},
        },
        {
            "id": "pay_004",
            "status": "pending",
            "finalAmount": 5,
            "createdAt": epoch(NOW - timedelta(hours=1)),
            "accessPass": None,
            "member": None,
        },
    ]


@pytest.fixture
def sample_member() -> Dict[str, Any]:
    """Sample member node; membership fields are embedded in it."""
    return {
        "id": "mem_001",
        "status": "active",
        "valid": True,
        "createdAt": epoch(NOW - timedelta(days=40)),
        "expiresAt": epoch(NOW + timedelta(days=20)),
        "renewalPeriodStart": epoch(NOW - timedelta(days=10)),
        "renewalPeriodEnd": epoch(NOW + timedelta(days=20)),
        "cancelAtPeriodEnd": False,
        "accessPasses": [{"id": "prod_pro"}, {"id": "prod_addon"}],
        "user": {"id": "user_001"},
    }


@pytest.fixture
def sample_members(sample_member) -> List[Dict[str, Any]]:
    return [
        sample_member,
        {
            "id": "mem_002",
            "status": "trialing",
            "valid": True,
            "createdAt": epoch(NOW - timedelta(days=3)),
            "expiresAt": epoch(NOW + timedelta(days=4)),
            "accessPasses": [{"id": "prod_team"}],
            "user": {"id": "user_002"},
        },
        {
            "id": "mem_003",
            "status": "canceled",
            "valid": False,
            "createdAt": epoch(NOW - timedelta(days=60)),
            "expiresAt": epoch(NOW - timedelta(days=5)),
            "accessPasses": [],
            "user": {"id": "user_003"},
        },
        # No id: dropped during normalization
        {"status": "active", "valid": True},
    ]


@pytest.fixture
def mock_whop_client(sample_receipts, sample_members):
    """Mock Whop API client returning the sample nodes."""
    client = AsyncMock()
    client.fetch_payments = AsyncMock(return_value=sample_receipts)
    client.fetch_members = AsyncMock(return_value=sample_members)
    return client


@pytest_asyncio.fixture
async def store():
    """Connected in-memory DuckDB store with an empty schema."""
    db = DuckDBStore(":memory:")
    await db.connect()
    try:
        yield db
    finally:
        await db.close()


@pytest.fixture
def make_payment(company_id):
    """Factory for paid payments; amounts are minor units."""
    def _make(
        id: str,
        amount: int,
        paid_at: Optional[datetime],
        status: str = "paid",
        product_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Payment:
        return Payment(
            id=id,
            company_id=company_id,
            status=status,
            final_amount=amount,
            product_id=product_id,
            user_id=user_id,
            created_at=paid_at,
            paid_at=paid_at,
        )
    return _make


@pytest.fixture
def make_membership(company_id):
    def _make(
        id: str,
        status: str = "active",
        valid: bool = True,
        created_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        user_id: Optional[str] = None,
        product_id: Optional[str] = None,
    ) -> Membership:
        return Membership(
            id=id,
            company_id=company_id,
            status=status,
            valid=valid,
            product_id=product_id,
            user_id=user_id,
            created_at=created_at,
            expires_at=expires_at,
        )
    return _make
