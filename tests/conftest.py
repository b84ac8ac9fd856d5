"""
NetBill - Test Configuration

Pytest fixtures and configuration.
"""

import os

# Point the application at SQLite before anything imports netbill.database
os.environ.setdefault("DATABASE_URL_ASYNC", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "testing")

from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

import netbill.models  # noqa: F401  registers every table on Base.metadata
from netbill.database import Base
from netbill.models.customer import Customer, CustomerStatus, Package
from netbill.models.discount import Discount, DiscountStatus, DiscountType, TargetType
from netbill.models.invoice import Invoice, InvoiceStatus
from netbill.models.referral import ReferralCode
from netbill.services.settings_service import invalidate_referral_settings_cache


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """In-memory database shared by every connection of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def reset_referral_settings_cache():
    """Settings are cached per process; every test starts from the defaults."""
    invalidate_referral_settings_cache()
    yield
    invalidate_referral_settings_cache()


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest_asyncio.fixture
async def test_package(db_session: AsyncSession) -> Package:
    """Create a test package."""
    package = Package(
        id=uuid4(),
        name="Home 20 Mbps",
        price=Decimal("100000.00"),
    )
    db_session.add(package)
    await db_session.commit()
    return package


@pytest_asyncio.fixture
async def other_package(db_session: AsyncSession) -> Package:
    package = Package(
        id=uuid4(),
        name="Business 50 Mbps",
        price=Decimal("250000.00"),
    )
    db_session.add(package)
    await db_session.commit()
    return package


@pytest_asyncio.fixture
async def active_customer(db_session: AsyncSession, test_package: Package) -> Customer:
    """An active subscriber; referrals by them earn a bill discount."""
    customer = Customer(
        id=uuid4(),
        name="Budi Santoso",
        phone="+62 812 0000 0001",
        address="Jl. Merdeka 10, Kecamatan Sukamaju, Bandung",
        package_id=test_package.id,
        status=CustomerStatus.ACTIVE,
    )
    db_session.add(customer)
    await db_session.commit()
    return customer


@pytest_asyncio.fixture
async def inactive_customer(db_session: AsyncSession, test_package: Package) -> Customer:
    customer = Customer(
        id=uuid4(),
        name="Siti Aminah",
        phone="+62 812 0000 0002",
        address="Jl. Pahlawan 3, Cimahi",
        package_id=test_package.id,
        status=CustomerStatus.INACTIVE,
    )
    db_session.add(customer)
    await db_session.commit()
    return customer


@pytest_asyncio.fixture
async def new_customer(db_session: AsyncSession, test_package: Package) -> Customer:
    """A freshly registered customer redeeming a referral code."""
    customer = Customer(
        id=uuid4(),
        name="Andi Wijaya",
        phone="+62 812 0000 0003",
        address="Jl. Asia Afrika 5, Bandung",
        package_id=test_package.id,
        status=CustomerStatus.PENDING,
    )
    db_session.add(customer)
    await db_session.commit()
    return customer


@pytest_asyncio.fixture
async def unpaid_invoice(db_session: AsyncSession, new_customer: Customer) -> Invoice:
    invoice = Invoice(
        id=uuid4(),
        invoice_number="INV-TEST-0001",
        customer_id=new_customer.id,
        package_id=new_customer.package_id,
        amount=Decimal("100000.00"),
        discount_amount=Decimal("0.00"),
        final_amount=Decimal("100000.00"),
        due_date=date.today(),
        status=InvoiceStatus.UNPAID,
    )
    db_session.add(invoice)
    await db_session.commit()
    return invoice


@pytest_asyncio.fixture
async def make_discount(db_session: AsyncSession):
    """Factory inserting catalog discounts directly."""

    async def _make(
        name: str = "Outage compensation",
        discount_type: DiscountType = DiscountType.FIXED,
        discount_value: Decimal = Decimal("20000"),
        target_type: TargetType = TargetType.ALL,
        target_ids=None,
        max_discount_amount=None,
        start_date: date = None,
        end_date: date = None,
        status: DiscountStatus = DiscountStatus.ACTIVE,
    ) -> Discount:
        discount = Discount(
            id=uuid4(),
            name=name,
            discount_type=discount_type,
            discount_value=Decimal(str(discount_value)),
            max_discount_amount=max_discount_amount,
            target_type=target_type,
            target_ids=list(target_ids or []),
            start_date=start_date or date.today() - timedelta(days=1),
            end_date=end_date or date.today() + timedelta(days=30),
            status=status,
            apply_to_existing_invoices=False,
        )
        db_session.add(discount)
        await db_session.commit()
        return discount

    return _make


@pytest_asyncio.fixture
async def make_referral_code(db_session: AsyncSession):
    """Factory inserting referral codes directly."""

    async def _make(
        code: str,
        customer_id=None,
        max_uses: int = 50,
        usage_count: int = 0,
        expires_in_days: int = 365,
        is_active: bool = True,
    ) -> ReferralCode:
        from datetime import datetime

        referral_code = ReferralCode(
            id=uuid4(),
            customer_id=customer_id,
            code=code,
            max_uses=max_uses,
            usage_count=usage_count,
            expires_at=datetime.utcnow() + timedelta(days=expires_in_days),
            is_active=is_active,
        )
        db_session.add(referral_code)
        await db_session.commit()
        return referral_code

    return _make
