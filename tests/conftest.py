"""Shared fixtures: environment, a fresh in-memory database per test, doubles."""

import os

# Settings are read at import time; these must exist before letrents is imported.
os.environ.setdefault("JWT_SECRET", "letrents-test-secret-0123456789abcdef")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./letrents_test.db")
os.environ["SMTP_HOST"] = ""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from letrents.core.config import settings
from letrents.core.security import hash_password
from letrents.models import Base, Company, PaybillSettings, Property, Unit, User
from letrents.models.user import UserRole, UserStatus
from letrents.services.email_service import DispatchResult, EmailService

PASSWORD = "CorrectHorse42"


# ── Database ─────────────────────────────────────────────

@pytest_asyncio.fixture
async def db_session():
    """Create all tables in a fresh in-memory DB and yield a session."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        yield session

    await engine.dispose()


# ── Settings toggles ─────────────────────────────────────

@pytest.fixture
def verification_on(monkeypatch):
    monkeypatch.setattr(settings, "REQUIRE_EMAIL_VERIFICATION", True)


@pytest.fixture
def verification_off(monkeypatch):
    monkeypatch.setattr(settings, "REQUIRE_EMAIL_VERIFICATION", False)


# ── Doubles ──────────────────────────────────────────────

@pytest.fixture
def mailer():
    """Email service whose sends are recorded and always succeed."""
    svc = EmailService()
    svc.send_verification_email = AsyncMock(return_value=DispatchResult(success=True))
    svc.send_password_reset_email = AsyncMock(return_value=DispatchResult(success=True))
    svc.send_welcome_email = AsyncMock(return_value=DispatchResult(success=True))
    return svc


@pytest.fixture
def token_from_url():
    """Pull the raw secret out of the link passed to the most recent send."""
    def _extract(mock: AsyncMock) -> str:
        url = mock.call_args.args[1]
        return url.split("token=", 1)[1]

    return _extract


# ── Seed data ────────────────────────────────────────────

@pytest.fixture
def make_user(db_session):
    async def _make(
        email: str = "jane@example.com",
        password: str | None = PASSWORD,
        role: UserRole = UserRole.landlord,
        status: UserStatus = UserStatus.active,
        email_verified: bool = True,
        company_id: str | None = None,
    ) -> User:
        user = User(
            email=email,
            password_hash=hash_password(password) if password else None,
            first_name="Jane",
            last_name="Doe",
            role=role.value,
            status=status.value,
            email_verified=email_verified,
            company_id=company_id,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def estate(db_session, make_user):
    """
    One company with a paybill on shortcode 600100, a property and two
    units: A1 (rent 5000, occupied) and B2 (vacant).
    """
    company = Company(name="Doe Properties")
    db_session.add(company)
    await db_session.flush()

    landlord = await make_user(email="landlord@example.com", company_id=company.id)
    tenant = await make_user(
        email="tenant@example.com", role=UserRole.tenant, company_id=company.id
    )

    prop = Property(company_id=company.id, name="Riverside Court")
    db_session.add(prop)
    await db_session.flush()

    occupied = Unit(
        company_id=company.id,
        property_id=prop.id,
        unit_number="A1",
        rent_amount=Decimal("5000.00"),
        current_tenant_id=tenant.id,
    )
    vacant = Unit(
        company_id=company.id,
        property_id=prop.id,
        unit_number="B2",
        rent_amount=Decimal("4500.00"),
    )
    paybill = PaybillSettings(
        company_id=company.id,
        paybill_number="600100",
        business_shortcode="600100",
        consumer_key="enc-key",
        consumer_secret="enc-secret",
        validation_url="https://api.example.com/api/v1/mpesa/c2b/validation",
        confirmation_url="https://api.example.com/api/v1/mpesa/c2b/confirmation",
        is_active=True,
        auto_reconcile=False,
        created_by=landlord.id,
    )
    db_session.add_all([occupied, vacant, paybill])
    await db_session.commit()

    return {
        "company": company,
        "landlord": landlord,
        "tenant": tenant,
        "property": prop,
        "unit": occupied,
        "vacant_unit": vacant,
        "paybill": paybill,
    }


@pytest.fixture
def c2b_payload():
    """Build a Daraja C2B callback body for unit A1 of the estate fixture."""
    def _build(**overrides) -> dict:
        payload = {
            "TransactionType": "Pay Bill",
            "TransID": "RKTQDM7W6S",
            "TransTime": "20261019143015",
            "TransAmount": "5000.00",
            "BusinessShortCode": "600100",
            "BillRefNumber": "A1",
            "InvoiceNumber": "",
            "OrgAccountBalance": "125000.00",
            "ThirdPartyTransID": "",
            "MSISDN": "254708374149",
            "FirstName": "John",
            "MiddleName": "",
            "LastName": "Kamau",
        }
        payload.update(overrides)
        return payload

    return _build
