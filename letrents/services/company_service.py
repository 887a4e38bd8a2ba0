"""
services/company_service.py
---------------------------
Business logic for owning companies and agencies.

Service layer is responsible for:
  - Constructing queries
  - Enforcing business rules (exact-name reuse of companies)
  - Returning domain objects (ORM models) to the caller
  - Never returning HTTP responses (that's the route's job)
"""

from dataclasses import dataclass
from typing import Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from letrents.core.logging import get_logger
from letrents.models.company import Agency, Company

logger = get_logger(__name__)


@dataclass(frozen=True)
class Found:
    company: Company


@dataclass(frozen=True)
class Created:
    company: Company


CompanyLookup = Union[Found, Created]


class CompanyService:

    @staticmethod
    async def get_company_by_id(db: AsyncSession, company_id: str) -> Company | None:
        result = await db.execute(select(Company).where(Company.id == company_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_company_by_name(db: AsyncSession, name: str) -> Company | None:
        result = await db.execute(
            select(Company).where(Company.name == name).order_by(Company.created_at).limit(1)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def find_or_create_company_by_name(
        db: AsyncSession, name: str, **attrs
    ) -> CompanyLookup:
        """
        Reuse a company with exactly this name, otherwise create one with
        default plan limits. Extra keyword arguments are applied only on
        creation. Raises ValueError on an empty name.
        """
        name = (name or "").strip()
        if not name:
            raise ValueError("Company name is required for landlords and agencies")

        existing = await CompanyService.get_company_by_name(db, name)
        if existing is not None:
            return Found(existing)

        company = Company(name=name, **attrs)
        db.add(company)
        await db.flush()
        logger.info("Company created", company_id=company.id, name=company.name)
        return Created(company)

    @staticmethod
    async def find_or_create_agency(
        db: AsyncSession,
        company_id: str,
        name: str,
        email: str,
        created_by: str,
        phone_number: str | None = None,
    ) -> Agency:
        """Agencies are keyed by email; an existing one is reused as-is."""
        result = await db.execute(select(Agency).where(Agency.email == email))
        agency = result.scalar_one_or_none()
        if agency is not None:
            return agency

        agency = Agency(
            company_id=company_id,
            name=name,
            email=email,
            phone_number=phone_number,
            created_by=created_by,
        )
        db.add(agency)
        await db.flush()
        logger.info("Agency created", agency_id=agency.id, company_id=company_id)
        return agency
