"""
models/company.py
-----------------
Company (owning organisation) and Agency ORM models.

Every landlord and agency_admin belongs to a company; tenants, units and
paybill settings are all scoped by company_id at the query level.
Company names are only softly unique: registration reuses an exact-name
match instead of relying on a DB constraint.
"""

import uuid
from typing import Optional

from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from letrents.db.base import Base, TimestampMixin


class Company(Base, TimestampMixin):
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    business_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="property_management"
    )
    country: Mapped[str] = mapped_column(String(100), nullable=False, default="Kenya")
    industry: Mapped[str] = mapped_column(
        String(100), nullable=False, default="Property Management"
    )
    company_size: Mapped[str] = mapped_column(String(20), nullable=False, default="small")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # ── Plan / limits ───────────────────────────────────────────────────
    subscription_plan: Mapped[str] = mapped_column(
        String(20), nullable=False, default="starter"
    )
    max_properties: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    max_units: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    max_tenants: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    max_staff: Mapped[int] = mapped_column(Integer, nullable=False, default=50)

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name}>"


class Agency(Base, TimestampMixin):
    __tablename__ = "agencies"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    company_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    # Plain reference: users.agency_id already points the other way.
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    def __repr__(self) -> str:
        return f"<Agency id={self.id} name={self.name}>"
