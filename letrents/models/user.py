"""
models/user.py
--------------
User ORM model with roles, lifecycle status and company binding.

Status lifecycle:
  pending        → active   (email verified, or invitation accepted)
  pending_setup  → active   (first password change of an admin-created account)
  *              → inactive (admin action)

password_hash stores bcrypt hashes only and is nullable: invited tenants
have no password until they accept their invitation.
"""

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from letrents.db.base import Base, TimestampMixin, UTCDateTime


class UserRole(str, PyEnum):
    super_admin = "super_admin"
    agency_admin = "agency_admin"
    landlord = "landlord"
    agent = "agent"
    caretaker = "caretaker"
    tenant = "tenant"


class UserStatus(str, PyEnum):
    pending = "pending"
    pending_setup = "pending_setup"
    active = "active"
    inactive = "inactive"


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email: Mapped[Optional[str]] = mapped_column(
        String(320), unique=True, nullable=True, index=True
    )
    phone_number: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    password_hash: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserRole.tenant.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserStatus.pending.value
    )
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    company_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    agency_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("agencies.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    landlord_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or (self.email or "")

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role} status={self.status}>"
