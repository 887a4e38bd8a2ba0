"""
services/user_service.py
------------------------
Admin-side account creation: staff with a temporary password, and tenant
invitations.

All accounts are created inside the acting admin's company; the company_id
always comes from the caller's session, never from the request body.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from letrents.core.exceptions import DuplicateEmail, PermissionDenied
from letrents.core.logging import get_logger
from letrents.core.security import create_invitation_token, hash_password
from letrents.models.user import User, UserRole, UserStatus
from letrents.schemas.user import StaffCreate, TenantInvite

logger = get_logger(__name__)

# Tenants join by invitation; super admins are never created from inside a company.
NON_STAFF_ROLES = {UserRole.tenant, UserRole.super_admin}


class UserService:

    @staticmethod
    async def get_user_by_id(db: AsyncSession, user_id: str) -> User | None:
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def create_staff_user(
        db: AsyncSession,
        data: StaffCreate,
        company_id: str,
    ) -> User:
        """
        Create a staff account with a temporary password.

        The account is pending_setup: it can log in, is told to change its
        password, and becomes active on the first change.
        Raises DuplicateEmail if the address is taken.
        """
        if data.role in NON_STAFF_ROLES:
            raise PermissionDenied(f"Role '{data.role.value}' cannot be created as staff")

        user = User(
            email=data.email.lower(),
            password_hash=hash_password(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            phone_number=data.phone_number,
            role=data.role.value,
            status=UserStatus.pending_setup.value,
            email_verified=True,
            company_id=company_id,
        )
        await UserService._insert(db, user)
        logger.info(
            "Admin created staff user",
            new_user_id=user.id,
            role=user.role,
            company_id=company_id,
        )
        return user

    @staticmethod
    async def invite_tenant(
        db: AsyncSession,
        data: TenantInvite,
        company_id: str,
    ) -> tuple[User, str]:
        """
        Create a pending tenant with no password and return it with a signed
        invitation token. The tenant finishes by registering with that token.
        """
        user = User(
            email=data.email.lower(),
            password_hash=None,
            first_name=data.first_name,
            last_name=data.last_name,
            phone_number=data.phone_number,
            role=UserRole.tenant.value,
            status=UserStatus.pending.value,
            email_verified=False,
            company_id=company_id,
        )
        await UserService._insert(db, user)
        logger.info("Tenant invited", tenant_id=user.id, company_id=company_id)
        return user, create_invitation_token(user)

    @staticmethod
    async def list_users_in_company(db: AsyncSession, company_id: str) -> list[User]:
        result = await db.execute(
            select(User).where(User.company_id == company_id).order_by(User.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def _insert(db: AsyncSession, user: User) -> None:
        db.add(user)
        try:
            await db.flush()
            await db.refresh(user)
        except IntegrityError:
            await db.rollback()
            raise DuplicateEmail(f"Email '{user.email}' is already registered")
