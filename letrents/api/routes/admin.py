"""
api/routes/admin.py
-------------------
Company-admin endpoints for account management.

POST /admin/users           - Create a staff account with a temporary password.
POST /admin/tenants/invite  - Create a pending tenant and return its invitation token.

The company_id always comes from the admin's own account: admins cannot
create users in other companies.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from letrents.core.exceptions import PermissionDenied
from letrents.db.session import get_db
from letrents.dependencies import require_roles
from letrents.models.user import User, UserRole
from letrents.schemas.user import InvitationResponse, StaffCreate, TenantInvite, UserRead
from letrents.services.user_service import UserService

router = APIRouter(prefix="/admin", tags=["Admin"])

CompanyAdmin = Annotated[
    User,
    Depends(require_roles(UserRole.super_admin, UserRole.agency_admin, UserRole.landlord)),
]


def _company_of(admin: User) -> str:
    if not admin.company_id:
        raise PermissionDenied("user must belong to a company")
    return admin.company_id


@router.post(
    "/users",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
    summary="Admin: create a staff account in the current company",
)
async def admin_create_user(
    body: StaffCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: CompanyAdmin,
) -> UserRead:
    """The new account must change its password on first login."""
    user = await UserService.create_staff_user(db, body, company_id=_company_of(admin))
    return UserRead.model_validate(user)


@router.post(
    "/tenants/invite",
    response_model=InvitationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Admin: invite a tenant into the current company",
)
async def admin_invite_tenant(
    body: TenantInvite,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: CompanyAdmin,
) -> InvitationResponse:
    user, token = await UserService.invite_tenant(db, body, company_id=_company_of(admin))
    return InvitationResponse(user=UserRead.model_validate(user), invitation_token=token)
