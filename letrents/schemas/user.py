"""
schemas/user.py
---------------
Pydantic models for registration, login, session and account flows.

Security note:
  - password_hash is NEVER included in any response schema.
  - Refresh tokens appear in a response body exactly once, at issuance.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from letrents.models.user import UserRole


class UserRead(BaseModel):
    id: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    first_name: str
    last_name: str
    role: str
    status: str
    email_verified: bool
    company_id: Optional[str] = None
    agency_id: Optional[str] = None
    landlord_id: Optional[str] = None
    last_login_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ── Requests ──────────────────────────────────────────────────────────────────

class RegisterRequest(BaseModel):
    """
    Self-registration. email and password are optional so that invitation-only
    accounts can exist; invitation_token switches to the accept-invite path.
    """
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=8, max_length=128)
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)
    role: UserRole = UserRole.tenant
    phone_number: Optional[str] = Field(None, max_length=32)
    company_name: Optional[str] = Field(None, max_length=255)
    business_type: Optional[str] = Field(None, max_length=50)
    invitation_token: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: Optional[str]) -> Optional[str]:
        return v.lower() if v else v


class LoginRequest(BaseModel):
    # Presence is checked by the service so a missing field maps to
    # InvalidCredentials instead of a 422.
    email: Optional[str] = None
    password: Optional[str] = None
    remember_me: bool = False
    device_info: Optional[str] = Field(None, max_length=255)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=8, max_length=128)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=128)


class StaffCreate(BaseModel):
    """Admin-created account; the password is temporary (pending_setup)."""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    phone_number: Optional[str] = Field(None, max_length=32)
    role: UserRole = UserRole.caretaker


class TenantInvite(BaseModel):
    email: EmailStr
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    phone_number: Optional[str] = Field(None, max_length=32)


# ── Responses ─────────────────────────────────────────────────────────────────

class SessionResponse(BaseModel):
    token: str
    refresh_token: str
    expires_at: datetime
    user: UserRead
    requires_password_change: bool = False


class PendingVerificationResponse(BaseModel):
    user: UserRead
    requires_mfa: bool = True
    mfa_methods: list[str] = ["email"]


class VerifyEmailResponse(BaseModel):
    message: str
    email_verified: bool = True
    already_verified: bool = False
    email: Optional[str] = None
    role: Optional[str] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class InvitationResponse(BaseModel):
    user: UserRead
    invitation_token: str
