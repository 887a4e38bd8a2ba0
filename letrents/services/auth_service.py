"""
services/auth_service.py
------------------------
Registration, email verification, login, refresh and password recovery.

Account state machine (User.status):
  pending --verify_email / accept invitation--> active
  pending_setup --change_password--> active

Invariants kept here:
  - Only SHA-256 digests of refresh / verification / reset secrets are
    stored; raw values are returned (or emailed) exactly once.
  - Every DB write an email refers to is committed before the email is
    dispatched. A failed or slow send never rolls back account state.
  - Dispatch failures are absorbed: the link is logged as a manual
    fallback and the enclosing operation still succeeds (except for
    resend_verification_email, whose whole point is the send).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from letrents.core.config import settings
from letrents.core.exceptions import (
    AccountInactive,
    DuplicateEmail,
    InvalidCredentials,
    InvalidToken,
    InvitationMismatch,
    NotVerified,
    PermissionDenied,
    TokenAlreadyUsed,
    TokenExpired,
    UserNotFound,
)
from letrents.core.logging import get_logger
from letrents.core.security import (
    hash_opaque_token,
    hash_password,
    new_opaque_secret,
    parse_invitation_token,
    sign_session,
    verify_password,
)
from letrents.db.base import utcnow
from letrents.models.token import EmailVerificationToken, PasswordResetToken, RefreshToken
from letrents.models.user import User, UserRole, UserStatus
from letrents.schemas.user import LoginRequest, RegisterRequest
from letrents.services.company_service import CompanyService, Found
from letrents.services.email_service import DispatchResult, EmailService, email_service

logger = get_logger(__name__)

RESET_REQUESTED_MESSAGE = (
    "If an account with that email exists, a password reset link has been sent."
)
LOGIN_STATUSES = {UserStatus.active.value, UserStatus.pending_setup.value}
COMPANY_ROLES = {
    UserRole.landlord.value,
    UserRole.agency_admin.value,
    UserRole.super_admin.value,
}


@dataclass
class SessionResult:
    token: str
    refresh_token: str
    expires_at: datetime
    user: User
    requires_password_change: bool = False


@dataclass
class PendingVerification:
    user: User
    requires_mfa: bool = True
    mfa_methods: list[str] = field(default_factory=lambda: ["email"])


@dataclass
class VerificationResult:
    message: str
    email: Optional[str]
    role: str
    already_verified: bool = False


@dataclass
class ActionResult:
    success: bool
    message: str


class AuthService:

    def __init__(self, db: AsyncSession, mailer: EmailService | None = None) -> None:
        self.db = db
        self.mailer = mailer or email_service

    # ── Registration ──────────────────────────────────────────────────────────

    async def register(self, payload: RegisterRequest) -> SessionResult | PendingVerification:
        """
        Create an account, or accept an invitation when invitation_token is set.

        With email verification required (and an email given) the account
        starts pending and no session is issued; otherwise the caller is
        logged straight in.
        """
        if payload.invitation_token:
            return await self._accept_invitation(payload)

        if payload.role == UserRole.super_admin and not settings.ALLOW_SUPER_ADMIN_SIGNUP:
            raise PermissionDenied("super_admin accounts cannot self-register")

        if payload.email and await self.get_user_by_email(payload.email):
            raise DuplicateEmail()

        require_verification = settings.REQUIRE_EMAIL_VERIFICATION
        company_name = None
        try:
            company_id = None
            if payload.role.value in COMPANY_ROLES:
                company = await self._resolve_company(payload)
                company_id, company_name = company.id, company.name

            user = User(
                email=payload.email,
                password_hash=hash_password(payload.password) if payload.password else None,
                first_name=payload.first_name,
                last_name=payload.last_name,
                phone_number=payload.phone_number,
                role=payload.role.value,
                status=(
                    UserStatus.pending.value
                    if require_verification
                    else UserStatus.active.value
                ),
                email_verified=not require_verification,
                company_id=company_id,
            )
            self.db.add(user)
            await self.db.flush()

            if payload.role == UserRole.agency_admin and payload.email and company_id:
                agency = await CompanyService.find_or_create_agency(
                    self.db,
                    company_id=company_id,
                    name=payload.company_name or f"{payload.first_name} {payload.last_name} Agency",
                    email=payload.email,
                    phone_number=payload.phone_number,
                    created_by=user.id,
                )
                user.agency_id = agency.id

            raw_verification = None
            if require_verification and user.email:
                raw_verification = self._add_verification_token(user)
            await self.db.commit()
        except IntegrityError:
            # Lost a race on users.email: nothing from this attempt survives.
            await self.db.rollback()
            raise DuplicateEmail()

        logger.info("User registered", user_id=user.id, role=user.role, company_id=user.company_id)

        if raw_verification is not None:
            url = f"{settings.APP_URL}/verify-email?token={raw_verification}"
            await self._dispatch(
                self.mailer.send_verification_email,
                user.email,
                url,
                user.display_name,
                event="Verification email dispatch failed",
                fallback_url=url,
            )
            await self._send_welcome(user, company_name)
            return PendingVerification(user=user)

        session = await self._issue_session(user, hours=settings.SESSION_TIMEOUT_HOURS)
        await self._send_welcome(user, company_name)
        return session

    async def _accept_invitation(self, payload: RegisterRequest) -> SessionResult:
        invitation = parse_invitation_token(payload.invitation_token)
        user = await self.db.get(User, invitation.user_id)
        if user is None or user.email != invitation.email:
            raise InvalidToken("invalid or expired invitation token")
        if user.email != payload.email:
            raise InvitationMismatch("invitation token does not match the provided email address")
        if user.role != UserRole.tenant.value:
            raise InvitationMismatch("invalid invitation token for tenant registration")
        if user.status != UserStatus.pending.value:
            raise InvitationMismatch(
                "this invitation has already been used or the account is already active"
            )

        user.password_hash = hash_password(payload.password) if payload.password else None
        user.status = UserStatus.active.value
        user.email_verified = True
        if payload.first_name:
            user.first_name = payload.first_name
        if payload.last_name:
            user.last_name = payload.last_name
        await self.db.flush()

        logger.info("Invitation accepted", user_id=user.id, company_id=user.company_id)
        return await self._issue_session(user, hours=settings.SESSION_TIMEOUT_HOURS)

    async def _resolve_company(self, payload: RegisterRequest):
        attrs = {
            "email": payload.email,
            "phone_number": payload.phone_number,
            "business_type": payload.business_type or "property_management",
        }
        if payload.role == UserRole.super_admin:
            name = payload.company_name or "LetRents Platform"
            attrs.update(
                company_size="enterprise",
                subscription_plan="enterprise",
                max_properties=999999,
                max_units=999999,
            )
        elif payload.role == UserRole.agency_admin:
            name = payload.company_name or f"{payload.first_name} {payload.last_name} Agency"
        else:
            name = payload.company_name or f"{payload.first_name} {payload.last_name} Properties"

        lookup = await CompanyService.find_or_create_company_by_name(self.db, name, **attrs)
        if isinstance(lookup, Found):
            logger.info("Reusing existing company", company_id=lookup.company.id)
        return lookup.company

    # ── Email verification ────────────────────────────────────────────────────

    async def verify_email(self, raw_token: str) -> VerificationResult:
        token_hash = hash_opaque_token(raw_token)
        result = await self.db.execute(
            select(EmailVerificationToken, User)
            .join(User, User.id == EmailVerificationToken.user_id)
            .where(EmailVerificationToken.token_hash == token_hash)
            .limit(1)
        )
        row = result.first()
        if row is None:
            raise InvalidToken("invalid or expired verification token")
        record, user = row

        # Checked before is_used so that repeating a successful verification is harmless.
        if user.email_verified:
            return VerificationResult(
                message="Email has already been verified. You can now log in to your account.",
                email=user.email,
                role=user.role,
                already_verified=True,
            )
        if record.is_used:
            raise TokenAlreadyUsed("verification token has already been used")
        if record.expires_at < utcnow():
            raise TokenExpired("verification token is expired")

        user.email_verified = True
        user.status = UserStatus.active.value
        await self.db.execute(
            update(EmailVerificationToken)
            .where(EmailVerificationToken.token_hash == token_hash)
            .values(is_used=True, used_at=utcnow())
        )
        await self._commit()

        logger.info("Email verified", user_id=user.id)
        return VerificationResult(
            message="Email verified successfully", email=user.email, role=user.role
        )

    async def resend_verification_email(self, email: str) -> ActionResult:
        user = await self.get_user_by_email(email)
        if user is None:
            return ActionResult(False, "User not found")
        if user.email_verified:
            return ActionResult(False, "Email is already verified")

        await self.db.execute(
            update(EmailVerificationToken)
            .where(
                EmailVerificationToken.user_id == user.id,
                EmailVerificationToken.is_used.is_(False),
            )
            .values(is_used=True, used_at=utcnow())
        )
        raw = self._add_verification_token(user)
        await self._commit()

        url = f"{settings.APP_URL}/verify-email?token={raw}"
        sent = await self._dispatch(
            self.mailer.send_verification_email,
            user.email,
            url,
            user.display_name,
            event="Verification email resend failed",
            fallback_url=url,
        )
        if not sent:
            return ActionResult(False, "Failed to send verification email")
        return ActionResult(True, "Verification email sent successfully")

    # ── Login / refresh / logout ──────────────────────────────────────────────

    async def login(
        self,
        payload: LoginRequest,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SessionResult:
        if not payload.email or not payload.password:
            raise InvalidCredentials()

        user = await self.get_user_by_email(payload.email)
        if user is None:
            raise UserNotFound()
        if user.status not in LOGIN_STATUSES:
            raise AccountInactive()
        if not user.password_hash or not verify_password(payload.password, user.password_hash):
            raise InvalidCredentials()
        if settings.REQUIRE_EMAIL_VERIFICATION and not user.email_verified:
            raise NotVerified()

        user.last_login_at = utcnow()
        hours = (
            settings.JWT_REFRESH_EXPIRATION_HOURS
            if payload.remember_me
            else settings.SESSION_TIMEOUT_HOURS
        )
        session = await self._issue_session(
            user,
            hours=hours,
            device_info=payload.device_info,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        session.requires_password_change = user.status == UserStatus.pending_setup.value
        logger.info("User logged in", user_id=user.id, remember_me=payload.remember_me)
        return session

    async def refresh(
        self,
        raw_refresh_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SessionResult:
        """
        Sign a new session for a live refresh token.

        By default the same refresh token is handed back (it lives until its
        fixed expiry or revocation). With ROTATE_REFRESH_TOKENS the presented
        token is revoked and replaced by one with the same remaining lifetime.
        """
        record = await self._get_refresh_token(raw_refresh_token)
        if record is None or record.is_revoked:
            raise InvalidToken()
        if record.expires_at < utcnow():
            raise TokenExpired()

        user = await self.db.get(User, record.user_id)
        if user is None:
            raise UserNotFound()
        if user.status != UserStatus.active.value:
            raise AccountInactive()

        token, expires_at = sign_session(user, str(uuid.uuid4()), [])
        refresh_token = raw_refresh_token

        if settings.ROTATE_REFRESH_TOKENS:
            revoked = await self.db.execute(
                update(RefreshToken)
                .where(RefreshToken.id == record.id, RefreshToken.is_revoked.is_(False))
                .values(is_revoked=True)
            )
            if revoked.rowcount != 1:
                await self.db.rollback()
                raise InvalidToken()
            refresh_token = self._add_refresh_token(
                user.id,
                expires_at=record.expires_at,
                device_info=record.device_info,
                ip_address=ip_address,
                user_agent=user_agent,
            )
            await self._commit()

        return SessionResult(
            token=token, refresh_token=refresh_token, expires_at=expires_at, user=user
        )

    async def logout(self, raw_refresh_token: str) -> None:
        await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.token_hash == hash_opaque_token(raw_refresh_token))
            .values(is_revoked=True)
        )
        await self._commit()

    # ── Passwords ─────────────────────────────────────────────────────────────

    async def request_password_reset(self, email: str) -> ActionResult:
        """Same answer whether or not the account exists."""
        user = await self.get_user_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return ActionResult(True, RESET_REQUESTED_MESSAGE)

        now = utcnow()
        # Only the newest reset link stays valid.
        await self.db.execute(
            update(PasswordResetToken)
            .where(
                PasswordResetToken.user_id == user.id,
                PasswordResetToken.is_used.is_(False),
            )
            .values(is_used=True, used_at=now)
        )
        raw = new_opaque_secret()
        self.db.add(
            PasswordResetToken(
                user_id=user.id,
                token_hash=hash_opaque_token(raw),
                email=user.email,
                expires_at=now + timedelta(minutes=settings.PASSWORD_RESET_TTL_MINUTES),
            )
        )
        await self._commit()

        url = f"{settings.APP_URL}/reset-password?token={raw}"
        await self._dispatch(
            self.mailer.send_password_reset_email,
            user.email,
            url,
            user.display_name,
            event="Password reset email dispatch failed",
            fallback_url=url,
        )
        return ActionResult(True, RESET_REQUESTED_MESSAGE)

    async def reset_password(self, raw_token: str, new_password: str) -> None:
        """Set the password, burn the token and revoke every refresh token, atomically."""
        token_hash = hash_opaque_token(raw_token)
        result = await self.db.execute(
            select(PasswordResetToken)
            .where(
                PasswordResetToken.token_hash == token_hash,
                PasswordResetToken.is_used.is_(False),
            )
            .limit(1)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise InvalidToken("invalid or expired reset token")
        if record.expires_at < utcnow():
            raise TokenExpired("reset token is expired")

        user = await self.db.get(User, record.user_id)
        if user is None:
            raise InvalidToken("invalid or expired reset token")

        user.password_hash = hash_password(new_password)
        await self.db.execute(
            update(PasswordResetToken)
            .where(PasswordResetToken.token_hash == token_hash)
            .values(is_used=True, used_at=utcnow())
        )
        await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user.id)
            .values(is_revoked=True)
        )
        await self._commit()
        logger.info("Password reset", user_id=user.id)

    async def change_password(self, user: User, current_password: str, new_password: str) -> User:
        """Completes account setup: pending_setup becomes active."""
        if not user.password_hash or not verify_password(current_password, user.password_hash):
            raise InvalidCredentials("current password is incorrect")

        user.password_hash = hash_password(new_password)
        if user.status == UserStatus.pending_setup.value:
            user.status = UserStatus.active.value
        await self._commit()
        logger.info("Password changed", user_id=user.id, status=user.status)
        return user

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def get_user_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def _get_refresh_token(self, raw: str) -> RefreshToken | None:
        result = await self.db.execute(
            select(RefreshToken).where(RefreshToken.token_hash == hash_opaque_token(raw))
        )
        return result.scalar_one_or_none()

    async def _issue_session(
        self,
        user: User,
        hours: int,
        device_info: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SessionResult:
        token, expires_at = sign_session(user, str(uuid.uuid4()), [])
        refresh_token = self._add_refresh_token(
            user.id,
            expires_at=utcnow() + timedelta(hours=hours),
            device_info=device_info,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await self._commit()
        return SessionResult(
            token=token, refresh_token=refresh_token, expires_at=expires_at, user=user
        )

    def _add_refresh_token(
        self,
        user_id: str,
        expires_at: datetime,
        device_info: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        raw = new_opaque_secret()
        self.db.add(
            RefreshToken(
                user_id=user_id,
                token_hash=hash_opaque_token(raw),
                device_info=device_info,
                ip_address=ip_address,
                user_agent=user_agent,
                expires_at=expires_at,
                is_revoked=False,
            )
        )
        return raw

    def _add_verification_token(self, user: User) -> str:
        raw = new_opaque_secret()
        self.db.add(
            EmailVerificationToken(
                user_id=user.id,
                token_hash=hash_opaque_token(raw),
                email=user.email,
                expires_at=utcnow() + timedelta(hours=settings.EMAIL_VERIFICATION_TTL_HOURS),
            )
        )
        return raw

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def _send_welcome(self, user: User, company_name: str | None) -> None:
        if not company_name or not user.email:
            return
        if user.role not in (UserRole.landlord.value, UserRole.agency_admin.value):
            return
        await self._dispatch(
            self.mailer.send_welcome_email,
            user.email,
            user.display_name,
            company_name,
            user.role,
            event="Welcome email dispatch failed",
        )

    async def _dispatch(
        self,
        send: Callable[..., Awaitable[DispatchResult]],
        to_email: str,
        *args,
        event: str,
        fallback_url: str | None = None,
    ) -> bool:
        """Run a mailer call; on any failure log the fallback link and return False."""
        try:
            result = await send(to_email, *args)
            error = None if result.success else result.error
        except Exception as exc:  # the mailer is an external collaborator
            error = str(exc)

        if error is None:
            return True
        logger.warning(event, email=to_email, error=error, fallback_url=fallback_url)
        return False
