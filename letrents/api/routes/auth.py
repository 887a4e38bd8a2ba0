"""
api/routes/auth.py
------------------
Authentication endpoints.

POST /auth/register             - Self-registration or invitation acceptance.
POST /auth/login                - Exchange credentials for a session + refresh token.
POST /auth/refresh              - New session from a refresh token.
POST /auth/logout               - Revoke a refresh token.
POST /auth/verify-email         - Consume an email verification token.
GET  /auth/verify-email?token=  - Same, for links opened straight from an email.
POST /auth/forgot-password      - Request a reset link (never reveals if the email exists).
POST /auth/reset-password       - Set a new password from a reset token.
POST /auth/resend-verification  - Issue a fresh verification link.
GET  /auth/me                   - The authenticated user's profile.
POST /auth/change-password      - Change password; completes pending_setup accounts.

Domain errors (LetRentsError) are rendered by the handler in main.py.
"""

from typing import Annotated, Union

from fastapi import APIRouter, Depends, Query, Request, status

from letrents.dependencies import get_auth_service, get_current_user
from letrents.models.user import User
from letrents.schemas.user import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    MessageResponse,
    PendingVerificationResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
    TokenRequest,
    UserRead,
    VerifyEmailResponse,
)
from letrents.services.auth_service import (
    AuthService,
    PendingVerification,
    SessionResult,
    VerificationResult,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])

Auth = Annotated[AuthService, Depends(get_auth_service)]


def client_ip(request: Request) -> str | None:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _session_response(result: SessionResult) -> SessionResponse:
    return SessionResponse(
        token=result.token,
        refresh_token=result.refresh_token,
        expires_at=result.expires_at,
        user=UserRead.model_validate(result.user),
        requires_password_change=result.requires_password_change,
    )


def _verify_response(result: VerificationResult) -> VerifyEmailResponse:
    return VerifyEmailResponse(
        message=result.message,
        already_verified=result.already_verified,
        email=result.email,
        role=result.role,
    )


@router.post(
    "/register",
    response_model=Union[SessionResponse, PendingVerificationResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account or accept a tenant invitation",
)
async def register(body: RegisterRequest, auth: Auth):
    """
    Landlords and agency admins get a company created (or reused by exact
    name). When email verification is on, no session is returned: the
    response says which verification method to complete instead.
    """
    result = await auth.register(body)
    if isinstance(result, PendingVerification):
        return PendingVerificationResponse(
            user=UserRead.model_validate(result.user),
            requires_mfa=result.requires_mfa,
            mfa_methods=result.mfa_methods,
        )
    return _session_response(result)


@router.post("/login", response_model=SessionResponse, summary="Login with email and password")
async def login(body: LoginRequest, request: Request, auth: Auth) -> SessionResponse:
    result = await auth.login(
        body,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return _session_response(result)


@router.post("/refresh", response_model=SessionResponse, summary="Refresh the session token")
async def refresh(body: RefreshRequest, request: Request, auth: Auth) -> SessionResponse:
    result = await auth.refresh(
        body.refresh_token,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return _session_response(result)


@router.post("/logout", response_model=MessageResponse, summary="Revoke a refresh token")
async def logout(body: RefreshRequest, auth: Auth) -> MessageResponse:
    await auth.logout(body.refresh_token)
    return MessageResponse(message="Logged out successfully")


@router.post("/verify-email", response_model=VerifyEmailResponse, summary="Verify an email address")
async def verify_email(body: TokenRequest, auth: Auth) -> VerifyEmailResponse:
    return _verify_response(await auth.verify_email(body.token))


@router.get(
    "/verify-email",
    response_model=VerifyEmailResponse,
    summary="Verify an email address from an emailed link",
)
async def verify_email_link(
    auth: Auth,
    token: Annotated[str, Query(min_length=1)],
) -> VerifyEmailResponse:
    return _verify_response(await auth.verify_email(token))


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    summary="Request a password reset link",
)
async def forgot_password(body: EmailRequest, auth: Auth) -> MessageResponse:
    result = await auth.request_password_reset(body.email)
    return MessageResponse(success=result.success, message=result.message)


@router.post(
    "/reset-password",
    response_model=MessageResponse,
    summary="Reset the password with a reset token",
)
async def reset_password(body: ResetPasswordRequest, auth: Auth) -> MessageResponse:
    await auth.reset_password(body.token, body.password)
    return MessageResponse(message="Password has been reset successfully")


@router.post(
    "/resend-verification",
    response_model=MessageResponse,
    summary="Send a new email verification link",
)
async def resend_verification(body: EmailRequest, auth: Auth) -> MessageResponse:
    result = await auth.resend_verification_email(body.email)
    return MessageResponse(success=result.success, message=result.message)


@router.get("/me", response_model=UserRead, summary="Get the currently authenticated user")
async def get_me(
    current_user: Annotated[User, Depends(get_current_user)],
) -> UserRead:
    return UserRead.model_validate(current_user)


@router.post(
    "/change-password",
    response_model=UserRead,
    summary="Change the password of the current user",
)
async def change_password(
    body: ChangePasswordRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    auth: Auth,
) -> UserRead:
    user = await auth.change_password(current_user, body.current_password, body.new_password)
    return UserRead.model_validate(user)
