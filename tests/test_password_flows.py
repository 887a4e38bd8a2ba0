"""Tests for password reset, verification resend and password change."""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from letrents.core.exceptions import InvalidCredentials, InvalidToken, TokenExpired
from letrents.core.security import verify_password
from letrents.db.base import utcnow
from letrents.models import EmailVerificationToken, PasswordResetToken
from letrents.models.user import UserStatus
from letrents.schemas.user import LoginRequest
from letrents.services.auth_service import RESET_REQUESTED_MESSAGE, AuthService
from letrents.services.email_service import DispatchResult

PASSWORD = "CorrectHorse42"
NEW_PASSWORD = "BatteryStaple77"


# ── Password reset ───────────────────────────────────────

@pytest.mark.asyncio
async def test_reset_request_for_unknown_email_looks_identical(db_session, mailer):
    result = await AuthService(db_session, mailer).request_password_reset("ghost@example.com")

    assert result.success is True
    assert result.message == RESET_REQUESTED_MESSAGE
    mailer.send_password_reset_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_reset_request_dispatch_failure_keeps_response(db_session, mailer, make_user):
    await make_user()
    mailer.send_password_reset_email.return_value = DispatchResult(False, "connection refused")

    result = await AuthService(db_session, mailer).request_password_reset("jane@example.com")

    assert result.success is True
    assert result.message == RESET_REQUESTED_MESSAGE
    record = (await db_session.execute(select(PasswordResetToken))).scalar_one()
    assert record.is_used is False


@pytest.mark.asyncio
async def test_reset_revokes_every_refresh_token(db_session, mailer, make_user, token_from_url):
    user = await make_user()
    auth = AuthService(db_session, mailer)
    phone = await auth.login(LoginRequest(email="jane@example.com", password=PASSWORD))
    laptop = await auth.login(LoginRequest(email="jane@example.com", password=PASSWORD))

    await auth.request_password_reset("jane@example.com")
    raw = token_from_url(mailer.send_password_reset_email)
    await auth.reset_password(raw, NEW_PASSWORD)

    assert verify_password(NEW_PASSWORD, user.password_hash)
    for session in (phone, laptop):
        with pytest.raises(InvalidToken):
            await auth.refresh(session.refresh_token)

    fresh = await auth.login(LoginRequest(email="jane@example.com", password=NEW_PASSWORD))
    assert fresh.token


@pytest.mark.asyncio
async def test_reset_token_works_once(db_session, mailer, make_user, token_from_url):
    await make_user()
    auth = AuthService(db_session, mailer)
    await auth.request_password_reset("jane@example.com")
    raw = token_from_url(mailer.send_password_reset_email)

    await auth.reset_password(raw, NEW_PASSWORD)
    with pytest.raises(InvalidToken):
        await auth.reset_password(raw, "ThirdPassword99")


@pytest.mark.asyncio
async def test_expired_reset_token_changes_nothing(db_session, mailer, make_user, token_from_url):
    user = await make_user()
    auth = AuthService(db_session, mailer)
    await auth.request_password_reset("jane@example.com")
    raw = token_from_url(mailer.send_password_reset_email)
    await db_session.execute(
        update(PasswordResetToken).values(expires_at=utcnow() - timedelta(minutes=1))
    )
    await db_session.commit()

    with pytest.raises(TokenExpired):
        await auth.reset_password(raw, NEW_PASSWORD)
    await db_session.refresh(user)
    assert verify_password(PASSWORD, user.password_hash)


@pytest.mark.asyncio
async def test_new_reset_request_invalidates_previous_link(
    db_session, mailer, make_user, token_from_url
):
    await make_user()
    auth = AuthService(db_session, mailer)
    await auth.request_password_reset("jane@example.com")
    first = token_from_url(mailer.send_password_reset_email)
    await auth.request_password_reset("jane@example.com")
    second = token_from_url(mailer.send_password_reset_email)

    with pytest.raises(InvalidToken):
        await auth.reset_password(first, NEW_PASSWORD)
    await auth.reset_password(second, NEW_PASSWORD)


# ── Resend verification ──────────────────────────────────

@pytest.mark.asyncio
async def test_resend_for_unknown_user(db_session, mailer):
    result = await AuthService(db_session, mailer).resend_verification_email("ghost@example.com")
    assert (result.success, result.message) == (False, "User not found")


@pytest.mark.asyncio
async def test_resend_for_verified_user(db_session, mailer, make_user):
    await make_user(email_verified=True)
    result = await AuthService(db_session, mailer).resend_verification_email("jane@example.com")
    assert (result.success, result.message) == (False, "Email is already verified")
    mailer.send_verification_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_resend_replaces_outstanding_tokens(db_session, mailer, make_user, token_from_url):
    await make_user(status=UserStatus.pending, email_verified=False)
    auth = AuthService(db_session, mailer)

    first = await auth.resend_verification_email("jane@example.com")
    second = await auth.resend_verification_email("jane@example.com")
    assert (second.success, second.message) == (True, "Verification email sent successfully")
    assert first.success is True

    tokens = (await db_session.execute(select(EmailVerificationToken))).scalars().all()
    assert sorted(t.is_used for t in tokens) == [False, True]

    result = await auth.verify_email(token_from_url(mailer.send_verification_email))
    assert result.message == "Email verified successfully"


@pytest.mark.asyncio
async def test_resend_surfaces_dispatch_failure(db_session, mailer, make_user):
    await make_user(status=UserStatus.pending, email_verified=False)
    mailer.send_verification_email.return_value = DispatchResult(False, "mailbox unavailable")

    result = await AuthService(db_session, mailer).resend_verification_email("jane@example.com")

    assert (result.success, result.message) == (False, "Failed to send verification email")
    # The token is still issued; the logged link remains usable.
    record = (await db_session.execute(select(EmailVerificationToken))).scalar_one()
    assert record.is_used is False


# ── Change password ──────────────────────────────────────

@pytest.mark.asyncio
async def test_change_password_completes_setup(db_session, mailer, make_user):
    user = await make_user(status=UserStatus.pending_setup)

    await AuthService(db_session, mailer).change_password(user, PASSWORD, NEW_PASSWORD)

    assert user.status == UserStatus.active.value
    assert verify_password(NEW_PASSWORD, user.password_hash)


@pytest.mark.asyncio
async def test_change_password_checks_current(db_session, mailer, make_user):
    user = await make_user()
    with pytest.raises(InvalidCredentials):
        await AuthService(db_session, mailer).change_password(user, "WrongHorse42", NEW_PASSWORD)
    assert verify_password(PASSWORD, user.password_hash)
