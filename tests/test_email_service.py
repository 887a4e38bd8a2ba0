"""Tests for EmailService: results are reported, never raised."""

from unittest.mock import AsyncMock

import aiosmtplib
import pytest

from letrents.core.config import settings
from letrents.services.email_service import EmailService


@pytest.fixture
def smtp_configured(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.example.com")


@pytest.mark.asyncio
async def test_unconfigured_smtp_reports_failure(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "")
    send = AsyncMock()
    monkeypatch.setattr(aiosmtplib, "send", send)

    result = await EmailService().send_verification_email(
        "jane@example.com", "https://app/verify-email?token=abc", "Jane Doe"
    )

    assert result.success is False
    assert result.error == "SMTP is not configured"
    send.assert_not_awaited()


@pytest.mark.asyncio
async def test_verification_email_contains_link(monkeypatch, smtp_configured):
    send = AsyncMock(return_value=({}, "OK"))
    monkeypatch.setattr(aiosmtplib, "send", send)

    result = await EmailService().send_verification_email(
        "jane@example.com", "https://app/verify-email?token=abc", "Jane Doe"
    )

    assert result.success is True
    message = send.call_args.args[0]
    assert message["To"] == "jane@example.com"
    assert "Verify" in message["Subject"]
    assert "https://app/verify-email?token=abc" in message.get_content()
    assert send.call_args.kwargs["hostname"] == "smtp.example.com"
    assert send.call_args.kwargs["timeout"] == settings.EMAIL_TIMEOUT_SECONDS


@pytest.mark.asyncio
async def test_welcome_email_names_the_company(monkeypatch, smtp_configured):
    send = AsyncMock(return_value=({}, "OK"))
    monkeypatch.setattr(aiosmtplib, "send", send)

    await EmailService().send_welcome_email(
        "admin@acme.co.ke", "Wanjiku Mwangi", "Acme Agency", "agency_admin"
    )

    message = send.call_args.args[0]
    assert "Acme Agency" in message["Subject"]
    assert "agency" in message.get_content()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        aiosmtplib.SMTPConnectError("connection refused"),
        OSError("network unreachable"),
        TimeoutError(),
    ],
)
async def test_transport_errors_become_failed_results(monkeypatch, smtp_configured, error):
    monkeypatch.setattr(aiosmtplib, "send", AsyncMock(side_effect=error))

    result = await EmailService().send_password_reset_email(
        "jane@example.com", "https://app/reset-password?token=abc", "Jane Doe"
    )

    assert result.success is False
