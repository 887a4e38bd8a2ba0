"""
services/email_service.py
-------------------------
Transactional email over async SMTP.

Every public method returns a DispatchResult and never raises: callers
treat delivery as advisory and log a manual fallback link when it fails.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

import aiosmtplib

from letrents.core.config import settings
from letrents.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DispatchResult:
    success: bool
    error: Optional[str] = None


class EmailService:
    """Sends transactional emails using the configured SMTP server."""

    async def send_verification_email(
        self, to_email: str, verification_url: str, user_name: str
    ) -> DispatchResult:
        subject = f"Verify Your Email - {settings.EMAIL_FROM_NAME}"
        body = (
            f"Hello {user_name},\n\n"
            f"Thanks for signing up for {settings.EMAIL_FROM_NAME}. Confirm your "
            "email address by opening the link below:\n\n"
            f"{verification_url}\n\n"
            f"This link expires in {settings.EMAIL_VERIFICATION_TTL_HOURS} hours. "
            "If you did not create an account, you can ignore this email.\n\n"
            f"The {settings.EMAIL_FROM_NAME} Team"
        )
        return await self._send(to_email, subject, body)

    async def send_password_reset_email(
        self, to_email: str, reset_url: str, user_name: str
    ) -> DispatchResult:
        subject = f"Reset Your Password - {settings.EMAIL_FROM_NAME}"
        body = (
            f"Hello {user_name},\n\n"
            "We received a request to reset your password. Open the link below "
            "to choose a new one:\n\n"
            f"{reset_url}\n\n"
            f"This link expires in {settings.PASSWORD_RESET_TTL_MINUTES} minutes. "
            "If you did not request a reset, no action is needed.\n\n"
            f"The {settings.EMAIL_FROM_NAME} Team"
        )
        return await self._send(to_email, subject, body)

    async def send_welcome_email(
        self, to_email: str, user_name: str, company_name: str, role: str
    ) -> DispatchResult:
        account = "agency" if role == "agency_admin" else "property portfolio"
        subject = f"Welcome to {settings.EMAIL_FROM_NAME}, {company_name}"
        body = (
            f"Hello {user_name},\n\n"
            f"Your {account} '{company_name}' has been set up on "
            f"{settings.EMAIL_FROM_NAME}. Sign in at {settings.APP_URL} to add "
            "properties, units and your M-Pesa paybill.\n\n"
            f"The {settings.EMAIL_FROM_NAME} Team"
        )
        return await self._send(to_email, subject, body)

    async def _send(self, to_email: str, subject: str, body: str) -> DispatchResult:
        if not settings.SMTP_HOST:
            return DispatchResult(success=False, error="SMTP is not configured")

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{settings.EMAIL_FROM_NAME} <{settings.EMAIL_FROM_ADDRESS}>"
        msg["To"] = to_email
        msg.set_content(body)

        try:
            await aiosmtplib.send(
                msg,
                hostname=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                username=settings.SMTP_USERNAME or None,
                password=settings.SMTP_PASSWORD or None,
                start_tls=settings.SMTP_START_TLS,
                timeout=settings.EMAIL_TIMEOUT_SECONDS,
            )
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as exc:
            logger.error("Email send failed", to=to_email, subject=subject, error=str(exc))
            return DispatchResult(success=False, error=str(exc))

        logger.info("Email sent", to=to_email, subject=subject)
        return DispatchResult(success=True)


email_service = EmailService()
