"""
core/security.py
----------------
Password hashing, session JWTs, opaque secrets and credential encryption.

Design decisions:
  - bcrypt work factor 12
  - Session claims carry role plus company/agency/landlord scoping ids so
    most authorisation checks need no DB round-trip.
  - Refresh, verification and reset secrets are 32 random bytes; only
    their SHA-256 digest is ever persisted.
  - Invitation tokens are signed JWTs tagged typ="invitation". They can
    never be replayed as a session and vice versa.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Sequence

from cryptography.fernet import Fernet, InvalidToken as FernetInvalidToken
from jose import JWTError, jwt
from passlib.context import CryptContext

from letrents.core.config import settings
from letrents.core.exceptions import InvalidToken

# bcrypt, 12 rounds
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)

ACCESS_TOKEN_TYPE = "access"
INVITATION_TOKEN_TYPE = "invitation"


# ── Password Utilities ────────────────────────────────────────────────────────

def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the plain-text password."""
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """Constant-time comparison of plain password against stored hash."""
    return pwd_context.verify(plain, hashed)


# ── Opaque Secrets ────────────────────────────────────────────────────────────

def new_opaque_secret() -> str:
    """32 cryptographically random bytes, hex encoded. Shown to the caller once."""
    return secrets.token_hex(32)


def hash_opaque_token(raw: str) -> str:
    """One-way SHA-256 digest used as the storage key for opaque secrets."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


# ── Session JWTs ──────────────────────────────────────────────────────────────

def sign_session(
    user: Any,
    session_id: str,
    permissions: Optional[Sequence[str]] = None,
) -> tuple[str, datetime]:
    """
    Mint a signed session token for *user*.

    Args:
        user: Any object exposing id, email, phone_number, role,
              company_id, agency_id and landlord_id.
        session_id: Fresh UUID for this login/refresh.
        permissions: Permission names embedded verbatim.

    Returns:
        (token, expires_at)
    """
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=settings.JWT_EXPIRATION_HOURS)
    claims: Dict[str, Any] = {
        "sub": user.id,
        "user_id": user.id,
        "email": user.email or "",
        "phone_number": user.phone_number or "",
        "role": user.role,
        "company_id": user.company_id,
        "agency_id": user.agency_id,
        "landlord_id": user.landlord_id,
        "session_id": session_id,
        "permissions": list(permissions or []),
        "typ": ACCESS_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "nbf": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
        "iss": settings.JWT_ISSUER,
    }
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, expires_at


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a session token.

    Raises:
        JWTError: If the token is invalid, expired, tampered with, or is
                  not a session token.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        issuer=settings.JWT_ISSUER,
    )
    if payload.get("typ") != ACCESS_TOKEN_TYPE:
        raise JWTError("not a session token")
    return payload


# ── Invitation Tokens ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class InvitationToken:
    """Decoded invitation: which pending account it unlocks, and for whom."""

    user_id: str
    email: str
    expires_at: datetime


def create_invitation_token(user: Any) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user.id,
        "email": user.email or "",
        "typ": INVITATION_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(days=settings.INVITATION_TTL_DAYS)).timestamp()),
        "iss": settings.JWT_ISSUER,
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def parse_invitation_token(raw: str) -> InvitationToken:
    """Raises InvalidToken unless *raw* is a live, signed invitation."""
    try:
        payload = jwt.decode(
            raw,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=settings.JWT_ISSUER,
        )
    except JWTError as exc:
        raise InvalidToken("invalid or expired invitation token") from exc

    if payload.get("typ") != INVITATION_TOKEN_TYPE or not payload.get("sub"):
        raise InvalidToken("invalid or expired invitation token")

    return InvitationToken(
        user_id=payload["sub"],
        email=payload.get("email", ""),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


# ── Credential Encryption ─────────────────────────────────────────────────────

def _fernet() -> Fernet:
    key = settings.ENCRYPTION_KEY
    if not key:
        key = base64.urlsafe_b64encode(
            hashlib.sha256(settings.JWT_SECRET.encode("utf-8")).digest()
        ).decode("ascii")
    return Fernet(key)


def encrypt_secret(plain: str) -> str:
    return _fernet().encrypt(plain.encode("utf-8")).decode("ascii")


def decrypt_secret(token: str) -> str:
    try:
        return _fernet().decrypt(token.encode("ascii")).decode("utf-8")
    except FernetInvalidToken as exc:
        raise ValueError("stored credential cannot be decrypted") from exc
