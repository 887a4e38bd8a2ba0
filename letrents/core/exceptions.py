"""
core/exceptions.py
------------------
Domain error taxonomy.

Services raise these; they never build HTTP responses themselves.
main.py renders any LetRentsError as {"detail": message} with its
status_code. Webhook rejections are the exception to that rule: the
M-Pesa service absorbs them into the {ResultCode, ResultDesc} contract
and they never reach the HTTP layer.
"""

from fastapi import status


class LetRentsError(Exception):
    """Base class for all expected, user-facing failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ── Authentication / session ──────────────────────────────────────────────────

class InvalidCredentials(LetRentsError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "invalid credentials"


class UserNotFound(LetRentsError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "user not found"


class AccountInactive(LetRentsError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "user account is inactive"


class NotVerified(LetRentsError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "user account is not verified"


class DuplicateEmail(LetRentsError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "email already exists"


class InvalidToken(LetRentsError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "invalid token"


class TokenExpired(LetRentsError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "token expired"


class TokenAlreadyUsed(LetRentsError):
    default_message = "token has already been used"


class InvitationMismatch(LetRentsError):
    """An invitation resolved to an account that cannot accept it."""

    default_message = "invitation does not match this registration"


class PermissionDenied(LetRentsError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "insufficient permissions"


# ── Payments ──────────────────────────────────────────────────────────────────

class TransactionNotFound(LetRentsError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "M-Pesa transaction not found"


class AlreadyReconciled(LetRentsError):
    default_message = "transaction already reconciled"


class GatewayAuthFailed(LetRentsError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "failed to get M-Pesa access token"


class GatewayRegistrationFailed(LetRentsError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "failed to register C2B URLs"


# ── Webhook rejections (ResultCode 1) ─────────────────────────────────────────

class WebhookRejection(LetRentsError):
    """Carries the ResultDesc sent back to the gateway."""

    default_message = "Validation error"


class InvalidShortcode(WebhookRejection):
    default_message = "Invalid business shortcode"


class InvalidUnit(WebhookRejection):
    default_message = "Invalid unit number"


class UnitVacant(WebhookRejection):
    default_message = "Unit is not occupied"


class AmountTooLow(WebhookRejection):
    default_message = "Amount is less than rent amount"
