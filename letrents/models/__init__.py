"""
models/__init__.py
------------------
Re-export all models so Alembic's env.py can import Base and discover
all tables via a single import:

    from letrents.models import Base
"""

from letrents.db.base import Base
from letrents.models.company import Agency, Company
from letrents.models.user import User, UserRole, UserStatus
from letrents.models.token import (
    EmailVerificationToken,
    PasswordResetToken,
    RefreshToken,
)
from letrents.models.property import Property, Unit
from letrents.models.payment import Payment
from letrents.models.mpesa import MpesaTransaction, PaybillSettings, TransactionStatus

__all__ = [
    "Base",
    "Agency",
    "Company",
    "User",
    "UserRole",
    "UserStatus",
    "EmailVerificationToken",
    "PasswordResetToken",
    "RefreshToken",
    "Property",
    "Unit",
    "Payment",
    "MpesaTransaction",
    "PaybillSettings",
    "TransactionStatus",
]
