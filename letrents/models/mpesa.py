"""
models/mpesa.py
---------------
M-Pesa paybill configuration and inbound C2B transactions.

trans_id is the provider's idempotency key and carries a UNIQUE
constraint: a redelivered confirmation can never create a second row.
payment_id is set exactly once, by a conditional UPDATE in the
reconciliation service.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from letrents.db.base import Base, TimestampMixin, UTCDateTime


class TransactionStatus(str, PyEnum):
    pending = "pending"
    confirmed = "confirmed"
    reconciled = "reconciled"


class PaybillSettings(Base, TimestampMixin):
    __tablename__ = "paybill_settings"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    company_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("companies.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    paybill_number: Mapped[str] = mapped_column(String(20), nullable=False)
    business_shortcode: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    # Fernet ciphertext - see core.security.encrypt_secret
    consumer_key: Mapped[str] = mapped_column(Text, nullable=False)
    consumer_secret: Mapped[str] = mapped_column(Text, nullable=False)
    validation_url: Mapped[str] = mapped_column(String(500), nullable=False)
    confirmation_url: Mapped[str] = mapped_column(String(500), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_reconcile: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<PaybillSettings company_id={self.company_id} shortcode={self.business_shortcode}>"


class MpesaTransaction(Base, TimestampMixin):
    __tablename__ = "mpesa_transactions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    company_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    paybill_settings_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("paybill_settings.id", ondelete="SET NULL"), nullable=True
    )

    # ── Provider fields (Daraja C2B) ────────────────────────────────────
    transaction_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    trans_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    trans_time: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    trans_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    msisdn: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    bill_ref_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    business_short_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    invoice_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    org_account_balance: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # ── Resolved links ──────────────────────────────────────────────────
    tenant_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    unit_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("units.id", ondelete="SET NULL"), nullable=True
    )
    property_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("properties.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.confirmed.value, index=True
    )
    payment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("payments.id", ondelete="SET NULL"), nullable=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    raw_response: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<MpesaTransaction trans_id={self.trans_id} status={self.status}>"
