"""
schemas/mpesa.py
----------------
Pydantic models for paybill setup, inbound C2B callbacks and transaction
listings.

C2BEvent keeps Safaricom's field names verbatim (PascalCase): they are a
wire contract, and the raw payload is stored as-is for audit.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class C2BEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    TransactionType: Optional[str] = None
    TransID: str = Field(..., min_length=1)
    TransTime: Optional[str] = None
    TransAmount: Decimal
    BusinessShortCode: str
    BillRefNumber: str = ""
    InvoiceNumber: Optional[str] = None
    OrgAccountBalance: Optional[str] = None
    ThirdPartyTransID: Optional[str] = None
    MSISDN: Optional[str] = None
    FirstName: Optional[str] = None
    MiddleName: Optional[str] = None
    LastName: Optional[str] = None

    @field_validator("BusinessShortCode", "BillRefNumber", mode="before")
    @classmethod
    def coerce_str(cls, v):
        # Daraja sends shortcodes as strings, simulators often as numbers
        return str(v).strip() if v is not None else v

    @field_validator("OrgAccountBalance", "InvoiceNumber", mode="before")
    @classmethod
    def coerce_optional_str(cls, v):
        return str(v) if v is not None else v


class WebhookResponse(BaseModel):
    """The exact shape Safaricom expects back. Do not add fields."""
    ResultCode: int
    ResultDesc: str


class PaybillSettingsCreate(BaseModel):
    paybill_number: str = Field(..., min_length=1, max_length=20)
    business_shortcode: str = Field(..., min_length=1, max_length=20)
    consumer_key: str = Field(..., min_length=1)
    consumer_secret: str = Field(..., min_length=1)
    validation_url: Optional[str] = None
    confirmation_url: Optional[str] = None
    is_active: bool = True
    auto_reconcile: bool = True


class PaybillSettingsRead(BaseModel):
    id: str
    company_id: str
    paybill_number: str
    business_shortcode: str
    consumer_key: str = "***"
    consumer_secret: str = "***"
    validation_url: str
    confirmation_url: str
    is_active: bool
    auto_reconcile: bool
    created_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("consumer_key", "consumer_secret", mode="before")
    @classmethod
    def mask(cls, v) -> str:
        return "***"


class MpesaTransactionRead(BaseModel):
    id: str
    company_id: str
    trans_id: str
    trans_time: Optional[str] = None
    trans_amount: Decimal
    msisdn: Optional[str] = None
    bill_ref_number: Optional[str] = None
    business_short_code: Optional[str] = None
    tenant_id: Optional[str] = None
    unit_id: Optional[str] = None
    property_id: Optional[str] = None
    status: str
    payment_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionPage(BaseModel):
    transactions: list[MpesaTransactionRead]
    total: int
    page: int
    limit: int
    total_pages: int


class TransactionStats(BaseModel):
    period: str
    total_transactions: int
    total_amount: Decimal
    successful_transactions: int
    pending_transactions: int
    success_rate: float


class PaymentRead(BaseModel):
    id: str
    company_id: str
    tenant_id: Optional[str] = None
    unit_id: Optional[str] = None
    property_id: Optional[str] = None
    amount: Decimal
    currency: str
    payment_method: str
    payment_type: str
    status: str
    payment_date: datetime
    payment_period: Optional[str] = None
    receipt_number: str
    transaction_id: Optional[str] = None
    reference_number: Optional[str] = None
    received_from: Optional[str] = None
    processed_by: Optional[str] = None

    model_config = {"from_attributes": True}
