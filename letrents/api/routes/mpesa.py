"""
api/routes/mpesa.py
-------------------
M-Pesa paybill administration, reporting and Daraja C2B callbacks.

POST /api/v1/mpesa/paybill-settings                - Test credentials, register URLs, save.
GET  /api/v1/mpesa/paybill-settings                - Current settings (credentials masked).
GET  /api/v1/mpesa/transactions                    - Paged, company-scoped listing.
GET  /api/v1/mpesa/transactions/stats              - Totals for daily/weekly/monthly/yearly.
POST /api/v1/mpesa/transactions/{id}/reconcile     - Manual reconciliation.
POST /api/v1/mpesa/c2b/validation                  - Daraja validation callback (public).
POST /api/v1/mpesa/c2b/confirmation                - Daraja confirmation callback (public).

The two callbacks always answer HTTP 200 with {ResultCode, ResultDesc}, even
for bodies that are not JSON objects or fail schema validation, because Safaricom reads nothing else.
"""

from datetime import datetime
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from letrents.core.logging import get_logger
from letrents.db.session import get_db
from letrents.dependencies import get_current_user, get_mpesa_client, require_roles
from letrents.models.user import User, UserRole
from letrents.schemas.mpesa import (
    C2BEvent,
    PaybillSettingsCreate,
    PaybillSettingsRead,
    PaymentRead,
    TransactionPage,
    TransactionStats,
    WebhookResponse,
)
from letrents.services.mpesa_client import MpesaClient
from letrents.services.mpesa_service import MpesaService
from letrents.services.reconciliation_service import ReconciliationService

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/mpesa", tags=["M-Pesa"])

PaybillAdmin = Annotated[
    User,
    Depends(require_roles(UserRole.super_admin, UserRole.agency_admin, UserRole.landlord)),
]


# ── Paybill settings ──────────────────────────────────────────────────────────

@router.post(
    "/paybill-settings",
    response_model=PaybillSettingsRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create or update the company's paybill settings",
)
async def create_paybill_settings(
    body: PaybillSettingsCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: PaybillAdmin,
    client: Annotated[MpesaClient, Depends(get_mpesa_client)],
) -> PaybillSettingsRead:
    paybill = await MpesaService.create_paybill_settings(db, body, admin, client)
    return PaybillSettingsRead.model_validate(paybill)


@router.get(
    "/paybill-settings",
    response_model=Optional[PaybillSettingsRead],
    summary="Get the company's paybill settings",
)
async def get_paybill_settings(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
) -> Optional[PaybillSettingsRead]:
    paybill = await MpesaService.get_paybill_settings(db, current_user)
    return PaybillSettingsRead.model_validate(paybill) if paybill else None


# ── Transactions ──────────────────────────────────────────────────────────────

@router.get("/transactions", response_model=TransactionPage, summary="List M-Pesa transactions")
async def list_transactions(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    status_filter: Annotated[Optional[str], Query(alias="status")] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> TransactionPage:
    result = await MpesaService.list_transactions(
        db,
        current_user,
        page=page,
        limit=limit,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
    )
    return TransactionPage.model_validate(result, from_attributes=True)


@router.get(
    "/transactions/stats",
    response_model=TransactionStats,
    summary="Transaction totals for a period",
)
async def transaction_stats(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(get_current_user)],
    period: Annotated[str, Query(pattern="^(daily|weekly|monthly|yearly)$")] = "monthly",
) -> TransactionStats:
    return TransactionStats(**await MpesaService.transaction_stats(db, current_user, period))


@router.post(
    "/transactions/{transaction_id}/reconcile",
    response_model=PaymentRead,
    summary="Reconcile a confirmed transaction into a payment",
)
async def reconcile_transaction(
    transaction_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    admin: PaybillAdmin,
) -> PaymentRead:
    payment = await ReconciliationService.reconcile(db, transaction_id, actor=admin)
    return PaymentRead.model_validate(payment)


# ── Daraja C2B callbacks ──────────────────────────────────────────────────────

async def _read_callback(request: Request) -> tuple[Optional[dict[str, Any]], Optional[C2BEvent]]:
    """
    Return (body, event). Either is None when the body is not a JSON object
    or does not parse as a C2B event; the caller answers ResultCode 1.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("C2B callback body is not JSON", path=request.url.path)
        return None, None
    if not isinstance(payload, dict):
        logger.warning("C2B callback body is not an object", path=request.url.path)
        return None, None
    try:
        return payload, C2BEvent.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Malformed C2B payload", errors=exc.errors(include_url=False))
        return payload, None


@router.post(
    "/c2b/validation",
    response_model=WebhookResponse,
    summary="Daraja C2B validation callback",
)
async def c2b_validation(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> WebhookResponse:
    _, event = await _read_callback(request)
    if event is None:
        return WebhookResponse(ResultCode=1, ResultDesc="Validation error")
    return await MpesaService.validate(db, event)


@router.post(
    "/c2b/confirmation",
    response_model=WebhookResponse,
    summary="Daraja C2B confirmation callback",
)
async def c2b_confirmation(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> WebhookResponse:
    payload, event = await _read_callback(request)
    if event is None:
        return WebhookResponse(ResultCode=1, ResultDesc="Confirmation error")
    return await MpesaService.confirm(db, event, raw=payload)
