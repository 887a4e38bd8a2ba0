"""
services/mpesa_service.py
-------------------------
Paybill setup, C2B webhooks and transaction reporting.

Webhook contract:
  validate() and confirm() always return a WebhookResponse. Every failure
  becomes ResultCode 1 with a ResultDesc; nothing is raised to the route.

Paybill setup is interactive, so gateway failures propagate to the admin.
Reporting queries are scoped by company (super admins see every company;
tenants only their own payments).
"""

import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from letrents.core.config import settings
from letrents.core.exceptions import (
    AmountTooLow,
    InvalidShortcode,
    InvalidUnit,
    PermissionDenied,
    UnitVacant,
    WebhookRejection,
)
from letrents.core.logging import get_logger
from letrents.core.security import encrypt_secret
from letrents.db.base import utcnow
from letrents.models.mpesa import MpesaTransaction, PaybillSettings, TransactionStatus
from letrents.models.property import Unit
from letrents.models.user import User, UserRole
from letrents.schemas.mpesa import C2BEvent, PaybillSettingsCreate, WebhookResponse
from letrents.services.mpesa_client import MpesaClient, MpesaCredentials
from letrents.services.reconciliation_service import ReconciliationService

logger = get_logger(__name__)

PAYBILL_ADMIN_ROLES = {
    UserRole.super_admin.value,
    UserRole.agency_admin.value,
    UserRole.landlord.value,
}
STATS_PERIODS = {
    "daily": None,
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
    "yearly": timedelta(days=365),
}


def _accept(desc: str = "Success") -> WebhookResponse:
    return WebhookResponse(ResultCode=0, ResultDesc=desc)


def _reject(desc: str) -> WebhookResponse:
    return WebhookResponse(ResultCode=1, ResultDesc=desc)


class MpesaService:

    # ── Paybill settings ──────────────────────────────────────────────────────

    @staticmethod
    async def create_paybill_settings(
        db: AsyncSession,
        data: PaybillSettingsCreate,
        user: User,
        client: MpesaClient,
    ) -> PaybillSettings:
        """
        Test the credentials, register the C2B callbacks, then upsert the
        company's paybill row with encrypted credentials.

        Raises PermissionDenied, GatewayAuthFailed or GatewayRegistrationFailed.
        Nothing is written unless both gateway calls succeed.
        """
        if user.role not in PAYBILL_ADMIN_ROLES:
            raise PermissionDenied("insufficient permissions to manage paybill settings")
        if not user.company_id:
            raise PermissionDenied("user must belong to a company")

        api_url = settings.API_URL.rstrip("/")
        validation_url = data.validation_url or f"{api_url}/api/v1/mpesa/c2b/validation"
        confirmation_url = data.confirmation_url or f"{api_url}/api/v1/mpesa/c2b/confirmation"
        credentials = MpesaCredentials(data.consumer_key, data.consumer_secret)

        await client.get_access_token(credentials)
        await client.register_urls(
            credentials,
            shortcode=data.business_shortcode,
            validation_url=validation_url,
            confirmation_url=confirmation_url,
        )

        result = await db.execute(
            select(PaybillSettings).where(PaybillSettings.company_id == user.company_id)
        )
        paybill = result.scalar_one_or_none()
        if paybill is None:
            paybill = PaybillSettings(company_id=user.company_id, created_by=user.id)
            db.add(paybill)

        paybill.paybill_number = data.paybill_number
        paybill.business_shortcode = data.business_shortcode
        paybill.consumer_key = encrypt_secret(data.consumer_key)
        paybill.consumer_secret = encrypt_secret(data.consumer_secret)
        paybill.validation_url = validation_url
        paybill.confirmation_url = confirmation_url
        paybill.is_active = data.is_active
        paybill.auto_reconcile = data.auto_reconcile

        await db.commit()
        await db.refresh(paybill)
        logger.info(
            "Paybill settings saved",
            company_id=user.company_id,
            shortcode=paybill.business_shortcode,
        )
        return paybill

    @staticmethod
    async def get_paybill_settings(db: AsyncSession, user: User) -> PaybillSettings | None:
        if not user.company_id:
            raise PermissionDenied("user must belong to a company")
        result = await db.execute(
            select(PaybillSettings).where(PaybillSettings.company_id == user.company_id)
        )
        return result.scalar_one_or_none()

    # ── C2B webhooks ──────────────────────────────────────────────────────────

    @staticmethod
    async def _resolve_target(
        db: AsyncSession, event: C2BEvent
    ) -> tuple[PaybillSettings, Unit]:
        """Active paybill by shortcode, then the occupied unit named by BillRefNumber."""
        result = await db.execute(
            select(PaybillSettings)
            .where(
                PaybillSettings.business_shortcode == event.BusinessShortCode,
                PaybillSettings.is_active.is_(True),
            )
            .limit(1)
        )
        paybill = result.scalar_one_or_none()
        if paybill is None:
            raise InvalidShortcode()

        result = await db.execute(
            select(Unit)
            .where(
                Unit.unit_number == event.BillRefNumber,
                Unit.company_id == paybill.company_id,
            )
            .limit(1)
        )
        unit = result.scalar_one_or_none()
        if unit is None:
            raise InvalidUnit()
        if unit.current_tenant_id is None:
            raise UnitVacant()
        return paybill, unit

    @staticmethod
    async def validate(db: AsyncSession, event: C2BEvent) -> WebhookResponse:
        try:
            _, unit = await MpesaService._resolve_target(db, event)
            if event.TransAmount < Decimal(unit.rent_amount):
                raise AmountTooLow()
        except WebhookRejection as exc:
            logger.info(
                "C2B validation rejected",
                trans_id=event.TransID,
                shortcode=event.BusinessShortCode,
                bill_ref=event.BillRefNumber,
                reason=exc.message,
            )
            return _reject(exc.message)
        except Exception:
            logger.exception("C2B validation error", trans_id=event.TransID)
            return _reject("Validation error")

        logger.info("C2B validation accepted", trans_id=event.TransID)
        return _accept()

    @staticmethod
    async def _find_transaction_id(db: AsyncSession, trans_id: str) -> Optional[str]:
        result = await db.execute(
            select(MpesaTransaction.id).where(MpesaTransaction.trans_id == trans_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def confirm(
        db: AsyncSession,
        event: C2BEvent,
        raw: Optional[dict[str, Any]] = None,
    ) -> WebhookResponse:
        """
        Record the transaction once per TransID, then auto-reconcile if the
        paybill asks for it. A reconciliation failure is logged only: the
        transaction is already durable and the gateway still gets an accept.

        *raw* is the body exactly as the gateway sent it and is stored as the
        audit copy; callers without one get the parsed event instead.
        """
        try:
            paybill, unit = await MpesaService._resolve_target(db, event)

            if await MpesaService._find_transaction_id(db, event.TransID) is not None:
                logger.info("C2B confirmation already processed", trans_id=event.TransID)
                return _accept("Transaction already processed")

            txn = MpesaTransaction(
                company_id=paybill.company_id,
                paybill_settings_id=paybill.id,
                transaction_type=event.TransactionType,
                trans_id=event.TransID,
                trans_time=event.TransTime,
                trans_amount=event.TransAmount,
                msisdn=event.MSISDN,
                bill_ref_number=event.BillRefNumber,
                business_short_code=event.BusinessShortCode,
                invoice_number=event.InvoiceNumber,
                org_account_balance=event.OrgAccountBalance,
                tenant_id=unit.current_tenant_id,
                unit_id=unit.id,
                property_id=unit.property_id,
                status=TransactionStatus.confirmed.value,
                raw_response=raw if raw is not None else event.model_dump(mode="json"),
            )
            db.add(txn)
            try:
                await db.commit()
            except IntegrityError:
                # A concurrent delivery of the same TransID won the insert
                await db.rollback()
                logger.info("C2B confirmation already processed", trans_id=event.TransID)
                return _accept("Transaction already processed")
        except WebhookRejection as exc:
            logger.info("C2B confirmation rejected", trans_id=event.TransID, reason=exc.message)
            return _reject(exc.message)
        except Exception:
            logger.exception("C2B confirmation error", trans_id=event.TransID)
            await db.rollback()
            return _reject("Confirmation error")

        logger.info(
            "C2B transaction confirmed",
            trans_id=txn.trans_id,
            company_id=txn.company_id,
            amount=str(txn.trans_amount),
        )

        if paybill.auto_reconcile:
            try:
                await ReconciliationService.reconcile(db, txn.id)
            except Exception:
                logger.exception("Auto-reconciliation failed", trans_id=event.TransID)
                await db.rollback()

        return _accept()

    # ── Reporting ─────────────────────────────────────────────────────────────

    @staticmethod
    def _scope(stmt, user: User):
        if user.role == UserRole.super_admin.value:
            return stmt
        if not user.company_id:
            raise PermissionDenied("user must belong to a company")
        stmt = stmt.where(MpesaTransaction.company_id == user.company_id)
        if user.role == UserRole.tenant.value:
            stmt = stmt.where(MpesaTransaction.tenant_id == user.id)
        return stmt

    @staticmethod
    async def list_transactions(
        db: AsyncSession,
        user: User,
        page: int = 1,
        limit: int = 10,
        status: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> dict:
        page = max(page, 1)
        limit = max(limit, 1)

        filters = []
        if status:
            filters.append(MpesaTransaction.status == status)
        if start_date:
            filters.append(MpesaTransaction.created_at >= start_date)
        if end_date:
            filters.append(MpesaTransaction.created_at <= end_date)

        count_stmt = MpesaService._scope(
            select(func.count(MpesaTransaction.id)).where(*filters), user
        )
        total = (await db.execute(count_stmt)).scalar_one()

        rows_stmt = (
            MpesaService._scope(select(MpesaTransaction).where(*filters), user)
            .order_by(MpesaTransaction.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        transactions = list((await db.execute(rows_stmt)).scalars().all())

        return {
            "transactions": transactions,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit),
        }

    @staticmethod
    async def transaction_stats(
        db: AsyncSession, user: User, period: str = "monthly"
    ) -> dict:
        """Counts and sum over the period; unknown periods fall back to monthly."""
        if period not in STATS_PERIODS:
            period = "monthly"
        now = utcnow()
        window = STATS_PERIODS[period]
        start = (
            now.replace(hour=0, minute=0, second=0, microsecond=0)
            if window is None
            else now - window
        )

        reconciled = TransactionStatus.reconciled.value
        pending = TransactionStatus.pending.value
        stmt = MpesaService._scope(
            select(
                func.count(MpesaTransaction.id),
                func.coalesce(func.sum(MpesaTransaction.trans_amount), 0),
                func.count(MpesaTransaction.id).filter(MpesaTransaction.status == reconciled),
                func.count(MpesaTransaction.id).filter(MpesaTransaction.status == pending),
            ).where(
                MpesaTransaction.created_at >= start,
                MpesaTransaction.created_at <= now,
            ),
            user,
        )
        total, amount, successful, waiting = (await db.execute(stmt)).one()

        return {
            "period": period,
            "total_transactions": total,
            "total_amount": Decimal(str(amount)),
            "successful_transactions": successful,
            "pending_transactions": waiting,
            "success_rate": (successful / total * 100) if total else 0.0,
        }
