"""
services/reconciliation_service.py
----------------------------------
Turns a confirmed M-Pesa transaction into a ledger Payment, exactly once.

The Payment insert and the transaction link share one DB transaction. The
link is a conditional UPDATE (only while payment_id IS NULL), so of two
concurrent reconciliations only one can commit; the loser rolls back its
Payment and gets AlreadyReconciled.
"""

import uuid

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from letrents.core.exceptions import AlreadyReconciled, TransactionNotFound
from letrents.core.logging import get_logger
from letrents.db.base import utcnow
from letrents.models.mpesa import MpesaTransaction, TransactionStatus
from letrents.models.payment import Payment
from letrents.models.user import User, UserRole

logger = get_logger(__name__)


def _visible_to(txn: MpesaTransaction, actor: User | None) -> bool:
    """Webhook-driven runs have no actor; people only reach their own company."""
    if actor is None or actor.role == UserRole.super_admin.value:
        return True
    return txn.company_id == actor.company_id


class ReconciliationService:

    @staticmethod
    async def reconcile(
        db: AsyncSession,
        transaction_id: str,
        actor: User | None = None,
    ) -> Payment:
        """
        Create the Payment for *transaction_id* and link it back.

        Raises:
            TransactionNotFound: unknown id.
            AlreadyReconciled: payment_id already set, or lost a concurrent race.
        """
        txn = await db.get(MpesaTransaction, transaction_id)
        if txn is None or not _visible_to(txn, actor):
            raise TransactionNotFound()
        if txn.payment_id:
            raise AlreadyReconciled()

        now = utcnow()
        payment = Payment(
            id=str(uuid.uuid4()),
            company_id=txn.company_id,
            tenant_id=txn.tenant_id,
            unit_id=txn.unit_id,
            property_id=txn.property_id,
            amount=txn.trans_amount,
            currency="KES",
            payment_method="mpesa",
            payment_type="rent",
            status="approved",
            payment_date=now,
            payment_period=now.strftime("%B %Y"),
            receipt_number=f"MPESA-{txn.trans_id}",
            transaction_id=txn.trans_id,
            reference_number=txn.bill_ref_number,
            received_by="M-Pesa Paybill",
            received_from=f"{txn.msisdn} (M-Pesa)",
            notes=f"M-Pesa payment via paybill {txn.business_short_code}",
            processed_by=actor.id if actor else None,
            processed_at=now,
            created_by=txn.tenant_id,
        )
        db.add(payment)

        try:
            # receipt_number is unique: a second Payment for this trans_id fails here
            await db.flush()
            result = await db.execute(
                update(MpesaTransaction)
                .where(
                    MpesaTransaction.id == transaction_id,
                    MpesaTransaction.payment_id.is_(None),
                )
                .values(
                    payment_id=payment.id,
                    status=TransactionStatus.reconciled.value,
                    processed_at=now,
                )
            )
        except IntegrityError:
            await db.rollback()
            raise AlreadyReconciled()

        if result.rowcount != 1:
            await db.rollback()
            raise AlreadyReconciled()

        await db.commit()
        logger.info(
            "Transaction reconciled",
            transaction_id=transaction_id,
            payment_id=payment.id,
            receipt_number=payment.receipt_number,
        )
        return payment
