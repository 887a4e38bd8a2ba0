"""Tests for ReconciliationService: one Payment per transaction, ever."""

from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update
from sqlalchemy.orm.attributes import set_committed_value

from letrents.core.exceptions import AlreadyReconciled, TransactionNotFound
from letrents.db.base import utcnow
from letrents.models import Company, MpesaTransaction, Payment
from letrents.models.mpesa import TransactionStatus
from letrents.models.user import UserRole
from letrents.services.reconciliation_service import ReconciliationService


@pytest_asyncio.fixture
async def confirmed(db_session, estate):
    txn = MpesaTransaction(
        company_id=estate["company"].id,
        paybill_settings_id=estate["paybill"].id,
        transaction_type="Pay Bill",
        trans_id="RKTQDM7W6S",
        trans_time="20261019143015",
        trans_amount=Decimal("5000.00"),
        msisdn="254708374149",
        bill_ref_number="A1",
        business_short_code="600100",
        tenant_id=estate["tenant"].id,
        unit_id=estate["unit"].id,
        property_id=estate["property"].id,
        status=TransactionStatus.confirmed.value,
        raw_response={"TransID": "RKTQDM7W6S"},
    )
    db_session.add(txn)
    await db_session.commit()
    return txn


async def _payments(db) -> int:
    return (await db.execute(select(func.count()).select_from(Payment))).scalar_one()


@pytest.mark.asyncio
async def test_reconcile_creates_linked_payment(db_session, estate, confirmed):
    landlord = estate["landlord"]
    payment = await ReconciliationService.reconcile(db_session, confirmed.id, actor=landlord)

    assert payment.amount == Decimal("5000.00")
    assert payment.currency == "KES"
    assert payment.payment_method == "mpesa"
    assert payment.payment_type == "rent"
    assert payment.status == "approved"
    assert payment.receipt_number == "MPESA-RKTQDM7W6S"
    assert payment.transaction_id == "RKTQDM7W6S"
    assert payment.reference_number == "A1"
    assert payment.received_by == "M-Pesa Paybill"
    assert payment.received_from == "254708374149 (M-Pesa)"
    assert payment.notes == "M-Pesa payment via paybill 600100"
    assert payment.payment_period == utcnow().strftime("%B %Y")
    assert payment.processed_by == landlord.id
    assert payment.created_by == estate["tenant"].id
    assert (payment.tenant_id, payment.unit_id, payment.property_id) == (
        estate["tenant"].id,
        estate["unit"].id,
        estate["property"].id,
    )

    await db_session.refresh(confirmed)
    assert confirmed.payment_id == payment.id
    assert confirmed.status == TransactionStatus.reconciled.value
    assert confirmed.processed_at is not None


@pytest.mark.asyncio
async def test_second_reconcile_is_rejected(db_session, confirmed):
    await ReconciliationService.reconcile(db_session, confirmed.id)

    with pytest.raises(AlreadyReconciled):
        await ReconciliationService.reconcile(db_session, confirmed.id)
    assert await _payments(db_session) == 1


@pytest.mark.asyncio
async def test_stale_read_cannot_create_second_payment(db_session, confirmed):
    """A second reconciler that read payment_id=None before the first committed."""
    txn_id = confirmed.id
    first_id = (await ReconciliationService.reconcile(db_session, txn_id)).id

    # The identity map now holds the pre-commit view another request would have seen.
    set_committed_value(confirmed, "payment_id", None)

    with pytest.raises(AlreadyReconciled):
        await ReconciliationService.reconcile(db_session, txn_id)

    # rollback expired every loaded instance; read through plain ids only
    assert await _payments(db_session) == 1
    row = (
        await db_session.execute(
            select(MpesaTransaction.payment_id).where(MpesaTransaction.id == txn_id)
        )
    ).scalar_one()
    assert row == first_id


@pytest.mark.asyncio
async def test_link_set_elsewhere_rejects_without_second_payment(db_session, confirmed):
    """Another writer links the row after this session loaded it."""
    txn_id = confirmed.id
    manual = Payment(
        company_id=confirmed.company_id,
        amount=Decimal("5000.00"),
        payment_method="cash",
        payment_date=utcnow(),
        receipt_number="CASH-0001",
    )
    db_session.add(manual)
    await db_session.commit()
    manual_id = manual.id

    await db_session.execute(
        update(MpesaTransaction)
        .where(MpesaTransaction.id == txn_id)
        .values(payment_id=manual_id)
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()
    assert confirmed.payment_id is None  # loaded copy is stale

    with pytest.raises(AlreadyReconciled):
        await ReconciliationService.reconcile(db_session, txn_id)

    assert await _payments(db_session) == 1
    row = (
        await db_session.execute(
            select(MpesaTransaction.payment_id).where(MpesaTransaction.id == txn_id)
        )
    ).scalar_one()
    assert row == manual_id


@pytest.mark.asyncio
async def test_unknown_transaction(db_session):
    with pytest.raises(TransactionNotFound):
        await ReconciliationService.reconcile(db_session, "00000000-0000-4000-8000-000000000000")


@pytest.mark.asyncio
async def test_other_company_cannot_reconcile(db_session, confirmed, make_user):
    other = Company(name="Elsewhere Ltd")
    db_session.add(other)
    await db_session.commit()
    outsider = await make_user(email="out@example.com", company_id=other.id)

    with pytest.raises(TransactionNotFound):
        await ReconciliationService.reconcile(db_session, confirmed.id, actor=outsider)
    assert await _payments(db_session) == 0


@pytest.mark.asyncio
async def test_super_admin_can_reconcile_any_company(db_session, confirmed, make_user):
    admin = await make_user(email="root@example.com", role=UserRole.super_admin)
    payment = await ReconciliationService.reconcile(db_session, confirmed.id, actor=admin)
    assert payment.processed_by == admin.id
