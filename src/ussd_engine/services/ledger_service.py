"""Transaction ledger - durable record of every payment attempt.

Provides idempotent bookkeeping for payment transactions:
- One row per client reference (the originating USSD session id)
- Upserts instead of inserts, so retried callbacks never duplicate
- Monotonic status, validated by TransactionStateMachine
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ussd_engine.models import PaymentTransaction, utcnow
from ussd_engine.providers.base import StatusCheckResult
from ussd_engine.services.response_codes import CodeClassification
from ussd_engine.services.state_machine import TransactionStateMachine, TransactionStatus

logger = logging.getLogger(__name__)

OPEN_STATUSES = (TransactionStatus.PENDING.value, TransactionStatus.PROCESSING.value)


@dataclass(frozen=True)
class UpsertResult:
    """Result of a ledger upsert.

    `transitioned` says whether this call moved the payment status. It
    does not gate delivery: use `TransactionLedger.claim_fulfillment`,
    which also covers transactions the status poller completed first.
    """

    transaction: PaymentTransaction
    is_new: bool  # True if the row was created by this call
    transitioned: bool  # True if this call moved the status
    previous_status: str | None

    @property
    def was_duplicate(self) -> bool:
        return not self.is_new and not self.transitioned


class TransactionLedger:
    """Idempotent payment transaction bookkeeping.

    Notes:
    - client_reference is unique; it equals the USSD session id.
    - completed and failed are terminal; later updates only bump counters.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, client_reference: str) -> PaymentTransaction | None:
        result = await self.db.execute(
            select(PaymentTransaction).where(
                PaymentTransaction.client_reference == client_reference
            )
        )
        return result.scalar_one_or_none()

    async def get_by_order_id(self, order_id: str) -> PaymentTransaction | None:
        result = await self.db.execute(
            select(PaymentTransaction).where(PaymentTransaction.order_id == order_id)
        )
        return result.scalars().first()

    async def open_pending(
        self,
        *,
        client_reference: str,
        session_id: str,
        amount: Decimal,
        service_type: str | None,
        mobile_number: str | None,
        product_name: str | None = None,
        extra_data: dict[str, Any] | None = None,
    ) -> UpsertResult:
        """Record a payment request before the mobile-money prompt goes out.

        Returns the existing row unchanged when one exists for the reference.
        """
        if amount <= 0:
            raise ValueError("Amount must be positive")

        existing = await self.get(client_reference)
        if existing is not None:
            return UpsertResult(existing, is_new=False, transitioned=False,
                                previous_status=existing.status)

        txn = PaymentTransaction(
            client_reference=client_reference,
            session_id=session_id,
            status=TransactionStatus.PENDING.value,
            amount=amount,
            service_type=service_type,
            mobile_number=mobile_number,
            product_name=product_name,
            extra_data=extra_data or {},
        )
        self.db.add(txn)
        await self.db.flush()
        logger.info("Opened pending transaction %s for %s", client_reference, amount)
        return UpsertResult(txn, is_new=True, transitioned=False, previous_status=None)

    async def record_callback(
        self,
        *,
        session_id: str,
        order_id: str | None,
        is_successful: bool,
        amount_paid: Decimal | None,
        amount_after_charges: Decimal | None,
        payment_type: str | None,
        mobile_number: str | None = None,
        service_type: str | None = None,
        extra_data: dict[str, Any] | None = None,
    ) -> UpsertResult:
        """Upsert the transaction for a payment callback.

        The session id is the key. The status moves with a conditional
        UPDATE, so of two callbacks racing on one open row exactly one
        reports `transitioned`. A callback for a terminal transaction is
        counted but never changes its status.
        """
        target = (
            TransactionStatus.COMPLETED.value if is_successful else TransactionStatus.FAILED.value
        )
        charges = None
        if amount_paid is not None and amount_after_charges is not None:
            charges = amount_paid - amount_after_charges

        txn = await self.get(session_id)
        if txn is None:
            txn = PaymentTransaction(
                client_reference=session_id,
                session_id=session_id,
                order_id=order_id,
                status=target,
                amount=amount_paid or Decimal("0"),
                amount_paid=amount_paid,
                amount_after_charges=amount_after_charges,
                charges=charges,
                payment_type=payment_type,
                mobile_number=mobile_number,
                service_type=service_type,
                callback_received=True,
                callback_count=1,
                extra_data=extra_data or {},
            )
            self.db.add(txn)
            await self.db.flush()
            logger.warning(
                "Callback for unknown transaction %s; created as %s", session_id, target
            )
            return UpsertResult(txn, is_new=True, transitioned=True, previous_status=None)

        previous = txn.status
        if TransactionStateMachine.is_open(previous):
            TransactionStateMachine.validate_transition(previous, target)

        counters = {
            "callback_received": True,
            "callback_count": PaymentTransaction.callback_count + 1,
            "order_id": func.coalesce(PaymentTransaction.order_id, order_id),
        }
        values: dict[str, Any] = {
            **counters,
            "status": target,
            "amount_paid": amount_paid,
            "amount_after_charges": amount_after_charges,
            "charges": charges,
            "payment_type": payment_type,
        }
        if extra_data:
            values["extra_data"] = {**(txn.extra_data or {}), **extra_data}

        moved = await self.db.execute(
            update(PaymentTransaction)
            .where(
                PaymentTransaction.client_reference == session_id,
                PaymentTransaction.status.in_(OPEN_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        transitioned = moved.rowcount > 0
        if not transitioned:
            await self.db.execute(
                update(PaymentTransaction)
                .where(PaymentTransaction.client_reference == session_id)
                .values(**counters)
                .execution_options(synchronize_session=False)
            )
        await self.db.refresh(txn)

        if transitioned:
            logger.info("Transaction %s %s -> %s", session_id, previous, target)
        else:
            logger.info(
                "Duplicate callback for %s ignored (already %s)", session_id, txn.status
            )
        return UpsertResult(
            txn, is_new=False, transitioned=transitioned, previous_status=previous
        )

    async def claim_fulfillment(self, client_reference: str) -> bool:
        """Take the one-time right to deliver a completed order.

        Returns True for exactly one caller per transaction, however many
        callbacks race for it and whichever path completed the payment.
        """
        result = await self.db.execute(
            update(PaymentTransaction)
            .where(
                PaymentTransaction.client_reference == client_reference,
                PaymentTransaction.status == TransactionStatus.COMPLETED.value,
                PaymentTransaction.fulfillment_claimed_at.is_(None),
            )
            .values(fulfillment_claimed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def apply_status_result(
        self,
        txn: PaymentTransaction,
        classification: CodeClassification,
        result: StatusCheckResult | None = None,
    ) -> bool:
        """Apply a remote status check to an open transaction.

        Returns True if the status changed. A callback that settled the
        transaction in the meantime wins; the check then only records
        when it ran.
        """
        checked = {
            "last_status_check_at": utcnow(),
            "last_response_code": classification.code,
        }
        target = classification.transaction_status

        still_pending = target == TransactionStatus.PENDING.value
        if still_pending or not TransactionStateMachine.is_open(txn.status):
            await self._update(txn, **checked)
            return False

        TransactionStateMachine.validate_transition(txn.status, target)
        previous = txn.status
        values: dict[str, Any] = {**checked, "status": target}
        if result is not None:
            if result.amount is not None:
                values["amount_paid"] = result.amount
            if result.amount_after_charges is not None:
                values["amount_after_charges"] = result.amount_after_charges
            if result.charges is not None:
                values["charges"] = result.charges
            if result.payment_method:
                values["payment_type"] = result.payment_method

        moved = await self.db.execute(
            update(PaymentTransaction)
            .where(
                PaymentTransaction.id == txn.id,
                PaymentTransaction.status.in_(OPEN_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount == 0:
            await self._update(txn, **checked)
            return False

        await self.db.refresh(txn)
        logger.info(
            "Status check moved %s %s -> %s (code %s)",
            txn.client_reference, previous, target, classification.code,
        )
        return True

    async def _update(self, txn: PaymentTransaction, **values: Any) -> None:
        await self.db.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.id == txn.id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(txn)


    async def find_open_older_than(
        self, cutoff: datetime, limit: int | None = None
    ) -> list[PaymentTransaction]:
        """Pending or processing transactions created before the cutoff."""
        stmt = (
            select(PaymentTransaction)
            .where(
                PaymentTransaction.status.in_(
                    OPEN_STATUSES
                ),
                PaymentTransaction.created_at < cutoff,
            )
            .order_by(PaymentTransaction.created_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
