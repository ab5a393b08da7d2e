"""Commission log bookkeeping.

One entry per client reference, written when the payment result is known
and updated as fulfillment and status checks report back. Earnings are
derived from entries that are Paid and fulfilled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ussd_engine.database import Page, insert_ignore, paginate
from ussd_engine.models import CommissionLog, utcnow
from ussd_engine.providers.base import ProviderResponse, StatusCheckResult
from ussd_engine.services.response_codes import CodeClassification

logger = logging.getLogger(__name__)

# Failed deliveries are offered for retry at most this many times
MAX_RETRIES = 3
RETRY_BATCH_LIMIT = 100


@dataclass(frozen=True)
class CommissionStats:
    """Counts and sums over every commission log entry."""

    total: int
    successful: int
    failed: int
    delivered: int
    failed_services: int
    pending_services: int
    total_amount: Decimal
    total_charges: Decimal
    total_amount_after_charges: Decimal

    @property
    def success_rate(self) -> str:
        return _percent(self.successful, self.total)

    @property
    def delivery_rate(self) -> str:
        return _percent(self.delivered, self.total)


def _percent(part: int, whole: int) -> str:
    return f"{part / whole * 100:.2f}" if whole else "0"


class CommissionLogService:
    """Upserts and updates commission log entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, client_reference: str) -> CommissionLog | None:
        result = await self.db.execute(
            select(CommissionLog).where(CommissionLog.client_reference == client_reference)
        )
        return result.scalar_one_or_none()

    async def record_payment(
        self,
        *,
        client_reference: str,
        session_id: str | None,
        mobile_number: str,
        service_type: str | None,
        amount: Decimal,
        amount_after_charges: Decimal,
        classification: CodeClassification,
        network: str | None = None,
        destination: str | None = None,
    ) -> tuple[CommissionLog, bool]:
        """Create or refresh the entry for a payment result.

        Returns (entry, is_new).
        """
        charges = amount - amount_after_charges
        status = "Paid" if classification.is_successful else "Unpaid"
        entry = await self.get(client_reference)
        is_new = False
        if entry is None:
            # Two callbacks for one reference may both get here
            inserted = await self.db.execute(
                insert_ignore(
                    self.db,
                    CommissionLog,
                    ["client_reference"],
                    client_reference=client_reference,
                    session_id=session_id,
                    mobile_number=mobile_number,
                    service_type=service_type,
                    amount=amount,
                    charges=charges,
                    amount_after_charges=amount_after_charges,
                    network=network,
                    destination=destination,
                )
            )
            is_new = inserted.rowcount > 0
            entry = await self.get(client_reference)
            assert entry is not None
        if entry.status == "Paid" and status != "Paid":
            # A later failure report never downgrades a confirmed payment
            await self.db.flush()
            return entry, False

        entry.status = status
        entry.response_code = classification.code
        entry.message = classification.message
        if not classification.is_successful:
            entry.commission_service_status = "failed"
        await self.db.flush()
        return entry, is_new

    async def mark_fulfillment(
        self, client_reference: str, response: ProviderResponse | None, error: str | None = None
    ) -> CommissionLog | None:
        """Record the outcome of the commission service call."""
        entry = await self.get(client_reference)
        if entry is None:
            logger.warning("No commission log for %s; fulfillment not recorded", client_reference)
            return None

        if response is None:
            entry.commission_service_status = "failed"
            entry.is_fulfilled = False
            entry.message = error or "Commission service request failed"
        else:
            # 0001 means accepted; the service callback settles it later
            delivered = response.response_code == "0000" and bool(response.is_fulfilled)
            accepted = response.response_code in ("0000", "0001")
            entry.commission_service_status = (
                "delivered" if delivered else ("pending" if accepted else "failed")
            )
            entry.is_fulfilled = delivered
            entry.message = response.message
            entry.provider_transaction_id = response.transaction_id
            if response.commission is not None:
                entry.commission = response.commission
        await self.db.flush()
        return entry

    async def record_service_callback(
        self,
        client_reference: str,
        *,
        response_code: str,
        is_fulfilled: bool,
        message: str | None = None,
        commission: Decimal | None = None,
        transaction_id: str | None = None,
    ) -> CommissionLog | None:
        """Apply the commission provider's asynchronous delivery result."""
        entry = await self.get(client_reference)
        if entry is None:
            logger.warning("Service callback for unknown reference %s", client_reference)
            return None
        delivered = response_code == "0000" and is_fulfilled
        entry.is_fulfilled = delivered
        entry.commission_service_status = "delivered" if delivered else "failed"
        entry.message = message or entry.message
        if commission is not None:
            entry.commission = commission
        if transaction_id:
            entry.provider_transaction_id = transaction_id
        await self.db.flush()
        return entry

    async def apply_status_result(
        self,
        client_reference: str,
        classification: CodeClassification,
        result: StatusCheckResult,
    ) -> CommissionLog | None:
        """Reflect a status check on an existing entry."""
        entry = await self.get(client_reference)
        if entry is None:
            return None
        if classification.is_successful:
            entry.status = "Paid"
        elif not classification.should_retry and entry.status != "Paid":
            entry.status = "Unpaid"
            entry.commission_service_status = "failed"
        entry.response_code = classification.code
        if result.is_fulfilled is not None and entry.status == "Paid":
            entry.is_fulfilled = bool(result.is_fulfilled)
            if result.is_fulfilled:
                entry.commission_service_status = "delivered"
        await self.db.flush()
        return entry

    # Operator queries

    async def list_by_mobile(self, mobile_number: str, limit: int = 50) -> list[CommissionLog]:
        """Newest first."""
        result = await self.db.execute(
            select(CommissionLog)
            .where(CommissionLog.mobile_number == mobile_number)
            .order_by(CommissionLog.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_session(self, session_id: str) -> list[CommissionLog]:
        """Oldest first."""
        result = await self.db.execute(
            select(CommissionLog)
            .where(CommissionLog.session_id == session_id)
            .order_by(CommissionLog.created_at)
        )
        return list(result.scalars().all())

    async def list_paginated(
        self,
        page: int = 1,
        page_size: int = 50,
        *,
        status: str | None = None,
        commission_service_status: str | None = None,
        service_type: str | None = None,
    ) -> Page:
        query = select(CommissionLog)
        if status:
            query = query.where(CommissionLog.status == status)
        if commission_service_status:
            query = query.where(
                CommissionLog.commission_service_status == commission_service_status
            )
        if service_type:
            query = query.where(CommissionLog.service_type == service_type)
        query = query.order_by(CommissionLog.created_at.desc())
        return await paginate(self.db, query, page, page_size)

    async def statistics(self) -> CommissionStats:
        def count_where(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        row = (
            await self.db.execute(
                select(
                    func.count(CommissionLog.id),
                    count_where(CommissionLog.status == "Paid"),
                    count_where(CommissionLog.status == "Unpaid"),
                    count_where(CommissionLog.commission_service_status == "delivered"),
                    count_where(CommissionLog.commission_service_status == "failed"),
                    count_where(CommissionLog.commission_service_status == "pending"),
                    func.coalesce(func.sum(CommissionLog.amount), 0),
                    func.coalesce(func.sum(CommissionLog.charges), 0),
                    func.coalesce(func.sum(CommissionLog.amount_after_charges), 0),
                )
            )
        ).one()
        return CommissionStats(
            total=int(row[0]),
            successful=int(row[1]),
            failed=int(row[2]),
            delivered=int(row[3]),
            failed_services=int(row[4]),
            pending_services=int(row[5]),
            total_amount=Decimal(str(row[6])),
            total_charges=Decimal(str(row[7])),
            total_amount_after_charges=Decimal(str(row[8])),
        )

    # Retries

    async def retryable_failed(
        self, max_retries: int = MAX_RETRIES, limit: int = RETRY_BATCH_LIMIT
    ) -> list[CommissionLog]:
        """Failed deliveries still eligible for another attempt, oldest first."""
        result = await self.db.execute(
            select(CommissionLog)
            .where(
                CommissionLog.commission_service_status == "failed",
                CommissionLog.is_retryable.is_(True),
                CommissionLog.retry_count < max_retries,
            )
            .order_by(CommissionLog.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def increment_retry_count(self, client_reference: str) -> bool:
        """Count one more delivery attempt. False when the reference is unknown."""
        result = await self.db.execute(
            update(CommissionLog)
            .where(CommissionLog.client_reference == client_reference)
            .values(retry_count=CommissionLog.retry_count + 1, last_retry_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning("Retry count not updated; no commission log for %s", client_reference)
            return False
        return True
