"""Pending transaction status poller.

Closes the gap left by lost or late payment callbacks: open transactions
older than a cutoff are looked up by client reference and the classified
result is applied to the ledger, the commission log and the session log.

The poller records outcomes only. It never triggers fulfillment; a paid
order found here is settled by the payment callback or by an operator.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ussd_engine.config import Settings
from ussd_engine.models import PaymentTransaction, utcnow
from ussd_engine.providers.base import (
    ProviderError,
    StatusCheckProvider,
    StatusCheckResult,
    StatusQueryError,
    require_identifier,
)
from ussd_engine.services.commission_log import CommissionLogService
from ussd_engine.services.ledger_service import TransactionLedger
from ussd_engine.services.response_codes import SUCCESS, CodeClassification, classify
from ussd_engine.services.state_machine import TransactionStatus
from ussd_engine.ussd.session_log import SessionLogService

logger = logging.getLogger(__name__)

POLL_MODES = ("batched", "sequential")

# Upper bound on references per operator batch check
MAX_BATCH_CHECK = 10


@dataclass(frozen=True)
class PollerPolicy:
    """Throttling for status queries."""

    mode: str = "batched"
    batch_size: int = 5
    batch_pause_seconds: float = 1.0
    item_pause_seconds: float = 0.1
    min_age_minutes: int = 5
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.mode not in POLL_MODES:
            raise ValueError(f"poll mode must be one of {POLL_MODES}, got {self.mode!r}")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.min_age_minutes < 0:
            raise ValueError("min_age_minutes cannot be negative")

    @classmethod
    def from_settings(cls, settings: Settings) -> PollerPolicy:
        return cls(
            mode=settings.poll_mode,
            batch_size=settings.poll_batch_size,
            batch_pause_seconds=settings.poll_batch_pause_seconds,
            item_pause_seconds=settings.poll_item_pause_seconds,
            min_age_minutes=settings.poll_min_age_minutes,
            timeout_seconds=settings.provider_timeout_seconds,
        )


@dataclass
class PollResult:
    """Result of a poll run."""

    checked: int = 0
    completed: int = 0
    failed: int = 0
    still_pending: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "completed": self.completed,
            "failed": self.failed,
            "still_pending": self.still_pending,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class StatusSummary:
    """Operator-facing reading of a status check."""

    is_successful: bool
    status: str  # Paid / Unpaid / Pending / Failed
    message: str
    should_retry: bool


def summarize(result: StatusCheckResult, classification: CodeClassification) -> StatusSummary:
    """Collapse a status result into paid or not, and whether to ask again.

    A 0000 answer only means the lookup worked; the payment itself may
    still be Unpaid.
    """
    if classification.code == SUCCESS:
        paid = result.status == "Paid"
        reported = (result.status or "unknown").lower()
        return StatusSummary(
            is_successful=paid,
            status="Paid" if paid else "Unpaid",
            message=f"Transaction {reported}",
            should_retry=False,
        )
    return StatusSummary(
        is_successful=False,
        status=classification.status,
        message=result.message or classification.message,
        should_retry=classification.should_retry,
    )


@dataclass
class BatchCheckItem:
    """One reference of a batch check: a result or the error that stopped it."""

    client_reference: str
    result: StatusCheckResult | None = None
    classification: CodeClassification | None = None
    error: str | None = None

    @property
    def summary(self) -> StatusSummary | None:
        if self.result is None or self.classification is None:
            return None
        return summarize(self.result, self.classification)


class TransactionStatusPoller:
    """Queries the status provider for stale open transactions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        status_provider: StatusCheckProvider,
        policy: PollerPolicy | None = None,
    ):
        self.session_factory = session_factory
        self.status_provider = status_provider
        self.policy = policy or PollerPolicy()

    async def poll_pending(
        self, min_age_minutes: int | None = None, limit: int | None = None
    ) -> PollResult:
        """Check every open transaction older than the cutoff."""
        age = self.policy.min_age_minutes if min_age_minutes is None else min_age_minutes
        cutoff = utcnow() - timedelta(minutes=age)
        async with self.session_factory() as db:
            stale = await TransactionLedger(db).find_open_older_than(cutoff, limit)
            references = [txn.client_reference for txn in stale]

        result = PollResult()
        if not references:
            logger.info("No open transactions older than %s minutes", age)
            return result

        logger.info("Polling %d open transaction(s) in %s mode", len(references), self.policy.mode)
        if self.policy.mode == "sequential":
            for index, reference in enumerate(references):
                await self._check_one(reference, result)
                if index < len(references) - 1:
                    await asyncio.sleep(self.policy.item_pause_seconds)
        else:
            size = self.policy.batch_size
            for start in range(0, len(references), size):
                batch = references[start:start + size]
                await asyncio.gather(*(self._check_one(ref, result) for ref in batch))
                if start + size < len(references):
                    await asyncio.sleep(self.policy.batch_pause_seconds)

        logger.info(
            "Poll finished: checked=%d completed=%d failed=%d pending=%d errors=%d",
            result.checked, result.completed, result.failed,
            result.still_pending, len(result.errors),
        )
        return result

    async def _check_one(self, client_reference: str, result: PollResult) -> None:
        try:
            status = await self._query(client_reference=client_reference)
        except Exception as e:
            logger.warning("Status query failed for %s: %s", client_reference, e)
            result.errors.append(
                {"client_reference": client_reference, "error": str(e) or type(e).__name__}
            )
            return
        result.checked += 1

        classification = classify(status.response_code)
        try:
            async with self.session_factory() as db:
                outcome = await self._apply(db, client_reference, classification, status)
                await db.commit()
        except Exception as e:
            logger.exception("Applying status for %s failed", client_reference)
            result.errors.append(
                {"client_reference": client_reference, "error": str(e) or type(e).__name__}
            )
            return

        if outcome == TransactionStatus.COMPLETED.value:
            result.completed += 1
        elif outcome == TransactionStatus.FAILED.value:
            result.failed += 1
        else:
            result.still_pending += 1

    async def _apply(
        self,
        db: AsyncSession,
        client_reference: str,
        classification: CodeClassification,
        status: StatusCheckResult,
    ) -> str:
        ledger = TransactionLedger(db)
        txn = await ledger.get(client_reference)
        if txn is None:
            raise LookupError(f"Transaction {client_reference} disappeared")
        changed = await ledger.apply_status_result(txn, classification, status)
        if not changed:
            return txn.status

        await self._record_commission(db, txn, classification, status)
        await SessionLogService(db).record_payment(
            txn.session_id,
            is_successful=classification.is_successful,
            order_id=txn.order_id,
            amount_paid=txn.amount_paid,
            error_message=None if classification.is_successful else classification.message,
        )
        return txn.status

    async def _record_commission(
        self,
        db: AsyncSession,
        txn: PaymentTransaction,
        classification: CodeClassification,
        status: StatusCheckResult,
    ) -> None:
        commissions = CommissionLogService(db)
        entry = await commissions.apply_status_result(
            txn.client_reference, classification, status
        )
        if entry is None and txn.mobile_number:
            amount = status.amount or txn.amount_paid or txn.amount
            await commissions.record_payment(
                client_reference=txn.client_reference,
                session_id=txn.session_id,
                mobile_number=txn.mobile_number,
                service_type=txn.service_type,
                amount=amount,
                amount_after_charges=(
                    status.amount_after_charges or txn.amount_after_charges or amount
                ),
                classification=classification,
            )

    async def _query(
        self,
        *,
        client_reference: str | None = None,
        provider_transaction_id: str | None = None,
        network_transaction_id: str | None = None,
    ) -> StatusCheckResult:
        return await asyncio.wait_for(
            self.status_provider.check_status(
                client_reference=client_reference,
                provider_transaction_id=provider_transaction_id,
                network_transaction_id=network_transaction_id,
            ),
            timeout=self.policy.timeout_seconds,
        )

    async def check_status(
        self,
        *,
        client_reference: str | None = None,
        provider_transaction_id: str | None = None,
        network_transaction_id: str | None = None,
    ) -> tuple[StatusCheckResult, CodeClassification]:
        """One-off status query; nothing is written.

        Raises:
            StatusQueryError: no identifier given.
            ProviderError: the provider call failed.
        """
        require_identifier(client_reference, provider_transaction_id, network_transaction_id)
        status = await self._query(
            client_reference=client_reference,
            provider_transaction_id=provider_transaction_id,
            network_transaction_id=network_transaction_id,
        )
        return status, classify(status.response_code)

    async def batch_check(self, client_references: list[str]) -> list[BatchCheckItem]:
        """Look up several references at once; nothing is written.

        References are queried in groups of the policy batch size. A provider
        failure is reported on its item and does not stop the others.

        Raises:
            StatusQueryError: no references, too many, or a blank one.
        """
        if not client_references:
            raise StatusQueryError("At least one client reference is required")
        if len(client_references) > MAX_BATCH_CHECK:
            raise StatusQueryError(
                f"At most {MAX_BATCH_CHECK} client references are allowed per batch check"
            )
        if any(not ref or not ref.strip() for ref in client_references):
            raise StatusQueryError("Client references cannot be blank")

        items: list[BatchCheckItem] = []
        size = self.policy.batch_size
        for start in range(0, len(client_references), size):
            batch = client_references[start:start + size]
            items += await asyncio.gather(*(self._batch_item(ref) for ref in batch))
        logger.info(
            "Batch status check: %d reference(s), %d error(s)",
            len(items), sum(1 for item in items if item.error),
        )
        return items

    async def _batch_item(self, client_reference: str) -> BatchCheckItem:
        item = BatchCheckItem(client_reference=client_reference)
        try:
            item.result, item.classification = await self.check_status(
                client_reference=client_reference
            )
        except (ProviderError, asyncio.TimeoutError) as e:
            logger.warning("Batch status check failed for %s: %s", client_reference, e)
            item.error = str(e) or type(e).__name__
        return item

    async def summary(self, client_reference: str) -> StatusSummary:
        """Status check for one reference, reduced to its summary."""
        result, classification = await self.check_status(client_reference=client_reference)
        return summarize(result, classification)
