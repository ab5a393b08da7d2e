"""Earnings and withdrawal ledger.

Balances are derived, never stored:

    total_earnings     = sum(amount * commission_rate) over Paid, fulfilled logs
    total_withdrawn    = sum(Completed withdrawals)
    pending_withdrawals = sum(Pending withdrawals)
    available_balance  = total_earnings - total_withdrawn - pending_withdrawals

A Pending withdrawal is a provisional debit. Moving it to Failed is the
refund: the amount drops out of both sums and is available again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ussd_engine.database import insert_ignore
from ussd_engine.models import CommissionLog, EarningsAccount, Withdrawal, utcnow
from ussd_engine.providers.base import ProviderError, SendMoneyProvider
from ussd_engine.services.response_codes import PENDING, SUCCESS, classify
from ussd_engine.services.state_machine import WithdrawalStateMachine, WithdrawalStatus
from ussd_engine.ussd.validators import AmountValidationError, normalize_mobile, parse_amount

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class EarningsPolicy:
    """Commission and withdrawal rules."""

    commission_rate: Decimal = Decimal("0.02")
    min_withdrawal: Decimal = Decimal("10.00")

    def __post_init__(self) -> None:
        if not (Decimal("0") <= self.commission_rate <= Decimal("1")):
            raise ValueError("commission_rate must be between 0 and 1")
        if self.min_withdrawal <= 0:
            raise ValueError("min_withdrawal must be positive")


@dataclass(frozen=True)
class EarningsSummary:
    """Derived balances for one mobile number."""

    mobile_number: str
    total_earnings: Decimal
    total_withdrawn: Decimal
    pending_withdrawals: Decimal
    transaction_count: int

    @property
    def available_balance(self) -> Decimal:
        return self.total_earnings - self.total_withdrawn - self.pending_withdrawals


@dataclass(frozen=True)
class WithdrawalOutcome:
    """Result of a withdrawal request.

    `accepted=False` with `withdrawal=None` means the request was rejected
    locally and no payout was attempted.
    """

    accepted: bool
    message: str
    withdrawal: Withdrawal | None = None
    is_new: bool = False

    @property
    def status(self) -> str | None:
        return self.withdrawal.status if self.withdrawal is not None else None


def withdrawal_reference(session_id: str) -> str:
    """Client reference used for a withdrawal started from a USSD session."""
    return f"WD-{session_id}"


def _canonical(mobile: str) -> str:
    return normalize_mobile(mobile) or mobile


class EarningsService:
    """Earnings balances and the withdrawal lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        send_money: SendMoneyProvider | None = None,
        policy: EarningsPolicy | None = None,
    ):
        self.db = db
        self.send_money = send_money
        self.policy = policy or EarningsPolicy()

    async def get_user_earnings(self, mobile: str) -> EarningsSummary:
        mobile = _canonical(mobile)
        paid = await self.db.execute(
            select(func.count(CommissionLog.id), func.coalesce(func.sum(CommissionLog.amount), 0))
            .where(
                CommissionLog.mobile_number == mobile,
                CommissionLog.status == "Paid",
                CommissionLog.is_fulfilled.is_(True),
            )
        )
        count, paid_total = paid.one()
        total_earnings = (Decimal(str(paid_total)) * self.policy.commission_rate).quantize(
            CENT, rounding=ROUND_HALF_UP
        )

        withdrawn = await self._sum_withdrawals(mobile, WithdrawalStatus.COMPLETED.value)
        pending = await self._sum_withdrawals(mobile, WithdrawalStatus.PENDING.value)
        return EarningsSummary(
            mobile_number=mobile,
            total_earnings=total_earnings,
            total_withdrawn=withdrawn,
            pending_withdrawals=pending,
            transaction_count=int(count or 0),
        )

    async def _sum_withdrawals(self, mobile: str, status: str) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Withdrawal.amount), 0)).where(
                Withdrawal.mobile_number == mobile, Withdrawal.status == status
            )
        )
        return Decimal(str(result.scalar_one())).quantize(CENT)

    async def get_withdrawal(self, client_reference: str) -> Withdrawal | None:
        result = await self.db.execute(
            select(Withdrawal).where(Withdrawal.client_reference == client_reference)
        )
        return result.scalar_one_or_none()

    async def get_withdrawal_history(self, mobile: str, limit: int = 20) -> list[Withdrawal]:
        result = await self.db.execute(
            select(Withdrawal)
            .where(Withdrawal.mobile_number == _canonical(mobile))
            .order_by(Withdrawal.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def process_withdrawal_request(
        self, mobile: str, amount: Decimal | str, client_reference: str
    ) -> WithdrawalOutcome:
        """Validate locally, then pay out via send-money.

        Rejections (bad amount, below minimum, above available balance)
        never reach the send-money collaborator. A repeated client
        reference returns the original outcome.

        The balance check and the provisional debit run under the
        per-mobile account lock, held until the caller commits.
        """
        mobile = _canonical(mobile)
        account = await self._lock_account(mobile)
        existing = await self.get_withdrawal(client_reference)
        if existing is not None:
            return WithdrawalOutcome(
                accepted=existing.status != WithdrawalStatus.FAILED.value,
                message=existing.message or f"Withdrawal already {existing.status}",
                withdrawal=existing,
                is_new=False,
            )

        try:
            value = parse_amount(amount)
        except AmountValidationError as e:
            return WithdrawalOutcome(accepted=False, message=str(e))

        if value < self.policy.min_withdrawal:
            return WithdrawalOutcome(
                accepted=False,
                message=f"Minimum withdrawal is GHS {self.policy.min_withdrawal:.2f}",
            )
        summary = await self.get_user_earnings(mobile)
        if value > summary.available_balance:
            return WithdrawalOutcome(
                accepted=False,
                message=f"Insufficient balance. Available: GHS {summary.available_balance:.2f}",
            )
        if self.send_money is None:
            raise RuntimeError("EarningsService has no send-money provider configured")

        # Provisional debit before the payout goes out
        withdrawal = Withdrawal(
            client_reference=client_reference,
            mobile_number=mobile,
            amount=value,
            status=WithdrawalStatus.PENDING.value,
        )
        self.db.add(withdrawal)
        account.withdrawal_count += 1
        account.last_withdrawal_at = utcnow()
        await self.db.flush()

        try:
            response = await self.send_money.send_money(
                mobile=mobile,
                amount=value,
                client_reference=client_reference,
                description="Earnings withdrawal",
            )
        except ProviderError as e:
            logger.error("Send money failed for %s: %s", client_reference, e)
            await self._finish(withdrawal, WithdrawalStatus.FAILED.value, None, str(e))
            return WithdrawalOutcome(
                accepted=False,
                message="Withdrawal could not be processed. Please try again later.",
                withdrawal=withdrawal,
                is_new=True,
            )

        withdrawal.provider_transaction_id = response.transaction_id
        withdrawal.network_transaction_id = response.external_transaction_id
        withdrawal.response_code = response.response_code
        if response.response_code == PENDING:
            withdrawal.message = response.message or "Withdrawal pending"
            await self.db.flush()
            return WithdrawalOutcome(
                accepted=True,
                message=f"Withdrawal of GHS {value:.2f} is being processed.",
                withdrawal=withdrawal,
                is_new=True,
            )
        if response.response_code == SUCCESS:
            await self._finish(
                withdrawal, WithdrawalStatus.COMPLETED.value, SUCCESS, response.message
            )
            return WithdrawalOutcome(
                accepted=True,
                message=f"Withdrawal of GHS {value:.2f} completed.",
                withdrawal=withdrawal,
                is_new=True,
            )

        classification = classify(response.response_code)
        await self._finish(
            withdrawal,
            WithdrawalStatus.FAILED.value,
            response.response_code,
            response.message or classification.message,
        )
        return WithdrawalOutcome(
            accepted=False,
            message="Withdrawal was declined. Your balance has not been charged.",
            withdrawal=withdrawal,
            is_new=True,
        )

    async def _lock_account(self, mobile: str) -> EarningsAccount:
        """Lock this mobile number's account row for the current transaction.

        On SQLite the insert takes the database write lock; on PostgreSQL
        the row lock from FOR UPDATE serializes this mobile only.
        """
        await self.db.execute(
            insert_ignore(self.db, EarningsAccount, ["mobile_number"], mobile_number=mobile)
        )
        result = await self.db.execute(
            select(EarningsAccount)
            .where(EarningsAccount.mobile_number == mobile)
            .with_for_update()
        )
        return result.scalar_one()

    async def handle_send_money_callback(
        self,
        *,
        client_reference: str,
        response_code: str,
        message: str | None = None,
        transaction_id: str | None = None,
        external_transaction_id: str | None = None,
    ) -> Withdrawal | None:
        """Settle a pending withdrawal from the payout provider's callback."""
        withdrawal = await self.get_withdrawal(client_reference)
        if withdrawal is None:
            logger.warning("Send-money callback for unknown withdrawal %s", client_reference)
            return None
        if WithdrawalStateMachine.is_terminal(withdrawal.status):
            logger.info(
                "Send-money callback for %s ignored (already %s)",
                client_reference, withdrawal.status,
            )
            return withdrawal

        if transaction_id:
            withdrawal.provider_transaction_id = transaction_id
        if external_transaction_id:
            withdrawal.network_transaction_id = external_transaction_id

        classification = classify(response_code)
        if classification.is_successful:
            await self._finish(withdrawal, WithdrawalStatus.COMPLETED.value, response_code, message)
        elif classification.should_retry:
            withdrawal.response_code = response_code
            await self.db.flush()
        else:
            await self._finish(
                withdrawal,
                WithdrawalStatus.FAILED.value,
                response_code,
                message or classification.message,
            )
            logger.info("Withdrawal %s failed; GHS %s refunded", client_reference, withdrawal.amount)
        return withdrawal

    async def refund_withdrawal(self, client_reference: str, reason: str) -> Withdrawal | None:
        """Fail a pending withdrawal so its amount is available again."""
        withdrawal = await self.get_withdrawal(client_reference)
        if withdrawal is None or WithdrawalStateMachine.is_terminal(withdrawal.status):
            return withdrawal
        await self._finish(withdrawal, WithdrawalStatus.FAILED.value, withdrawal.response_code, reason)
        logger.info("Refunded withdrawal %s: %s", client_reference, reason)
        return withdrawal

    async def _finish(
        self,
        withdrawal: Withdrawal,
        status: str,
        response_code: str | None,
        message: str | None,
    ) -> None:
        WithdrawalStateMachine.validate_transition(withdrawal.status, status)
        withdrawal.status = status
        withdrawal.is_fulfilled = status == WithdrawalStatus.COMPLETED.value
        withdrawal.response_code = response_code
        withdrawal.message = message
        await self.db.flush()
