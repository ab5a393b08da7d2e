"""Payment callback processing.

Consumes provider callbacks and drives, for a payment result:

1. Transaction ledger upsert (idempotent, keyed by session id)
2. Session log completion with elapsed duration
3. Commission log entry with the classified response code
4. On a completed payment: fulfillment (commission service, or voucher
   draw + delivery for result checkers), once per transaction. The right to
   deliver is claimed atomically on the ledger row, so racing duplicates
   and a callback arriving after the status poller completed the payment
   both end in exactly one delivery.
5. Final-status acknowledgment to the gateway, always

Each step runs in its own unit of work. A failing step is logged and
recorded on the result; later steps still run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ussd_engine.config import Settings
from ussd_engine.models import Withdrawal
from ussd_engine.providers import Providers
from ussd_engine.providers.base import FinalStatus, ProviderResponse
from ussd_engine.services.callbacks import (
    PaymentCallback,
    ProviderCallback,
    SendMoneyCallback,
    ServiceCallback,
)
from ussd_engine.services.commission_log import CommissionLogService
from ussd_engine.services.earnings_service import EarningsPolicy, EarningsService
from ussd_engine.services.fulfillment import build_fulfillment_request
from ussd_engine.services.ledger_service import TransactionLedger
from ussd_engine.services.response_codes import GENERAL_FAILURE, SUCCESS, classify
from ussd_engine.services.state_machine import TransactionStatus
from ussd_engine.services.voucher_service import VoucherService
from ussd_engine.ussd.session_log import SessionLogService
from ussd_engine.ussd.session_store import SessionStore
from ussd_engine.ussd.types import ServiceType, SessionState
from ussd_engine.ussd.validators import normalize_mobile

logger = logging.getLogger(__name__)


@dataclass
class CallbackResult:
    """What processing a payment callback did."""

    session_id: str
    order_id: str | None
    is_successful: bool
    transaction_status: str | None = None
    transitioned: bool = False
    fulfillment_claimed: bool = False
    fulfillment: str | None = None  # delivered / pending / failed / skipped_no_session
    acknowledged: bool = False
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def duplicate(self) -> bool:
        return (
            self.transaction_status is not None
            and not self.transitioned
            and not self.fulfillment_claimed
        )

    @property
    def success(self) -> bool:
        return not self.errors


class PaymentCallbackProcessor:
    """Routes each callback variant to its handling path."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: SessionStore,
        providers: Providers,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.store = store
        self.providers = providers
        self.settings = settings

    def _earnings(self, db: AsyncSession) -> EarningsService:
        return EarningsService(
            db,
            self.providers.send_money,
            EarningsPolicy(
                commission_rate=self.settings.commission_rate,
                min_withdrawal=self.settings.min_withdrawal_amount,
            ),
        )

    async def process(self, callback: ProviderCallback) -> CallbackResult | Withdrawal | None:
        if isinstance(callback, PaymentCallback):
            return await self.process_payment(callback)
        if isinstance(callback, SendMoneyCallback):
            return await self.process_send_money(callback)
        if isinstance(callback, ServiceCallback):
            await self.process_service(callback)
            return None
        raise TypeError(f"Unsupported callback: {type(callback).__name__}")

    async def process_payment(self, callback: PaymentCallback) -> CallbackResult:
        session_id = callback.session_id
        payment = callback.order_info.payment
        result = CallbackResult(
            session_id=session_id,
            order_id=callback.order_id,
            is_successful=payment.is_successful,
        )
        logger.info(
            "Payment callback for %s (order %s): success=%s",
            session_id, callback.order_id, payment.is_successful,
        )

        state = await self.store.get(session_id)
        service_type = state.service_type.value if state and state.service_type else None
        payer = (
            normalize_mobile(callback.order_info.customer_mobile_number or "")
            or (state.mobile_number if state else None)
            or callback.order_info.customer_mobile_number
        )

        try:
            # Step 1: ledger
            try:
                async with self.session_factory() as db:
                    upsert = await TransactionLedger(db).record_callback(
                        session_id=session_id,
                        order_id=callback.order_id,
                        is_successful=payment.is_successful,
                        amount_paid=payment.amount_paid,
                        amount_after_charges=payment.amount_after_charges,
                        payment_type=payment.payment_type,
                        mobile_number=payer,
                        service_type=service_type,
                        extra_data=callback.extra_data,
                    )
                    await db.commit()
                result.transaction_status = upsert.transaction.status
                result.transitioned = upsert.transitioned
                service_type = service_type or upsert.transaction.service_type
            except Exception as e:
                self._record_error(result, "ledger", e)

            # Step 2: session log
            try:
                async with self.session_factory() as db:
                    await SessionLogService(db).record_payment(
                        session_id,
                        is_successful=payment.is_successful,
                        order_id=callback.order_id,
                        amount_paid=payment.amount_paid,
                    )
                    await db.commit()
            except Exception as e:
                self._record_error(result, "session_log", e)

            # Step 3: commission log
            if payer:
                try:
                    async with self.session_factory() as db:
                        await CommissionLogService(db).record_payment(
                            client_reference=session_id,
                            session_id=session_id,
                            mobile_number=payer,
                            service_type=service_type,
                            amount=payment.amount_paid,
                            amount_after_charges=payment.amount_after_charges,
                            classification=classify(
                                SUCCESS if payment.is_successful else GENERAL_FAILURE
                            ),
                            network=state.network if state else None,
                            destination=state.mobile if state else None,
                        )
                        await db.commit()
                except Exception as e:
                    self._record_error(result, "commission_log", e)

            completed = result.transaction_status == TransactionStatus.COMPLETED.value
            if not (payment.is_successful and completed):
                if payment.is_successful and result.transaction_status is not None:
                    logger.warning(
                        "Paid callback for %s but transaction is %s; not fulfilled",
                        session_id, result.transaction_status,
                    )
                elif result.duplicate:
                    logger.info("Duplicate callback for %s; no further action", session_id)
                return result

            # Step 4: fulfil once
            try:
                async with self.session_factory() as db:
                    claimed = await TransactionLedger(db).claim_fulfillment(session_id)
                    await db.commit()
            except Exception as e:
                self._record_error(result, "fulfillment_claim", e)
                return result
            if not claimed:
                logger.info("Fulfillment for %s already claimed; no further action", session_id)
                return result
            result.fulfillment_claimed = True

            try:
                await self._fulfil(session_id, state, result)
            except Exception as e:
                self._record_error(result, "fulfillment", e)
                if result.fulfillment is None:
                    result.fulfillment = "failed"
            return result
        finally:
            # Step 5
            await self._acknowledge(callback, result)
            await self.store.delete(session_id)

    async def _fulfil(
        self, session_id: str, state: SessionState | None, result: CallbackResult
    ) -> None:
        if state is None:
            # Session reaped before the callback arrived; the payment stands
            logger.warning(
                "Reconciliation gap: session %s gone, fulfillment skipped for paid order %s",
                session_id, result.order_id,
            )
            result.fulfillment = "skipped_no_session"
            return

        if state.service_type == ServiceType.RESULT_CHECKER:
            await self._deliver_vouchers(session_id, state, result)
            return
        if state.service_type == ServiceType.EARNING:
            # Paid out by send-money, settled by its own callback
            return

        request = build_fulfillment_request(
            state, session_id, self.settings.commission_callback_url
        )
        response: ProviderResponse | None = None
        error: str | None = None
        try:
            response = await self.providers.commission.fulfill(request)
        except Exception as e:
            error = str(e) or type(e).__name__
            raise
        finally:
            async with self.session_factory() as db:
                entry = await CommissionLogService(db).mark_fulfillment(
                    session_id, response, error
                )
                await db.commit()
            result.fulfillment = entry.commission_service_status if entry else (
                "failed" if response is None else "pending"
            )

    async def _deliver_vouchers(
        self, session_id: str, state: SessionState, result: CallbackResult
    ) -> None:
        quantity = state.quantity or 1
        mobile = state.mobile or state.mobile_number or ""
        async with self.session_factory() as db:
            vouchers = await VoucherService(db).draw(
                state.service or "", quantity, mobile, session_id
            )
            codes = [(v.serial_number, v.pin) for v in vouchers]
            await db.commit()

        await self.providers.notifier.send_vouchers(mobile, state.service or "", codes)
        async with self.session_factory() as db:
            await CommissionLogService(db).mark_fulfillment(
                session_id, ProviderResponse(response_code=SUCCESS, is_fulfilled=True,
                                             message=f"{len(codes)} voucher(s) delivered")
            )
            await db.commit()
        result.fulfillment = "delivered"

    async def _acknowledge(self, callback: PaymentCallback, result: CallbackResult) -> None:
        ack = FinalStatus(
            session_id=callback.session_id,
            order_id=callback.order_id,
            service_status="success" if callback.is_successful else "failed",
            meta_data=callback.extra_data or None,
        )
        try:
            await self.providers.gateway.send_final_status(ack)
            result.acknowledged = True
        except Exception as e:
            self._record_error(result, "acknowledgment", e)

    async def process_send_money(self, callback: SendMoneyCallback) -> Withdrawal | None:
        async with self.session_factory() as db:
            withdrawal = await self._earnings(db).handle_send_money_callback(
                client_reference=callback.client_reference,
                response_code=callback.response_code,
                message=callback.message,
                transaction_id=callback.transaction_id,
                external_transaction_id=callback.external_transaction_id,
            )
            await db.commit()
        return withdrawal

    async def process_service(self, callback: ServiceCallback) -> None:
        async with self.session_factory() as db:
            await CommissionLogService(db).record_service_callback(
                callback.client_reference,
                response_code=callback.response_code,
                is_fulfilled=callback.is_fulfilled,
                message=callback.message,
                commission=callback.commission,
                transaction_id=callback.transaction_id,
            )
            await db.commit()

    @staticmethod
    def _record_error(result: CallbackResult, step: str, exc: Exception) -> None:
        logger.exception("Callback step %s failed for %s", step, result.session_id)
        result.errors.append({"step": step, "message": str(exc) or type(exc).__name__})
