"""Tests for payment callback processing.

The payment result arrives after the subscriber confirmed an order. These
tests drive a real conversation through the dispatcher first, so session
state and the pending ledger row look exactly as they do in production.
"""

import asyncio
from decimal import Decimal

import pytest

from ussd_engine.models import Withdrawal
from ussd_engine.services.callbacks import parse_callback
from ussd_engine.services.commission_log import CommissionLogService
from ussd_engine.services.earnings_service import EarningsService
from ussd_engine.services.ledger_service import TransactionLedger
from ussd_engine.services.voucher_service import VoucherService
from ussd_engine.ussd.types import ServiceType

from tests.conftest import SUBSCRIBER, backdate, converse, payment_callback_payload

AIRTIME_SELF_GHS5 = ["1", "1", "1", "5", "1"]


def payment(session_id: str, **kwargs):
    return parse_callback("payment", payment_callback_payload(session_id, **kwargs))


async def _transaction(session_factory, reference):
    async with session_factory() as session:
        return await TransactionLedger(session).get(reference)


async def _commission_entry(session_factory, reference):
    async with session_factory() as session:
        return await CommissionLogService(session).get(reference)


class TestSuccessfulPayment:
    async def test_airtime_fulfilled_once(self, dispatcher, processor, providers, session_factory):
        """A paid airtime order sends exactly one commission request."""
        await converse(dispatcher, "S1", AIRTIME_SELF_GHS5)

        result = await processor.process_payment(payment("S1", amount="5.00", after_charges="4.90"))

        assert result.success
        assert result.transitioned
        assert result.transaction_status == "completed"
        assert result.fulfillment == "delivered"
        assert result.acknowledged
        assert len(providers.commission.requests) == 1
        request = providers.commission.requests[0]
        assert request.service_type == "airtime"
        assert request.destination == SUBSCRIBER
        assert request.amount == Decimal("5.00")
        assert request.network == "MTN"
        assert request.client_reference == "S1"
        assert request.callback_url.endswith("/callbacks/service")

        txn = await _transaction(session_factory, "S1")
        assert txn.status == "completed"
        assert txn.charges == Decimal("0.10")
        entry = await _commission_entry(session_factory, "S1")
        assert entry.status == "Paid"
        assert entry.is_fulfilled
        assert entry.network == "MTN"

    async def test_duplicate_callback_does_not_fulfil_again(
        self, dispatcher, processor, providers, session_factory
    ):
        await converse(dispatcher, "S1", AIRTIME_SELF_GHS5)

        await processor.process_payment(payment("S1"))
        again = await processor.process_payment(payment("S1"))

        assert again.duplicate
        assert again.fulfillment is None
        assert len(providers.commission.requests) == 1
        assert len(providers.gateway.acks) == 2
        txn = await _transaction(session_factory, "S1")
        assert txn.callback_count == 2

    async def test_session_removed_after_callback(self, dispatcher, processor, store):
        await converse(dispatcher, "S1", AIRTIME_SELF_GHS5)
        await processor.process_payment(payment("S1"))
        assert await store.get("S1") is None

    async def test_missing_session_is_a_reconciliation_gap(
        self, processor, providers, session_factory
    ):
        """The payment is recorded even though there is nothing to fulfil."""
        result = await processor.process_payment(payment("gone", mobile="0241234567"))

        assert result.fulfillment == "skipped_no_session"
        assert providers.commission.requests == []
        assert result.acknowledged
        txn = await _transaction(session_factory, "gone")
        assert txn.status == "completed"
        assert txn.mobile_number == SUBSCRIBER

    async def test_pending_delivery_settled_by_service_callback(
        self, dispatcher, processor, providers, session_factory
    ):
        providers.commission.response_code = "0001"
        await converse(dispatcher, "S1", AIRTIME_SELF_GHS5)

        result = await processor.process_payment(payment("S1"))
        assert result.fulfillment == "pending"

        await processor.process(
            parse_callback(
                "service",
                {"ResponseCode": "0000", "Data": {"ClientReference": "S1", "IsFulfilled": True}},
            )
        )
        entry = await _commission_entry(session_factory, "S1")
        assert entry.commission_service_status == "delivered"
        assert entry.is_fulfilled

    async def test_bundle_request_carries_bundle_value(self, dispatcher, processor, providers):
        await converse(dispatcher, "S1", ["2", "1", "1", "1", "1", "1"])
        await processor.process_payment(payment("S1", amount="10.00"))

        request = providers.commission.requests[0]
        assert request.service_type == "bundle"
        assert request.extra_data["bundleValue"] == "mtn_1gb"

    async def test_tv_request_targets_account(self, dispatcher, processor, providers):
        await converse(dispatcher, "S1", ["3", "1", "1234567890", "1", "1"])
        await processor.process_payment(payment("S1", amount="120.00"))

        request = providers.commission.requests[0]
        assert request.service_type == "tv_bill"
        assert request.destination == "1234567890"
        assert request.tv_provider == "DSTV"


class TestVoucherDelivery:
    async def test_vouchers_drawn_and_sent(
        self, dispatcher, processor, providers, session_factory
    ):
        async with session_factory() as session:
            await VoucherService(session).add_vouchers(
                "BECE Checker Voucher", [("SN1", "P1"), ("SN2", "P2"), ("SN3", "P3")]
            )
            await session.commit()
        await converse(dispatcher, "S1", ["5", "1", "1", "2", "1"])

        result = await processor.process_payment(payment("S1", amount="40.00"))

        assert result.fulfillment == "delivered"
        assert providers.commission.requests == []
        mobile, voucher_type, codes = providers.notifier.sent[0]
        assert mobile == SUBSCRIBER
        assert voucher_type == "BECE Checker Voucher"
        assert codes == [("SN1", "P1"), ("SN2", "P2")]
        async with session_factory() as session:
            assert await VoucherService(session).available_count("BECE Checker Voucher") == 1


class TestFailures:
    async def test_failed_payment_is_not_fulfilled(
        self, dispatcher, processor, providers, session_factory
    ):
        await converse(dispatcher, "S1", AIRTIME_SELF_GHS5)

        result = await processor.process_payment(payment("S1", successful=False))

        assert result.transaction_status == "failed"
        assert providers.commission.requests == []
        assert providers.gateway.acks[0].service_status == "failed"
        entry = await _commission_entry(session_factory, "S1")
        assert entry.status == "Unpaid"
        assert entry.commission_service_status == "failed"

    async def test_fulfillment_error_still_acknowledges(
        self, dispatcher, processor, providers, store, session_factory
    ):
        """A commission outage after payment is logged, not rolled back."""
        providers.commission.raise_error = True
        await converse(dispatcher, "S1", AIRTIME_SELF_GHS5)

        result = await processor.process_payment(payment("S1"))

        assert [e["step"] for e in result.errors] == ["fulfillment"]
        assert result.fulfillment == "failed"
        assert result.acknowledged
        assert await store.get("S1") is None
        assert (await _transaction(session_factory, "S1")).status == "completed"
        entry = await _commission_entry(session_factory, "S1")
        assert entry.commission_service_status == "failed"
        assert "connection refused" in entry.message

    async def test_gateway_ack_failure_is_recorded(self, dispatcher, processor, providers):
        providers.gateway.fail = True
        await converse(dispatcher, "S1", AIRTIME_SELF_GHS5)

        result = await processor.process_payment(payment("S1"))

        assert not result.acknowledged
        assert [e["step"] for e in result.errors] == ["acknowledgment"]
        assert len(providers.commission.requests) == 1

    async def test_failed_earning_payment_leaves_withdrawal_alone(
        self, processor, store, session_factory
    ):
        """Withdrawals are settled by the send-money callback only."""
        await store.create("S9", mobile_number=SUBSCRIBER)
        await store.update("S9", service_type=ServiceType.EARNING)
        async with session_factory() as session:
            session.add(
                Withdrawal(
                    client_reference="WD-S9",
                    mobile_number=SUBSCRIBER,
                    amount=Decimal("12.00"),
                    status="Pending",
                )
            )
            await session.commit()

        result = await processor.process_payment(payment("S9", successful=False))

        assert result.fulfillment is None
        async with session_factory() as session:
            withdrawal = await EarningsService(session).get_withdrawal("WD-S9")
        assert withdrawal.status == "Pending"


class TestSendMoneyCallback:
    async def test_completes_pending_withdrawal(self, processor, session_factory):
        async with session_factory() as session:
            session.add(
                Withdrawal(
                    client_reference="WD-1",
                    mobile_number=SUBSCRIBER,
                    amount=Decimal("15.00"),
                    status="Pending",
                )
            )
            await session.commit()

        withdrawal = await processor.process(
            parse_callback(
                "send-money",
                {"ResponseCode": "0000", "Data": {"ClientReference": "WD-1", "TransactionId": "T9"}},
            )
        )

        assert withdrawal.status == "Completed"
        assert withdrawal.is_fulfilled
        assert withdrawal.provider_transaction_id == "T9"

    async def test_unknown_reference(self, processor):
        withdrawal = await processor.process(
            parse_callback("send-money", {"ResponseCode": "0000", "ClientReference": "nope"})
        )
        assert withdrawal is None


class TestConcurrentCallbacks:
    """Duplicate callbacks racing on separate connections."""

    @pytest.fixture
    def engine(self, file_engine):
        return file_engine

    async def test_racing_duplicates_fulfil_once(
        self, dispatcher, processor, providers, session_factory
    ):
        await converse(dispatcher, "S1", AIRTIME_SELF_GHS5)
        callback = payment("S1")

        first, second = await asyncio.gather(
            processor.process_payment(callback),
            processor.process_payment(callback),
        )

        assert len(providers.commission.requests) == 1
        assert [first.transitioned, second.transitioned].count(True) == 1
        assert [first.fulfillment_claimed, second.fulfillment_claimed].count(True) == 1
        assert len(providers.gateway.acks) == 2
        txn = await _transaction(session_factory, "S1")
        assert txn.status == "completed"
        assert txn.callback_count == 2
        assert txn.fulfillment_claimed_at is not None


class TestCallbackAfterPoll:
    """The status poller may complete a payment before its callback lands."""

    async def _poll_paid(self, dispatcher, poller, providers, session_factory):
        await converse(dispatcher, "S1", AIRTIME_SELF_GHS5)
        await backdate(session_factory, "S1", minutes=6)
        providers.status.set_code("S1", "0000")
        polled = await poller.poll_pending()
        assert polled.completed == 1

    async def test_paid_callback_still_fulfils(
        self, dispatcher, processor, poller, providers, store, session_factory
    ):
        await self._poll_paid(dispatcher, poller, providers, session_factory)
        assert providers.commission.requests == []

        result = await processor.process_payment(payment("S1"))

        assert not result.transitioned
        assert result.fulfillment_claimed
        assert not result.duplicate
        assert result.fulfillment == "delivered"
        assert len(providers.commission.requests) == 1
        assert await store.get("S1") is None

    async def test_repeat_after_poll_does_not_fulfil_again(
        self, dispatcher, processor, poller, providers, session_factory
    ):
        await self._poll_paid(dispatcher, poller, providers, session_factory)

        await processor.process_payment(payment("S1"))
        again = await processor.process_payment(payment("S1"))

        assert again.duplicate
        assert len(providers.commission.requests) == 1

    async def test_failed_callback_after_poll_is_not_fulfilled(
        self, dispatcher, processor, poller, providers, session_factory
    ):
        await self._poll_paid(dispatcher, poller, providers, session_factory)

        result = await processor.process_payment(payment("S1", successful=False))

        assert result.transaction_status == "completed"
        assert not result.fulfillment_claimed
        assert providers.commission.requests == []
        txn = await _transaction(session_factory, "S1")
        assert txn.fulfillment_claimed_at is None
