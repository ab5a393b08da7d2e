"""Tests for the pending transaction status poller."""

from decimal import Decimal

import pytest

from ussd_engine.providers.base import StatusQueryError
from ussd_engine.services import status_poller
from ussd_engine.services.commission_log import CommissionLogService
from ussd_engine.services.ledger_service import TransactionLedger
from ussd_engine.services.status_poller import PollerPolicy, TransactionStatusPoller

from tests.conftest import SUBSCRIBER, backdate, converse


async def open_pending(session_factory, *references: str, backdated: bool = True) -> None:
    async with session_factory() as session:
        ledger = TransactionLedger(session)
        for reference in references:
            await ledger.open_pending(
                client_reference=reference,
                session_id=reference,
                amount=Decimal("5.00"),
                service_type="airtime_topup",
                mobile_number=SUBSCRIBER,
            )
        await session.commit()
    if backdated:
        for reference in references:
            await backdate(session_factory, reference, minutes=10)


async def _status(session_factory, reference) -> str:
    async with session_factory() as session:
        return (await TransactionLedger(session).get(reference)).status


class TestPollPending:
    async def test_paid_transaction_completed_without_fulfillment(
        self, dispatcher, poller, providers, session_factory
    ):
        """A stale pending order found paid is completed but never fulfilled."""
        await converse(dispatcher, "S1", ["1", "1", "1", "5", "1"])
        await backdate(session_factory, "S1", minutes=6)
        providers.status.set_code("S1", "0000")

        result = await poller.poll_pending()

        assert result.to_dict() == {
            "checked": 1, "completed": 1, "failed": 0, "still_pending": 0, "errors": [],
        }
        assert await _status(session_factory, "S1") == "completed"
        assert providers.commission.requests == []
        async with session_factory() as session:
            entry = await CommissionLogService(session).get("S1")
        assert entry.status == "Paid"
        assert entry.amount == Decimal("5.00")

    async def test_recent_transactions_are_left_alone(self, poller, providers, session_factory):
        await open_pending(session_factory, "fresh", backdated=False)

        result = await poller.poll_pending()

        assert result.checked == 0
        assert providers.status.queries == []

    async def test_still_pending(self, poller, session_factory):
        await open_pending(session_factory, "P1")

        result = await poller.poll_pending()

        assert result.still_pending == 1
        assert await _status(session_factory, "P1") == "pending"
        async with session_factory() as session:
            txn = await TransactionLedger(session).get("P1")
        assert txn.last_response_code == "0001"
        assert txn.last_status_check_at is not None

    async def test_failed_code(self, poller, providers, session_factory):
        await open_pending(session_factory, "F1")
        providers.status.set_code("F1", "2001")

        result = await poller.poll_pending()

        assert result.failed == 1
        assert await _status(session_factory, "F1") == "failed"
        async with session_factory() as session:
            entry = await CommissionLogService(session).get("F1")
        assert entry.status == "Unpaid"

    async def test_unknown_code_fails(self, poller, providers, session_factory):
        await open_pending(session_factory, "U1")
        providers.status.set_code("U1", "9999")
        assert (await poller.poll_pending()).failed == 1

    async def test_provider_error_is_collected(self, poller, providers, session_factory):
        """One failing query does not stop the run."""
        await open_pending(session_factory, "E1", "OK1")
        providers.status.errors.add("E1")
        providers.status.set_code("OK1", "0000")

        result = await poller.poll_pending()

        assert not result.success
        assert result.errors[0]["client_reference"] == "E1"
        assert "timeout" in result.errors[0]["error"]
        assert result.checked == 1
        assert result.completed == 1
        assert await _status(session_factory, "E1") == "pending"

    async def test_limit(self, poller, providers, session_factory):
        await open_pending(session_factory, "L1", "L2", "L3")
        result = await poller.poll_pending(limit=2)
        assert result.checked == 2
        assert len(providers.status.queries) == 2

    async def test_terminal_transactions_not_polled(self, poller, providers, session_factory):
        await open_pending(session_factory, "T1")
        providers.status.set_code("T1", "0000")
        await poller.poll_pending()
        await poller.poll_pending()
        assert len(providers.status.queries) == 1


class TestThrottling:
    @pytest.fixture
    def pauses(self, monkeypatch):
        recorded: list[float] = []

        async def fake_sleep(seconds):
            recorded.append(seconds)

        monkeypatch.setattr(status_poller.asyncio, "sleep", fake_sleep)
        return recorded

    async def test_sequential_pauses_between_items(
        self, session_factory, providers, pauses
    ):
        await open_pending(session_factory, "A", "B", "C")
        poller = TransactionStatusPoller(
            session_factory,
            providers.status,
            PollerPolicy(mode="sequential", item_pause_seconds=0.25),
        )

        result = await poller.poll_pending()

        assert result.checked == 3
        assert pauses == [0.25, 0.25]

    async def test_batched_pauses_between_batches(self, session_factory, providers, pauses):
        await open_pending(session_factory, "A", "B", "C")
        poller = TransactionStatusPoller(
            session_factory,
            providers.status,
            PollerPolicy(mode="batched", batch_size=1, batch_pause_seconds=2.0),
        )

        result = await poller.poll_pending()

        assert result.checked == 3
        assert pauses == [2.0, 2.0]


class TestPolicy:
    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            PollerPolicy(mode="parallel")

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValueError):
            PollerPolicy(batch_size=0)

    def test_from_settings(self, settings):
        policy = PollerPolicy.from_settings(settings)
        assert policy.mode == "sequential"
        assert policy.min_age_minutes == 5
        assert policy.timeout_seconds == settings.provider_timeout_seconds


class TestCheckStatus:
    async def test_requires_an_identifier(self, poller, providers):
        with pytest.raises(StatusQueryError):
            await poller.check_status()
        assert providers.status.queries == []

    async def test_by_provider_transaction_id(self, poller, providers):
        providers.status.set_code("TX-1", "0000")

        status, classification = await poller.check_status(provider_transaction_id="TX-1")

        assert status.response_code == "0000"
        assert classification.is_successful
        assert classification.transaction_status == "completed"


class TestBatchCheck:
    async def test_each_reference_checked(self, poller, providers):
        providers.status.set_code("B1", "0000")
        providers.status.set_code("B2", "2001")

        items = await poller.batch_check(["B1", "B2", "B3"])

        assert [item.client_reference for item in items] == ["B1", "B2", "B3"]
        assert items[0].summary.is_successful
        assert items[0].summary.status == "Paid"
        assert items[1].summary.status == "Failed"
        assert not items[1].summary.should_retry
        assert items[2].summary.status == "Pending"
        assert items[2].summary.should_retry
        assert len(providers.status.queries) == 3

    async def test_provider_error_stays_on_its_item(self, poller, providers):
        providers.status.errors.add("B2")

        items = await poller.batch_check(["B1", "B2"])

        assert items[0].error is None
        assert "timeout" in items[1].error
        assert items[1].summary is None

    @pytest.mark.parametrize(
        "references",
        [[], [f"R{n}" for n in range(11)], ["R1", " "]],
    )
    async def test_rejected_before_any_query(self, poller, providers, references):
        with pytest.raises(StatusQueryError):
            await poller.batch_check(references)
        assert providers.status.queries == []

    async def test_ten_is_the_limit(self, poller, providers):
        items = await poller.batch_check([f"R{n}" for n in range(10)])
        assert len(items) == 10


class TestSummary:
    def test_unpaid_lookup_is_not_successful(self):
        summary = status_poller.summarize(
            status_poller.StatusCheckResult(response_code="0000", status="Unpaid"),
            status_poller.classify("0000"),
        )
        assert not summary.is_successful
        assert summary.status == "Unpaid"
        assert summary.message == "Transaction unpaid"

    async def test_paid(self, poller, providers):
        providers.status.set_code("S1", "0000")
        summary = await poller.summary("S1")
        assert summary.is_successful
        assert summary.message == "Transaction paid"

    async def test_requires_reference(self, poller):
        with pytest.raises(StatusQueryError):
            await poller.summary("")
