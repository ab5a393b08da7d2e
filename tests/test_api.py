"""Tests for the HTTP API."""

from decimal import Decimal

from ussd_engine.models import CommissionLog
from ussd_engine.services.ledger_service import TransactionLedger

from tests.conftest import SUBSCRIBER, backdate, payment_callback_payload


def turn(session_id: str, sequence: int, message: str, type: str = "Response") -> dict:
    return {
        "Type": type,
        "SessionId": session_id,
        "Sequence": sequence,
        "Message": message,
        "Mobile": SUBSCRIBER,
        "ServiceCode": "*713*1#",
        "Operator": "mtn",
    }


async def buy_airtime(client, session_id: str = "S1") -> dict:
    await client.post("/api/v1/ussd", json=turn(session_id, 1, "*713*1#", "Initiation"))
    body = {}
    for sequence, text in enumerate(["1", "1", "1", "5", "1"], start=2):
        response = await client.post("/api/v1/ussd", json=turn(session_id, sequence, text))
        body = response.json()
    return body


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "healthy"
        assert body["session_store"] == "healthy"
        assert body["session_backend"] == "memory"

    async def test_ready_and_live(self, client):
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}

    async def test_unreachable_session_store(self, client, store, monkeypatch):
        async def refuse():
            raise ConnectionRefusedError("redis down")

        monkeypatch.setattr(store.backend, "ping", refuse)

        body = (await client.get("/health")).json()
        assert body["status"] == "degraded"
        assert body["session_store"] == "unhealthy"
        assert (await client.get("/ready")).status_code == 503


class TestUssdEndpoint:
    async def test_initiation(self, client):
        response = await client.post("/api/v1/ussd", json=turn("S1", 1, "*713#", "Initiation"))

        assert response.status_code == 200
        body = response.json()
        assert body["sessionId"] == "S1"
        assert body["type"] == "response"
        assert body["dataType"] == "input"
        assert body["fieldType"] == "number"

    async def test_camel_case_turn(self, client):
        response = await client.post(
            "/api/v1/ussd",
            json={"type": "initiation", "sessionId": "S2", "mobileNumber": SUBSCRIBER},
        )
        assert response.json()["type"] == "response"

    async def test_purchase_ends_in_cart(self, client):
        body = await buy_airtime(client)
        assert body["type"] == "addToCart"
        assert body["item"] == {"itemName": "MTN Airtime GHS 5.00", "qty": 1, "price": 5.0}

    async def test_expired_session(self, client):
        body = (await client.post("/api/v1/ussd", json=turn("ghost", 4, "1"))).json()
        assert body["type"] == "release"

    async def test_malformed_turn(self, client):
        response = await client.post("/api/v1/ussd", json={"Message": "1"})
        assert response.status_code == 422


class TestCallbackEndpoint:
    async def test_payment_callback(self, client, providers):
        await buy_airtime(client)

        response = await client.post(
            "/api/v1/callbacks/payment", json=payment_callback_payload("S1")
        )

        assert response.status_code == 200
        ack = response.json()
        assert ack["status"] == "received"
        assert ack["transaction_status"] == "completed"
        assert ack["fulfillment"] == "delivered"
        assert ack["acknowledged"] is True
        assert ack["duplicate"] is False
        assert len(providers.commission.requests) == 1

    async def test_duplicate_payment_callback(self, client, providers):
        await buy_airtime(client)
        await client.post("/api/v1/callbacks/payment", json=payment_callback_payload("S1"))

        ack = (
            await client.post("/api/v1/callbacks/payment", json=payment_callback_payload("S1"))
        ).json()

        assert ack["duplicate"] is True
        assert len(providers.commission.requests) == 1

    async def test_unknown_kind(self, client):
        response = await client.post("/api/v1/callbacks/refund", json={})
        assert response.status_code == 404

    async def test_invalid_payload(self, client):
        response = await client.post("/api/v1/callbacks/payment", json={"SessionId": "S1"})
        assert response.status_code == 422
        assert response.json()["detail"] == "Invalid payment callback payload"

    async def test_service_callback(self, client):
        response = await client.post(
            "/api/v1/callbacks/service",
            json={"ResponseCode": "0000", "Data": {"ClientReference": "S1", "IsFulfilled": True}},
        )
        assert response.status_code == 200
        assert response.json()["client_reference"] == "S1"

    async def test_send_money_callback_unknown_reference(self, client):
        response = await client.post(
            "/api/v1/callbacks/send-money",
            json={"ResponseCode": "0000", "Data": {"ClientReference": "WD-x"}},
        )
        assert response.status_code == 200
        assert response.json()["transaction_status"] is None


class TestTransactionEndpoints:
    async def test_poll(self, client, providers, session_factory):
        await buy_airtime(client)
        await backdate(session_factory, "S1")
        providers.status.set_code("S1", "0000")

        response = await client.post("/api/v1/transactions/poll")

        assert response.status_code == 200
        assert response.json()["completed"] == 1
        assert providers.commission.requests == []
        async with session_factory() as session:
            assert (await TransactionLedger(session).get("S1")).status == "completed"

    async def test_status_requires_identifier(self, client):
        response = await client.get("/api/v1/transactions/status")
        assert response.status_code == 400

    async def test_status_lookup(self, client, providers):
        providers.status.set_code("S7", "0000")

        response = await client.get("/api/v1/transactions/status", params={"clientReference": "S7"})

        assert response.status_code == 200
        body = response.json()
        assert body["response_code"] == "0000"
        assert body["is_successful"] is True
        assert body["classification"] == "Paid"

    async def test_status_provider_failure(self, client, providers):
        providers.status.errors.add("S8")
        response = await client.get("/api/v1/transactions/status", params={"clientReference": "S8"})
        assert response.status_code == 502


class TestEarningsEndpoints:
    async def _seed(self, session_factory, amount: str = "1000.00"):
        async with session_factory() as session:
            session.add(
                CommissionLog(
                    client_reference="REF-1",
                    mobile_number=SUBSCRIBER,
                    amount=Decimal(amount),
                    amount_after_charges=Decimal(amount),
                    status="Paid",
                    is_fulfilled=True,
                    commission_service_status="delivered",
                )
            )
            await session.commit()

    async def test_balance(self, client, session_factory):
        await self._seed(session_factory)

        response = await client.get("/api/v1/earnings/0241234567")

        assert response.status_code == 200
        body = response.json()
        assert body["mobile_number"] == SUBSCRIBER
        assert Decimal(body["available_balance"]) == Decimal("20.00")

    async def test_invalid_mobile(self, client):
        assert (await client.get("/api/v1/earnings/12345")).status_code == 400

    async def test_withdraw_and_list(self, client, providers, session_factory):
        await self._seed(session_factory)

        response = await client.post(
            "/api/v1/earnings/withdrawals",
            json={"mobile_number": SUBSCRIBER, "amount": "15.00", "client_reference": "WD-api"},
        )

        body = response.json()
        assert body["accepted"] is True
        assert body["withdrawal"]["status"] == "Pending"
        assert len(providers.send_money.calls) == 1

        listing = (await client.get(f"/api/v1/earnings/{SUBSCRIBER}/withdrawals")).json()
        assert listing["total"] == 1
        assert listing["items"][0]["client_reference"] == "WD-api"

    async def test_withdraw_over_balance(self, client, providers, session_factory):
        await self._seed(session_factory, "150.00")

        body = (
            await client.post(
                "/api/v1/earnings/withdrawals",
                json={"mobile_number": SUBSCRIBER, "amount": "10.00", "client_reference": "WD-x"},
            )
        ).json()

        assert body["accepted"] is False
        assert body["withdrawal"] is None
        assert providers.send_money.calls == []


class TestStatusBatchAndSummary:
    async def test_batch_check(self, client, providers):
        providers.status.set_code("B1", "0000")
        providers.status.errors.add("B2")

        response = await client.post(
            "/api/v1/transactions/batch-check", json={"client_references": ["B1", "B2"]}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["checked"] == 2
        assert body["errors"] == 1
        first, second = body["items"]
        assert first["summary"]["is_successful"] is True
        assert first["result"]["response_code"] == "0000"
        assert second["error"]
        assert second["summary"] is None

    async def test_batch_check_limits(self, client, providers):
        empty = await client.post("/api/v1/transactions/batch-check", json={"client_references": []})
        too_many = await client.post(
            "/api/v1/transactions/batch-check",
            json={"client_references": [f"R{n}" for n in range(11)]},
        )
        assert empty.status_code == 400
        assert too_many.status_code == 400
        assert providers.status.queries == []

    async def test_summary(self, client, providers):
        providers.status.set_code("S7", "0000")

        response = await client.get("/api/v1/transactions/summary", params={"clientReference": "S7"})

        assert response.status_code == 200
        assert response.json() == {
            "client_reference": "S7",
            "is_successful": True,
            "status": "Paid",
            "message": "Transaction paid",
            "should_retry": False,
        }

    async def test_summary_requires_reference(self, client):
        assert (await client.get("/api/v1/transactions/summary")).status_code == 400


async def _seed_logs(session_factory) -> None:
    async with session_factory() as session:
        session.add_all([
            CommissionLog(
                client_reference="C1",
                session_id="S1",
                mobile_number=SUBSCRIBER,
                service_type="airtime",
                amount=Decimal("10.00"),
                charges=Decimal("0.20"),
                amount_after_charges=Decimal("9.80"),
                status="Paid",
                is_fulfilled=True,
                commission_service_status="delivered",
            ),
            CommissionLog(
                client_reference="C2",
                session_id="S2",
                mobile_number=SUBSCRIBER,
                service_type="bundle",
                amount=Decimal("5.00"),
                amount_after_charges=Decimal("5.00"),
                status="Paid",
                commission_service_status="failed",
            ),
            CommissionLog(
                client_reference="C3",
                session_id="S3",
                mobile_number="233209999999",
                service_type="airtime",
                amount=Decimal("2.00"),
                amount_after_charges=Decimal("2.00"),
                status="Unpaid",
                commission_service_status="failed",
                is_retryable=False,
            ),
        ])
        await session.commit()


class TestCommissionLogEndpoints:
    async def test_statistics(self, client, session_factory):
        await _seed_logs(session_factory)

        body = (await client.get("/api/v1/commission-logs/statistics")).json()

        assert body["total_transactions"] == 3
        assert body["successful_transactions"] == 2
        assert body["failed_transactions"] == 1
        assert body["delivered_services"] == 1
        assert body["failed_services"] == 2
        assert body["success_rate"] == "66.67"
        assert body["delivery_rate"] == "33.33"
        assert Decimal(body["total_amount"]) == Decimal("17.00")
        assert Decimal(body["total_charges"]) == Decimal("0.20")

    async def test_empty_statistics(self, client):
        body = (await client.get("/api/v1/commission-logs/statistics")).json()
        assert body["total_transactions"] == 0
        assert body["success_rate"] == "0"

    async def test_paginated_with_filters(self, client, session_factory):
        await _seed_logs(session_factory)

        body = (
            await client.get(
                "/api/v1/commission-logs",
                params={"commissionServiceStatus": "failed", "page_size": 1},
            )
        ).json()

        assert len(body["items"]) == 1
        assert body["pagination"] == {
            "page": 1,
            "page_size": 1,
            "total": 2,
            "pages": 2,
            "has_next": True,
            "has_prev": False,
        }

    async def test_by_mobile_session_and_reference(self, client, session_factory):
        await _seed_logs(session_factory)

        by_mobile = (await client.get("/api/v1/commission-logs/mobile/0241234567")).json()
        by_session = (await client.get("/api/v1/commission-logs/session/S2")).json()
        by_reference = await client.get("/api/v1/commission-logs/client-reference/C3")
        missing = await client.get("/api/v1/commission-logs/client-reference/nope")

        assert {e["client_reference"] for e in by_mobile} == {"C1", "C2"}
        assert [e["client_reference"] for e in by_session] == ["C2"]
        assert by_reference.json()["mobile_number"] == "233209999999"
        assert missing.status_code == 404

    async def test_retryable_failed_and_retry_count(self, client, session_factory):
        await _seed_logs(session_factory)

        retryable = (await client.get("/api/v1/commission-logs/retryable-failed")).json()
        assert [e["client_reference"] for e in retryable] == ["C2"]

        for _ in range(3):
            response = await client.post("/api/v1/commission-logs/client-reference/C2/retries")
            assert response.status_code == 200
        assert response.json()["retry_count"] == 3
        assert response.json()["last_retry_at"] is not None

        exhausted = (await client.get("/api/v1/commission-logs/retryable-failed")).json()
        assert exhausted == []
        missing = await client.post("/api/v1/commission-logs/client-reference/nope/retries")
        assert missing.status_code == 404


class TestSessionLogEndpoints:
    async def test_statistics_and_listing(self, client, providers):
        await buy_airtime(client, "S1")
        await buy_airtime(client, "S2")
        await client.post(
            "/api/v1/callbacks/payment", json=payment_callback_payload("S1", successful=True)
        )

        stats = (await client.get("/api/v1/session-logs/statistics")).json()
        assert stats["total_dialers"] == 1
        assert stats["today_dialers"] == 2
        assert stats["completed_transactions"] == 1
        assert stats["success_rate"] == "100.00"

        completed = (
            await client.get("/api/v1/session-logs", params={"status": "completed"})
        ).json()
        assert [log["session_id"] for log in completed["items"]] == ["S1"]
        assert completed["pagination"]["total"] == 1

    async def test_by_mobile_and_session(self, client):
        await buy_airtime(client, "S1")

        by_mobile = (await client.get(f"/api/v1/session-logs/mobile/{SUBSCRIBER}")).json()
        by_session = (await client.get("/api/v1/session-logs/session/S1")).json()

        assert [log["session_id"] for log in by_mobile] == ["S1"]
        assert by_session[0]["mobile_number"] == SUBSCRIBER
        assert (await client.get("/api/v1/session-logs/mobile/123")).status_code == 400
