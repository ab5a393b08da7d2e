"""Pytest fixtures for USSD engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import timedelta
from decimal import Decimal
from typing import Any

import httpx
import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ussd_engine.config import Settings
from ussd_engine.models import Base, PaymentTransaction, utcnow
from ussd_engine.providers import Providers
from ussd_engine.providers.stub import (
    StubCommissionProvider,
    StubGatewayClient,
    StubSendMoneyProvider,
    StubStatusCheckProvider,
    StubVoucherNotifier,
    default_catalog,
)
from ussd_engine.services.callback_processor import PaymentCallbackProcessor
from ussd_engine.services.status_poller import PollerPolicy, TransactionStatusPoller
from ussd_engine.ussd.dispatcher import StepDispatcher
from ussd_engine.ussd.session_store import SessionStore
from ussd_engine.ussd.types import UssdRequest, UssdResponse

# In-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

SUBSCRIBER = "233241234567"


@pytest.fixture
def settings() -> Settings:
    """Deterministic settings: stub providers, memory sessions, no pauses."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        provider_mode="stub",
        hubtel_client_id="",
        hubtel_client_secret="",
        hubtel_pos_sales_id="pos-1",
        hubtel_prepaid_deposit_id="prepaid-1",
        hubtel_commission_base_url="https://cs.example.test/commissionservices",
        hubtel_status_base_url="https://status.example.test",
        hubtel_send_money_base_url="https://smp.example.test/api/merchants",
        gateway_callback_url="https://gateway.example.test/callback",
        commission_callback_url="https://engine.example.test/api/v1/callbacks/service",
        provider_timeout_seconds=5.0,
        session_backend="memory",
        redis_url="redis://localhost:6379/15",
        session_ttl_seconds=None,
        poll_min_age_minutes=5,
        poll_mode="sequential",
        poll_batch_size=5,
        poll_batch_pause_seconds=0.0,
        poll_item_pause_seconds=0.0,
        commission_rate=Decimal("0.02"),
        min_withdrawal_amount=Decimal("10.00"),
        currency="GHS",
    )


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def file_engine(tmp_path):
    """File-backed SQLite engine whose pooled connections really run concurrently.

    Tests that race two units of work against each other override `engine`
    with this one; the in-memory engine shares a single connection.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ussd.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def providers() -> Providers:
    return Providers(
        gateway=StubGatewayClient(),
        status=StubStatusCheckProvider(),
        commission=StubCommissionProvider(),
        send_money=StubSendMoneyProvider(),
        catalog=default_catalog(),
        notifier=StubVoucherNotifier(),
    )


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def dispatcher(store, session_factory, providers, settings) -> StepDispatcher:
    return StepDispatcher(store, session_factory, providers, settings)


@pytest.fixture
def processor(session_factory, store, providers, settings) -> PaymentCallbackProcessor:
    return PaymentCallbackProcessor(session_factory, store, providers, settings)


@pytest.fixture
def poller(session_factory, providers, settings) -> TransactionStatusPoller:
    return TransactionStatusPoller(
        session_factory, providers.status, PollerPolicy.from_settings(settings)
    )


@pytest.fixture
async def client(settings, engine, providers, store) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client against the app, with the lifespan running."""
    from ussd_engine.api.app import create_app

    app = create_app(settings, engine=engine, providers=providers, store=store)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac


# =============================================================================
# Helpers
# =============================================================================


def ussd_request(
    session_id: str,
    sequence: int,
    message: str = "",
    *,
    type: str = "Response",
    mobile: str = SUBSCRIBER,
) -> UssdRequest:
    """Build an inbound turn the way the gateway sends it."""
    return UssdRequest.model_validate({
        "Type": type,
        "SessionId": session_id,
        "Sequence": sequence,
        "Message": message,
        "Mobile": mobile,
        "ServiceCode": "*713*1#",
        "Operator": "mtn",
    })


async def converse(
    dispatcher: StepDispatcher,
    session_id: str,
    inputs: list[str],
    *,
    mobile: str = SUBSCRIBER,
) -> list[UssdResponse]:
    """Dial, then answer each prompt in order. Sequence numbers follow the gateway."""
    responses = [
        await dispatcher.handle(
            ussd_request(session_id, 1, "*713*1#", type="Initiation", mobile=mobile)
        )
    ]
    for sequence, text in enumerate(inputs, start=2):
        responses.append(
            await dispatcher.handle(ussd_request(session_id, sequence, text, mobile=mobile))
        )
    return responses


def payment_callback_payload(
    session_id: str,
    *,
    successful: bool = True,
    amount: str = "5.00",
    after_charges: str | None = None,
    order_id: str = "ORD-1",
    mobile: str = SUBSCRIBER,
) -> dict[str, Any]:
    """Payment callback body in the gateway's PascalCase."""
    return {
        "SessionId": session_id,
        "OrderId": order_id,
        "ExtraData": {},
        "OrderInfo": {
            "CustomerMobileNumber": mobile,
            "Status": "Paid" if successful else "Unpaid",
            "Currency": "GHS",
            "Items": [{"Name": "Airtime", "Quantity": 1, "UnitPrice": amount}],
            "Payment": {
                "PaymentType": "mobilemoney",
                "AmountPaid": amount,
                "AmountAfterCharges": after_charges or amount,
                "PaymentDate": "2024-05-01T10:00:00Z",
                "PaymentDescription": "Paid" if successful else "Declined",
                "IsSuccessful": successful,
            },
        },
    }


async def backdate(session_factory, client_reference: str, minutes: int = 10) -> None:
    """Make a transaction look older than the poll cutoff."""
    async with session_factory() as session:
        await session.execute(
            update(PaymentTransaction)
            .where(PaymentTransaction.client_reference == client_reference)
            .values(created_at=utcnow() - timedelta(minutes=minutes))
        )
        await session.commit()
