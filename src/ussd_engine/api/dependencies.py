"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ussd_engine.config import Settings
from ussd_engine.providers import Providers
from ussd_engine.services.callback_processor import PaymentCallbackProcessor
from ussd_engine.services.commission_log import CommissionLogService
from ussd_engine.services.earnings_service import EarningsPolicy, EarningsService
from ussd_engine.services.status_poller import TransactionStatusPoller
from ussd_engine.ussd.dispatcher import StepDispatcher
from ussd_engine.ussd.session_log import SessionLogService
from ussd_engine.ussd.session_store import SessionStore
from ussd_engine.ussd.validators import normalize_mobile


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


def get_providers(request: Request) -> Providers:
    return request.app.state.providers


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.store


def get_dispatcher(request: Request) -> StepDispatcher:
    return request.app.state.dispatcher


def get_callback_processor(request: Request) -> PaymentCallbackProcessor:
    return request.app.state.callback_processor


def get_poller(request: Request) -> TransactionStatusPoller:
    return request.app.state.poller


DbSession = Annotated[AsyncSession, Depends(get_db_session)]
AppSettings = Annotated[Settings, Depends(get_settings_dep)]
AppProviders = Annotated[Providers, Depends(get_providers)]
Store = Annotated[SessionStore, Depends(get_session_store)]
Dispatcher = Annotated[StepDispatcher, Depends(get_dispatcher)]
CallbackProcessor = Annotated[PaymentCallbackProcessor, Depends(get_callback_processor)]
Poller = Annotated[TransactionStatusPoller, Depends(get_poller)]


async def get_earnings_service(
    db: DbSession, providers: AppProviders, settings: AppSettings
) -> EarningsService:
    """Earnings service bound to the request's database session."""
    return EarningsService(
        db,
        providers.send_money,
        EarningsPolicy(
            commission_rate=settings.commission_rate,
            min_withdrawal=settings.min_withdrawal_amount,
        ),
    )


Earnings = Annotated[EarningsService, Depends(get_earnings_service)]


def get_commission_logs(db: DbSession) -> CommissionLogService:
    return CommissionLogService(db)


def get_session_logs(db: DbSession) -> SessionLogService:
    return SessionLogService(db)


CommissionLogs = Annotated[CommissionLogService, Depends(get_commission_logs)]
SessionLogs = Annotated[SessionLogService, Depends(get_session_logs)]


def valid_mobile(mobile: str) -> str:
    """Normalize a mobile number from the path or body, or answer 400."""
    normalized = normalize_mobile(mobile)
    if normalized is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid mobile number: {mobile}",
        )
    return normalized
