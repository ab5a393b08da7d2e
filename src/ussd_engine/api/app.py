"""FastAPI application factory."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ussd_engine.api.routes import (
    callbacks_router,
    commission_logs_router,
    earnings_router,
    health_router,
    session_logs_router,
    transactions_router,
    ussd_router,
)
from ussd_engine.config import Settings, get_settings
from ussd_engine.database import create_all, get_engine, init_db
from ussd_engine.providers import Providers, build_providers
from ussd_engine.services.callback_processor import PaymentCallbackProcessor
from ussd_engine.services.status_poller import PollerPolicy, TransactionStatusPoller
from ussd_engine.ussd.dispatcher import StepDispatcher
from ussd_engine.ussd.session_store import SessionStore, build_session_store

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    engine=None,
    providers: Providers | None = None,
    store: SessionStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The keyword overrides replace the collaborators built from settings;
    tests pass an in-memory engine and stub providers.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        db_engine, factory = init_db(engine or get_engine(settings.database_url))
        if engine is not None or settings.debug or settings.database_url.startswith("sqlite"):
            await create_all(db_engine)

        app.state.settings = settings
        app.state.session_factory = factory
        app.state.store = store or build_session_store(
            settings.session_backend, settings.redis_url, settings.session_ttl_seconds
        )
        app.state.providers = providers or build_providers(settings)
        app.state.dispatcher = StepDispatcher(
            app.state.store, factory, app.state.providers, settings
        )
        app.state.callback_processor = PaymentCallbackProcessor(
            factory, app.state.store, app.state.providers, settings
        )
        app.state.poller = TransactionStatusPoller(
            factory, app.state.providers.status, PollerPolicy.from_settings(settings)
        )
        logger.info(
            "USSD engine started (providers=%s, sessions=%s)",
            settings.provider_mode, settings.session_backend,
        )
        yield
        if store is None:
            await app.state.store.close()
        if providers is None:
            await app.state.providers.aclose()
        if engine is None:
            await db_engine.dispose()

    app = FastAPI(
        title="USSD Engine API",
        description="USSD session orchestration and mobile-money reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(ussd_router, prefix="/api/v1")
    app.include_router(callbacks_router, prefix="/api/v1")
    app.include_router(transactions_router, prefix="/api/v1")
    app.include_router(earnings_router, prefix="/api/v1")
    app.include_router(commission_logs_router, prefix="/api/v1")
    app.include_router(session_logs_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
