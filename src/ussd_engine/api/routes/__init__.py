"""API routes."""

from ussd_engine.api.routes.callbacks import router as callbacks_router
from ussd_engine.api.routes.commission_logs import router as commission_logs_router
from ussd_engine.api.routes.earnings import router as earnings_router
from ussd_engine.api.routes.health import router as health_router
from ussd_engine.api.routes.session_logs import router as session_logs_router
from ussd_engine.api.routes.transactions import router as transactions_router
from ussd_engine.api.routes.ussd import router as ussd_router

__all__ = [
    "callbacks_router",
    "commission_logs_router",
    "earnings_router",
    "health_router",
    "session_logs_router",
    "transactions_router",
    "ussd_router",
]
