"""Health check endpoints.

``/health`` reports both stores a turn depends on: the database (ledger and
logs) and the session backend. ``/ready`` fails while the session backend is
unreachable, since no turn can be served without it.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ussd_engine.api.dependencies import AppSettings, DbSession, Store
from ussd_engine.ussd.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    session_store: str
    session_backend: str


async def _store_status(store: SessionStore) -> str:
    try:
        return HEALTHY if await store.ping() else UNHEALTHY
    except (RedisError, OSError) as e:
        logger.warning("Session store health check failed: %s", e)
        return UNHEALTHY


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession, store: Store, settings: AppSettings) -> HealthResponse:
    """Check database and session store reachability."""
    db_status = UNHEALTHY
    try:
        await db.execute(text("SELECT 1"))
        db_status = HEALTHY
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database health check failed: %s", e)

    store_status = await _store_status(store)
    overall = HEALTHY if db_status == store_status == HEALTHY else "degraded"

    return HealthResponse(
        status=overall,
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        session_store=store_status,
        session_backend=settings.session_backend,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(store: Store) -> dict[str, str]:
    if await _store_status(store) != HEALTHY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session store unavailable",
        )
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
