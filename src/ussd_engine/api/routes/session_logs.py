"""USSD session log endpoints for operators."""

from typing import Annotated

from fastapi import APIRouter, Path, Query

from ussd_engine.api.dependencies import SessionLogs, valid_mobile
from ussd_engine.api.schemas import (
    ErrorResponse,
    PageInfo,
    SessionLogListResponse,
    SessionLogResponse,
    SessionStatsResponse,
)

router = APIRouter(prefix="/session-logs", tags=["session-logs"])


@router.get("", response_model=SessionLogListResponse)
async def list_session_logs(
    logs: SessionLogs,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 50,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> SessionLogListResponse:
    """Most recently dialed first."""
    result = await logs.list_paginated(page, page_size, status=status_filter)
    return SessionLogListResponse(
        items=[SessionLogResponse.model_validate(log) for log in result.items],
        pagination=PageInfo.of(result),
    )


@router.get("/statistics", response_model=SessionStatsResponse)
async def session_statistics(logs: SessionLogs) -> SessionStatsResponse:
    stats = await logs.statistics()
    return SessionStatsResponse(
        total_dialers=stats.total_dialers,
        today_dialers=stats.today_dialers,
        completed_transactions=stats.completed,
        failed_transactions=stats.failed,
        success_rate=stats.success_rate,
    )


@router.get(
    "/mobile/{mobile}",
    response_model=list[SessionLogResponse],
    responses={400: {"model": ErrorResponse}},
)
async def session_logs_by_mobile(
    mobile: Annotated[str, Path()],
    logs: SessionLogs,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> list[SessionLogResponse]:
    entries = await logs.list_by_mobile(valid_mobile(mobile), limit=limit)
    return [SessionLogResponse.model_validate(log) for log in entries]


@router.get("/session/{session_id}", response_model=list[SessionLogResponse])
async def session_logs_by_session(
    session_id: Annotated[str, Path()],
    logs: SessionLogs,
) -> list[SessionLogResponse]:
    entries = await logs.list_by_session(session_id)
    return [SessionLogResponse.model_validate(log) for log in entries]
