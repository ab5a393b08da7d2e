"""Commission log endpoints for operators.

Read-only views of payment outcomes and fulfillment status, plus the
retry bookkeeping for failed deliveries.
"""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, Query, status

from ussd_engine.api.dependencies import CommissionLogs, DbSession, valid_mobile
from ussd_engine.api.schemas import (
    CommissionLogListResponse,
    CommissionLogResponse,
    CommissionStatsResponse,
    ErrorResponse,
    PageInfo,
)

router = APIRouter(prefix="/commission-logs", tags=["commission-logs"])


@router.get("", response_model=CommissionLogListResponse)
async def list_commission_logs(
    logs: CommissionLogs,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 50,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    commission_service_status: Annotated[
        str | None, Query(alias="commissionServiceStatus")
    ] = None,
    service_type: Annotated[str | None, Query(alias="serviceType")] = None,
) -> CommissionLogListResponse:
    """Newest first, with optional filters."""
    result = await logs.list_paginated(
        page,
        page_size,
        status=status_filter,
        commission_service_status=commission_service_status,
        service_type=service_type,
    )
    return CommissionLogListResponse(
        items=[CommissionLogResponse.model_validate(e) for e in result.items],
        pagination=PageInfo.of(result),
    )


@router.get("/statistics", response_model=CommissionStatsResponse)
async def commission_statistics(logs: CommissionLogs) -> CommissionStatsResponse:
    stats = await logs.statistics()
    return CommissionStatsResponse(
        total_transactions=stats.total,
        successful_transactions=stats.successful,
        failed_transactions=stats.failed,
        delivered_services=stats.delivered,
        failed_services=stats.failed_services,
        pending_services=stats.pending_services,
        success_rate=stats.success_rate,
        delivery_rate=stats.delivery_rate,
        total_amount=stats.total_amount,
        total_charges=stats.total_charges,
        total_amount_after_charges=stats.total_amount_after_charges,
    )


@router.get("/retryable-failed", response_model=list[CommissionLogResponse])
async def retryable_failed(logs: CommissionLogs) -> list[CommissionLogResponse]:
    """Failed deliveries that may be attempted again, oldest first."""
    return [CommissionLogResponse.model_validate(e) for e in await logs.retryable_failed()]


@router.get(
    "/mobile/{mobile}",
    response_model=list[CommissionLogResponse],
    responses={400: {"model": ErrorResponse}},
)
async def commission_logs_by_mobile(
    mobile: Annotated[str, Path()],
    logs: CommissionLogs,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
) -> list[CommissionLogResponse]:
    entries = await logs.list_by_mobile(valid_mobile(mobile), limit=limit)
    return [CommissionLogResponse.model_validate(e) for e in entries]


@router.get("/session/{session_id}", response_model=list[CommissionLogResponse])
async def commission_logs_by_session(
    session_id: Annotated[str, Path()],
    logs: CommissionLogs,
) -> list[CommissionLogResponse]:
    entries = await logs.list_by_session(session_id)
    return [CommissionLogResponse.model_validate(e) for e in entries]


@router.get(
    "/client-reference/{client_reference}",
    response_model=CommissionLogResponse,
    responses={404: {"model": ErrorResponse}},
)
async def commission_log_by_reference(
    client_reference: Annotated[str, Path()],
    logs: CommissionLogs,
) -> CommissionLogResponse:
    entry = await logs.get(client_reference)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No commission log for {client_reference}",
        )
    return CommissionLogResponse.model_validate(entry)


@router.post(
    "/client-reference/{client_reference}/retries",
    response_model=CommissionLogResponse,
    responses={404: {"model": ErrorResponse}},
)
async def record_retry(
    client_reference: Annotated[str, Path()],
    db: DbSession,
    logs: CommissionLogs,
) -> CommissionLogResponse:
    """Count one more delivery attempt for a failed entry."""
    if not await logs.increment_retry_count(client_reference):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No commission log for {client_reference}",
        )
    await db.commit()
    entry = await logs.get(client_reference)
    return CommissionLogResponse.model_validate(entry)
