"""Transaction status endpoints."""

import asyncio
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status

from ussd_engine.api.dependencies import Poller
from ussd_engine.api.schemas import (
    BatchCheckItemResponse,
    BatchCheckRequest,
    BatchCheckResponse,
    ErrorResponse,
    PollResponse,
    StatusCheckResponse,
    StatusSummaryResponse,
)
from ussd_engine.providers.base import ProviderError, StatusCheckResult, StatusQueryError
from ussd_engine.services.response_codes import CodeClassification
from ussd_engine.services.status_poller import StatusSummary

router = APIRouter(prefix="/transactions", tags=["transactions"])


def _status_response(
    result: StatusCheckResult, classification: CodeClassification
) -> StatusCheckResponse:
    return StatusCheckResponse(
        response_code=classification.code,
        message=result.message or classification.message,
        status=result.status,
        is_successful=classification.is_successful,
        should_retry=classification.should_retry,
        classification=classification.status,
        transaction_id=result.transaction_id,
        external_transaction_id=result.external_transaction_id,
        payment_method=result.payment_method,
        amount=result.amount,
        charges=result.charges,
        amount_after_charges=result.amount_after_charges,
        is_fulfilled=result.is_fulfilled,
    )


def _summary_response(client_reference: str, summary: StatusSummary) -> StatusSummaryResponse:
    return StatusSummaryResponse(
        client_reference=client_reference,
        is_successful=summary.is_successful,
        status=summary.status,
        message=summary.message,
        should_retry=summary.should_retry,
    )


@router.post("/poll", response_model=PollResponse)
async def poll_pending(
    poller: Poller,
    min_age_minutes: Annotated[int | None, Query(ge=0)] = None,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> PollResponse:
    """Reconcile stale open transactions against the status provider."""
    result = await poller.poll_pending(min_age_minutes=min_age_minutes, limit=limit)
    return PollResponse(**result.to_dict())


@router.get(
    "/status",
    response_model=StatusCheckResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def check_status(
    poller: Poller,
    client_reference: Annotated[str | None, Query(alias="clientReference")] = None,
    provider_transaction_id: Annotated[
        str | None, Query(alias="providerTransactionId")
    ] = None,
    network_transaction_id: Annotated[str | None, Query(alias="networkTransactionId")] = None,
) -> StatusCheckResponse:
    """Query the provider for one transaction. Nothing is written."""
    try:
        result, classification = await poller.check_status(
            client_reference=client_reference,
            provider_transaction_id=provider_transaction_id,
            network_transaction_id=network_transaction_id,
        )
    except StatusQueryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except (ProviderError, asyncio.TimeoutError) as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Status provider error: {e}",
        ) from e

    return _status_response(result, classification)


@router.post(
    "/batch-check",
    response_model=BatchCheckResponse,
    responses={400: {"model": ErrorResponse}},
)
async def batch_check(payload: BatchCheckRequest, poller: Poller) -> BatchCheckResponse:
    """Look up one to ten client references. Provider errors are per item."""
    try:
        items = await poller.batch_check(payload.client_references)
    except StatusQueryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    response_items = []
    for item in items:
        summary = item.summary
        response_items.append(
            BatchCheckItemResponse(
                client_reference=item.client_reference,
                result=(
                    _status_response(item.result, item.classification)
                    if item.result is not None and item.classification is not None
                    else None
                ),
                summary=(
                    _summary_response(item.client_reference, summary)
                    if summary is not None
                    else None
                ),
                error=item.error,
            )
        )
    return BatchCheckResponse(
        items=response_items,
        checked=len(response_items),
        errors=sum(1 for item in response_items if item.error),
    )


@router.get(
    "/summary",
    response_model=StatusSummaryResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def transaction_summary(
    poller: Poller,
    client_reference: Annotated[str | None, Query(alias="clientReference")] = None,
) -> StatusSummaryResponse:
    """Whether a transaction is paid, per the status provider."""
    try:
        summary = await poller.summary(client_reference or "")
    except StatusQueryError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except (ProviderError, asyncio.TimeoutError) as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Status provider error: {e}",
        ) from e
    return _summary_response(client_reference or "", summary)
