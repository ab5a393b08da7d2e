"""Earnings and withdrawal endpoints."""

from typing import Annotated

from fastapi import APIRouter, Path, Query

from ussd_engine.api.dependencies import DbSession, Earnings, valid_mobile
from ussd_engine.api.schemas import (
    EarningsResponse,
    ErrorResponse,
    WithdrawalListResponse,
    WithdrawalOutcomeResponse,
    WithdrawalRequest,
    WithdrawalResponse,
)

router = APIRouter(prefix="/earnings", tags=["earnings"])


@router.get(
    "/{mobile}",
    response_model=EarningsResponse,
    responses={400: {"model": ErrorResponse}},
)
async def get_earnings(
    mobile: Annotated[str, Path()],
    earnings: Earnings,
) -> EarningsResponse:
    """Derived balances for a mobile number."""
    summary = await earnings.get_user_earnings(valid_mobile(mobile))
    return EarningsResponse(
        mobile_number=summary.mobile_number,
        total_earnings=summary.total_earnings,
        available_balance=summary.available_balance,
        total_withdrawn=summary.total_withdrawn,
        pending_withdrawals=summary.pending_withdrawals,
        transaction_count=summary.transaction_count,
    )


@router.get(
    "/{mobile}/withdrawals",
    response_model=WithdrawalListResponse,
    responses={400: {"model": ErrorResponse}},
)
async def list_withdrawals(
    mobile: Annotated[str, Path()],
    earnings: Earnings,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> WithdrawalListResponse:
    """Most recent withdrawals first."""
    items = await earnings.get_withdrawal_history(valid_mobile(mobile), limit=limit)
    return WithdrawalListResponse(
        items=[WithdrawalResponse.model_validate(w) for w in items],
        total=len(items),
    )


@router.post(
    "/withdrawals",
    response_model=WithdrawalOutcomeResponse,
    responses={400: {"model": ErrorResponse}},
)
async def request_withdrawal(
    payload: WithdrawalRequest,
    db: DbSession,
    earnings: Earnings,
) -> WithdrawalOutcomeResponse:
    """Pay out earnings via send-money.

    Local rejections (minimum, balance) come back with accepted=false and
    no withdrawal record.
    """
    outcome = await earnings.process_withdrawal_request(
        valid_mobile(payload.mobile_number), payload.amount, payload.client_reference
    )
    await db.commit()
    return WithdrawalOutcomeResponse(
        accepted=outcome.accepted,
        message=outcome.message,
        withdrawal=(
            WithdrawalResponse.model_validate(outcome.withdrawal)
            if outcome.withdrawal is not None
            else None
        ),
    )
