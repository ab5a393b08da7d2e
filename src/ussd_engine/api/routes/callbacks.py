"""Provider callback endpoints.

POST /callbacks/payment     - mobile-money collection result
POST /callbacks/send-money  - withdrawal payout result
POST /callbacks/service     - commission service delivery result
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Path, status
from pydantic import ValidationError

from ussd_engine.api.dependencies import CallbackProcessor
from ussd_engine.api.schemas import CallbackAck, ErrorResponse
from ussd_engine.services.callback_processor import CallbackResult
from ussd_engine.services.callbacks import (
    CALLBACK_KINDS,
    PaymentCallback,
    SendMoneyCallback,
    ServiceCallback,
    parse_callback,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/callbacks", tags=["callbacks"])


@router.post(
    "/{kind}",
    response_model=CallbackAck,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def receive_callback(
    kind: Annotated[str, Path()],
    payload: Annotated[dict[str, Any], Body()],
    processor: CallbackProcessor,
) -> CallbackAck:
    """Validate and process a provider callback."""
    if kind not in CALLBACK_KINDS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown callback kind: {kind}",
        )
    try:
        callback = parse_callback(kind, payload)
    except ValidationError as e:
        logger.warning("Rejected %s callback: %s", kind, e.errors(include_url=False))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid {kind} callback payload",
        ) from e

    if isinstance(callback, PaymentCallback):
        result: CallbackResult = await processor.process_payment(callback)
        return CallbackAck(
            kind=kind,
            client_reference=result.session_id,
            transaction_status=result.transaction_status,
            duplicate=result.duplicate,
            fulfillment=result.fulfillment,
            acknowledged=result.acknowledged,
            errors=result.errors,
        )
    if isinstance(callback, SendMoneyCallback):
        withdrawal = await processor.process_send_money(callback)
        return CallbackAck(
            kind=kind,
            client_reference=callback.client_reference,
            transaction_status=withdrawal.status if withdrawal is not None else None,
        )
    assert isinstance(callback, ServiceCallback)
    await processor.process_service(callback)
    return CallbackAck(kind=kind, client_reference=callback.client_reference)
