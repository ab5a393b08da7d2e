"""USSD gateway turn endpoint."""

from typing import Any

from fastapi import APIRouter

from ussd_engine.api.dependencies import Dispatcher
from ussd_engine.ussd.types import UssdRequest

router = APIRouter(prefix="/ussd", tags=["ussd"])


@router.post("")
async def handle_turn(payload: UssdRequest, dispatcher: Dispatcher) -> dict[str, Any]:
    """Answer one turn of a USSD conversation."""
    response = await dispatcher.handle(payload)
    return response.to_wire()
