"""Turns a confirmed order into a mobile-money collection request."""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from ussd_engine.services.ledger_service import TransactionLedger
from ussd_engine.ussd import response_builder as rb
from ussd_engine.ussd.types import SessionState, UssdResponse
from ussd_engine.ussd.validators import AmountValidationError, parse_amount

logger = logging.getLogger(__name__)


class PaymentRequestIssuer:
    """Validates the amount, opens a pending transaction, returns addToCart.

    The gateway performs the actual checkout when it receives addToCart.
    """

    def __init__(self, db: AsyncSession):
        self.ledger = TransactionLedger(db)

    async def issue(
        self, state: SessionState, amount: Decimal | str | None, product_name: str
    ) -> UssdResponse:
        session_id = state.session_id
        try:
            total = parse_amount(amount if amount is not None else "")
        except AmountValidationError as e:
            logger.warning("Rejected payment request for %s: %s", session_id, e)
            return rb.error(session_id, str(e))

        await self.ledger.open_pending(
            client_reference=session_id,
            session_id=session_id,
            amount=total,
            service_type=state.service_type.value if state.service_type else None,
            mobile_number=state.mobile_number,
            product_name=product_name,
            extra_data=state.snapshot(),
        )
        logger.info("Payment request issued for %s: %s GHS %s", session_id, product_name, total)
        return rb.add_to_cart(session_id, product_name, total)
