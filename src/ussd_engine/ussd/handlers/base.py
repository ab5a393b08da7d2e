"""Shared plumbing for product handlers."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Union

from sqlalchemy.ext.asyncio import AsyncSession

from ussd_engine.config import Settings
from ussd_engine.providers import Providers
from ussd_engine.ussd import response_builder as rb
from ussd_engine.ussd.payment_request import PaymentRequestIssuer
from ussd_engine.ussd.session_store import SessionStore
from ussd_engine.ussd.types import SessionState, UssdRequest, UssdResponse

# Returned by the category step for bundles; the dispatcher then hands the
# same turn to the bundle network-selection handler.
BUNDLE_SELECTION_REQUIRED = "BUNDLE_SELECTION_REQUIRED"

HandlerResult = Union[UssdResponse, str]

NETWORKS = {"1": "MTN", "2": "Telecel Ghana", "3": "AT"}
NETWORK_MENU = "Select Network:\n1. MTN\n2. Telecel Ghana\n3. AT"
BUY_FOR_MENU = "Buy for:\n1. My Number\n2. Other Number"
CONFIRM_OPTIONS = "1. Confirm\n2. Cancel"


@dataclass
class TurnContext:
    """Everything a handler may touch while answering one turn."""

    request: UssdRequest
    state: SessionState
    store: SessionStore
    db: AsyncSession
    providers: Providers
    settings: Settings

    @property
    def session_id(self) -> str:
        return self.request.session_id

    @property
    def text(self) -> str:
        return self.request.text

    async def save(self, **changes: Any) -> SessionState:
        self.state = await self.store.update(self.session_id, **changes)
        return self.state

    async def confirm(self, product_name: str) -> UssdResponse:
        """Final confirmation turn: "1" pays, anything else ends the session."""
        if self.text != "1":
            return rb.thank_you(self.session_id)
        issuer = PaymentRequestIssuer(self.db)
        return await issuer.issue(self.state, self.state.total_amount, product_name)


def money(amount: Decimal | None) -> str:
    return f"GHS {amount:.2f}" if amount is not None else "GHS 0.00"


def order_summary(title: str, lines: list[tuple[str, str | None]]) -> str:
    body = "\n".join(f"{label}: {value}" for label, value in lines if value is not None)
    return f"{title}\n{body}\n\n{CONFIRM_OPTIONS}"
