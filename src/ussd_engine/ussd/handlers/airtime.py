"""Airtime top-up turns."""

from __future__ import annotations

from decimal import Decimal

from ussd_engine.ussd import response_builder as rb
from ussd_engine.ussd.handlers.base import (
    BUY_FOR_MENU,
    NETWORKS,
    TurnContext,
    money,
    order_summary,
)
from ussd_engine.ussd.types import FlowType, UssdResponse
from ussd_engine.ussd.validators import AmountValidationError, normalize_mobile, parse_amount

MIN_AIRTIME = Decimal("0.50")


class AirtimeHandler:
    """network → buyer → [recipient] → amount → confirm."""

    async def select_network(self, ctx: TurnContext) -> UssdResponse:
        network = NETWORKS.get(ctx.text)
        if network is None:
            return rb.error(ctx.session_id, "Please select 1, 2, or 3")
        await ctx.save(network=network)
        return rb.number_input(ctx.session_id, "Buy For", BUY_FOR_MENU)

    async def select_buyer(self, ctx: TurnContext) -> UssdResponse:
        if ctx.text == "1":
            own = normalize_mobile(ctx.request.mobile) or ctx.request.mobile
            await ctx.save(flow=FlowType.SELF, mobile=own)
            return self._amount_prompt(ctx)
        if ctx.text == "2":
            await ctx.save(flow=FlowType.OTHER)
            return rb.phone_input(
                ctx.session_id, "Enter Mobile Number", "Enter recipient's mobile number:"
            )
        return rb.error(ctx.session_id, "Please select 1 or 2")

    async def enter_mobile(self, ctx: TurnContext) -> UssdResponse:
        mobile = normalize_mobile(ctx.text)
        if mobile is None:
            return rb.error(ctx.session_id, "Invalid mobile number")
        await ctx.save(mobile=mobile)
        return self._amount_prompt(ctx)

    async def enter_amount(self, ctx: TurnContext) -> UssdResponse:
        try:
            amount = parse_amount(ctx.text, minimum=MIN_AIRTIME)
        except AmountValidationError as e:
            return rb.error(ctx.session_id, str(e))
        state = await ctx.save(amount=amount, total_amount=amount)
        return rb.display(
            ctx.session_id,
            "Order Summary",
            order_summary(
                "Airtime Top-Up",
                [
                    ("Network", state.network),
                    ("Mobile", state.mobile),
                    ("Amount", money(amount)),
                ],
            ),
        )

    async def confirm(self, ctx: TurnContext) -> UssdResponse:
        state = ctx.state
        return await ctx.confirm(f"{state.network} Airtime {money(state.total_amount)}")

    def _amount_prompt(self, ctx: TurnContext) -> UssdResponse:
        return rb.decimal_input(
            ctx.session_id, "Enter Amount", f"Enter amount (min {money(MIN_AIRTIME)}):"
        )
