"""TV subscription turns."""

from __future__ import annotations

import logging
from decimal import Decimal

from ussd_engine.providers.base import ProviderError
from ussd_engine.ussd import response_builder as rb
from ussd_engine.ussd.handlers.base import TurnContext, money, order_summary
from ussd_engine.ussd.types import UssdResponse
from ussd_engine.ussd.validators import (
    AmountValidationError,
    is_valid_account_number,
    parse_amount,
)

logger = logging.getLogger(__name__)

TV_PROVIDERS = {"1": "DSTV", "2": "GoTV", "3": "StarTimes TV"}
TV_PROVIDER_MENU = "Select TV Provider:\n1. DSTV\n2. GoTV\n3. StarTimes TV"
MIN_TV_AMOUNT = Decimal("1.00")


class TVBillsHandler:
    """provider → account lookup → renew | change amount → confirm."""

    async def select_provider(self, ctx: TurnContext) -> UssdResponse:
        provider = TV_PROVIDERS.get(ctx.text)
        if provider is None:
            return rb.error(ctx.session_id, "Please select 1, 2, or 3")
        await ctx.save(tv_provider=provider)
        return rb.text_input(ctx.session_id, "Enter Account Number", "Enter TV account number:")

    async def enter_account(self, ctx: TurnContext) -> UssdResponse:
        account_number = ctx.text
        if not is_valid_account_number(account_number):
            return rb.error(ctx.session_id, "Please enter a valid account number")
        try:
            account = await ctx.providers.catalog.query_tv_account(
                ctx.state.tv_provider or "", account_number
            )
        except ProviderError as e:
            logger.warning("TV account lookup failed for %s: %s", account_number, e)
            return rb.error(ctx.session_id, "Unable to verify account. Please try again.")

        await ctx.save(
            account_number=account_number,
            account_name=account.name,
            amount_due=account.amount_due,
        )
        return rb.number_input(
            ctx.session_id,
            "Account Found",
            "Account Details:\n"
            f"Name: {account.name}\n"
            f"Account: {account_number}\n"
            f"Amount Due: {money(account.amount_due)}\n\n"
            "1. Renew current package\n2. Change amount",
        )

    async def select_subscription(self, ctx: TurnContext) -> UssdResponse:
        state = ctx.state
        if ctx.text == "1" and state.amount_due and state.amount_due >= MIN_TV_AMOUNT:
            state = await ctx.save(
                subscription_type="renew", amount=state.amount_due, total_amount=state.amount_due
            )
            return self._summary(ctx)
        if ctx.text in ("1", "2"):
            # Nothing due means there is no package to renew
            await ctx.save(subscription_type="change")
            return rb.decimal_input(
                ctx.session_id,
                "Enter Amount",
                f"Enter subscription amount (min {money(MIN_TV_AMOUNT)}):",
            )
        return rb.error(ctx.session_id, "Please select 1 or 2")

    async def enter_amount(self, ctx: TurnContext) -> UssdResponse:
        try:
            amount = parse_amount(ctx.text, minimum=MIN_TV_AMOUNT)
        except AmountValidationError as e:
            return rb.error(ctx.session_id, str(e))
        await ctx.save(amount=amount, total_amount=amount)
        return self._summary(ctx)

    async def confirm(self, ctx: TurnContext) -> UssdResponse:
        state = ctx.state
        return await ctx.confirm(f"{state.tv_provider} Subscription {state.account_number}")

    def _summary(self, ctx: TurnContext) -> UssdResponse:
        state = ctx.state
        return rb.display(
            ctx.session_id,
            "Order Summary",
            order_summary(
                "TV Subscription",
                [
                    ("Provider", state.tv_provider),
                    ("Account", state.account_number),
                    ("Name", state.account_name),
                    ("Amount", money(state.total_amount)),
                ],
            ),
        )
