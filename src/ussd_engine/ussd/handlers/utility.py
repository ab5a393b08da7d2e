"""Utility bill turns: ECG prepaid meters and Ghana Water."""

from __future__ import annotations

import logging
from decimal import Decimal

from ussd_engine.providers.base import ProviderError
from ussd_engine.ussd import response_builder as rb
from ussd_engine.ussd.handlers.base import TurnContext, money, order_summary
from ussd_engine.ussd.types import MeterChoice, UssdResponse
from ussd_engine.ussd.validators import (
    AmountValidationError,
    is_valid_account_number,
    normalize_mobile,
    parse_amount,
    parse_choice,
)

logger = logging.getLogger(__name__)

ECG = "ECG Prepaid"
GHANA_WATER = "Ghana Water"
UTILITY_PROVIDERS = {"1": ECG, "2": GHANA_WATER}
UTILITY_MENU = "Select Utility Service:\n1. ECG Prepaid\n2. Ghana Water"
METER_TYPES = {"1": "prepaid", "2": "postpaid"}
SUB_OPTIONS = {"1": "topup", "2": "add_meter"}
MIN_UTILITY_AMOUNT = Decimal("1.00")


class UtilityHandler:
    """ECG: meter type → option → mobile → meter → amount → confirm.
    Ghana Water: mobile → meter number → bill → confirm.
    """

    async def select_provider(self, ctx: TurnContext) -> UssdResponse:
        provider = UTILITY_PROVIDERS.get(ctx.text)
        if provider is None:
            return rb.error(ctx.session_id, "Please select 1 or 2")
        await ctx.save(utility_provider=provider)
        if provider == ECG:
            return rb.number_input(
                ctx.session_id, "Select Meter Type", "Select Meter Type:\n1. Prepaid\n2. Postpaid"
            )
        return rb.phone_input(
            ctx.session_id,
            "Enter Mobile Number",
            "Enter mobile number linked to Ghana Water meter:",
        )

    # ECG

    async def select_meter_type(self, ctx: TurnContext) -> UssdResponse:
        meter_type = METER_TYPES.get(ctx.text)
        if meter_type is None:
            return rb.error(ctx.session_id, "Please select 1 or 2")
        await ctx.save(meter_type=meter_type)
        return rb.number_input(
            ctx.session_id, "ECG Options", "1. Top up meter\n2. Add new meter"
        )

    async def select_sub_option(self, ctx: TurnContext) -> UssdResponse:
        option = SUB_OPTIONS.get(ctx.text)
        if option is None:
            return rb.error(ctx.session_id, "Please select 1 or 2")
        await ctx.save(utility_sub_option=option)
        if option != "topup":
            return rb.coming_soon(ctx.session_id, "Adding a new meter")
        return rb.phone_input(
            ctx.session_id, "Enter Mobile Number", "Enter mobile number linked to meter:"
        )

    async def enter_ecg_mobile(self, ctx: TurnContext) -> UssdResponse:
        mobile = normalize_mobile(ctx.text)
        if mobile is None:
            return rb.error(ctx.session_id, "Invalid mobile number")
        try:
            meters = await ctx.providers.catalog.query_ecg_meters(mobile)
        except ProviderError as e:
            logger.warning("ECG meter lookup failed for %s: %s", mobile, e)
            return rb.error(ctx.session_id, "Unable to fetch meters. Please try again.")
        if not meters:
            return rb.error(ctx.session_id, "No meters found for this mobile number")

        options = [MeterChoice(meter_number=m.meter_number, name=m.name) for m in meters]
        await ctx.save(mobile=mobile, meter_options=options)
        lines = [
            f"{i}. {m.meter_number}" + (f" - {m.name}" if m.name else "")
            for i, m in enumerate(options, start=1)
        ]
        return rb.number_input(ctx.session_id, "Select Meter", "Select Meter:\n" + "\n".join(lines))

    async def select_meter(self, ctx: TurnContext) -> UssdResponse:
        index = parse_choice(ctx.text, len(ctx.state.meter_options))
        if index is None:
            return rb.error(ctx.session_id, "Please select a valid meter")
        meter = ctx.state.meter_options[index]
        await ctx.save(selected_meter=meter, meter_number=meter.meter_number)
        return rb.decimal_input(
            ctx.session_id, "Enter Amount", f"Enter amount (min {money(MIN_UTILITY_AMOUNT)}):"
        )

    async def enter_ecg_amount(self, ctx: TurnContext) -> UssdResponse:
        try:
            amount = parse_amount(ctx.text, minimum=MIN_UTILITY_AMOUNT)
        except AmountValidationError as e:
            return rb.error(ctx.session_id, str(e))
        state = await ctx.save(amount=amount, total_amount=amount)
        return rb.display(
            ctx.session_id,
            "Order Summary",
            order_summary(
                "ECG Prepaid Top-Up",
                [
                    ("Meter", state.meter_number),
                    ("Mobile", state.mobile),
                    ("Amount", money(amount)),
                ],
            ),
        )

    # Ghana Water

    async def enter_water_mobile(self, ctx: TurnContext) -> UssdResponse:
        mobile = normalize_mobile(ctx.text)
        if mobile is None:
            return rb.error(ctx.session_id, "Invalid mobile number")
        await ctx.save(mobile=mobile)
        return rb.text_input(ctx.session_id, "Enter Meter Number", "Enter Ghana Water meter number:")

    async def enter_water_meter(self, ctx: TurnContext) -> UssdResponse:
        meter_number = ctx.text
        if not is_valid_account_number(meter_number):
            return rb.error(ctx.session_id, "Please enter a valid meter number")
        try:
            account = await ctx.providers.catalog.query_water_account(
                meter_number, ctx.state.mobile or ""
            )
        except ProviderError as e:
            logger.warning("Ghana Water lookup failed for %s: %s", meter_number, e)
            return rb.error(ctx.session_id, "Unable to verify meter. Please try again.")
        if account.amount_due <= 0:
            return rb.release(ctx.session_id, "No Bill", "You have no outstanding bill.")

        state = await ctx.save(
            meter_number=meter_number,
            account_name=account.name,
            amount_due=account.amount_due,
            provider_session_id=account.session_id,
            amount=account.amount_due,
            total_amount=account.amount_due,
        )
        return rb.display(
            ctx.session_id,
            "Bill Details",
            order_summary(
                "Ghana Water Bill",
                [
                    ("Name", state.account_name),
                    ("Meter", meter_number),
                    ("Amount Due", money(account.amount_due)),
                ],
            ),
        )

    async def confirm(self, ctx: TurnContext) -> UssdResponse:
        state = ctx.state
        return await ctx.confirm(f"{state.utility_provider} {state.meter_number}")
