"""Exam result checker voucher turns."""

from __future__ import annotations

from decimal import Decimal

from ussd_engine.services.voucher_service import VoucherService
from ussd_engine.ussd import response_builder as rb
from ussd_engine.ussd.handlers.base import TurnContext, money, order_summary
from ussd_engine.ussd.types import FlowType, UssdResponse
from ussd_engine.ussd.validators import is_valid_name, normalize_mobile, parse_quantity

VOUCHER_TYPES = {
    "1": "BECE Checker Voucher",
    "2": "NovDec Checker",
    "3": "School Placement Checker",
}
VOUCHER_MENU = "Select Result Checker:\n1. BECE\n2. WASSCE/NovDec\n3. School Placement Checker"
VOUCHER_PRICES = {
    "BECE Checker Voucher": Decimal("20"),
    "NovDec Checker": Decimal("21"),
    "School Placement Checker": Decimal("21"),
}
MAX_VOUCHERS = 100


class ResultCheckerHandler:
    """voucher type → buyer → [mobile → name] → quantity → confirm."""

    async def select_voucher(self, ctx: TurnContext) -> UssdResponse:
        service = VOUCHER_TYPES.get(ctx.text)
        if service is None:
            return rb.error(ctx.session_id, "Please select 1, 2, or 3")
        await ctx.save(service=service)
        return rb.number_input(ctx.session_id, "Buying For", "Buy for:\n1. Buy for me\n2. For other")

    async def select_buyer(self, ctx: TurnContext) -> UssdResponse:
        if ctx.text == "1":
            own = normalize_mobile(ctx.request.mobile) or ctx.request.mobile
            await ctx.save(flow=FlowType.SELF, mobile=own)
            return self._quantity_prompt(ctx)
        if ctx.text == "2":
            await ctx.save(flow=FlowType.OTHER)
            return rb.phone_input(
                ctx.session_id, "Enter Mobile Number", "Enter other mobile number (e.g., 0550982043):"
            )
        return rb.error(ctx.session_id, "Please select 1 or 2")

    async def enter_mobile(self, ctx: TurnContext) -> UssdResponse:
        mobile = normalize_mobile(ctx.text)
        if mobile is None:
            return rb.error(ctx.session_id, "Invalid mobile number")
        await ctx.save(mobile=mobile)
        return rb.text_input(ctx.session_id, "Enter Name", "Enter recipient's name:")

    async def enter_name(self, ctx: TurnContext) -> UssdResponse:
        if not is_valid_name(ctx.text):
            return rb.error(ctx.session_id, "Please enter a valid name (minimum 2 characters)")
        await ctx.save(name=ctx.text)
        return self._quantity_prompt(ctx)

    async def enter_quantity(self, ctx: TurnContext) -> UssdResponse:
        quantity = parse_quantity(ctx.text, maximum=MAX_VOUCHERS)
        if quantity is None:
            return rb.error(ctx.session_id, f"Please enter a valid quantity (1-{MAX_VOUCHERS})")
        service = ctx.state.service or ""
        available = await VoucherService(ctx.db).available_count(service)
        if available < quantity:
            return rb.release(
                ctx.session_id,
                "Out of Stock",
                f"Only {available} {service} voucher(s) available.",
            )
        price = VOUCHER_PRICES[service]
        total = price * quantity
        state = await ctx.save(quantity=quantity, amount=price, total_amount=total)
        return rb.display(
            ctx.session_id,
            "Order Details",
            order_summary(
                service,
                [
                    ("Recipient", state.name),
                    ("Mobile", state.mobile),
                    ("Quantity", str(quantity)),
                    ("Unit Price", money(price)),
                    ("Total", money(total)),
                ],
            ),
        )

    async def confirm(self, ctx: TurnContext) -> UssdResponse:
        state = ctx.state
        return await ctx.confirm(f"{state.service} x{state.quantity}")

    def _quantity_prompt(self, ctx: TurnContext) -> UssdResponse:
        return rb.number_input(
            ctx.session_id, "Enter Quantity", "How many vouchers do you want to buy?"
        )
