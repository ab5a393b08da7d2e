"""Earnings menu: balance, withdrawal and terms."""

from __future__ import annotations

from ussd_engine.services.earnings_service import (
    EarningsPolicy,
    EarningsService,
    withdrawal_reference,
)
from ussd_engine.ussd import response_builder as rb
from ussd_engine.ussd.handlers.base import CONFIRM_OPTIONS, TurnContext, money
from ussd_engine.ussd.types import UssdResponse
from ussd_engine.ussd.validators import normalize_mobile

EARNINGS_MENU = "My Earnings:\n1. My Balance\n2. Withdraw\n3. Terms"
TERMS = (
    "Earn commission on every purchase you make.\n"
    "Withdrawals are paid to your mobile money wallet."
)


class EarningsHandler:
    """menu → balance | withdraw → confirm | terms."""

    def _service(self, ctx: TurnContext) -> EarningsService:
        return EarningsService(
            ctx.db,
            ctx.providers.send_money,
            EarningsPolicy(
                commission_rate=ctx.settings.commission_rate,
                min_withdrawal=ctx.settings.min_withdrawal_amount,
            ),
        )

    def _mobile(self, ctx: TurnContext) -> str:
        return normalize_mobile(ctx.request.mobile) or ctx.request.mobile

    async def show_menu(self, ctx: TurnContext) -> UssdResponse:
        return rb.number_input(ctx.session_id, "Earnings", EARNINGS_MENU)

    async def select_option(self, ctx: TurnContext) -> UssdResponse:
        service = self._service(ctx)
        if ctx.text == "1":
            summary = await service.get_user_earnings(self._mobile(ctx))
            await ctx.save(earning_flow="balance")
            return rb.release(
                ctx.session_id,
                "My Balance",
                f"Total Earned: {money(summary.total_earnings)}\n"
                f"Withdrawn: {money(summary.total_withdrawn)}\n"
                f"Pending: {money(summary.pending_withdrawals)}\n"
                f"Available: {money(summary.available_balance)}",
            )
        if ctx.text == "2":
            summary = await service.get_user_earnings(self._mobile(ctx))
            minimum = service.policy.min_withdrawal
            if summary.available_balance < minimum:
                return rb.release(
                    ctx.session_id,
                    "Withdraw",
                    f"Minimum withdrawal is {money(minimum)}. "
                    f"Your available balance is {money(summary.available_balance)}.",
                )
            await ctx.save(earning_flow="withdraw", withdrawal_amount=summary.available_balance)
            return rb.number_input(
                ctx.session_id,
                "Withdraw",
                f"Withdraw {money(summary.available_balance)} to {self._mobile(ctx)}?\n"
                f"{CONFIRM_OPTIONS}",
            )
        if ctx.text == "3":
            return rb.release(ctx.session_id, "Terms", TERMS)
        return rb.error(ctx.session_id, "Please select 1, 2, or 3")

    async def confirm_withdrawal(self, ctx: TurnContext) -> UssdResponse:
        if ctx.text != "1":
            return rb.thank_you(ctx.session_id)
        outcome = await self._service(ctx).process_withdrawal_request(
            self._mobile(ctx),
            ctx.state.withdrawal_amount or 0,
            withdrawal_reference(ctx.session_id),
        )
        label = "Withdrawal Submitted" if outcome.accepted else "Withdrawal Failed"
        return rb.release(ctx.session_id, label, outcome.message)
