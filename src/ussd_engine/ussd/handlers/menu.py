"""Main menu (depth 2) and product category choice (depth 3)."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from ussd_engine.ussd import response_builder as rb
from ussd_engine.ussd.handlers.airtime import AirtimeHandler
from ussd_engine.ussd.handlers.base import (
    BUNDLE_SELECTION_REQUIRED,
    NETWORK_MENU,
    HandlerResult,
    TurnContext,
)
from ussd_engine.ussd.handlers.earnings import EarningsHandler
from ussd_engine.ussd.handlers.result_checker import VOUCHER_MENU, ResultCheckerHandler
from ussd_engine.ussd.handlers.tv_bills import TV_PROVIDER_MENU, TVBillsHandler
from ussd_engine.ussd.handlers.utility import UTILITY_MENU, UtilityHandler
from ussd_engine.ussd.types import ServiceType, UssdResponse

# main-menu digit -> (service type, label, category prompt)
MAIN_MENU_OPTIONS: dict[str, tuple[ServiceType, str, str]] = {
    "1": (ServiceType.AIRTIME_TOPUP, "Select Network", NETWORK_MENU),
    "2": (ServiceType.DATA_BUNDLE, "Select Network", NETWORK_MENU),
    "3": (ServiceType.PAY_BILLS, "Select TV Provider", TV_PROVIDER_MENU),
    "4": (ServiceType.UTILITY_SERVICE, "Select Utility Service", UTILITY_MENU),
    "5": (ServiceType.RESULT_CHECKER, "Result E-Checkers", VOUCHER_MENU),
}


class MenuHandler:
    def __init__(
        self,
        airtime: AirtimeHandler,
        tv_bills: TVBillsHandler,
        utility: UtilityHandler,
        result_checker: ResultCheckerHandler,
        earnings: EarningsHandler,
    ):
        self.earnings = earnings
        self._category_steps: dict[ServiceType, Callable[[TurnContext], Awaitable[UssdResponse]]] = {
            ServiceType.AIRTIME_TOPUP: airtime.select_network,
            ServiceType.PAY_BILLS: tv_bills.select_provider,
            ServiceType.UTILITY_SERVICE: utility.select_provider,
            ServiceType.RESULT_CHECKER: result_checker.select_voucher,
            ServiceType.EARNING: earnings.select_option,
        }

    async def select_service(self, ctx: TurnContext) -> UssdResponse:
        if ctx.text == "0":
            return rb.contact_us(ctx.session_id)
        if ctx.text == "6":
            await ctx.save(service_type=ServiceType.EARNING)
            return await self.earnings.show_menu(ctx)
        option = MAIN_MENU_OPTIONS.get(ctx.text)
        if option is None:
            return rb.error(ctx.session_id, "Please select a valid option (0-6)")
        service_type, label, prompt = option
        await ctx.save(service_type=service_type)
        return rb.number_input(ctx.session_id, label, prompt)

    async def select_category(self, ctx: TurnContext) -> HandlerResult:
        service_type = ctx.state.service_type
        if service_type == ServiceType.DATA_BUNDLE:
            return BUNDLE_SELECTION_REQUIRED
        step = self._category_steps.get(service_type) if service_type else None
        if step is None:
            return rb.error(ctx.session_id, "Invalid service type selected")
        return await step(ctx)
