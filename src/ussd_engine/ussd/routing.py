"""Declarative turn routing: (depth, service type, sub-flags) -> handler.

Adding a product line means adding rows here, not branches in the
dispatcher. Rows for the same depth and service type are tried in order;
the first whose predicate accepts the session state wins.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from ussd_engine.ussd.handlers import (
    AirtimeHandler,
    BundleHandler,
    EarningsHandler,
    HandlerResult,
    MenuHandler,
    ResultCheckerHandler,
    TurnContext,
    TVBillsHandler,
    UtilityHandler,
)
from ussd_engine.ussd.handlers.utility import ECG, GHANA_WATER
from ussd_engine.ussd.types import FlowType, ServiceType, SessionState

Handler = Callable[[TurnContext], Awaitable[HandlerResult]]
Predicate = Callable[[SessionState], bool]

def always(state: SessionState) -> bool:
    return True


def is_self(state: SessionState) -> bool:
    return state.flow == FlowType.SELF


def is_other(state: SessionState) -> bool:
    return state.flow == FlowType.OTHER


def subscription(kind: str) -> Predicate:
    return lambda state: state.subscription_type == kind


def utility_provider(name: str) -> Predicate:
    return lambda state: state.utility_provider == name


def awaiting_recipient(state: SessionState) -> bool:
    return is_other(state) and not state.bundle_groups


def bundle_chosen(state: SessionState) -> bool:
    return state.selected_bundle is not None


def browsing_packages(state: SessionState) -> bool:
    return state.category_mode


def withdrawing(state: SessionState) -> bool:
    return state.earning_flow == "withdraw"


@dataclass(frozen=True)
class Route:
    """One row of the routing table. service_type None matches any."""

    depth: int
    service_type: ServiceType | None
    handler: Handler
    when: Predicate = always
    name: str = ""
    # Matches this depth and every deeper one
    open_ended: bool = False


@dataclass
class RoutingTable:
    routes: list[Route] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._by_depth: dict[int, list[Route]] = defaultdict(list)
        self._open_ended: list[Route] = []
        for route in self.routes:
            if route.open_ended:
                self._open_ended.append(route)
            else:
                self._by_depth[route.depth].append(route)

    def resolve(self, depth: int, state: SessionState) -> Route | None:
        """Exact-depth rows first, then open-ended rows that start at or before depth."""
        deeper = [r for r in self._open_ended if r.depth <= depth]
        for route in self._by_depth.get(depth, []) + deeper:
            if route.service_type is not None and route.service_type != state.service_type:
                continue
            if route.when(state):
                return route
        return None


@dataclass
class HandlerSet:
    """Handler instances wired into the table."""

    airtime: AirtimeHandler = field(default_factory=AirtimeHandler)
    bundle: BundleHandler = field(default_factory=BundleHandler)
    tv_bills: TVBillsHandler = field(default_factory=TVBillsHandler)
    utility: UtilityHandler = field(default_factory=UtilityHandler)
    result_checker: ResultCheckerHandler = field(default_factory=ResultCheckerHandler)
    earnings: EarningsHandler = field(default_factory=EarningsHandler)
    menu: MenuHandler | None = None

    def __post_init__(self) -> None:
        if self.menu is None:
            self.menu = MenuHandler(
                self.airtime, self.tv_bills, self.utility, self.result_checker, self.earnings
            )


def _rows(
    service_type: ServiceType,
    rows: Iterable[tuple[int, Handler, Predicate]],
    open_ended: bool = False,
) -> list[Route]:
    return [
        Route(
            depth,
            service_type,
            handler,
            when,
            name=getattr(handler, "__name__", ""),
            open_ended=open_ended,
        )
        for depth, handler, when in rows
    ]


def build_routing_table(handlers: HandlerSet) -> RoutingTable:
    menu = handlers.menu
    assert menu is not None
    airtime = handlers.airtime
    bundle = handlers.bundle
    tv = handlers.tv_bills
    utility = handlers.utility
    voucher = handlers.result_checker
    earnings = handlers.earnings

    routes = [
        Route(2, None, menu.select_service, name="select_service"),
        Route(3, None, menu.select_category, name="select_category"),
    ]
    routes += _rows(ServiceType.AIRTIME_TOPUP, [
        (4, airtime.select_buyer, always),
        (5, airtime.enter_mobile, is_other),
        (5, airtime.enter_amount, is_self),
        (6, airtime.enter_amount, is_other),
        (6, airtime.confirm, is_self),
        (7, airtime.confirm, is_other),
    ])
    routes += _rows(ServiceType.DATA_BUNDLE, [(4, bundle.select_buyer, always)])
    # Paging back and forth has no depth limit
    routes += _rows(ServiceType.DATA_BUNDLE, [
        (5, bundle.enter_mobile, awaiting_recipient),
        (5, bundle.confirm, bundle_chosen),
        (5, bundle.select_package, browsing_packages),
        (5, bundle.select_bundle, always),
    ], open_ended=True)
    routes += _rows(ServiceType.PAY_BILLS, [
        (4, tv.enter_account, always),
        (5, tv.select_subscription, always),
        (6, tv.confirm, subscription("renew")),
        (6, tv.enter_amount, subscription("change")),
        (7, tv.confirm, subscription("change")),
    ])
    ecg, water = utility_provider(ECG), utility_provider(GHANA_WATER)
    routes += _rows(ServiceType.UTILITY_SERVICE, [
        (4, utility.select_meter_type, ecg),
        (5, utility.select_sub_option, ecg),
        (6, utility.enter_ecg_mobile, ecg),
        (7, utility.select_meter, ecg),
        (8, utility.enter_ecg_amount, ecg),
        (9, utility.confirm, ecg),
        (4, utility.enter_water_mobile, water),
        (5, utility.enter_water_meter, water),
        (6, utility.confirm, water),
    ])
    routes += _rows(ServiceType.RESULT_CHECKER, [
        (4, voucher.select_buyer, always),
        (5, voucher.enter_quantity, is_self),
        (5, voucher.enter_mobile, is_other),
        (6, voucher.confirm, is_self),
        (6, voucher.enter_name, is_other),
        (7, voucher.enter_quantity, is_other),
        (8, voucher.confirm, is_other),
    ])
    routes += _rows(ServiceType.EARNING, [(4, earnings.confirm_withdrawal, withdrawing)])
    return RoutingTable(routes)
