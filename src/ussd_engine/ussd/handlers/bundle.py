"""Data bundle turns: network, buyer, package browsing with pagination."""

from __future__ import annotations

import logging
import math

from ussd_engine.providers.base import BundleOption
from ussd_engine.ussd import response_builder as rb
from ussd_engine.ussd.handlers.base import (
    BUY_FOR_MENU,
    NETWORKS,
    TurnContext,
    money,
    order_summary,
)
from ussd_engine.ussd.types import BundleChoice, BundleGroup, FlowType, UssdResponse
from ussd_engine.ussd.validators import normalize_mobile, parse_choice

logger = logging.getLogger(__name__)

BUNDLES_PER_PAGE = 4
BUNDLES_PER_GROUP = 8

NEXT_PAGE = "0"
PREVIOUS_PAGE = "00"
BACK_TO_PACKAGES = "99"

# (category, keywords matched against display and value), first match wins
CATEGORY_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("BigTime Data", ("bigtime",)),
    ("Fuse Bundles", ("fuse",)),
    ("Kokoo Bundles", ("kokoo",)),
    ("XXL Family Bundles", ("xxl",)),
    ("Night Bundles", ("bnight", "12am", "5am")),
    ("Hour Boost", ("hrboost", "1 hour")),
    ("No Expiry Bundles", ("no expiry",)),
    ("Time-Based Bundles", ("1 day", "3 days", "5 days", "15 days", "30 days")),
    ("Kokrokoo Bundles", ("kokrokoo",)),
    ("Video Bundles", ("video",)),
    ("Social Media Bundles", ("social",)),
]
DEFAULT_CATEGORY = "Data Bundles"


def bundle_category(option: BundleOption) -> str:
    haystack = f"{option.display} {option.value}".lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in haystack for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def group_bundles(options: list[BundleOption]) -> list[BundleGroup]:
    """Group by category in first-seen order, capping each group."""
    groups: dict[str, list[BundleChoice]] = {}
    for option in options:
        groups.setdefault(bundle_category(option), []).append(
            BundleChoice(display=option.display, value=option.value, amount=option.amount)
        )
    return [
        BundleGroup(name=name, bundles=bundles[:BUNDLES_PER_GROUP])
        for name, bundles in groups.items()
    ]


class BundleHandler:
    """network → buyer → [recipient] → package → bundle page → confirm."""

    async def select_network(self, ctx: TurnContext) -> UssdResponse:
        network = NETWORKS.get(ctx.text)
        if network is None:
            return rb.error(ctx.session_id, "Please select 1, 2, or 3")
        own = normalize_mobile(ctx.request.mobile) or ctx.request.mobile
        await ctx.save(network=network, mobile=own)
        return rb.number_input(ctx.session_id, "Buy For", BUY_FOR_MENU)

    async def select_buyer(self, ctx: TurnContext) -> UssdResponse:
        if ctx.text == "1":
            own = normalize_mobile(ctx.request.mobile) or ctx.request.mobile
            await ctx.save(flow=FlowType.SELF, mobile=own)
            return await self._show_packages(ctx)
        if ctx.text == "2":
            await ctx.save(flow=FlowType.OTHER)
            return rb.phone_input(
                ctx.session_id, "Enter Mobile Number", "Enter recipient's mobile number:"
            )
        return rb.error(ctx.session_id, "Please select 1 for My Number or 2 for Other Number")

    async def enter_mobile(self, ctx: TurnContext) -> UssdResponse:
        mobile = normalize_mobile(ctx.text)
        if mobile is None:
            return rb.error(ctx.session_id, "Must be a valid mobile number")
        await ctx.save(mobile=mobile)
        return await self._show_packages(ctx)

    async def select_package(self, ctx: TurnContext) -> UssdResponse:
        index = parse_choice(ctx.text, len(ctx.state.bundle_groups))
        if index is None:
            return rb.error(ctx.session_id, "Please select a valid category")
        await ctx.save(current_group_index=index, current_page=0, category_mode=False)
        return self._bundle_page(ctx)

    async def select_bundle(self, ctx: TurnContext) -> UssdResponse:
        state = ctx.state
        if not 0 <= state.current_group_index < len(state.bundle_groups):
            return rb.error(ctx.session_id, "No bundles available in this category")
        bundles = state.bundle_groups[state.current_group_index].bundles
        start = state.current_page * BUNDLES_PER_PAGE
        end = start + BUNDLES_PER_PAGE

        # Control tokens take precedence over numeric selection
        if ctx.text == NEXT_PAGE:
            if end >= len(bundles):
                return rb.error(ctx.session_id, "No more bundles to show")
            await ctx.save(current_page=state.current_page + 1)
            return self._bundle_page(ctx)
        if ctx.text == PREVIOUS_PAGE:
            if state.current_page == 0:
                return rb.error(ctx.session_id, "Already on first page")
            await ctx.save(current_page=state.current_page - 1)
            return self._bundle_page(ctx)
        if ctx.text == BACK_TO_PACKAGES:
            await ctx.save(current_group_index=0, current_page=0, category_mode=True)
            return self._packages_menu(ctx)

        page = bundles[start:end]
        index = parse_choice(ctx.text, len(page))
        if index is None:
            return rb.error(ctx.session_id, "Please select a valid bundle option")
        chosen = page[index]
        state = await ctx.save(
            selected_bundle=chosen,
            bundle_value=chosen.value,
            amount=chosen.amount,
            total_amount=chosen.amount,
        )
        suffix = "(Self)" if state.flow == FlowType.SELF else "(Other)"
        return rb.display(
            ctx.session_id,
            "Order Summary",
            order_summary(
                "Bundle Package:",
                [
                    ("Network", state.network),
                    ("Bundle", chosen.display),
                    ("Mobile", f"{state.mobile} {suffix}"),
                    ("Amount", money(chosen.amount)),
                ],
            ),
        )

    async def confirm(self, ctx: TurnContext) -> UssdResponse:
        state = ctx.state
        bundle = state.selected_bundle
        name = bundle.display if bundle else state.bundle_value
        return await ctx.confirm(f"{state.network} {name}")

    async def _show_packages(self, ctx: TurnContext) -> UssdResponse:
        state = ctx.state
        if not state.network:
            return rb.error(ctx.session_id, "Network not selected. Please try again.")
        options = await ctx.providers.catalog.query_bundles(state.network, state.mobile or "")
        if not options:
            logger.info("No bundles for network %s", state.network)
            return rb.error(
                ctx.session_id, "No bundles available for this network. Please try another network."
            )
        await ctx.save(
            bundle_groups=group_bundles(options),
            current_group_index=0,
            current_page=0,
            category_mode=True,
        )
        return self._packages_menu(ctx)

    def _packages_menu(self, ctx: TurnContext) -> UssdResponse:
        lines = [f"{i}. {group.name}" for i, group in enumerate(ctx.state.bundle_groups, start=1)]
        return rb.number_input(
            ctx.session_id, "Bundle Packages", "Select Bundle Package:\n" + "\n".join(lines)
        )

    def _bundle_page(self, ctx: TurnContext) -> UssdResponse:
        state = ctx.state
        group = state.bundle_groups[state.current_group_index]
        start = state.current_page * BUNDLES_PER_PAGE
        end = start + BUNDLES_PER_PAGE
        total_pages = max(1, math.ceil(len(group.bundles) / BUNDLES_PER_PAGE))

        lines = [
            f"{i}. {bundle.display} - {money(bundle.amount)}"
            for i, bundle in enumerate(group.bundles[start:end], start=1)
        ]
        controls = []
        if state.current_page > 0:
            controls.append(f"{PREVIOUS_PAGE}. Back")
        if end < len(group.bundles):
            controls.append(f"{NEXT_PAGE}. Next")
        controls.append(f"{BACK_TO_PACKAGES}. Back to Packages")
        return rb.number_input(
            ctx.session_id,
            f"Page {state.current_page + 1} of {total_pages}",
            f"{group.name}:\n" + "\n".join(lines) + "\n\n" + "\n".join(controls),
        )
