"""In-memory stub collaborators for local development and testing.

Every call is recorded so tests can assert on what was (or was not) sent.
Replace with the Hubtel adapters for production.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from ussd_engine.providers.base import (
    BundleOption,
    FinalStatus,
    FulfillmentRequest,
    MeterAccount,
    ProviderError,
    ProviderResponse,
    StatusCheckResult,
    TVAccount,
    WaterAccount,
    require_identifier,
)


class StubGatewayClient:
    """Records final-status acknowledgments."""

    provider_name = "gateway_stub"

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.acks: list[FinalStatus] = []

    async def send_final_status(self, ack: FinalStatus) -> None:
        self.acks.append(ack)
        if self.fail:
            raise ProviderError(self.provider_name, "gateway unavailable")


class StubStatusCheckProvider:
    """Answers status queries from a preset map of client reference -> code."""

    provider_name = "status_stub"

    def __init__(self, default_code: str = "0001"):
        self.default_code = default_code
        self.codes: dict[str, str] = {}
        self.errors: set[str] = set()
        self.queries: list[dict[str, str | None]] = []

    def set_code(self, client_reference: str, response_code: str) -> None:
        self.codes[client_reference] = response_code

    async def check_status(
        self,
        *,
        client_reference: str | None = None,
        provider_transaction_id: str | None = None,
        network_transaction_id: str | None = None,
    ) -> StatusCheckResult:
        require_identifier(client_reference, provider_transaction_id, network_transaction_id)
        self.queries.append({
            "client_reference": client_reference,
            "provider_transaction_id": provider_transaction_id,
            "network_transaction_id": network_transaction_id,
        })
        key = client_reference or provider_transaction_id or network_transaction_id or ""
        if key in self.errors:
            raise ProviderError(self.provider_name, f"timeout querying {key}")
        code = self.codes.get(key, self.default_code)
        return StatusCheckResult(
            response_code=code,
            status="Paid" if code == "0000" else "Unpaid",
            transaction_id=f"STUB-{key}",
            is_fulfilled=code == "0000",
        )


class StubCommissionProvider:
    """Accepts every fulfillment unless told to fail."""

    provider_name = "commission_stub"

    def __init__(self, response_code: str = "0000", raise_error: bool = False):
        self.response_code = response_code
        self.raise_error = raise_error
        self.requests: list[FulfillmentRequest] = []

    async def fulfill(self, request: FulfillmentRequest) -> ProviderResponse:
        self.requests.append(request)
        if self.raise_error:
            raise ProviderError(self.provider_name, "connection refused")
        return ProviderResponse(
            response_code=self.response_code,
            message="Transaction pending" if self.response_code == "0001" else "Success",
            transaction_id=uuid.uuid4().hex,
            is_fulfilled=self.response_code == "0000",
        )


class StubSendMoneyProvider:
    """Send-money stub. Defaults to the provider's usual 0001 (accepted, pending)."""

    provider_name = "send_money_stub"

    def __init__(self, response_code: str = "0001", raise_error: bool = False):
        self.response_code = response_code
        self.raise_error = raise_error
        self.calls: list[dict[str, Any]] = []

    async def send_money(
        self,
        *,
        mobile: str,
        amount: Decimal,
        client_reference: str,
        description: str,
    ) -> ProviderResponse:
        self.calls.append({
            "mobile": mobile,
            "amount": amount,
            "client_reference": client_reference,
            "description": description,
        })
        if self.raise_error:
            raise ProviderError(self.provider_name, "timeout")
        return ProviderResponse(
            response_code=self.response_code,
            message="Request accepted",
            transaction_id=f"SM-{client_reference}",
        )


@dataclass
class StubCatalogProvider:
    """Fixed product catalog."""

    bundles: dict[str, list[BundleOption]] = field(default_factory=dict)
    tv_accounts: dict[str, TVAccount] = field(default_factory=dict)
    meters: dict[str, list[MeterAccount]] = field(default_factory=dict)
    water_accounts: dict[str, WaterAccount] = field(default_factory=dict)

    provider_name = "catalog_stub"

    async def query_bundles(self, network: str, destination: str) -> list[BundleOption]:
        return list(self.bundles.get(network, []))

    async def query_tv_account(self, tv_provider: str, account_number: str) -> TVAccount:
        account = self.tv_accounts.get(account_number)
        if account is None:
            raise ProviderError(self.provider_name, f"unknown account {account_number}")
        return account

    async def query_ecg_meters(self, mobile: str) -> list[MeterAccount]:
        return list(self.meters.get(mobile, []))

    async def query_water_account(self, meter_number: str, mobile: str) -> WaterAccount:
        account = self.water_accounts.get(meter_number)
        if account is None:
            raise ProviderError(self.provider_name, f"unknown meter {meter_number}")
        return account


class StubVoucherNotifier:
    """Records voucher deliveries instead of sending SMS."""

    provider_name = "sms_stub"

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, list[tuple[str, str]]]] = []

    async def send_vouchers(
        self, mobile: str, voucher_type: str, vouchers: list[tuple[str, str]]
    ) -> None:
        self.sent.append((mobile, voucher_type, list(vouchers)))


def default_catalog() -> StubCatalogProvider:
    """Small demo catalog used when running with PROVIDER_MODE=stub."""
    return StubCatalogProvider(
        bundles={
            network: [
                BundleOption("1GB 30 days", f"{network.lower()}_1gb", Decimal("10.00")),
                BundleOption("2GB 30 days", f"{network.lower()}_2gb", Decimal("18.00")),
                BundleOption("Kokrokoo 500MB", f"{network.lower()}_kokrokoo", Decimal("3.00")),
                BundleOption("Social Media 1GB", f"{network.lower()}_social", Decimal("5.00")),
            ]
            for network in ("MTN", "Telecel Ghana", "AT")
        },
        tv_accounts={
            "1234567890": TVAccount("1234567890", "Demo Subscriber", Decimal("120.00")),
        },
        meters={
            "233240000000": [MeterAccount("P1234567", "Demo Home")],
        },
        water_accounts={
            "W1234567": WaterAccount("W1234567", "Demo Household", Decimal("45.50"), "gw-demo"),
        },
    )
