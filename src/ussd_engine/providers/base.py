"""Base protocols and types for external collaborators.

All provider adapters (Hubtel HTTP, in-memory stubs) implement these
protocols. Services depend on the protocols only.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol


class ProviderError(Exception):
    """A collaborator call failed (network, timeout, non-2xx, bad payload)."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class StatusQueryError(ValueError):
    """Status query rejected locally before any outbound call."""


@dataclass(frozen=True)
class ProviderResponse:
    """Generic response envelope returned by commission and send-money calls."""

    response_code: str
    message: str = ""
    transaction_id: str | None = None
    external_transaction_id: str | None = None
    is_fulfilled: bool | None = None
    commission: Decimal | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusCheckResult:
    """Result of a remote transaction status query."""

    response_code: str
    message: str = ""
    status: str | None = None  # Paid / Unpaid
    transaction_id: str | None = None
    external_transaction_id: str | None = None
    payment_method: str | None = None
    amount: Decimal | None = None
    charges: Decimal | None = None
    amount_after_charges: Decimal | None = None
    is_fulfilled: bool | None = None
    date: datetime.datetime | None = None


@dataclass(frozen=True)
class FulfillmentRequest:
    """Commission service request built once after a successful payment."""

    client_reference: str
    amount: Decimal
    callback_url: str
    service_type: str  # airtime / bundle / tv_bill / utility
    destination: str
    network: str | None = None
    tv_provider: str | None = None
    utility_provider: str | None = None
    extra_data: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Wire shape (camelCase, optional keys omitted)."""
        payload: dict[str, Any] = {
            "clientReference": self.client_reference,
            "amount": float(self.amount),
            "callbackUrl": self.callback_url,
            "serviceType": self.service_type,
            "destination": self.destination,
            "extraData": dict(self.extra_data),
        }
        if self.network:
            payload["network"] = self.network
        if self.tv_provider:
            payload["tvProvider"] = self.tv_provider
        if self.utility_provider:
            payload["utilityProvider"] = self.utility_provider
        return payload


@dataclass(frozen=True)
class FinalStatus:
    """Acknowledgment sent back to the USSD gateway after a payment callback."""

    session_id: str
    order_id: str | None
    service_status: str  # success / failed
    meta_data: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "orderId": self.order_id,
            "metaData": self.meta_data,
            "serviceStatus": self.service_status,
        }


@dataclass(frozen=True)
class BundleOption:
    """A purchasable bundle returned by the catalog."""

    display: str
    value: str
    amount: Decimal


@dataclass(frozen=True)
class TVAccount:
    """TV subscription account lookup."""

    account_number: str
    name: str
    amount_due: Decimal


@dataclass(frozen=True)
class MeterAccount:
    """ECG meter linked to a mobile number."""

    meter_number: str
    name: str = ""


@dataclass(frozen=True)
class WaterAccount:
    """Ghana Water bill lookup."""

    meter_number: str
    name: str
    amount_due: Decimal
    session_id: str | None = None


class GatewayClient(Protocol):
    """USSD gateway (final-status acknowledgment)."""

    async def send_final_status(self, ack: FinalStatus) -> None:
        ...


class StatusCheckProvider(Protocol):
    """Remote transaction status lookup."""

    async def check_status(
        self,
        *,
        client_reference: str | None = None,
        provider_transaction_id: str | None = None,
        network_transaction_id: str | None = None,
    ) -> StatusCheckResult:
        """Query by any identifier. At least one must be given."""
        ...


class CommissionProvider(Protocol):
    """Delivers the purchased product through the revenue-share provider."""

    async def fulfill(self, request: FulfillmentRequest) -> ProviderResponse:
        ...


class SendMoneyProvider(Protocol):
    """Pays out withdrawals to a mobile-money wallet."""

    async def send_money(
        self,
        *,
        mobile: str,
        amount: Decimal,
        client_reference: str,
        description: str,
    ) -> ProviderResponse:
        ...


class CatalogProvider(Protocol):
    """Product lookups needed while the conversation is running."""

    async def query_bundles(self, network: str, destination: str) -> list[BundleOption]:
        ...

    async def query_tv_account(self, tv_provider: str, account_number: str) -> TVAccount:
        ...

    async def query_ecg_meters(self, mobile: str) -> list[MeterAccount]:
        ...

    async def query_water_account(self, meter_number: str, mobile: str) -> WaterAccount:
        ...


class VoucherNotifier(Protocol):
    """Delivers purchased vouchers (SMS)."""

    async def send_vouchers(
        self, mobile: str, voucher_type: str, vouchers: list[tuple[str, str]]
    ) -> None:
        ...


def require_identifier(
    client_reference: str | None,
    provider_transaction_id: str | None,
    network_transaction_id: str | None,
) -> None:
    """Reject status queries that carry no identifier."""
    if not (client_reference or provider_transaction_id or network_transaction_id):
        raise StatusQueryError(
            "At least one of client_reference, provider_transaction_id "
            "or network_transaction_id is required"
        )
