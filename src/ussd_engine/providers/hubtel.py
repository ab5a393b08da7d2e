"""Hubtel HTTP adapters.

Each adapter wraps an ``httpx.AsyncClient`` with a bounded timeout and
turns transport or HTTP failures into ``ProviderError``.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from ussd_engine.config import Settings
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

logger = logging.getLogger(__name__)


# Commission service ids per product
AIRTIME_SERVICES = {
    "MTN": "fdd76c884e614b1c8f669a3207b09a98",
    "Telecel Ghana": "f4be83ad74c742e185224fdae1304800",
    "AT": "dae2142eb5a14c298eace60240c09e4b",
}
BUNDLE_SERVICES = {
    "MTN": "b230733cd56b4a0fad820e39f66bc27c",
    "Telecel Ghana": "fa27127ba039455da04a2ac8a1613e00",
    "AT": "06abd92da459428496967612463575ca",
}
TV_SERVICES = {
    "DSTV": "297a96656b5846ad8b00d5d41b256ea7",
    "GoTV": "e6ceac7f3880435cb30b048e9617eb41",
    "StarTimes TV": "6598652d34ea4112949c93c079c501ce",
}
UTILITY_SERVICES = {
    "ECG Prepaid": "e6d6bac062b5499cb1ece1ac3d742a84",
    "Ghana Water": "6c1e8a82d2e84feeb8bfd6be2790d71d",
}


def _decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class HubtelHttp:
    """Shared HTTP plumbing: basic auth, timeout, error mapping.

    Credentials go on every request, so an injected client is authenticated
    the same way as the default one.
    """

    provider_name = "hubtel"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self.auth = httpx.BasicAuth(settings.hubtel_client_id, settings.hubtel_client_secret)
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.provider_timeout_seconds),
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method, url, params=params, json=json, auth=self.auth
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                self.provider_name,
                f"{method} {url} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(self.provider_name, f"{method} {url} failed: {e}") from e

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(self.provider_name, f"invalid JSON from {url}") from e
        return body if isinstance(body, dict) else {"Data": body}

    def commission_url(self, service_id: str) -> str:
        return (
            f"{self.settings.hubtel_commission_base_url}/"
            f"{self.settings.hubtel_prepaid_deposit_id}/{service_id}"
        )


class HubtelGatewayClient(HubtelHttp):
    """Posts the final service status back to the USSD gateway."""

    async def send_final_status(self, ack: FinalStatus) -> None:
        await self.request("POST", self.settings.gateway_callback_url, json=ack.to_payload())


class HubtelStatusCheckProvider(HubtelHttp):
    """Transaction status check API."""

    async def check_status(
        self,
        *,
        client_reference: str | None = None,
        provider_transaction_id: str | None = None,
        network_transaction_id: str | None = None,
    ) -> StatusCheckResult:
        require_identifier(client_reference, provider_transaction_id, network_transaction_id)
        params: dict[str, Any] = {}
        if client_reference:
            params["clientReference"] = client_reference
        if provider_transaction_id:
            params["hubtelTransactionId"] = provider_transaction_id
        if network_transaction_id:
            params["networkTransactionId"] = network_transaction_id

        url = (
            f"{self.settings.hubtel_status_base_url}/transactions/"
            f"{self.settings.hubtel_pos_sales_id}/status"
        )
        body = await self.request("GET", url, params=params)
        data = body.get("data") or body.get("Data") or {}
        return StatusCheckResult(
            response_code=str(body.get("responseCode") or body.get("ResponseCode") or ""),
            message=str(body.get("message") or body.get("Message") or ""),
            status=data.get("status"),
            transaction_id=data.get("transactionId"),
            external_transaction_id=data.get("externalTransactionId"),
            payment_method=data.get("paymentMethod"),
            amount=_decimal(data.get("amount")),
            charges=_decimal(data.get("charges")),
            amount_after_charges=_decimal(data.get("amountAfterCharges")),
            is_fulfilled=data.get("isFulfilled"),
        )


class HubtelCommissionProvider(HubtelHttp):
    """Commission services: airtime, bundles, TV and utility payments."""

    def _service_id(self, request: FulfillmentRequest) -> str:
        table: dict[str, str]
        key: str | None
        if request.service_type == "airtime":
            table, key = AIRTIME_SERVICES, request.network
        elif request.service_type == "bundle":
            table, key = BUNDLE_SERVICES, request.network
        elif request.service_type == "tv_bill":
            table, key = TV_SERVICES, request.tv_provider
        elif request.service_type == "utility":
            table, key = UTILITY_SERVICES, request.utility_provider
        else:
            raise ValueError(f"Unknown commission service type: {request.service_type}")
        if key not in table:
            raise ValueError(f"No commission service for {request.service_type}/{key}")
        return table[key]

    async def fulfill(self, request: FulfillmentRequest) -> ProviderResponse:
        payload: dict[str, Any] = {
            "Destination": request.destination,
            "Amount": float(request.amount),
            "CallbackUrl": request.callback_url,
            "ClientReference": request.client_reference,
        }
        extra = request.extra_data
        if "bundleValue" in extra:
            payload["Extradata"] = {"bundle": extra["bundleValue"]}
        elif "meterNumber" in extra or "accountNumber" in extra:
            payload["Extradata"] = {k: v for k, v in extra.items() if v is not None}

        body = await self.request("POST", self.commission_url(self._service_id(request)), json=payload)
        data = body.get("Data") or {}
        return ProviderResponse(
            response_code=str(body.get("ResponseCode", "")),
            message=str(body.get("Message", "")),
            transaction_id=data.get("TransactionId"),
            external_transaction_id=data.get("ExternalTransactionId"),
            is_fulfilled=data.get("IsFulfilled"),
            commission=_decimal(data.get("Commission")),
            data=data,
        )


class HubtelSendMoneyProvider(HubtelHttp):
    """Mobile-money payouts for earnings withdrawals."""

    async def send_money(
        self,
        *,
        mobile: str,
        amount: Decimal,
        client_reference: str,
        description: str,
    ) -> ProviderResponse:
        url = (
            f"{self.settings.hubtel_send_money_base_url}/"
            f"{self.settings.hubtel_prepaid_deposit_id}/send/mobilemoney"
        )
        body = await self.request(
            "POST",
            url,
            json={
                "RecipientMsisdn": mobile,
                "Amount": float(amount),
                "PrimaryCallbackURL": self.settings.commission_callback_url.replace(
                    "/service", "/send-money"
                ),
                "Description": description,
                "ClientReference": client_reference,
            },
        )
        data = body.get("Data") or {}
        return ProviderResponse(
            response_code=str(body.get("ResponseCode", "")),
            message=str(body.get("Message") or body.get("Description") or ""),
            transaction_id=data.get("TransactionId"),
            external_transaction_id=data.get("ExternalTransactionId"),
            data=data,
        )


class HubtelCatalogProvider(HubtelHttp):
    """Bundle, TV account and utility meter lookups."""

    async def query_bundles(self, network: str, destination: str) -> list[BundleOption]:
        if network not in BUNDLE_SERVICES:
            raise ValueError(f"Unknown network: {network}")
        body = await self.request(
            "GET", self.commission_url(BUNDLE_SERVICES[network]), params={"destination": destination}
        )
        return [
            BundleOption(
                display=str(item.get("Display", "")),
                value=str(item.get("Value", "")),
                amount=_decimal(item.get("Amount")) or Decimal("0"),
            )
            for item in body.get("Data") or []
        ]

    async def query_tv_account(self, tv_provider: str, account_number: str) -> TVAccount:
        if tv_provider not in TV_SERVICES:
            raise ValueError(f"Unknown TV provider: {tv_provider}")
        body = await self.request(
            "GET",
            self.commission_url(TV_SERVICES[tv_provider]),
            params={"destination": account_number},
        )
        fields = {item.get("Display"): item.get("Value") for item in body.get("Data") or []}
        if not fields:
            raise ProviderError(self.provider_name, f"no account data for {account_number}")
        return TVAccount(
            account_number=account_number,
            name=str(fields.get("name") or fields.get("Name") or ""),
            amount_due=_decimal(fields.get("amountDue") or fields.get("Amount Due")) or Decimal("0"),
        )

    async def query_ecg_meters(self, mobile: str) -> list[MeterAccount]:
        body = await self.request(
            "GET",
            self.commission_url(UTILITY_SERVICES["ECG Prepaid"]),
            params={"destination": mobile},
        )
        return [
            MeterAccount(meter_number=str(item.get("Value", "")), name=str(item.get("Display", "")))
            for item in body.get("Data") or []
        ]

    async def query_water_account(self, meter_number: str, mobile: str) -> WaterAccount:
        body = await self.request(
            "GET",
            self.commission_url(UTILITY_SERVICES["Ghana Water"]),
            params={"destination": meter_number, "mobile": mobile},
        )
        fields = {item.get("Display"): item.get("Value") for item in body.get("Data") or []}
        if not fields:
            raise ProviderError(self.provider_name, f"no account data for meter {meter_number}")
        return WaterAccount(
            meter_number=meter_number,
            name=str(fields.get("name") or ""),
            amount_due=_decimal(fields.get("amountDue")) or Decimal("0"),
            session_id=fields.get("sessionId"),
        )


class HubtelSmsNotifier(HubtelHttp):
    """Voucher delivery by SMS."""

    SMS_URL = "https://smsc.hubtel.com/v1/messages/send"

    async def send_vouchers(
        self, mobile: str, voucher_type: str, vouchers: list[tuple[str, str]]
    ) -> None:
        lines = [f"Serial: {serial} PIN: {pin}" for serial, pin in vouchers]
        content = f"Your {voucher_type}:\n" + "\n".join(lines)
        await self.request(
            "GET",
            self.SMS_URL,
            params={
                "clientid": self.settings.hubtel_client_id,
                "clientsecret": self.settings.hubtel_client_secret,
                "from": "E-Wale",
                "to": mobile,
                "content": content,
            },
        )
        logger.info("Sent %d voucher(s) to %s", len(vouchers), mobile)
