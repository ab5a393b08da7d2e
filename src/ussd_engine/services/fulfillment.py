"""Builds the commission fulfillment request from session state."""

from __future__ import annotations

from ussd_engine.providers.base import FulfillmentRequest
from ussd_engine.ussd.handlers.utility import ECG, GHANA_WATER
from ussd_engine.ussd.types import ServiceType, SessionState


class FulfillmentNotApplicable(ValueError):
    """The session's product is not delivered through the commission service."""


def build_fulfillment_request(
    state: SessionState, client_reference: str, callback_url: str
) -> FulfillmentRequest:
    """Map a paid session to its commission service request.

    Raises:
        FulfillmentNotApplicable: vouchers, earnings or an incomplete session.
    """
    if state.total_amount is None:
        raise FulfillmentNotApplicable(f"Session {state.session_id} has no total amount")
    base = {
        "client_reference": client_reference,
        "amount": state.total_amount,
        "callback_url": callback_url,
    }

    if state.service_type == ServiceType.DATA_BUNDLE:
        return FulfillmentRequest(
            **base,
            service_type="bundle",
            network=state.network,
            destination=_require(state.mobile, "mobile"),
            extra_data={"bundleType": "data", "bundleValue": state.bundle_value},
        )
    if state.service_type == ServiceType.AIRTIME_TOPUP:
        return FulfillmentRequest(
            **base,
            service_type="airtime",
            network=state.network,
            destination=_require(state.mobile, "mobile"),
        )
    if state.service_type == ServiceType.PAY_BILLS:
        account = _require(state.account_number, "account_number")
        return FulfillmentRequest(
            **base,
            service_type="tv_bill",
            tv_provider=state.tv_provider,
            destination=account,
            extra_data={"accountNumber": account},
        )
    if state.service_type == ServiceType.UTILITY_SERVICE:
        if state.utility_provider == ECG:
            meter = state.selected_meter.meter_number if state.selected_meter else state.meter_number
            return FulfillmentRequest(
                **base,
                service_type="utility",
                utility_provider=ECG,
                destination=_require(state.mobile, "mobile"),
                extra_data={"meterNumber": meter},
            )
        if state.utility_provider == GHANA_WATER:
            meter = _require(state.meter_number, "meter_number")
            return FulfillmentRequest(
                **base,
                service_type="utility",
                utility_provider=GHANA_WATER,
                destination=meter,
                extra_data={
                    "meterNumber": meter,
                    "email": state.email,
                    "sessionId": state.provider_session_id,
                },
            )
    raise FulfillmentNotApplicable(
        f"No commission service for {state.service_type} / {state.utility_provider}"
    )


def _require(value: str | None, name: str) -> str:
    if not value:
        raise FulfillmentNotApplicable(f"Session is missing {name}")
    return value
