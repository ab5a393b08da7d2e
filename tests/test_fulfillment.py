"""Tests for mapping paid sessions to commission service requests."""

from decimal import Decimal

import pytest

from ussd_engine.services.fulfillment import FulfillmentNotApplicable, build_fulfillment_request
from ussd_engine.ussd.handlers.utility import ECG, GHANA_WATER
from ussd_engine.ussd.types import MeterChoice, ServiceType, SessionState

CALLBACK = "https://engine.example.test/api/v1/callbacks/service"


def state(**fields) -> SessionState:
    return SessionState(session_id="S1", total_amount=Decimal("10.00"), **fields)


class TestBuildFulfillmentRequest:
    def test_airtime(self):
        request = build_fulfillment_request(
            state(service_type=ServiceType.AIRTIME_TOPUP, network="AT", mobile="233271234567"),
            "S1",
            CALLBACK,
        )
        assert request.service_type == "airtime"
        assert request.network == "AT"
        assert request.destination == "233271234567"
        assert request.amount == Decimal("10.00")
        assert request.callback_url == CALLBACK

    def test_bundle(self):
        request = build_fulfillment_request(
            state(
                service_type=ServiceType.DATA_BUNDLE,
                network="MTN",
                mobile="233241234567",
                bundle_value="mtn_1gb",
            ),
            "S1",
            CALLBACK,
        )
        assert request.service_type == "bundle"
        assert request.extra_data == {"bundleType": "data", "bundleValue": "mtn_1gb"}

    def test_tv(self):
        request = build_fulfillment_request(
            state(service_type=ServiceType.PAY_BILLS, tv_provider="GoTV", account_number="7012345678"),
            "S1",
            CALLBACK,
        )
        assert request.service_type == "tv_bill"
        assert request.destination == "7012345678"
        assert request.tv_provider == "GoTV"

    def test_ecg_uses_selected_meter(self):
        request = build_fulfillment_request(
            state(
                service_type=ServiceType.UTILITY_SERVICE,
                utility_provider=ECG,
                mobile="233240000000",
                selected_meter=MeterChoice(meter_number="P1234567"),
            ),
            "S1",
            CALLBACK,
        )
        assert request.utility_provider == ECG
        assert request.destination == "233240000000"
        assert request.extra_data == {"meterNumber": "P1234567"}

    def test_ghana_water(self):
        request = build_fulfillment_request(
            state(
                service_type=ServiceType.UTILITY_SERVICE,
                utility_provider=GHANA_WATER,
                meter_number="W1234567",
                provider_session_id="gw-1",
            ),
            "S1",
            CALLBACK,
        )
        assert request.destination == "W1234567"
        assert request.extra_data["sessionId"] == "gw-1"

    @pytest.mark.parametrize(
        "fields",
        [
            {"service_type": ServiceType.RESULT_CHECKER},
            {"service_type": ServiceType.EARNING},
            {"service_type": ServiceType.AIRTIME_TOPUP, "network": "MTN"},
            {"service_type": ServiceType.UTILITY_SERVICE, "utility_provider": "Unknown"},
        ],
    )
    def test_not_applicable(self, fields):
        with pytest.raises(FulfillmentNotApplicable):
            build_fulfillment_request(state(**fields), "S1", CALLBACK)

    def test_missing_total(self):
        with pytest.raises(FulfillmentNotApplicable):
            build_fulfillment_request(
                SessionState(session_id="S1", service_type=ServiceType.AIRTIME_TOPUP),
                "S1",
                CALLBACK,
            )
