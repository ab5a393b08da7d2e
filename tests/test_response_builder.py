"""Tests for outbound turn formatting."""

from decimal import Decimal

from ussd_engine.ussd import response_builder as rb


def test_main_menu_wire_shape():
    wire = rb.main_menu("S1").to_wire()
    assert wire["sessionId"] == "S1"
    assert wire["type"] == "response"
    assert wire["dataType"] == "input"
    assert wire["fieldType"] == "number"
    assert wire["message"].startswith("Welcome to E-Wale")
    assert "item" not in wire


def test_release_is_display_text():
    response = rb.release("S1", "Bye", "Done")
    assert response.is_release
    wire = response.to_wire()
    assert wire["type"] == "release"
    assert wire["dataType"] == "display"
    assert wire["fieldType"] == "text"


def test_error_and_expiry_release():
    assert rb.error("S1", "bad").is_release
    assert rb.session_expired("S1").message == rb.SESSION_EXPIRED
    assert rb.generic_error("S1").message == rb.GENERIC_ERROR


def test_add_to_cart_carries_item():
    wire = rb.add_to_cart("S1", "MTN Airtime GHS 5.00", Decimal("5")).to_wire()
    assert wire["type"] == "addToCart"
    assert wire["label"] == "Payment Request Submitted"
    assert "GHS 5.00" in wire["message"]
    assert wire["item"] == {"itemName": "MTN Airtime GHS 5.00", "qty": 1, "price": 5.0}


def test_input_field_types():
    assert rb.phone_input("S1", "L", "M").to_wire()["fieldType"] == "phone"
    assert rb.decimal_input("S1", "L", "M").to_wire()["fieldType"] == "decimal"
    assert rb.text_input("S1", "L", "M").to_wire()["fieldType"] == "text"
