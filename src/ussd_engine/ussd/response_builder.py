"""Formats outbound turns. Pure, holds no state."""

from __future__ import annotations

from decimal import Decimal

from ussd_engine.ussd.types import (
    CartItem,
    DataType,
    FieldType,
    ResponseType,
    UssdResponse,
)

MAIN_MENU = (
    "Welcome to E-Wale\n"
    "1. Buy Airtime\n"
    "2. Data/Voice Bundle\n"
    "3. Pay Bills\n"
    "4. Utilities\n"
    "5. Results Vouchers\n"
    "6. Earnings\n"
    "0. Contact us"
)
CONTACT_US = "Phone: +233262195121\nEmail: guglextechnologies@gmail.com"
SESSION_EXPIRED = "Session expired or invalid. Please restart."
GENERIC_ERROR = "An error occurred. Please try again."
THANK_YOU = "Love from Guglex Technologies"


def response(
    session_id: str,
    label: str,
    message: str,
    *,
    data_type: DataType = DataType.INPUT,
    field_type: FieldType = FieldType.TEXT,
) -> UssdResponse:
    return UssdResponse(
        session_id=session_id,
        type=ResponseType.RESPONSE,
        label=label,
        message=message,
        data_type=data_type,
        field_type=field_type,
    )


def number_input(session_id: str, label: str, message: str) -> UssdResponse:
    return response(session_id, label, message, field_type=FieldType.NUMBER)


def phone_input(session_id: str, label: str, message: str) -> UssdResponse:
    return response(session_id, label, message, field_type=FieldType.PHONE)


def decimal_input(session_id: str, label: str, message: str) -> UssdResponse:
    return response(session_id, label, message, field_type=FieldType.DECIMAL)


def text_input(session_id: str, label: str, message: str) -> UssdResponse:
    return response(session_id, label, message, field_type=FieldType.TEXT)


def display(session_id: str, label: str, message: str) -> UssdResponse:
    """A screen the user reads and answers (order summaries)."""
    return response(
        session_id, label, message, data_type=DataType.INPUT, field_type=FieldType.NUMBER
    )


def release(session_id: str, label: str, message: str) -> UssdResponse:
    """Terminal turn. The dispatcher drops the session after sending it."""
    return UssdResponse(
        session_id=session_id,
        type=ResponseType.RELEASE,
        label=label,
        message=message,
        data_type=DataType.DISPLAY,
        field_type=FieldType.TEXT,
    )


def error(session_id: str, message: str) -> UssdResponse:
    return release(session_id, "Error", message)


def main_menu(session_id: str) -> UssdResponse:
    return number_input(session_id, "Welcome", MAIN_MENU)


def session_expired(session_id: str) -> UssdResponse:
    return release(session_id, "Session Expired", SESSION_EXPIRED)


def generic_error(session_id: str) -> UssdResponse:
    return release(session_id, "Error", GENERIC_ERROR)


def thank_you(session_id: str) -> UssdResponse:
    return release(session_id, "Thank you", THANK_YOU)


def contact_us(session_id: str) -> UssdResponse:
    return release(session_id, "Contact Us", CONTACT_US)


def coming_soon(session_id: str, feature: str = "This service") -> UssdResponse:
    return release(session_id, "Coming Soon", f"{feature} is coming soon. Stay tuned!")


def add_to_cart(session_id: str, product_name: str, total: Decimal) -> UssdResponse:
    """Ask the gateway to collect payment via a mobile-money prompt."""
    return UssdResponse(
        session_id=session_id,
        type=ResponseType.ADD_TO_CART,
        label="Payment Request Submitted",
        message=(
            f"Kindly approve the Momo prompt for GHS {total:.2f}. "
            "If no prompt, Dial *170# select 6) My Wallet 3) My Approvals. "
            "Instant delivery."
        ),
        data_type=DataType.DISPLAY,
        field_type=FieldType.TEXT,
        item=CartItem(item_name=product_name, qty=1, price=float(total)),
    )
