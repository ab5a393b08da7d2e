"""Inbound provider callbacks as a tagged union.

Payloads are validated once, at the HTTP boundary, into one of three
explicit variants discriminated by ``kind``. Keys are accepted in camelCase
or in the provider's PascalCase.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, AliasGenerator, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel, to_pascal


def _either_case(name: str) -> AliasChoices:
    return AliasChoices(to_camel(name), to_pascal(name), name)


class CallbackModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=AliasGenerator(
            validation_alias=_either_case, serialization_alias=to_camel
        ),
        populate_by_name=True,
        extra="ignore",
    )


class PaymentDetails(CallbackModel):
    payment_type: str | None = None
    amount_paid: Decimal = Decimal("0")
    amount_after_charges: Decimal = Decimal("0")
    payment_date: datetime | None = None
    payment_description: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "paymentDescription", "PaymentDescription", "description", "Description"
        ),
    )
    is_successful: bool


class OrderItem(CallbackModel):
    item_id: str | None = None
    name: str | None = None
    quantity: int = 1
    unit_price: Decimal | None = None


class OrderInfo(CallbackModel):
    customer_mobile_number: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    status: str | None = None
    order_date: datetime | None = None
    currency: str | None = None
    items: list[OrderItem] = Field(default_factory=list)
    payment: PaymentDetails


class PaymentCallback(CallbackModel):
    """Result of the mobile-money collection for a USSD order."""

    kind: Literal["payment"] = Field(default="payment", validation_alias="kind")
    session_id: str
    order_id: str | None = None
    extra_data: dict[str, Any] = Field(default_factory=dict)
    order_info: OrderInfo

    @property
    def is_successful(self) -> bool:
        return self.order_info.payment.is_successful


class SendMoneyCallback(CallbackModel):
    """Result of a withdrawal payout."""

    kind: Literal["send_money"] = Field(default="send_money", validation_alias="kind")
    response_code: str
    message: str | None = None
    client_reference: str
    transaction_id: str | None = None
    external_transaction_id: str | None = None
    amount: Decimal | None = None
    charges: Decimal | None = None


class ServiceCallback(CallbackModel):
    """Delivery result from the commission service."""

    kind: Literal["service"] = Field(default="service", validation_alias="kind")
    response_code: str
    message: str | None = None
    client_reference: str
    transaction_id: str | None = None
    is_fulfilled: bool = False
    commission: Decimal | None = None
    amount: Decimal | None = None


ProviderCallback = Annotated[
    Union[PaymentCallback, SendMoneyCallback, ServiceCallback],
    Field(discriminator="kind"),
]

callback_adapter: TypeAdapter[ProviderCallback] = TypeAdapter(ProviderCallback)

CALLBACK_KINDS = {"payment": "payment", "send-money": "send_money", "service": "service"}


def parse_callback(kind: str, payload: dict[str, Any]) -> ProviderCallback:
    """Validate a raw payload for the given route kind.

    Provider envelopes of the form {ResponseCode, Message, Data: {...}} are
    flattened before validation.

    Raises:
        KeyError: unknown kind.
        pydantic.ValidationError: payload does not match the variant.
    """
    tag = CALLBACK_KINDS[kind]
    body = dict(payload)
    if tag != "payment":
        data = body.pop("Data", None) or body.pop("data", None)
        if isinstance(data, dict):
            body = {**data, **body}
    body["kind"] = tag
    return callback_adapter.validate_python(body)
