"""USSD protocol and session types."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ServiceType(str, Enum):
    """Top-level product the subscriber is transacting."""

    AIRTIME_TOPUP = "airtime_topup"
    DATA_BUNDLE = "data_bundle"
    PAY_BILLS = "pay_bills"
    UTILITY_SERVICE = "utility_service"
    RESULT_CHECKER = "result_checker"
    EARNING = "earning"


class FlowType(str, Enum):
    """Who the purchase is for."""

    SELF = "self"
    OTHER = "other"


class RequestType(str, Enum):
    INITIATION = "initiation"
    RESPONSE = "response"
    RELEASE = "release"
    TIMEOUT = "timeout"


class ResponseType(str, Enum):
    RESPONSE = "response"
    RELEASE = "release"
    ADD_TO_CART = "addToCart"


class DataType(str, Enum):
    INPUT = "input"
    DISPLAY = "display"


class FieldType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    PHONE = "phone"
    DECIMAL = "decimal"


class BundleChoice(BaseModel):
    display: str
    value: str
    amount: Decimal


class BundleGroup(BaseModel):
    name: str
    bundles: list[BundleChoice] = Field(default_factory=list)


class MeterChoice(BaseModel):
    meter_number: str
    name: str = ""


class SessionState(BaseModel):
    """Per-conversation scratch state. Lives only in the session store."""

    model_config = ConfigDict(validate_assignment=False)

    session_id: str
    mobile_number: str | None = None
    service_type: ServiceType | None = None

    # Category choice
    service: str | None = None
    network: str | None = None
    tv_provider: str | None = None
    utility_provider: str | None = None

    # Destination / buyer
    flow: FlowType | None = None
    mobile: str | None = None
    name: str | None = None
    quantity: int | None = None
    email: str | None = None

    # TV
    account_number: str | None = None
    account_name: str | None = None
    amount_due: Decimal | None = None
    subscription_type: str | None = None  # renew / change

    # Utility
    meter_type: str | None = None  # prepaid / postpaid
    utility_sub_option: str | None = None
    meter_options: list[MeterChoice] = Field(default_factory=list)
    selected_meter: MeterChoice | None = None
    meter_number: str | None = None
    provider_session_id: str | None = None

    # Bundles
    bundle_groups: list[BundleGroup] = Field(default_factory=list)
    current_group_index: int = 0
    current_page: int = 0
    category_mode: bool = False
    selected_bundle: BundleChoice | None = None
    bundle_value: str | None = None

    # Amounts
    amount: Decimal | None = None
    total_amount: Decimal | None = None

    # Earnings
    earning_flow: str | None = None
    withdrawal_amount: Decimal | None = None

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe view for logging, without bulky catalog data."""
        return self.model_dump(
            mode="json",
            exclude={"bundle_groups", "meter_options"},
            exclude_none=True,
        )


class UssdRequest(BaseModel):
    """Inbound turn from the gateway.

    Accepts both camelCase and the gateway's PascalCase keys.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: str = Field(validation_alias=AliasChoices("type", "Type"))
    session_id: str = Field(validation_alias=AliasChoices("sessionId", "SessionId"))
    sequence: int = Field(default=1, validation_alias=AliasChoices("sequence", "Sequence"))
    message: str = Field(default="", validation_alias=AliasChoices("message", "Message"))
    mobile: str = Field(
        default="", validation_alias=AliasChoices("mobileNumber", "Mobile", "mobile")
    )
    service_code: str | None = Field(
        default=None, validation_alias=AliasChoices("serviceCode", "ServiceCode")
    )
    operator: str | None = Field(
        default=None, validation_alias=AliasChoices("operator", "Operator")
    )

    @property
    def request_type(self) -> str:
        return self.type.strip().lower()

    @property
    def text(self) -> str:
        return self.message.strip()


class CartItem(BaseModel):
    item_name: str = Field(serialization_alias="itemName")
    qty: int = 1
    price: float


class UssdResponse(BaseModel):
    """Outbound turn to the gateway."""

    session_id: str = Field(serialization_alias="sessionId")
    type: ResponseType
    label: str
    message: str
    data_type: DataType = Field(serialization_alias="dataType")
    field_type: FieldType = Field(serialization_alias="fieldType")
    item: CartItem | None = None

    @property
    def is_release(self) -> bool:
        return self.type == ResponseType.RELEASE

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
