"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ussd_engine.database import Page


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    code: str | None = None


# ============================================================================
# Callbacks
# ============================================================================


class CallbackAck(BaseModel):
    """Response to an inbound provider callback."""

    status: str = "received"
    kind: str
    client_reference: str | None = None
    transaction_status: str | None = None
    duplicate: bool = False
    fulfillment: str | None = None
    acknowledged: bool | None = None
    errors: list[dict[str, Any]] = Field(default_factory=list)


# ============================================================================
# Transactions
# ============================================================================


class PollResponse(BaseModel):
    """Outcome of a status poll run."""

    checked: int
    completed: int
    failed: int
    still_pending: int
    errors: list[dict[str, Any]] = Field(default_factory=list)


class StatusCheckResponse(BaseModel):
    """Classified result of a one-off status query."""

    response_code: str
    message: str
    status: str | None = None
    is_successful: bool
    should_retry: bool
    classification: str
    transaction_id: str | None = None
    external_transaction_id: str | None = None
    payment_method: str | None = None
    amount: Decimal | None = None
    charges: Decimal | None = None
    amount_after_charges: Decimal | None = None
    is_fulfilled: bool | None = None


class StatusSummaryResponse(BaseModel):
    """Paid or not, and whether a later check may change the answer."""

    client_reference: str
    is_successful: bool
    status: str
    message: str
    should_retry: bool


class BatchCheckRequest(BaseModel):
    """References to look up; between one and ten."""

    client_references: list[str]


class BatchCheckItemResponse(BaseModel):
    client_reference: str
    result: StatusCheckResponse | None = None
    summary: StatusSummaryResponse | None = None
    error: str | None = None


class BatchCheckResponse(BaseModel):
    """Per-reference outcomes of a batch status check."""

    items: list[BatchCheckItemResponse]
    checked: int
    errors: int


# ============================================================================
# Earnings
# ============================================================================


class EarningsResponse(BaseModel):
    """Derived balances for one mobile number."""

    mobile_number: str
    total_earnings: Decimal
    available_balance: Decimal
    total_withdrawn: Decimal
    pending_withdrawals: Decimal
    transaction_count: int


class WithdrawalRequest(BaseModel):
    """Request to pay out earnings."""

    mobile_number: str
    amount: Decimal
    client_reference: str = Field(min_length=1, max_length=128)


class WithdrawalResponse(BaseModel):
    """A withdrawal record."""

    model_config = ConfigDict(from_attributes=True)

    client_reference: str
    mobile_number: str
    amount: Decimal
    status: str
    is_fulfilled: bool
    provider_transaction_id: str | None = None
    response_code: str | None = None
    message: str | None = None
    created_at: datetime


class WithdrawalOutcomeResponse(BaseModel):
    """Result of a withdrawal request."""

    accepted: bool
    message: str
    withdrawal: WithdrawalResponse | None = None


class WithdrawalListResponse(BaseModel):
    items: list[WithdrawalResponse]
    total: int


# ============================================================================
# Operator logs
# ============================================================================


class PageInfo(BaseModel):
    page: int
    page_size: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def of(cls, page: Page) -> "PageInfo":
        return cls(
            page=page.page,
            page_size=page.page_size,
            total=page.total,
            pages=page.pages,
            has_next=page.has_next,
            has_prev=page.has_prev,
        )


class CommissionLogResponse(BaseModel):
    """A commission log entry."""

    model_config = ConfigDict(from_attributes=True)

    client_reference: str
    session_id: str | None = None
    mobile_number: str
    service_type: str | None = None
    network: str | None = None
    destination: str | None = None
    amount: Decimal
    charges: Decimal
    amount_after_charges: Decimal
    status: str
    response_code: str | None = None
    message: str | None = None
    provider_transaction_id: str | None = None
    is_fulfilled: bool
    commission_service_status: str
    commission: Decimal | None = None
    is_retryable: bool
    retry_count: int
    last_retry_at: datetime | None = None
    created_at: datetime


class CommissionLogListResponse(BaseModel):
    items: list[CommissionLogResponse]
    pagination: PageInfo


class CommissionStatsResponse(BaseModel):
    total_transactions: int
    successful_transactions: int
    failed_transactions: int
    delivered_services: int
    failed_services: int
    pending_services: int
    success_rate: str
    delivery_rate: str
    total_amount: Decimal
    total_charges: Decimal
    total_amount_after_charges: Decimal


class SessionLogResponse(BaseModel):
    """A USSD session log row."""

    model_config = ConfigDict(from_attributes=True)

    session_id: str
    mobile_number: str
    service_type: str | None = None
    status: str
    last_sequence: int
    dialed_at: datetime
    completed_at: datetime | None = None
    duration_seconds: int | None = None
    is_successful: bool | None = None
    error_message: str | None = None
    order_id: str | None = None
    amount_paid: Decimal | None = None
    payment_status: str | None = None


class SessionLogListResponse(BaseModel):
    items: list[SessionLogResponse]
    pagination: PageInfo


class SessionStatsResponse(BaseModel):
    total_dialers: int
    today_dialers: int
    completed_transactions: int
    failed_transactions: int
    success_rate: str
