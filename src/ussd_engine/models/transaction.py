"""Payment transaction ledger.

One row per payment attempt, keyed by client reference (the USSD session id).
Status only moves forward: pending/processing -> completed | failed.
Delivery is tracked apart from payment status: a transaction completed by
the status poller is still open for fulfillment until a callback claims it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ussd_engine.models.base import Base, IdMixin, TimestampMixin


class PaymentTransaction(IdMixin, TimestampMixin, Base):
    """A mobile-money payment attempt and its outcome."""

    __tablename__ = "payment_transaction"

    client_reference: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    service_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    mobile_number: Mapped[str | None] = mapped_column(String(20), nullable=True)
    product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    amount_after_charges: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    charges: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    payment_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    callback_received: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    callback_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_response_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    last_status_check_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # Set once, by whichever payment callback wins the right to deliver
    fulfillment_claimed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    extra_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="payment_transaction_status_ck",
        ),
        Index("payment_transaction_by_status", "status", "created_at"),
        Index("payment_transaction_by_order", "order_id"),
    )
