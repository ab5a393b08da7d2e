"""Commission log: one entry per paid order, used for earnings."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ussd_engine.models.base import Base, IdMixin, TimestampMixin


class CommissionLog(IdMixin, TimestampMixin, Base):
    """Outcome of a payment plus the downstream fulfillment status."""

    __tablename__ = "commission_log"

    client_reference: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    mobile_number: Mapped[str] = mapped_column(String(20), nullable=False)
    service_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    network: Mapped[str | None] = mapped_column(String(40), nullable=True)
    destination: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    charges: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    amount_after_charges: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="Unpaid")
    response_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_fulfilled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    commission_service_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )
    commission: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    # Failed deliveries are retried by an operator job until the count runs out
    is_retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_retry_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('Paid', 'Unpaid')", name="commission_log_status_ck"),
        CheckConstraint(
            "commission_service_status IN ('pending', 'delivered', 'failed')",
            name="commission_log_service_status_ck",
        ),
        Index("commission_log_by_mobile", "mobile_number", "status"),
        Index("commission_log_by_session", "session_id"),
    )
