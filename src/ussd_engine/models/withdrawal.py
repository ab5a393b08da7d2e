"""Earnings withdrawals paid out via send-money."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ussd_engine.models.base import Base, IdMixin, TimestampMixin


class Withdrawal(IdMixin, TimestampMixin, Base):
    """A withdrawal attempt.

    A Failed withdrawal releases its amount back to the available balance.
    """

    __tablename__ = "withdrawal"

    client_reference: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    mobile_number: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Pending")
    is_fulfilled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    provider_transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    network_transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    response_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('Pending', 'Completed', 'Failed')", name="withdrawal_status_ck"
        ),
        CheckConstraint("amount > 0", name="withdrawal_amount_ck"),
        Index("withdrawal_by_mobile", "mobile_number", "status"),
    )


class EarningsAccount(IdMixin, TimestampMixin, Base):
    """Per-mobile row locked while a withdrawal is checked and debited.

    Balances stay derived; this row only orders concurrent withdrawals
    for the same mobile number.
    """

    __tablename__ = "earnings_account"

    mobile_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    withdrawal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_withdrawal_at: Mapped[datetime | None] = mapped_column(nullable=True)
