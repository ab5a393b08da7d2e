"""USSD session log, one row per conversation."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Boolean, CheckConstraint, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ussd_engine.models.base import Base, IdMixin, TimestampMixin, utcnow


class UssdSessionLog(IdMixin, TimestampMixin, Base):
    """Lifecycle record of a USSD conversation."""

    __tablename__ = "ussd_session_log"

    session_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    mobile_number: Mapped[str] = mapped_column(String(20), nullable=False)
    service_type: Mapped[str | None] = mapped_column(String(40), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="initiated")
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    dialed_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_successful: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    payment_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    state_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint(
            "status IN ('initiated', 'active', 'completed', 'failed')",
            name="ussd_session_log_status_ck",
        ),
    )
