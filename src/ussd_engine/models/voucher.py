"""Result-checker voucher inventory."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ussd_engine.models.base import Base, IdMixin, TimestampMixin


class Voucher(IdMixin, TimestampMixin, Base):
    """A pre-loaded exam result checker voucher."""

    __tablename__ = "voucher"

    serial_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    pin: Mapped[str] = mapped_column(String(64), nullable=False)
    voucher_type: Mapped[str] = mapped_column(String(64), nullable=False)
    sold: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assigned_mobile: Mapped[str | None] = mapped_column(String(20), nullable=True)
    client_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    sold_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("voucher_available", "voucher_type", "sold"),
        Index("voucher_by_reference", "client_reference"),
    )
