"""Result-checker voucher inventory."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ussd_engine.models import Voucher, utcnow

logger = logging.getLogger(__name__)


class InsufficientInventoryError(Exception):
    """Not enough unsold vouchers of the requested type."""

    def __init__(self, voucher_type: str, requested: int, available: int):
        self.voucher_type = voucher_type
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} {voucher_type} voucher(s), only {available} available"
        )


class VoucherService:
    """Loads, counts and assigns vouchers."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def available_count(self, voucher_type: str) -> int:
        result = await self.db.execute(
            select(func.count(Voucher.id)).where(
                Voucher.voucher_type == voucher_type, Voucher.sold.is_(False)
            )
        )
        return int(result.scalar_one())

    async def assigned_to(self, client_reference: str) -> list[Voucher]:
        result = await self.db.execute(
            select(Voucher)
            .where(Voucher.client_reference == client_reference)
            .order_by(Voucher.serial_number)
        )
        return list(result.scalars().all())

    async def draw(
        self, voucher_type: str, quantity: int, mobile: str, client_reference: str
    ) -> list[Voucher]:
        """Assign `quantity` unsold vouchers to an order.

        Idempotent per client reference: a repeat returns the vouchers
        already assigned.

        Raises:
            InsufficientInventoryError: stock is short; nothing is assigned.
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        already = await self.assigned_to(client_reference)
        if already:
            return already

        result = await self.db.execute(
            select(Voucher)
            .where(Voucher.voucher_type == voucher_type, Voucher.sold.is_(False))
            .order_by(Voucher.created_at, Voucher.serial_number)
            .limit(quantity)
            .with_for_update(skip_locked=True)
        )
        vouchers = list(result.scalars().all())
        if len(vouchers) < quantity:
            raise InsufficientInventoryError(voucher_type, quantity, len(vouchers))

        now = utcnow()
        for voucher in vouchers:
            voucher.sold = True
            voucher.assigned_mobile = mobile
            voucher.client_reference = client_reference
            voucher.sold_at = now
        await self.db.flush()
        logger.info("Assigned %d %s voucher(s) to %s", quantity, voucher_type, client_reference)
        return vouchers

    async def add_vouchers(self, voucher_type: str, codes: list[tuple[str, str]]) -> int:
        """Load (serial, pin) pairs. Existing serials are skipped."""
        if not codes:
            return 0
        serials = [serial for serial, _ in codes]
        result = await self.db.execute(
            select(Voucher.serial_number).where(Voucher.serial_number.in_(serials))
        )
        existing = set(result.scalars().all())
        added = 0
        for serial, pin in codes:
            if serial in existing:
                continue
            self.db.add(Voucher(serial_number=serial, pin=pin, voucher_type=voucher_type))
            existing.add(serial)
            added += 1
        await self.db.flush()
        return added
