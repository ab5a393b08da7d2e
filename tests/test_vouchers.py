"""Tests for result-checker voucher inventory."""

import pytest

from ussd_engine.services.voucher_service import InsufficientInventoryError, VoucherService

BECE = "BECE Checker Voucher"


@pytest.fixture
async def vouchers(db) -> VoucherService:
    service = VoucherService(db)
    await service.add_vouchers(BECE, [("SN1", "P1"), ("SN2", "P2"), ("SN3", "P3")])
    return service


class TestVoucherService:
    async def test_add_skips_existing_serials(self, vouchers):
        added = await vouchers.add_vouchers(BECE, [("SN3", "P3"), ("SN4", "P4"), ("SN4", "P4")])
        assert added == 1
        assert await vouchers.available_count(BECE) == 4

    async def test_add_nothing(self, vouchers):
        assert await vouchers.add_vouchers(BECE, []) == 0

    async def test_draw_marks_sold(self, vouchers):
        drawn = await vouchers.draw(BECE, 2, "233241234567", "S1")

        assert len(drawn) == 2
        assert all(v.sold and v.assigned_mobile == "233241234567" for v in drawn)
        assert all(v.client_reference == "S1" for v in drawn)
        assert await vouchers.available_count(BECE) == 1

    async def test_draw_is_idempotent_per_order(self, vouchers):
        first = await vouchers.draw(BECE, 2, "233241234567", "S1")
        again = await vouchers.draw(BECE, 2, "233241234567", "S1")
        assert {v.serial_number for v in again} == {v.serial_number for v in first}
        assert await vouchers.available_count(BECE) == 1

    async def test_short_stock_assigns_nothing(self, vouchers):
        with pytest.raises(InsufficientInventoryError) as info:
            await vouchers.draw(BECE, 5, "233241234567", "S1")
        assert info.value.available == 3
        assert await vouchers.available_count(BECE) == 3

    async def test_types_are_separate(self, vouchers):
        assert await vouchers.available_count("NovDec Checker") == 0

    async def test_quantity_must_be_positive(self, vouchers):
        with pytest.raises(ValueError):
            await vouchers.draw(BECE, 0, "233241234567", "S1")
