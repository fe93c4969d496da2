"""
Tests for estimate creation and estimate-to-invoice conversion.
"""

from datetime import date

import pytest

from backend.db.gateway import Entity
from backend.services import estimate_service


async def _estimate(gateway, user_id, client_name="Ana Ruiz", items=None, **kwargs):
    items = items or [
        {"item_name": "logo", "unit_price": 250},
        {"item_name": "business cards", "quantity": 2, "unit_price": 40},
    ]
    return await estimate_service.create_estimate(gateway, user_id, client_name, items, **kwargs)


class TestCreateEstimate:
    @pytest.mark.asyncio
    async def test_creates_estimate_with_items_and_totals(self, gateway, user_id):
        result = await _estimate(gateway, user_id, estimate_date=date(2026, 3, 1), tax_percentage=10)

        assert result.success is True
        assert result.data["estimate_number"] == "EST-001"
        assert result.data["client_created"] is True
        [estimate] = gateway.rows(Entity.ESTIMATE)
        assert estimate["status"] == "draft"
        assert estimate["subtotal_amount"] == 330.0
        assert estimate["total_amount"] == 363.0
        assert estimate["valid_until_date"] == "2026-03-31"
        items = gateway.rows(Entity.ESTIMATE_LINE_ITEM)
        assert [i["item_name"] for i in items] == ["Logo", "Business cards"]
        assert all(i["estimate_id"] == estimate["id"] for i in items)
        assert gateway.rows(Entity.INVOICE) == []

    @pytest.mark.asyncio
    async def test_numbering_is_shared_with_invoices(self, gateway, user_id):
        gateway.seed(Entity.INVOICE, user_id=user_id, invoice_number="INV-004")

        result = await _estimate(gateway, user_id)

        assert result.data["estimate_number"] == "EST-005"

    @pytest.mark.asyncio
    async def test_item_failure_removes_estimate(self, gateway, user_id):
        gateway.fail(Entity.ESTIMATE_LINE_ITEM, "insert")

        result = await _estimate(gateway, user_id)

        assert result.success is False
        assert gateway.rows(Entity.ESTIMATE) == []

    @pytest.mark.asyncio
    async def test_needs_items(self, gateway, user_id):
        result = await estimate_service.create_estimate(gateway, user_id, "Ana Ruiz", [])

        assert result.success is False
        assert gateway.rows(Entity.ESTIMATE) == []


class TestConvertEstimate:
    """An estimate becomes a draft invoice exactly once."""

    @pytest.mark.asyncio
    async def test_conversion_copies_items_and_links_estimate(self, gateway, user_id):
        await _estimate(gateway, user_id, tax_percentage=10)

        result = await estimate_service.convert_estimate_to_invoice(gateway, user_id, "EST-001")

        assert result.success is True
        assert result.data["invoice_number"] == "INV-001"
        [invoice] = gateway.rows(Entity.INVOICE)
        assert invoice["status"] == "draft"
        assert invoice["paid_amount"] == 0
        assert invoice["total_amount"] == 363.0
        assert [i["item_name"] for i in gateway.rows(Entity.LINE_ITEM)] == ["Logo", "Business cards"]
        [estimate] = gateway.rows(Entity.ESTIMATE)
        assert estimate["status"] == "converted"
        assert estimate["converted_to_invoice_id"] == invoice["id"]
        assert result.attachments[0].invoice_id == invoice["id"]

    @pytest.mark.asyncio
    async def test_taken_number_falls_back_to_next_in_sequence(self, gateway, user_id):
        gateway.seed(Entity.INVOICE, user_id=user_id, invoice_number="INV-001")
        gateway.seed(Entity.ESTIMATE, user_id=user_id, estimate_number="EST-001", status="sent")

        result = await estimate_service.convert_estimate_to_invoice(gateway, user_id, "est-001")

        assert result.success is True
        assert result.data["invoice_number"] == "INV-002"

    @pytest.mark.asyncio
    async def test_second_conversion_is_refused(self, gateway, user_id):
        await _estimate(gateway, user_id)
        await estimate_service.convert_estimate_to_invoice(gateway, user_id, "EST-001")

        result = await estimate_service.convert_estimate_to_invoice(gateway, user_id, "EST-001")

        assert result.success is False
        assert "already been converted" in result.message
        assert len(gateway.rows(Entity.INVOICE)) == 1

    @pytest.mark.parametrize("status", ["declined", "expired", "cancelled"])
    @pytest.mark.asyncio
    async def test_closed_estimates_are_not_converted(self, gateway, user_id, status):
        gateway.seed(Entity.ESTIMATE, user_id=user_id, estimate_number="EST-001", status=status)

        result = await estimate_service.convert_estimate_to_invoice(gateway, user_id, "EST-001")

        assert result.success is False
        assert gateway.rows(Entity.INVOICE) == []

    @pytest.mark.asyncio
    async def test_failed_link_removes_new_invoice(self, gateway, user_id):
        await _estimate(gateway, user_id)
        gateway.fail(Entity.ESTIMATE, "update")

        result = await estimate_service.convert_estimate_to_invoice(gateway, user_id, "EST-001")

        assert result.success is False
        assert gateway.rows(Entity.INVOICE) == []
        assert gateway.rows(Entity.LINE_ITEM) == []
        assert gateway.rows(Entity.ESTIMATE)[0]["status"] == "draft"

    @pytest.mark.asyncio
    async def test_resolves_by_client_name_and_latest(self, gateway, user_id):
        await _estimate(gateway, user_id)
        await _estimate(gateway, user_id, client_name="Oliver")

        by_client = await estimate_service.resolve_estimate(gateway, user_id, "Ana's quote")
        latest = await estimate_service.resolve_estimate(gateway, user_id, None)

        assert by_client["estimate_number"] == "EST-001"
        assert latest["estimate_number"] == "EST-002"

    @pytest.mark.asyncio
    async def test_unknown_estimate(self, gateway, user_id):
        result = await estimate_service.convert_estimate_to_invoice(gateway, user_id, "EST-099")

        assert result.success is False
        assert "EST-099" in result.message
