"""
Tests for invoice creation, updates, duplication and deletion, including
the end-to-end invoice scenarios driven through the tool services.
"""

from datetime import date, timedelta

import pytest

from backend.db.gateway import Entity
from backend.services import invoice_service
from backend.services.client_service import update_client_info


async def _create(gateway, user_id, client_name="Oliver", items=None, **kwargs):
    items = items or [{"item_name": "web design", "unit_price": 500}]
    return await invoice_service.create_invoice(gateway, user_id, client_name, items, **kwargs)


class TestCreateInvoice:
    """Scenario: "Create invoice for Oliver, web design for 500." """

    @pytest.mark.asyncio
    async def test_creates_client_invoice_and_line_item(self, gateway, user_id):
        result = await _create(gateway, user_id)

        assert result.success is True
        assert result.data["invoice_number"] == "INV-001"
        assert result.data["client_created"] is True

        [client] = gateway.rows(Entity.CLIENT)
        assert client["name"] == "Oliver"

        [invoice] = gateway.rows(Entity.INVOICE)
        assert invoice["status"] == "draft"
        assert invoice["subtotal_amount"] == 500.0
        assert invoice["total_amount"] == 500.0
        assert invoice["client_id"] == client["id"]
        assert invoice["invoice_design"] == "clean"
        assert invoice["accent_color"] == "#1E40AF"
        assert invoice["due_date"] == (date.today() + timedelta(days=30)).isoformat()

        [item] = gateway.rows(Entity.LINE_ITEM)
        assert (item["item_name"], item["unit_price"], item["quantity"], item["total_price"]) == (
            "Web design", 500.0, 1.0, 500.0
        )

        attachment = result.attachments[0]
        assert attachment.invoice_id == invoice["id"]
        assert attachment.client["name"] == "Oliver"
        assert len(attachment.line_items) == 1

    @pytest.mark.asyncio
    async def test_default_tax_applied_when_auto_apply(self, gateway, user_id):
        gateway.seed(
            Entity.BUSINESS_SETTINGS, user_id=user_id, default_tax_rate=10, auto_apply_tax=True,
            currency_code="EUR", default_payment_terms_days=14,
        )

        result = await _create(gateway, user_id)

        [invoice] = gateway.rows(Entity.INVOICE)
        assert invoice["tax_percentage"] == 10.0
        assert invoice["total_amount"] == 550.0
        assert invoice["currency"] == "EUR"
        assert invoice["due_date"] == (date.today() + timedelta(days=14)).isoformat()
        assert "550.00 EUR" in result.message

    @pytest.mark.asyncio
    async def test_existing_client_is_reused_and_merged(self, gateway, user_id):
        existing = gateway.seed(Entity.CLIENT, user_id=user_id, name="Oliver", email=None)

        result = await _create(gateway, user_id, client_name="oliver", client_email="oliver@example.com")

        assert result.data["client_created"] is False
        [client] = gateway.rows(Entity.CLIENT)
        assert client["id"] == existing["id"]
        assert client["email"] == "oliver@example.com"

    @pytest.mark.asyncio
    async def test_payment_methods_preenabled_from_account(self, gateway, user_id):
        gateway.seed(Entity.PAYMENT_OPTIONS, user_id=user_id, paypal_enabled=True, stripe_enabled=False)

        await _create(gateway, user_id)

        [invoice] = gateway.rows(Entity.INVOICE)
        assert invoice["paypal_active"] is True
        assert invoice["stripe_active"] is False

    @pytest.mark.asyncio
    async def test_line_item_failure_removes_invoice(self, gateway, user_id):
        gateway.fail(Entity.LINE_ITEM, "insert")

        result = await _create(gateway, user_id)

        assert result.success is False
        assert gateway.rows(Entity.INVOICE) == []
        assert gateway.rows(Entity.LINE_ITEM) == []

    @pytest.mark.asyncio
    async def test_totals_failure_removes_invoice_and_items(self, gateway, user_id):
        gateway.fail(Entity.INVOICE, "update")

        result = await _create(gateway, user_id)

        assert result.success is False
        assert gateway.rows(Entity.INVOICE) == []
        assert gateway.rows(Entity.LINE_ITEM) == []

    @pytest.mark.asyncio
    async def test_failed_cleanup_still_answers(self, gateway, user_id):
        gateway.fail(Entity.INVOICE, "update")
        gateway.fail(Entity.LINE_ITEM, "delete_where")

        result = await _create(gateway, user_id)

        assert result.success is False
        assert gateway.rows(Entity.INVOICE) == []

    @pytest.mark.asyncio
    async def test_numbers_increase(self, gateway, user_id):
        first = await _create(gateway, user_id)
        second = await _create(gateway, user_id, client_name="Ana")

        assert (first.data["invoice_number"], second.data["invoice_number"]) == ("INV-001", "INV-002")


class TestFollowUpClientUpdate:
    """Scenario: "Add his address: 12 Ostern Way." after creating an invoice."""

    @pytest.mark.asyncio
    async def test_address_added_through_invoice(self, gateway, user_id):
        created = await _create(gateway, user_id)

        result = await update_client_info(
            gateway, user_id, invoice_identifier=created.data["invoice_number"], address="12 Ostern Way"
        )

        assert result.success is True
        [client] = gateway.rows(Entity.CLIENT)
        assert client["address"] == "12 Ostern Way"
        assert result.attachments[0].client["address"] == "12 Ostern Way"


class TestUpdateInvoice:
    @pytest.mark.asyncio
    async def test_tax_change_recomputes_total(self, gateway, user_id):
        await _create(gateway, user_id)

        result = await invoice_service.update_invoice(gateway, user_id, "INV-001", tax_percentage=20)

        assert result.success is True
        [invoice] = gateway.rows(Entity.INVOICE)
        assert invoice["total_amount"] == 600.0

    @pytest.mark.asyncio
    async def test_replace_line_items(self, gateway, user_id):
        await _create(gateway, user_id)

        await invoice_service.update_invoice(
            gateway, user_id, "INV-001",
            line_items=[{"item_name": "Hosting", "unit_price": 20, "quantity": 12}],
        )

        items = gateway.rows(Entity.LINE_ITEM)
        assert [(i["item_name"], i["total_price"]) for i in items] == [("Hosting", 240.0)]
        assert gateway.rows(Entity.INVOICE)[0]["total_amount"] == 240.0

    @pytest.mark.asyncio
    async def test_remove_discount(self, gateway, user_id):
        await _create(gateway, user_id, discount_type="fixed", discount_value=100)
        assert gateway.rows(Entity.INVOICE)[0]["total_amount"] == 400.0

        await invoice_service.update_invoice(gateway, user_id, "INV-001", discount_type="none")

        [invoice] = gateway.rows(Entity.INVOICE)
        assert invoice["discount_type"] is None
        assert invoice["total_amount"] == 500.0

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, gateway, user_id):
        result = await invoice_service.update_invoice(gateway, user_id, "INV-404", notes="hi")

        assert result.success is False
        assert "INV-404" in result.message


class TestOtherInvoiceOperations:
    @pytest.mark.asyncio
    async def test_duplicate_gets_new_number_and_items(self, gateway, user_id):
        await _create(gateway, user_id)

        result = await invoice_service.duplicate_invoice(gateway, user_id, "INV-001")

        assert result.data["invoice_number"] == "INV-002"
        copy = [i for i in gateway.rows(Entity.INVOICE) if i["invoice_number"] == "INV-002"][0]
        assert copy["status"] == "draft"
        assert copy["total_amount"] == 500.0
        assert len([i for i in gateway.rows(Entity.LINE_ITEM) if i["invoice_id"] == copy["id"]]) == 1

    @pytest.mark.asyncio
    async def test_duplicate_failure_leaves_no_copy(self, gateway, user_id):
        await _create(gateway, user_id)
        gateway.fail(Entity.INVOICE, "update")

        result = await invoice_service.duplicate_invoice(gateway, user_id, "INV-001")

        assert result.success is False
        assert [i["invoice_number"] for i in gateway.rows(Entity.INVOICE)] == ["INV-001"]
        assert len(gateway.rows(Entity.LINE_ITEM)) == 1

    @pytest.mark.asyncio
    async def test_delete_removes_items(self, gateway, user_id):
        await _create(gateway, user_id)

        result = await invoice_service.delete_invoice(gateway, user_id, "INV-001")

        assert result.success is True
        assert gateway.rows(Entity.INVOICE) == []
        assert gateway.rows(Entity.LINE_ITEM) == []

    @pytest.mark.asyncio
    async def test_design_validation(self, gateway, user_id):
        await _create(gateway, user_id)

        bad = await invoice_service.update_invoice_design(gateway, user_id, "INV-001", design="neon")
        good = await invoice_service.update_invoice_design(
            gateway, user_id, "INV-001", design="Modern", accent_color="#10b981"
        )

        assert bad.success is False
        assert good.success is True
        [invoice] = gateway.rows(Entity.INVOICE)
        assert (invoice["invoice_design"], invoice["accent_color"]) == ("modern", "#10B981")

    @pytest.mark.asyncio
    async def test_design_options_list_every_design(self, gateway, user_id):
        gateway.seed(Entity.BUSINESS_SETTINGS, user_id=user_id, default_invoice_design="wave")

        result = await invoice_service.get_design_options(gateway, user_id)

        assert result.success is True
        assert [d["id"] for d in result.data["designs"]] == list(invoice_service.INVOICE_DESIGNS)
        assert [d["id"] for d in result.data["designs"] if d["is_default"]] == ["wave"]
        assert "Your default is Wave." in result.message

    @pytest.mark.asyncio
    async def test_color_options_are_valid_accent_colours(self, gateway, user_id):
        await _create(gateway, user_id)

        result = await invoice_service.get_color_options(gateway, user_id)

        assert result.data["default_accent_color"] == invoice_service.DEFAULT_ACCENT_COLOR
        for color in result.data["colors"]:
            applied = await invoice_service.update_invoice_design(
                gateway, user_id, "INV-001", accent_color=color["hex"]
            )
            assert applied.success is True

    @pytest.mark.asyncio
    async def test_search_by_client_and_status(self, gateway, user_id):
        await _create(gateway, user_id)
        await _create(gateway, user_id, client_name="Ana")

        result = await invoice_service.search_invoices(gateway, user_id, client_name="ana", status="draft")

        assert [inv["invoice_number"] for inv in result.data["invoices"]] == ["INV-002"]

    @pytest.mark.asyncio
    async def test_resolve_by_latest_and_client_name(self, gateway, user_id):
        await _create(gateway, user_id)
        await _create(gateway, user_id, client_name="Ana")

        latest = await invoice_service.get_invoice_details(gateway, user_id, "latest")
        by_client = await invoice_service.get_invoice_details(gateway, user_id, "Oliver's invoice")
        by_bare_number = await invoice_service.get_invoice_details(gateway, user_id, "#1")

        assert latest.data["invoice_number"] == "INV-002"
        assert by_client.data["invoice_number"] == "INV-001"
        assert by_bare_number.data["invoice_number"] == "INV-001"
        assert latest.attachments == []
