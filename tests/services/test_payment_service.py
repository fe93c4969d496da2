"""
Tests for payment method configuration and the account-level gate.
"""

import pytest

from backend.db.gateway import Entity
from backend.services import payment_service


@pytest.fixture
def invoice(gateway, user_id):
    return gateway.seed(
        Entity.INVOICE, user_id=user_id, invoice_number="INV-0007", status="draft",
        paypal_active=False, stripe_active=False, bank_account_active=False,
    )


class TestUpdatePaymentMethods:
    """Scenario: "Add PayPal to this invoice" when PayPal is not set up."""

    @pytest.mark.asyncio
    async def test_paypal_disabled_on_account_is_skipped(self, gateway, user_id, invoice):
        result = await payment_service.update_payment_methods(
            gateway, user_id, invoice_identifier="INV-0007", paypal=True
        )

        assert result.success is True
        assert result.attachments == []
        assert result.data["skipped"] == ["paypal"]
        assert "What's your PayPal email address?" in result.message
        assert gateway.get(Entity.INVOICE, invoice["id"])["paypal_active"] is False
        assert ("invoices", "update") not in gateway.calls

    @pytest.mark.asyncio
    async def test_enabled_method_is_activated(self, gateway, user_id, invoice):
        gateway.seed(Entity.PAYMENT_OPTIONS, user_id=user_id, paypal_enabled=True, paypal_email="me@shop.io")

        result = await payment_service.update_payment_methods(
            gateway, user_id, invoice_identifier="INV-0007", paypal=True
        )

        assert gateway.get(Entity.INVOICE, invoice["id"])["paypal_active"] is True
        assert result.message.startswith("I've enabled PayPal")
        assert len(result.attachments) == 1

    @pytest.mark.asyncio
    async def test_disabling_is_always_allowed(self, gateway, user_id, invoice):
        gateway.tables[Entity.INVOICE.value][0]["stripe_active"] = True

        result = await payment_service.update_payment_methods(
            gateway, user_id, invoice_identifier="INV-0007", stripe=False
        )

        assert gateway.get(Entity.INVOICE, invoice["id"])["stripe_active"] is False
        assert "disabled card payments (Stripe)" in result.message

    @pytest.mark.asyncio
    async def test_mixed_request_applies_allowed_part(self, gateway, user_id, invoice):
        gateway.seed(Entity.PAYMENT_OPTIONS, user_id=user_id, bank_transfer_enabled=True)

        result = await payment_service.update_payment_methods(
            gateway, user_id, invoice_identifier="INV-0007", paypal=True, bank_transfer=True
        )

        stored = gateway.get(Entity.INVOICE, invoice["id"])
        assert stored["bank_account_active"] is True
        assert stored["paypal_active"] is False
        assert result.data["changed"] == ["bank_account_active"]
        assert result.data["skipped"] == ["paypal"]

    @pytest.mark.asyncio
    async def test_nothing_requested(self, gateway, user_id, invoice):
        result = await payment_service.update_payment_methods(gateway, user_id, invoice_identifier="INV-0007")

        assert result.success is False


class TestAccountSetup:
    @pytest.mark.asyncio
    async def test_setup_paypal_enables_account_and_invoice(self, gateway, user_id, invoice):
        result = await payment_service.setup_paypal_payments(
            gateway, user_id, " me@shop.io ", invoice_identifier="INV-0007"
        )

        options = gateway.rows(Entity.PAYMENT_OPTIONS)
        assert result.success is True
        assert options[0]["paypal_enabled"] is True
        assert options[0]["paypal_email"] == "me@shop.io"
        assert gateway.get(Entity.INVOICE, invoice["id"])["paypal_active"] is True
        assert result.data["invoice_number"] == "INV-0007"

    @pytest.mark.asyncio
    async def test_setup_paypal_rejects_bad_email(self, gateway, user_id):
        result = await payment_service.setup_paypal_payments(gateway, user_id, "not-an-email")

        assert result.success is False
        assert gateway.rows(Entity.PAYMENT_OPTIONS) == []

    @pytest.mark.asyncio
    async def test_setup_updates_existing_options_row(self, gateway, user_id):
        gateway.seed(Entity.PAYMENT_OPTIONS, user_id=user_id, stripe_enabled=True)

        await payment_service.setup_bank_transfer_payments(gateway, user_id, "Nordbank 1234 5678")

        options = gateway.rows(Entity.PAYMENT_OPTIONS)
        assert len(options) == 1
        assert options[0]["stripe_enabled"] is True
        assert options[0]["bank_transfer_enabled"] is True

    @pytest.mark.asyncio
    async def test_bank_details_too_short(self, gateway, user_id):
        result = await payment_service.setup_bank_transfer_payments(gateway, user_id, "abc")

        assert result.success is False

    @pytest.mark.asyncio
    async def test_get_payment_options(self, gateway, user_id):
        empty = await payment_service.get_payment_options(gateway, user_id)
        gateway.seed(Entity.PAYMENT_OPTIONS, user_id=user_id, paypal_enabled=True, paypal_email="me@shop.io")
        configured = await payment_service.get_payment_options(gateway, user_id)

        assert "No payment methods" in empty.message
        assert configured.message == "Enabled payment methods: PayPal."
        assert configured.data["paypal_email"] == "me@shop.io"
