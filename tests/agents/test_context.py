"""
Tests for the context pack builder.
"""

import pytest

from backend.agents.chat.context import build_context_pack, scan_history, summarize_conversation
from backend.agents.chat.memory import MemoryEntry
from backend.db.gateway import Entity
from backend.schemas.chat import ChatMessage, UserContext


def _msg(role: str, content: str) -> ChatMessage:
    return ChatMessage(role=role, content=content)


class TestScanHistory:
    """Entity extraction from recent turns."""

    def test_most_recent_number_first(self):
        history = [
            _msg("user", "Create an invoice for Ana"),
            _msg("assistant", "I've created invoice INV-008 for Ana."),
            _msg("user", "And one for Oliver"),
            _msg("assistant", "I've created invoice INV-009 for Oliver."),
        ]

        scanned = scan_history(history)

        assert scanned["recent_invoice_numbers"][:2] == ["INV-009", "INV-008"]
        assert scanned["last_shown_invoice_number"] == "INV-009"

    def test_collects_emails(self):
        scanned = scan_history([_msg("user", "Send it to ana@example.com please")])

        assert scanned["recent_emails"] == ["ana@example.com"]

    def test_empty_history(self):
        scanned = scan_history([])

        assert scanned["recent_invoice_numbers"] == []
        assert scanned["last_shown_invoice_number"] is None


class TestSummarizeConversation:
    def test_new_conversation(self):
        assert summarize_conversation([]) == "New conversation."

    def test_truncates_long_requests(self):
        summary = summarize_conversation([_msg("user", "x" * 80)])

        assert summary.startswith("Recent requests: ")
        assert summary.endswith("...")


class TestBuildContextPack:
    """Active invoice precedence and graceful degradation."""

    @pytest.mark.asyncio
    async def test_history_wins_for_active_invoice(self, gateway, memory, user_id):
        memory.set(user_id, MemoryEntry(action="created_invoice", invoice_number="INV-003"))
        history = [_msg("assistant", "I've created invoice INV-009 for Oliver.")]

        pack = await build_context_pack(gateway, user_id, history, memory)

        assert pack.active_invoice_number == "INV-009"
        assert pack.active_invoice_source == "history"
        assert pack.last_action == "created_invoice"

    @pytest.mark.asyncio
    async def test_memory_used_when_history_is_silent(self, gateway, memory, user_id):
        memory.set(user_id, MemoryEntry(action="added_line_item", invoice_number="INV-004", client_name="Ana"))

        pack = await build_context_pack(gateway, user_id, [_msg("user", "update it")], memory)

        assert pack.active_invoice_number == "INV-004"
        assert pack.active_invoice_source == "memory"
        assert pack.last_client_name == "Ana"

    @pytest.mark.asyncio
    async def test_falls_back_to_latest_invoice(self, gateway, memory, user_id):
        gateway.seed(Entity.INVOICE, user_id=user_id, invoice_number="INV-001")
        gateway.seed(Entity.INVOICE, user_id=user_id, invoice_number="INV-002")

        pack = await build_context_pack(gateway, user_id, [], memory)

        assert pack.active_invoice_number == "INV-002"
        assert pack.active_invoice_source == "recent"

    @pytest.mark.asyncio
    async def test_plan_usage_and_payment_methods(self, gateway, memory, user_id):
        gateway.seed(Entity.USER, id=user_id, subscription_tier="free", timezone="Europe/London")
        gateway.seed(Entity.PAYMENT_OPTIONS, user_id=user_id, paypal_enabled=True, paypal_email="me@shop.com")
        gateway.seed(Entity.BUSINESS_SETTINGS, user_id=user_id, currency_code="gbp")
        for n in range(2):
            gateway.seed(Entity.INVOICE, user_id=user_id, invoice_number=f"INV-00{n + 1}")
        gateway.seed(Entity.ESTIMATE, user_id=user_id, estimate_number="EST-003")

        pack = await build_context_pack(gateway, user_id, [], memory)

        assert pack.plan == "free"
        assert pack.timezone == "Europe/London"
        assert pack.currency == "GBP"
        assert pack.usage.items_created == 3
        assert pack.usage.can_create is False
        assert pack.payment_methods.paypal_enabled is True
        assert pack.payment_methods.paypal_email == "me@shop.com"

    @pytest.mark.asyncio
    async def test_user_context_currency_overrides_settings(self, gateway, memory, user_id):
        gateway.seed(Entity.BUSINESS_SETTINGS, user_id=user_id, currency_code="GBP")

        pack = await build_context_pack(
            gateway, user_id, [], memory, UserContext(currency="eur", locale="de-DE")
        )

        assert pack.currency == "EUR"
        assert pack.locale == "de-DE"

    @pytest.mark.asyncio
    async def test_lookup_failures_degrade_to_defaults(self, gateway, memory, user_id):
        gateway.fail(Entity.USER, "find")
        gateway.fail(Entity.PAYMENT_OPTIONS, "find")
        gateway.fail(Entity.INVOICE, "count")

        pack = await build_context_pack(gateway, user_id, [], memory)

        assert pack.plan == "free"
        assert pack.payment_methods.paypal_enabled is False
        assert pack.usage.items_created == 0
        assert pack.currency == "USD"
