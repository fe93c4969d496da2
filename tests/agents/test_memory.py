"""
Tests for the in-process conversation memory store.
"""

from datetime import timedelta

from backend.agents.chat.memory import InMemoryConversationStore, MemoryEntry


class TestInMemoryConversationStore:
    """TTL, overwrite and isolation behavior."""

    def test_entry_available_within_ttl(self, memory, clock):
        memory.set("user-a", MemoryEntry(action="created_invoice", invoice_number="INV-009"))

        clock.advance(minutes=29)

        entry = memory.get("user-a")
        assert entry is not None
        assert entry.invoice_number == "INV-009"
        assert entry.timestamp is not None

    def test_entry_expires_after_ttl(self, memory, clock):
        memory.set("user-a", MemoryEntry(action="created_invoice", invoice_number="INV-009"))

        clock.advance(minutes=31)

        assert memory.get("user-a") is None
        assert len(memory) == 0

    def test_last_writer_wins(self, memory):
        memory.set("user-a", MemoryEntry(action="created_invoice", invoice_number="INV-001"))
        memory.set("user-a", MemoryEntry(action="added_line_item", invoice_number="INV-002"))

        entry = memory.get("user-a")
        assert entry.action == "added_line_item"
        assert entry.invoice_number == "INV-002"

    def test_users_are_isolated(self, memory):
        memory.set("user-a", MemoryEntry(action="created_invoice", invoice_number="INV-001"))

        assert memory.get("user-b") is None

    def test_clear_removes_entry(self, memory):
        memory.set("user-a", MemoryEntry(action="created_invoice"))
        memory.clear("user-a")
        memory.clear("user-never-set")

        assert memory.get("user-a") is None

    def test_custom_ttl(self, clock):
        store = InMemoryConversationStore(ttl=timedelta(minutes=5), clock=clock)
        store.set("user-a", MemoryEntry(action="updated_design"))

        clock.advance(minutes=6)

        assert store.get("user-a") is None
