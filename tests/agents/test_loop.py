"""
Tests for the tool-calling loop state machine.
"""

import pytest

from conftest import FakeMonotonic, ScriptedModelClient, text_reply, tool_reply

from backend.agents.chat.executor import ToolExecutor
from backend.agents.chat.loop import (
    GENERIC_FAILURE,
    LoopState,
    ToolCallingLoop,
    parse_quick_invoice_request,
)
from backend.db.gateway import Entity
from backend.exceptions import ModelCallError

CREATE_MESSAGE = "Create invoice for Oliver, web design for 500"
TOOLS = [{"name": "create_invoice"}, {"name": "get_recent_invoices"}]


def _loop(client, gateway, memory, user_id, fast_retry, clock=None, max_steps=5):
    executor = ToolExecutor(gateway, user_id, memory)
    return ToolCallingLoop(
        client,
        executor,
        retry_policy=fast_retry,
        max_steps=max_steps,
        time_budget_seconds=24,
        clock=clock or FakeMonotonic(),
    )


async def _run(loop, message="How many invoices do I have?", forced_tool=None, history=None):
    return await loop.run(
        model="test-model",
        system_prompt="system",
        tools=TOOLS,
        message=message,
        history=history,
        forced_tool=forced_tool,
    )


class TestParseQuickInvoiceRequest:
    """Server-side extraction used when the model won't call create_invoice."""

    def test_client_item_and_price(self):
        args = parse_quick_invoice_request(CREATE_MESSAGE)

        assert args["client_name"] == "Oliver"
        assert args["line_items"] == [{"item_name": "Web design", "quantity": 1, "unit_price": 500.0}]

    def test_defaults_when_only_a_price(self):
        args = parse_quick_invoice_request("invoice 250")

        assert args["client_name"] == "Customer"
        assert args["line_items"][0]["item_name"] == "Service"
        assert args["line_items"][0]["unit_price"] == 250.0

    def test_thousands_separator(self):
        args = parse_quick_invoice_request("New invoice for Acme Corp, logo design 1,250.50")

        assert args["client_name"] == "Acme Corp"
        assert args["line_items"][0]["unit_price"] == 1250.5
        assert args["line_items"][0]["item_name"] == "Logo design"

    def test_no_price_returns_none(self):
        assert parse_quick_invoice_request("Create an invoice for Oliver") is None


class TestToolCallingLoop:
    """Transitions, bounds and degradation."""

    @pytest.mark.asyncio
    async def test_plain_answer(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([text_reply("You have no invoices yet.")])

        outcome = await _run(_loop(client, gateway, memory, user_id, fast_retry))

        assert outcome.content == "You have no invoices yet."
        assert outcome.state == LoopState.FINAL_ANSWER
        assert outcome.steps == 1

    @pytest.mark.asyncio
    async def test_history_window_and_user_turn(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([text_reply("ok")])
        history = [{"role": "user", "content": f"message {n}"} for n in range(15)]

        await _run(_loop(client, gateway, memory, user_id, fast_retry), history=history)

        turns = client.calls[0]["turns"]
        assert len(turns) == 11
        assert turns[0]["content"] == "message 5"
        assert turns[-1] == {"role": "user", "content": "How many invoices do I have?"}

    @pytest.mark.asyncio
    async def test_successful_mutation_short_circuits(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([
            tool_reply("create_invoice", client_name="Oliver", line_items=[{"item_name": "Web design", "unit_price": 500}]),
            text_reply("should never be requested"),
        ])

        outcome = await _run(_loop(client, gateway, memory, user_id, fast_retry), CREATE_MESSAGE)

        assert outcome.termination == "attachment"
        assert outcome.content.startswith("I've created invoice INV-001 for Oliver")
        assert len(outcome.attachments) == 1
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_tool_result_fed_back_to_model(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([tool_reply("get_recent_invoices"), text_reply("No invoices yet.")])

        outcome = await _run(_loop(client, gateway, memory, user_id, fast_retry))

        assert outcome.content == "No invoices yet."
        assert outcome.steps == 2
        roles = [turn["role"] for turn in client.calls[1]["turns"]]
        assert roles[-2:] == ["tool_call", "tool_result"]
        assert client.calls[1]["turns"][-1]["result"]["success"] is True

    @pytest.mark.asyncio
    async def test_retry_once_on_model_failure(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([ModelCallError("timeout"), text_reply("Done.")])

        outcome = await _run(_loop(client, gateway, memory, user_id, fast_retry))

        assert outcome.content == "Done."
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_second_failure_degrades_to_apology(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([ModelCallError("down"), ModelCallError("still down")])

        outcome = await _run(_loop(client, gateway, memory, user_id, fast_retry))

        assert outcome.state == LoopState.ERROR
        assert outcome.termination == "model_error"
        assert outcome.content == GENERIC_FAILURE

    @pytest.mark.asyncio
    async def test_failure_after_tool_returns_last_tool_message(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([
            tool_reply("get_recent_invoices"),
            ModelCallError("down"),
            ModelCallError("still down"),
        ])

        outcome = await _run(_loop(client, gateway, memory, user_id, fast_retry))

        assert outcome.termination == "model_error"
        assert outcome.content == "You don't have any invoices yet."

    @pytest.mark.asyncio
    async def test_forced_first_call(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([
            tool_reply("create_invoice", client_name="Oliver", line_items=[{"item_name": "Web design", "unit_price": 500}]),
        ])

        await _run(_loop(client, gateway, memory, user_id, fast_retry), CREATE_MESSAGE, forced_tool="create_invoice")

        assert client.calls[0]["forced_tool"] == "create_invoice"

    @pytest.mark.asyncio
    async def test_declined_forced_call_gets_one_nudge(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([
            text_reply("Sure, what should I put on it?"),
            tool_reply("create_invoice", client_name="Oliver", line_items=[{"item_name": "Web design", "unit_price": 500}]),
        ])

        outcome = await _run(
            _loop(client, gateway, memory, user_id, fast_retry), CREATE_MESSAGE, forced_tool="create_invoice"
        )

        assert outcome.termination == "attachment"
        nudge = client.calls[1]["turns"][-1]
        assert nudge["role"] == "system"
        assert "create_invoice" in nudge["content"]
        assert client.calls[1]["forced_tool"] == "create_invoice"

    @pytest.mark.asyncio
    async def test_second_refusal_uses_direct_extraction(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([text_reply("Sure!"), text_reply("Of course!")])

        outcome = await _run(
            _loop(client, gateway, memory, user_id, fast_retry), CREATE_MESSAGE, forced_tool="create_invoice"
        )

        assert outcome.termination == "direct_extraction"
        assert len(outcome.attachments) == 1
        items = gateway.rows(Entity.LINE_ITEM)
        assert [(i["item_name"], i["unit_price"]) for i in items] == [("Web design", 500.0)]
        clients = gateway.rows(Entity.CLIENT)
        assert [c["name"] for c in clients] == ["Oliver"]

    @pytest.mark.asyncio
    async def test_step_limit(self, gateway, memory, user_id, fast_retry):
        client = ScriptedModelClient([tool_reply("get_recent_invoices") for _ in range(6)])

        outcome = await _run(_loop(client, gateway, memory, user_id, fast_retry, max_steps=3))

        assert outcome.termination == "step_limit"
        assert outcome.steps == 3
        assert len(client.calls) == 3
        assert outcome.content == "You don't have any invoices yet."

    @pytest.mark.asyncio
    async def test_time_budget(self, gateway, memory, user_id, fast_retry):
        clock = FakeMonotonic()

        class SlowModelClient(ScriptedModelClient):
            async def generate(self, **kwargs):
                clock.advance(12)
                return await super().generate(**kwargs)

        client = SlowModelClient([tool_reply("get_recent_invoices") for _ in range(5)])

        outcome = await _run(_loop(client, gateway, memory, user_id, fast_retry, clock=clock))

        assert outcome.termination == "time_budget"
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_each_tool_request_runs_once(self, gateway, memory, user_id, fast_retry):
        executed = []

        class RecordingExecutor(ToolExecutor):
            async def execute(self, name, raw_args=None):
                executed.append((name, raw_args))
                return await super().execute(name, raw_args)

        client = ScriptedModelClient([
            tool_reply("get_recent_invoices", limit=3),
            text_reply("You have no invoices yet."),
        ])
        loop = ToolCallingLoop(
            client,
            RecordingExecutor(gateway, user_id, memory),
            retry_policy=fast_retry,
            max_steps=5,
            time_budget_seconds=24,
            clock=FakeMonotonic(),
        )

        outcome = await _run(loop)

        assert executed == [("get_recent_invoices", {"limit": 3})]
        assert outcome.termination == "final_answer"
        assert outcome.state == LoopState.FINAL_ANSWER
        assert len(outcome.tool_results) == 1
