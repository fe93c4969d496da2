"""
Tool-Calling Loop Executor.

An explicit state machine around the model:

    awaiting_model_response -> tool_requested -> awaiting_model_response ...
                            -> final_answer
                            -> error

Bounds: at most `max_steps` model calls and `time_budget_seconds` of wall
clock. Each model call goes through the RetryPolicy (timeout plus one
retry). Whatever ends the loop, the user gets a sentence: the model's
answer, the last successful tool message, or a generic acknowledgement.

A successful tool result that carries an attachment ends the loop at once
with that tool's message.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from backend.agents.chat.executor import ToolExecutor
from backend.agents.chat.llm import ModelClient, RetryPolicy
from backend.agents.chat.patterns import PRICE_RE, find_prices
from backend.agents.chat.prompts import STRICT_TOOL_NUDGE
from backend.agents.chat.types import ConversationTurn, ModelReply, ToolCall
from backend.config import settings
from backend.exceptions import ModelCallError
from backend.schemas.chat import InvoiceAttachment, ToolResult

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10
STOP_MARGIN_SECONDS = 2.0

GENERIC_ACKNOWLEDGEMENT = "I completed the requested steps."
GENERIC_FAILURE = "Sorry, I couldn't finish that just now. Please try again in a moment."

_CLIENT_RE = re.compile(r"\b[Ff]or\s+([A-Z][A-Za-z'’-]+(?:\s+[A-Z][A-Za-z'’-]+){0,3})")
_FILLER_RE = re.compile(
    r"\b(create|make|new|an?|the|invoice|bill|for|at|of|please|draft|generate|send)\b", re.IGNORECASE
)


class LoopState(str, Enum):
    AWAITING_MODEL_RESPONSE = "awaiting_model_response"
    TOOL_REQUESTED = "tool_requested"
    FINAL_ANSWER = "final_answer"
    ERROR = "error"


@dataclass
class LoopOutcome:
    content: str
    state: LoopState
    termination: str  # final_answer | attachment | model_error | step_limit | time_budget | direct_extraction
    steps: int
    attachments: List[InvoiceAttachment] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)


def parse_quick_invoice_request(message: str) -> Optional[Dict[str, Any]]:
    """
    Minimal server-side extraction for a creation request the model would
    not act on: first price, a capitalised name after "for", and the words
    around the price as the item. Returns create_invoice arguments or None.
    """
    prices = find_prices(message)
    if not prices:
        return None

    client_match = _CLIENT_RE.search(message)
    client_name = client_match.group(1) if client_match else "Customer"

    item_name = None
    for segment in re.split(r",(?!\d{3})|[;\n]", message):
        if not PRICE_RE.search(segment):
            continue
        text = segment.replace(client_match.group(0), " ") if client_match else segment
        text = PRICE_RE.sub(" ", text)
        text = _FILLER_RE.sub(" ", text)
        text = " ".join(re.sub(r"[^\w\s'&/-]", " ", text).split())
        if text:
            item_name = text
            break

    item_name = item_name or "Service"
    return {
        "client_name": client_name,
        "line_items": [
            {"item_name": item_name[:1].upper() + item_name[1:], "quantity": 1, "unit_price": prices[0]}
        ],
    }


# Direct extraction is only defined for creation
DIRECT_EXTRACTORS: Dict[str, Callable[[str], Optional[Dict[str, Any]]]] = {
    "create_invoice": parse_quick_invoice_request,
}


class ToolCallingLoop:
    """
    Drives one request's conversation with the model.

    Args:
        model_client: Provider-neutral model client
        executor: Tool executor for this user/request
        retry_policy: Timeout/retry policy for each model call
        max_steps: Maximum model calls
        time_budget_seconds: Wall-clock budget for the whole loop
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        model_client: ModelClient,
        executor: ToolExecutor,
        retry_policy: Optional[RetryPolicy] = None,
        max_steps: Optional[int] = None,
        time_budget_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.model_client = model_client
        self.executor = executor
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.max_steps = max_steps if max_steps is not None else settings.CHAT_MAX_STEPS
        self.time_budget_seconds = (
            time_budget_seconds if time_budget_seconds is not None else settings.CHAT_TIME_BUDGET_SECONDS
        )
        self.clock = clock

    async def run(
        self,
        *,
        model: str,
        system_prompt: str,
        tools: List[Dict[str, Any]],
        message: str,
        history: Optional[List[ConversationTurn]] = None,
        forced_tool: Optional[str] = None,
    ) -> LoopOutcome:
        turns: List[ConversationTurn] = list(history or [])[-HISTORY_WINDOW:]
        turns.append({"role": "user", "content": message})

        started = self.clock()
        state = LoopState.AWAITING_MODEL_RESPONSE
        steps = 0
        pending_force = forced_tool
        nudged = False
        call: Optional[ToolCall] = None
        final_text: Optional[str] = None
        results: List[ToolResult] = []

        while True:
            if state == LoopState.AWAITING_MODEL_RESPONSE:
                if steps >= self.max_steps:
                    logger.warning(f"Tool loop hit the step limit ({self.max_steps})")
                    return self._degrade(state, "step_limit", steps, results)

                remaining = self.time_budget_seconds - (self.clock() - started)
                if remaining <= STOP_MARGIN_SECONDS:
                    logger.warning("Tool loop stopped: time budget nearly exhausted")
                    return self._degrade(state, "time_budget", steps, results)

                try:
                    reply: ModelReply = await self.retry_policy.run(
                        lambda: self.model_client.generate(
                            model=model,
                            system_prompt=system_prompt,
                            turns=list(turns),
                            tools=tools,
                            forced_tool=pending_force,
                        ),
                        budget_seconds=remaining - STOP_MARGIN_SECONDS,
                        label=f"model step {steps + 1}",
                    )
                except ModelCallError as e:
                    logger.error(f"Model call failed after retries: {e.message}")
                    state = LoopState.ERROR
                    continue

                steps += 1
                if reply.tool_call is not None:
                    call = reply.tool_call
                    state = LoopState.TOOL_REQUESTED
                elif pending_force and not results:
                    if not nudged:
                        logger.info(f"Model declined forced tool {pending_force}; nudging once")
                        nudged = True
                        turns.append({"role": "system", "content": STRICT_TOOL_NUDGE.format(tool_name=pending_force)})
                        continue
                    direct = await self._direct_extraction(pending_force, message, steps, results)
                    if direct is not None:
                        return direct
                    final_text = reply.text
                    state = LoopState.FINAL_ANSWER
                else:
                    final_text = reply.text
                    state = LoopState.FINAL_ANSWER

            elif state == LoopState.TOOL_REQUESTED:
                if call is None:
                    logger.error("Tool step reached without a pending tool call")
                    state = LoopState.ERROR
                    continue
                pending_force = None
                name, args = call.name, call.args
                call = None
                result = await self.executor.execute(name, args)
                results.append(result)

                turns.append({"role": "tool_call", "name": name, "args": args})
                turns.append({
                    "role": "tool_result",
                    "name": name,
                    "result": {"success": result.success, "message": result.message, "data": result.data},
                })

                if result.success and result.attachments:
                    return LoopOutcome(
                        content=result.message,
                        state=LoopState.TOOL_REQUESTED,
                        termination="attachment",
                        steps=steps,
                        attachments=list(result.attachments),
                        tool_results=results,
                    )
                state = LoopState.AWAITING_MODEL_RESPONSE

            elif state == LoopState.FINAL_ANSWER:
                content = final_text or self._best_message(results)
                return LoopOutcome(
                    content=content,
                    state=state,
                    termination="final_answer",
                    steps=steps,
                    tool_results=results,
                )

            else:
                if pending_force and not results:
                    direct = await self._direct_extraction(pending_force, message, steps, results)
                    if direct is not None:
                        return direct
                return self._degrade(LoopState.ERROR, "model_error", steps, results)

    async def _direct_extraction(
        self,
        tool_name: str,
        message: str,
        steps: int,
        results: List[ToolResult],
    ) -> Optional[LoopOutcome]:
        extractor = DIRECT_EXTRACTORS.get(tool_name)
        arguments = extractor(message) if extractor else None
        if arguments is None:
            return None

        logger.info(f"Executing {tool_name} from direct extraction")
        result = await self.executor.execute(tool_name, arguments)
        results.append(result)
        return LoopOutcome(
            content=result.message,
            state=LoopState.TOOL_REQUESTED,
            termination="direct_extraction",
            steps=steps,
            attachments=list(result.attachments) if result.success else [],
            tool_results=results,
        )

    @staticmethod
    def _best_message(results: List[ToolResult]) -> str:
        for result in reversed(results):
            if result.success:
                return result.message
        if results:
            return results[-1].message
        return GENERIC_FAILURE

    def _degrade(
        self,
        state: LoopState,
        termination: str,
        steps: int,
        results: List[ToolResult],
    ) -> LoopOutcome:
        successful = [r for r in results if r.success]
        if successful:
            content = successful[-1].message
        elif results:
            content = results[-1].message
        else:
            content = GENERIC_FAILURE if termination == "model_error" else GENERIC_ACKNOWLEDGEMENT
        return LoopOutcome(
            content=content,
            state=state,
            termination=termination,
            steps=steps,
            tool_results=results,
        )
