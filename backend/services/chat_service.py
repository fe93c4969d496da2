"""
Chat orchestration service.

Handles one user message end to end:

1. Small-talk fast path
2. Context pack + intent classification
3. Free-plan creation gate
4. One targeted question when required context is missing
5. Prompt/tool assembly, model selection, preferred first tool
6. Tool-calling loop, then mapping into a ChatResponse

No step raises for model trouble: the classifier falls back and the loop
degrades. Persistence failures inside tools become failed ToolResults.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from backend.agents.chat.assembler import assemble
from backend.agents.chat.classifier import classify, dominant_tool, select_model
from backend.agents.chat.context import HISTORY_WINDOW, build_context_pack
from backend.agents.chat.executor import ToolExecutor
from backend.agents.chat.llm import ModelClient, RetryPolicy
from backend.agents.chat.loop import ToolCallingLoop
from backend.agents.chat.memory import ConversationMemoryStore
from backend.agents.chat.patterns import SMALL_TALK_RE
from backend.agents.chat.types import ContextPack, ConversationTurn, IntentClassification
from backend.db.gateway import PersistenceGateway
from backend.schemas.chat import ChatMessage, ChatRequest, ChatResponse, InvoiceAttachment, ThreadInfo
from backend.services.business_service import build_usage_status, usage_limit_message

logger = logging.getLogger(__name__)

GREETING = "Hi! How can I help you today?"

CREATION_INTENTS = {"create_invoice", "estimate_management"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def history_to_turns(history: List[ChatMessage]) -> List[ConversationTurn]:
    """Prior messages as model turns (last HISTORY_WINDOW, empty ones skipped)."""
    turns: List[ConversationTurn] = []
    for message in history[-HISTORY_WINDOW:]:
        if message.content.strip():
            turns.append({"role": message.role, "content": message.content})
    return turns


def clarifying_question(classification: IntentClassification, context: ContextPack) -> str:
    """Exactly one follow-up question for the first missing field."""
    missing = classification.missing_fields[0] if classification.missing_fields else None
    target = classification.targets.invoice_number or context.active_invoice_number

    if missing == "paypal_email":
        prefix = "PayPal isn't set up on your account yet. "
        if target:
            return f"{prefix}I'll add PayPal to invoice {target}. What's your PayPal email address?"
        return f"{prefix}What's your PayPal email address?"

    if missing == "invoice_reference":
        return "Which invoice do you mean? You can give me its number (like INV-001) or the client's name."

    if missing:
        field = missing.replace("_", " ")
        return f"Could you tell me the {field}?"

    return "Could you give me a bit more detail about what you'd like to do?"


def _build_response(
    request: ChatRequest,
    user_id: str,
    content: str,
    attachments: Optional[List[InvoiceAttachment]] = None,
) -> ChatResponse:
    attachments = attachments or []
    thread_id = request.thread_id or f"chat-{int(time.time() * 1000)}"
    messages = [
        ChatMessage(id=str(uuid.uuid4()), role="user", content=request.message, created_at=_now_iso()),
        ChatMessage(
            id=str(uuid.uuid4()),
            role="assistant",
            content=content,
            created_at=_now_iso(),
            attachments=attachments,
        ),
    ]
    return ChatResponse(
        success=True,
        messages=messages,
        thread=ThreadInfo(id=thread_id, user_id=user_id),
        attachments=attachments,
    )


async def process_chat_message(
    request: ChatRequest,
    user_id: str,
    gateway: PersistenceGateway,
    model_client: ModelClient,
    memory: ConversationMemoryStore,
    retry_policy: Optional[RetryPolicy] = None,
) -> ChatResponse:
    """
    Answer one chat message.

    Args:
        request: Validated chat request
        user_id: Authenticated user id (already checked against the body)
        gateway: RLS-scoped persistence gateway
        model_client: Language model client
        memory: Process-wide conversation memory
        retry_policy: Optional override for model-call retries

    Returns:
        ChatResponse with the user turn, the assistant turn and any attachments
    """
    message = request.message.strip()

    if SMALL_TALK_RE.match(message):
        logger.info(f"Small-talk fast path for user {user_id[:8]}")
        return _build_response(request, user_id, GREETING)

    context = await build_context_pack(gateway, user_id, request.history, memory, request.user_context)
    classification = await classify(message, context, model_client, retry_policy)

    if CREATION_INTENTS.intersection(classification.intents) and not context.usage.can_create:
        logger.info(f"Free-plan limit reached for user {user_id[:8]}")
        usage = build_usage_status(context.plan, context.usage.items_created)
        return _build_response(request, user_id, usage_limit_message(usage))

    if classification.needs_context:
        logger.info(f"Asking for missing context: {classification.missing_fields}")
        return _build_response(request, user_id, clarifying_question(classification, context))

    assembled = assemble(classification.intents, classification.required_tool_groups, context)
    model = select_model(classification)
    forced_tool = dominant_tool(classification, assembled.tool_names)

    executor = ToolExecutor(
        gateway,
        user_id,
        memory,
        allowed_tools=assembled.tool_names,
        active_invoice_number=classification.targets.invoice_number or context.active_invoice_number,
    )
    loop = ToolCallingLoop(model_client, executor, retry_policy=retry_policy)

    logger.info(
        f"Running tool loop for user {user_id[:8]}: model={model}, "
        f"tools={len(assembled.tools)}, modules={list(assembled.modules)}, forced={forced_tool}"
    )
    outcome = await loop.run(
        model=model,
        system_prompt=assembled.system_prompt,
        tools=assembled.tools,
        message=message,
        history=history_to_turns(request.history),
        forced_tool=forced_tool,
    )
    logger.info(f"Tool loop finished: {outcome.termination} after {outcome.steps} step(s)")

    return _build_response(request, user_id, outcome.content, outcome.attachments)
