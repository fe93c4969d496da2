"""
Context Pack Builder.

Builds the per-request snapshot the classifier and prompts rely on:
plan tier, active and last-shown invoice, payment methods, usage vs the
free cap, and entities mentioned in recent turns. Reads only conversation
history, conversation memory and persisted rows; never calls the model.

Any lookup that fails degrades to its default (free plan, no payment
methods, no usage) instead of failing the request.
"""

import logging
from typing import Any, Awaitable, List, Optional, Sequence, TypeVar

from backend.agents.chat.memory import ConversationMemoryStore
from backend.agents.chat.patterns import EMAIL_RE, find_document_numbers, keyword_intents
from backend.agents.chat.types import ContextPack, PaymentMethodsContext, UsageContext
from backend.db.gateway import Entity, PersistenceGateway
from backend.exceptions import PersistenceError
from backend.schemas.chat import ChatMessage, UserContext
from backend.services.business_service import build_usage_status, count_created_items, plan_from_profile

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10
SUMMARY_MESSAGES = 2
SUMMARY_CHARS = 50

T = TypeVar("T")


async def _safe(label: str, awaitable: Awaitable[T], default: T) -> T:
    try:
        return await awaitable
    except PersistenceError as e:
        logger.warning(f"Context lookup '{label}' failed, using default: {e.message}")
        return default


def _unique(values: List[str]) -> List[str]:
    seen = set()
    ordered = []
    for value in values:
        key = value.upper()
        if key not in seen:
            seen.add(key)
            ordered.append(value)
    return ordered


def scan_history(history: Sequence[ChatMessage]) -> dict:
    """
    Scan recent turns, most recent first, for document numbers and emails.

    Returns a dict with recent_invoice_numbers, recent_emails and
    last_shown_invoice_number (latest number mentioned by the assistant).
    """
    numbers: List[str] = []
    emails: List[str] = []
    last_shown: Optional[str] = None

    for message in reversed(list(history)[-HISTORY_WINDOW:]):
        found = find_document_numbers(message.content)
        # Within one message the last mention is the most recent
        numbers.extend(reversed(found))
        emails.extend(reversed(EMAIL_RE.findall(message.content)))
        if last_shown is None and message.role == "assistant" and found:
            last_shown = found[-1]

    return {
        "recent_invoice_numbers": _unique(numbers)[:5],
        "recent_emails": _unique(emails)[:5],
        "last_shown_invoice_number": last_shown,
    }


def summarize_conversation(history: Sequence[ChatMessage]) -> str:
    user_turns = [m.content.strip() for m in history if m.role == "user" and m.content.strip()]
    if not user_turns:
        return "New conversation."

    snippets = []
    for text in user_turns[-SUMMARY_MESSAGES:]:
        snippets.append(text if len(text) <= SUMMARY_CHARS else text[:SUMMARY_CHARS].rstrip() + "...")
    return "Recent requests: " + " | ".join(snippets)


def recent_intents(history: Sequence[ChatMessage]) -> List[str]:
    intents: List[str] = []
    for message in list(history)[-HISTORY_WINDOW:]:
        if message.role == "user":
            intents.extend(keyword_intents(message.content))
    return list(dict.fromkeys(intents))


async def build_context_pack(
    gateway: PersistenceGateway,
    user_id: str,
    history: Sequence[ChatMessage],
    memory: ConversationMemoryStore,
    user_context: Optional[UserContext] = None,
) -> ContextPack:
    """
    Assemble the ContextPack for one request.

    Active invoice precedence: latest number mentioned in history, then the
    unexpired memory entry, then the user's most recently created invoice.
    """
    scanned = scan_history(history)
    entry = memory.get(user_id)

    profile: Optional[dict] = await _safe(
        "profile", gateway.find_one(Entity.USER, {"id": user_id}), None
    )
    plan = plan_from_profile(profile)
    items_created = await _safe("usage", count_created_items(gateway, user_id), 0)
    usage = build_usage_status(plan, items_created)

    options: dict = await _safe(
        "payment_options", gateway.find_one(Entity.PAYMENT_OPTIONS, {"user_id": user_id}), None
    ) or {}

    currency = user_context.currency if user_context and user_context.currency else None
    if not currency:
        business: dict = await _safe(
            "business_settings",
            gateway.find_one(Entity.BUSINESS_SETTINGS, {"user_id": user_id}, columns="currency_code"),
            None,
        ) or {}
        currency = business.get("currency_code") or "USD"

    active = None
    source = "none"
    if scanned["recent_invoice_numbers"]:
        active, source = scanned["recent_invoice_numbers"][0], "history"
    elif entry and entry.invoice_number:
        active, source = entry.invoice_number, "memory"
    else:
        latest: Any = await _safe(
            "latest_invoice",
            gateway.find_one(Entity.INVOICE, {"user_id": user_id}, order_by="created_at", columns="invoice_number"),
            None,
        )
        if latest and latest.get("invoice_number"):
            active, source = latest["invoice_number"], "recent"

    pack = ContextPack(
        user_id=user_id,
        plan=plan,
        timezone=(profile or {}).get("timezone") or "UTC",
        currency=currency.upper(),
        locale=user_context.locale if user_context else None,
        active_invoice_number=active,
        active_invoice_source=source,
        last_shown_invoice_number=scanned["last_shown_invoice_number"],
        last_action=entry.action if entry else None,
        last_client_name=entry.client_name if entry else None,
        payment_methods=PaymentMethodsContext(
            paypal_enabled=bool(options.get("paypal_enabled")),
            paypal_email=options.get("paypal_email"),
            stripe_enabled=bool(options.get("stripe_enabled")),
            bank_transfer_enabled=bool(options.get("bank_transfer_enabled")),
            has_bank_details=bool(options.get("bank_details")),
        ),
        usage=UsageContext(items_created=usage.items_created, limit=usage.limit, can_create=usage.can_create),
        conversation_summary=summarize_conversation(history[-HISTORY_WINDOW:]),
        recent_invoice_numbers=scanned["recent_invoice_numbers"],
        recent_emails=scanned["recent_emails"],
        recent_intents=recent_intents(history),
    )

    logger.debug(
        f"Context pack for user {user_id[:8]}: plan={pack.plan}, "
        f"active={pack.active_invoice_number} ({pack.active_invoice_source})"
    )
    return pack
