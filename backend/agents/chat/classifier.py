"""
Intent Classifier.

classify() maps (message, context pack) to an IntentClassification in one
of three ways:

1. Rule: an unambiguous creation request ("invoice Oliver 500 for web
   design") skips the model entirely.
2. Model: one JSON call on the budget tier, validated with Pydantic.
3. Fallback: if the model output is unusable, a conservative
   classification with every tool group and the premium tier.

Every result is normalised: intent-implied tool groups are added, targets
are limited to invoices the context knows about, and pronoun references
are tied to the active invoice or turned into a question.
"""

import json
import logging
from typing import List, Optional

from pydantic import ValidationError

from backend.agents.chat.llm import ModelClient, RetryPolicy
from backend.agents.chat.patterns import (
    CREATION_VERB_RE,
    DOCUMENT_KEYWORD_RE,
    EDIT_VERB_RE,
    EMAIL_RE,
    ESTIMATE_KEYWORD_RE,
    INVOICE_OPENING_RE,
    PAYPAL_RE,
    POSSESSIVE_DOCUMENT_RE,
    PRONOUN_RE,
    STATUS_KEYWORD_RE,
    find_document_numbers,
    find_prices,
    keyword_intents,
)
from backend.agents.chat.prompts import CLASSIFIER_SYSTEM_PROMPT, build_classifier_user_prompt
from backend.agents.chat.types import (
    INTENT_TOOL_GROUPS,
    MUTATING_INTENTS,
    TOOL_GROUPS,
    ClassificationTargets,
    ContextPack,
    IntentClassification,
)
from backend.config import settings
from backend.exceptions import ModelCallError

logger = logging.getLogger(__name__)

TIER_ORDER = ("budget", "mid", "premium")

# Intents whose first action can be forced when the classifier is confident
DOMINANT_INTENT_TOOLS = {"create_invoice": "create_invoice"}
FORCE_CONFIDENCE = 0.7


def rule_based_classification(message: str) -> Optional[IntentClassification]:
    """
    Creation shortcut: a creation verb (or an "Invoice <Name> ..." opening),
    a document keyword and a price, with no sign of an edit to an existing
    invoice (number, pronoun, status word, edit verb or "Oliver's invoice")
    and no mention of an estimate.
    """
    if not DOCUMENT_KEYWORD_RE.search(message):
        return None
    if not (CREATION_VERB_RE.search(message) or INVOICE_OPENING_RE.match(message)):
        return None
    if EDIT_VERB_RE.search(message) or POSSESSIVE_DOCUMENT_RE.search(message):
        return None
    if ESTIMATE_KEYWORD_RE.search(message):
        return None
    if find_document_numbers(message) or PRONOUN_RE.search(message) or STATUS_KEYWORD_RE.search(message):
        return None
    if not find_prices(message):
        return None

    return IntentClassification(
        intents=["create_invoice"],
        complexity="simple",
        required_tool_groups=["invoice_core", "client_ops"],
        requires_sequencing=False,
        suggested_model="budget",
        scope="invoice",
        confidence=0.9,
        rationale="Creation keyword with a price",
    ).with_source("rule")


def fallback_classification(message: str, context: ContextPack) -> IntentClassification:
    """Superset classification used when the model output cannot be trusted."""
    intents = keyword_intents(message) or ["general_query"]
    return IntentClassification(
        intents=intents,
        complexity="complex",
        required_tool_groups=list(TOOL_GROUPS),
        requires_sequencing=True,
        suggested_model="premium",
        scope="unknown",
        targets=ClassificationTargets(invoice_number=context.active_invoice_number),
        confidence=0.3,
        rationale="Fallback classification",
    ).with_source("fallback")


def normalize_classification(
    classification: IntentClassification,
    message: str,
    context: ContextPack,
) -> IntentClassification:
    """Enforce the classification invariants against the context pack."""
    result = classification.model_copy(deep=True)
    intents: List[str] = list(dict.fromkeys(result.intents))

    # Pronoun tie-break ("update it", "enable PayPal on this")
    mentions_number = bool(find_document_numbers(message))
    refers_to_existing = any(i in MUTATING_INTENTS and i != "create_invoice" for i in intents)
    if PRONOUN_RE.search(message) and not mentions_number and refers_to_existing:
        if context.active_invoice_number:
            result.targets.invoice_number = context.active_invoice_number
            if "context_aware_update" not in intents:
                intents.append("context_aware_update")
        else:
            result.needs_context = True
            if "invoice_reference" not in result.missing_fields:
                result.missing_fields.append("invoice_reference")

    target = result.targets.invoice_number
    if target and not context.is_resolvable(target):
        explicit = [n for n in find_document_numbers(message) if n.upper() == target.upper()]
        if not explicit:
            result.targets.invoice_number = None

    # PayPal requested but no email anywhere
    if (
        "payment_setup" in intents
        and PAYPAL_RE.search(message)
        and not context.payment_methods.paypal_enabled
        and not context.payment_methods.paypal_email
        and not EMAIL_RE.search(message)
        and "paypal_email" not in result.missing_fields
    ):
        result.needs_context = True
        result.missing_fields.append("paypal_email")

    groups = list(dict.fromkeys(result.required_tool_groups))
    for intent in intents:
        for group in INTENT_TOOL_GROUPS.get(intent, ()):
            if group not in groups:
                groups.append(group)
    if any(intent in MUTATING_INTENTS for intent in intents) and not groups:
        groups = list(TOOL_GROUPS)

    if result.complexity == "complex" and result.suggested_model == "budget":
        result.suggested_model = "mid"

    result.intents = intents
    result.required_tool_groups = [g for g in TOOL_GROUPS if g in groups]
    return result.with_source(classification.source)


def dominant_tool(classification: IntentClassification, available: List[str]) -> Optional[str]:
    """Tool to force on the first step, if one intent clearly dominates."""
    if classification.confidence < FORCE_CONFIDENCE:
        return None
    primary = [i for i in classification.intents if i != "context_aware_update"]
    if len(primary) != 1:
        return None
    tool = DOMINANT_INTENT_TOOLS.get(primary[0])
    return tool if tool in available else None


def select_model(classification: IntentClassification) -> str:
    return settings.model_for_tier(classification.suggested_model)


async def classify(
    message: str,
    context: ContextPack,
    model_client: ModelClient,
    retry_policy: Optional[RetryPolicy] = None,
) -> IntentClassification:
    """
    Classify a user message.

    Never raises: model failures and malformed output both produce the
    conservative fallback.
    """
    shortcut = rule_based_classification(message)
    if shortcut is not None:
        logger.info("Intent classified by rule: create_invoice")
        return normalize_classification(shortcut, message, context)

    policy = retry_policy or RetryPolicy.from_settings()
    prompt = build_classifier_user_prompt(message, context)

    try:
        raw = await policy.run(
            lambda: model_client.generate_json(
                model=settings.CHAT_MODEL_BUDGET,
                system_prompt=CLASSIFIER_SYSTEM_PROMPT,
                prompt=prompt,
                response_schema=IntentClassification,
            ),
            label="intent classification",
        )
        classification = IntentClassification.model_validate(json.loads(raw))
    except ModelCallError as e:
        logger.warning(f"Intent classification call failed, using fallback: {e.message}")
        return normalize_classification(fallback_classification(message, context), message, context)
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Intent classification output invalid, using fallback: {type(e).__name__}")
        return normalize_classification(fallback_classification(message, context), message, context)

    normalized = normalize_classification(classification, message, context)
    logger.info(
        f"Intent classified by model: intents={normalized.intents}, "
        f"groups={normalized.required_tool_groups}, tier={normalized.suggested_model}"
    )
    return normalized
