"""
Chat assistant prompt templates.

System instructions are composed from small named modules. Each intent
maps to the modules it needs; `core` and `usage_limits` are always present.
The intent classifier has its own system prompt and a user prompt that
embeds the context pack.

Prompt Engineering Pattern:
- XML tags for structured content
- Modules are independent; order in MODULE_ORDER is the output order
"""

import json
from typing import Dict, Tuple

from backend.agents.chat.schemas import CLASSIFIER_OUTPUT_SCHEMA
from backend.agents.chat.types import ContextPack

# =============================================================================
# INSTRUCTION MODULES
# =============================================================================

PROMPT_MODULES: Dict[str, str] = {
    "core": """You are the invoicing assistant inside a mobile invoicing app.
<style>
- Reply in one to three short sentences. No markdown tables.
- Act first: when you have enough information, call the tool instead of asking for confirmation.
- Call exactly one tool at a time and wait for its result.
- Never invent invoice numbers, clients or amounts. Use tool results.
- If a tool fails, explain briefly what went wrong and what the user can do.
</style>""",

    "usage_limits": """<usage_limits>
Free accounts can create a limited number of invoices and estimates in total.
If a creation tool reports the limit is reached, tell the user and mention premium. Never retry.
</usage_limits>""",

    "invoice_creation": """<invoice_creation>
- To create an invoice you need a client name and at least one item with a price.
- Quantity defaults to 1. Capitalise item names ("web design" -> "Web design").
- Do not ask for dates, tax or payment methods; defaults from the business settings apply.
- Include client email, phone or address only if the user gave them.
</invoice_creation>""",

    "line_items": """<line_items>
- Use add_line_item, update_line_item or remove_line_item for single-item changes.
- Items can be referenced by position ("2nd item", "last") or by part of their name.
- Use update_invoice with line_items only when the user replaces the whole list.
- Totals are recalculated automatically; never compute them yourself.
</line_items>""",

    "client_management": """<client_management>
- Contact details (email, phone, address) belong to the client, not the invoice: use update_client_info.
- "his", "her", "their" refer to the client of the invoice being discussed.
- Use create_client to add a client on its own, duplicate_client to copy one under a new name
  and delete_client to remove one. A client with invoices or estimates cannot be deleted.
</client_management>""",

    "business_updates": """<business_updates>
- Business name, address, default tax rate, currency and numbering format are account settings:
  use update_business_settings. They apply to new invoices.
</business_updates>""",

    "payment_setup": """<payment_setup>
- A payment method can only be enabled on an invoice if it is set up on the account.
- If PayPal is not set up, ask for the PayPal email, then call setup_paypal_payments.
- If bank transfer is not set up, ask for the bank details, then call setup_bank_transfer_payments.
- Use update_payment_methods to turn methods on or off for a specific invoice.
</payment_setup>""",

    "context_awareness": """<context_awareness>
- "it", "this" and "that invoice" mean the active invoice shown in the context block.
- Omit invoice_identifier to act on the active invoice; do not ask the user to repeat it.
</context_awareness>""",

    "design_changes": """<design_changes>
- Available designs: clean, modern, classic, simple, wave.
- Accent colours are hex codes; convert colour names to a sensible hex value.
- When the user asks what is available, call get_design_options or get_color_options.
</design_changes>""",

    "status_management": """<status_management>
- "paid" without an amount means paid in full; with an amount, record it with mark_invoice_paid.
- "unpaid" clears payments and sets the invoice back to sent.
</status_management>""",

    "estimates": """<estimates>
- An estimate (quote) needs a client name and at least one item with a price, like an invoice.
- Estimates are valid for 30 days unless the user gives a date.
- "Turn it into an invoice" or "the client accepted" means convert_estimate_to_invoice.
- An estimate can only be converted once.
</estimates>""",

    "general_queries": """<general_queries>
- Answer questions about invoices, clients and settings by looking them up with the read-only tools.
- Keep answers factual and short.
</general_queries>""",
}

MODULE_ORDER: Tuple[str, ...] = tuple(PROMPT_MODULES)

ALWAYS_INCLUDED_MODULES: Tuple[str, ...] = ("core", "usage_limits")

INTENT_MODULES: Dict[str, Tuple[str, ...]] = {
    "create_invoice": ("invoice_creation", "client_management"),
    "manage_invoice": ("line_items", "client_management", "payment_setup", "context_awareness"),
    "line_item_updates": ("line_items", "context_awareness"),
    "client_management": ("client_management", "context_awareness"),
    "payment_setup": ("payment_setup", "context_awareness"),
    "update_business": ("business_updates",),
    "design_change": ("design_changes", "context_awareness"),
    "status_management": ("status_management", "context_awareness"),
    "estimate_management": ("estimates", "client_management"),
    "context_aware_update": ("context_awareness", "line_items", "client_management"),
    "general_query": ("general_queries",),
}


def build_context_block(context: ContextPack, today: str) -> str:
    """Currency, locale, date and active invoice, appended after the modules."""
    lines = [
        "<context>",
        f"Today: {today} ({context.timezone})",
        f"Currency: {context.currency}" + (f", locale {context.locale}" if context.locale else ""),
        f"Plan: {context.plan}",
    ]
    if context.active_invoice_number:
        lines.append(f"Active invoice: {context.active_invoice_number}")
    if context.last_client_name:
        lines.append(f"Last client: {context.last_client_name}")
    lines.append("</context>")
    return "\n".join(lines)


# =============================================================================
# INTENT CLASSIFIER
# =============================================================================

CLASSIFIER_SYSTEM_PROMPT = f"""You classify messages sent to an invoicing assistant.

<task>
Return ONLY a JSON object matching this schema:
{json.dumps(CLASSIFIER_OUTPUT_SCHEMA, indent=2)}
</task>

<intents>
- create_invoice: a new invoice for a client
- manage_invoice: several kinds of change to an existing invoice
- line_item_updates: add, change or remove items on an invoice
- client_management: client contact details
- payment_setup: PayPal, Stripe or bank transfer setup or toggling
- update_business: business profile or defaults
- design_change: invoice template or colour
- status_management: sent, paid, unpaid, overdue, cancelled
- estimate_management: create an estimate or quote, or convert one into an invoice
- context_aware_update: refers to "it"/"this" invoice from earlier turns
- general_query: questions, lookups and anything else
</intents>

<rules>
- required_tool_groups must be the smallest set that can do the job.
- suggested_model: budget for one simple action, mid for normal multi-field work, premium for complex multi-step requests.
- targets.invoice_number: only a number that appears in the context; otherwise null.
- needs_context=true only when a required value is missing and cannot be defaulted; list it in missing_fields.
</rules>"""


def build_classifier_user_prompt(message: str, context: ContextPack) -> str:
    """User turn for the classifier: compact context pack plus the message."""
    context_json = context.model_dump_json(
        include={
            "plan",
            "active_invoice_number",
            "last_shown_invoice_number",
            "last_action",
            "last_client_name",
            "payment_methods",
            "usage",
            "conversation_summary",
            "recent_invoice_numbers",
            "recent_intents",
        }
    )
    return f"""<context_pack>
{context_json}
</context_pack>

<message>
{message}
</message>"""


# Sent once when a forced first tool call was declined
STRICT_TOOL_NUDGE = (
    "You must call the {tool_name} tool now with the details from the user's message. "
    "Do not reply with text."
)
