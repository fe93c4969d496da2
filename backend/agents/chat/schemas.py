"""
Chat assistant JSON schemas.

TOOL_CATALOG declares every callable operation (name, tool group, and an
OpenAPI-compatible parameter schema sent to Gemini as a function
declaration). The argument models in tool_args.py validate the same shapes
server-side before dispatch.

CLASSIFIER_OUTPUT_SCHEMA documents the JSON the intent classifier must
return; it mirrors IntentClassification in types.py.
"""

from typing import Any, Dict, List

from backend.agents.chat.types import INTENTS, TOOL_GROUPS

_INVOICE_IDENTIFIER = {
    "type": "string",
    "description": (
        "Invoice number (e.g. INV-004), client name, or 'latest'. "
        "Omit to use the invoice currently being discussed."
    ),
}

_DATE = {"type": "string", "description": "Date in YYYY-MM-DD format"}

_LINE_ITEM = {
    "type": "object",
    "properties": {
        "item_name": {"type": "string", "description": "Short item name, e.g. 'Web design'"},
        "item_description": {"type": "string", "description": "Optional longer description"},
        "quantity": {"type": "number", "description": "Quantity (defaults to 1)"},
        "unit_price": {"type": "number", "description": "Price per unit"},
    },
    "required": ["item_name", "unit_price"],
}


def _declaration(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    # Gemini rejects object parameters without properties
    if not properties:
        return {"name": name, "description": description}
    return {
        "name": name,
        "description": description,
        "parameters": {"type": "object", "properties": properties, "required": required},
    }


# Ordered; group order and tool order are preserved in assembled tool lists
TOOL_CATALOG: Dict[str, Dict[str, Any]] = {
    # invoice_core
    "create_invoice": {
        "group": "invoice_core",
        "declaration": _declaration(
            "create_invoice",
            "Create a new invoice for a client with one or more line items. "
            "Finds the client by name or creates it.",
            {
                "client_name": {"type": "string", "description": "Client's name"},
                "client_email": {"type": "string"},
                "client_phone": {"type": "string"},
                "client_address": {"type": "string"},
                "line_items": {"type": "array", "items": _LINE_ITEM},
                "invoice_date": _DATE,
                "due_date": _DATE,
                "tax_percentage": {"type": "number", "description": "Overrides the default tax rate"},
                "discount_type": {"type": "string", "enum": ["percentage", "fixed"]},
                "discount_value": {"type": "number"},
                "notes": {"type": "string"},
            },
            ["client_name", "line_items"],
        ),
    },
    "get_invoice_details": {
        "group": "invoice_core",
        "declaration": _declaration(
            "get_invoice_details",
            "Look up an invoice's status, items and totals.",
            {"invoice_identifier": _INVOICE_IDENTIFIER},
            [],
        ),
    },
    "update_invoice": {
        "group": "invoice_core",
        "declaration": _declaration(
            "update_invoice",
            "Change invoice details: dates, notes, tax, discount, client, or replace ALL line items.",
            {
                "invoice_identifier": _INVOICE_IDENTIFIER,
                "client_name": {"type": "string", "description": "Move the invoice to this client"},
                "invoice_date": _DATE,
                "due_date": _DATE,
                "notes": {"type": "string"},
                "tax_percentage": {"type": "number"},
                "discount_type": {"type": "string", "enum": ["percentage", "fixed", "none"]},
                "discount_value": {"type": "number"},
                "line_items": {
                    "type": "array",
                    "items": _LINE_ITEM,
                    "description": "Complete new list of items (replaces existing ones)",
                },
            },
            [],
        ),
    },
    "duplicate_invoice": {
        "group": "invoice_core",
        "declaration": _declaration(
            "duplicate_invoice",
            "Copy an existing invoice into a new draft, optionally for another client.",
            {"invoice_identifier": _INVOICE_IDENTIFIER, "client_name": {"type": "string"}},
            [],
        ),
    },
    "delete_invoice": {
        "group": "invoice_core",
        "declaration": _declaration(
            "delete_invoice",
            "Permanently delete an invoice. Only when the user explicitly asks to delete.",
            {"invoice_identifier": _INVOICE_IDENTIFIER},
            ["invoice_identifier"],
        ),
    },
    # line_items
    "add_line_item": {
        "group": "line_items",
        "declaration": _declaration(
            "add_line_item",
            "Add one item to an existing invoice.",
            {
                "invoice_identifier": _INVOICE_IDENTIFIER,
                "item_name": {"type": "string"},
                "item_description": {"type": "string"},
                "quantity": {"type": "number"},
                "unit_price": {"type": "number"},
                "discount_type": {"type": "string", "enum": ["percentage", "fixed"]},
                "discount_value": {"type": "number"},
            },
            ["item_name", "unit_price"],
        ),
    },
    "update_line_item": {
        "group": "line_items",
        "declaration": _declaration(
            "update_line_item",
            "Change the name, quantity or price of one item on an invoice.",
            {
                "invoice_identifier": _INVOICE_IDENTIFIER,
                "item_identifier": {
                    "type": "string",
                    "description": "Item position ('2', '2nd', 'last') or part of its name",
                },
                "item_name": {"type": "string"},
                "item_description": {"type": "string"},
                "quantity": {"type": "number"},
                "unit_price": {"type": "number"},
            },
            ["item_identifier"],
        ),
    },
    "remove_line_item": {
        "group": "line_items",
        "declaration": _declaration(
            "remove_line_item",
            "Remove one item from an invoice.",
            {
                "invoice_identifier": _INVOICE_IDENTIFIER,
                "item_identifier": {
                    "type": "string",
                    "description": "Item position ('2', '2nd', 'last') or part of its name",
                },
            },
            ["item_identifier"],
        ),
    },
    # client_ops
    "create_client": {
        "group": "client_ops",
        "declaration": _declaration(
            "create_client",
            "Add a client without creating an invoice. If a client with the same name exists, "
            "the new contact details are saved on it instead.",
            {
                "name": {"type": "string", "description": "Client's name"},
                "email": {"type": "string"},
                "phone": {"type": "string"},
                "address": {"type": "string"},
                "tax_number": {"type": "string"},
            },
            ["name"],
        ),
    },
    "search_clients": {
        "group": "client_ops",
        "declaration": _declaration(
            "search_clients",
            "Find clients whose name contains the query.",
            {"query": {"type": "string"}},
            ["query"],
        ),
    },
    "update_client_info": {
        "group": "client_ops",
        "declaration": _declaration(
            "update_client_info",
            "Update a client's name, email, phone, address or tax number. The client is found "
            "through the invoice being discussed, or by client_name.",
            {
                "invoice_identifier": _INVOICE_IDENTIFIER,
                "client_name": {"type": "string", "description": "Current name of the client to update"},
                "name": {"type": "string", "description": "New name"},
                "email": {"type": "string"},
                "phone": {"type": "string"},
                "address": {"type": "string"},
                "tax_number": {"type": "string"},
            },
            [],
        ),
    },
    "get_client_outstanding_amount": {
        "group": "client_ops",
        "declaration": _declaration(
            "get_client_outstanding_amount",
            "How much a client still owes across open invoices.",
            {"client_name": {"type": "string"}},
            ["client_name"],
        ),
    },
    "duplicate_client": {
        "group": "client_ops",
        "declaration": _declaration(
            "duplicate_client",
            "Create a new client with the same contact details as an existing one.",
            {
                "client_name": {"type": "string", "description": "Existing client to copy"},
                "new_name": {"type": "string", "description": "Name of the new client"},
            },
            ["client_name", "new_name"],
        ),
    },
    "delete_client": {
        "group": "client_ops",
        "declaration": _declaration(
            "delete_client",
            "Delete a client. Refused while the client still has invoices or estimates.",
            {"client_name": {"type": "string"}},
            ["client_name"],
        ),
    },
    # business_ops
    "get_business_settings": {
        "group": "business_ops",
        "declaration": _declaration(
            "get_business_settings",
            "Read the user's business profile and invoice defaults.",
            {},
            [],
        ),
    },
    "update_business_settings": {
        "group": "business_ops",
        "declaration": _declaration(
            "update_business_settings",
            "Update the business profile or defaults used for new invoices.",
            {
                "business_name": {"type": "string"},
                "business_email": {"type": "string"},
                "business_phone": {"type": "string"},
                "business_address": {"type": "string"},
                "default_tax_rate": {"type": "number", "description": "Percentage, e.g. 20"},
                "auto_apply_tax": {"type": "boolean"},
                "currency_code": {"type": "string", "description": "ISO code, e.g. USD"},
                "default_payment_terms_days": {"type": "integer"},
                "invoice_reference_format": {"type": "string", "description": "e.g. INV-001 or INV-YYYY-001"},
            },
            [],
        ),
    },
    # payment_ops
    "get_payment_options": {
        "group": "payment_ops",
        "declaration": _declaration(
            "get_payment_options",
            "Show which payment methods are enabled on the account.",
            {},
            [],
        ),
    },
    "setup_paypal_payments": {
        "group": "payment_ops",
        "declaration": _declaration(
            "setup_paypal_payments",
            "Enable PayPal on the account with the given email, and on an invoice if named.",
            {"paypal_email": {"type": "string"}, "invoice_identifier": _INVOICE_IDENTIFIER},
            ["paypal_email"],
        ),
    },
    "setup_bank_transfer_payments": {
        "group": "payment_ops",
        "declaration": _declaration(
            "setup_bank_transfer_payments",
            "Enable bank transfer on the account with the given bank details, and on an invoice if named.",
            {"bank_details": {"type": "string"}, "invoice_identifier": _INVOICE_IDENTIFIER},
            ["bank_details"],
        ),
    },
    "update_payment_methods": {
        "group": "payment_ops",
        "declaration": _declaration(
            "update_payment_methods",
            "Turn payment methods on or off for one invoice. Methods not set up on the account are skipped.",
            {
                "invoice_identifier": _INVOICE_IDENTIFIER,
                "paypal": {"type": "boolean"},
                "stripe": {"type": "boolean"},
                "bank_transfer": {"type": "boolean"},
            },
            [],
        ),
    },
    # design_ops
    "get_design_options": {
        "group": "design_ops",
        "declaration": _declaration(
            "get_design_options",
            "List the available invoice designs and the account's default design.",
            {},
            [],
        ),
    },
    "get_color_options": {
        "group": "design_ops",
        "declaration": _declaration(
            "get_color_options",
            "List suggested accent colours with their hex codes and the account's default colour.",
            {},
            [],
        ),
    },
    "update_invoice_design": {
        "group": "design_ops",
        "declaration": _declaration(
            "update_invoice_design",
            "Change an invoice's template or accent colour.",
            {
                "invoice_identifier": _INVOICE_IDENTIFIER,
                "design": {"type": "string", "enum": ["clean", "modern", "classic", "simple", "wave"]},
                "accent_color": {"type": "string", "description": "Hex colour, e.g. #1E40AF"},
            },
            [],
        ),
    },
    # status_ops
    "mark_invoice_sent": {
        "group": "status_ops",
        "declaration": _declaration(
            "mark_invoice_sent", "Mark an invoice as sent.", {"invoice_identifier": _INVOICE_IDENTIFIER}, []
        ),
    },
    "mark_invoice_paid": {
        "group": "status_ops",
        "declaration": _declaration(
            "mark_invoice_paid",
            "Record a payment. Without paid_amount the invoice is paid in full.",
            {
                "invoice_identifier": _INVOICE_IDENTIFIER,
                "paid_amount": {"type": "number", "description": "Amount received so far"},
                "payment_date": _DATE,
                "payment_notes": {"type": "string"},
            },
            [],
        ),
    },
    "mark_invoice_unpaid": {
        "group": "status_ops",
        "declaration": _declaration(
            "mark_invoice_unpaid",
            "Clear recorded payments and set the invoice back to sent.",
            {"invoice_identifier": _INVOICE_IDENTIFIER},
            [],
        ),
    },
    "mark_invoice_overdue": {
        "group": "status_ops",
        "declaration": _declaration(
            "mark_invoice_overdue", "Mark an invoice as overdue.", {"invoice_identifier": _INVOICE_IDENTIFIER}, []
        ),
    },
    "cancel_invoice": {
        "group": "status_ops",
        "declaration": _declaration(
            "cancel_invoice", "Cancel an invoice (keeps it on record).", {"invoice_identifier": _INVOICE_IDENTIFIER}, []
        ),
    },
    # estimate_ops
    "create_estimate": {
        "group": "estimate_ops",
        "declaration": _declaration(
            "create_estimate",
            "Create an estimate (quote) for a client with one or more line items. "
            "Finds the client by name or creates it.",
            {
                "client_name": {"type": "string", "description": "Client's name"},
                "line_items": {"type": "array", "items": _LINE_ITEM},
                "client_email": {"type": "string"},
                "client_phone": {"type": "string"},
                "client_address": {"type": "string"},
                "estimate_date": _DATE,
                "valid_until": _DATE,
                "tax_percentage": {"type": "number"},
                "discount_type": {"type": "string", "enum": ["percentage", "fixed"]},
                "discount_value": {"type": "number"},
                "notes": {"type": "string"},
            },
            ["client_name", "line_items"],
        ),
    },
    "convert_estimate_to_invoice": {
        "group": "estimate_ops",
        "declaration": _declaration(
            "convert_estimate_to_invoice",
            "Turn a draft, sent or accepted estimate into a draft invoice with the same items.",
            {
                "estimate_identifier": {
                    "type": "string",
                    "description": "Estimate number (e.g. EST-003), client name, or 'latest'",
                },
            },
            [],
        ),
    },
    # search_ops
    "get_recent_invoices": {
        "group": "search_ops",
        "declaration": _declaration(
            "get_recent_invoices",
            "List the user's most recent invoices.",
            {"limit": {"type": "integer", "description": "How many (default 5)"}},
            [],
        ),
    },
    "search_invoices": {
        "group": "search_ops",
        "declaration": _declaration(
            "search_invoices",
            "Find invoices by client name and/or status.",
            {
                "client_name": {"type": "string"},
                "status": {
                    "type": "string",
                    "enum": ["draft", "sent", "partial", "paid", "overdue", "cancelled"],
                },
                "limit": {"type": "integer"},
            },
            [],
        ),
    },
    # utility_ops
    "check_usage_limits": {
        "group": "utility_ops",
        "declaration": _declaration(
            "check_usage_limits",
            "How many invoices/estimates the user can still create on their plan.",
            {},
            [],
        ),
    },
}


# Classifier output contract (mirrors IntentClassification)
CLASSIFIER_OUTPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "intents": {"type": "array", "items": {"type": "string", "enum": list(INTENTS)}, "minItems": 1},
        "complexity": {"type": "string", "enum": ["simple", "moderate", "complex"]},
        "required_tool_groups": {"type": "array", "items": {"type": "string", "enum": list(TOOL_GROUPS)}},
        "requires_sequencing": {"type": "boolean"},
        "suggested_model": {"type": "string", "enum": ["budget", "mid", "premium"]},
        "needs_context": {"type": "boolean"},
        "missing_fields": {"type": "array", "items": {"type": "string"}},
        "scope": {"type": "string", "enum": ["invoice", "global", "both", "unknown"]},
        "targets": {
            "type": "object",
            "properties": {"invoice_number": {"type": ["string", "null"]}},
        },
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "rationale": {"type": "string"},
    },
    "required": ["intents", "complexity", "required_tool_groups", "suggested_model", "confidence"],
}
