"""
Invoice and line-item resolution helpers shared by the invoice services.

Users refer to invoices loosely: by number ("INV-0042", "#42"), by client
name ("Oliver's invoice"), or by recency ("latest"). Resolution failures
return None so callers can answer with a descriptive not-found message.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from backend.db.gateway import Entity, PersistenceGateway
from backend.schemas.chat import InvoiceAttachment
from backend.services.reference_number_service import extract_numeric_suffix

logger = logging.getLogger(__name__)

LATEST_ALIASES = {"latest", "last", "recent", "most recent", "newest", "current"}

DOCUMENT_NUMBER_RE = re.compile(r"^[A-Za-z]{2,5}-\d+(?:-\d+)*$")
BARE_NUMBER_RE = re.compile(r"^#?(\d+)$")

_ORDINAL_WORDS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
}
_ORDINAL_SUFFIX_RE = re.compile(r"^(\d+)(?:st|nd|rd|th)?(?:\s+(?:item|line|one))?$")


def invoice_not_found_message(identifier: Optional[str]) -> str:
    if not identifier or identifier.strip().lower() in LATEST_ALIASES:
        return "I couldn't find any invoices yet. Would you like me to create one?"
    return (
        f"I couldn't find an invoice matching '{identifier}'. "
        "Could you give me the invoice number or the client's name?"
    )


async def latest_invoice(gateway: PersistenceGateway, user_id: str) -> Optional[Dict[str, Any]]:
    return await gateway.find_one(Entity.INVOICE, {"user_id": user_id}, order_by="created_at")


async def resolve_invoice(
    gateway: PersistenceGateway,
    user_id: str,
    identifier: Optional[str],
) -> Optional[Dict[str, Any]]:
    """
    Resolve a loose invoice reference to an invoice row.

    Args:
        identifier: An invoice number, a bare number ("42", "#42"), a client
                    name, or "latest". None/empty means latest.
    """
    ref = (identifier or "").strip()

    if not ref or ref.lower() in LATEST_ALIASES:
        return await latest_invoice(gateway, user_id)

    if DOCUMENT_NUMBER_RE.match(ref):
        invoice = await gateway.find_one(
            Entity.INVOICE, {"user_id": user_id, "invoice_number": ref.upper()}
        )
        if invoice:
            return invoice
        return await gateway.find_one(
            Entity.INVOICE, {"user_id": user_id}, ilike={"invoice_number": ref}
        )

    bare = BARE_NUMBER_RE.match(ref)
    if bare:
        wanted = int(bare.group(1))
        rows = await gateway.find(
            Entity.INVOICE, {"user_id": user_id}, order_by="created_at", columns="*"
        )
        for row in rows:
            if extract_numeric_suffix(row.get("invoice_number")) == wanted:
                return row
        return None

    # Otherwise treat it as a client name ("Oliver", "Oliver's invoice")
    name = re.sub(r"(?:'s)?\s+invoice$", "", ref, flags=re.IGNORECASE).strip()
    clients = await gateway.find(
        Entity.CLIENT, {"user_id": user_id}, ilike={"name": f"%{name}%"}, columns="id"
    )
    if not clients:
        logger.info(f"No invoice resolved for identifier '{ref}' (user {user_id[:8]})")
        return None

    return await gateway.find_one(
        Entity.INVOICE,
        {"user_id": user_id, "client_id": [c["id"] for c in clients]},
        order_by="created_at",
    )


async def load_line_items(gateway: PersistenceGateway, invoice_id: str) -> List[Dict[str, Any]]:
    """Current line items of an invoice, in display order."""
    return await gateway.find(
        Entity.LINE_ITEM, {"invoice_id": invoice_id}, order_by="position", descending=False
    )


async def build_invoice_attachment(
    gateway: PersistenceGateway,
    invoice: Dict[str, Any],
    line_items: Optional[List[Dict[str, Any]]] = None,
) -> InvoiceAttachment:
    """Snapshot an invoice with its line items and client for display."""
    if line_items is None:
        line_items = await load_line_items(gateway, invoice["id"])

    client = None
    client_id = invoice.get("client_id")
    if client_id:
        client = await gateway.find_one(Entity.CLIENT, {"id": client_id})

    return InvoiceAttachment(
        invoice_id=invoice["id"],
        invoice=invoice,
        line_items=line_items,
        client_id=client_id,
        client=client,
    )


def find_line_item(
    line_items: List[Dict[str, Any]],
    identifier: Any,
) -> Optional[Tuple[int, Dict[str, Any]]]:
    """
    Locate a line item by 1-based position ("2", "2nd", "second", "last")
    or by a case-insensitive name fragment. Returns (index, item).
    """
    if not line_items or identifier is None:
        return None

    if isinstance(identifier, int) and not isinstance(identifier, bool):
        position = identifier
    else:
        text = str(identifier).strip().lower()
        text = re.sub(r"^(?:the|item|line)\s+", "", text)
        text = re.sub(r"\s+(?:item|line|one)$", "", text)

        position = None
        if text == "last":
            position = len(line_items)
        elif text in _ORDINAL_WORDS:
            position = _ORDINAL_WORDS[text]
        else:
            ordinal = _ORDINAL_SUFFIX_RE.match(text)
            if ordinal:
                position = int(ordinal.group(1))

        if position is None:
            for index, item in enumerate(line_items):
                if text and text in str(item.get("item_name", "")).lower():
                    return index, item
            return None

    if 1 <= position <= len(line_items):
        return position - 1, line_items[position - 1]
    return None
