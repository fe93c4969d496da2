"""
Line item mutations and invoice total recomputation.

Every add, update, remove or replace is followed by a recomputation that
re-reads the line items from the database; cached totals are never reused.
Replacement is delete-then-insert, so re-running it converges on the same
state.
"""

import logging
from typing import Any, Dict, List, Optional

from backend.db.gateway import Entity, PersistenceGateway
from backend.schemas.chat import ToolResult
from backend.services.invoice_lookup import (
    build_invoice_attachment,
    find_line_item,
    invoice_not_found_message,
    load_line_items,
    resolve_invoice,
)
from backend.services.totals import (
    InvoiceTotals,
    compute_invoice_totals,
    compute_line_total,
    normalize_quantity,
)

logger = logging.getLogger(__name__)


def build_line_item_row(
    invoice_id: str,
    user_id: str,
    item: Dict[str, Any],
    position: int,
) -> Dict[str, Any]:
    """Shape a line item for insertion; total_price is always computed here."""
    quantity = normalize_quantity(item.get("quantity"))
    unit_price = float(item.get("unit_price") or 0)
    name = str(item.get("item_name") or "Service").strip()
    return {
        "invoice_id": invoice_id,
        "user_id": user_id,
        "item_name": name[:1].upper() + name[1:],
        "item_description": item.get("item_description"),
        "quantity": quantity,
        "unit_price": unit_price,
        "discount_type": item.get("discount_type"),
        "discount_value": item.get("discount_value"),
        "total_price": compute_line_total(
            quantity, unit_price, item.get("discount_type"), item.get("discount_value")
        ),
        "position": position,
    }


async def recompute_invoice_totals(
    gateway: PersistenceGateway,
    invoice: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Recalculate and persist an invoice's totals from its current line items.

    Returns:
        The updated invoice row, with the computed tax and discount amounts
        merged in for display.
    """
    line_items = await load_line_items(gateway, invoice["id"])
    totals: InvoiceTotals = compute_invoice_totals(
        line_items,
        discount_type=invoice.get("discount_type"),
        discount_value=invoice.get("discount_value"),
        tax_percentage=invoice.get("tax_percentage"),
    )

    updated = await gateway.update(Entity.INVOICE, invoice["id"], totals.as_invoice_fields())
    updated = updated or {**invoice, **totals.as_invoice_fields()}
    return {**updated, "discount_amount": totals.discount_amount, "tax_amount": totals.tax_amount}


async def replace_line_items(
    gateway: PersistenceGateway,
    user_id: str,
    invoice: Dict[str, Any],
    items: List[Dict[str, Any]],
) -> Dict[str, Any]:
    """Replace all line items of an invoice, then recompute totals."""
    await gateway.delete_where(Entity.LINE_ITEM, {"invoice_id": invoice["id"]})
    if items:
        rows = [build_line_item_row(invoice["id"], user_id, item, i + 1) for i, item in enumerate(items)]
        await gateway.insert(Entity.LINE_ITEM, rows)
    return await recompute_invoice_totals(gateway, invoice)


async def _result_for(
    gateway: PersistenceGateway,
    invoice: Dict[str, Any],
    message: str,
    **data: Any,
) -> ToolResult:
    refreshed = await recompute_invoice_totals(gateway, invoice)
    attachment = await build_invoice_attachment(gateway, refreshed)
    return ToolResult(
        success=True,
        message=f"{message} New total: {refreshed['total_amount']:.2f}.",
        data={
            "invoice_id": refreshed["id"],
            "invoice_number": refreshed["invoice_number"],
            "client_id": refreshed.get("client_id"),
            "total_amount": refreshed["total_amount"],
            **data,
        },
        attachments=[attachment],
    )


async def add_line_item(
    gateway: PersistenceGateway,
    user_id: str,
    item_name: str,
    unit_price: float,
    invoice_identifier: Optional[str] = None,
    quantity: Optional[float] = None,
    item_description: Optional[str] = None,
    discount_type: Optional[str] = None,
    discount_value: Optional[float] = None,
) -> ToolResult:
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    existing = await load_line_items(gateway, invoice["id"])
    next_position = max((int(i.get("position") or 0) for i in existing), default=0) + 1

    row = build_line_item_row(
        invoice["id"],
        user_id,
        {
            "item_name": item_name,
            "item_description": item_description,
            "quantity": quantity,
            "unit_price": unit_price,
            "discount_type": discount_type,
            "discount_value": discount_value,
        },
        next_position,
    )
    await gateway.insert(Entity.LINE_ITEM, row)
    logger.info(f"Added line item to invoice {invoice['id']}")

    return await _result_for(
        gateway,
        invoice,
        f"I've added {row['item_name']} ({row['total_price']:.2f}) to invoice {invoice['invoice_number']}.",
    )


async def update_line_item(
    gateway: PersistenceGateway,
    user_id: str,
    item_identifier: str,
    invoice_identifier: Optional[str] = None,
    item_name: Optional[str] = None,
    item_description: Optional[str] = None,
    quantity: Optional[float] = None,
    unit_price: Optional[float] = None,
) -> ToolResult:
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    line_items = await load_line_items(gateway, invoice["id"])
    match = find_line_item(line_items, item_identifier)
    if not match:
        return ToolResult.failure(
            f"I couldn't find item '{item_identifier}' on invoice {invoice['invoice_number']}. "
            f"It has {len(line_items)} item(s)."
        )
    _, item = match

    changes: Dict[str, Any] = {}
    if item_name:
        changes["item_name"] = item_name.strip()
    if item_description is not None:
        changes["item_description"] = item_description
    if quantity is not None:
        changes["quantity"] = normalize_quantity(quantity)
    if unit_price is not None:
        changes["unit_price"] = float(unit_price)
    if not changes:
        return ToolResult.failure("What should I change on that item (name, quantity or price)?")

    merged = {**item, **changes}
    changes["total_price"] = compute_line_total(
        merged.get("quantity"), merged.get("unit_price"),
        merged.get("discount_type"), merged.get("discount_value"),
    )
    await gateway.update(Entity.LINE_ITEM, item["id"], changes)

    return await _result_for(
        gateway,
        invoice,
        f"I've updated {merged['item_name']} on invoice {invoice['invoice_number']}.",
    )


async def remove_line_item(
    gateway: PersistenceGateway,
    user_id: str,
    item_identifier: str,
    invoice_identifier: Optional[str] = None,
) -> ToolResult:
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    line_items = await load_line_items(gateway, invoice["id"])
    match = find_line_item(line_items, item_identifier)
    if not match:
        return ToolResult.failure(
            f"I couldn't find item '{item_identifier}' on invoice {invoice['invoice_number']}."
        )
    _, item = match

    await gateway.delete(Entity.LINE_ITEM, item["id"])
    logger.info(f"Removed line item {item['id']} from invoice {invoice['id']}")

    return await _result_for(
        gateway,
        invoice,
        f"I've removed {item['item_name']} from invoice {invoice['invoice_number']}.",
        removed_item=item["item_name"],
    )
