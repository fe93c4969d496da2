"""
Invoice service: creation, header updates, design, duplication, deletion,
and read-only lookups used by the chat assistant tools.

All functions take an RLS-scoped PersistenceGateway and the authenticated
user_id, and return a ToolResult. Persistence errors propagate as
PersistenceError and are converted by the tool executor.
"""

import logging
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from backend.db.gateway import Entity, PersistenceGateway
from backend.exceptions import PersistenceError
from backend.schemas.chat import ToolResult
from backend.services.client_service import upsert_client
from backend.services.invoice_lookup import (
    build_invoice_attachment,
    invoice_not_found_message,
    load_line_items,
    resolve_invoice,
)
from backend.services.line_item_service import (
    build_line_item_row,
    recompute_invoice_totals,
    replace_line_items,
)
from backend.services.reference_number_service import generate_next_reference
from backend.services.totals import outstanding_amount

logger = logging.getLogger(__name__)

DEFAULT_DESIGN = "clean"
DEFAULT_ACCENT_COLOR = "#1E40AF"
DEFAULT_PAYMENT_TERMS_DAYS = 30
INVOICE_DESIGNS = ("clean", "modern", "classic", "simple", "wave")

DESIGN_DESCRIPTIONS = {
    "clean": "Minimalist and organised, suits service businesses",
    "modern": "Contemporary layout, suits tech and creative work",
    "classic": "Traditional and professional, suits legal and financial work",
    "simple": "Understated and elegant, suits premium services",
    "wave": "Curved header with a bolder feel",
}

# Named accent colours offered to users; any other hex code is accepted too
ACCENT_COLORS = {
    "Navy": "#1E3A8A",
    "Blue": "#1E40AF",
    "Teal": "#14B8A6",
    "Green": "#059669",
    "Gold": "#D97706",
    "Orange": "#EA580C",
    "Red": "#DC2626",
    "Purple": "#7C3AED",
    "Black": "#111827",
}

_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}){1,2}$")


async def business_defaults(gateway: PersistenceGateway, user_id: str) -> Dict[str, Any]:
    row = await gateway.find_one(Entity.BUSINESS_SETTINGS, {"user_id": user_id}) or {}
    tax = row.get("default_tax_rate") if row.get("auto_apply_tax") else None
    return {
        "tax_percentage": float(tax) if tax is not None else 0.0,
        "currency": row.get("currency_code") or "USD",
        "invoice_design": row.get("default_invoice_design") or DEFAULT_DESIGN,
        "accent_color": row.get("default_accent_color") or DEFAULT_ACCENT_COLOR,
        "payment_terms_days": int(row.get("default_payment_terms_days") or DEFAULT_PAYMENT_TERMS_DAYS),
    }


async def payment_defaults(gateway: PersistenceGateway, user_id: str) -> Dict[str, bool]:
    row = await gateway.find_one(Entity.PAYMENT_OPTIONS, {"user_id": user_id}) or {}
    return {
        "paypal_active": bool(row.get("paypal_enabled")),
        "stripe_active": bool(row.get("stripe_enabled")),
        "bank_account_active": bool(row.get("bank_transfer_enabled")),
    }


def _summary(invoice: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "invoice_id": invoice["id"],
        "invoice_number": invoice["invoice_number"],
        "status": invoice.get("status"),
        "total_amount": invoice.get("total_amount"),
        "outstanding_amount": outstanding_amount(invoice),
        "due_date": invoice.get("due_date"),
    }


async def discard_invoice(gateway: PersistenceGateway, invoice_id: str) -> None:
    """Best-effort removal of a half-written invoice; cleanup failures are logged only."""
    for entity, filters in ((Entity.LINE_ITEM, {"invoice_id": invoice_id}), (Entity.INVOICE, {"id": invoice_id})):
        try:
            await gateway.delete_where(entity, filters)
        except PersistenceError as e:
            logger.error(f"Compensating delete on {entity.value} for invoice {invoice_id} failed: {e.message}")


async def create_invoice(
    gateway: PersistenceGateway,
    user_id: str,
    client_name: str,
    line_items: List[Dict[str, Any]],
    client_email: Optional[str] = None,
    client_phone: Optional[str] = None,
    client_address: Optional[str] = None,
    invoice_date: Optional[date] = None,
    due_date: Optional[date] = None,
    tax_percentage: Optional[float] = None,
    discount_type: Optional[str] = None,
    discount_value: Optional[float] = None,
    notes: Optional[str] = None,
) -> ToolResult:
    """
    Create an invoice with its line items for a (possibly new) client.

    Steps:
    1. Load business and payment defaults (tax, currency, design, methods)
    2. Upsert the client by case-insensitive name
    3. Allocate the next reference number
    4. Insert the invoice header, then its line items
    5. Recompute totals from the stored line items
    6. If step 4 or 5 fails, delete the stored items and the header again
    """
    if not line_items:
        return ToolResult.failure("What should I put on the invoice? Tell me the item and its price.")

    defaults = await business_defaults(gateway, user_id)
    payment_flags = await payment_defaults(gateway, user_id)

    client, client_created = await upsert_client(
        gateway, user_id, client_name,
        email=client_email, phone=client_phone, address=client_address,
    )

    invoice_number = await generate_next_reference(gateway, user_id, "invoice")
    issued = invoice_date or date.today()
    due = due_date or issued + timedelta(days=defaults["payment_terms_days"])

    header = {
        "user_id": user_id,
        "client_id": client["id"],
        "invoice_number": invoice_number,
        "invoice_date": issued.isoformat(),
        "due_date": due.isoformat(),
        "status": "draft",
        "currency": defaults["currency"],
        "tax_percentage": defaults["tax_percentage"] if tax_percentage is None else tax_percentage,
        "discount_type": discount_type,
        "discount_value": discount_value or 0,
        "subtotal_amount": 0,
        "total_amount": 0,
        "paid_amount": 0,
        "invoice_design": defaults["invoice_design"],
        "accent_color": defaults["accent_color"],
        "notes": notes,
        **payment_flags,
    }
    invoice = (await gateway.insert(Entity.INVOICE, header))[0]

    rows = [build_line_item_row(invoice["id"], user_id, item, i + 1) for i, item in enumerate(line_items)]
    try:
        await gateway.insert(Entity.LINE_ITEM, rows)
        invoice = await recompute_invoice_totals(gateway, invoice)
    except PersistenceError as e:
        logger.error(f"Saving invoice {invoice['id']} failed on {e.entity}.{e.operation}, rolling back: {e.message}")
        await discard_invoice(gateway, invoice["id"])
        return ToolResult.failure(
            "I couldn't save the invoice items, so I didn't create the invoice. Please try again."
        )

    attachment = await build_invoice_attachment(gateway, invoice)

    message = (
        f"I've created invoice {invoice_number} for {client['name']} "
        f"with {len(rows)} item(s). Total: {invoice['total_amount']:.2f} {defaults['currency']}."
    )
    if client_created:
        message += f" I also added {client['name']} as a new client."

    logger.info(f"Created invoice {invoice['id']} ({invoice_number}) for user {user_id[:8]}")
    return ToolResult(
        success=True,
        message=message,
        data={
            "invoice_id": invoice["id"],
            "invoice_number": invoice_number,
            "client_id": client["id"],
            "client_name": client["name"],
            "client_created": client_created,
            "total_amount": invoice["total_amount"],
        },
        attachments=[attachment],
    )


async def get_invoice_details(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
) -> ToolResult:
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    line_items = await load_line_items(gateway, invoice["id"])
    items = ", ".join(f"{i['item_name']} ({float(i['total_price']):.2f})" for i in line_items) or "no items"
    return ToolResult(
        success=True,
        message=(
            f"Invoice {invoice['invoice_number']} is {invoice.get('status')} with {items}. "
            f"Total {float(invoice.get('total_amount') or 0):.2f}, "
            f"outstanding {outstanding_amount(invoice):.2f}."
        ),
        data={**_summary(invoice), "client_id": invoice.get("client_id"), "line_items": line_items},
    )


async def get_recent_invoices(
    gateway: PersistenceGateway,
    user_id: str,
    limit: int = 5,
) -> ToolResult:
    invoices = await gateway.find(Entity.INVOICE, {"user_id": user_id}, order_by="created_at", limit=limit)
    if not invoices:
        return ToolResult(success=True, message="You don't have any invoices yet.", data={"invoices": []})

    listing = "; ".join(
        f"{inv['invoice_number']} ({inv.get('status')}, {float(inv.get('total_amount') or 0):.2f})"
        for inv in invoices
    )
    return ToolResult(
        success=True,
        message=f"Your most recent invoices: {listing}.",
        data={"invoices": [_summary(inv) for inv in invoices]},
    )


async def search_invoices(
    gateway: PersistenceGateway,
    user_id: str,
    client_name: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 10,
) -> ToolResult:
    filters: Dict[str, Any] = {"user_id": user_id}
    if status:
        filters["status"] = status
    if client_name:
        clients = await gateway.find(
            Entity.CLIENT, {"user_id": user_id}, ilike={"name": f"%{client_name}%"}, columns="id"
        )
        if not clients:
            return ToolResult(
                success=True, message=f"No invoices found for '{client_name}'.", data={"invoices": []}
            )
        filters["client_id"] = [c["id"] for c in clients]

    invoices = await gateway.find(Entity.INVOICE, filters, order_by="created_at", limit=limit)
    if not invoices:
        return ToolResult(success=True, message="No invoices matched that search.", data={"invoices": []})

    numbers = ", ".join(inv["invoice_number"] for inv in invoices)
    return ToolResult(
        success=True,
        message=f"Found {len(invoices)} invoice(s): {numbers}.",
        data={"invoices": [_summary(inv) for inv in invoices]},
    )


async def update_invoice(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
    client_name: Optional[str] = None,
    invoice_date: Optional[date] = None,
    due_date: Optional[date] = None,
    notes: Optional[str] = None,
    tax_percentage: Optional[float] = None,
    discount_type: Optional[str] = None,
    discount_value: Optional[float] = None,
    line_items: Optional[List[Dict[str, Any]]] = None,
) -> ToolResult:
    """
    Update invoice header fields and optionally replace every line item.

    Totals are recomputed afterwards in all cases, since tax and discount
    changes affect them as much as item changes do.
    """
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    changes: Dict[str, Any] = {}
    if invoice_date:
        changes["invoice_date"] = invoice_date.isoformat()
    if due_date:
        changes["due_date"] = due_date.isoformat()
    if notes is not None:
        changes["notes"] = notes
    if tax_percentage is not None:
        changes["tax_percentage"] = tax_percentage
    if discount_type is not None:
        changes["discount_type"] = None if discount_type == "none" else discount_type
        changes["discount_value"] = 0 if discount_type == "none" else (discount_value or 0)
    elif discount_value is not None:
        changes["discount_value"] = discount_value
    if client_name:
        client, _ = await upsert_client(gateway, user_id, client_name)
        changes["client_id"] = client["id"]

    if not changes and line_items is None:
        return ToolResult.failure(f"What would you like to change on invoice {invoice['invoice_number']}?")

    if changes:
        invoice = await gateway.update(Entity.INVOICE, invoice["id"], changes) or {**invoice, **changes}

    if line_items is not None:
        invoice = await replace_line_items(gateway, user_id, invoice, line_items)
    else:
        invoice = await recompute_invoice_totals(gateway, invoice)

    updated_fields = sorted(changes) + (["line_items"] if line_items is not None else [])
    attachment = await build_invoice_attachment(gateway, invoice)
    return ToolResult(
        success=True,
        message=(
            f"I've updated invoice {invoice['invoice_number']}. "
            f"New total: {invoice['total_amount']:.2f}."
        ),
        data={
            "invoice_id": invoice["id"],
            "invoice_number": invoice["invoice_number"],
            "client_id": invoice.get("client_id"),
            "updated_fields": updated_fields,
        },
        attachments=[attachment],
    )


async def update_invoice_design(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
    design: Optional[str] = None,
    accent_color: Optional[str] = None,
) -> ToolResult:
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    changes: Dict[str, Any] = {}
    if design:
        if design.lower() not in INVOICE_DESIGNS:
            return ToolResult.failure(
                f"'{design}' isn't an available design. Choose one of: {', '.join(INVOICE_DESIGNS)}."
            )
        changes["invoice_design"] = design.lower()
    if accent_color:
        if not _HEX_COLOR_RE.match(accent_color):
            return ToolResult.failure("Please give the accent colour as a hex code, for example #1E40AF.")
        changes["accent_color"] = accent_color.upper()
    if not changes:
        return ToolResult.failure("Which design or accent colour would you like?")

    invoice = await gateway.update(Entity.INVOICE, invoice["id"], changes) or {**invoice, **changes}
    attachment = await build_invoice_attachment(gateway, invoice)
    return ToolResult(
        success=True,
        message=f"I've updated the look of invoice {invoice['invoice_number']}.",
        data={"invoice_id": invoice["id"], "invoice_number": invoice["invoice_number"], **changes},
        attachments=[attachment],
    )


async def get_design_options(gateway: PersistenceGateway, user_id: str) -> ToolResult:
    defaults = await business_defaults(gateway, user_id)
    designs = [
        {"id": design, "description": DESIGN_DESCRIPTIONS[design], "is_default": design == defaults["invoice_design"]}
        for design in INVOICE_DESIGNS
    ]
    listing = "; ".join(f"{d['id'].title()}: {d['description']}" for d in designs)
    return ToolResult(
        success=True,
        message=f"Available designs are {listing}. Your default is {defaults['invoice_design'].title()}.",
        data={"designs": designs, "default_design": defaults["invoice_design"]},
    )


async def get_color_options(gateway: PersistenceGateway, user_id: str) -> ToolResult:
    defaults = await business_defaults(gateway, user_id)
    colors = [{"name": name, "hex": hex_code} for name, hex_code in ACCENT_COLORS.items()]
    listing = ", ".join(f"{c['name']} ({c['hex']})" for c in colors)
    return ToolResult(
        success=True,
        message=(
            f"Accent colours you can pick: {listing}. Any other hex code works as well. "
            f"Your default is {defaults['accent_color']}."
        ),
        data={"colors": colors, "default_accent_color": defaults["accent_color"]},
    )


async def duplicate_invoice(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
    client_name: Optional[str] = None,
) -> ToolResult:
    """Copy an invoice (and its items) into a new draft with a fresh number and dates."""
    source = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not source:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    source_items = await load_line_items(gateway, source["id"])
    client_id = source.get("client_id")
    if client_name:
        client, _ = await upsert_client(gateway, user_id, client_name)
        client_id = client["id"]

    defaults = await business_defaults(gateway, user_id)
    today = date.today()
    copied = {
        k: v for k, v in source.items()
        if k not in ("id", "created_at", "updated_at", "payment_date", "payment_notes",
                     "discount_amount", "tax_amount")
    }
    copied.update(
        client_id=client_id,
        invoice_number=await generate_next_reference(gateway, user_id, "invoice"),
        invoice_date=today.isoformat(),
        due_date=(today + timedelta(days=defaults["payment_terms_days"])).isoformat(),
        status="draft",
        paid_amount=0,
    )
    invoice = (await gateway.insert(Entity.INVOICE, copied))[0]

    try:
        invoice = await replace_line_items(gateway, user_id, invoice, source_items)
    except PersistenceError as e:
        logger.error(f"Copying items to invoice {invoice['id']} failed, rolling back: {e.message}")
        await discard_invoice(gateway, invoice["id"])
        return ToolResult.failure("I couldn't copy the invoice items, so no duplicate was created.")

    attachment = await build_invoice_attachment(gateway, invoice)
    return ToolResult(
        success=True,
        message=f"I've duplicated {source['invoice_number']} as {invoice['invoice_number']}.",
        data={
            "invoice_id": invoice["id"],
            "invoice_number": invoice["invoice_number"],
            "client_id": client_id,
            "source_invoice_number": source["invoice_number"],
        },
        attachments=[attachment],
    )


async def delete_invoice(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: str,
) -> ToolResult:
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    await gateway.delete_where(Entity.LINE_ITEM, {"invoice_id": invoice["id"]})
    await gateway.delete(Entity.INVOICE, invoice["id"])
    logger.info(f"Deleted invoice {invoice['id']} for user {user_id[:8]}")

    return ToolResult(
        success=True,
        message=f"I've deleted invoice {invoice['invoice_number']}.",
        data={"invoice_number": invoice["invoice_number"], "deleted": True},
    )
