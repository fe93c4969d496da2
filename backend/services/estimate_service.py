"""
Estimate service: creating estimates and converting them into invoices.

Estimates share the invoice numbering sequence and the free-plan usage cap.
A converted invoice keeps the estimate's numeric suffix under the invoice
reference format, so EST-007 becomes INV-007 unless that number is taken.
"""

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from backend.db.gateway import Entity, PersistenceGateway
from backend.exceptions import PersistenceError
from backend.schemas.chat import ToolResult
from backend.services.client_service import upsert_client
from backend.services.invoice_lookup import DOCUMENT_NUMBER_RE, LATEST_ALIASES, build_invoice_attachment
from backend.services.invoice_service import business_defaults, discard_invoice, payment_defaults
from backend.services.line_item_service import build_line_item_row, recompute_invoice_totals
from backend.services.reference_number_service import (
    extract_numeric_suffix,
    format_reference_number,
    generate_next_reference,
    parse_reference_format,
)
from backend.services.totals import compute_invoice_totals

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY_DAYS = 30

CONVERTIBLE_STATUSES = ("draft", "sent", "accepted")


def _estimate_item_row(estimate_id: str, user_id: str, item: Dict[str, Any], position: int) -> Dict[str, Any]:
    row = build_line_item_row(estimate_id, user_id, item, position)
    row["estimate_id"] = row.pop("invoice_id")
    return row


def estimate_not_found_message(identifier: Optional[str]) -> str:
    if not identifier or identifier.strip().lower() in LATEST_ALIASES:
        return "I couldn't find any estimates yet. Would you like me to create one?"
    return f"I couldn't find an estimate matching '{identifier}'. Could you give me its number or the client's name?"


async def resolve_estimate(
    gateway: PersistenceGateway,
    user_id: str,
    identifier: Optional[str],
) -> Optional[Dict[str, Any]]:
    """Resolve an estimate number, a client name or "latest" to an estimate row."""
    ref = (identifier or "").strip()

    if not ref or ref.lower() in LATEST_ALIASES:
        return await gateway.find_one(Entity.ESTIMATE, {"user_id": user_id}, order_by="created_at")

    if DOCUMENT_NUMBER_RE.match(ref):
        return await gateway.find_one(Entity.ESTIMATE, {"user_id": user_id}, ilike={"estimate_number": ref})

    name = ref
    for suffix in ("'s estimate", " estimate", "'s quote", " quote"):
        if name.lower().endswith(suffix):
            name = name[: -len(suffix)].strip()
            break
    clients = await gateway.find(Entity.CLIENT, {"user_id": user_id}, ilike={"name": f"%{name}%"}, columns="id")
    if not clients:
        return None
    return await gateway.find_one(
        Entity.ESTIMATE,
        {"user_id": user_id, "client_id": [c["id"] for c in clients]},
        order_by="created_at",
    )


async def _discard_estimate(gateway: PersistenceGateway, estimate_id: str) -> None:
    for entity, filters in (
        (Entity.ESTIMATE_LINE_ITEM, {"estimate_id": estimate_id}),
        (Entity.ESTIMATE, {"id": estimate_id}),
    ):
        try:
            await gateway.delete_where(entity, filters)
        except PersistenceError as e:
            logger.error(f"Compensating delete on {entity.value} for estimate {estimate_id} failed: {e.message}")


async def create_estimate(
    gateway: PersistenceGateway,
    user_id: str,
    client_name: str,
    line_items: List[Dict[str, Any]],
    client_email: Optional[str] = None,
    client_phone: Optional[str] = None,
    client_address: Optional[str] = None,
    estimate_date: Optional[date] = None,
    valid_until: Optional[date] = None,
    tax_percentage: Optional[float] = None,
    discount_type: Optional[str] = None,
    discount_value: Optional[float] = None,
    notes: Optional[str] = None,
) -> ToolResult:
    """
    Create an estimate with its line items, the same way invoices are created:
    client upsert, next shared reference number, header, items, then totals.
    A failure after the header is written removes the estimate again.
    """
    if not line_items:
        return ToolResult.failure("What should I put on the estimate? Tell me the item and its price.")

    defaults = await business_defaults(gateway, user_id)
    payment_flags = await payment_defaults(gateway, user_id)

    client, client_created = await upsert_client(
        gateway, user_id, client_name,
        email=client_email, phone=client_phone, address=client_address,
    )

    estimate_number = await generate_next_reference(gateway, user_id, "estimate")
    issued = estimate_date or date.today()
    valid = valid_until or issued + timedelta(days=DEFAULT_VALIDITY_DAYS)
    tax = defaults["tax_percentage"] if tax_percentage is None else tax_percentage

    header = {
        "user_id": user_id,
        "client_id": client["id"],
        "estimate_number": estimate_number,
        "estimate_date": issued.isoformat(),
        "valid_until_date": valid.isoformat(),
        "status": "draft",
        "currency": defaults["currency"],
        "tax_percentage": tax,
        "discount_type": discount_type,
        "discount_value": discount_value or 0,
        "subtotal_amount": 0,
        "total_amount": 0,
        "estimate_template": defaults["invoice_design"],
        "accent_color": defaults["accent_color"],
        "notes": notes,
        **payment_flags,
    }
    estimate = (await gateway.insert(Entity.ESTIMATE, header))[0]

    rows = [_estimate_item_row(estimate["id"], user_id, item, i + 1) for i, item in enumerate(line_items)]
    totals = compute_invoice_totals(rows, discount_type, discount_value, tax)
    try:
        await gateway.insert(Entity.ESTIMATE_LINE_ITEM, rows)
        estimate = await gateway.update(
            Entity.ESTIMATE, estimate["id"], totals.as_invoice_fields()
        ) or {**estimate, **totals.as_invoice_fields()}
    except PersistenceError as e:
        logger.error(f"Saving estimate {estimate['id']} failed on {e.entity}.{e.operation}, rolling back: {e.message}")
        await _discard_estimate(gateway, estimate["id"])
        return ToolResult.failure(
            "I couldn't save the estimate items, so I didn't create the estimate. Please try again."
        )

    message = (
        f"I've created estimate {estimate_number} for {client['name']} "
        f"with {len(rows)} item(s). Total: {totals.total:.2f} {defaults['currency']}."
    )
    if client_created:
        message += f" I also added {client['name']} as a new client."

    logger.info(f"Created estimate {estimate['id']} ({estimate_number}) for user {user_id[:8]}")
    return ToolResult(
        success=True,
        message=message,
        data={
            "estimate_id": estimate["id"],
            "estimate_number": estimate_number,
            "client_id": client["id"],
            "client_name": client["name"],
            "client_created": client_created,
            "total_amount": totals.total,
            "valid_until_date": valid.isoformat(),
        },
    )


async def _invoice_number_for(gateway: PersistenceGateway, user_id: str, estimate: Dict[str, Any]) -> str:
    """The estimate's suffix under the invoice format, or the next free number if that is taken."""
    suffix = extract_numeric_suffix(estimate.get("estimate_number"))
    if suffix is not None:
        settings_row = await gateway.find_one(
            Entity.BUSINESS_SETTINGS, {"user_id": user_id}, columns="invoice_reference_format"
        )
        ref_format = parse_reference_format((settings_row or {}).get("invoice_reference_format"), "invoice")
        candidate = format_reference_number(suffix, ref_format)
        if not await gateway.find_one(Entity.INVOICE, {"user_id": user_id, "invoice_number": candidate}):
            return candidate
    return await generate_next_reference(gateway, user_id, "invoice")


async def convert_estimate_to_invoice(
    gateway: PersistenceGateway,
    user_id: str,
    estimate_identifier: Optional[str] = None,
) -> ToolResult:
    """
    Turn an estimate into a draft invoice.

    Steps:
    1. Resolve the estimate and check it is draft, sent or accepted
    2. Pick the invoice number (shared suffix, else next in sequence)
    3. Insert the invoice header and copy the estimate's line items
    4. Recompute the invoice totals from the copied items
    5. Mark the estimate converted and link it to the invoice
    6. If steps 3 to 5 fail, delete the new invoice again
    """
    estimate = await resolve_estimate(gateway, user_id, estimate_identifier)
    if not estimate:
        return ToolResult.failure(estimate_not_found_message(estimate_identifier))

    status = estimate.get("status") or "draft"
    if status == "converted":
        return ToolResult.failure(
            f"Estimate {estimate['estimate_number']} has already been converted to an invoice."
        )
    if status not in CONVERTIBLE_STATUSES:
        return ToolResult.failure(
            f"Estimate {estimate['estimate_number']} is {status}, so it can't be turned into an invoice."
        )

    defaults = await business_defaults(gateway, user_id)
    invoice_number = await _invoice_number_for(gateway, user_id, estimate)
    issued = date.today()

    header = {
        "user_id": user_id,
        "client_id": estimate.get("client_id"),
        "invoice_number": invoice_number,
        "invoice_date": issued.isoformat(),
        "due_date": (issued + timedelta(days=defaults["payment_terms_days"])).isoformat(),
        "status": "draft",
        "currency": estimate.get("currency") or defaults["currency"],
        "tax_percentage": estimate.get("tax_percentage") or 0,
        "discount_type": estimate.get("discount_type"),
        "discount_value": estimate.get("discount_value") or 0,
        "subtotal_amount": 0,
        "total_amount": 0,
        "paid_amount": 0,
        "invoice_design": estimate.get("estimate_template") or defaults["invoice_design"],
        "accent_color": estimate.get("accent_color") or defaults["accent_color"],
        "notes": estimate.get("notes"),
        "paypal_active": bool(estimate.get("paypal_active")),
        "stripe_active": bool(estimate.get("stripe_active")),
        "bank_account_active": bool(estimate.get("bank_account_active")),
    }
    invoice = (await gateway.insert(Entity.INVOICE, header))[0]

    try:
        items = await gateway.find(
            Entity.ESTIMATE_LINE_ITEM, {"estimate_id": estimate["id"]}, order_by="position", descending=False
        )
        if items:
            rows = [build_line_item_row(invoice["id"], user_id, item, i + 1) for i, item in enumerate(items)]
            await gateway.insert(Entity.LINE_ITEM, rows)
        invoice = await recompute_invoice_totals(gateway, invoice)
        await gateway.update(
            Entity.ESTIMATE,
            estimate["id"],
            {"status": "converted", "is_accepted": True, "converted_to_invoice_id": invoice["id"]},
        )
    except PersistenceError as e:
        logger.error(f"Converting estimate {estimate['id']} failed on {e.entity}.{e.operation}: {e.message}")
        await discard_invoice(gateway, invoice["id"])
        return ToolResult.failure(
            f"I couldn't convert estimate {estimate['estimate_number']} because of a storage problem. "
            f"Please try again."
        )

    attachment = await build_invoice_attachment(gateway, invoice)
    logger.info(f"Converted estimate {estimate['id']} into invoice {invoice['id']} ({invoice_number})")
    return ToolResult(
        success=True,
        message=(
            f"I've converted estimate {estimate['estimate_number']} into invoice {invoice_number}. "
            f"Total: {invoice['total_amount']:.2f}."
        ),
        data={
            "invoice_id": invoice["id"],
            "invoice_number": invoice_number,
            "estimate_id": estimate["id"],
            "estimate_number": estimate["estimate_number"],
            "client_id": invoice.get("client_id"),
            "total_amount": invoice["total_amount"],
        },
        attachments=[attachment],
    )
