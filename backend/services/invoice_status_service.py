"""
Invoice status transitions.

    draft -> sent -> {partial -> paid} | overdue | cancelled

Payment fields are rewritten on every transition: paid_amount is clamped to
the current total and payment_date is cleared whenever nothing is paid, so
paid and remaining amounts always agree with the status. A fully paid
invoice cannot go back to sent or overdue without being marked unpaid.
"""

import logging
from datetime import date
from typing import Any, Dict, Optional

from backend.db.gateway import Entity, PersistenceGateway
from backend.schemas.chat import ToolResult
from backend.services.invoice_lookup import (
    build_invoice_attachment,
    invoice_not_found_message,
    resolve_invoice,
)
from backend.services.totals import derive_payment_status, outstanding_amount

logger = logging.getLogger(__name__)


def _settled_payment(invoice: Dict[str, Any]) -> Dict[str, Any]:
    """Current payment state re-derived against the invoice total."""
    payment = derive_payment_status(invoice.get("paid_amount"), invoice.get("total_amount"))
    if payment["paid_amount"] <= 0:
        payment["payment_date"] = None
    return payment


def _already_paid(invoice: Dict[str, Any], target: str) -> ToolResult:
    return ToolResult.failure(
        f"Invoice {invoice['invoice_number']} is already paid in full, so I didn't mark it as {target}. "
        "Mark it as unpaid first if the payment didn't go through.",
        invoice_number=invoice["invoice_number"],
    )


async def _apply(
    gateway: PersistenceGateway,
    invoice: Dict[str, Any],
    changes: Dict[str, Any],
    message: str,
) -> ToolResult:
    updated = await gateway.update(Entity.INVOICE, invoice["id"], changes) or {**invoice, **changes}
    logger.info(f"Invoice {invoice['id']} status {invoice.get('status')} -> {updated.get('status')}")

    attachment = await build_invoice_attachment(gateway, updated)
    return ToolResult(
        success=True,
        message=message,
        data={
            "invoice_id": updated["id"],
            "invoice_number": updated["invoice_number"],
            "client_id": updated.get("client_id"),
            "status": updated.get("status"),
            "paid_amount": updated.get("paid_amount"),
            "outstanding_amount": outstanding_amount(updated),
        },
        attachments=[attachment],
    )


async def mark_invoice_sent(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
) -> ToolResult:
    """Sent keeps a partial payment (status partial); a full payment blocks it."""
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    payment = _settled_payment(invoice)
    if payment["status"] == "paid":
        return _already_paid(invoice, "sent")

    changes = {**payment, "sent_at": date.today().isoformat()}
    number = invoice["invoice_number"]
    message = f"Invoice {number} is marked as sent."
    if payment["status"] == "partial":
        remaining = outstanding_amount({**invoice, **changes})
        message = f"Invoice {number} is marked as sent. {remaining:.2f} is still outstanding."
    return await _apply(gateway, invoice, changes, message)


async def mark_invoice_paid(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
    paid_amount: Optional[float] = None,
    payment_date: Optional[date] = None,
    payment_notes: Optional[str] = None,
) -> ToolResult:
    """
    Record a payment. Without an amount the invoice is paid in full (even
    when its total is 0); with one, the status is derived from amount vs total.
    """
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    total = float(invoice.get("total_amount") or 0)

    changes: Dict[str, Any]
    if paid_amount is None:
        changes = {"status": "paid", "paid_amount": round(max(total, 0.0), 2)}
    else:
        changes = derive_payment_status(paid_amount, total)
    if changes["status"] == "sent":
        changes["payment_date"] = None
    else:
        changes["payment_date"] = (payment_date or date.today()).isoformat()
    if payment_notes:
        changes["payment_notes"] = payment_notes

    number = invoice["invoice_number"]
    if changes["status"] == "paid":
        message = f"Invoice {number} is marked as paid ({changes['paid_amount']:.2f})."
    elif changes["status"] == "partial":
        message = (
            f"I've recorded a payment of {changes['paid_amount']:.2f} on invoice {number}. "
            f"{total - changes['paid_amount']:.2f} is still outstanding."
        )
    else:
        message = f"No payment recorded on invoice {number}; it stays as sent."

    return await _apply(gateway, invoice, changes, message)


async def mark_invoice_unpaid(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
) -> ToolResult:
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    changes = {"status": "sent", "paid_amount": 0, "payment_date": None}
    return await _apply(gateway, invoice, changes, f"Invoice {invoice['invoice_number']} is marked as unpaid.")


async def mark_invoice_overdue(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
) -> ToolResult:
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    payment = _settled_payment(invoice)
    if payment["status"] == "paid":
        return _already_paid(invoice, "overdue")

    changes = {**payment, "status": "overdue"}
    remaining = outstanding_amount({**invoice, **changes})
    return await _apply(
        gateway, invoice, changes,
        f"Invoice {invoice['invoice_number']} is marked as overdue ({remaining:.2f} outstanding).",
    )


async def cancel_invoice(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
) -> ToolResult:
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    changes = {**_settled_payment(invoice), "status": "cancelled"}
    return await _apply(
        gateway, invoice, changes,
        f"Invoice {invoice['invoice_number']} has been cancelled.",
    )
