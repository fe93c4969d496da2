"""
Payment method configuration.

Payment methods exist at two levels: the account (one payment_options row
per user) and each invoice (paypal_active, stripe_active,
bank_account_active). An invoice may only enable a method that is enabled
on the account; requests for anything else are skipped and explained.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from backend.db.gateway import Entity, PersistenceGateway
from backend.schemas.chat import ToolResult
from backend.services.invoice_lookup import (
    build_invoice_attachment,
    invoice_not_found_message,
    resolve_invoice,
)

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# method -> (account flag, invoice flag, display name)
PAYMENT_METHODS: Dict[str, tuple] = {
    "paypal": ("paypal_enabled", "paypal_active", "PayPal"),
    "stripe": ("stripe_enabled", "stripe_active", "card payments (Stripe)"),
    "bank_transfer": ("bank_transfer_enabled", "bank_account_active", "bank transfer"),
}


async def _upsert_payment_options(
    gateway: PersistenceGateway,
    user_id: str,
    values: Dict[str, Any],
) -> Dict[str, Any]:
    existing = await gateway.find_one(Entity.PAYMENT_OPTIONS, {"user_id": user_id})
    if existing:
        return await gateway.update(Entity.PAYMENT_OPTIONS, existing["id"], values) or {**existing, **values}
    return (await gateway.insert(Entity.PAYMENT_OPTIONS, {"user_id": user_id, **values}))[0]


async def _activate_on_invoice(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str],
    invoice_flag: str,
) -> Optional[Dict[str, Any]]:
    if not invoice_identifier:
        return None
    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return None
    return await gateway.update(Entity.INVOICE, invoice["id"], {invoice_flag: True}) or {
        **invoice, invoice_flag: True
    }


async def get_payment_options(gateway: PersistenceGateway, user_id: str) -> ToolResult:
    row = await gateway.find_one(Entity.PAYMENT_OPTIONS, {"user_id": user_id}) or {}
    enabled = [label for account_flag, _, label in PAYMENT_METHODS.values() if row.get(account_flag)]
    message = (
        f"Enabled payment methods: {', '.join(enabled)}." if enabled
        else "No payment methods are set up on your account yet."
    )
    return ToolResult(
        success=True,
        message=message,
        data={
            "paypal_enabled": bool(row.get("paypal_enabled")),
            "paypal_email": row.get("paypal_email"),
            "stripe_enabled": bool(row.get("stripe_enabled")),
            "bank_transfer_enabled": bool(row.get("bank_transfer_enabled")),
            "bank_details": row.get("bank_details"),
        },
    )


async def setup_paypal_payments(
    gateway: PersistenceGateway,
    user_id: str,
    paypal_email: str,
    invoice_identifier: Optional[str] = None,
) -> ToolResult:
    """Enable PayPal on the account, and on an invoice when one is named."""
    email = paypal_email.strip()
    if not EMAIL_RE.match(email):
        return ToolResult.failure(f"'{paypal_email}' doesn't look like an email address. What's your PayPal email?")

    await _upsert_payment_options(gateway, user_id, {"paypal_enabled": True, "paypal_email": email})
    invoice = await _activate_on_invoice(gateway, user_id, invoice_identifier, "paypal_active")

    message = f"PayPal is now set up with {email}."
    data: Dict[str, Any] = {"paypal_email": email}
    attachments = []
    if invoice:
        message += f" I've also enabled it on invoice {invoice['invoice_number']}."
        data.update(invoice_id=invoice["id"], invoice_number=invoice["invoice_number"],
                    client_id=invoice.get("client_id"))
        attachments.append(await build_invoice_attachment(gateway, invoice))

    return ToolResult(success=True, message=message, data=data, attachments=attachments)


async def setup_bank_transfer_payments(
    gateway: PersistenceGateway,
    user_id: str,
    bank_details: str,
    invoice_identifier: Optional[str] = None,
) -> ToolResult:
    """Enable bank transfer on the account, and on an invoice when one is named."""
    details = bank_details.strip()
    if len(details) < 6:
        return ToolResult.failure("Please share the bank details to show on invoices (bank name and account number).")

    await _upsert_payment_options(
        gateway, user_id, {"bank_transfer_enabled": True, "bank_details": details}
    )
    invoice = await _activate_on_invoice(gateway, user_id, invoice_identifier, "bank_account_active")

    message = "Bank transfer is now set up on your account."
    data: Dict[str, Any] = {"bank_transfer_enabled": True}
    attachments = []
    if invoice:
        message += f" I've also enabled it on invoice {invoice['invoice_number']}."
        data.update(invoice_id=invoice["id"], invoice_number=invoice["invoice_number"],
                    client_id=invoice.get("client_id"))
        attachments.append(await build_invoice_attachment(gateway, invoice))

    return ToolResult(success=True, message=message, data=data, attachments=attachments)


async def update_payment_methods(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
    paypal: Optional[bool] = None,
    stripe: Optional[bool] = None,
    bank_transfer: Optional[bool] = None,
) -> ToolResult:
    """
    Toggle payment methods on one invoice.

    Disabling is always allowed. Enabling a method requires it to be enabled
    on the account; otherwise it is skipped and reported, and nothing about
    that method changes on the invoice.
    """
    requested = {"paypal": paypal, "stripe": stripe, "bank_transfer": bank_transfer}
    requested = {method: value for method, value in requested.items() if value is not None}
    if not requested:
        return ToolResult.failure("Which payment method should I turn on or off?")

    invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
    if not invoice:
        return ToolResult.failure(invoice_not_found_message(invoice_identifier))

    account = await gateway.find_one(Entity.PAYMENT_OPTIONS, {"user_id": user_id}) or {}

    changes: Dict[str, bool] = {}
    skipped: List[str] = []
    for method, enable in requested.items():
        account_flag, invoice_flag, _ = PAYMENT_METHODS[method]
        if enable and not account.get(account_flag):
            skipped.append(method)
            continue
        changes[invoice_flag] = bool(enable)

    number = invoice["invoice_number"]
    notes = []
    for method in skipped:
        label = PAYMENT_METHODS[method][2]
        notes.append(f"{label} isn't set up on your account yet, so I didn't enable it on invoice {number}.")
    if "paypal" in skipped:
        notes.append("What's your PayPal email address?")
    elif "bank_transfer" in skipped:
        notes.append("What bank details should I show on your invoices?")
    elif "stripe" in skipped:
        notes.append("You can connect Stripe from the payment settings in the app.")

    data: Dict[str, Any] = {
        "invoice_id": invoice["id"],
        "invoice_number": number,
        "client_id": invoice.get("client_id"),
        "skipped": skipped,
        "changed": sorted(changes),
    }

    if not changes:
        logger.info(f"No payment method changes applied to invoice {invoice['id']} (skipped={skipped})")
        return ToolResult(success=True, message=" ".join(notes), data=data)

    updated = await gateway.update(Entity.INVOICE, invoice["id"], changes) or {**invoice, **changes}
    turned_on = [PAYMENT_METHODS[m][2] for m in PAYMENT_METHODS if changes.get(PAYMENT_METHODS[m][1]) is True]
    turned_off = [PAYMENT_METHODS[m][2] for m in PAYMENT_METHODS if changes.get(PAYMENT_METHODS[m][1]) is False]

    parts = []
    if turned_on:
        parts.append(f"enabled {', '.join(turned_on)}")
    if turned_off:
        parts.append(f"disabled {', '.join(turned_off)}")
    message = " ".join([f"I've {' and '.join(parts)} on invoice {number}."] + notes)

    attachment = await build_invoice_attachment(gateway, updated)
    return ToolResult(success=True, message=message, data=data, attachments=[attachment])
