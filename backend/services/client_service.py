"""
Client service: upsert-by-name and the client tools (create, duplicate,
update, delete, search, outstanding balance).

Invoices are always created against an existing client when a
case-insensitive name match exists; new contact details are merged onto
that client instead of creating a duplicate record.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from backend.db.gateway import Entity, PersistenceGateway
from backend.schemas.chat import ToolResult
from backend.services.invoice_lookup import (
    build_invoice_attachment,
    invoice_not_found_message,
    resolve_invoice,
)
from backend.services.totals import outstanding_amount

logger = logging.getLogger(__name__)

CONTACT_FIELDS = ("email", "phone", "address", "tax_number")


def _supplied(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v.strip() if isinstance(v, str) else v for k, v in fields.items() if v not in (None, "")}


async def find_client_by_name(
    gateway: PersistenceGateway,
    user_id: str,
    name: str,
) -> Optional[Dict[str, Any]]:
    """Case-insensitive exact-name lookup (no wildcards)."""
    escaped = name.strip().replace("%", r"\%").replace("_", r"\_")
    return await gateway.find_one(
        Entity.CLIENT, {"user_id": user_id}, ilike={"name": escaped}, order_by="created_at"
    )


async def upsert_client(
    gateway: PersistenceGateway,
    user_id: str,
    name: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    tax_number: Optional[str] = None,
) -> Tuple[Dict[str, Any], bool]:
    """
    Find a client by name or create it.

    Returns:
        (client row, created) where created is True for a new record.
    """
    contact = _supplied(
        {"email": email, "phone": phone, "address": address, "tax_number": tax_number}
    )

    existing = await find_client_by_name(gateway, user_id, name)
    if existing:
        changes = {k: v for k, v in contact.items() if existing.get(k) != v}
        if changes:
            updated = await gateway.update(Entity.CLIENT, existing["id"], changes)
            existing = updated or {**existing, **changes}
            logger.info(f"Merged {sorted(changes)} onto client {existing['id']}")
        return existing, False

    rows = await gateway.insert(Entity.CLIENT, {"user_id": user_id, "name": name.strip(), **contact})
    logger.info(f"Created client {rows[0]['id']} for user {user_id[:8]}")
    return rows[0], True


async def search_clients(
    gateway: PersistenceGateway,
    user_id: str,
    query: str,
    limit: int = 10,
) -> ToolResult:
    clients = await gateway.find(
        Entity.CLIENT,
        {"user_id": user_id},
        ilike={"name": f"%{query.strip()}%"},
        order_by="name",
        descending=False,
        limit=limit,
    )
    if not clients:
        return ToolResult(success=True, message=f"No clients found matching '{query}'.", data={"clients": []})

    names = ", ".join(c["name"] for c in clients)
    return ToolResult(
        success=True,
        message=f"Found {len(clients)} client(s): {names}.",
        data={"clients": clients},
    )


async def update_client_info(
    gateway: PersistenceGateway,
    user_id: str,
    invoice_identifier: Optional[str] = None,
    client_name: Optional[str] = None,
    name: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    tax_number: Optional[str] = None,
) -> ToolResult:
    """
    Update contact details of a client, located either through an invoice
    (explicit or active) or by the client's name.
    """
    changes = _supplied(
        {"name": name, "email": email, "phone": phone, "address": address, "tax_number": tax_number}
    )
    if not changes:
        return ToolResult.failure("Which client details should I update (name, email, phone or address)?")

    invoice = None
    client = None
    if client_name and not invoice_identifier:
        client = await find_client_by_name(gateway, user_id, client_name)
        if not client:
            return ToolResult.failure(f"I couldn't find a client named '{client_name}'.")
    else:
        invoice = await resolve_invoice(gateway, user_id, invoice_identifier)
        if not invoice:
            return ToolResult.failure(invoice_not_found_message(invoice_identifier))
        if not invoice.get("client_id"):
            return ToolResult.failure(
                f"Invoice {invoice['invoice_number']} has no client yet. Who is it for?"
            )
        client = await gateway.find_one(Entity.CLIENT, {"id": invoice["client_id"]})
        if not client:
            return ToolResult.failure(f"The client on invoice {invoice['invoice_number']} no longer exists.")

    updated = await gateway.update(Entity.CLIENT, client["id"], changes) or {**client, **changes}

    fields = " and ".join(", ".join(sorted(changes)).rsplit(", ", 1))
    message = f"I've updated {updated['name']}'s {fields}."
    data = {"client_id": updated["id"], "client_name": updated["name"], "client": updated}

    attachments = []
    if invoice is None:
        invoice = await gateway.find_one(
            Entity.INVOICE, {"user_id": user_id, "client_id": updated["id"]}, order_by="created_at"
        )
    if invoice:
        attachments.append(await build_invoice_attachment(gateway, invoice))
        data.update(invoice_id=invoice["id"], invoice_number=invoice["invoice_number"])

    return ToolResult(success=True, message=message, data=data, attachments=attachments)


async def get_client_outstanding_amount(
    gateway: PersistenceGateway,
    user_id: str,
    client_name: str,
) -> ToolResult:
    client = await find_client_by_name(gateway, user_id, client_name)
    if not client:
        return ToolResult.failure(f"I couldn't find a client named '{client_name}'.")

    invoices = await gateway.find(
        Entity.INVOICE,
        {"user_id": user_id, "client_id": client["id"], "status": ["sent", "partial", "overdue"]},
    )
    total_due = round(sum(outstanding_amount(inv) for inv in invoices), 2)

    if not invoices:
        message = f"{client['name']} has no outstanding invoices."
    else:
        message = f"{client['name']} owes {total_due:.2f} across {len(invoices)} open invoice(s)."

    return ToolResult(
        success=True,
        message=message,
        data={
            "client_id": client["id"],
            "client_name": client["name"],
            "outstanding_amount": total_due,
            "open_invoices": [inv["invoice_number"] for inv in invoices],
        },
    )


async def create_client(
    gateway: PersistenceGateway,
    user_id: str,
    name: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    tax_number: Optional[str] = None,
) -> ToolResult:
    """Add a client. An existing client with the same name gets the new details instead."""
    client, created = await upsert_client(
        gateway, user_id, name, email=email, phone=phone, address=address, tax_number=tax_number
    )
    if created:
        message = f"I've added {client['name']} as a new client."
    else:
        message = f"{client['name']} is already one of your clients, so I kept that record up to date."
    return ToolResult(
        success=True,
        message=message,
        data={"client_id": client["id"], "client_name": client["name"], "client_created": created, "client": client},
    )


async def duplicate_client(
    gateway: PersistenceGateway,
    user_id: str,
    client_name: str,
    new_name: str,
) -> ToolResult:
    """Copy a client's contact details onto a new client record."""
    source = await find_client_by_name(gateway, user_id, client_name)
    if not source:
        return ToolResult.failure(f"I couldn't find a client named '{client_name}'.")
    if await find_client_by_name(gateway, user_id, new_name):
        return ToolResult.failure(f"You already have a client named '{new_name.strip()}'.")

    contact = _supplied({field: source.get(field) for field in CONTACT_FIELDS})
    rows = await gateway.insert(Entity.CLIENT, {"user_id": user_id, "name": new_name.strip(), **contact})
    duplicate = rows[0]
    logger.info(f"Duplicated client {source['id']} as {duplicate['id']}")
    return ToolResult(
        success=True,
        message=f"I've created {duplicate['name']} with the same contact details as {source['name']}.",
        data={
            "client_id": duplicate["id"],
            "client_name": duplicate["name"],
            "source_client_id": source["id"],
            "client": duplicate,
        },
    )


async def delete_client(
    gateway: PersistenceGateway,
    user_id: str,
    client_name: str,
) -> ToolResult:
    """Delete a client that no invoice or estimate refers to."""
    client = await find_client_by_name(gateway, user_id, client_name)
    if not client:
        return ToolResult.failure(f"I couldn't find a client named '{client_name}'.")

    filters = {"user_id": user_id, "client_id": client["id"]}
    documents = await gateway.count(Entity.INVOICE, filters) + await gateway.count(Entity.ESTIMATE, filters)
    if documents:
        return ToolResult.failure(
            f"{client['name']} still has {documents} invoice(s) or estimate(s). "
            f"Delete those first if you want to remove the client."
        )

    await gateway.delete(Entity.CLIENT, client["id"])
    logger.info(f"Deleted client {client['id']} for user {user_id[:8]}")
    return ToolResult(
        success=True,
        message=f"I've deleted {client['name']} from your clients.",
        data={"client_name": client["name"]},
    )
