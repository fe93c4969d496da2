"""
Services layer for the invoice assistant backend.

Each service receives an RLS-scoped PersistenceGateway and the authenticated
user_id. Tool-facing functions return a ToolResult; persistence failures
raise PersistenceError and are converted by the tool executor.
"""

from backend.services import (
    business_service,
    client_service,
    invoice_service,
    invoice_status_service,
    line_item_service,
    payment_service,
)
from backend.services.reference_number_service import generate_next_reference
from backend.services.totals import compute_invoice_totals, derive_payment_status

__all__ = [
    "business_service",
    "client_service",
    "invoice_service",
    "invoice_status_service",
    "line_item_service",
    "payment_service",
    "generate_next_reference",
    "compute_invoice_totals",
    "derive_payment_status",
]
