"""
Financial recomputation for invoices.

Totals are always derived from the current line items, never patched:

    subtotal  = sum(line item totals)
    discount  = subtotal * value / 100   (percentage)
              | value                    (fixed, capped at subtotal)
    total     = (subtotal - discount) * (1 + tax_percentage / 100)
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

INVOICE_STATUSES = ("draft", "sent", "partial", "paid", "overdue", "cancelled")


def _money(value: float) -> float:
    return round(float(value), 2)


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def normalize_quantity(quantity: Any) -> float:
    """Missing or negative quantities default to 1; an explicit 0 is kept as a placeholder."""
    if quantity is None or quantity == "":
        return 1.0
    value = _as_float(quantity, 1.0)
    return value if value >= 0 else 1.0


def compute_discount_amount(
    base: float,
    discount_type: Optional[str],
    discount_value: Any,
) -> float:
    """Discount in currency units for a base amount. Unknown types mean no discount."""
    value = _as_float(discount_value)
    if value <= 0 or base <= 0:
        return 0.0
    if discount_type == "percentage":
        return _money(base * min(value, 100.0) / 100)
    if discount_type == "fixed":
        return _money(min(value, base))
    return 0.0


def compute_line_total(
    quantity: Any,
    unit_price: Any,
    discount_type: Optional[str] = None,
    discount_value: Any = None,
) -> float:
    """quantity x unit_price, minus the optional per-item discount."""
    gross = normalize_quantity(quantity) * _as_float(unit_price)
    return _money(gross - compute_discount_amount(gross, discount_type, discount_value))


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: float
    discount_amount: float
    tax_amount: float
    total: float

    def as_invoice_fields(self) -> Dict[str, float]:
        """Columns persisted on the invoice row."""
        return {"subtotal_amount": self.subtotal, "total_amount": self.total}


def compute_invoice_totals(
    line_items: Iterable[Dict[str, Any]],
    discount_type: Optional[str] = None,
    discount_value: Any = None,
    tax_percentage: Any = None,
) -> InvoiceTotals:
    """
    Recompute invoice totals from line item rows.

    Each row's stored total_price is trusted only when present; otherwise the
    line total is rebuilt from quantity and unit_price.
    """
    subtotal = 0.0
    for item in line_items:
        if item.get("total_price") is not None:
            subtotal += _as_float(item["total_price"])
        else:
            subtotal += compute_line_total(
                item.get("quantity"),
                item.get("unit_price"),
                item.get("discount_type"),
                item.get("discount_value"),
            )
    subtotal = _money(subtotal)

    discount_amount = compute_discount_amount(subtotal, discount_type, discount_value)
    taxable = subtotal - discount_amount
    tax_amount = _money(taxable * _as_float(tax_percentage) / 100)

    return InvoiceTotals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        total=_money(taxable + tax_amount),
    )


def derive_payment_status(paid_amount: Any, total: Any) -> Dict[str, Any]:
    """
    Derive status from a paid amount.

    Returns the fields to persist: status and the (clamped) paid_amount.
    Over-payment is clamped to the total and counts as paid.
    """
    paid = max(_as_float(paid_amount), 0.0)
    invoice_total = _as_float(total)

    if paid <= 0:
        return {"status": "sent", "paid_amount": 0.0}
    if paid < invoice_total:
        return {"status": "partial", "paid_amount": _money(paid)}
    return {"status": "paid", "paid_amount": _money(invoice_total)}


def outstanding_amount(invoice: Dict[str, Any]) -> float:
    """Remaining balance on an invoice (never negative)."""
    return _money(max(_as_float(invoice.get("total_amount")) - _as_float(invoice.get("paid_amount")), 0.0))
