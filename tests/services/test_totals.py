"""
Tests for invoice financial recomputation and payment status derivation.
"""

import pytest

from backend.services.totals import (
    compute_discount_amount,
    compute_invoice_totals,
    compute_line_total,
    derive_payment_status,
    normalize_quantity,
    outstanding_amount,
)


class TestLineTotals:
    def test_quantity_times_price(self):
        assert compute_line_total(3, 19.99) == 59.97

    def test_missing_or_negative_quantity_defaults_to_one(self):
        assert normalize_quantity(None) == 1.0
        assert normalize_quantity("") == 1.0
        assert normalize_quantity(-4) == 1.0

    def test_zero_quantity_is_kept(self):
        assert compute_line_total(0, 100) == 0.0

    def test_item_discount(self):
        assert compute_line_total(2, 50, "percentage", 10) == 90.0
        assert compute_line_total(1, 50, "fixed", 80) == 0.0


class TestDiscounts:
    def test_percentage_capped_at_100(self):
        assert compute_discount_amount(200, "percentage", 150) == 200.0

    def test_fixed_capped_at_base(self):
        assert compute_discount_amount(200, "fixed", 500) == 200.0

    def test_unknown_type_means_no_discount(self):
        assert compute_discount_amount(200, "bogus", 50) == 0.0
        assert compute_discount_amount(200, None, 50) == 0.0


class TestInvoiceTotals:
    """total = (subtotal - discount) * (1 + tax / 100)"""

    def test_tax_and_percentage_discount(self):
        items = [{"total_price": 500}, {"total_price": 500}]

        totals = compute_invoice_totals(items, "percentage", 10, 20)

        assert totals.subtotal == 1000.0
        assert totals.discount_amount == 100.0
        assert totals.tax_amount == 180.0
        assert totals.total == 1080.0
        assert totals.as_invoice_fields() == {"subtotal_amount": 1000.0, "total_amount": 1080.0}

    def test_rebuilds_missing_line_totals(self):
        items = [{"quantity": 2, "unit_price": 25}, {"total_price": None, "quantity": None, "unit_price": 10}]

        totals = compute_invoice_totals(items)

        assert totals.subtotal == 60.0
        assert totals.total == 60.0

    def test_order_independent(self):
        items = [{"total_price": 10.1}, {"total_price": 20.2}, {"total_price": 30.3}]

        forward = compute_invoice_totals(items, "fixed", 5, 7.5)
        backward = compute_invoice_totals(list(reversed(items)), "fixed", 5, 7.5)

        assert forward == backward

    def test_no_items(self):
        assert compute_invoice_totals([], "fixed", 50, 10).total == 0.0


class TestDerivePaymentStatus:
    @pytest.mark.parametrize("paid, expected_status, expected_paid", [
        (0, "sent", 0.0),
        (-10, "sent", 0.0),
        (100, "partial", 100.0),
        (300, "paid", 300.0),
        (450, "paid", 300.0),
    ])
    def test_status_from_amount(self, paid, expected_status, expected_paid):
        result = derive_payment_status(paid, 300)

        assert result == {"status": expected_status, "paid_amount": expected_paid}

    def test_outstanding_never_negative(self):
        assert outstanding_amount({"total_amount": 300, "paid_amount": 100}) == 200.0
        assert outstanding_amount({"total_amount": 300, "paid_amount": 500}) == 0.0
