"""
Argument models for every chat tool.

Model-supplied arguments are validated here before any handler runs, so
handlers receive typed values and a malformed call becomes a readable
failure instead of an exception deep inside the services layer.
"""

from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ToolArgs(BaseModel):
    """Base: ignore unknown keys, strip strings, treat blank strings as missing."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class NoArgs(ToolArgs):
    pass


class InvoiceRefArgs(ToolArgs):
    invoice_identifier: Optional[str] = None


class LineItemArgs(ToolArgs):
    item_name: str = Field(..., min_length=1)
    item_description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: float = Field(..., ge=0)


class CreateInvoiceArgs(ToolArgs):
    client_name: str = Field(..., min_length=1)
    line_items: List[LineItemArgs] = Field(..., min_length=1)
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    tax_percentage: Optional[float] = Field(None, ge=0, le=100)
    discount_type: Optional[Literal["percentage", "fixed"]] = None
    discount_value: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class UpdateInvoiceArgs(InvoiceRefArgs):
    client_name: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    tax_percentage: Optional[float] = Field(None, ge=0, le=100)
    discount_type: Optional[Literal["percentage", "fixed", "none"]] = None
    discount_value: Optional[float] = Field(None, ge=0)
    line_items: Optional[List[LineItemArgs]] = None


class DuplicateInvoiceArgs(InvoiceRefArgs):
    client_name: Optional[str] = None


class DeleteInvoiceArgs(ToolArgs):
    invoice_identifier: str


class AddLineItemArgs(InvoiceRefArgs):
    item_name: str = Field(..., min_length=1)
    unit_price: float = Field(..., ge=0)
    item_description: Optional[str] = None
    quantity: Optional[float] = None
    discount_type: Optional[Literal["percentage", "fixed"]] = None
    discount_value: Optional[float] = Field(None, ge=0)


class UpdateLineItemArgs(InvoiceRefArgs):
    item_identifier: str
    item_name: Optional[str] = None
    item_description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = Field(None, ge=0)

    @field_validator("item_identifier", mode="before")
    @classmethod
    def _identifier_as_text(cls, value):
        return str(value) if isinstance(value, (int, float)) else value


class RemoveLineItemArgs(InvoiceRefArgs):
    item_identifier: str

    @field_validator("item_identifier", mode="before")
    @classmethod
    def _identifier_as_text(cls, value):
        return str(value) if isinstance(value, (int, float)) else value


class SearchClientsArgs(ToolArgs):
    query: str = Field(..., min_length=1)


class UpdateClientInfoArgs(InvoiceRefArgs):
    client_name: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_number: Optional[str] = None


class ClientNameArgs(ToolArgs):
    client_name: str = Field(..., min_length=1)


class CreateClientArgs(ToolArgs):
    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    tax_number: Optional[str] = None


class DuplicateClientArgs(ClientNameArgs):
    new_name: str = Field(..., min_length=1)


class UpdateBusinessSettingsArgs(ToolArgs):
    business_name: Optional[str] = None
    business_email: Optional[str] = None
    business_phone: Optional[str] = None
    business_address: Optional[str] = None
    default_tax_rate: Optional[float] = Field(None, ge=0, le=100)
    auto_apply_tax: Optional[bool] = None
    currency_code: Optional[str] = Field(None, min_length=3, max_length=3)
    default_payment_terms_days: Optional[int] = Field(None, ge=0, le=365)
    invoice_reference_format: Optional[str] = None

    @field_validator("currency_code")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class SetupPaypalArgs(InvoiceRefArgs):
    paypal_email: str


class SetupBankTransferArgs(InvoiceRefArgs):
    bank_details: str


class UpdatePaymentMethodsArgs(InvoiceRefArgs):
    paypal: Optional[bool] = None
    stripe: Optional[bool] = None
    bank_transfer: Optional[bool] = None


class UpdateInvoiceDesignArgs(InvoiceRefArgs):
    design: Optional[str] = None
    accent_color: Optional[str] = None


class MarkInvoicePaidArgs(InvoiceRefArgs):
    paid_amount: Optional[float] = Field(None, ge=0)
    payment_date: Optional[date] = None
    payment_notes: Optional[str] = None


class RecentInvoicesArgs(ToolArgs):
    limit: int = Field(5, ge=1, le=20)


class SearchInvoicesArgs(ToolArgs):
    client_name: Optional[str] = None
    status: Optional[Literal["draft", "sent", "partial", "paid", "overdue", "cancelled"]] = None
    limit: int = Field(10, ge=1, le=50)


class CreateEstimateArgs(ToolArgs):
    client_name: str = Field(..., min_length=1)
    line_items: List[LineItemArgs] = Field(..., min_length=1)
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    client_address: Optional[str] = None
    estimate_date: Optional[date] = None
    valid_until: Optional[date] = None
    tax_percentage: Optional[float] = Field(None, ge=0, le=100)
    discount_type: Optional[Literal["percentage", "fixed"]] = None
    discount_value: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None


class EstimateRefArgs(ToolArgs):
    estimate_identifier: Optional[str] = None
