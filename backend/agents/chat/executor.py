"""
Tool Execution Engine.

A closed dispatch table: every tool the model may call has exactly one
ToolSpec (group, argument model, handler, memory action). The table is
checked against TOOL_CATALOG at import time, so a declared tool without a
handler (or the reverse) fails fast.

execute() never raises. Invalid arguments, unresolvable references and
persistence failures all come back as ToolResult(success=False) with a
message the user can read.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set, Type

from pydantic import ValidationError

from backend.agents.chat import tool_args as args
from backend.agents.chat.memory import ConversationMemoryStore, MemoryEntry
from backend.agents.chat.schemas import TOOL_CATALOG
from backend.db.gateway import PersistenceGateway
from backend.exceptions import PersistenceError
from backend.schemas.chat import ToolResult
from backend.services import (
    business_service,
    client_service,
    estimate_service,
    invoice_service,
    invoice_status_service,
    line_item_service,
    payment_service,
)

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    args_model: Type[args.ToolArgs]
    handler: Handler
    memory_action: Optional[str] = None  # set for state-mutating tools

    @property
    def group(self) -> str:
        return TOOL_CATALOG[self.name]["group"]

    @property
    def mutating(self) -> bool:
        return self.memory_action is not None

    @property
    def accepts_invoice_identifier(self) -> bool:
        return "invoice_identifier" in self.args_model.model_fields


TOOL_REGISTRY: Dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        # invoice_core
        ToolSpec("create_invoice", args.CreateInvoiceArgs, invoice_service.create_invoice, "created_invoice"),
        ToolSpec("get_invoice_details", args.InvoiceRefArgs, invoice_service.get_invoice_details),
        ToolSpec("update_invoice", args.UpdateInvoiceArgs, invoice_service.update_invoice, "updated_invoice"),
        ToolSpec("duplicate_invoice", args.DuplicateInvoiceArgs, invoice_service.duplicate_invoice, "duplicated_invoice"),
        ToolSpec("delete_invoice", args.DeleteInvoiceArgs, invoice_service.delete_invoice, "deleted_invoice"),
        # line_items
        ToolSpec("add_line_item", args.AddLineItemArgs, line_item_service.add_line_item, "added_line_item"),
        ToolSpec("update_line_item", args.UpdateLineItemArgs, line_item_service.update_line_item, "updated_line_item"),
        ToolSpec("remove_line_item", args.RemoveLineItemArgs, line_item_service.remove_line_item, "removed_line_item"),
        # client_ops
        ToolSpec("create_client", args.CreateClientArgs, client_service.create_client, "created_client"),
        ToolSpec("search_clients", args.SearchClientsArgs, client_service.search_clients),
        ToolSpec("update_client_info", args.UpdateClientInfoArgs, client_service.update_client_info, "updated_client_info"),
        ToolSpec("get_client_outstanding_amount", args.ClientNameArgs, client_service.get_client_outstanding_amount),
        ToolSpec(
            "duplicate_client", args.DuplicateClientArgs, client_service.duplicate_client, "duplicated_client",
        ),
        ToolSpec("delete_client", args.ClientNameArgs, client_service.delete_client, "deleted_client"),
        # business_ops
        ToolSpec("get_business_settings", args.NoArgs, business_service.get_business_settings),
        ToolSpec(
            "update_business_settings", args.UpdateBusinessSettingsArgs,
            business_service.update_business_settings, "updated_business_settings",
        ),
        # payment_ops
        ToolSpec("get_payment_options", args.NoArgs, payment_service.get_payment_options),
        ToolSpec("setup_paypal_payments", args.SetupPaypalArgs, payment_service.setup_paypal_payments, "configured_paypal"),
        ToolSpec(
            "setup_bank_transfer_payments", args.SetupBankTransferArgs,
            payment_service.setup_bank_transfer_payments, "configured_bank_transfer",
        ),
        ToolSpec(
            "update_payment_methods", args.UpdatePaymentMethodsArgs,
            payment_service.update_payment_methods, "updated_payment_methods",
        ),
        # design_ops
        ToolSpec("get_design_options", args.NoArgs, invoice_service.get_design_options),
        ToolSpec("get_color_options", args.NoArgs, invoice_service.get_color_options),
        ToolSpec(
            "update_invoice_design", args.UpdateInvoiceDesignArgs,
            invoice_service.update_invoice_design, "updated_design",
        ),
        # status_ops
        ToolSpec("mark_invoice_sent", args.InvoiceRefArgs, invoice_status_service.mark_invoice_sent, "marked_sent"),
        ToolSpec("mark_invoice_paid", args.MarkInvoicePaidArgs, invoice_status_service.mark_invoice_paid, "marked_paid"),
        ToolSpec("mark_invoice_unpaid", args.InvoiceRefArgs, invoice_status_service.mark_invoice_unpaid, "marked_unpaid"),
        ToolSpec("mark_invoice_overdue", args.InvoiceRefArgs, invoice_status_service.mark_invoice_overdue, "marked_overdue"),
        ToolSpec("cancel_invoice", args.InvoiceRefArgs, invoice_status_service.cancel_invoice, "cancelled_invoice"),
        # estimate_ops
        ToolSpec("create_estimate", args.CreateEstimateArgs, estimate_service.create_estimate, "created_estimate"),
        ToolSpec(
            "convert_estimate_to_invoice", args.EstimateRefArgs,
            estimate_service.convert_estimate_to_invoice, "converted_estimate",
        ),
        # search_ops
        ToolSpec("get_recent_invoices", args.RecentInvoicesArgs, invoice_service.get_recent_invoices),
        ToolSpec("search_invoices", args.SearchInvoicesArgs, invoice_service.search_invoices),
        # utility_ops
        ToolSpec("check_usage_limits", args.NoArgs, business_service.check_usage_limits),
    )
}


def _check_registry() -> None:
    declared = set(TOOL_CATALOG)
    implemented = set(TOOL_REGISTRY)
    if declared != implemented:
        raise RuntimeError(
            f"Tool catalog and registry disagree: "
            f"undeclared={sorted(implemented - declared)}, unimplemented={sorted(declared - implemented)}"
        )


_check_registry()


def _describe_validation_error(error: ValidationError) -> str:
    fields = sorted({".".join(str(part) for part in e["loc"]) for e in error.errors()})
    return f"I'm missing or couldn't read: {', '.join(fields)}. Could you provide that?"


class ToolExecutor:
    """
    Executes tool calls for one user within one request.

    Args:
        gateway: RLS-scoped persistence gateway
        user_id: Authenticated user
        memory: Conversation memory, updated after each successful mutation
        allowed_tools: Names offered to the model this turn; anything else is refused
        active_invoice_number: Invoice used when a call omits invoice_identifier
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        user_id: str,
        memory: ConversationMemoryStore,
        allowed_tools: Optional[Iterable[str]] = None,
        active_invoice_number: Optional[str] = None,
    ) -> None:
        self.gateway = gateway
        self.user_id = user_id
        self.memory = memory
        self.allowed_tools: Optional[Set[str]] = set(allowed_tools) if allowed_tools is not None else None
        self.active_invoice_number = active_invoice_number

    async def execute(self, name: str, raw_args: Optional[Dict[str, Any]] = None) -> ToolResult:
        spec = TOOL_REGISTRY.get(name)
        if spec is None:
            logger.warning(f"Model requested unknown tool '{name}'")
            return ToolResult.failure("Sorry, I can't do that yet.", tool=name)

        if self.allowed_tools is not None and name not in self.allowed_tools:
            logger.warning(f"Model requested tool '{name}' outside the selected groups")
            return ToolResult.failure("Sorry, I can't do that as part of this request.", tool=name)

        try:
            parsed = spec.args_model.model_validate(raw_args or {})
        except ValidationError as e:
            logger.info(f"Invalid arguments for {name}: {e.error_count()} error(s)")
            return ToolResult.failure(_describe_validation_error(e), tool=name)

        kwargs = parsed.model_dump(exclude_none=True)
        if (
            spec.accepts_invoice_identifier
            and not kwargs.get("invoice_identifier")
            and not (name == "update_client_info" and kwargs.get("client_name"))
            and self.active_invoice_number
        ):
            kwargs["invoice_identifier"] = self.active_invoice_number

        logger.info(f"Executing tool {name} for user {self.user_id[:8]}")
        try:
            result = await spec.handler(self.gateway, self.user_id, **kwargs)
        except PersistenceError as e:
            logger.error(f"Tool {name} failed on {e.entity}.{e.operation}: {e.message}")
            return ToolResult.failure(
                "I couldn't save that change because of a storage problem. Please try again.", tool=name
            )
        except Exception as e:
            logger.exception(f"Tool {name} raised unexpectedly: {e}")
            return ToolResult.failure("Something went wrong while doing that. Please try again.", tool=name)

        if result.success and spec.mutating:
            self._remember(spec, result)
        if result.success and result.data.get("invoice_number") and spec.name != "delete_invoice":
            self.active_invoice_number = result.data["invoice_number"]

        return result

    def _remember(self, spec: ToolSpec, result: ToolResult) -> None:
        data = result.data
        client_name = data.get("client_name")
        if not client_name and result.attachments and result.attachments[0].client:
            client_name = result.attachments[0].client.get("name")

        if spec.name in ("delete_invoice", "delete_client"):
            entry = MemoryEntry(action=spec.memory_action)
        else:
            entry = MemoryEntry(
                action=spec.memory_action,
                invoice_number=data.get("invoice_number"),
                invoice_id=data.get("invoice_id"),
                client_name=client_name,
                client_id=data.get("client_id"),
            )
        self.memory.set(self.user_id, entry)
