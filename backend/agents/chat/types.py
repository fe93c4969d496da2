"""
Chat assistant type definitions.

Closed vocabularies (intents, tool groups, model tiers), the structured
classifier output, the per-request context pack, and the provider-neutral
conversation turns exchanged with the language model.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, TypedDict

from pydantic import BaseModel, Field, PrivateAttr

Intent = Literal[
    "create_invoice",
    "manage_invoice",
    "line_item_updates",
    "client_management",
    "payment_setup",
    "update_business",
    "design_change",
    "status_management",
    "estimate_management",
    "context_aware_update",
    "general_query",
]

ToolGroup = Literal[
    "invoice_core",
    "line_items",
    "client_ops",
    "business_ops",
    "payment_ops",
    "design_ops",
    "status_ops",
    "estimate_ops",
    "search_ops",
    "utility_ops",
]

ModelTier = Literal["budget", "mid", "premium"]

INTENTS: tuple = Intent.__args__
TOOL_GROUPS: tuple = ToolGroup.__args__

# Intents that change persisted state and therefore need at least one tool group
MUTATING_INTENTS = frozenset({
    "create_invoice",
    "manage_invoice",
    "line_item_updates",
    "client_management",
    "payment_setup",
    "update_business",
    "design_change",
    "status_management",
    "estimate_management",
    "context_aware_update",
})

INTENT_TOOL_GROUPS: Dict[str, tuple] = {
    "create_invoice": ("invoice_core", "client_ops", "business_ops"),
    "manage_invoice": ("invoice_core", "line_items", "client_ops", "search_ops", "payment_ops"),
    "line_item_updates": ("line_items", "invoice_core"),
    "client_management": ("client_ops", "invoice_core"),
    "payment_setup": ("payment_ops",),
    "update_business": ("business_ops",),
    "design_change": ("design_ops",),
    "status_management": ("status_ops", "search_ops"),
    "estimate_management": ("estimate_ops", "client_ops", "business_ops"),
    "context_aware_update": ("invoice_core", "line_items", "client_ops"),
    "general_query": ("business_ops", "client_ops", "search_ops", "utility_ops"),
}


# --- Classifier output ---

class ClassificationTargets(BaseModel):
    invoice_number: Optional[str] = Field(None, description="Invoice the message refers to, if any")


class IntentClassification(BaseModel):
    """Structured output of the intent classifier."""
    intents: List[Intent] = Field(..., min_length=1)
    complexity: Literal["simple", "moderate", "complex"]
    required_tool_groups: List[ToolGroup] = Field(default_factory=list)
    requires_sequencing: bool = False
    suggested_model: ModelTier = "mid"
    needs_context: bool = False
    missing_fields: List[str] = Field(default_factory=list)
    scope: Literal["invoice", "global", "both", "unknown"] = "unknown"
    targets: ClassificationTargets = Field(default_factory=ClassificationTargets)
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    rationale: Optional[str] = None

    # How the classification was produced: model, rule or fallback
    _source: str = PrivateAttr(default="model")

    @property
    def source(self) -> str:
        return self._source

    def with_source(self, source: str) -> "IntentClassification":
        self._source = source
        return self


# --- Context pack ---

class PaymentMethodsContext(BaseModel):
    paypal_enabled: bool = False
    paypal_email: Optional[str] = None
    stripe_enabled: bool = False
    bank_transfer_enabled: bool = False
    has_bank_details: bool = False


class UsageContext(BaseModel):
    items_created: int = 0
    limit: Optional[int] = 3
    can_create: bool = True


class ContextPack(BaseModel):
    """Snapshot of account and conversation state for one request. Never persisted."""
    user_id: str
    plan: Literal["free", "premium"] = "free"
    timezone: str = "UTC"
    currency: str = "USD"
    locale: Optional[str] = None
    active_invoice_number: Optional[str] = None
    active_invoice_source: Literal["history", "memory", "recent", "none"] = "none"
    last_shown_invoice_number: Optional[str] = None
    last_action: Optional[str] = None
    last_client_name: Optional[str] = None
    payment_methods: PaymentMethodsContext = Field(default_factory=PaymentMethodsContext)
    usage: UsageContext = Field(default_factory=UsageContext)
    conversation_summary: str = "New conversation."
    recent_invoice_numbers: List[str] = Field(default_factory=list)
    recent_emails: List[str] = Field(default_factory=list)
    recent_intents: List[str] = Field(default_factory=list)

    def is_resolvable(self, invoice_number: Optional[str]) -> bool:
        if not invoice_number:
            return False
        known = set(self.recent_invoice_numbers)
        if self.active_invoice_number:
            known.add(self.active_invoice_number)
        return invoice_number.upper() in {n.upper() for n in known}


# --- Model conversation ---

class ConversationTurn(TypedDict, total=False):
    """Provider-neutral turn passed to the model client."""
    role: Literal["user", "assistant", "system", "tool_call", "tool_result"]
    content: str
    name: str  # tool name for tool_call / tool_result
    args: Dict[str, Any]  # tool_call arguments
    result: Dict[str, Any]  # tool_result payload


@dataclass
class ToolCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelReply:
    """Either a final text answer or exactly one requested tool call."""
    text: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    usage: Dict[str, int] = field(default_factory=dict)
