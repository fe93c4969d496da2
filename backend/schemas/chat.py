"""
Pydantic schemas for the chat assistant endpoint and tool results.

The mobile client speaks camelCase (userId, threadId, lineItems); fields are
declared snake_case and exposed through camelCase aliases. Both spellings are
accepted on input.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Attachments and tool results ---

class InvoiceAttachment(CamelModel):
    """
    Up-to-date snapshot of an invoice, returned after every invoice mutation
    so the client can render the artifact without another round-trip.
    """
    type: Literal["invoice"] = Field(default="invoice", description="Attachment kind")
    invoice_id: str = Field(..., description="Invoice UUID")
    invoice: Dict[str, Any] = Field(..., description="Invoice row as persisted")
    line_items: List[Dict[str, Any]] = Field(default_factory=list, description="Current line items")
    client_id: Optional[str] = Field(None, description="Client UUID (null if the invoice has none)")
    client: Optional[Dict[str, Any]] = Field(None, description="Client row embedded for display")


class ToolResult(BaseModel):
    """Outcome of one tool execution. Failures carry a user-readable message."""

    success: bool
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    attachments: List[InvoiceAttachment] = Field(default_factory=list)

    @classmethod
    def failure(cls, message: str, **data: Any) -> "ToolResult":
        return cls(success=False, message=message, data=data)


# --- Chat request / response ---

class ChatMessage(CamelModel):
    """A single conversation turn."""
    id: Optional[str] = Field(None, description="Message id (generated by the server for new turns)")
    role: Literal["user", "assistant", "system"] = Field(..., description="Author of the message")
    content: str = Field(..., description="Plain-text message body")
    created_at: Optional[str] = Field(None, description="ISO-8601 timestamp")
    attachments: List[InvoiceAttachment] = Field(default_factory=list)


class UserContext(CamelModel):
    """Locale hints supplied by the client."""
    currency: Optional[str] = Field(None, description="ISO currency code, e.g. 'USD'", examples=["USD"])
    locale: Optional[str] = Field(None, description="BCP-47 locale, e.g. 'en-US'", examples=["en-US"])


class ChatRequest(CamelModel):
    """
    Request model for POST /ai/chat.

    user_id is optional; when sent it must match the authenticated user.
    """
    message: str = Field(..., min_length=1, max_length=4000, description="The user's message")
    user_id: Optional[str] = Field(None, description="Caller's user id (checked against the token)")
    thread_id: Optional[str] = Field(None, description="Conversation thread id")
    history: List[ChatMessage] = Field(default_factory=list, description="Previous turns, oldest first")
    user_context: Optional[UserContext] = Field(None, description="Currency/locale hints")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "message": "Create invoice for Oliver, web design for 500",
                "threadId": "chat-1718000000000",
                "history": [],
                "userContext": {"currency": "USD", "locale": "en-US"}
            }
        },
    )


class ThreadInfo(CamelModel):
    id: str
    user_id: str


class ChatResponse(CamelModel):
    """
    Response model for POST /ai/chat.

    messages always holds the echoed user turn followed by the assistant turn.
    """
    success: bool = Field(..., description="False only when the request could not be served")
    messages: List[ChatMessage] = Field(..., description="User turn + assistant turn")
    thread: ThreadInfo
    attachments: List[InvoiceAttachment] = Field(default_factory=list)


class ClearMemoryResponse(CamelModel):
    """Response model for DELETE /ai/chat/memory."""
    status: Literal["CLEARED"] = "CLEARED"
    message: str = Field(..., description="Human-readable confirmation")
