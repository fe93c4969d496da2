"""
AI components for the invoice assistant backend.

1. Chat Assistant (bounded tool-calling loop)
   - Classifies each message, offers the model a minimal tool set, and
     executes the requested invoice/client/payment operations
   - Uses Gemini function calling through the Google Gen AI SDK
   - Located in: backend/agents/chat/

The HTTP-facing orchestration is in backend/services/chat_service.py.
"""

from backend.agents.chat import (
    InMemoryConversationStore,
    ToolCallingLoop,
    ToolExecutor,
    classify,
)

__all__ = [
    "InMemoryConversationStore",
    "ToolCallingLoop",
    "ToolExecutor",
    "classify",
]
