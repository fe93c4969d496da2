"""
Chat Assistant Package

Conversational invoice management over a bounded tool-calling loop.

Main Components:
- memory: Per-user conversation memory with TTL
- context: Context pack builder (plan, active invoice, payment methods, usage)
- classifier: Intent classification (rule shortcut, model, fallback)
- assembler: System prompt modules and tool declarations per request
- loop: Tool-calling state machine with step and time bounds
- executor: Closed tool registry, argument validation and dispatch
- llm: Model client boundary (Gemini) and retry policy

Usage:
    from backend.agents.chat import classify, assemble, ToolCallingLoop

The request-level orchestration lives in backend/services/chat_service.py.
"""

from backend.agents.chat.assembler import AssembledPrompt, assemble
from backend.agents.chat.classifier import classify, dominant_tool, select_model
from backend.agents.chat.context import build_context_pack
from backend.agents.chat.executor import TOOL_REGISTRY, ToolExecutor
from backend.agents.chat.llm import GeminiModelClient, ModelClient, RetryPolicy, get_model_client
from backend.agents.chat.loop import LoopOutcome, LoopState, ToolCallingLoop
from backend.agents.chat.memory import (
    ConversationMemoryStore,
    InMemoryConversationStore,
    MemoryEntry,
)
from backend.agents.chat.types import ContextPack, IntentClassification

__all__ = [
    # Memory
    "ConversationMemoryStore",
    "InMemoryConversationStore",
    "MemoryEntry",
    # Context and classification
    "build_context_pack",
    "classify",
    "dominant_tool",
    "select_model",
    "ContextPack",
    "IntentClassification",
    # Assembly
    "AssembledPrompt",
    "assemble",
    # Loop and execution
    "LoopOutcome",
    "LoopState",
    "ToolCallingLoop",
    "TOOL_REGISTRY",
    "ToolExecutor",
    # Model boundary
    "GeminiModelClient",
    "ModelClient",
    "RetryPolicy",
    "get_model_client",
]
