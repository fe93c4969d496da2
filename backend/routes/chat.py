"""
Chat assistant API endpoints.

Flow:
1. POST /ai/chat - Send one message, get the assistant's reply plus any
   invoice attachments produced by the tools it ran
2. DELETE /ai/chat/memory - Forget the caller's conversation memory
"""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from backend.agents.chat.llm import ModelClient, get_model_client
from backend.agents.chat.memory import ConversationMemoryStore, InMemoryConversationStore
from backend.auth.dependencies import AuthenticatedUser, get_authenticated_user
from backend.config import settings
from backend.db.client import get_supabase_client
from backend.db.gateway import PersistenceGateway, SupabaseGateway
from backend.schemas.chat import ChatRequest, ChatResponse, ClearMemoryResponse
from backend.services.chat_service import process_chat_message
from backend.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/ai", tags=["chat"])

_conversation_memory = InMemoryConversationStore(
    ttl=timedelta(minutes=settings.CONVERSATION_MEMORY_TTL_MINUTES)
)


def get_conversation_memory() -> ConversationMemoryStore:
    """Process-wide conversation memory (overridden in tests)."""
    return _conversation_memory


def get_gateway(
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)]
) -> PersistenceGateway:
    """Persistence gateway scoped to the caller through RLS."""
    return SupabaseGateway(get_supabase_client(auth_user.access_token))


@router.post(
    "/chat",
    response_model=ChatResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a message to the invoice assistant",
    description="""
    Send one natural-language message to the invoice assistant.

    The assistant may create or change invoices, clients, payment methods
    and business settings on the caller's behalf. Every invoice it changes
    is returned as an attachment so the client can render it right away.

    Security:
    - Requires valid Authorization Bearer token
    - userId in the body, when present, must match the token
    """
)
async def chat(
    request: ChatRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    gateway: Annotated[PersistenceGateway, Depends(get_gateway)],
    model_client: Annotated[ModelClient, Depends(get_model_client)],
    memory: Annotated[ConversationMemoryStore, Depends(get_conversation_memory)],
) -> ChatResponse:
    user_id = auth_user.user_id

    if request.user_id and request.user_id != user_id:
        logger.warning(f"Body userId does not match token for user {user_id[:8]}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "forbidden",
                "details": "userId does not match the authenticated user"
            }
        )

    logger.info(f"Chat message received from user {user_id[:8]} ({len(request.history)} prior turns)")

    try:
        return await process_chat_message(request, user_id, gateway, model_client, memory)
    except Exception as e:
        logger.exception(f"Chat request failed for user {user_id[:8]}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "chat_failed",
                "details": "Something went wrong while handling your message. Please try again."
            }
        )


@router.delete(
    "/chat/memory",
    response_model=ClearMemoryResponse,
    status_code=status.HTTP_200_OK,
    summary="Clear conversation memory",
    description="Forget the last invoice/client the assistant remembered for the caller."
)
async def clear_chat_memory(
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    memory: Annotated[ConversationMemoryStore, Depends(get_conversation_memory)],
) -> ClearMemoryResponse:
    memory.clear(auth_user.user_id)
    logger.info(f"Conversation memory cleared for user {auth_user.user_id[:8]}")
    return ClearMemoryResponse(message="Conversation memory cleared")
