"""
Language model boundary.

The loop and the classifier talk to a provider-neutral `ModelClient`.
`GeminiModelClient` adapts it to the Google Gen AI SDK. `RetryPolicy` is
the single place where model-call timeouts, retries and backoff live.

Every transport or SDK failure is raised as ModelCallError (or
ModelTimeoutError); callers decide how to degrade.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from google import genai
from google.genai import types
from pydantic import BaseModel

from backend.agents.chat.types import ConversationTurn, ModelReply, ToolCall
from backend.config import settings
from backend.exceptions import ModelCallError, ModelTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_gemini_client: Optional[genai.Client] = None


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry for model calls.

    Attributes:
        max_attempts: Total attempts including the first
        backoff_seconds: Delay before attempt n is backoff_seconds * (n - 1)
        timeout_seconds: Per-attempt timeout (further capped by the caller's budget)
    """
    max_attempts: int = 2
    backoff_seconds: float = 0.5
    timeout_seconds: float = 12.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.MODEL_CALL_MAX_ATTEMPTS,
            timeout_seconds=settings.MODEL_CALL_TIMEOUT_SECONDS,
        )

    async def run(
        self,
        call: Callable[[], Awaitable[T]],
        budget_seconds: Optional[float] = None,
        label: str = "model call",
    ) -> T:
        """
        Run `call` until it succeeds or attempts/budget run out.

        Raises:
            ModelCallError: The last failure once no attempt succeeded
        """
        started = time.monotonic()
        last_error: Optional[ModelCallError] = None

        for attempt in range(1, self.max_attempts + 1):
            timeout = self.timeout_seconds
            if budget_seconds is not None:
                timeout = min(timeout, budget_seconds - (time.monotonic() - started))
                if timeout <= 0:
                    break

            try:
                return await asyncio.wait_for(call(), timeout=timeout)
            except asyncio.TimeoutError:
                last_error = ModelTimeoutError(f"{label} timed out after {timeout:.1f}s")
            except ModelCallError as e:
                last_error = e

            logger.warning(f"{label} failed (attempt {attempt}/{self.max_attempts}): {last_error.message}")
            if attempt < self.max_attempts and self.backoff_seconds > 0:
                await asyncio.sleep(self.backoff_seconds * attempt)

        raise last_error or ModelTimeoutError(f"{label} had no time budget left")


class ModelClient(ABC):
    """Chat-style model with function calling and JSON output."""

    @abstractmethod
    async def generate(
        self,
        *,
        model: str,
        system_prompt: str,
        turns: List[ConversationTurn],
        tools: List[Dict[str, Any]],
        forced_tool: Optional[str] = None,
    ) -> ModelReply:
        """Return a final text answer or exactly one tool call."""

    @abstractmethod
    async def generate_json(
        self,
        *,
        model: str,
        system_prompt: str,
        prompt: str,
        response_schema: Optional[Type[BaseModel]] = None,
    ) -> str:
        """Return raw JSON text for a structured-output request, constrained to response_schema if given."""


def _get_gemini_client() -> genai.Client:
    """Lazy initialization of the shared Gemini client."""
    global _gemini_client

    if _gemini_client is None:
        if not settings.GOOGLE_API_KEY:
            raise ModelCallError(
                "GOOGLE_API_KEY is not configured. Please set it in your .env file."
            )
        _gemini_client = genai.Client(api_key=settings.GOOGLE_API_KEY)
        logger.info("Gemini client initialized for the chat assistant")

    return _gemini_client


def _to_contents(turns: List[ConversationTurn]) -> List[types.Content]:
    contents: List[types.Content] = []
    for turn in turns:
        role = turn.get("role")
        if role == "user":
            contents.append(types.Content(role="user", parts=[types.Part(text=turn["content"])]))
        elif role == "assistant":
            contents.append(types.Content(role="model", parts=[types.Part(text=turn["content"])]))
        elif role == "system":
            # Gemini has no mid-conversation system role
            contents.append(
                types.Content(role="user", parts=[types.Part(text=f"[Instruction] {turn['content']}")])
            )
        elif role == "tool_call":
            contents.append(types.Content(
                role="model",
                parts=[types.Part(function_call=types.FunctionCall(name=turn["name"], args=turn.get("args", {})))],
            ))
        elif role == "tool_result":
            contents.append(types.Content(
                role="user",
                parts=[types.Part.from_function_response(name=turn["name"], response=turn.get("result", {}))],
            ))
    return contents


def _parse_reply(response: Any) -> ModelReply:
    if not response.candidates or not response.candidates[0].content:
        raise ModelCallError("Model returned no candidates")

    texts: List[str] = []
    tool_call: Optional[ToolCall] = None
    for part in response.candidates[0].content.parts or []:
        if part.function_call and tool_call is None:
            tool_call = ToolCall(name=part.function_call.name, args=dict(part.function_call.args or {}))
        elif part.text:
            texts.append(part.text)

    usage: Dict[str, int] = {}
    if response.usage_metadata:
        usage = {
            "input_tokens": response.usage_metadata.prompt_token_count or 0,
            "output_tokens": response.usage_metadata.candidates_token_count or 0,
        }

    text = "".join(texts).strip() or None
    if tool_call is None and text is None:
        raise ModelCallError("Model returned neither text nor a tool call")

    return ModelReply(text=None if tool_call else text, tool_call=tool_call, usage=usage)


class GeminiModelClient(ModelClient):
    """ModelClient backed by google-genai's async API."""

    def __init__(self, client: Optional[genai.Client] = None, temperature: float = 0.2) -> None:
        self._client = client
        self._temperature = temperature

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = _get_gemini_client()
        return self._client

    async def generate(
        self,
        *,
        model: str,
        system_prompt: str,
        turns: List[ConversationTurn],
        tools: List[Dict[str, Any]],
        forced_tool: Optional[str] = None,
    ) -> ModelReply:
        tool_config = None
        if forced_tool:
            tool_config = types.ToolConfig(
                function_calling_config=types.FunctionCallingConfig(
                    mode="ANY", allowed_function_names=[forced_tool]
                )
            )

        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=self._temperature,
            tools=[types.Tool(function_declarations=[types.FunctionDeclaration(**t) for t in tools])] if tools else None,
            tool_config=tool_config,
        )

        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=_to_contents(turns),  # type: ignore
                config=config,
            )
        except ModelCallError:
            raise
        except Exception as e:
            raise ModelCallError(f"Gemini generate_content failed: {e}", cause=e) from e

        return _parse_reply(response)

    async def generate_json(
        self,
        *,
        model: str,
        system_prompt: str,
        prompt: str,
        response_schema: Optional[Type[BaseModel]] = None,
    ) -> str:
        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=0.0,
            response_mime_type="application/json",
            response_schema=response_schema,
        )

        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=prompt,
                config=config,
            )
        except ModelCallError:
            raise
        except Exception as e:
            raise ModelCallError(f"Gemini JSON request failed: {e}", cause=e) from e

        if not response.text:
            raise ModelCallError("Model returned an empty JSON response")
        return response.text


def get_model_client() -> ModelClient:
    """Shared model client used by the chat route."""
    return GeminiModelClient()
