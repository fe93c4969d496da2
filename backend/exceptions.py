"""
Exception hierarchy for the invoice assistant backend.

Persistence errors are converted into failed tool results at the tool
execution boundary; model errors are absorbed by the tool-calling loop's
retry policy. Neither is ever shown to the end user verbatim.
"""

from typing import Optional


class AssistantError(Exception):
    """Base class for all backend errors."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class PersistenceError(AssistantError):
    """A Persistence Gateway operation failed."""

    def __init__(
        self,
        message: str,
        *,
        entity: Optional[str] = None,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.entity = entity
        self.operation = operation


class ModelCallError(AssistantError):
    """The language model call failed or returned an unusable response."""


class ModelTimeoutError(ModelCallError):
    """The language model call did not complete within its timeout."""
