"""
Logging utilities for the invoice assistant backend.

CRITICAL PRIVACY RULES:
- NEVER log chat message bodies (they contain client names, emails and amounts)
- NEVER log Supabase Auth tokens, API keys, or secrets
- NEVER log full invoice rows or bank details
- Truncate user ids to their first 8 characters

Acceptable logging:
- High-level events (e.g., "Intent classified by rule", "Tool loop finished")
- Tool names, step counts, model names, document numbers
- Error types and sanitized error messages
"""

import logging
from typing import Optional

from backend.config import settings


def get_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Get a configured logger for the specified module.

    Args:
        name: Module name (typically __name__)
        level: Optional logging level (defaults to settings.LOG_LEVEL)

    Usage:
        >>> from backend.utils.logging import get_logger
        >>> logger = get_logger(__name__)
    """
    logger = logging.getLogger(name)

    if level is None:
        level = logging.getLevelName(settings.LOG_LEVEL.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger.setLevel(level)

    # Avoid duplicate handlers on re-import
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(handler)

    return logger
