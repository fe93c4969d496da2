"""
Conversation memory: the last state-changing action per user.

Lets a follow-up like "add his address" or "update it" resolve to the
invoice/client just touched, without asking the model to re-derive it.
The store is an injected interface; the in-process implementation below is
the default and is shared across requests of different users.

Concurrent requests for the same user race on set(); last writer wins.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MemoryEntry:
    """
    Last action taken for a user.

    Attributes:
        action: Tag such as created_invoice, added_line_item,
                updated_client_info, updated_payment_methods
        timestamp: When the action happened (set by the store if omitted)
    """
    action: str
    invoice_number: Optional[str] = None
    invoice_id: Optional[str] = None
    client_name: Optional[str] = None
    client_id: Optional[str] = None
    timestamp: Optional[datetime] = field(default=None, compare=False)


class ConversationMemoryStore(ABC):
    """Key-value store of MemoryEntry keyed by user id."""

    @abstractmethod
    def get(self, user_id: str) -> Optional[MemoryEntry]:
        """Return the entry, or None if absent or expired."""

    @abstractmethod
    def set(self, user_id: str, entry: MemoryEntry) -> None:
        """Overwrite the user's entry."""

    @abstractmethod
    def clear(self, user_id: str) -> None:
        """Forget the user's entry."""


class InMemoryConversationStore(ConversationMemoryStore):
    """
    Process-wide dict with a fixed time-to-live, expired lazily on read.

    Args:
        ttl: Entry lifetime (30 minutes by default)
        clock: Returns the current aware datetime; injectable for tests
    """

    def __init__(self, ttl: timedelta = timedelta(minutes=30), clock: Clock = utc_now) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: Dict[str, MemoryEntry] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[MemoryEntry]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            if entry.timestamp is None or self._clock() - entry.timestamp > self._ttl:
                del self._entries[user_id]
                logger.debug(f"Conversation memory expired for user {user_id[:8]}")
                return None
            return entry

    def set(self, user_id: str, entry: MemoryEntry) -> None:
        if entry.timestamp is None:
            entry = replace(entry, timestamp=self._clock())
        with self._lock:
            self._entries[user_id] = entry
        logger.debug(f"Conversation memory set for user {user_id[:8]}: {entry.action}")

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def __len__(self) -> int:
        return len(self._entries)
