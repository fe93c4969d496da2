"""
Pytest configuration for the invoice assistant backend tests.

Sets up the test environment and shared fixtures: an in-memory persistence
gateway, a scripted model client, and a controllable clock.
"""
import copy
import itertools
import os
import re
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union
from unittest.mock import MagicMock

import pytest

# Disable config validation during tests
# This allows tests to run without requiring real environment variables
os.environ["VALIDATE_CONFIG"] = "false"

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_PUBLISHABLE_KEY", "test-publishable-key")
os.environ.setdefault("GOOGLE_API_KEY", "test-google-api-key")

from backend.agents.chat.llm import ModelClient, RetryPolicy  # noqa: E402
from backend.agents.chat.memory import InMemoryConversationStore  # noqa: E402
from backend.agents.chat.types import ModelReply, ToolCall  # noqa: E402
from backend.db.gateway import Entity, PersistenceGateway  # noqa: E402
from backend.exceptions import ModelCallError, PersistenceError  # noqa: E402

USER_ID = "user-1234-5678-abcd"


def _ilike_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a SQL ILIKE pattern (with backslash escapes) into a regex."""
    parts = []
    chars = iter(pattern)
    for char in chars:
        if char == "\\":
            parts.append(re.escape(next(chars, "\\")))
        elif char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


class InMemoryGateway(PersistenceGateway):
    """
    PersistenceGateway over plain dicts.

    Rows get sequential ids and strictly increasing created_at values, so
    "latest" ordering is deterministic. `fail(entity, operation)` makes the
    next matching call raise PersistenceError.
    """

    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.calls: List[tuple] = []
        self._ids = itertools.count(1)
        self._failures: Dict[tuple, int] = {}

    # --- test helpers ---

    def seed(self, entity: Entity, **values: Any) -> Dict[str, Any]:
        return self._store(entity, values)

    def rows(self, entity: Entity) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self.tables[entity.value]]

    def get(self, entity: Entity, record_id: str) -> Optional[Dict[str, Any]]:
        for row in self.tables[entity.value]:
            if row["id"] == record_id:
                return copy.deepcopy(row)
        return None

    def fail(self, entity: Entity, operation: str, times: int = 1) -> None:
        self._failures[(entity.value, operation)] = times

    # --- internals ---

    def _check(self, entity: Entity, operation: str) -> None:
        self.calls.append((entity.value, operation))
        remaining = self._failures.get((entity.value, operation), 0)
        if remaining:
            self._failures[(entity.value, operation)] = remaining - 1
            raise PersistenceError(
                f"Simulated {operation} failure on {entity.value}",
                entity=entity.value,
                operation=operation,
            )

    def _store(self, entity: Entity, values: Dict[str, Any]) -> Dict[str, Any]:
        n = next(self._ids)
        row = {"id": f"{entity.value}-{n}", "created_at": f"2026-01-01T00:00:00.{n:06d}+00:00"}
        row.update(copy.deepcopy(values))
        self.tables[entity.value].append(row)
        return copy.deepcopy(row)

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                if row.get(column) not in value:
                    return False
            elif value is None:
                if row.get(column) is not None:
                    return False
            elif row.get(column) != value:
                return False
        return True

    # --- PersistenceGateway ---

    async def find(
        self,
        entity: Entity,
        filters: Optional[Dict[str, Any]] = None,
        *,
        ilike: Optional[Dict[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
        columns: str = "*",
    ) -> List[Dict[str, Any]]:
        self._check(entity, "find")
        rows = [r for r in self.tables[entity.value] if self._matches(r, filters)]
        for column, pattern in (ilike or {}).items():
            regex = _ilike_regex(pattern)
            rows = [r for r in rows if regex.fullmatch(str(r.get(column) or ""))]
        if order_by:
            rows.sort(
                key=lambda r: (r.get(order_by) is not None, r.get(order_by) if r.get(order_by) is not None else 0),
                reverse=descending,
            )
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def count(self, entity: Entity, filters: Optional[Dict[str, Any]] = None) -> int:
        self._check(entity, "count")
        return sum(1 for r in self.tables[entity.value] if self._matches(r, filters))

    async def insert(
        self, entity: Entity, values: Union[Dict[str, Any], List[Dict[str, Any]]]
    ) -> List[Dict[str, Any]]:
        self._check(entity, "insert")
        batch = values if isinstance(values, list) else [values]
        if not batch:
            raise PersistenceError("Insert returned no data", entity=entity.value, operation="insert")
        return [self._store(entity, v) for v in batch]

    async def update(self, entity: Entity, record_id: str, values: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        self._check(entity, "update")
        for row in self.tables[entity.value]:
            if row["id"] == record_id:
                row.update(copy.deepcopy(values))
                return copy.deepcopy(row)
        return None

    async def delete(self, entity: Entity, record_id: str) -> None:
        self._check(entity, "delete")
        self.tables[entity.value] = [r for r in self.tables[entity.value] if r["id"] != record_id]

    async def delete_where(self, entity: Entity, filters: Dict[str, Any]) -> None:
        self._check(entity, "delete_where")
        self.tables[entity.value] = [r for r in self.tables[entity.value] if not self._matches(r, filters)]


class ScriptedModelClient(ModelClient):
    """
    ModelClient that replays scripted replies.

    Each entry of `replies` / `json_replies` is returned in order; an
    Exception entry is raised instead. Running out raises ModelCallError.
    """

    def __init__(self, replies: Optional[list] = None, json_replies: Optional[list] = None) -> None:
        self.replies = list(replies or [])
        self.json_replies = list(json_replies or [])
        self.calls: List[Dict[str, Any]] = []
        self.json_calls: List[Dict[str, Any]] = []

    async def generate(self, *, model, system_prompt, turns, tools, forced_tool=None) -> ModelReply:
        self.calls.append({
            "model": model,
            "system_prompt": system_prompt,
            "turns": copy.deepcopy(turns),
            "tools": [t["name"] for t in tools],
            "forced_tool": forced_tool,
        })
        if not self.replies:
            raise ModelCallError("No scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def generate_json(self, *, model, system_prompt, prompt, response_schema=None) -> str:
        self.json_calls.append({"model": model, "prompt": prompt, "response_schema": response_schema})
        if not self.json_replies:
            raise ModelCallError("No scripted JSON reply left")
        reply = self.json_replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def tool_reply(name: str, **args: Any) -> ModelReply:
    return ModelReply(tool_call=ToolCall(name=name, args=args))


def text_reply(text: str) -> ModelReply:
    return ModelReply(text=text)


class FakeClock:
    """Controllable clock returning aware datetimes."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Controllable monotonic clock (seconds as float)."""

    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def user_id() -> str:
    return USER_ID


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory(clock) -> InMemoryConversationStore:
    return InMemoryConversationStore(ttl=timedelta(minutes=30), clock=clock)


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Retry policy with no backoff, so retry tests don't sleep."""
    return RetryPolicy(max_attempts=2, backoff_seconds=0.0, timeout_seconds=5.0)


@pytest.fixture
def supabase_client():
    """
    Mock Supabase client for gateway tests.
    Returns a MagicMock that simulates the postgrest query builder.
    """
    mock_client = MagicMock()
    return mock_client
