"""
Persistence Gateway over Supabase.

The orchestration core only depends on the named record operations defined
by `PersistenceGateway` (find-by-filter, insert, update-by-id, delete-by-id).
`SupabaseGateway` implements them with the postgrest query builder of an
RLS-scoped Supabase client.

Only single-statement atomicity is assumed. Multi-step mutations (insert an
invoice then its line items, replace all line items then recompute totals)
are composed by the services layer and written to be safely re-runnable.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Union, cast

from postgrest.exceptions import APIError
from supabase import Client

from backend.exceptions import PersistenceError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Filters = Dict[str, Any]


class Entity(str, Enum):
    """Entities reachable through the gateway, valued by their table name."""

    USER = "user_profiles"
    CLIENT = "clients"
    INVOICE = "invoices"
    ESTIMATE = "estimates"
    LINE_ITEM = "invoice_line_items"
    ESTIMATE_LINE_ITEM = "estimate_line_items"
    PAYMENT_OPTIONS = "payment_options"
    BUSINESS_SETTINGS = "business_settings"


class PersistenceGateway(ABC):
    """Record-level operations consumed by the services layer."""

    @abstractmethod
    async def find(
        self,
        entity: Entity,
        filters: Optional[Filters] = None,
        *,
        ilike: Optional[Dict[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
        columns: str = "*",
    ) -> List[Row]:
        """Return rows matching equality filters (a list value means IN)."""

    @abstractmethod
    async def count(self, entity: Entity, filters: Optional[Filters] = None) -> int:
        """Return the number of rows matching the filters."""

    @abstractmethod
    async def insert(self, entity: Entity, values: Union[Row, List[Row]]) -> List[Row]:
        """Insert one or many rows and return what was stored."""

    @abstractmethod
    async def update(self, entity: Entity, record_id: str, values: Row) -> Optional[Row]:
        """Update a row by id and return it (None if nothing matched)."""

    @abstractmethod
    async def delete(self, entity: Entity, record_id: str) -> None:
        """Delete a row by id."""

    @abstractmethod
    async def delete_where(self, entity: Entity, filters: Filters) -> None:
        """Delete every row matching the filters."""

    async def find_one(
        self,
        entity: Entity,
        filters: Optional[Filters] = None,
        **kwargs: Any,
    ) -> Optional[Row]:
        """Return the first matching row or None."""
        kwargs["limit"] = 1
        rows = await self.find(entity, filters, **kwargs)
        return rows[0] if rows else None


class SupabaseGateway(PersistenceGateway):
    """
    PersistenceGateway backed by an authenticated Supabase client.

    Args:
        supabase_client: Client created per request with the user's JWT
                         (see backend/db/client.py), so RLS scopes every
                         statement to auth.uid().
    """

    def __init__(self, supabase_client: Client) -> None:
        self._client = supabase_client

    def _apply_filters(self, query: Any, filters: Optional[Filters]) -> Any:
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                query = query.in_(column, list(value))
            elif value is None:
                query = query.is_(column, "null")
            else:
                query = query.eq(column, value)
        return query

    async def find(
        self,
        entity: Entity,
        filters: Optional[Filters] = None,
        *,
        ilike: Optional[Dict[str, str]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
        columns: str = "*",
    ) -> List[Row]:
        try:
            query = self._client.table(entity.value).select(columns)
            query = self._apply_filters(query, filters)
            for column, pattern in (ilike or {}).items():
                query = query.ilike(column, pattern)
            if order_by:
                query = query.order(order_by, desc=descending)
            if limit is not None:
                query = query.limit(limit)
            result = query.execute()
        except APIError as e:
            logger.error(f"find on {entity.value} failed: {e.message}")
            raise PersistenceError(
                f"Failed to read {entity.value}", entity=entity.value, operation="find", cause=e
            ) from e

        return cast(List[Row], result.data or [])

    async def count(self, entity: Entity, filters: Optional[Filters] = None) -> int:
        try:
            query = self._client.table(entity.value).select("id", count="exact")
            result = self._apply_filters(query, filters).execute()
        except APIError as e:
            logger.error(f"count on {entity.value} failed: {e.message}")
            raise PersistenceError(
                f"Failed to count {entity.value}", entity=entity.value, operation="count", cause=e
            ) from e

        if result.count is not None:
            return int(result.count)
        return len(result.data or [])

    async def insert(self, entity: Entity, values: Union[Row, List[Row]]) -> List[Row]:
        try:
            result = self._client.table(entity.value).insert(values).execute()
        except APIError as e:
            logger.error(f"insert into {entity.value} failed: {e.message}")
            raise PersistenceError(
                f"Failed to insert into {entity.value}", entity=entity.value, operation="insert", cause=e
            ) from e

        if not result.data:
            raise PersistenceError(
                f"Insert into {entity.value} returned no data", entity=entity.value, operation="insert"
            )

        return cast(List[Row], result.data)

    async def update(self, entity: Entity, record_id: str, values: Row) -> Optional[Row]:
        try:
            result = (
                self._client.table(entity.value)
                .update(values)
                .eq("id", record_id)
                .execute()
            )
        except APIError as e:
            logger.error(f"update on {entity.value} failed: {e.message}")
            raise PersistenceError(
                f"Failed to update {entity.value}", entity=entity.value, operation="update", cause=e
            ) from e

        if not result.data:
            return None
        return cast(Row, result.data[0])

    async def delete(self, entity: Entity, record_id: str) -> None:
        try:
            self._client.table(entity.value).delete().eq("id", record_id).execute()
        except APIError as e:
            logger.error(f"delete on {entity.value} failed: {e.message}")
            raise PersistenceError(
                f"Failed to delete from {entity.value}", entity=entity.value, operation="delete", cause=e
            ) from e

    async def delete_where(self, entity: Entity, filters: Filters) -> None:
        if not filters:
            raise PersistenceError(
                "Refusing to delete without filters", entity=entity.value, operation="delete_where"
            )
        try:
            query = self._client.table(entity.value).delete()
            self._apply_filters(query, filters).execute()
        except APIError as e:
            logger.error(f"delete_where on {entity.value} failed: {e.message}")
            raise PersistenceError(
                f"Failed to delete from {entity.value}", entity=entity.value, operation="delete_where", cause=e
            ) from e
