"""
Record Store

Collection/id document access used by every repository:
get, query, insert and update. Repositories depend on the abstract
RecordStore; production wires SupabaseRecordStore, tests an in-memory fake.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from supabase import create_client, Client
from supabase.lib.client_options import ClientOptions

from app.config.settings import Settings
from app.infrastructure.exceptions import DatabaseError, DuplicateError


logger = logging.getLogger(__name__)

Record = Dict[str, Any]

# Postgres unique_violation
_UNIQUE_VIOLATION = "23505"


class RecordStore(ABC):
    """Minimal document-store contract."""

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        """Fetch one record by primary key, or None."""
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """Fetch records whose columns equal every value in filters."""
        pass

    @abstractmethod
    async def insert(self, collection: str, record: Record) -> Record:
        """Insert a record and return it as stored."""
        pass

    @abstractmethod
    async def update(
        self,
        collection: str,
        record_id: str,
        changes: Record,
    ) -> Optional[Record]:
        """Apply a partial update by primary key; None if no row matched."""
        pass


class SupabaseRecordStore(RecordStore):
    """
    RecordStore over Supabase PostgREST.

    The supabase client is synchronous, so every call runs in a worker
    thread. Failures surface as DatabaseError (DuplicateError on unique
    violations) so the API layer can map them to 500.
    """

    def __init__(self, settings: Settings, client: Optional[Client] = None):
        if client is None:
            options = ClientOptions(
                postgrest_client_timeout=settings.store_timeout_seconds,
            )
            client = create_client(
                settings.supabase_url,
                settings.supabase_service_role_key,
                options,
            )
        self._client = client
        logger.info("SupabaseRecordStore initialized")

    @staticmethod
    def _filter_value(value: Any) -> Any:
        if isinstance(value, bool):
            return "true" if value else "false"
        return value

    async def _execute(self, operation: str, collection: str, build):
        try:
            response = await asyncio.to_thread(lambda: build().execute())
            return response.data
        except Exception as e:
            code = getattr(e, "code", None)
            if code == _UNIQUE_VIOLATION:
                raise DuplicateError(
                    f"Duplicate record in {collection}",
                    operation=operation,
                    table=collection,
                    original_error=e,
                ) from e
            logger.error(f"Record store {operation} on {collection} failed: {e}")
            raise DatabaseError(
                f"Failed to {operation} {collection}",
                operation=operation,
                table=collection,
                original_error=e,
            ) from e

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        data = await self._execute(
            "get",
            collection,
            lambda: self._client.table(collection).select("*").eq("id", record_id).limit(1),
        )
        return data[0] if data else None

    async def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        def build():
            request = self._client.table(collection).select("*")
            for column, value in (filters or {}).items():
                request = request.eq(column, self._filter_value(value))
            if order_by:
                request = request.order(order_by, desc=descending)
            if limit is not None:
                request = request.limit(limit)
            return request

        data = await self._execute("query", collection, build)
        return list(data or [])

    async def insert(self, collection: str, record: Record) -> Record:
        data = await self._execute(
            "insert",
            collection,
            lambda: self._client.table(collection).insert(record),
        )
        return data[0] if data else dict(record)

    async def update(
        self,
        collection: str,
        record_id: str,
        changes: Record,
    ) -> Optional[Record]:
        data = await self._execute(
            "update",
            collection,
            lambda: self._client.table(collection).update(changes).eq("id", record_id),
        )
        return data[0] if data else None
