import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from supabase import create_client, Client

from lib.config import get_settings
from lib.error_handler import AppError

logger = logging.getLogger(__name__)

JOURNAL_TABLE = 'Journal Entries'


class Database:
    """Async facade over the blocking supabase-py client.

    Each call is pushed to the default executor so the search pipeline can
    issue several RPCs at once with asyncio.gather.
    """

    def __init__(self, client: Optional[Client] = None):
        if client is None:
            settings = get_settings()
            client = create_client(settings.supabase_url, settings.supabase_key)
        self.supabase: Client = client

    async def _run(self, description: str, call: Callable[[], Any]) -> Any:
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, call)
        except AppError:
            raise
        except Exception as e:
            logger.error(f"Supabase {description} failed: {str(e)}")
            raise AppError(f"Database error during {description}: {str(e)}", status_code=502)

    async def rpc(self, function_name: str, params: Dict[str, Any]) -> Any:
        """Call a Postgres function and return its data"""
        result = await self._run(
            f"rpc {function_name}",
            lambda: self.supabase.rpc(function_name, params).execute()
        )
        return result.data

    async def select(
        self,
        table: str,
        columns: str = '*',
        eq: Optional[Dict[str, Any]] = None,
        gte: Optional[Dict[str, Any]] = None,
        lte: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        def call():
            query = self.supabase.table(table).select(columns)
            for column, value in (eq or {}).items():
                query = query.eq(column, value)
            for column, value in (gte or {}).items():
                query = query.gte(column, value)
            for column, value in (lte or {}).items():
                query = query.lte(column, value)
            if order:
                query = query.order(order, desc=descending)
            if limit:
                query = query.limit(limit)
            return query.execute()

        result = await self._run(f"select from {table}", call)
        return result.data or []

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._run(
            f"insert into {table}",
            lambda: self.supabase.table(table).insert(row).execute()
        )
        if not result.data:
            raise AppError(f"Insert into {table} returned no data", status_code=502)
        return result.data[0]

    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: Optional[str] = None) -> List[Dict[str, Any]]:
        def call():
            if on_conflict:
                return self.supabase.table(table).upsert(row, on_conflict=on_conflict).execute()
            return self.supabase.table(table).upsert(row).execute()

        result = await self._run(f"upsert into {table}", call)
        return result.data or []

    async def update(self, table: str, match: Dict[str, Any], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        def call():
            query = self.supabase.table(table).update(values)
            for column, value in match.items():
                query = query.eq(column, value)
            return query.execute()

        result = await self._run(f"update {table}", call)
        return result.data or []

    async def count(self, table: str, eq: Dict[str, Any]) -> int:
        def call():
            query = self.supabase.table(table).select('id', count='exact')
            for column, value in eq.items():
                query = query.eq(column, value)
            return query.execute()

        result = await self._run(f"count {table}", call)
        return result.count or 0

    async def count_entries(self, user_id: str) -> int:
        return await self.count(JOURNAL_TABLE, {'user_id': user_id})
