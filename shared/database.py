"""
Database client.

Supabase PostgreSQL client with async execution and retry.
"""

import asyncio
from typing import Optional, Any, Callable
from supabase import create_client, Client
from shared.config import settings
from shared.errors import RetryableError, ConfigError


class DatabaseClient:
    """Supabase database client wrapper with retry logic."""

    def __init__(self, url: Optional[str] = None, service_key: Optional[str] = None):
        """
        Initialize database client.

        Args:
            url: Supabase project URL (defaults to SUPABASE_URL)
            service_key: Supabase service role key (defaults to SUPABASE_SERVICE_KEY)

        Raises:
            ConfigError: If credentials are missing or the client cannot be created
        """
        url = url or settings.supabase_url
        service_key = service_key or settings.supabase_service_key
        if not url or not service_key:
            raise ConfigError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the supabase store")
        try:
            self.client: Client = create_client(url, service_key)
        except Exception as e:
            raise ConfigError(f"Failed to initialize database client: {str(e)}") from e

    async def _execute_sync(self, func: Callable[[], Any], max_attempts: int = 3) -> Any:
        """
        Execute a synchronous Supabase operation in an async context.

        Args:
            func: Synchronous function to execute
            max_attempts: Maximum number of attempts

        Returns:
            Function result

        Raises:
            RetryableError: If operation fails after all retries
        """
        for attempt in range(max_attempts):
            try:
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(None, func)
            except Exception as e:
                if attempt < max_attempts - 1:
                    # Exponential backoff: 2s, 4s, 8s
                    await asyncio.sleep(2 ** (attempt + 1))
                else:
                    raise RetryableError(
                        f"Database operation failed after {max_attempts} attempts: {str(e)}"
                    ) from e
        raise RetryableError("Database operation failed: no attempts made")

    def table(self, table_name: str) -> "AsyncTableQueryBuilder":
        """
        Get a table query builder with async execution support.

        Args:
            table_name: Name of the table

        Returns:
            AsyncTableQueryBuilder wrapper
        """
        return AsyncTableQueryBuilder(self, table_name)

    async def health_check(self, table_name: str = "composite_jobs") -> bool:
        """
        Check database connection health.

        Returns:
            True if connection is healthy, False otherwise
        """
        try:
            await self._execute_sync(
                lambda: self.client.table(table_name).select("id").limit(1).execute(),
                max_attempts=1
            )
            return True
        except RetryableError:
            return False


class AsyncTableQueryBuilder:
    """Async wrapper for Supabase table query builder."""

    def __init__(self, db_client: DatabaseClient, table_name: str):
        """Initialize async table query builder."""
        self.db_client = db_client
        self.table_name = table_name
        self._query_builder = db_client.client.table(table_name)

    def select(self, *args, **kwargs):
        """Chain select operation."""
        self._query_builder = self._query_builder.select(*args, **kwargs)
        return self

    def insert(self, *args, **kwargs):
        """Chain insert operation."""
        self._query_builder = self._query_builder.insert(*args, **kwargs)
        return self

    def update(self, *args, **kwargs):
        """Chain update operation."""
        self._query_builder = self._query_builder.update(*args, **kwargs)
        return self

    def delete(self, *args, **kwargs):
        """Chain delete operation."""
        self._query_builder = self._query_builder.delete(*args, **kwargs)
        return self

    def eq(self, *args, **kwargs):
        """Chain eq filter."""
        self._query_builder = self._query_builder.eq(*args, **kwargs)
        return self

    def in_(self, *args, **kwargs):
        """Chain in filter (conditional updates use it as a status guard)."""
        self._query_builder = self._query_builder.in_(*args, **kwargs)
        return self

    def limit(self, *args, **kwargs):
        """Chain limit operation."""
        self._query_builder = self._query_builder.limit(*args, **kwargs)
        return self

    def order(self, *args, **kwargs):
        """Chain order operation."""
        self._query_builder = self._query_builder.order(*args, **kwargs)
        return self

    async def execute(self, max_attempts: int = 3) -> Any:
        """
        Execute the query asynchronously.

        Args:
            max_attempts: Maximum number of attempts

        Returns:
            Query result (supabase APIResponse with .data)
        """
        query_builder = self._query_builder
        return await self.db_client._execute_sync(
            lambda: query_builder.execute(),
            max_attempts
        )
