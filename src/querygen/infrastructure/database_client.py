"""
Database client for PostgreSQL using asyncpg.

Provides the connection pool shared by the SQL connector (query validation
and dataset reads), the dataset repository and the query cache store.
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Sequence
from contextlib import asynccontextmanager
import asyncpg

from ..config import DatabaseConfig
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..domain.errors import DatabaseConnectionError, DatabaseQueryError


logger = get_module_logger()


def map_query_error(error: Exception, query: str) -> DatabaseQueryError:
    """
    Translate an asyncpg exception into DatabaseQueryError.

    The driver message is preserved after a short category prefix so the
    error triage prompt sees what PostgreSQL reported.
    """
    if isinstance(error, asyncpg.QueryCanceledError):
        prefix = "Query timeout exceeded"
    elif isinstance(error, asyncpg.PostgresSyntaxError):
        prefix = "SQL syntax error"
    elif isinstance(error, asyncpg.UndefinedTableError):
        prefix = "Table does not exist"
    elif isinstance(error, asyncpg.UndefinedColumnError):
        prefix = "Column does not exist"
    elif isinstance(error, asyncpg.InvalidSchemaNameError):
        prefix = "Invalid schema name"
    elif isinstance(error, asyncpg.ReadOnlySQLTransactionError):
        prefix = "Statement not allowed in read-only transaction"
    else:
        prefix = "Query execution failed"

    return DatabaseQueryError(
        f"{prefix}: {error}",
        details={"error_type": type(error).__name__, "query": query[:200]},
    )


class DatabaseClient:
    """
    Low-level async PostgreSQL client using asyncpg.

    Usage:
        client = DatabaseClient(config)
        await client.connect()

        async with client.acquire_connection(read_only=True) as conn:
            await conn.execute("EXPLAIN SELECT 1")

        rows = await client.execute_query("SELECT * FROM employees WHERE id = $1", params=[emp_id])

        await client.close()
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._is_connected = False

        logger.info(
            "DatabaseClient initialized",
            default_schema=config.default_schema,
            connection_pool_size=config.connection_pool_max_size,
            query_timeout_seconds=config.query_timeout_seconds,
            application_name=config.application_name
        )

    async def connect(self) -> None:
        """
        Establish connection pool to the database.

        Raises:
            DatabaseConnectionError: If connection fails
        """
        if self._is_connected:
            logger.warning("Database client already connected")
            return

        trace_id = current_trace_id()
        logger.info("Establishing database connection", trace_id=trace_id)

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.config.database_url,
                min_size=self.config.connection_pool_min_size,
                max_size=self.config.connection_pool_max_size,
                command_timeout=self.config.query_timeout_seconds,
                timeout=self.config.connection_timeout_seconds,
                max_queries=self.config.connection_pool_max_queries,
                server_settings={
                    'application_name': self.config.application_name,
                    'search_path': self.config.default_schema,
                }
            )

            async with self._pool.acquire() as conn:
                if await conn.fetchval("SELECT 1") != 1:
                    raise DatabaseConnectionError("Connection test query failed")

            self._is_connected = True
            logger.info(
                "Database connection established successfully",
                pool_size=self.config.connection_pool_max_size,
                default_schema=self.config.default_schema,
                trace_id=trace_id
            )

        except asyncpg.InvalidCatalogNameError as e:
            error_msg = f"Database does not exist: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

        except asyncpg.InvalidPasswordError as e:
            error_msg = f"Authentication failed: {e}"
            logger.error(error_msg, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

        except Exception as e:
            error_msg = f"Failed to connect to database: {e}"
            logger.error(error_msg, error_type=type(e).__name__, trace_id=trace_id)
            raise DatabaseConnectionError(error_msg) from e

    async def close(self) -> None:
        """Close database connection pool."""
        if self._pool:
            await self._pool.close()

        self._is_connected = False
        self._pool = None
        logger.info("Database connection closed", trace_id=current_trace_id())

    def is_connected(self) -> bool:
        """Check if database client is connected."""
        return self._is_connected and self._pool is not None

    @asynccontextmanager
    async def acquire_connection(self, read_only: Optional[bool] = None) -> AsyncIterator[asyncpg.Connection]:
        """
        Acquire a pooled connection inside a transaction.

        Args:
            read_only: Run the transaction read-only. Defaults to
                config.enforce_read_only_default.

        Yields:
            asyncpg.Connection
        """
        if not self.is_connected() or self._pool is None:
            raise DatabaseConnectionError("Database client is not connected")

        effective_read_only = (
            self.config.enforce_read_only_default if read_only is None else read_only
        )

        async with self._pool.acquire() as connection:
            async with connection.transaction(readonly=effective_read_only):
                yield connection

    async def execute_query(
        self,
        query: str,
        params: Optional[Sequence[Any]] = None,
        read_only: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        """
        Execute a SQL query and return rows as dictionaries.

        Raises:
            DatabaseConnectionError: If the client is not connected
            DatabaseQueryError: If the query fails
        """
        trace_id = current_trace_id()
        logger.info("Executing database query", query=query[:200], trace_id=trace_id)

        try:
            async with self.acquire_connection(read_only=read_only) as conn:
                rows = await conn.fetch(query, *(params or []))
        except DatabaseConnectionError:
            raise
        except Exception as e:
            mapped = map_query_error(e, query)
            logger.error(mapped.message, query=query[:200], trace_id=trace_id)
            raise mapped from e

        results = [dict(row) for row in rows]
        logger.info("Query executed successfully", row_count=len(results), trace_id=trace_id)
        return results
