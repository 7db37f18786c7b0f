"""
Integration tests for DatabaseClient and the PostgreSQL connector.

Usage:
    pytest tests/integration/test_db_connection.py -v -m integration
"""

import pytest

from querygen.config import get_settings
from querygen.domain.errors import DatabaseQueryError
from querygen.infrastructure.database_client import DatabaseClient
from querygen.repositories.sql_connector import PgConnector


@pytest.fixture
def db_config():
    """Get database configuration from settings."""
    return get_settings().database


@pytest.fixture
async def db_client(db_config):
    """Create and connect database client."""
    client = DatabaseClient(db_config)
    await client.connect()
    yield client
    if client.is_connected():
        await client.close()


@pytest.mark.integration
class TestDatabaseConnection:
    """Pool connectivity."""

    @pytest.mark.asyncio
    async def test_basic_connection(self, db_config):
        """Connect and disconnect."""
        client = DatabaseClient(db_config)
        await client.connect()
        assert client.is_connected()

        await client.close()
        assert not client.is_connected()

    @pytest.mark.asyncio
    async def test_simple_query(self, db_client):
        """A trivial query returns one row."""
        rows = await db_client.execute_query("SELECT 1 AS value")
        assert rows == [{"value": 1}]

    @pytest.mark.asyncio
    async def test_read_only_default(self, db_client):
        """Writes are refused inside the default read-only transaction."""
        with pytest.raises(DatabaseQueryError):
            await db_client.execute_query("CREATE TEMP TABLE querygen_readonly_check (id int)")


@pytest.mark.integration
class TestConnector:
    """EXPLAIN validation and paged execution."""

    @pytest.mark.asyncio
    async def test_validate_accepts_valid_query(self, db_client):
        """A valid query passes EXPLAIN."""
        await PgConnector(db_client).validate("SELECT 1;")

    @pytest.mark.asyncio
    async def test_validate_reports_driver_message(self, db_client):
        """An unknown relation is reported with the driver message."""
        with pytest.raises(DatabaseQueryError) as exc_info:
            await PgConnector(db_client).validate("SELECT * FROM querygen_missing_table")

        assert "querygen_missing_table" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_execute_with_limit(self, db_client):
        """Limit and offset are applied around the query."""
        rows = await PgConnector(db_client).execute(
            "SELECT generate_series(1, 10) AS n;", limit=3, offset=2
        )
        assert [row["n"] for row in rows] == [3, 4, 5]
