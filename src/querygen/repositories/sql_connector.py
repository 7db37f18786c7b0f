"""
PostgreSQL connector.

Data access for generated SQL:
1. validate(): dry-run through EXPLAIN, raising DatabaseQueryError with the
   driver message on failure (the syntactic validator triages that message)
2. execute(): run an accepted query as a sub-select with LIMIT/OFFSET
3. to_ddl(): render a DatabaseSchema as CREATE TABLE / ALTER TABLE text for prompts

Both validate() and execute() run in read-only transactions, so a
generated statement can never write even if it slips past every prompt rule.

Usage:
    connector = PgConnector(db_client)
    await connector.validate("SELECT name FROM employees")
    rows = await connector.execute("SELECT name FROM employees", limit=10, offset=20)
    ddl = connector.to_ddl(schema)
"""

import re
from typing import Any, Dict, List, Optional, Sequence

from querygen.domain.errors import DatabaseConnectionError
from querygen.domain.schema import ColumnSchema, DatabaseSchema
from querygen.infrastructure.database_client import DatabaseClient, map_query_error
from querygen.utils.logging import get_module_logger
from querygen.utils.tracing import current_trace_id

logger = get_module_logger()

# PostgreSQL identifier length limit
MAX_CONSTRAINT_NAME_LENGTH = 63

COLUMN_TYPE_MAP = {
    "string": "TEXT",
    "number": "INTEGER",
    "boolean": "BOOLEAN",
    "date": "TIMESTAMP WITH TIME ZONE",
    "object": "JSONB",
    "array": "VARCHAR[]",
}

_TRAILING_LINE_COMMENT = re.compile(r"--[^\n]*$")
_TRAILING_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/\s*$")


def clean_query(query: str) -> str:
    """
    Strip trailing semicolons and trailing comments from a query.

    Example:
        >>> clean_query("SELECT 1; -- done")
        'SELECT 1'
    """
    cleaned = query.strip().rstrip(";").strip()

    changed = True
    while changed:
        changed = False
        for pattern in (_TRAILING_LINE_COMMENT, _TRAILING_BLOCK_COMMENT):
            if pattern.search(cleaned):
                cleaned = pattern.sub("", cleaned).strip().rstrip(";").strip()
                changed = True

    return cleaned


def _escape(text: str) -> str:
    return text.replace("'", "''")


def map_column_type(name: str, column: ColumnSchema) -> str:
    """SQL type for a column: explicit metadata type, UUID for string ids, else the type map."""
    postgresql = column.metadata.get("postgresql")
    explicit = postgresql.get("dataType") if isinstance(postgresql, dict) else None
    if explicit:
        return str(explicit).upper()

    is_id = column.id or name.endswith("_id") or name.endswith("Id")
    if is_id and column.type == "string":
        return "UUID"
    return COLUMN_TYPE_MAP.get(column.type, "TEXT")


class PgConnector:
    """SQL connector over the shared asyncpg pool."""

    def __init__(self, db_client: DatabaseClient):
        self.db_client = db_client

    async def validate(self, sql: str) -> None:
        """
        Dry-run a query with EXPLAIN.

        Raises:
            DatabaseQueryError: With the driver message when PostgreSQL rejects the query
        """
        statement = f"EXPLAIN {clean_query(sql)}"
        try:
            async with self.db_client.acquire_connection(read_only=True) as conn:
                await conn.execute(statement)
        except DatabaseConnectionError:
            raise
        except Exception as e:
            mapped = map_query_error(e, statement)
            logger.info("Query failed validation", error=mapped.message, trace_id=current_trace_id())
            raise mapped from e

    async def execute(
        self,
        sql: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        params: Optional[Sequence[Any]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Run a query as a sub-select with optional LIMIT/OFFSET bound as parameters.

        Raises:
            DatabaseQueryError: If the query fails
        """
        bound: List[Any] = list(params or [])
        suffix = ""
        if limit is not None:
            bound.append(limit)
            suffix += f" LIMIT ${len(bound)}"
        if offset is not None:
            bound.append(offset)
            suffix += f" OFFSET ${len(bound)}"

        statement = f"SELECT * FROM ({clean_query(sql)}) AS subquery{suffix};"
        return await self.db_client.execute_query(statement, params=bound, read_only=True)

    def to_ddl(self, schema: DatabaseSchema) -> str:
        """Render the schema as DDL text with descriptions as SQL comments."""
        statements: List[str] = []

        for table_name, table in schema.tables.items():
            definitions: List[str] = []
            for column_name, column in table.columns.items():
                not_null = " NOT NULL" if column.required or column.id else ""
                comment = ""
                if column.description:
                    comment = f" -- {_escape(column.description)}\n"
                definitions.append(
                    f"{comment}  {column_name} {map_column_type(column_name, column)}{not_null}"
                )
            if table.primary_key:
                definitions.append(f"  PRIMARY KEY ({', '.join(table.primary_key)})")

            create = f"CREATE TABLE {table_name} (\n" + ",\n".join(definitions) + "\n);"
            if table.description:
                create = f"-- {_escape(table.description)}\n{create}"
            statements.append(create)

        for relation in schema.relations:
            constraint = f"fk_{relation.table}_{relation.column}"[:MAX_CONSTRAINT_NAME_LENGTH]
            statements.append(
                f"ALTER TABLE {relation.table} ADD CONSTRAINT {constraint} "
                f"FOREIGN KEY ({relation.column}) "
                f"REFERENCES {relation.referenced_table} ({relation.referenced_column});"
            )

        return "\n\n".join(statements)
