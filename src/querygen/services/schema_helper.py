"""
Schema helpers shared by the workflow stages.

SchemaStore holds the full schema loaded at startup; SchemaHelper renders
schemas for prompts and computes the hashes used by the graph cache and
by saved datasets.
"""

import hashlib
from typing import List, Optional

from querygen.domain.errors import SchemaError
from querygen.domain.interfaces import SqlConnector
from querygen.domain.schema import DatabaseSchema


class SchemaStore:
    """Holder of the full DatabaseSchema for the process."""

    def __init__(self, schema: Optional[DatabaseSchema] = None):
        self._schema = schema

    def save(self, schema: DatabaseSchema) -> None:
        self._schema = schema

    def get(self) -> DatabaseSchema:
        if self._schema is None:
            raise SchemaError("Schema is not loaded")
        return self._schema

    def filtered(self, tables: List[str]) -> DatabaseSchema:
        """Full schema narrowed to `tables`."""
        return self.get().filtered(tables)


class SchemaHelper:
    """Prompt rendering and hashing for schemas."""

    def __init__(self, connector: SqlConnector):
        self.connector = connector

    def as_string(self, schema: DatabaseSchema) -> str:
        """DDL text of the schema as given to the LLM."""
        return self.connector.to_ddl(schema)

    def compute_hash(self, schema: DatabaseSchema) -> str:
        """sha256 of the rendered DDL; keys the serialized knowledge graph."""
        return hashlib.sha256(self.as_string(schema).encode("utf-8")).hexdigest()

    @staticmethod
    def tables_context(schema: DatabaseSchema) -> List[str]:
        """
        Rules attached to the tables of `schema`.

        Free-text items always apply. A `{table: rule}` item applies only
        when `table` (compared without schema prefix) is part of `schema`.

        Raises:
            SchemaError: On a context item that is neither text nor mapping
        """
        present = {name.split(".")[-1] for name in schema.tables}
        rules: List[str] = []
        for table in schema.tables.values():
            for item in table.context:
                if isinstance(item, str):
                    if item.strip():
                        rules.append(item.strip())
                elif isinstance(item, dict):
                    for with_table, rule in item.items():
                        if with_table in present:
                            rules.append(rule.strip())
                else:
                    raise SchemaError("Invalid context item in table schema")
        return rules

    @staticmethod
    def hash_tables(schema: DatabaseSchema) -> str:
        """sha256 over sorted table names, each followed by its sorted `column:type` pairs."""
        digest = hashlib.sha256()
        for table_name in sorted(schema.tables):
            digest.update(table_name.encode("utf-8"))
            columns = schema.tables[table_name].columns
            for column_name in sorted(columns):
                digest.update(f"{column_name}:{columns[column_name].type}".encode("utf-8"))
        return digest.hexdigest()
