"""
Relational schema models.

A DatabaseSchema is produced once (from the YAML schema document) and
treated as immutable; workflow stages derive narrowed copies with
`filtered()` instead of editing it.
"""

import hashlib
from typing import Any, Dict, Iterable, List, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .base_enums import RelationType

# A context item is either free text or {other_table: text}, the latter
# applying only when other_table is part of the same schema
ContextItem = Union[str, Dict[str, str]]


class _SchemaModel(BaseModel):
    """camelCase aliases on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ColumnSchema(_SchemaModel):
    """A single column of a table."""

    type: str = Field(..., description="Logical column type (string, number, boolean, date, object, array)")
    required: bool = Field(default=False, description="Column is NOT NULL")
    description: str = Field(default="", description="Human-written description of the column")
    id: bool = Field(default=False, description="Column is an identifier (primary or foreign key)")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form column metadata")


class TableSchema(_SchemaModel):
    """A table with its columns, key and free-text rules."""

    columns: Dict[str, ColumnSchema] = Field(default_factory=dict, description="Columns by name")
    primary_key: List[str] = Field(default_factory=list, description="Primary key column names")
    description: str = Field(default="", description="Human-written description of the table")
    context: List[ContextItem] = Field(
        default_factory=list,
        description="Rules every prompt touching this table must honor",
    )
    hash: str = Field(default="", description="Hash of the table definition")

    def compute_hash(self) -> str:
        """sha256 of the table definition serialized with an empty hash field."""
        payload = self.model_copy(update={"hash": ""}).model_dump_json(by_alias=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ForeignKey(_SchemaModel):
    """A declared relation between two tables."""

    table: str = Field(..., description="Referencing table")
    column: str = Field(..., description="Referencing column")
    referenced_table: str = Field(..., description="Referenced table")
    referenced_column: str = Field(..., description="Referenced column")
    type: RelationType = Field(default=RelationType.BELONGS_TO, description="Relation kind")
    description: str = Field(default="", description="Human-written description of the relation")


class DatabaseSchema(_SchemaModel):
    """Tables by (optionally schema-qualified) name plus their relations."""

    tables: Dict[str, TableSchema] = Field(default_factory=dict)
    relations: List[ForeignKey] = Field(default_factory=list)

    def table_names(self) -> List[str]:
        return list(self.tables.keys())

    def filtered(self, tables: Iterable[str]) -> "DatabaseSchema":
        """
        Copy restricted to the given tables.

        Unknown names are ignored. A relation survives only when both of its
        tables are kept. Table order follows the original schema.
        """
        wanted = set(tables)
        return DatabaseSchema(
            tables={name: table for name, table in self.tables.items() if name in wanted},
            relations=[
                relation for relation in self.relations
                if relation.table in wanted and relation.referenced_table in wanted
            ],
        )
