"""
Schema repository.

Loads the YAML schema document describing the queryable database, either
from the storage bucket or from a local file, and converts it into a
DatabaseSchema with per-table hashes filled in.

Document layout (keys accept camelCase or snake_case):

    tables:
      employees:
        description: Staff of the company
        primaryKey: [id]
        context:
          - salary is stored in the employee's own currency
          - exchange_rates: convert salary to USD through exchange_rates
        columns:
          id: {type: string, id: true, required: true}
          salary: {type: number, description: Monthly salary}
    relations:
      - table: employees
        column: currency_id
        referencedTable: currencies
        referencedColumn: id
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..config import SchemaSourceConfig, StorageConfig
from ..domain.errors import SchemaError
from ..domain.schema import DatabaseSchema
from ..infrastructure.storage_client import StorageClient
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id

logger = get_module_logger()


def parse_schema_document(content: Any) -> DatabaseSchema:
    """
    Build a DatabaseSchema from a parsed YAML document.

    Raises:
        SchemaError: If the document is not a mapping or fails validation
    """
    if not isinstance(content, dict):
        raise SchemaError("Schema document must be a mapping with a 'tables' key")

    try:
        schema = DatabaseSchema.model_validate(
            {"tables": content.get("tables") or {}, "relations": content.get("relations") or []}
        )
    except PydanticValidationError as e:
        raise SchemaError(f"Invalid schema document: {e}") from e

    unknown = {
        name
        for relation in schema.relations
        for name in (relation.table, relation.referenced_table)
        if name not in schema.tables
    }
    if unknown:
        raise SchemaError(
            "Relations reference unknown tables",
            details={"tables": sorted(unknown)},
        )

    for table in schema.tables.values():
        table.hash = table.compute_hash()

    return schema


class SchemaRepository:
    """
    Loads the schema document.

    A configured local path takes precedence over the storage bucket.
    """

    def __init__(
        self,
        storage_client: Optional[StorageClient],
        storage_config: StorageConfig,
        source_config: SchemaSourceConfig,
    ):
        self.storage_client = storage_client
        self.storage_config = storage_config
        self.source_config = source_config

    async def load(self) -> DatabaseSchema:
        """
        Read and parse the schema document.

        Raises:
            SchemaError: If no source is available or the document is invalid
        """
        trace_id = current_trace_id()

        if self.source_config.local_path:
            path = Path(self.source_config.local_path)
            logger.info("Loading schema from local file", path=str(path), trace_id=trace_id)
            try:
                raw = path.read_bytes()
            except OSError as e:
                raise SchemaError(f"Cannot read schema file {path}: {e}") from e
        elif self.storage_client is not None:
            logger.info(
                "Loading schema from storage bucket",
                bucket=self.storage_config.default_bucket,
                file_path=self.storage_config.schema_yaml_path,
                trace_id=trace_id,
            )
            raw = await self.storage_client.download_file(
                self.storage_config.default_bucket, self.storage_config.schema_yaml_path
            )
        else:
            raise SchemaError("No schema source configured")

        schema = parse_schema_document(self._parse_yaml(raw))
        logger.info(
            "Schema loaded",
            table_count=len(schema.tables),
            relation_count=len(schema.relations),
            trace_id=trace_id,
        )
        return schema

    @staticmethod
    def _parse_yaml(raw: bytes) -> Dict[str, Any]:
        try:
            return yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise SchemaError(f"Schema document is not valid YAML: {e}") from e
