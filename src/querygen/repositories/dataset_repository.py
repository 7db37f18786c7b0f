"""
Dataset repository.

Persists datasets (accepted SQL plus metadata) in a PostgreSQL table via
asyncpg. Rows are created once per successful run and afterwards only
patched by the mark valid/invalid action.
"""

import json
from typing import Any, List, Mapping, Optional

from querygen.config import DatasetStoreConfig
from querygen.domain.dataset import Dataset
from querygen.domain.errors import DatabaseQueryError, ValidationError
from querygen.infrastructure.database_client import DatabaseClient
from querygen.utils.logging import get_module_logger
from querygen.utils.tracing import current_trace_id

logger = get_module_logger()

# Columns that may appear in update_all() patches and filters
_MUTABLE_COLUMNS = {"valid", "feedback", "description"}
_FILTER_COLUMNS = {"id", "tenant_id", "schema_hash", "valid"}


class DatasetRepository:
    """
    asyncpg-backed dataset store.

    Usage:
        repo = DatasetRepository(db_client, config)
        created = await repo.create(Dataset(query=sql, prompt=prompt, tenant_id="t1"))
        found = await repo.find_by_id(created.id)
        await repo.update_all({"valid": True}, {"id": created.id})
    """

    def __init__(self, db_client: DatabaseClient, config: DatasetStoreConfig):
        self.db_client = db_client
        self.config = config
        self._setup_done = False

    async def ensure_setup(self) -> None:
        """Create the datasets table if missing."""
        if self._setup_done:
            return

        try:
            async with self.db_client.acquire_connection(read_only=False) as conn:
                await conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.config.table_name} (
                        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                        query TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT '',
                        tables JSONB NOT NULL DEFAULT '[]'::jsonb,
                        schema_hash TEXT NOT NULL DEFAULT '',
                        prompt TEXT NOT NULL,
                        tenant_id TEXT NOT NULL,
                        valid BOOLEAN,
                        feedback TEXT,
                        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
        except Exception as e:
            raise DatabaseQueryError(f"Failed to setup dataset table: {e}") from e

        self._setup_done = True

    async def create(self, dataset: Dataset) -> Dataset:
        """Insert a dataset and return it with its assigned id."""
        await self.ensure_setup()
        trace_id = current_trace_id()

        try:
            async with self.db_client.acquire_connection(read_only=False) as conn:
                dataset_id = await conn.fetchval(
                    f"""
                    INSERT INTO {self.config.table_name}
                        (query, description, tables, schema_hash, prompt, tenant_id, valid, feedback)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    RETURNING id::text;
                    """,
                    dataset.query,
                    dataset.description,
                    json.dumps(dataset.tables),
                    dataset.schema_hash,
                    dataset.prompt,
                    dataset.tenant_id,
                    dataset.valid,
                    dataset.feedback,
                )
        except Exception as e:
            logger.error("Failed to create dataset", error=str(e), trace_id=trace_id)
            raise DatabaseQueryError(f"Failed to create dataset: {e}") from e

        logger.info("Dataset created", dataset_id=dataset_id, tables=dataset.tables, trace_id=trace_id)
        return dataset.model_copy(update={"id": dataset_id})

    async def find_by_id(self, dataset_id: str) -> Optional[Dataset]:
        """Dataset with the given id, or None."""
        await self.ensure_setup()

        try:
            async with self.db_client.acquire_connection(read_only=True) as conn:
                row = await conn.fetchrow(
                    f"""
                    SELECT id::text AS id, query, description, tables, schema_hash,
                           prompt, tenant_id, valid, feedback
                    FROM {self.config.table_name}
                    WHERE id::text = $1;
                    """,
                    dataset_id,
                )
        except Exception as e:
            raise DatabaseQueryError(f"Failed to load dataset: {e}") from e

        if row is None:
            return None

        data = dict(row)
        if isinstance(data["tables"], str):
            data["tables"] = json.loads(data["tables"])
        return Dataset(**data)

    async def update_all(self, patch: Mapping[str, Any], where: Mapping[str, Any]) -> int:
        """
        Apply `patch` to every dataset matching all `where` equalities.

        Returns:
            Number of rows updated

        Raises:
            ValidationError: On an empty filter or an unknown column
        """
        if not patch:
            return 0
        if not where:
            raise ValidationError("update_all requires a filter")

        unknown = (set(patch) - _MUTABLE_COLUMNS) | (set(where) - _FILTER_COLUMNS)
        if unknown:
            raise ValidationError(f"Unsupported dataset columns: {sorted(unknown)}")

        await self.ensure_setup()

        params: List[Any] = []
        assignments: List[str] = []
        for column, value in patch.items():
            params.append(value)
            assignments.append(f"{column} = ${len(params)}")

        conditions: List[str] = []
        for column, value in where.items():
            params.append(value)
            target = "id::text" if column == "id" else column
            conditions.append(f"{target} = ${len(params)}")

        sql = (
            f"UPDATE {self.config.table_name} SET {', '.join(assignments)} "
            f"WHERE {' AND '.join(conditions)};"
        )

        try:
            async with self.db_client.acquire_connection(read_only=False) as conn:
                status = await conn.execute(sql, *params)
        except Exception as e:
            raise DatabaseQueryError(f"Failed to update datasets: {e}") from e

        updated = int(status.split()[-1]) if status else 0
        logger.info("Datasets updated", count=updated, fields=sorted(patch), trace_id=current_trace_id())
        return updated
