"""
Query cache similarity store on pgvector.

Each row is one accepted dataset: the prompt text and its embedding, plus
the dataset id, tenant id and JSONB metadata carrying the accepted SQL and
the tables it reads. Searches are always tenant-scoped when a tenant is given.

Uses the EmbeddingClient for embeddings and asyncpg (through
DatabaseClient) for storage; the table, HNSW index and metadata indexes are
created on first use.
"""

import json
from typing import Any, Dict, List, Mapping, Optional

from langchain_postgres.vectorstores import DistanceStrategy

from ..config import VectorStoreConfig
from ..config_constants import PGVECTOR_OPS_MAP
from ..domain.dataset import CacheCandidate
from ..domain.errors import VectorStoreError
from ..infrastructure.database_client import DatabaseClient
from ..infrastructure.embedding_client import EmbeddingClient
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id

logger = get_module_logger()


def _vector_literal(embedding: List[float]) -> str:
    # pgvector accepts the text form '[0.1,0.2,...]'
    return f"[{','.join(str(x) for x in embedding)}]"


class QueryCacheStore:
    """
    pgvector-backed store of accepted prompt/query pairs.

    Usage:
        store = QueryCacheStore(db_client, embedding_client, config)
        await store.add("salaries above 1000 USD", {"query": sql, "dataset_id": ds.id,
                                                    "tenant_id": ds.tenant_id, "tables": ds.tables})
        candidates = await store.search("employees earning over 1000 dollars", k=5, tenant_id="t1")
    """

    def __init__(
        self,
        db: DatabaseClient,
        embeddings: EmbeddingClient,
        config: VectorStoreConfig,
    ):
        self.db = db
        self.embeddings = embeddings
        self.config = config
        self._setup_done = False

    async def ensure_setup(self) -> None:
        """
        Create extension, table and indexes if missing (idempotent).

        Raises:
            VectorStoreError: If setup fails
        """
        if self._setup_done:
            return

        table = self.config.table_name
        dimension = self.embeddings.config.embedding_dimension

        try:
            async with self.db.acquire_connection(read_only=False) as conn:
                await conn.execute("CREATE EXTENSION IF NOT EXISTS vector;")
                await conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                        content TEXT NOT NULL,
                        embedding vector({dimension}) NOT NULL,
                        dataset_id TEXT NOT NULL,
                        tenant_id TEXT,
                        metadata JSONB DEFAULT '{{}}'::jsonb,
                        created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
                if self.config.use_hnsw:
                    await conn.execute(
                        f"""
                        CREATE INDEX IF NOT EXISTS {table}_hnsw_idx
                        ON {table}
                        USING hnsw (embedding {PGVECTOR_OPS_MAP[self.config.distance_strategy]})
                        WITH (m = {self.config.hnsw_m}, ef_construction = {self.config.hnsw_ef_construction});
                        """
                    )
                await conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_tenant_id ON {table}(tenant_id);"
                )
                await conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_{table}_dataset_id ON {table}(dataset_id);"
                )
        except Exception as e:
            logger.error("Failed to setup query cache store", error=str(e), trace_id=current_trace_id())
            raise VectorStoreError(f"Failed to setup query cache store: {e}") from e

        self._setup_done = True
        logger.info("Query cache store ready", table_name=table)

    async def add(self, text: str, metadata: Mapping[str, Any]) -> str:
        """
        Embed and store one accepted prompt.

        Args:
            text: Prompt text
            metadata: Must contain dataset_id; query, tenant_id and tables are expected

        Returns:
            Row id

        Raises:
            VectorStoreError: If metadata is incomplete or the insert fails
        """
        if not metadata.get("dataset_id"):
            raise VectorStoreError("Query cache metadata requires a dataset_id")

        await self.ensure_setup()
        trace_id = current_trace_id()

        try:
            embedding = await self.embeddings.embed_text(text)
            async with self.db.acquire_connection(read_only=False) as conn:
                row_id = await conn.fetchval(
                    f"""
                    INSERT INTO {self.config.table_name}
                        (content, embedding, dataset_id, tenant_id, metadata)
                    VALUES ($1, $2, $3, $4, $5)
                    RETURNING id::text;
                    """,
                    text,
                    _vector_literal(embedding),
                    str(metadata["dataset_id"]),
                    metadata.get("tenant_id"),
                    json.dumps(dict(metadata), default=str),
                )
        except VectorStoreError:
            raise
        except Exception as e:
            logger.error("Failed to add query to cache", error=str(e), trace_id=trace_id, exc_info=True)
            raise VectorStoreError(f"Failed to add query to cache: {e}") from e

        logger.info("Query added to cache", dataset_id=metadata["dataset_id"], trace_id=trace_id)
        return row_id

    async def search(
        self, query: str, k: int, tenant_id: Optional[str] = None
    ) -> List[CacheCandidate]:
        """
        Nearest cached prompts to `query` within one tenant, best first.

        Entries are always filtered by tenant; `tenant_id=None` matches only
        entries stored without a tenant.

        Raises:
            VectorStoreError: If the search fails
        """
        if not query or not query.strip():
            raise VectorStoreError("Query cannot be empty")
        if k < 1:
            raise VectorStoreError(f"k must be >= 1, got {k}")

        await self.ensure_setup()
        trace_id = current_trace_id()

        params: List[Any] = []
        try:
            embedding = await self.embeddings.embed_text(query)
            params.append(_vector_literal(embedding))
            if tenant_id is None:
                where_sql = "WHERE tenant_id IS NULL"
            else:
                params.append(tenant_id)
                where_sql = "WHERE tenant_id = $2"

            sql = f"""
                SELECT content, dataset_id, metadata,
                       embedding {self._distance_operator()} $1 AS distance
                FROM {self.config.table_name}
                {where_sql}
                ORDER BY distance ASC
                LIMIT {int(k)};
            """
            async with self.db.acquire_connection(read_only=True) as conn:
                rows = await conn.fetch(sql, *params)
        except Exception as e:
            logger.error("Query cache search failed", error=str(e), trace_id=trace_id, exc_info=True)
            raise VectorStoreError(f"Query cache search failed: {e}") from e

        candidates = [self._to_candidate(row) for row in rows]
        logger.info("Query cache searched", result_count=len(candidates), trace_id=trace_id)
        return candidates

    async def delete_by_dataset(self, dataset_id: str) -> int:
        """Remove every cache entry of a dataset. Returns the number of rows removed."""
        await self.ensure_setup()
        try:
            async with self.db.acquire_connection(read_only=False) as conn:
                status = await conn.execute(
                    f"DELETE FROM {self.config.table_name} WHERE dataset_id = $1;", dataset_id
                )
        except Exception as e:
            raise VectorStoreError(f"Failed to delete cache entries: {e}") from e

        # asyncpg returns the command tag, e.g. "DELETE 2"
        removed = int(status.split()[-1]) if status else 0
        logger.info("Query cache entries removed", dataset_id=dataset_id, count=removed)
        return removed

    def _to_candidate(self, row: Mapping[str, Any]) -> CacheCandidate:
        raw = row["metadata"]
        metadata: Dict[str, Any] = json.loads(raw) if isinstance(raw, str) else dict(raw or {})
        return CacheCandidate(
            text=row["content"],
            query=metadata.get("query", ""),
            dataset_id=row["dataset_id"],
            tables=list(metadata.get("tables") or []),
            score=self._distance_to_similarity(float(row["distance"])),
        )

    def _distance_operator(self) -> str:
        if self.config.distance_strategy == DistanceStrategy.COSINE:
            return "<=>"
        elif self.config.distance_strategy == DistanceStrategy.EUCLIDEAN:
            return "<->"
        return "<#>"

    def _distance_to_similarity(self, distance: float) -> float:
        if self.config.distance_strategy == DistanceStrategy.COSINE:
            return 1.0 - distance
        elif self.config.distance_strategy == DistanceStrategy.EUCLIDEAN:
            return 1.0 / (1.0 + distance)
        return -distance
