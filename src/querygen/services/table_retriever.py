"""
Table retriever.

Chooses where candidate tables come from: the knowledge graph, or the
plain table list when the graph is disabled. Seeding goes through the
key-value cache so an unchanged schema reloads its serialized graph
instead of paying for embeddings and concept extraction again.
"""

import json
from typing import List, Optional

from querygen.config import KnowledgeGraphConfig
from querygen.domain.errors import KnowledgeGraphError
from querygen.domain.interfaces import KeyValueCache
from querygen.domain.schema import DatabaseSchema
from querygen.services.knowledge_graph import KnowledgeGraphIndex
from querygen.services.schema_helper import SchemaHelper
from querygen.utils.cancellation import AbortSignal
from querygen.utils.logging import get_module_logger

logger = get_module_logger()


class TableRetriever:
    """Candidate table lookup for the GetTables stage."""

    def __init__(
        self,
        index: KnowledgeGraphIndex,
        cache: KeyValueCache,
        schema_helper: SchemaHelper,
        config: KnowledgeGraphConfig,
    ):
        self.index = index
        self.cache = cache
        self.schema_helper = schema_helper
        self.config = config
        self._tables: List[str] = []

    async def get_tables(self, prompt: str, count: int, abort: Optional[AbortSignal] = None) -> List[str]:
        """Up to `count` candidate tables for `prompt`; every table when the graph is disabled."""
        if not self.config.enabled:
            return list(self._tables)
        return await self.index.find(prompt, count, abort=abort)

    async def seed(self, schema: DatabaseSchema, abort: Optional[AbortSignal] = None) -> None:
        """
        Prepare lookups for `schema`.

        With the graph enabled, the cached graph is reused when its hash
        matches the schema DDL; otherwise the graph is seeded and cached.
        """
        self._tables = list(schema.tables)
        if not self.config.enabled:
            logger.info("Knowledge graph disabled, using static table list", table_count=len(self._tables))
            return

        schema_hash = self.schema_helper.compute_hash(schema)
        cached = await self.cache.get(self.config.cache_key)
        if cached is not None:
            entry = self._decode(cached)
            if entry is not None and entry.get("hash") == schema_hash:
                try:
                    self.index.from_json(json.dumps(entry["graph"]))
                except KnowledgeGraphError as e:
                    logger.warning("Ignoring corrupt knowledge graph cache entry", error=e.message)
                else:
                    logger.info("Knowledge graph loaded from cache", schema_hash=schema_hash)
                    return

        logger.info("Seeding knowledge graph", schema_hash=schema_hash)
        await self.index.seed(schema, abort=abort)
        payload = json.dumps({"hash": schema_hash, "graph": json.loads(self.index.to_json())})
        await self.cache.set(self.config.cache_key, payload.encode("utf-8"))
        logger.info("Knowledge graph cached", schema_hash=schema_hash)

    @staticmethod
    def _decode(raw: bytes) -> Optional[dict]:
        try:
            entry = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("Ignoring unreadable knowledge graph cache entry")
            return None
        if not isinstance(entry, dict) or "graph" not in entry:
            return None
        return entry
