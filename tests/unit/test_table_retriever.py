"""Unit tests for the table retriever and its graph cache."""

import json

import pytest

from fakes import FakeConnector, FakeLLM, InMemoryKeyValueCache, KeywordEmbedder, payroll_schema
from querygen.config import KnowledgeGraphConfig
from querygen.services.knowledge_graph import KnowledgeGraphIndex
from querygen.services.schema_helper import SchemaHelper
from querygen.services.table_retriever import TableRetriever


def _retriever(config: KnowledgeGraphConfig, cache=None, embedder=None):
    index = KnowledgeGraphIndex(embedder or KeywordEmbedder(), FakeLLM("no concept"), config)
    retriever = TableRetriever(index, cache or InMemoryKeyValueCache(), SchemaHelper(FakeConnector()), config)
    return retriever, index


class TestTableRetriever:
    """Static list, seeding and cache reuse."""

    @pytest.mark.asyncio
    async def test_disabled_graph_returns_every_table(self):
        """With the graph disabled every table is a candidate, whatever the count."""
        retriever, index = _retriever(KnowledgeGraphConfig(enabled=False))
        await retriever.seed(payroll_schema())

        tables = await retriever.get_tables("employee salary", count=1)

        assert tables == ["employees", "currencies", "exchange_rates", "departments"]
        assert not index.is_ready()

    @pytest.mark.asyncio
    async def test_seed_stores_graph_in_cache(self):
        """A first seed builds the graph and caches it under the schema hash."""
        cache = InMemoryKeyValueCache()
        config = KnowledgeGraphConfig()
        retriever, index = _retriever(config, cache)
        schema = payroll_schema()

        await retriever.seed(schema)

        entry = json.loads(await cache.get(config.cache_key))
        assert entry["hash"] == SchemaHelper(FakeConnector()).compute_hash(schema)
        assert {node["id"] for node in entry["graph"]["nodes"]} == set(index.nodes)
        assert await retriever.get_tables("employee salary", count=1) == ["employees"]

    @pytest.mark.asyncio
    async def test_matching_cache_skips_seeding(self):
        """A cached graph for the same schema is loaded without embedding tables again."""
        cache = InMemoryKeyValueCache()
        first, _ = _retriever(KnowledgeGraphConfig(), cache)
        await first.seed(payroll_schema())

        embedder = KeywordEmbedder()
        second, index = _retriever(KnowledgeGraphConfig(), cache, embedder)
        await second.seed(payroll_schema())

        assert index.is_ready()
        assert embedder.batch_calls == 0
        assert await second.get_tables("employee salary", count=1) == ["employees"]

    @pytest.mark.asyncio
    async def test_stale_cache_reseeds(self):
        """A cached graph for a different schema is replaced."""
        cache = InMemoryKeyValueCache()
        config = KnowledgeGraphConfig()
        await cache.set(config.cache_key, json.dumps({"hash": "old", "graph": {"nodes": [], "edges": []}}).encode())

        embedder = KeywordEmbedder()
        retriever, index = _retriever(config, cache, embedder)
        await retriever.seed(payroll_schema())

        assert embedder.batch_calls == 1
        assert "employees" in index.nodes
        assert json.loads(await cache.get(config.cache_key))["hash"] != "old"

    @pytest.mark.asyncio
    async def test_unreadable_cache_reseeds(self):
        """Garbage in the cache is ignored."""
        cache = InMemoryKeyValueCache()
        config = KnowledgeGraphConfig()
        await cache.set(config.cache_key, b"\xff not json")

        retriever, index = _retriever(config, cache)
        await retriever.seed(payroll_schema())

        assert index.is_ready()

    @pytest.mark.asyncio
    async def test_corrupt_graph_with_matching_hash_reseeds(self):
        """A cached entry for the current schema whose graph cannot be loaded is rebuilt."""
        cache = InMemoryKeyValueCache()
        config = KnowledgeGraphConfig()
        schema = payroll_schema()
        schema_hash = SchemaHelper(FakeConnector()).compute_hash(schema)
        broken = {"hash": schema_hash, "graph": {"nodes": [{"id": "x", "type": "planet"}], "edges": []}}
        await cache.set(config.cache_key, json.dumps(broken).encode())

        embedder = KeywordEmbedder()
        retriever, index = _retriever(config, cache, embedder)
        await retriever.seed(schema)

        assert index.is_ready()
        assert embedder.batch_calls == 1
        assert "employees" in index.nodes
        stored = json.loads(await cache.get(config.cache_key))
        assert {node["id"] for node in stored["graph"]["nodes"]} == set(index.nodes)
