"""
Unit tests for the knowledge graph index.

Embeddings come from KeywordEmbedder, so similarities follow from the
keywords in table descriptions:
- employees      -> employee, salary
- currencies     -> currency, usd
- exchange_rates -> currency, exchange, rate, usd
- departments    -> department
"""

import json

import pytest

from fakes import FakeLLM, KeywordEmbedder, payroll_schema
from querygen.config import KnowledgeGraphConfig
from querygen.domain.base_enums import EdgeType, NodeType
from querygen.domain.errors import KnowledgeGraphError, ServiceUnavailableError
from querygen.repositories.schema_repository import parse_schema_document
from querygen.services.knowledge_graph import KnowledgeGraphIndex, concept_node_id, cosine_scores, cosine_similarity

CONCEPT_ANSWER = json.dumps({
    "concept": "Currency Conversion",
    "description": "currency exchange to USD",
    "domain": "finance",
    "confidence": 0.8,
})


async def _seeded(llm_answer: str = CONCEPT_ANSWER, config: KnowledgeGraphConfig = None):
    embedder = KeywordEmbedder()
    llm = FakeLLM(llm_answer)
    index = KnowledgeGraphIndex(embedder, llm, config or KnowledgeGraphConfig())
    await index.seed(payroll_schema())
    return index, embedder, llm


class TestCosineSimilarity:
    """Vector similarity helper."""

    def test_identical_vectors(self):
        """Identical vectors have similarity 1."""
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_length_mismatch(self):
        """Vectors of different length have similarity 0."""
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0

    def test_zero_vector(self):
        """A zero vector has similarity 0 with anything."""
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_scores_against_many(self):
        """Each vector is scored on its own; mismatched and zero vectors score 0."""
        scores = cosine_scores([1.0, 0.0], [[2.0, 0.0], [0.0, 3.0], [1.0], [0.0, 0.0], [1.0, 1.0]])

        assert scores.tolist() == pytest.approx([1.0, 0.0, 0.0, 0.0, 2 ** -0.5])

    def test_zero_query(self):
        """A zero query scores 0 against everything."""
        assert cosine_scores([0.0, 0.0], [[1.0, 0.0]]).tolist() == [0.0]


class TestSeeding:
    """Graph construction from a schema."""

    @pytest.mark.asyncio
    async def test_nodes_and_edges(self):
        """Tables, columns and relations become nodes and typed edges."""
        index, embedder, _ = await _seeded()

        assert index.is_ready()
        assert index.nodes["employees"].type == NodeType.TABLE
        assert index.nodes["employees.salary"].type == NodeType.COLUMN
        assert index.nodes["employees.salary"].properties["parent_table"] == "employees"
        assert embedder.batch_calls >= 1

        employee_edges = {(edge.target, edge.type) for edge in index.edges["employees"]}
        assert ("employees.salary", EdgeType.CONTAINS) in employee_edges
        assert ("currencies", EdgeType.RELATES_TO) in employee_edges

    @pytest.mark.asyncio
    async def test_relates_to_is_mirrored(self):
        """relates_to edges exist in both directions, foreign_key edges in one."""
        index, _, _ = await _seeded()

        currency_targets = {(edge.target, edge.type) for edge in index.edges["currencies"]}
        assert ("employees", EdgeType.RELATES_TO) in currency_targets
        assert ("exchange_rates", EdgeType.RELATES_TO) in currency_targets

        fk = [edge for edge in index.edges["employees.currency_id"] if edge.type == EdgeType.FOREIGN_KEY]
        assert [edge.target for edge in fk] == ["currencies.id"]
        assert "currencies.id" not in index.edges

    @pytest.mark.asyncio
    async def test_similar_tables_form_a_concept(self):
        """Currencies and exchange rates cluster into one concept node."""
        index, _, llm = await _seeded()

        assert llm.calls == 1
        assert "currencies" in llm.prompts[0] and "exchange_rates" in llm.prompts[0]

        concept_id = concept_node_id("Currency Conversion")
        assert index.nodes[concept_id].type == NodeType.CONCEPT
        targets = {edge.target: edge.weight for edge in index.edges[concept_id]}
        assert targets == {"currencies": pytest.approx(0.9), "exchange_rates": pytest.approx(0.9)}

    @pytest.mark.asyncio
    async def test_low_confidence_concept_dropped(self):
        """A concept at or below the confidence threshold is not added."""
        answer = json.dumps({"concept": "Money", "description": "", "domain": "", "confidence": 0.4})
        index, _, _ = await _seeded(answer)

        assert not any(node.type == NodeType.CONCEPT for node in index.nodes.values())

    @pytest.mark.asyncio
    async def test_unparsable_concept_ignored(self):
        """Concept extraction failures do not stop seeding."""
        index, _, _ = await _seeded("I cannot help with that")

        assert index.is_ready()
        assert not any(node.type == NodeType.CONCEPT for node in index.nodes.values())

    @pytest.mark.asyncio
    async def test_cluster_tables(self):
        """Only the multi-table cluster is returned."""
        index, _, _ = await _seeded()
        clusters = index.cluster_tables(payroll_schema())

        assert [[name for name, _ in cluster] for cluster in clusters] == [["currencies", "exchange_rates"]]


class TestSearch:
    """Vector search plus graph expansion."""

    @pytest.mark.asyncio
    async def test_related_tables_found_through_graph(self):
        """Tables joined to the best match rank next even without keyword overlap."""
        index, _, _ = await _seeded()

        tables = await index.find("employee salary", k=3)

        assert tables == ["employees", "currencies", "exchange_rates"]

    @pytest.mark.asyncio
    async def test_exact_description_ranks_first(self):
        """A query equal to a table's text ranks that table first."""
        index, _, _ = await _seeded()

        tables = await index.find("Daily exchange rate of each currency to USD", k=2)

        assert tables[0] == "exchange_rates"

    @pytest.mark.asyncio
    async def test_results_are_tables_within_k(self):
        """Only table ids are returned and never more than k."""
        index, _, _ = await _seeded()
        schema = payroll_schema()

        for k in (1, 2, 4):
            tables = await index.find("currency of employee salary", k=k)
            assert len(tables) <= k
            assert set(tables) <= set(schema.tables)

    @pytest.mark.asyncio
    async def test_scores_are_sorted(self):
        """Scored results come best first."""
        index, _, _ = await _seeded()

        scored = await index.find_scored("employee salary", k=4)
        scores = [item.score for item in scored]
        assert scores == sorted(scores, reverse=True)
        assert scored[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_concepts_do_not_carry_scores(self):
        """Tables linked only through a concept get no graph score from each other."""
        schema = parse_schema_document({
            "tables": {
                "payroll": {"description": "salary employee"},
                "staffing": {"description": "employee department"},
                "fx": {"description": "exchange rate"},
            },
        })
        answer = json.dumps({"concept": "Staff", "description": "people", "domain": "hr", "confidence": 0.8})
        index = KnowledgeGraphIndex(KeywordEmbedder(), FakeLLM(answer), KnowledgeGraphConfig())
        await index.seed(schema)
        assert {edge.target for edge in index.edges[concept_node_id("Staff")]} == {"payroll", "staffing"}

        scored = {item.table: item.score for item in await index.find_scored("salary", k=3)}

        assert scored["payroll"] == pytest.approx(2 ** -0.5)
        assert scored["staffing"] == 0.0
        assert scored["fx"] == 0.0

    @pytest.mark.asyncio
    async def test_salary_in_usd_prompt(self):
        """Salaries compared in USD rank employees and exchange rates among three tables."""
        index, _, _ = await _seeded()

        tables = await index.find("Find all resources with salary greater than 1000 USD", k=3)

        assert tables == ["employees", "currencies", "exchange_rates"]

    @pytest.mark.asyncio
    async def test_zero_k(self):
        """k below one returns nothing."""
        index, _, _ = await _seeded()
        assert await index.find("employee salary", k=0) == []

    @pytest.mark.asyncio
    async def test_not_ready_times_out(self):
        """Searching an unseeded graph fails once the readiness wait expires."""
        index = KnowledgeGraphIndex(KeywordEmbedder(), FakeLLM(), KnowledgeGraphConfig(ready_timeout_seconds=0.01))
        with pytest.raises(ServiceUnavailableError):
            await index.find("employee salary", k=3)


class TestSerialization:
    """JSON round trip."""

    @pytest.mark.asyncio
    async def test_round_trip_preserves_search(self):
        """A graph loaded from JSON answers searches like the original."""
        index, embedder, _ = await _seeded()
        payload = index.to_json()

        loaded = KnowledgeGraphIndex(embedder, FakeLLM(), KnowledgeGraphConfig())
        loaded.from_json(payload)

        assert loaded.is_ready()
        assert set(loaded.nodes) == set(index.nodes)
        assert sum(map(len, loaded.edges.values())) == sum(map(len, index.edges.values()))
        assert await loaded.find("employee salary", k=3) == await index.find("employee salary", k=3)

    @pytest.mark.asyncio
    async def test_edges_use_from_to_keys(self):
        """Serialized edges are keyed `from` and `to`."""
        index, _, _ = await _seeded()
        edge = json.loads(index.to_json())["edges"][0]

        assert "from" in edge and "to" in edge

    def test_invalid_payload(self):
        """A payload that is not a serialized graph raises KnowledgeGraphError."""
        index = KnowledgeGraphIndex(KeywordEmbedder(), FakeLLM(), KnowledgeGraphConfig())
        with pytest.raises(KnowledgeGraphError):
            index.from_json('{"nodes": [{"id": "x", "type": "planet"}], "edges": []}')
        with pytest.raises(KnowledgeGraphError):
            index.from_json("not json")
