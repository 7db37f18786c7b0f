"""
Knowledge graph index for table discovery.

Builds a graph over the schema and answers "which tables matter for this
question":

Seeding:
1. One table node per table, embedded as "name: description" plus its
   context rules (one batched embedding call), with `contains` edges to a
   node per column
2. Foreign keys add a mirrored `relates_to` edge between the two tables and
   a directed `foreign_key` edge between the two columns
3. Tables are grouped by greedy single-pass clustering over embedding
   similarity; every multi-table cluster is summarized by the LLM into a
   concept node linked to its member tables

Search:
1. Embed the question and keep the 2k tables closest by cosine similarity
2. Expand from each of them with a depth-bounded DFS, propagating
   score * decay * edge weight and keeping the best score per node
3. Rank tables by cosine * vector_weight + traversal * graph_weight

The graph is built once (or loaded from its JSON form) and only read
afterwards; `find()` blocks until that has happened.
"""

import asyncio
import json
import re
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import ValidationError as PydanticValidationError

from querygen.config import KnowledgeGraphConfig
from querygen.domain.base_enums import MIRRORED_EDGE_TYPES, EdgeType, NodeType
from querygen.domain.errors import (
    KnowledgeGraphError,
    OperationCancelledError,
    QueryGenError,
    ServiceUnavailableError,
)
from querygen.domain.graph_nodes import Concept, GraphEdge, GraphNode, ScoredTable
from querygen.domain.interfaces import EmbeddingCapability, LLMCapability
from querygen.domain.schema import DatabaseSchema, TableSchema
from querygen.utils.cancellation import AbortSignal
from querygen.utils.logging import get_module_logger
from querygen.utils.tracing import current_trace_id
from querygen.workflow.parsers import parse_concept
from querygen.workflow.prompts import build_concept_prompt

logger = get_module_logger()

# Traversal only moves along edges into table nodes
_TRAVERSABLE = frozenset({NodeType.TABLE})


def cosine_scores(query: Sequence[float], vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Cosine similarity of `query` against each of `vectors`.

    Vectors of a different length than `query`, and zero-norm vectors on
    either side, score 0.0.
    """
    scores = np.zeros(len(vectors))
    query_vector = np.asarray(query, dtype=float)
    query_norm = np.linalg.norm(query_vector)
    if len(vectors) == 0 or query_norm == 0.0:
        return scores

    rows = [index for index, vector in enumerate(vectors) if len(vector) == len(query_vector)]
    if not rows:
        return scores

    matrix = np.asarray([vectors[index] for index in rows], dtype=float)
    norms = np.linalg.norm(matrix, axis=1)
    dots = matrix @ query_vector
    denominators = np.where(norms > 0.0, norms * query_norm, 1.0)
    scores[rows] = np.where(norms > 0.0, dots / denominators, 0.0)
    return scores


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for vectors of different length or zero norm."""
    return float(cosine_scores(a, [b])[0])


def concept_node_id(name: str) -> str:
    return "concept_" + re.sub(r"[^a-z0-9]", "_", name.lower())


class KnowledgeGraphIndex:
    """
    In-memory graph of table, column and concept nodes.

    Usage:
        index = KnowledgeGraphIndex(embedding_client, cheap_llm, settings.knowledge_graph)
        await index.seed(schema)
        tables = await index.find("salary greater than 1000 USD", k=10)
        payload = index.to_json()
    """

    def __init__(
        self,
        embedder: EmbeddingCapability,
        llm: LLMCapability,
        config: KnowledgeGraphConfig,
    ):
        self.embedder = embedder
        self.llm = llm
        self.config = config
        self.nodes: Dict[str, GraphNode] = {}
        self.edges: Dict[str, List[GraphEdge]] = {}
        self._ready = asyncio.Event()

    # =========================================================================
    # Readiness
    # =========================================================================

    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        """
        Block until the graph is seeded or loaded.

        Raises:
            ServiceUnavailableError: If that does not happen within `timeout` seconds
        """
        if self._ready.is_set():
            return
        wait_for = self.config.ready_timeout_seconds if timeout is None else timeout
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=wait_for)
        except asyncio.TimeoutError as e:
            raise ServiceUnavailableError(
                "Knowledge graph is not ready",
                details={"timeout_seconds": wait_for},
            ) from e

    def _reset(self) -> None:
        self._ready.clear()
        self.nodes = {}
        self.edges = {}

    # =========================================================================
    # Seeding
    # =========================================================================

    async def seed(self, schema: DatabaseSchema, abort: Optional[AbortSignal] = None) -> None:
        """
        Build the graph from `schema`, replacing any previous content.

        Raises:
            EmbeddingError: If table embeddings cannot be generated
            OperationCancelledError: If the abort signal fires
        """
        trace_id = current_trace_id()
        self._reset()
        logger.info("Seeding knowledge graph", table_count=len(schema.tables), trace_id=trace_id)

        table_names = list(schema.tables)
        texts = [
            f"{name}: {table.description}\n" + "\n".join(self._context_text(table))
            for name, table in schema.tables.items()
        ]
        embeddings = await self.embedder.embed_batch(texts, abort=abort) if texts else []

        for name, embedding in zip(table_names, embeddings):
            table = schema.tables[name]
            self.nodes[name] = GraphNode(
                id=name,
                type=NodeType.TABLE,
                properties={"name": name, "description": table.description},
                embedding=embedding or None,
            )
            for column_name, column in table.columns.items():
                column_id = f"{name}.{column_name}"
                self.nodes[column_id] = GraphNode(
                    id=column_id,
                    type=NodeType.COLUMN,
                    properties={
                        "name": column_name,
                        "type": column.type,
                        "description": column.description,
                        "parent_table": name,
                    },
                )
                self.add_edge(name, column_id, EdgeType.CONTAINS, 1.0)

        for relation in schema.relations:
            properties = {"description": relation.description}
            self.add_edge(relation.table, relation.referenced_table, EdgeType.RELATES_TO, 1.0, properties)
            self.add_edge(
                f"{relation.table}.{relation.column}",
                f"{relation.referenced_table}.{relation.referenced_column}",
                EdgeType.FOREIGN_KEY,
                1.0,
                properties,
            )

        await self._extract_concepts(schema, abort)

        self._ready.set()
        logger.info(
            "Knowledge graph seeded",
            node_count=len(self.nodes),
            edge_count=sum(len(edges) for edges in self.edges.values()),
            trace_id=trace_id,
        )

    @staticmethod
    def _context_text(table: TableSchema) -> List[str]:
        lines: List[str] = []
        for item in table.context:
            if isinstance(item, str):
                lines.append(item)
            else:
                lines.extend(item.values())
        return lines

    def add_edge(
        self,
        source: str,
        target: str,
        edge_type: EdgeType,
        weight: float,
        properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Add an edge; relates_to and semantic edges get their reverse as well."""
        self.edges.setdefault(source, []).append(
            GraphEdge(source=source, target=target, type=edge_type, weight=weight, properties=properties)
        )
        if edge_type in MIRRORED_EDGE_TYPES:
            self.edges.setdefault(target, []).append(
                GraphEdge(source=target, target=source, type=edge_type, weight=weight, properties=properties)
            )

    def cluster_tables(self, schema: DatabaseSchema) -> List[List[Tuple[str, TableSchema]]]:
        """
        Greedy single-pass clustering of tables by embedding similarity.

        A table joins the current cluster when its similarity to the cluster's
        first table is strictly above the threshold and the cluster is not
        full. Only clusters with more than one table are returned.
        """
        clusters: List[List[Tuple[str, TableSchema]]] = []
        processed = set()

        embedded = [
            name for name in schema.tables
            if name in self.nodes and self.nodes[name].embedding
        ]
        vectors = [self.nodes[name].embedding for name in embedded]

        for name, table in schema.tables.items():
            if name in processed:
                continue
            processed.add(name)

            node = self.nodes.get(name)
            if node is None or not node.embedding:
                continue

            similarities = cosine_scores(node.embedding, vectors)
            cluster = [(name, table)]
            for other_name, similarity in zip(embedded, similarities):
                if other_name in processed or len(cluster) >= self.config.max_cluster_size:
                    continue
                if similarity > self.config.cluster_threshold:
                    cluster.append((other_name, schema.tables[other_name]))
                    processed.add(other_name)

            clusters.append(cluster)

        return [cluster for cluster in clusters if len(cluster) > 1]

    async def _extract_concepts(self, schema: DatabaseSchema, abort: Optional[AbortSignal]) -> None:
        clusters = self.cluster_tables(schema)
        logger.info("Table clusters found", cluster_count=len(clusters), trace_id=current_trace_id())

        for index, cluster in enumerate(clusters):
            try:
                response = await self.llm.generate(
                    build_concept_prompt(cluster, self.config.concept_sample_columns),
                    abort=abort,
                )
                concept = parse_concept(response)
                if concept is None:
                    logger.warning("Unparsable concept response", cluster_index=index)
                    continue
                if concept.confidence > self.config.concept_threshold:
                    concept.related_tables = [name for name, _ in cluster]
                    await self._add_concept(concept, abort)
            except OperationCancelledError:
                raise
            except QueryGenError as e:
                logger.warning(
                    "Concept extraction failed for cluster",
                    cluster_index=index,
                    error=str(e),
                    trace_id=current_trace_id(),
                )

    async def _add_concept(self, concept: Concept, abort: Optional[AbortSignal]) -> None:
        concept_id = concept_node_id(concept.name)
        embeddings = await self.embedder.embed_batch([f"{concept.name}: {concept.description}"], abort=abort)

        self.nodes[concept_id] = GraphNode(
            id=concept_id,
            type=NodeType.CONCEPT,
            properties={
                "name": concept.name,
                "description": concept.description,
                "domain": concept.domain,
                "confidence": concept.confidence,
            },
            embedding=embeddings[0] if embeddings else None,
        )

        strength = min(self.config.max_concept_strength, concept.confidence + self.config.confidence_offset)
        for table in concept.related_tables:
            if table in self.nodes:
                self.add_edge(concept_id, table, EdgeType.RELATES_TO, strength)

        logger.info("Concept added", concept=concept.name, tables=concept.related_tables)

    # =========================================================================
    # Search
    # =========================================================================

    async def find(self, query: str, k: int, abort: Optional[AbortSignal] = None) -> List[str]:
        """Ids of the k best tables for `query`, best first."""
        return [scored.table for scored in await self.find_scored(query, k, abort)]

    async def find_scored(
        self, query: str, k: int, abort: Optional[AbortSignal] = None
    ) -> List[ScoredTable]:
        """
        The k best tables for `query` with their fused scores.

        Raises:
            ServiceUnavailableError: If the graph is not ready in time
        """
        await self.wait_ready()
        if k < 1:
            return []

        query_embedding = await self.embedder.embed_text(query, abort=abort)

        table_ids = [
            node_id for node_id, node in self.nodes.items()
            if node.type == NodeType.TABLE and node.embedding
        ]
        similarities = cosine_scores(query_embedding, [self.nodes[node_id].embedding for node_id in table_ids])
        cosine = dict(zip(table_ids, similarities.tolist()))

        order = np.argsort(-similarities, kind="stable")[: 2 * k]
        candidates = [(table_ids[index], cosine[table_ids[index]]) for index in order]

        expanded = self._expand(candidates)

        ranked: List[ScoredTable] = []
        for node_id, traversal_score in expanded.items():
            node = self.nodes.get(node_id)
            if node is None or node.type != NodeType.TABLE:
                continue
            if node_id in cosine:
                score = (
                    cosine[node_id] * self.config.vector_weight
                    + traversal_score * self.config.graph_weight
                )
            else:
                score = traversal_score
            ranked.append(ScoredTable(table=node_id, score=score))

        ranked.sort(key=lambda scored: scored.score, reverse=True)
        logger.info(
            "Knowledge graph search",
            candidate_count=len(candidates),
            expanded_count=len(expanded),
            tables=[scored.table for scored in ranked[:k]],
            trace_id=current_trace_id(),
        )
        return ranked[:k]

    def _expand(self, candidates: List[Tuple[str, float]]) -> Dict[str, float]:
        """
        Depth-bounded DFS from every candidate, iterative.

        Each stack frame holds the edge iterator of a node, the score that
        reached it and its remaining depth. The visited set is shared by all
        roots of one call, so a node is expanded at most once.
        """
        expanded: Dict[str, float] = {node_id: score for node_id, score in candidates}
        visited = set()
        max_depth = self.config.traversal_depth

        for root_id, root_score in candidates:
            if max_depth <= 0 or root_id in visited:
                continue
            visited.add(root_id)
            stack: List[Tuple[Iterator[GraphEdge], float, int]] = [
                (iter(self.edges.get(root_id, [])), root_score, max_depth)
            ]

            while stack:
                edges, score, depth = stack[-1]
                edge = next(edges, None)
                if edge is None:
                    stack.pop()
                    continue

                neighbor = self.nodes.get(edge.target)
                if neighbor is None or neighbor.type not in _TRAVERSABLE:
                    continue

                propagated = score * self.config.decay * edge.weight
                if propagated > expanded.get(edge.target, 0.0):
                    expanded[edge.target] = propagated

                if depth - 1 > 0 and edge.target not in visited:
                    visited.add(edge.target)
                    stack.append((iter(self.edges.get(edge.target, [])), propagated, depth - 1))

        return expanded

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_json(self) -> str:
        """Serialize as {"nodes": [...], "edges": [...]} with edges keyed from/to."""
        return json.dumps(
            {
                "nodes": [node.model_dump(mode="json") for node in self.nodes.values()],
                "edges": [
                    edge.model_dump(mode="json", by_alias=True, exclude_none=True)
                    for edges in self.edges.values()
                    for edge in edges
                ],
            }
        )

    def from_json(self, payload: str) -> None:
        """
        Replace the graph with a serialized one. Edges are loaded as stored.

        Raises:
            KnowledgeGraphError: If the payload is not a serialized graph
        """
        try:
            data = json.loads(payload)
            nodes = [GraphNode.model_validate(node) for node in data["nodes"]]
            edges = [GraphEdge.model_validate(edge) for edge in data["edges"]]
        except (json.JSONDecodeError, KeyError, TypeError, PydanticValidationError) as e:
            raise KnowledgeGraphError(f"Invalid serialized knowledge graph: {e}") from e

        self._reset()
        for node in nodes:
            self.nodes[node.id] = node
        for edge in edges:
            self.edges.setdefault(edge.source, []).append(edge)
        self._ready.set()
        logger.info("Knowledge graph loaded", node_count=len(nodes), edge_count=len(edges))
