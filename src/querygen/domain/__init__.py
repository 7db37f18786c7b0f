"""
Domain package for the query generation service.

Pydantic models for schemas, knowledge graph nodes and datasets, the
immutable pipeline state, str enums and the exception hierarchy.
"""

from .base_enums import (
    CacheCategory,
    ColumnType,
    EdgeType,
    NodeType,
    PipelineStatus,
    RelationType,
    StageName,
)
from .schema import ColumnSchema, DatabaseSchema, ForeignKey, TableSchema
from .graph_nodes import Concept, GraphEdge, GraphNode, ScoredTable
from .dataset import CacheCandidate, Dataset, DatasetPatch
from .pipeline import PipelineState, RequestContext
from .query_trace import StageRecord, WorkflowTrace
from .responses import GenerationResult

__all__ = [
    # Enums
    "CacheCategory",
    "ColumnType",
    "EdgeType",
    "NodeType",
    "PipelineStatus",
    "RelationType",
    "StageName",

    # Schema
    "ColumnSchema",
    "DatabaseSchema",
    "ForeignKey",
    "TableSchema",

    # Knowledge graph
    "Concept",
    "GraphEdge",
    "GraphNode",
    "ScoredTable",

    # Datasets
    "CacheCandidate",
    "Dataset",
    "DatasetPatch",

    # Pipeline
    "PipelineState",
    "RequestContext",
    "StageRecord",
    "WorkflowTrace",
    "GenerationResult",
]
