from pydantic import BaseModel, ConfigDict, Field
from .base_enums import EdgeType, NodeType
from typing import Any, Dict, List, Optional


class GraphNode(BaseModel):
    """A table, column or concept node of the knowledge graph."""

    id: str = Field(..., description="Node id: table name, 'table.column', or 'concept_<slug>'")
    type: NodeType = Field(..., description="Kind of node")
    properties: Dict[str, Any] = Field(default_factory=dict, description="Node attributes used in prompts and ranking")
    embedding: Optional[List[float]] = Field(default=None, description="Embedding of the node text, if any")


class GraphEdge(BaseModel):
    """A weighted edge. relates_to and semantic edges are stored in both directions."""

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(..., alias="from", description="Id of the source node")
    target: str = Field(..., alias="to", description="Id of the target node")
    type: EdgeType = Field(..., description="Kind of edge")
    weight: float = Field(..., ge=0.0, le=1.0, description="Propagation weight")
    properties: Optional[Dict[str, Any]] = Field(default=None, description="Optional edge attributes")


class Concept(BaseModel):
    """A business concept synthesized from a cluster of similar tables."""

    name: str = Field(..., description="Short concept name")
    description: str = Field(default="", description="What the concept covers")
    domain: str = Field(default="", description="Business domain of the concept")
    confidence: float = Field(default=0.5, ge=0.0, le=1.0, description="LLM confidence in the concept")
    related_tables: List[str] = Field(default_factory=list, description="Tables of the source cluster")


class ScoredTable(BaseModel):
    """A table returned by knowledge graph search with its fused score."""

    table: str
    score: float
