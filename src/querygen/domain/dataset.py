"""
Dataset models.

A dataset is the persisted outcome of a successful run: the accepted SQL
plus the metadata needed to re-check permissions and to offer it again
through the query cache.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Dataset(BaseModel):
    """Persisted SQL query referenced by opaque id instead of raw rows."""

    id: Optional[str] = Field(default=None, description="Dataset id, assigned by the store")
    query: str = Field(..., description="Generated SQL")
    description: str = Field(default="", description="Natural-language description of the query")
    tables: List[str] = Field(default_factory=list, description="Tables the query reads")
    schema_hash: str = Field(default="", description="Hash of the tables' definitions at generation time")
    prompt: str = Field(..., description="Prompt the query answers")
    tenant_id: str = Field(..., description="Owning tenant")
    valid: Optional[bool] = Field(default=None, description="User verdict; None until marked")
    feedback: Optional[str] = Field(default=None, description="User feedback recorded with the verdict")


class DatasetPatch(BaseModel):
    """Fields updated by the mark valid/invalid action."""

    valid: Optional[bool] = None
    feedback: Optional[str] = None

    def as_update(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class CacheCandidate(BaseModel):
    """A previously accepted prompt returned by the query cache similarity store."""

    text: str = Field(..., description="Cached prompt text")
    query: str = Field(..., description="SQL accepted for the cached prompt")
    dataset_id: str = Field(..., description="Dataset holding the accepted SQL")
    tables: List[str] = Field(default_factory=list, description="Tables the cached SQL reads")
    score: float = Field(default=0.0, description="Similarity to the new prompt")
