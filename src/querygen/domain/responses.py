from pydantic import BaseModel, Field
from typing import List, Optional

from .base_enums import PipelineStatus
from .query_trace import WorkflowTrace


class GenerationResult(BaseModel):
    """
    Outcome of one generation run returned to the caller.

    Never carries rows: a successful run yields a dataset id plus a
    natural-language reply; rows are read through the dataset read path.
    """

    succeeded: bool = Field(..., description="A dataset was created or served from cache")
    dataset_id: Optional[str] = Field(default=None, description="Dataset created or reused by the run")
    reply: str = Field(default="", description="Message for the user")
    description: Optional[str] = Field(default=None, description="Description of the generated query")
    from_cache: bool = Field(default=False, description="Served from the query cache")
    status: Optional[PipelineStatus] = Field(default=None, description="Final pipeline status")
    feedbacks: List[str] = Field(default_factory=list, description="Feedback accumulated during the run")
    trace: WorkflowTrace = Field(default_factory=WorkflowTrace, description="Stages executed")
