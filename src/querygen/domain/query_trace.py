"""
Trace models recording which workflow stages ran, in order.
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, timezone
from .base_enums import PipelineStatus, StageName


class StageRecord(BaseModel):
    """One execution of one stage."""

    stage: StageName = Field(..., description="Stage that ran")
    status: Optional[PipelineStatus] = Field(default=None, description="Pipeline status after the stage")
    feedback_count: int = Field(default=0, description="Accumulated feedback entries after the stage")
    start_time: datetime = Field(..., description="Stage start timestamp")
    duration_ms: Optional[float] = Field(default=None, description="Stage execution duration in milliseconds")

    def mark_completed(self, status: Optional[PipelineStatus], feedback_count: int) -> None:
        self.status = status
        self.feedback_count = feedback_count
        self.duration_ms = (datetime.now(timezone.utc) - self.start_time).total_seconds() * 1000


class WorkflowTrace(BaseModel):
    """Ordered stage executions of a single run."""

    trace_id: Optional[str] = Field(default=None, description="Trace id of the run")
    records: List[StageRecord] = Field(default_factory=list)

    def start(self, stage: StageName) -> StageRecord:
        record = StageRecord(stage=stage, start_time=datetime.now(timezone.utc))
        self.records.append(record)
        return record

    def stages(self) -> List[StageName]:
        return [record.stage for record in self.records]

    def count(self, stage: StageName) -> int:
        return sum(1 for record in self.records if record.stage == stage)
