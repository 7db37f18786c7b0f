"""
Pipeline state models for the query generation workflow.

PipelineState is an immutable value: each stage receives one and returns
a new one built with `evolve()` / `with_feedback()`. The feedback tuple
only ever grows during a run and its length is the shared retry counter.
"""

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, FrozenSet, Optional, Tuple

from .base_enums import PipelineStatus
from .schema import DatabaseSchema

if TYPE_CHECKING:
    from ..utils.cancellation import AbortSignal


@dataclass(frozen=True)
class PipelineState:
    """
    Immutable record threaded through every workflow stage.

    `schema` starts as the full schema and is replaced by narrowed copies
    as tables (and optionally columns) are selected.
    """

    # Input
    prompt: str
    schema: DatabaseSchema

    # Generation
    sql: Optional[str] = None
    description: Optional[str] = None
    status: Optional[PipelineStatus] = None
    feedbacks: Tuple[str, ...] = ()

    # Improvement / cache examples
    dataset_id: Optional[str] = None
    sample_sql: Optional[str] = None
    sample_sql_prompt: Optional[str] = None

    # Outcome
    from_cache: bool = False
    done: bool = False
    reply_to_user: Optional[str] = None

    @property
    def attempts(self) -> int:
        """Number of accumulated feedback entries."""
        return len(self.feedbacks)

    @property
    def last_feedback(self) -> Optional[str]:
        return self.feedbacks[-1] if self.feedbacks else None

    def evolve(self, **changes) -> "PipelineState":
        """Copy with the given fields replaced. Feedbacks cannot be replaced here."""
        if "feedbacks" in changes:
            raise ValueError("feedbacks are append-only; use with_feedback()")
        return replace(self, **changes)

    def with_feedback(self, feedback: str, **changes) -> "PipelineState":
        """Copy with one feedback entry appended and the given fields replaced."""
        if "feedbacks" in changes:
            raise ValueError("feedbacks are append-only")
        return replace(self, feedbacks=self.feedbacks + (feedback,), **changes)


@dataclass(frozen=True)
class RequestContext:
    """
    Caller identity and controls for one run.

    Attributes:
        tenant_id: Tenant owning any dataset created by the run
        user_id: Caller id, used only for logging
        permissions: Permission keys granted to the caller
        abort: Optional abort signal shared by every outbound call of the run
    """

    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    abort: Optional["AbortSignal"] = None
