"""
Workflow orchestrator for query generation.

The workflow is an explicit stage registry plus one routing function per
stage. A routing function looks only at the state a stage returned and
names the next stage (or END). Retry budgets live in the routers: the
feedback tuple of the state is the single counter shared by both
validators.

Flow:
    is_improvement -> check_cache -> get_tables [-> get_columns]
      -> check_permissions -> sql_generation -> syntactic_validator
      -> semantic_validator -> save_dataset

    syntactic_validator: table error -> get_tables, query error -> sql_generation
    semantic_validator:  rejection   -> sql_generation
    any terminal failure             -> failed

Usage:
    workflow = build_query_workflow(stages, settings.workflow)
    final_state = await workflow.run(PipelineState(prompt=..., schema=...), ctx)
"""

from functools import partial
from typing import Awaitable, Callable, Dict, Mapping, Optional, Union

from querygen.config import WorkflowConfig
from querygen.domain.base_enums import PipelineStatus, StageName
from querygen.domain.errors import WorkflowError
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.domain.query_trace import WorkflowTrace
from querygen.utils.logging import get_module_logger
from querygen.utils.tracing import current_trace_id

logger = get_module_logger()

END = "__end__"

StageHandler = Callable[[PipelineState, RequestContext], Awaitable[PipelineState]]
Target = Union[StageName, str]
Router = Callable[[PipelineState], Target]


# =============================================================================
# Routing functions
# =============================================================================

def route_after_check_cache(state: PipelineState) -> Target:
    return END if state.from_cache else StageName.GET_TABLES


def route_after_get_tables(state: PipelineState, column_selection: bool = False) -> Target:
    if state.status == PipelineStatus.FAILED:
        return StageName.FAILED
    return StageName.GET_COLUMNS if column_selection else StageName.CHECK_PERMISSIONS


def route_after_get_columns(state: PipelineState) -> Target:
    if state.status == PipelineStatus.FAILED:
        return StageName.FAILED
    return StageName.CHECK_PERMISSIONS


def route_after_check_permissions(state: PipelineState) -> Target:
    if state.status == PipelineStatus.PERMISSION_ERROR:
        return StageName.FAILED
    return StageName.SQL_GENERATION


def route_after_sql_generation(state: PipelineState) -> Target:
    if state.status == PipelineStatus.FAILED:
        return StageName.FAILED
    return StageName.SYNTACTIC_VALIDATOR


def route_after_syntactic_validator(state: PipelineState, max_attempts: int) -> Target:
    # Budget is checked before the status
    if state.attempts >= max_attempts:
        return StageName.FAILED
    if state.status == PipelineStatus.TABLE_ERROR:
        return StageName.GET_TABLES
    if state.status == PipelineStatus.QUERY_ERROR:
        return StageName.SQL_GENERATION
    if state.status == PipelineStatus.PASS:
        return StageName.SEMANTIC_VALIDATOR
    return StageName.SYNTACTIC_VALIDATOR


def route_after_semantic_validator(state: PipelineState, max_attempts: int) -> Target:
    if state.attempts > max_attempts:
        return StageName.FAILED
    if state.status == PipelineStatus.PASS:
        return StageName.SAVE_DATASET
    return StageName.SQL_GENERATION


# =============================================================================
# Builder / compiled workflow
# =============================================================================

class CompiledWorkflow:
    """Validated stage graph ready to run."""

    def __init__(
        self,
        entry: Target,
        stages: Dict[Target, StageHandler],
        routers: Dict[Target, Router],
        max_steps: int,
    ):
        self.entry = entry
        self.stages = stages
        self.routers = routers
        self.max_steps = max_steps

    async def run(
        self,
        state: PipelineState,
        ctx: RequestContext,
        trace: Optional[WorkflowTrace] = None,
    ) -> PipelineState:
        """
        Run stages from the entry until a router returns END.

        Args:
            state: Initial state
            ctx: Caller identity, permissions and abort signal
            trace: Optional trace collecting one record per executed stage

        Returns:
            State returned by the last stage

        Raises:
            WorkflowError: If the step guard is exceeded
            OperationCancelledError: If the abort signal fires between stages
        """
        current: Target = self.entry
        steps = 0

        while current != END:
            if ctx.abort is not None:
                ctx.abort.raise_if_aborted()

            steps += 1
            if steps > self.max_steps:
                raise WorkflowError(
                    f"Workflow exceeded {self.max_steps} steps",
                    details={"stage": str(current), "attempts": state.attempts},
                )

            handler = self.stages[current]
            record = trace.start(StageName(current)) if trace is not None else None

            logger.info("Stage started", stage=str(current), step=steps, trace_id=current_trace_id())
            state = await handler(state, ctx)

            if record is not None:
                record.mark_completed(state.status, state.attempts)

            next_stage = self.routers[current](state)
            logger.info(
                "Stage routed",
                stage=str(current),
                status=state.status,
                attempts=state.attempts,
                next_stage=str(next_stage),
                trace_id=current_trace_id(),
            )
            current = next_stage

        return state


class WorkflowBuilder:
    """
    Registers stages and edges, then validates the graph on build().

    Example:
        builder = WorkflowBuilder()
        builder.add_stage(StageName.FAILED, failed_stage)
        builder.add_edge(StageName.FAILED, END)
        builder.set_entry(StageName.FAILED)
        workflow = builder.build(max_steps=100)
    """

    def __init__(self) -> None:
        self._entry: Optional[Target] = None
        self._stages: Dict[Target, StageHandler] = {}
        self._routers: Dict[Target, Router] = {}

    def set_entry(self, stage: Target) -> "WorkflowBuilder":
        self._entry = stage
        return self

    def add_stage(self, name: Target, handler: StageHandler) -> "WorkflowBuilder":
        if name in self._stages:
            raise WorkflowError(f"Stage {name} registered twice")
        self._stages[name] = handler
        return self

    def add_edge(self, source: Target, target: Target) -> "WorkflowBuilder":
        return self.add_conditional(source, lambda _state: target)

    def add_conditional(self, source: Target, router: Router) -> "WorkflowBuilder":
        if source in self._routers:
            raise WorkflowError(f"Stage {source} already has an outgoing route")
        self._routers[source] = router
        return self

    def build(self, max_steps: int = 100) -> CompiledWorkflow:
        if self._entry is None or self._entry not in self._stages:
            raise WorkflowError("Workflow entry stage is not registered")
        without_route = [str(name) for name in self._stages if name not in self._routers]
        if without_route:
            raise WorkflowError("Stages without outgoing route", details={"stages": without_route})
        orphan_routes = [str(name) for name in self._routers if name not in self._stages]
        if orphan_routes:
            raise WorkflowError("Routes from unregistered stages", details={"stages": orphan_routes})

        # Routers are opaque callables, so unknown targets are caught while running
        return CompiledWorkflow(
            entry=self._entry,
            stages=dict(self._stages),
            routers={name: self._checked(name, router) for name, router in self._routers.items()},
            max_steps=max_steps,
        )

    def _checked(self, source: Target, router: Router) -> Router:
        known = set(self._stages)

        def route(state: PipelineState) -> Target:
            target = router(state)
            if target != END and target not in known:
                raise WorkflowError(
                    f"Stage {source} routed to unknown stage {target}",
                    details={"source": str(source), "target": str(target)},
                )
            return target

        return route


def build_query_workflow(stages: Mapping[StageName, StageHandler], config: WorkflowConfig) -> CompiledWorkflow:
    """
    Wire the query generation workflow.

    Args:
        stages: Handler per stage; GET_COLUMNS is required only when
            config.column_selection is on
        config: Retry budget, step guard and column selection switch
    """
    required = [
        StageName.IS_IMPROVEMENT,
        StageName.CHECK_CACHE,
        StageName.GET_TABLES,
        StageName.CHECK_PERMISSIONS,
        StageName.SQL_GENERATION,
        StageName.SYNTACTIC_VALIDATOR,
        StageName.SEMANTIC_VALIDATOR,
        StageName.SAVE_DATASET,
        StageName.FAILED,
    ]
    if config.column_selection:
        required.append(StageName.GET_COLUMNS)

    missing = [name.value for name in required if name not in stages]
    if missing:
        raise WorkflowError("Missing workflow stages", details={"stages": missing})

    builder = WorkflowBuilder()
    for name in required:
        builder.add_stage(name, stages[name])

    builder.set_entry(StageName.IS_IMPROVEMENT)
    builder.add_edge(StageName.IS_IMPROVEMENT, StageName.CHECK_CACHE)
    builder.add_conditional(StageName.CHECK_CACHE, route_after_check_cache)
    builder.add_conditional(
        StageName.GET_TABLES,
        partial(route_after_get_tables, column_selection=config.column_selection),
    )
    if config.column_selection:
        builder.add_conditional(StageName.GET_COLUMNS, route_after_get_columns)
    builder.add_conditional(StageName.CHECK_PERMISSIONS, route_after_check_permissions)
    builder.add_conditional(StageName.SQL_GENERATION, route_after_sql_generation)
    builder.add_conditional(
        StageName.SYNTACTIC_VALIDATOR,
        partial(route_after_syntactic_validator, max_attempts=config.max_attempts),
    )
    builder.add_conditional(
        StageName.SEMANTIC_VALIDATOR,
        partial(route_after_semantic_validator, max_attempts=config.max_attempts),
    )
    builder.add_edge(StageName.SAVE_DATASET, END)
    builder.add_edge(StageName.FAILED, END)

    return builder.build(max_steps=config.max_steps)
