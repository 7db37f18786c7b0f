"""Dry-runs generated SQL with EXPLAIN on a read-only connection."""

from querygen.domain.base_enums import PipelineStatus, StageName
from querygen.domain.errors import DatabaseQueryError, WorkflowError
from querygen.domain.interfaces import LLMCapability, SqlConnector
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.utils.logging import get_module_logger
from querygen.workflow.parsers import parse_error_category
from querygen.workflow.prompts import build_error_triage_prompt
from querygen.workflow.stages.base import Stage

logger = get_module_logger()


class SyntacticValidatorStage(Stage):
    """
    Dry-runs the SQL against the database.

    A rejected query is triaged by the LLM into table_not_found or
    query_error; the category decides which stage repairs it.
    """

    name = StageName.SYNTACTIC_VALIDATOR

    def __init__(self, llm: LLMCapability, connector: SqlConnector):
        self.llm = llm
        self.connector = connector

    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        if not state.sql:
            raise WorkflowError("Syntactic validation requires generated SQL")

        try:
            await self.connector.validate(state.sql)
        except DatabaseQueryError as e:
            answer = await self.llm.generate(build_error_triage_prompt(e.message, state.sql), abort=ctx.abort)
            category = parse_error_category(answer)
            label = category.value if category else answer.strip()
            logger.info(
                "Query rejected by database",
                category=label,
                attempts=state.attempts + 1,
                error=e.message,
            )
            return state.with_feedback(
                f"Query Validation Failed by DB: {label} with error {e.message}",
                status=category,
            )

        logger.info("Query passed database validation", attempts=state.attempts)
        return state.evolve(status=PipelineStatus.PASS)
