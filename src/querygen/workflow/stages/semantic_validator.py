"""LLM check that the generated SQL answers the question under the schema rules."""

from querygen.config import WorkflowConfig
from querygen.domain.base_enums import PipelineStatus, StageName
from querygen.domain.errors import WorkflowError
from querygen.domain.interfaces import LLMCapability
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.services.schema_helper import SchemaHelper
from querygen.utils.logging import get_module_logger
from querygen.workflow.parsers import parse_semantic_verdict
from querygen.workflow.prompts import build_semantic_validation_prompt, rules_section
from querygen.workflow.stages.base import Stage, merge_rules

logger = get_module_logger()

RULES_LEAD = "It is really important that the query follows all the following context information -"

UNREADABLE_VERDICT_FEEDBACK = (
    "Semantic validation could not confirm the query answers the question. "
    "Re-check every condition of the question against the query."
)


class SemanticValidatorStage(Stage):
    """Asks the LLM whether the SQL answers the prompt under the schema rules."""

    name = StageName.SEMANTIC_VALIDATOR

    def __init__(self, llm: LLMCapability, schema_helper: SchemaHelper, config: WorkflowConfig):
        self.llm = llm
        self.schema_helper = schema_helper
        self.config = config

    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        if not state.sql:
            raise WorkflowError("Semantic validation requires generated SQL")

        rules = rules_section(
            merge_rules(self.config.global_context, self.schema_helper.tables_context(state.schema)),
            lead=RULES_LEAD,
        )
        prompt = build_semantic_validation_prompt(
            prompt=state.prompt,
            sql=state.sql,
            ddl=self.schema_helper.as_string(state.schema),
            rules=rules,
            last_feedback=state.last_feedback,
        )
        logger.debug("Semantic validation prompt", prompt=prompt)

        verdict = parse_semantic_verdict(await self.llm.generate(prompt, abort=ctx.abort))

        if verdict is None:
            logger.warning("Unreadable semantic verdict", attempts=state.attempts + 1)
            return state.with_feedback(UNREADABLE_VERDICT_FEEDBACK, status=PipelineStatus.QUERY_ERROR)

        if verdict.valid:
            logger.info("Query passed semantic validation", attempts=state.attempts)
            return state.evolve(status=PipelineStatus.PASS)

        logger.info("Query rejected by semantic validation", reason=verdict.reason, attempts=state.attempts + 1)
        return state.with_feedback(verdict.reason or UNREADABLE_VERDICT_FEEDBACK, status=PipelineStatus.QUERY_ERROR)
