"""
SQL generation from the narrowed schema.

The first attempt may carry a sample query; retries instead show the previous
SQL together with the validation feedback gathered so far. A reply without
a `<sql>` block fails the run.
"""

from querygen.config import WorkflowConfig
from querygen.domain.base_enums import PipelineStatus, StageName
from querygen.domain.interfaces import LLMCapability
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.services.schema_helper import SchemaHelper
from querygen.utils.logging import get_module_logger
from querygen.workflow.parsers import parse_generated_sql
from querygen.workflow.prompts import (
    build_sql_example,
    build_sql_feedback,
    build_sql_generation_prompt,
    rules_section,
)
from querygen.workflow.stages.base import Stage, merge_rules

logger = get_module_logger()

GENERATION_FAILED_REPLY = (
    "Failed to generate SQL query. Please try rephrasing your question or provide more details."
)

RULES_LEAD = "You must keep these additional details in mind while writing the query -"


class SqlGenerationStage(Stage):
    """
    Writes the SQL for the narrowed schema.

    The cheaper model handles runs with a worked example or a single
    table; everything else goes to the default model.
    """

    name = StageName.SQL_GENERATION

    def __init__(
        self,
        llm: LLMCapability,
        cheap_llm: LLMCapability,
        schema_helper: SchemaHelper,
        config: WorkflowConfig,
    ):
        self.llm = llm
        self.cheap_llm = cheap_llm
        self.schema_helper = schema_helper
        self.config = config

    def _pick_llm(self, state: PipelineState) -> LLMCapability:
        if state.sample_sql or len(state.schema.tables) == 1:
            return self.cheap_llm
        return self.llm

    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        rules = rules_section(
            merge_rules(self.config.global_context, self.schema_helper.tables_context(state.schema)),
            lead=RULES_LEAD,
        )
        # The worked example is only shown on the first attempt
        example = ""
        if not state.feedbacks:
            example = build_sql_example(state.sample_sql, state.sample_sql_prompt, state.from_cache)

        prompt = build_sql_generation_prompt(
            dialect=self.config.dialect,
            question=state.prompt,
            ddl=self.schema_helper.as_string(state.schema),
            rules=rules,
            example=example,
            feedback=build_sql_feedback(state.sql, state.feedbacks),
        )
        logger.debug("SQL generation prompt", prompt=prompt)

        sql, description = parse_generated_sql(await self._pick_llm(state).generate(prompt, abort=ctx.abort))

        if not sql:
            logger.warning("LLM returned no SQL", attempts=state.attempts)
            return state.evolve(status=PipelineStatus.FAILED, reply_to_user=GENERATION_FAILED_REPLY)

        logger.info("SQL generated", attempts=state.attempts, tables=state.schema.table_names())
        return state.evolve(sql=sql, description=description, status=PipelineStatus.PASS)
