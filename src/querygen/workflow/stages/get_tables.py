"""
Table selection.

Candidate tables come from the table retriever (knowledge graph or the full
schema). The LLM picks the relevant ones; names it invents are dropped and
an empty pick fails the run with a reply for the user.
"""

from querygen.config import WorkflowConfig
from querygen.domain.base_enums import PipelineStatus, StageName
from querygen.domain.errors import SchemaError
from querygen.domain.interfaces import LLMCapability
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.services.schema_helper import SchemaHelper, SchemaStore
from querygen.services.table_retriever import TableRetriever
from querygen.utils.logging import get_module_logger
from querygen.workflow.parsers import parse_table_selection
from querygen.workflow.prompts import build_table_feedback, build_table_selection_prompt, rules_section
from querygen.workflow.stages.base import Stage, merge_rules

logger = get_module_logger()

NO_TABLES_REPLY = (
    "Not able to select relevant tables from the schema. "
    "Please rephrase the question or provide more details."
)


class GetTablesStage(Stage):
    """
    Narrows the schema to the tables the prompt needs.

    Candidates come from the TableRetriever; the LLM picks among them or
    gives up with a reason for the user. Names the LLM invents are dropped
    silently here: if the SQL later references a missing table, the
    syntactic validator routes back to this stage.
    """

    name = StageName.GET_TABLES

    def __init__(
        self,
        llm: LLMCapability,
        retriever: TableRetriever,
        schema_store: SchemaStore,
        schema_helper: SchemaHelper,
        config: WorkflowConfig,
        candidate_count: int = 10,
    ):
        self.llm = llm
        self.retriever = retriever
        self.schema_store = schema_store
        self.schema_helper = schema_helper
        self.config = config
        self.candidate_count = candidate_count

    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        candidates = await self.retriever.get_tables(state.prompt, self.candidate_count, abort=ctx.abort)
        candidate_schema = self.schema_store.filtered(candidates)
        if not candidate_schema.tables:
            raise SchemaError("No tables found in the database schema")

        logger.info("Selecting from tables", candidates=candidate_schema.table_names())

        table_lines = [
            f"{name}: {candidate_schema.tables[name].description}"
            for name in candidates
            if name in candidate_schema.tables
        ]
        rules = rules_section(
            merge_rules(self.config.global_context, self.schema_helper.tables_context(candidate_schema))
        )
        feedback = build_table_feedback(state.schema.table_names(), state.feedbacks)
        prompt = build_table_selection_prompt(state.prompt, table_lines, rules, feedback)
        logger.debug("Table selection prompt", prompt=prompt)

        selection = parse_table_selection(await self.llm.generate(prompt, abort=ctx.abort))

        if selection.failed:
            logger.info("Table selection gave up", reason=selection.reason)
            return state.evolve(status=PipelineStatus.FAILED, reply_to_user=selection.reason or NO_TABLES_REPLY)

        narrowed = self.schema_store.filtered(selection.tables)
        unknown = [name for name in selection.tables if name not in narrowed.tables]
        if unknown:
            logger.warning("LLM selected unknown tables", tables=unknown)

        if not narrowed.tables:
            return state.evolve(status=PipelineStatus.FAILED, reply_to_user=NO_TABLES_REPLY)

        logger.info("Tables selected", tables=narrowed.table_names())
        return state.evolve(schema=narrowed)
