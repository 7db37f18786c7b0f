"""
Column-level narrowing.

Runs only when column selection is enabled. The LLM names `table.column`
entries for the selected tables; unknown entries are fed back and the
selection is retried a bounded number of times. Primary keys survive
narrowing so joins stay expressible.
"""

from typing import Dict, List, Optional

from querygen.config import WorkflowConfig
from querygen.domain.base_enums import PipelineStatus, StageName
from querygen.domain.errors import WorkflowError
from querygen.domain.interfaces import LLMCapability
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.domain.schema import DatabaseSchema
from querygen.services.schema_helper import SchemaHelper
from querygen.utils.logging import get_module_logger
from querygen.workflow.parsers import parse_column_selection
from querygen.workflow.prompts import build_column_feedback, build_column_selection_prompt, rules_section
from querygen.workflow.stages.base import Stage, merge_rules

logger = get_module_logger()

NO_COLUMNS_REPLY = (
    "Not able to select relevant columns from the schema. "
    "Please rephrase the question or provide more details."
)


def invalid_columns(selection: Dict[str, List[str]], schema: DatabaseSchema) -> List[str]:
    """`table` or `table.column` entries of the selection that the schema does not have."""
    problems: List[str] = []
    for table_name, columns in selection.items():
        table = schema.tables.get(table_name)
        if table is None:
            problems.append(table_name)
            continue
        problems.extend(f"{table_name}.{column}" for column in columns if column not in table.columns)
    return problems


def narrow_columns(schema: DatabaseSchema, selection: Dict[str, List[str]]) -> DatabaseSchema:
    """Keep the selected tables with the selected columns; primary key columns are always kept."""
    tables = {}
    for table_name, columns in selection.items():
        table = schema.tables.get(table_name)
        if table is None:
            continue
        keep = [name for name in table.columns if name in columns or name in table.primary_key]
        tables[table_name] = table.model_copy(update={"columns": {name: table.columns[name] for name in keep}})

    return DatabaseSchema(
        tables=tables,
        relations=[
            relation for relation in schema.relations
            if relation.table in tables and relation.referenced_table in tables
        ],
    )


class GetColumnsStage(Stage):
    """Optional column-level narrowing after table selection."""

    name = StageName.GET_COLUMNS

    def __init__(self, llm: LLMCapability, schema_helper: SchemaHelper, config: WorkflowConfig):
        self.llm = llm
        self.schema_helper = schema_helper
        self.config = config

    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        if not state.schema.tables:
            raise WorkflowError("Column selection requires selected tables")

        rules = rules_section(
            merge_rules(self.config.global_context, self.schema_helper.tables_context(state.schema))
        )
        last_columns = {name: list(table.columns) for name, table in state.schema.tables.items()}
        feedback = build_column_feedback(last_columns, state.feedbacks)

        retry_note: Optional[str] = None
        for attempt in range(1, self.config.column_selection_attempts + 1):
            prompt = build_column_selection_prompt(state.prompt, state.schema, rules, feedback, retry_note)
            selection = parse_column_selection(await self.llm.generate(prompt, abort=ctx.abort))

            if selection.failed:
                logger.info("Column selection gave up", reason=selection.reason)
                return state.evolve(
                    status=PipelineStatus.FAILED,
                    reply_to_user=selection.reason or NO_COLUMNS_REPLY,
                )

            if selection.columns is None:
                retry_note = "The answer did not contain a JSON object mapping table names to lists of column names."
            else:
                problems = invalid_columns(selection.columns, state.schema)
                if not problems:
                    narrowed = narrow_columns(state.schema, selection.columns)
                    logger.info("Columns selected", attempt=attempt, columns=selection.columns)
                    return state.evolve(schema=narrowed)
                retry_note = f"These tables or columns do not exist: {', '.join(problems)}"

            logger.info("Invalid column selection, retrying", attempt=attempt, problem=retry_note)

        return state.evolve(status=PipelineStatus.FAILED, reply_to_user=NO_COLUMNS_REPLY)
