"""Permission gate run on the narrowed schema before generation."""

from typing import List

from querygen.domain.base_enums import PipelineStatus, StageName
from querygen.domain.interfaces import LLMCapability
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.services.permission_filter import PermissionFilter, normalize_table_name
from querygen.utils.logging import get_module_logger
from querygen.utils.text import strip_thinking_tokens
from querygen.workflow.prompts import build_permission_message_prompt
from querygen.workflow.stages.base import Stage

logger = get_module_logger()


class CheckPermissionsStage(Stage):
    """
    Stops the run when the caller lacks a permission for a selected table.

    The reply is written by the LLM in plain language and must not name
    any table.
    """

    name = StageName.CHECK_PERMISSIONS

    def __init__(self, llm: LLMCapability, permission_filter: PermissionFilter):
        self.llm = llm
        self.permission_filter = permission_filter

    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        tables = self._table_names(state)
        missing = self.permission_filter.missing(tables, ctx.permissions)
        if not missing:
            return state

        logger.info("Missing table permissions", missing_count=len(missing), user_id=ctx.user_id)
        response = await self.llm.generate(
            build_permission_message_prompt(state.prompt, tables, missing),
            abort=ctx.abort,
        )
        return state.evolve(
            status=PipelineStatus.PERMISSION_ERROR,
            reply_to_user=strip_thinking_tokens(response),
        )

    @staticmethod
    def _table_names(state: PipelineState) -> List[str]:
        return [normalize_table_name(name) for name in state.schema.tables]
