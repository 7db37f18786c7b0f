"""
Terminal failure stage.

Every failure route ends here. The user reply is the one an earlier stage
already set, or a generic message chosen from the final status.
"""

from querygen.domain.base_enums import StageName
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.utils.logging import get_module_logger
from querygen.workflow.stages.base import Stage

logger = get_module_logger()

FAILED_REPLY_HEADER = (
    "I am sorry, I was not able to generate a valid SQL query for your request. "
    "Please try again with a more detailed or a more specific prompt.\n"
    "These were the errors I encountered:\n"
)


def failure_reply(state: PipelineState) -> str:
    if state.reply_to_user:
        return state.reply_to_user
    errors = "\n".join(state.feedbacks) if state.feedbacks else "No errors reported."
    return FAILED_REPLY_HEADER + errors


class FailedStage(Stage):
    """Terminal stage shared by every failure path."""

    name = StageName.FAILED

    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        logger.info("Workflow failed", status=state.status, attempts=state.attempts)
        return state.evolve(reply_to_user=failure_reply(state))
