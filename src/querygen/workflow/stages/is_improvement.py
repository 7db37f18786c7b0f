"""Loads an existing dataset when the request refines it."""

from querygen.domain.base_enums import StageName
from querygen.domain.errors import NotFoundError
from querygen.domain.interfaces import DatasetStore
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.utils.logging import get_module_logger
from querygen.workflow.stages.base import Stage

logger = get_module_logger()


class IsImprovementStage(Stage):
    """
    Turns a request on an existing dataset into an improvement run.

    The dataset's SQL and prompt become the worked example, and the new
    prompt is appended to the original one as user feedback.
    """

    name = StageName.IS_IMPROVEMENT

    def __init__(self, store: DatasetStore):
        self.store = store

    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        if not state.dataset_id:
            return state

        dataset = await self.store.find_by_id(state.dataset_id)
        if dataset is None:
            raise NotFoundError(
                f"Dataset with id {state.dataset_id} not found",
                details={"dataset_id": state.dataset_id},
            )

        logger.info("Improving existing dataset", dataset_id=state.dataset_id)
        return state.evolve(
            sample_sql=dataset.query,
            sample_sql_prompt=dataset.prompt,
            prompt=f"{dataset.prompt}\n also consider following feedback given by user -\n {state.prompt}\n",
        )
