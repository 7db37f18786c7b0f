"""Dataset persistence for accepted queries."""

from querygen.domain.base_enums import StageName
from querygen.domain.dataset import Dataset
from querygen.domain.errors import BadRequestError, WorkflowError
from querygen.domain.interfaces import DatasetStore
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.services.schema_helper import SchemaHelper
from querygen.utils.logging import get_module_logger
from querygen.workflow.stages.base import Stage

logger = get_module_logger()


class SaveDatasetStage(Stage):
    """Persists the accepted SQL and answers with its description."""

    name = StageName.SAVE_DATASET

    def __init__(self, store: DatasetStore):
        self.store = store

    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        if not ctx.tenant_id:
            raise BadRequestError("Tenant id is required to save a dataset", details={"field": "tenant_id"})
        if not state.sql:
            raise WorkflowError("Cannot save a dataset without generated SQL")

        description = state.description or state.prompt
        dataset = await self.store.create(
            Dataset(
                query=state.sql,
                description=description,
                tables=state.schema.table_names(),
                schema_hash=SchemaHelper.hash_tables(state.schema),
                prompt=state.prompt,
                tenant_id=ctx.tenant_id,
            )
        )

        logger.info("Dataset saved", dataset_id=dataset.id, tables=dataset.tables)
        return state.evolve(dataset_id=dataset.id, reply_to_user=description, done=True)
