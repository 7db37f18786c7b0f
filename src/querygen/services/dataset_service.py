"""
Dataset service.

Read path and lifecycle of persisted datasets:
- permission checks against the tables a dataset reads
- permission-checked row retrieval through the SQL connector
- the mark valid/invalid action, which also keeps the query cache in sync
"""

from typing import Any, Dict, Iterable, List, Optional

from querygen.config import DatasetStoreConfig
from querygen.domain.dataset import Dataset, DatasetPatch
from querygen.domain.errors import NotFoundError, PermissionDeniedError, ValidationError
from querygen.domain.interfaces import DatasetStore, SimilarityStore, SqlConnector
from querygen.services.permission_filter import PermissionFilter
from querygen.utils.logging import get_module_logger
from querygen.utils.tracing import current_trace_id

logger = get_module_logger()


class DatasetService:
    """
    Usage:
        service = DatasetService(repo, permission_filter, connector, cache_store, config)
        missing = await service.check_permissions(dataset_id, {"view_employees"})
        rows = await service.get_data(dataset_id, {"view_employees"}, limit=50)
        await service.mark(dataset_id, valid=True)
    """

    def __init__(
        self,
        store: DatasetStore,
        permission_filter: PermissionFilter,
        connector: SqlConnector,
        cache_store: SimilarityStore,
        config: DatasetStoreConfig,
    ):
        self.store = store
        self.permission_filter = permission_filter
        self.connector = connector
        self.cache_store = cache_store
        self.config = config

    async def get(self, dataset_id: str) -> Dataset:
        """
        Raises:
            NotFoundError: If no dataset has this id
        """
        dataset = await self.store.find_by_id(dataset_id)
        if dataset is None:
            raise NotFoundError(f"Dataset with id {dataset_id} not found", details={"dataset_id": dataset_id})
        return dataset

    async def check_permissions(self, dataset_id: str, granted: Iterable[str]) -> List[str]:
        """Permission keys the caller lacks for the dataset's tables."""
        dataset = await self.get(dataset_id)
        return self.permission_filter.missing(dataset.tables, granted)

    async def get_data(
        self,
        dataset_id: str,
        granted: Iterable[str],
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Rows of a dataset for a caller holding every required permission.

        Raises:
            NotFoundError: Unknown dataset
            PermissionDeniedError: Missing permissions
            ValidationError: Negative limit or offset
        """
        dataset = await self.get(dataset_id)

        missing = self.permission_filter.missing(dataset.tables, granted)
        if missing:
            raise PermissionDeniedError(
                "Not allowed to read this dataset",
                details={"dataset_id": dataset_id},
            )

        effective_limit = self.config.default_limit if limit is None else limit
        if effective_limit < 0 or (offset is not None and offset < 0):
            raise ValidationError("limit and offset must not be negative")
        effective_limit = min(effective_limit, self.config.max_limit)

        rows = await self.connector.execute(dataset.query, limit=effective_limit, offset=offset)
        logger.info(
            "Dataset rows read",
            dataset_id=dataset_id,
            row_count=len(rows),
            trace_id=current_trace_id(),
        )
        return rows

    async def mark(self, dataset_id: str, valid: bool, feedback: Optional[str] = None) -> Dataset:
        """
        Record the user's verdict on a dataset.

        A valid dataset is (re)registered in the query cache so later prompts
        can reuse it; an invalid one is removed from it.
        """
        dataset = await self.get(dataset_id)
        patch = DatasetPatch(valid=valid, feedback=feedback)
        await self.store.update_all(patch.as_update(), {"id": dataset_id})

        await self.cache_store.delete_by_dataset(dataset_id)
        if valid:
            await self.cache_store.add(
                dataset.prompt,
                {
                    "query": dataset.query,
                    "dataset_id": dataset_id,
                    "tenant_id": dataset.tenant_id,
                    "tables": dataset.tables,
                },
            )

        logger.info("Dataset marked", dataset_id=dataset_id, valid=valid, trace_id=current_trace_id())
        return dataset.model_copy(update=patch.as_update())
