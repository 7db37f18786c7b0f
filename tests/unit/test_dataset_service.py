"""Unit tests for the dataset read path and user verdicts."""

import pytest

from fakes import FakeConnector, FakeSimilarityStore, InMemoryDatasetStore
from querygen.config import DatasetStoreConfig
from querygen.domain.dataset import Dataset
from querygen.domain.errors import NotFoundError, PermissionDeniedError, ValidationError
from querygen.services.dataset_service import DatasetService
from querygen.services.permission_filter import PermissionFilter


async def _service(rows=None):
    repository = InMemoryDatasetStore()
    dataset = await repository.create(
        Dataset(
            query="SELECT name FROM employees;",
            prompt="list employees",
            description="Employee names",
            tables=["employees"],
            tenant_id="t1",
        )
    )
    connector = FakeConnector(rows=rows or [{"name": "Ada"}])
    store = FakeSimilarityStore()
    service = DatasetService(
        repository,
        PermissionFilter({"employees": "ViewEmployee"}),
        connector,
        store,
        DatasetStoreConfig(default_limit=100, max_limit=1000),
    )
    return service, dataset, connector, store


class TestGetData:
    """Rows of a dataset."""

    @pytest.mark.asyncio
    async def test_rows_returned(self):
        """A permitted caller gets the rows with the default limit."""
        service, dataset, connector, _ = await _service()

        rows = await service.get_data(dataset.id, {"ViewEmployee"})

        assert rows == [{"name": "Ada"}]
        assert connector.executed[0]["limit"] == 100
        assert connector.executed[0]["offset"] is None

    @pytest.mark.asyncio
    async def test_limit_capped(self):
        """A limit above the maximum is capped."""
        service, dataset, connector, _ = await _service()
        await service.get_data(dataset.id, {"ViewEmployee"}, limit=5000, offset=10)

        assert connector.executed[0]["limit"] == 1000
        assert connector.executed[0]["offset"] == 10

    @pytest.mark.asyncio
    async def test_missing_permission(self):
        """A caller without the table permission is refused."""
        service, dataset, connector, _ = await _service()
        with pytest.raises(PermissionDeniedError) as exc_info:
            await service.get_data(dataset.id, set())

        assert "employees" not in exc_info.value.message
        assert connector.executed == []

    @pytest.mark.asyncio
    async def test_unknown_dataset(self):
        """An unknown id is not found."""
        service, _, _, _ = await _service()
        with pytest.raises(NotFoundError):
            await service.get_data("missing", {"ViewEmployee"})

    @pytest.mark.asyncio
    async def test_negative_offset(self):
        """Negative paging values are rejected."""
        service, dataset, _, _ = await _service()
        with pytest.raises(ValidationError):
            await service.get_data(dataset.id, {"ViewEmployee"}, offset=-1)

    @pytest.mark.asyncio
    async def test_check_permissions(self):
        """Missing keys are listed for a dataset."""
        service, dataset, _, _ = await _service()
        assert await service.check_permissions(dataset.id, []) == ["ViewEmployee"]
        assert await service.check_permissions(dataset.id, ["ViewEmployee"]) == []


class TestMark:
    """User verdicts feed the query cache."""

    @pytest.mark.asyncio
    async def test_valid_dataset_registered(self):
        """A valid dataset is added to the query cache under its prompt."""
        service, dataset, _, store = await _service()

        marked = await service.mark(dataset.id, valid=True, feedback="exactly right")

        assert marked.valid is True
        assert marked.feedback == "exactly right"
        assert store.added[0]["text"] == "list employees"
        assert store.added[0]["dataset_id"] == dataset.id
        assert store.added[0]["tenant_id"] == "t1"
        assert (await service.get(dataset.id)).valid is True

    @pytest.mark.asyncio
    async def test_invalid_dataset_removed(self):
        """An invalid dataset is removed from the query cache."""
        service, dataset, _, store = await _service()
        await service.mark(dataset.id, valid=True)

        await service.mark(dataset.id, valid=False, feedback="wrong currency")

        assert store.candidates == []
        assert store.deleted == [dataset.id, dataset.id]
        assert (await service.get(dataset.id)).valid is False

    @pytest.mark.asyncio
    async def test_unknown_dataset(self):
        """Marking an unknown dataset is not found."""
        service, _, _, _ = await _service()
        with pytest.raises(NotFoundError):
            await service.mark("missing", valid=True)
