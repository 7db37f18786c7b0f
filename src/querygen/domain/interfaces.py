"""
Collaborator protocols.

Workflow stages and services depend on these structural types rather than
on the concrete clients, so deployments can swap a store and tests can
pass small fakes.
"""

from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from ..utils.cancellation import AbortSignal
from .dataset import CacheCandidate, Dataset
from .schema import DatabaseSchema


class LLMCapability(Protocol):
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        abort: Optional[AbortSignal] = None,
    ) -> str: ...


class EmbeddingCapability(Protocol):
    async def embed_text(self, text: str, abort: Optional[AbortSignal] = None) -> List[float]: ...

    async def embed_batch(
        self, texts: List[str], abort: Optional[AbortSignal] = None
    ) -> List[List[float]]: ...


class SimilarityStore(Protocol):
    async def add(self, text: str, metadata: Mapping[str, Any]) -> str: ...

    async def search(
        self, query: str, k: int, tenant_id: Optional[str] = None
    ) -> List[CacheCandidate]: ...

    async def delete_by_dataset(self, dataset_id: str) -> int: ...


class KeyValueCache(Protocol):
    async def get(self, key: str) -> Optional[bytes]: ...

    async def set(self, key: str, value: bytes) -> None: ...


class SqlConnector(Protocol):
    async def validate(self, sql: str) -> None: ...

    async def execute(
        self,
        sql: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        params: Optional[Sequence[Any]] = None,
    ) -> List[Dict[str, Any]]: ...

    def to_ddl(self, schema: DatabaseSchema) -> str: ...


class DatasetStore(Protocol):
    async def create(self, dataset: Dataset) -> Dataset: ...

    async def find_by_id(self, dataset_id: str) -> Optional[Dataset]: ...

    async def update_all(self, patch: Mapping[str, Any], where: Mapping[str, Any]) -> int: ...
