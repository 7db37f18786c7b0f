"""
Test doubles for the collaborator protocols in querygen.domain.interfaces.

- FakeLLM: returns scripted responses and records every prompt
- KeywordEmbedder: deterministic bag-of-keywords embeddings
- FakeConnector: scripted validation errors, real DDL rendering
- FakeSimilarityStore: list-backed query cache store, tenant scoped like the pgvector one
- InMemoryDatasetStore: dict-backed dataset store
- InMemoryKeyValueCache: dict-backed key-value cache
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from querygen.domain.dataset import CacheCandidate, Dataset
from querygen.domain.errors import DatabaseQueryError
from querygen.domain.schema import DatabaseSchema
from querygen.repositories.schema_repository import parse_schema_document
from querygen.repositories.sql_connector import PgConnector

Responder = Callable[[str], str]


class FakeLLM:
    """Answers with the scripted responses in order; the last one repeats."""

    def __init__(self, responses: Union[str, Sequence[str], Responder] = ""):
        if isinstance(responses, str):
            responses = [responses]
        self._responses = responses
        self.prompts: List[str] = []

    async def generate(self, prompt: str, system_prompt: Optional[str] = None, abort=None) -> str:
        self.prompts.append(prompt)
        if callable(self._responses):
            return self._responses(prompt)
        index = min(len(self.prompts) - 1, len(self._responses) - 1)
        return self._responses[index]

    @property
    def calls(self) -> int:
        return len(self.prompts)


VOCABULARY = ["employee", "salary", "currency", "exchange", "rate", "department", "usd"]


class KeywordEmbedder:
    """One dimension per vocabulary word: 1.0 when the lower-cased text contains it."""

    def __init__(self, vocabulary: Sequence[str] = tuple(VOCABULARY)):
        self.vocabulary = list(vocabulary)
        self.batch_calls = 0
        self.text_calls = 0

    def vector(self, text: str) -> List[float]:
        lowered = text.lower()
        return [1.0 if word in lowered else 0.0 for word in self.vocabulary]

    async def embed_text(self, text: str, abort=None) -> List[float]:
        self.text_calls += 1
        return self.vector(text)

    async def embed_batch(self, texts: List[str], abort=None) -> List[List[float]]:
        self.batch_calls += 1
        return [self.vector(text) for text in texts]


class FakeConnector:
    """Raises the scripted errors from validate() in order, then accepts."""

    def __init__(self, errors: Sequence[str] = (), rows: Optional[List[Dict[str, Any]]] = None):
        self.errors = list(errors)
        self.rows = rows or []
        self.validated: List[str] = []
        self.executed: List[Dict[str, Any]] = []
        self._ddl = PgConnector(None)  # type: ignore[arg-type]

    async def validate(self, sql: str) -> None:
        self.validated.append(sql)
        if self.errors:
            raise DatabaseQueryError(self.errors.pop(0), details={"query": sql})

    async def execute(self, sql: str, limit=None, offset=None, params=None) -> List[Dict[str, Any]]:
        self.executed.append({"sql": sql, "limit": limit, "offset": offset})
        return list(self.rows)

    def to_ddl(self, schema: DatabaseSchema) -> str:
        return self._ddl.to_ddl(schema)


class FakeSimilarityStore:
    """Returns the tenant's stored candidates newest first."""

    def __init__(self, candidates: Optional[List[CacheCandidate]] = None, tenant_id: Optional[str] = "t1"):
        self.candidates = list(candidates or [])
        self.tenants: Dict[str, Optional[str]] = {c.dataset_id: tenant_id for c in self.candidates}
        self.added: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.searches: List[Optional[str]] = []

    async def add(self, text: str, metadata: Mapping[str, Any]) -> str:
        self.added.append({"text": text, **metadata})
        self.tenants[metadata["dataset_id"]] = metadata.get("tenant_id")
        self.candidates.insert(
            0,
            CacheCandidate(
                text=text,
                query=metadata["query"],
                dataset_id=metadata["dataset_id"],
                tables=list(metadata.get("tables", [])),
                score=1.0,
            ),
        )
        return f"row-{len(self.added)}"

    async def search(self, query: str, k: int, tenant_id: Optional[str] = None) -> List[CacheCandidate]:
        self.searches.append(tenant_id)
        return [c for c in self.candidates if self.tenants.get(c.dataset_id) == tenant_id][:k]

    async def delete_by_dataset(self, dataset_id: str) -> int:
        before = len(self.candidates)
        self.candidates = [c for c in self.candidates if c.dataset_id != dataset_id]
        self.deleted.append(dataset_id)
        return before - len(self.candidates)


# Employees earn in their own currency; exchange rates convert to USD
PAYROLL_DOCUMENT = {
    "tables": {
        "employees": {
            "description": "Staff members and their monthly salary",
            "primaryKey": ["id"],
            "context": [{"exchange_rates": "Convert pay to dollars before comparing amounts"}],
            "columns": {
                "id": {"type": "string", "id": True, "required": True},
                "name": {"type": "string", "description": "Full name"},
                "salary": {"type": "number", "description": "Monthly salary"},
                "currency_id": {"type": "string", "id": True},
            },
        },
        "currencies": {
            "description": "Currency codes such as USD",
            "primaryKey": ["id"],
            "columns": {
                "id": {"type": "string", "id": True, "required": True},
                "code": {"type": "string"},
            },
        },
        "exchange_rates": {
            "description": "Daily exchange rate of each currency to USD",
            "primaryKey": ["id"],
            "context": ["Use the most recent rate"],
            "columns": {
                "id": {"type": "string", "id": True, "required": True},
                "currency_id": {"type": "string", "id": True},
                "rate": {"type": "number"},
                "valid_on": {"type": "date"},
            },
        },
        "departments": {
            "description": "Organisational units",
            "primaryKey": ["id"],
            "columns": {
                "id": {"type": "string", "id": True, "required": True},
                "title": {"type": "string"},
            },
        },
    },
    "relations": [
        {
            "table": "employees",
            "column": "currency_id",
            "referencedTable": "currencies",
            "referencedColumn": "id",
        },
        {
            "table": "exchange_rates",
            "column": "currency_id",
            "referencedTable": "currencies",
            "referencedColumn": "id",
        },
    ],
}


def payroll_schema() -> DatabaseSchema:
    return parse_schema_document(PAYROLL_DOCUMENT)


class InMemoryDatasetStore:
    """Dict-backed dataset store; ids are ds-1, ds-2, ..."""

    def __init__(self) -> None:
        self._rows: Dict[str, Dataset] = {}
        self._next_id = 1

    async def create(self, dataset: Dataset) -> Dataset:
        dataset_id = dataset.id or f"ds-{self._next_id}"
        self._next_id += 1
        created = dataset.model_copy(update={"id": dataset_id})
        self._rows[dataset_id] = created
        return created

    async def find_by_id(self, dataset_id: str) -> Optional[Dataset]:
        return self._rows.get(dataset_id)

    async def update_all(self, patch: Mapping[str, Any], where: Mapping[str, Any]) -> int:
        updated = 0
        for dataset_id, dataset in list(self._rows.items()):
            if all(getattr(dataset, key) == value for key, value in where.items()):
                self._rows[dataset_id] = dataset.model_copy(update=dict(patch))
                updated += 1
        return updated


class InMemoryKeyValueCache:
    """Dict-backed key-value cache."""

    def __init__(self) -> None:
        self._values: Dict[str, bytes] = {}

    async def get(self, key: str) -> Optional[bytes]:
        return self._values.get(key)

    async def set(self, key: str, value: bytes) -> None:
        self._values[key] = value
