"""
Query generation service - entry point for turning prompts into datasets.

This service builds every collaborator from Settings and owns their
lifecycle:
1. Clients (database, storage, default and cheap LLM, embeddings)
2. Repositories (SQL connector, dataset store, query cache store, graph cache, schema loader)
3. Services (schema helper, knowledge graph, table retriever, query cache, datasets)
4. Workflow stages wired by build_query_workflow()

Usage:
    service = QueryGenerationService(get_settings())
    await service.startup()
    result = await service.generate(
        "salaries above 1000 USD",
        RequestContext(tenant_id="t1", user_id="u1", permissions=frozenset({"ViewEmployee"})),
    )
    rows = await service.datasets.get_data(result.dataset_id, {"ViewEmployee"})
    await service.close()
"""

from typing import Dict, Optional

from querygen.config import Settings
from querygen.domain.base_enums import StageName
from querygen.domain.errors import ValidationError
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.domain.query_trace import WorkflowTrace
from querygen.domain.responses import GenerationResult
from querygen.infrastructure.database_client import DatabaseClient
from querygen.infrastructure.embedding_client import EmbeddingClient
from querygen.infrastructure.llm_client import LLMClient
from querygen.infrastructure.storage_client import StorageClient
from querygen.repositories.dataset_repository import DatasetRepository
from querygen.repositories.graph_cache import GraphCacheRepository
from querygen.repositories.query_cache_store import QueryCacheStore
from querygen.repositories.schema_repository import SchemaRepository
from querygen.repositories.sql_connector import PgConnector
from querygen.services.dataset_service import DatasetService
from querygen.services.knowledge_graph import KnowledgeGraphIndex
from querygen.services.permission_filter import PermissionFilter
from querygen.services.query_cache import QueryCache
from querygen.services.schema_helper import SchemaHelper, SchemaStore
from querygen.services.table_retriever import TableRetriever
from querygen.utils.cancellation import AbortSignal
from querygen.utils.logging import get_module_logger
from querygen.utils.tracing import trace_scope
from querygen.workflow.orchestrator import CompiledWorkflow, StageHandler, build_query_workflow
from querygen.workflow.stages.check_cache import CheckCacheStage
from querygen.workflow.stages.check_permissions import CheckPermissionsStage
from querygen.workflow.stages.failed import FailedStage
from querygen.workflow.stages.get_columns import GetColumnsStage
from querygen.workflow.stages.get_tables import GetTablesStage
from querygen.workflow.stages.is_improvement import IsImprovementStage
from querygen.workflow.stages.save_dataset import SaveDatasetStage
from querygen.workflow.stages.semantic_validator import SemanticValidatorStage
from querygen.workflow.stages.sql_generation import SqlGenerationStage
from querygen.workflow.stages.syntactic_validator import SyntacticValidatorStage

logger = get_module_logger()


class QueryGenerationService:
    """Owns the clients and runs the query generation workflow."""

    def __init__(self, settings: Settings):
        self.settings = settings

        # Clients
        self.db_client = DatabaseClient(settings.database)
        self.storage_client = StorageClient(settings.storage)
        self.llm = LLMClient(settings.llm)
        self.cheap_llm = LLMClient(settings.llm, model=settings.llm.cheap_model)
        self.embedding_client = EmbeddingClient(settings.embedding)

        # Repositories
        self.connector = PgConnector(self.db_client)
        self.dataset_store = DatasetRepository(self.db_client, settings.dataset_store)
        self.cache_store = QueryCacheStore(self.db_client, self.embedding_client, settings.vector_store)
        self.graph_cache = GraphCacheRepository(self.storage_client, settings.storage)
        self.schema_repository = SchemaRepository(self.storage_client, settings.storage, settings.schema_source)

        # Services
        self.schema_store = SchemaStore()
        self.schema_helper = SchemaHelper(self.connector)
        self.permission_filter = PermissionFilter(settings.permissions.table_permissions)
        self.graph_index = KnowledgeGraphIndex(self.embedding_client, self.cheap_llm, settings.knowledge_graph)
        self.retriever = TableRetriever(self.graph_index, self.graph_cache, self.schema_helper, settings.knowledge_graph)
        self.datasets = DatasetService(
            self.dataset_store,
            self.permission_filter,
            self.connector,
            self.cache_store,
            settings.dataset_store,
        )
        self.query_cache = QueryCache(self.cache_store, self.cheap_llm, self.datasets, settings.workflow)

        self.workflow: CompiledWorkflow = build_query_workflow(self._build_stages(), settings.workflow)
        self._started = False

    def _build_stages(self) -> Dict[StageName, StageHandler]:
        config = self.settings.workflow
        stages = [
            IsImprovementStage(self.dataset_store),
            CheckCacheStage(self.query_cache),
            GetTablesStage(
                self.cheap_llm,
                self.retriever,
                self.schema_store,
                self.schema_helper,
                config,
                candidate_count=self.settings.knowledge_graph.candidate_tables,
            ),
            GetColumnsStage(self.cheap_llm, self.schema_helper, config),
            CheckPermissionsStage(self.cheap_llm, self.permission_filter),
            SqlGenerationStage(self.llm, self.cheap_llm, self.schema_helper, config),
            SyntacticValidatorStage(self.cheap_llm, self.connector),
            SemanticValidatorStage(self.cheap_llm, self.schema_helper, config),
            SaveDatasetStage(self.dataset_store),
            FailedStage(),
        ]
        return {stage.name: stage for stage in stages}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def startup(self, abort: Optional[AbortSignal] = None) -> None:
        """
        Connect clients, create tables, load the schema and seed table lookup.

        Raises:
            DatabaseConnectionError / StorageConnectionError: If a client cannot connect
            SchemaError: If the schema document is missing or invalid
        """
        await self.db_client.connect()
        await self.storage_client.connect()
        await self.llm.connect()
        await self.cheap_llm.connect()
        await self.embedding_client.connect()

        await self.dataset_store.ensure_setup()
        await self.cache_store.ensure_setup()

        schema = await self.schema_repository.load()
        self.schema_store.save(schema)
        await self.retriever.seed(schema, abort=abort)

        self._started = True
        logger.info("Query generation service started", table_count=len(schema.tables))

    async def close(self) -> None:
        await self.embedding_client.close()
        await self.cheap_llm.close()
        await self.llm.close()
        await self.storage_client.close()
        await self.db_client.close()
        self._started = False
        logger.info("Query generation service closed")

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate(
        self,
        prompt: str,
        context: RequestContext,
        dataset_id: Optional[str] = None,
    ) -> GenerationResult:
        """
        Run the workflow for one prompt.

        Args:
            prompt: Natural-language request
            context: Tenant, user, granted permissions and abort signal
            dataset_id: Existing dataset to improve with `prompt` as feedback

        Returns:
            GenerationResult with a dataset id on success, a reply in every case

        Raises:
            ValidationError: If the prompt is empty
            BadRequestError / WorkflowError: On precondition violations
            OperationCancelledError: If the abort signal fires
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt must not be empty", details={"field": "prompt"})

        with trace_scope() as trace_id:
            logger.info(
                "Starting query generation",
                prompt_length=len(prompt),
                dataset_id=dataset_id,
                user_id=context.user_id,
                trace_id=trace_id,
            )

            state = PipelineState(prompt=prompt.strip(), schema=self.schema_store.get(), dataset_id=dataset_id)
            trace = WorkflowTrace(trace_id=trace_id)
            final = await self.workflow.run(state, context, trace=trace)

            result = GenerationResult(
                succeeded=final.done or final.from_cache,
                dataset_id=final.dataset_id if (final.done or final.from_cache) else None,
                reply=final.reply_to_user or "",
                description=final.description,
                from_cache=final.from_cache,
                status=final.status,
                feedbacks=list(final.feedbacks),
                trace=trace,
            )

            logger.info(
                "Query generation finished",
                succeeded=result.succeeded,
                from_cache=result.from_cache,
                attempts=final.attempts,
                stages=len(trace.records),
                trace_id=trace_id,
            )
            return result
