"""
Semantic query cache.

Before generating anything, the prompt is compared with previously accepted
prompts of the same tenant. An LLM judge picks the best match and says
whether it answers the prompt as-is, is only similar, or is not relevant.
"""

from querygen.config import WorkflowConfig
from querygen.domain.base_enums import CacheCategory
from querygen.domain.errors import NotFoundError
from querygen.domain.interfaces import LLMCapability, SimilarityStore
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.services.dataset_service import DatasetService
from querygen.utils.logging import get_module_logger
from querygen.utils.tracing import current_trace_id
from querygen.workflow.parsers import parse_cache_verdict
from querygen.workflow.prompts import build_cache_prompt

logger = get_module_logger()


class QueryCache:
    """
    Cache check over the query-cache similarity store.

    Outcomes of `check()`:
    - as-is match the caller may read: from_cache, dataset_id and a reply are set
    - similar match: sample_sql / sample_sql_prompt are seeded as a worked example
    - anything else: the state is returned unchanged
    """

    def __init__(
        self,
        store: SimilarityStore,
        llm: LLMCapability,
        datasets: DatasetService,
        config: WorkflowConfig,
    ):
        self.store = store
        self.llm = llm
        self.datasets = datasets
        self.config = config

    async def check(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        trace_id = current_trace_id()

        # An improvement run already carries its own example
        if state.sample_sql:
            return state

        # Cache entries are tenant scoped
        if not ctx.tenant_id:
            logger.info("Query cache skipped without tenant", trace_id=trace_id)
            return state

        candidates = await self.store.search(state.prompt, k=self.config.cache_top_k, tenant_id=ctx.tenant_id)
        if not candidates:
            logger.info("Query cache empty for prompt", trace_id=trace_id)
            return state

        response = await self.llm.generate(build_cache_prompt(state.prompt, candidates), abort=ctx.abort)
        verdict = parse_cache_verdict(response, len(candidates))

        if verdict is None:
            logger.info(
                "Unusable cache verdict",
                response=response[:100],
                candidate_count=len(candidates),
                trace_id=trace_id,
            )
            return state
        if verdict.category == CacheCategory.NOT_RELEVANT or verdict.index is None:
            logger.info("No relevant cached query", trace_id=trace_id)
            return state

        candidate = candidates[verdict.index]

        if verdict.category == CacheCategory.AS_IS:
            try:
                missing = await self.datasets.check_permissions(candidate.dataset_id, ctx.permissions)
            except NotFoundError:
                logger.warning("Cached dataset no longer exists", dataset_id=candidate.dataset_id, trace_id=trace_id)
                return state
            if missing:
                logger.info(
                    "Cached query found but caller lacks permissions, generating a new one",
                    missing_count=len(missing),
                    trace_id=trace_id,
                )
                return state

            logger.info("Cache hit", dataset_id=candidate.dataset_id, trace_id=trace_id)
            return state.evolve(
                from_cache=True,
                dataset_id=candidate.dataset_id,
                reply_to_user=f"I found this dataset in the cache - {candidate.text}",
            )

        logger.info("Similar cached query used as example", dataset_id=candidate.dataset_id, trace_id=trace_id)
        return state.evolve(sample_sql=candidate.query, sample_sql_prompt=candidate.text)
