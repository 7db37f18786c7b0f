"""Semantic query cache lookup."""

from querygen.domain.base_enums import StageName
from querygen.domain.pipeline import PipelineState, RequestContext
from querygen.services.query_cache import QueryCache
from querygen.workflow.stages.base import Stage


class CheckCacheStage(Stage):
    """Consults the semantic query cache; see QueryCache.check()."""

    name = StageName.CHECK_CACHE

    def __init__(self, query_cache: QueryCache):
        self.query_cache = query_cache

    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        return await self.query_cache.check(state, ctx)
