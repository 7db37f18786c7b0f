"""Common base for workflow stages."""

from abc import ABC, abstractmethod
from typing import Iterable, List

from querygen.domain.base_enums import StageName
from querygen.domain.pipeline import PipelineState, RequestContext


class Stage(ABC):
    """
    One step of the query generation workflow.

    A stage receives the current state and returns a new one; it never
    mutates its input. Stage failures the workflow can route on are
    reported through `status`; exceptions are for precondition violations
    and infrastructure errors.
    """

    name: StageName

    @abstractmethod
    async def __call__(self, state: PipelineState, ctx: RequestContext) -> PipelineState:
        ...


def merge_rules(*groups: Iterable[str]) -> List[str]:
    """Concatenate rule lists, skipping blanks and repeats."""
    rules: List[str] = []
    for group in groups:
        for rule in group:
            rule = rule.strip()
            if rule and rule not in rules:
                rules.append(rule)
    return rules
