"""Best-next-task recommendation."""

from typing import TYPE_CHECKING, List, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from pmflow.engine.resolver import DependencyGraphResolver
from pmflow.engine.scorer import PriorityScorer, has_critical_tag, is_bug, is_quick_win
from pmflow.models.work_item import ItemId, ScoredCandidate, WorkItem, canonical_id

if TYPE_CHECKING:
    from pmflow.sources.base import WorkItemSource

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ALTERNATIVES = 3
FALLBACK_REASON = "Next ready item by priority order"


class Recommendation(BaseModel):
    """The selected next task plus ranked runners-up."""

    best: Optional[WorkItem] = Field(None, description="Recommended item, None when nothing is ready")
    best_score: Optional[float] = Field(None, description="Score of the recommended item")
    alternatives: List[ScoredCandidate] = Field(
        default_factory=list, description="Next-best ready items, best first"
    )
    reasoning: List[str] = Field(default_factory=list, description="Why the best item was chosen")
    skipped: List[ItemId] = Field(
        default_factory=list, description="Candidates rejected by a remote dependency check"
    )

    @property
    def is_empty(self) -> bool:
        return self.best is None


def format_task_reasoning(item: WorkItem) -> List[str]:
    """Describe why an item ranks where it does.

    Uses the same predicates as the scorer so the text never disagrees
    with the ranking.
    """
    reasons = []
    if is_bug(item):
        reasons.append("Bug - needs immediate attention")
    if item.priority == 1:
        reasons.append("Highest priority (P1)")
    if is_quick_win(item):
        reasons.append(f"Quick win ({item.remaining_work:g}h remaining)")
    if has_critical_tag(item):
        reasons.append("Tagged as critical")
    if not reasons:
        reasons.append(FALLBACK_REASON)
    return reasons


class RecommendationEngine:
    """Pick the single best ready item from a snapshot.

    Example:
        >>> engine = RecommendationEngine()
        >>> rec = engine.recommend_next(items)
        >>> rec.best.title if rec.best else "No available tasks found"
        'Fix login crash'
    """

    def __init__(
        self,
        resolver: Optional[DependencyGraphResolver] = None,
        scorer: Optional[PriorityScorer] = None,
        max_alternatives: int = DEFAULT_MAX_ALTERNATIVES,
    ) -> None:
        """Initialize engine.

        Args:
            resolver: Readiness resolver (status-aware by default)
            scorer: Priority scorer
            max_alternatives: How many runners-up to report
        """
        self.resolver = resolver or DependencyGraphResolver()
        self.scorer = scorer or PriorityScorer()
        self.max_alternatives = max_alternatives

    def ranked_ready(self, items: Sequence[WorkItem]) -> List[ScoredCandidate]:
        """Ready items scored and sorted best first."""
        ready = self.resolver.resolve_readiness(items).ready
        return self.scorer.score_and_rank(ready)

    def find_best_task(self, items: Sequence[WorkItem]) -> Optional[WorkItem]:
        ranked = self.ranked_ready(items)
        return ranked[0].work_item if ranked else None

    def format_alternatives(
        self, items: Sequence[WorkItem], exclude_id: Optional[ItemId]
    ) -> List[ScoredCandidate]:
        """Rank ready items other than ``exclude_id``, truncated.

        Args:
            items: Snapshot of work items
            exclude_id: Id of the selected best item, if any

        Returns:
            Up to ``max_alternatives`` scored candidates, best first
        """
        excluded = canonical_id(exclude_id) if exclude_id is not None else None
        ranked = [c for c in self.ranked_ready(items) if c.work_item.key != excluded]
        return ranked[: self.max_alternatives]

    def _runners_up(
        self, ranked: Sequence[ScoredCandidate], best: WorkItem
    ) -> List[ScoredCandidate]:
        return [c for c in ranked if c.work_item.key != best.key][: self.max_alternatives]

    def recommend_next(self, items: Sequence[WorkItem]) -> Recommendation:
        """Select the best ready item and its alternatives.

        Returns:
            Recommendation with ``best`` None when nothing is ready
        """
        ranked = self.ranked_ready(items)
        if not ranked:
            logger.info("no_ready_items", total=len(items))
            return Recommendation()

        top = ranked[0]
        return Recommendation(
            best=top.work_item,
            best_score=top.score,
            alternatives=self._runners_up(ranked[1:], top.work_item),
            reasoning=format_task_reasoning(top.work_item),
        )

    async def recommend_next_checked(
        self, items: Sequence[WorkItem], source: "WorkItemSource"
    ) -> Recommendation:
        """Recommend the next item, confirming it with the source's link check.

        Candidates are tried in rank order. A candidate with no dependencies
        in the snapshot is checked with the source, and skipped if the source
        reports dependency links. A candidate whose declared dependencies are
        all resolved is not checked again. A check that fails leaves the
        candidate eligible.

        Args:
            items: Snapshot of work items
            source: Source used for dependency-link checks

        Returns:
            Recommendation; ``skipped`` lists the candidates passed over
        """
        if not source.supports_dependency_checks:
            return self.recommend_next(items)

        ranked = self.ranked_ready(items)
        skipped: List[ItemId] = []
        for index, candidate in enumerate(ranked):
            item = candidate.work_item
            # declared dependencies were already resolved against the snapshot
            if not item.dependencies:
                check = await source.safe_check_dependency_links(item.id)
                if check.has_dependencies:
                    logger.info("candidate_has_dependency_links", id=item.id)
                    skipped.append(item.id)
                    continue

            return Recommendation(
                best=item,
                best_score=candidate.score,
                alternatives=self._runners_up(ranked[index + 1 :], item),
                reasoning=format_task_reasoning(item),
                skipped=skipped,
            )

        return Recommendation(skipped=skipped)

    def blocked_tasks(self, items: Sequence[WorkItem]) -> List[WorkItem]:
        """Items tagged as blocked, regardless of their score."""
        return self.resolver.explicitly_blocked(items)


def recommend_next(
    items: Sequence[WorkItem], max_alternatives: int = DEFAULT_MAX_ALTERNATIVES
) -> Recommendation:
    """Recommend the best next item from a snapshot."""
    return RecommendationEngine(max_alternatives=max_alternatives).recommend_next(items)
