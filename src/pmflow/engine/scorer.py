"""Heuristic priority scoring for ready work items.

Lower scores rank higher. The priority tier dominates: the bonuses plus
the full effort span add up to less than one tier, so no combination of
them can move an item past one with a more urgent priority.
"""

from typing import Iterable, List, NamedTuple, Optional

from pmflow.models.work_item import ScoredCandidate, WorkItem, WorkItemType

W_PRIORITY = 100
B_BUG = 30
B_QUICK = 20
B_TAG = 25
EFFORT_CAP_HOURS = 40.0
EFFORT_WEIGHT = 0.5
QUICK_WIN_HOURS = 2.0
LOWEST_PRIORITY = 4
CRITICAL_TAGS = ("critical", "urgent")


class ScoreFactor(NamedTuple):
    """One additive contribution to an item's score."""

    name: str
    value: float


def effective_priority(item: WorkItem) -> int:
    """Priority tier, with unset priority treated as the least urgent tier."""
    return item.priority if item.priority is not None else LOWEST_PRIORITY


def is_bug(item: WorkItem) -> bool:
    return item.type == WorkItemType.BUG


def is_quick_win(item: WorkItem) -> bool:
    return item.remaining_work is not None and item.remaining_work <= QUICK_WIN_HOURS


def has_critical_tag(item: WorkItem) -> bool:
    return item.has_tag(*CRITICAL_TAGS)


def effort_penalty(remaining_work: Optional[float]) -> float:
    if remaining_work is None:
        return 0.0
    return min(remaining_work, EFFORT_CAP_HOURS) * EFFORT_WEIGHT


class PriorityScorer:
    """Score work items for recommendation.

    Example:
        >>> scorer = PriorityScorer()
        >>> scorer.score(WorkItem(id=1, type="Bug", priority=1, remaining_work=1))
        50.5
    """

    def explain(self, item: WorkItem) -> List[ScoreFactor]:
        """Itemize the contributions that make up an item's score.

        Args:
            item: Work item to score

        Returns:
            Score factors in evaluation order; their values sum to the score
        """
        factors = [ScoreFactor("priority", float(effective_priority(item) * W_PRIORITY))]
        if is_bug(item):
            factors.append(ScoreFactor("bug", float(-B_BUG)))
        if is_quick_win(item):
            factors.append(ScoreFactor("quick_win", float(-B_QUICK)))
        if has_critical_tag(item):
            factors.append(ScoreFactor("critical_tag", float(-B_TAG)))
        effort = effort_penalty(item.remaining_work)
        if effort:
            factors.append(ScoreFactor("effort", effort))
        return factors

    def score(self, item: WorkItem) -> float:
        return sum(factor.value for factor in self.explain(item))

    def score_and_rank(self, items: Iterable[WorkItem]) -> List[ScoredCandidate]:
        """Score items and sort ascending, keeping snapshot order on ties."""
        scored = [ScoredCandidate(work_item=item, score=self.score(item)) for item in items]
        return sorted(scored, key=lambda candidate: candidate.score)


def score_and_rank(items: Iterable[WorkItem]) -> List[ScoredCandidate]:
    """Score and rank a set of (typically ready) work items."""
    return PriorityScorer().score_and_rank(items)
