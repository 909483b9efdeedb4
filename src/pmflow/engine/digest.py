"""Status digests built on top of the readiness engine.

These are the data behind the ``standup``, ``status``, ``blocked``,
``in-progress`` and ``daily`` commands. Rendering lives in the CLI.
"""

from datetime import date, datetime, timedelta, timezone
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from pmflow.engine.recommender import Recommendation, RecommendationEngine
from pmflow.engine.resolver import DependencyGraphResolver
from pmflow.engine.scorer import effective_priority
from pmflow.models.work_item import (
    ReadinessReport,
    ScoredCandidate,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
)

if TYPE_CHECKING:
    from pmflow.sources.base import WorkItemSource

STALE_AFTER_DAYS = 3
AT_RISK_BLOCKED_RATIO = 0.3


class ActiveItem(BaseModel):
    """An in-progress item with staleness information."""

    item: WorkItem
    days_active: Optional[int] = Field(None, description="Days since work started")
    stale: bool = Field(False, description="Started more than STALE_AFTER_DAYS ago")


class Blocker(BaseModel):
    """A blocked item with a human-readable reason."""

    item: WorkItem
    reason: str
    kind: str = Field(..., description="'dependency' or 'tag'")
    days_blocked: Optional[int] = None


class BlockedGroups(BaseModel):
    """Tag-blocked items grouped by priority."""

    critical: List[WorkItem] = Field(default_factory=list)
    high: List[WorkItem] = Field(default_factory=list)
    normal: List[WorkItem] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.critical) + len(self.high) + len(self.normal)


class TaskPoolAnalysis(BaseModel):
    """Aggregate numbers over a pool of candidate items."""

    total_tasks: int = 0
    total_hours: float = 0.0
    p1_count: int = 0
    p2_count: int = 0
    bug_count: int = 0


class ProjectStatus(BaseModel):
    """Project-wide progress overview."""

    counts: Dict[str, int] = Field(default_factory=dict)
    total: int = 0
    ready: int = 0
    blocked: int = 0
    completion_percent: float = 0.0
    health: str = "ON_TRACK"
    recommendations: List[str] = Field(default_factory=list)


class StandupReport(BaseModel):
    """What was done, what is in flight, what is stuck and what is next."""

    report_date: date
    completed: List[WorkItem] = Field(default_factory=list)
    in_progress: List[ActiveItem] = Field(default_factory=list)
    blockers: List[Blocker] = Field(default_factory=list)
    next_tasks: List[ScoredCandidate] = Field(default_factory=list)
    stats: Dict[str, int] = Field(default_factory=dict)


class DailyDigest(BaseModel):
    """The remote daily workflow: active work, blockers, next task."""

    report_date: date
    in_progress: List[ActiveItem] = Field(default_factory=list)
    blocked: List[WorkItem] = Field(default_factory=list)
    recommendation: Recommendation = Field(default_factory=Recommendation)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _days_between(earlier: Optional[datetime], now: datetime) -> Optional[int]:
    start = _aware(earlier)
    if start is None:
        return None
    return max((_aware(now) - start).days, 0)


class StatusDigestBuilder:
    """Build status digests from a work item snapshot.

    Args:
        engine: Recommendation engine, carrying the resolver and scorer
        stale_after_days: Age at which in-progress work is flagged stale
    """

    def __init__(
        self,
        engine: Optional[RecommendationEngine] = None,
        stale_after_days: int = STALE_AFTER_DAYS,
    ) -> None:
        self.engine = engine or RecommendationEngine()
        self.stale_after_days = stale_after_days

    @property
    def resolver(self) -> DependencyGraphResolver:
        return self.engine.resolver

    def readiness(self, items: Sequence[WorkItem]) -> ReadinessReport:
        return self.resolver.resolve_readiness(items)

    def next_tasks(self, items: Sequence[WorkItem], limit: int = 5) -> List[ScoredCandidate]:
        return self.engine.ranked_ready(items)[:limit]

    def in_progress(self, items: Sequence[WorkItem], now: datetime) -> List[ActiveItem]:
        """In-progress items, oldest first where a start time is known."""
        active = []
        for item in items:
            if item.status != WorkItemStatus.IN_PROGRESS:
                continue
            days = _days_between(item.started_at or item.updated_at, now)
            active.append(
                ActiveItem(
                    item=item,
                    days_active=days,
                    stale=days is not None and days > self.stale_after_days,
                )
            )
        return sorted(active, key=lambda a: -(a.days_active or 0))

    def blockers(self, items: Sequence[WorkItem], now: datetime) -> List[Blocker]:
        """Dependency-blocked items followed by tag-blocked ones.

        An item both tagged and dependency-blocked is reported once, with
        the dependency reason.
        """
        found: List[Blocker] = []
        seen = set()
        for blocked in self.readiness(items).blocked:
            parts = []
            if blocked.unresolved:
                parts.append("waiting on " + ", ".join(f"#{d}" for d in blocked.unresolved))
            if blocked.missing:
                parts.append("unknown " + ", ".join(f"#{d}" for d in blocked.missing))
            found.append(
                Blocker(
                    item=blocked.item,
                    reason="; ".join(parts),
                    kind="dependency",
                    days_blocked=_days_between(blocked.item.updated_at, now),
                )
            )
            seen.add(blocked.item.key)

        for item in self.resolver.explicitly_blocked(items):
            if item.key in seen:
                continue
            found.append(
                Blocker(
                    item=item,
                    reason="tagged as blocked",
                    kind="tag",
                    days_blocked=_days_between(item.updated_at, now),
                )
            )
        return found

    def group_blocked_by_priority(self, items: Sequence[WorkItem]) -> BlockedGroups:
        groups = BlockedGroups()
        for item in self.resolver.explicitly_blocked(items):
            if item.priority == 1:
                groups.critical.append(item)
            elif item.priority == 2:
                groups.high.append(item)
            else:
                groups.normal.append(item)
        return groups

    def analyze_task_pool(self, items: Sequence[WorkItem]) -> TaskPoolAnalysis:
        analysis = TaskPoolAnalysis(total_tasks=len(items))
        for item in items:
            analysis.total_hours += item.remaining_work or 0.0
            priority = effective_priority(item)
            if priority == 1:
                analysis.p1_count += 1
            elif priority == 2:
                analysis.p2_count += 1
            if item.type == WorkItemType.BUG:
                analysis.bug_count += 1
        return analysis

    def project_status(self, items: Sequence[WorkItem]) -> ProjectStatus:
        """Counts per status, completion and a coarse health verdict.

        The project is AT_RISK when more than 30% of the open work is
        blocked, or when nothing is ready while open work remains.
        """
        counts = {status.value: 0 for status in WorkItemStatus}
        for item in items:
            counts[item.status.value] += 1

        report = self.readiness(items)
        total = len(items)
        closed = counts[WorkItemStatus.CLOSED.value]
        status = ProjectStatus(
            counts=counts,
            total=total,
            ready=len(report.ready),
            blocked=len(report.blocked),
            completion_percent=round(closed / total * 100, 1) if total else 0.0,
        )

        open_count = counts[WorkItemStatus.OPEN.value]
        if open_count and (
            status.blocked / open_count > AT_RISK_BLOCKED_RATIO or not status.ready
        ):
            status.health = "AT_RISK"

        if status.blocked:
            status.recommendations.append(
                f"Resolve dependencies for {status.blocked} blocked task(s)"
            )
        if status.ready and not counts[WorkItemStatus.IN_PROGRESS.value]:
            status.recommendations.append("Start a ready task: run 'pmflow next'")
        if total and closed == total:
            status.recommendations.append("All tasks closed: consider closing the epic")
        return status

    def standup(self, items: Sequence[WorkItem], now: datetime, days: int = 1) -> StandupReport:
        """Standup report covering the last ``days`` days."""
        since = _aware(now) - timedelta(days=days)
        completed = [
            item
            for item in items
            if item.status == WorkItemStatus.CLOSED
            and item.completed_at is not None
            and _aware(item.completed_at) >= since
        ]
        active = self.in_progress(items, now)
        blockers = self.blockers(items, now)
        next_up = self.next_tasks(items, limit=3)
        return StandupReport(
            report_date=now.date(),
            completed=completed,
            in_progress=active,
            blockers=blockers,
            next_tasks=next_up,
            stats={
                "total": len(items),
                "completed": len(completed),
                "in_progress": len(active),
                "blocked": len(blockers),
                "ready": len(self.readiness(items).ready),
            },
        )

    def daily(
        self,
        items: Sequence[WorkItem],
        now: datetime,
        recommendation: Optional[Recommendation] = None,
    ) -> DailyDigest:
        if recommendation is None:
            recommendation = self.engine.recommend_next(items)
        return DailyDigest(
            report_date=now.date(),
            in_progress=self.in_progress(items, now),
            blocked=self.resolver.explicitly_blocked(items),
            recommendation=recommendation,
        )

    async def daily_checked(
        self, items: Sequence[WorkItem], now: datetime, source: "WorkItemSource"
    ) -> DailyDigest:
        """Daily digest whose next task passed the source's dependency-link check.

        Picks the same task as ``azure next-task`` for the same snapshot.
        """
        recommendation = await self.engine.recommend_next_checked(items, source)
        return self.daily(items, now, recommendation=recommendation)
