"""Dependency graph resolution over a work item snapshot.

Partitions the open items of a snapshot into those that can start now and
those waiting on dependencies. The pass is pure: it reads a snapshot and
returns new records, never touching the items themselves.
"""

from typing import Dict, Iterable, List, Sequence

import structlog

from pmflow.models.work_item import (
    BlockedItem,
    ReadinessReport,
    ReadinessResult,
    WorkItem,
    WorkItemStatus,
    canonical_id,
)

logger = structlog.get_logger(__name__)

BLOCKED_TAG = "blocked"


class DependencyGraphResolver:
    """Decide which open work items have all of their dependencies met.

    Two resolution modes are supported. In the default status-aware mode a
    dependency resolves only when the referenced item is present in the
    snapshot and closed. In existence-only mode presence alone resolves it.
    Either way, a dependency on an id that is not in the snapshot blocks.

    Example:
        >>> resolver = DependencyGraphResolver()
        >>> report = resolver.resolve_readiness(items)
        >>> [item.id for item in report.ready]
        [2]
    """

    def __init__(self, check_status: bool = True) -> None:
        """Initialize resolver.

        Args:
            check_status: Require dependencies to be closed, not just present
        """
        self.check_status = check_status

    @staticmethod
    def index(items: Iterable[WorkItem]) -> Dict[str, WorkItem]:
        """Map canonical id to item, keeping the first occurrence of an id."""
        by_key: Dict[str, WorkItem] = {}
        for item in items:
            key = item.key
            if key in by_key:
                logger.warning("duplicate_work_item_id", id=key)
                continue
            by_key[key] = item
        return by_key

    def _classify(self, item: WorkItem, by_key: Dict[str, WorkItem]) -> BlockedItem:
        missing = []
        unresolved = []
        reasons = []
        for dep in item.dependencies:
            target = by_key.get(canonical_id(dep))
            if target is None:
                missing.append(dep)
                reasons.append(dep)
            elif self.check_status and target.status != WorkItemStatus.CLOSED:
                unresolved.append(dep)
                reasons.append(dep)
        return BlockedItem(item=item, reasons=reasons, missing=missing, unresolved=unresolved)

    def resolve(self, items: Sequence[WorkItem]) -> List[ReadinessResult]:
        """Compute a readiness verdict for every open item.

        Args:
            items: Snapshot of work items

        Returns:
            One ReadinessResult per open item, in snapshot order. A repeated id is
            resolved once, using its first occurrence
        """
        by_key = self.index(items)
        results = []
        for item in by_key.values():
            if item.status != WorkItemStatus.OPEN:
                continue
            verdict = self._classify(item, by_key)
            results.append(
                ReadinessResult(id=item.id, ready=not verdict.reasons, blocked_by=verdict.reasons)
            )
        return results

    def resolve_readiness(self, items: Sequence[WorkItem]) -> ReadinessReport:
        """Partition open items into ready and blocked.

        Items that are in progress or closed appear in neither list. A repeated
        id is reported once, using its first occurrence.

        Args:
            items: Snapshot of work items

        Returns:
            ReadinessReport with ready items and blocked items with reasons
        """
        by_key = self.index(items)
        report = ReadinessReport()
        for item in by_key.values():
            if item.status != WorkItemStatus.OPEN:
                continue
            verdict = self._classify(item, by_key)
            if verdict.reasons:
                report.blocked.append(verdict)
            else:
                report.ready.append(item)

        logger.debug(
            "readiness_resolved",
            total=len(items),
            ready=len(report.ready),
            blocked=len(report.blocked),
            check_status=self.check_status,
        )
        return report

    def explicitly_blocked(self, items: Iterable[WorkItem]) -> List[WorkItem]:
        """Items tagged ``blocked`` that are not closed.

        This is independent of the dependency graph: an item can be tagged
        blocked with every dependency met, and vice versa.
        """
        return [
            item
            for item in items
            if item.has_tag(BLOCKED_TAG) and item.status != WorkItemStatus.CLOSED
        ]

    def blocking_counts(self, items: Sequence[WorkItem]) -> Dict[str, int]:
        """Count how many open items each unresolved dependency is holding up.

        Returns:
            Mapping of canonical dependency id to number of blocked items,
            most blocking first
        """
        counts: Dict[str, int] = {}
        for blocked in self.resolve_readiness(items).blocked:
            for dep in blocked.reasons:
                key = canonical_id(dep)
                counts[key] = counts.get(key, 0) + 1
        return dict(sorted(counts.items(), key=lambda kv: -kv[1]))


def resolve_readiness(items: Sequence[WorkItem], check_status: bool = True) -> ReadinessReport:
    """Partition a snapshot into ready and blocked open items."""
    return DependencyGraphResolver(check_status=check_status).resolve_readiness(items)
