"""Data models for work items and configuration."""

from pmflow.models.config import AzureDevOpsConfig, GitHubConfig, LocalStoreConfig, Settings
from pmflow.models.work_item import (
    BlockedItem,
    ReadinessReport,
    ReadinessResult,
    ScoredCandidate,
    WorkItem,
    WorkItemStatus,
    WorkItemType,
    canonical_id,
    canonical_status,
    parse_dependencies,
)

__all__ = [
    "AzureDevOpsConfig",
    "BlockedItem",
    "GitHubConfig",
    "LocalStoreConfig",
    "ReadinessReport",
    "ReadinessResult",
    "ScoredCandidate",
    "Settings",
    "WorkItem",
    "WorkItemStatus",
    "WorkItemType",
    "canonical_id",
    "canonical_status",
    "parse_dependencies",
]
