"""Work item sources: the local markdown store and remote trackers."""

from pmflow.sources.azure import AzureDevOpsSource
from pmflow.sources.base import CandidateFilter, DependencyCheck, WorkItemSource
from pmflow.sources.cache import WorkItemCache
from pmflow.sources.github import GitHubSource
from pmflow.sources.local import LocalMarkdownSource

__all__ = [
    "AzureDevOpsSource",
    "CandidateFilter",
    "DependencyCheck",
    "GitHubSource",
    "LocalMarkdownSource",
    "WorkItemCache",
    "WorkItemSource",
]
