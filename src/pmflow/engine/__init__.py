"""Readiness resolution, scoring and recommendation over work item snapshots."""

from pmflow.engine.digest import StatusDigestBuilder
from pmflow.engine.recommender import (
    Recommendation,
    RecommendationEngine,
    format_task_reasoning,
    recommend_next,
)
from pmflow.engine.resolver import DependencyGraphResolver, resolve_readiness
from pmflow.engine.scorer import PriorityScorer, score_and_rank

__all__ = [
    "DependencyGraphResolver",
    "PriorityScorer",
    "Recommendation",
    "RecommendationEngine",
    "StatusDigestBuilder",
    "format_task_reasoning",
    "recommend_next",
    "resolve_readiness",
    "score_and_rank",
]
