"""GitHub issues work item source."""

import re
from typing import Any, Dict, List, Optional

import httpx
import structlog

from pmflow.models.config import GitHubConfig
from pmflow.models.work_item import ItemId, WorkItem, WorkItemStatus, WorkItemType
from pmflow.sources.base import CandidateFilter, WorkItemSource, request_json

logger = structlog.get_logger(__name__)

PER_PAGE = 100
MAX_PAGES = 10

IN_PROGRESS_LABELS = ("in-progress", "in progress", "wip")
TYPE_LABELS = {
    "bug": WorkItemType.BUG,
    "epic": WorkItemType.EPIC,
    "feature": WorkItemType.FEATURE,
    "story": WorkItemType.USER_STORY,
    "user-story": WorkItemType.USER_STORY,
    "task": WorkItemType.TASK,
}

_PRIORITY_LABEL = re.compile(r"^(?:priority[:/ ]\s*p?|p)(\d+)$", re.IGNORECASE)
_ESTIMATE_LABEL = re.compile(r"^(?:estimate|effort)[:/ ]\s*(\d+(?:\.\d+)?)\s*h?$", re.IGNORECASE)
_DEPENDS_ON = re.compile(r"^\s*(?:[-*]\s*)?(?:depends on|blocked by)\s*:?\s*(.+)$", re.IGNORECASE | re.MULTILINE)
_ISSUE_REF = re.compile(r"#(\d+)")


def body_dependencies(body: Optional[str]) -> List[int]:
    """Issue numbers referenced by ``depends on #N`` lines in a body."""
    if not body:
        return []
    found: List[int] = []
    for line in _DEPENDS_ON.findall(body):
        for number in _ISSUE_REF.findall(line):
            if int(number) not in found:
                found.append(int(number))
    return found


def normalize_issue(payload: Dict[str, Any]) -> WorkItem:
    """Convert a REST issue payload into a WorkItem."""
    labels = [
        (label.get("name") if isinstance(label, dict) else str(label)) or ""
        for label in payload.get("labels") or []
    ]
    lowered = [label.lower() for label in labels]

    if payload.get("state") == "closed":
        status = WorkItemStatus.CLOSED
    elif any(label in IN_PROGRESS_LABELS for label in lowered):
        status = WorkItemStatus.IN_PROGRESS
    else:
        status = WorkItemStatus.OPEN

    item_type = WorkItemType.TASK
    priority = None
    remaining = None
    for label in lowered:
        if label in TYPE_LABELS and item_type == WorkItemType.TASK:
            item_type = TYPE_LABELS[label]
        match = _PRIORITY_LABEL.match(label)
        if match and priority is None:
            priority = int(match.group(1))
        match = _ESTIMATE_LABEL.match(label)
        if match and remaining is None:
            remaining = float(match.group(1))

    assignee = payload.get("assignee") or {}
    return WorkItem(
        id=payload["number"],
        title=payload.get("title") or "",
        type=item_type,
        status=status,
        raw_status=payload.get("state"),
        dependencies=body_dependencies(payload.get("body")),
        priority=priority,
        remaining_work=remaining,
        tags=labels,
        assignee=assignee.get("login") if isinstance(assignee, dict) else None,
        url=payload.get("html_url"),
        description=payload.get("body"),
        created_at=payload.get("created_at"),
        completed_at=payload.get("closed_at"),
        updated_at=payload.get("updated_at"),
        source="github",
    )


class GitHubSource(WorkItemSource):
    """Work items from a repository's issues.

    Pull requests share the issues endpoint and are skipped.
    """

    name = "github"
    supports_dependency_checks = True

    def __init__(self, config: GitHubConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize source.

        Args:
            config: Owner, repository and optional token
            client: Pre-built HTTP client, mainly for tests

        Raises:
            ConfigurationError: If owner or repository is missing
        """
        config.validate_credentials()
        self.config = config
        headers = {"Accept": "application/vnd.github+json"}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        if client is None:
            client = httpx.AsyncClient(timeout=config.timeout, headers=headers)
        else:
            client.headers.update(headers)
        self._client = client

    def api_url(self, path: str) -> str:
        base = self.config.api_url.rstrip("/")
        return f"{base}/repos/{self.config.owner}/{self.config.repo}/{path}"

    async def list_issues(self, state: str = "all") -> List[Dict[str, Any]]:
        """Page through the issues endpoint."""
        issues: List[Dict[str, Any]] = []
        for page in range(1, MAX_PAGES + 1):
            batch = await request_json(
                self._client,
                "GET",
                self.api_url("issues"),
                params={"state": state, "per_page": PER_PAGE, "page": page},
            )
            issues.extend(issue for issue in batch if "pull_request" not in issue)
            if len(batch) < PER_PAGE:
                break
        return issues

    async def list_candidates(self, filter: Optional[CandidateFilter] = None) -> List[WorkItem]:
        filter = filter or CandidateFilter()
        state = "all" if filter.include_closed else "open"
        items = [normalize_issue(issue) for issue in await self.list_issues(state)]
        logger.debug("github_snapshot_loaded", total=len(items))
        return [item for item in items if filter.matches(item)]

    async def check_dependency_links(self, item_id: ItemId) -> bool:
        issue = await request_json(self._client, "GET", self.api_url(f"issues/{item_id}"))
        return bool(body_dependencies(issue.get("body")))

    async def aclose(self) -> None:
        await self._client.aclose()
