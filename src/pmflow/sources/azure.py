"""Azure DevOps work item source.

Runs WIQL queries against the work item tracking REST API, fetches item
details with their relations and normalizes them into work items.
"""

import asyncio
import base64
from datetime import date
from typing import Any, Dict, List, Optional

import httpx
import structlog

from pmflow.models.config import AzureDevOpsConfig
from pmflow.models.work_item import ItemId, WorkItem
from pmflow.sources.base import CandidateFilter, WorkItemSource, request_json
from pmflow.sources.cache import WorkItemCache

logger = structlog.get_logger(__name__)

AVAILABLE_STATES = ("New", "To Do", "Ready")
CANDIDATE_TYPES = ("Task", "Bug")
TERMINAL_STATES = ("Closed", "Done", "Removed")
ACTIVE_STATES = ("Active", "In Progress", "Doing", "Committed")
PREDECESSOR_LINK = "System.LinkTypes.Dependency-Reverse"

_SELECT = "SELECT [System.Id], [System.Title], [System.State] FROM WorkItems"


def _quote_list(values) -> str:
    return ", ".join(f"'{v}'" for v in values)


def _escape(value: str) -> str:
    return value.replace("'", "''")


def build_available_tasks_query(
    user_filter: Optional[str] = None, sprint_path: Optional[str] = None
) -> str:
    """WIQL for open tasks and bugs, most urgent first.

    Args:
        user_filter: ``me``/``@me`` for the current user or unassigned items,
            or a user name
        sprint_path: Restrict to one iteration path

    Returns:
        WIQL query text
    """
    clauses = [
        "[System.TeamProject] = @project",
        f"[System.WorkItemType] IN ({_quote_list(CANDIDATE_TYPES)})",
        f"[System.State] IN ({_quote_list(AVAILABLE_STATES)})",
    ]
    if user_filter:
        if user_filter.lower() in ("me", "@me"):
            clauses.append("([System.AssignedTo] = @Me OR [System.AssignedTo] = '')")
        else:
            clauses.append(
                f"([System.AssignedTo] = '{_escape(user_filter)}' OR [System.AssignedTo] = '')"
            )
    if sprint_path:
        clauses.append(f"[System.IterationPath] = '{_escape(sprint_path)}'")

    return (
        f"{_SELECT} WHERE "
        + " AND ".join(clauses)
        + " ORDER BY [Microsoft.VSTS.Common.Priority] ASC"
    )


def build_blocked_items_query() -> str:
    """WIQL for items tagged ``blocked`` that are still live."""
    return (
        f"{_SELECT} WHERE [System.TeamProject] = @project"
        " AND [System.Tags] CONTAINS 'blocked'"
        f" AND [System.State] NOT IN ({_quote_list(TERMINAL_STATES)})"
        " ORDER BY [Microsoft.VSTS.Common.Priority] ASC"
    )


def build_in_progress_query(user_filter: Optional[str] = None) -> str:
    clause = ""
    if user_filter and user_filter.lower() in ("me", "@me"):
        clause = " AND [System.AssignedTo] = @Me"
    return (
        f"{_SELECT} WHERE [System.TeamProject] = @project"
        f" AND [System.State] IN ({_quote_list(ACTIVE_STATES)}){clause}"
        " ORDER BY [System.ChangedDate] DESC"
    )


def build_completed_since_query(since: date) -> str:
    return (
        f"{_SELECT} WHERE [System.TeamProject] = @project"
        f" AND [System.State] IN ({_quote_list(TERMINAL_STATES[:2])})"
        f" AND [Microsoft.VSTS.Common.ClosedDate] >= '{since.isoformat()}'"
        " ORDER BY [Microsoft.VSTS.Common.ClosedDate] DESC"
    )


def build_dependency_links_query(item_id: ItemId) -> str:
    """WIQL link query for an item's predecessors."""
    return (
        "SELECT [System.Id] FROM WorkItemLinks"
        f" WHERE [Source].[System.Id] = {int(item_id)}"
        f" AND [System.Links.LinkType] = '{PREDECESSOR_LINK}'"
        " MODE (MustContain)"
    )


def _related_id(url: str) -> Optional[int]:
    tail = url.rstrip("/").rsplit("/", 1)[-1]
    return int(tail) if tail.isdigit() else None


def normalize_work_item(payload: Dict[str, Any], item_url: Optional[str] = None) -> WorkItem:
    """Convert a work item REST payload into a WorkItem.

    Args:
        payload: Body of ``GET _apis/wit/workitems/{id}``
        item_url: Browser link for the item

    Returns:
        Normalized work item
    """
    fields = payload.get("fields") or {}
    assigned = fields.get("System.AssignedTo")
    if isinstance(assigned, dict):
        assigned = assigned.get("displayName") or assigned.get("uniqueName")

    dependencies = []
    for relation in payload.get("relations") or []:
        if relation.get("rel") == PREDECESSOR_LINK:
            related = _related_id(relation.get("url", ""))
            if related is not None:
                dependencies.append(related)

    state = fields.get("System.State")
    return WorkItem(
        id=payload.get("id", fields.get("System.Id")),
        title=fields.get("System.Title") or "",
        type=fields.get("System.WorkItemType"),
        status=state,
        raw_status=state,
        dependencies=dependencies,
        priority=fields.get("Microsoft.VSTS.Common.Priority"),
        remaining_work=fields.get("Microsoft.VSTS.Scheduling.RemainingWork"),
        tags=fields.get("System.Tags"),
        assignee=assigned,
        iteration_path=fields.get("System.IterationPath"),
        description=fields.get("System.Description"),
        created_at=fields.get("System.CreatedDate"),
        completed_at=fields.get("Microsoft.VSTS.Common.ClosedDate"),
        started_at=fields.get("Microsoft.VSTS.Common.ActivatedDate"),
        updated_at=fields.get("System.ChangedDate"),
        url=item_url,
        source="azure",
    )


class AzureDevOpsSource(WorkItemSource):
    """Work items from an Azure DevOps project.

    Example:
        >>> source = AzureDevOpsSource(settings.azure_devops())
        >>> items = await source.list_candidates(CandidateFilter(assigned_to="me"))
    """

    name = "azure"
    supports_dependency_checks = True

    def __init__(
        self,
        config: AzureDevOpsConfig,
        cache: Optional[WorkItemCache] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize source.

        Args:
            config: Organization, project and token
            cache: Optional cache for item detail payloads
            client: Pre-built HTTP client, mainly for tests

        Raises:
            ConfigurationError: If organization, project or token is missing
        """
        config.validate_credentials()
        self.config = config
        self.cache = cache
        token = base64.b64encode(f":{config.pat}".encode()).decode()
        headers = {"Authorization": f"Basic {token}", "Content-Type": "application/json"}
        if client is None:
            client = httpx.AsyncClient(timeout=config.timeout, headers=headers)
        else:
            client.headers.update(headers)
        self._client = client

    def api_url(self, endpoint: str) -> str:
        base = self.config.base_url.rstrip("/")
        return f"{base}/{self.config.organization}/{self.config.project}/_apis/{endpoint}"

    def item_url(self, item_id: ItemId) -> str:
        base = self.config.base_url.rstrip("/")
        return f"{base}/{self.config.organization}/{self.config.project}/_workitems/edit/{item_id}"

    @property
    def _params(self) -> Dict[str, str]:
        return {"api-version": self.config.api_version}

    async def run_query(self, wiql: str) -> List[int]:
        """Run a WIQL query and return the matching ids in result order."""
        data = await request_json(
            self._client, "POST", self.api_url("wit/wiql"), params=self._params, json={"query": wiql}
        )
        return [entry["id"] for entry in data.get("workItems", []) if "id" in entry]

    async def get_work_item(self, item_id: int) -> Dict[str, Any]:
        """Fetch one work item with relations, through the cache when set."""
        key = str(item_id)
        if self.cache is not None:
            cached = self.cache.get(self.name, key)
            if cached is not None:
                return cached

        payload = await request_json(
            self._client,
            "GET",
            self.api_url(f"wit/workitems/{item_id}"),
            params={**self._params, "$expand": "relations"},
        )
        if self.cache is not None:
            self.cache.set(self.name, key, payload)
        return payload

    async def fetch_items(self, ids: List[int]) -> List[WorkItem]:
        """Fetch details concurrently, dropping items whose fetch failed."""
        results = await asyncio.gather(
            *(self.get_work_item(item_id) for item_id in ids), return_exceptions=True
        )
        items = []
        for item_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.warning("work_item_fetch_failed", id=item_id, error=str(result))
                continue
            items.append(normalize_work_item(result, self.item_url(item_id)))
        return items

    async def list_candidates(self, filter: Optional[CandidateFilter] = None) -> List[WorkItem]:
        """Open tasks and bugs, plus the items they depend on.

        Predecessors that are not themselves candidates are fetched too, so
        the resolver can tell a closed dependency from a missing one.
        """
        filter = filter or CandidateFilter()
        ids = await self.run_query(
            build_available_tasks_query(filter.assigned_to, filter.iteration_path)
        )
        items = await self.fetch_items(ids)

        known = {item.key for item in items}
        extra = []
        for item in items:
            for dep in item.dependencies:
                if str(dep) not in known and str(dep).isdigit():
                    known.add(str(dep))
                    extra.append(int(dep))
        if extra:
            items.extend(await self.fetch_items(extra))

        logger.debug("azure_snapshot_loaded", candidates=len(ids), total=len(items))
        predecessors = {str(i) for i in extra}
        return [item for item in items if item.key in predecessors or filter.matches(item)]

    async def list_blocked(self) -> List[WorkItem]:
        return await self.fetch_items(await self.run_query(build_blocked_items_query()))

    async def list_in_progress(self, user_filter: Optional[str] = None) -> List[WorkItem]:
        return await self.fetch_items(await self.run_query(build_in_progress_query(user_filter)))

    async def list_completed_since(self, since: date) -> List[WorkItem]:
        return await self.fetch_items(await self.run_query(build_completed_since_query(since)))

    async def get_current_sprint(self) -> Optional[Dict[str, str]]:
        """Current iteration as ``{"name", "path"}``, or None."""
        data = await request_json(
            self._client,
            "GET",
            self.api_url("work/teamsettings/iterations"),
            params={**self._params, "$timeframe": "current"},
        )
        iterations = data.get("value") or []
        if not iterations:
            return None
        current = iterations[0]
        return {"name": current.get("name", ""), "path": current.get("path", "")}

    async def check_dependency_links(self, item_id: ItemId) -> bool:
        data = await request_json(
            self._client,
            "POST",
            self.api_url("wit/wiql"),
            params=self._params,
            json={"query": build_dependency_links_query(item_id)},
        )
        relations = data.get("workItemRelations") or []
        return any(relation.get("rel") for relation in relations)

    async def aclose(self) -> None:
        await self._client.aclose()
