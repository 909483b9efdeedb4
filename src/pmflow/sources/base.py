"""Base class for work item sources."""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

import httpx
import structlog
from pydantic import BaseModel, Field

from pmflow.errors import RemoteRequestError
from pmflow.models.work_item import ItemId, WorkItem, WorkItemStatus

logger = structlog.get_logger(__name__)


class CandidateFilter(BaseModel):
    """Narrow the snapshot a source returns."""

    statuses: Optional[List[WorkItemStatus]] = Field(
        None, description="Only items in these states"
    )
    types: Optional[List[str]] = Field(None, description="Only items of these types")
    assigned_to: Optional[str] = Field(
        None, description="'me' for the current user (or unassigned), or a user name"
    )
    iteration_path: Optional[str] = Field(None, description="Only items in this sprint")
    include_closed: bool = Field(
        True, description="Keep closed items; they are needed to resolve dependencies"
    )

    def matches(self, item: WorkItem) -> bool:
        """Apply the filter to an already-normalized item."""
        if not self.include_closed and item.status == WorkItemStatus.CLOSED:
            return False
        if self.statuses is not None and item.status not in self.statuses:
            return False
        if self.types is not None and item.type not in self.types:
            return False
        if self.iteration_path is not None and item.iteration_path != self.iteration_path:
            return False
        if self.assigned_to and self.assigned_to.lower() not in ("me", "@me"):
            if (item.assignee or "").lower() != self.assigned_to.lower():
                return False
        return True


class DependencyCheck(BaseModel):
    """Outcome of a remote dependency-link check."""

    item_id: ItemId
    has_dependencies: bool = False
    error: Optional[str] = Field(None, description="Set when the check itself failed")

    @property
    def ok(self) -> bool:
        return self.error is None


class WorkItemSource(ABC):
    """Abstract base class for work item sources.

    A source produces a normalized snapshot for one invocation of the
    engine. Backends are siblings of this class; none extends another.
    """

    name: str = "base"
    supports_dependency_checks: bool = False

    @abstractmethod
    async def list_candidates(self, filter: Optional[CandidateFilter] = None) -> List[WorkItem]:
        """Fetch a snapshot of work items.

        Args:
            filter: Optional narrowing of the snapshot

        Returns:
            Normalized work items

        Raises:
            SourceError: If the snapshot cannot be fetched
        """
        pass

    async def check_dependency_links(self, item_id: ItemId) -> bool:
        """Whether the service records dependency links for an item.

        Args:
            item_id: Work item id

        Returns:
            True if the item has dependency links

        Raises:
            SourceError: If the check cannot be performed
        """
        return False

    async def safe_check_dependency_links(self, item_id: ItemId) -> DependencyCheck:
        """Dependency-link check that never raises.

        A failed check is reported as no dependencies, so the candidate stays
        eligible for recommendation.
        """
        try:
            found = await self.check_dependency_links(item_id)
        except Exception as e:
            logger.warning(
                "dependency_check_failed", source=self.name, id=item_id, error=str(e)
            )
            return DependencyCheck(item_id=item_id, has_dependencies=False, error=str(e))
        return DependencyCheck(item_id=item_id, has_dependencies=bool(found))

    async def aclose(self) -> None:
        """Release any resources held by the source."""
        return None


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs: Any,
) -> Any:
    """Issue a request and decode the JSON body.

    Args:
        client: HTTP client carrying auth headers and timeout
        method: HTTP method
        url: Absolute URL
        **kwargs: Passed through to ``client.request``

    Returns:
        Decoded JSON body

    Raises:
        RemoteRequestError: On transport errors, error statuses and non-JSON bodies
    """
    logger.debug("remote_request", method=method, url=url)
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        raise RemoteRequestError(method, url, None, str(e)) from e

    if response.status_code >= 400:
        raise RemoteRequestError(method, url, response.status_code, response.text)

    try:
        return response.json()
    except ValueError as e:
        raise RemoteRequestError(method, url, response.status_code, "invalid JSON body") from e
