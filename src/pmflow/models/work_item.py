"""Data models for work items and their normalization."""

import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = structlog.get_logger(__name__)

ItemId = Union[int, str]


class WorkItemStatus(str, Enum):
    """Lifecycle state used for readiness decisions."""

    OPEN = "Open"
    IN_PROGRESS = "InProgress"
    CLOSED = "Closed"


class WorkItemType:
    """Canonical spellings for the common work item types.

    The set is open: unknown types pass through unchanged.
    """

    TASK = "Task"
    BUG = "Bug"
    USER_STORY = "UserStory"
    EPIC = "Epic"
    FEATURE = "Feature"


_STATUS_ALIASES = {
    "open": WorkItemStatus.OPEN,
    "new": WorkItemStatus.OPEN,
    "to do": WorkItemStatus.OPEN,
    "todo": WorkItemStatus.OPEN,
    "ready": WorkItemStatus.OPEN,
    "backlog": WorkItemStatus.OPEN,
    "proposed": WorkItemStatus.OPEN,
    "approved": WorkItemStatus.OPEN,
    "in progress": WorkItemStatus.IN_PROGRESS,
    "inprogress": WorkItemStatus.IN_PROGRESS,
    "active": WorkItemStatus.IN_PROGRESS,
    "started": WorkItemStatus.IN_PROGRESS,
    "doing": WorkItemStatus.IN_PROGRESS,
    "committed": WorkItemStatus.IN_PROGRESS,
    "closed": WorkItemStatus.CLOSED,
    "done": WorkItemStatus.CLOSED,
    "completed": WorkItemStatus.CLOSED,
    "complete": WorkItemStatus.CLOSED,
    "finished": WorkItemStatus.CLOSED,
    "resolved": WorkItemStatus.CLOSED,
    "removed": WorkItemStatus.CLOSED,
    "cancelled": WorkItemStatus.CLOSED,
    "canceled": WorkItemStatus.CLOSED,
}

_TYPE_ALIASES = {
    "task": WorkItemType.TASK,
    "bug": WorkItemType.BUG,
    "defect": WorkItemType.BUG,
    "userstory": WorkItemType.USER_STORY,
    "user story": WorkItemType.USER_STORY,
    "story": WorkItemType.USER_STORY,
    "epic": WorkItemType.EPIC,
    "feature": WorkItemType.FEATURE,
}

# Bare id tokens accepted inside a dependency string: 12, #12, epic-a/3
_ID_TOKEN = re.compile(r"^#?\d+$|^[\w.-]+/#?\w+$")


def canonical_status(value: Any) -> WorkItemStatus:
    """Map a source-specific status string onto the three lifecycle states.

    Missing or unrecognised values are treated as open, which is the
    default status of a freshly written task file.

    Args:
        value: Raw status from a file or a remote service

    Returns:
        The canonical WorkItemStatus
    """
    if isinstance(value, WorkItemStatus):
        return value
    if value is None:
        return WorkItemStatus.OPEN

    key = re.sub(r"[-_\s]+", " ", str(value)).strip().lower()
    if key in _STATUS_ALIASES:
        return _STATUS_ALIASES[key]
    for status in WorkItemStatus:
        if key == status.value.lower():
            return status
    return WorkItemStatus.OPEN


def canonical_type(value: Any) -> str:
    """Canonicalize a work item type, leaving unknown types untouched."""
    if value is None or str(value).strip() == "":
        return WorkItemType.TASK
    raw = str(value).strip()
    key = re.sub(r"[-_\s]+", " ", raw).lower()
    return _TYPE_ALIASES.get(key, _TYPE_ALIASES.get(key.replace(" ", ""), raw))


def canonical_id(value: ItemId) -> str:
    """Key used to match a dependency reference against a snapshot id."""
    return str(value).strip().lstrip("#")


def parse_dependencies(value: Any) -> Optional[List[ItemId]]:
    """Parse a dependency declaration into a list of ids.

    Accepts a list or tuple of scalar ids, a bracketed string such as
    ``"[1, 2]"``, or a string of numeric ids separated by commas or
    whitespace (``"1, 2"``, ``"#12 #13"``).

    Args:
        value: Raw declaration

    Returns:
        List of ids, or None when the declaration is malformed
    """
    if value is None:
        return []

    if isinstance(value, bool):
        return None

    if isinstance(value, int):
        return [value]

    if isinstance(value, (list, tuple)):
        ids: List[ItemId] = []
        for entry in value:
            if isinstance(entry, bool) or not isinstance(entry, (int, str)):
                return None
            if isinstance(entry, str):
                entry = entry.strip()
                if not entry:
                    continue
            ids.append(entry)
        return ids

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []

        bracketed = text.startswith("[") and text.endswith("]")
        if bracketed:
            text = text[1:-1]

        tokens = [t for t in re.split(r"[,\s]+", text) if t]
        if not tokens:
            return []

        if bracketed:
            return [_coerce_token(t.strip("'\"")) for t in tokens]

        if all(_ID_TOKEN.match(t) for t in tokens):
            return [_coerce_token(t) for t in tokens]

    return None


def _coerce_token(token: str) -> ItemId:
    stripped = token.lstrip("#")
    return int(stripped) if stripped.isdigit() else stripped


def parse_tags(value: Any) -> Tuple[str, ...]:
    """Split a tag declaration into trimmed labels."""
    if value is None:
        return ()
    if isinstance(value, str):
        parts: Iterable[Any] = re.split(r"[,;]", value)
    elif isinstance(value, (list, tuple, set, frozenset)):
        parts = value
    else:
        parts = [value]

    tags: List[str] = []
    for part in parts:
        label = str(part).strip()
        if label and label not in tags:
            tags.append(label)
    return tuple(tags)


class WorkItem(BaseModel):
    """Normalized, read-only snapshot of a task, story, bug or epic.

    Instances are built fresh from a source on every invocation and are
    never mutated by the readiness engine.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: ItemId = Field(..., description="Identifier, unique within a snapshot")
    title: str = Field("", description="Display name")
    type: str = Field(WorkItemType.TASK, description="Task, Bug, UserStory, Epic, Feature, ...")
    status: WorkItemStatus = Field(WorkItemStatus.OPEN, description="Canonical lifecycle state")
    raw_status: Optional[str] = Field(None, description="Status as written by the source")
    dependencies: Tuple[ItemId, ...] = Field(
        default_factory=tuple, description="Ids this item depends on, in declaration order"
    )
    priority: Optional[int] = Field(None, description="1 is the most urgent tier")
    remaining_work: Optional[float] = Field(
        None, alias="remainingWork", description="Remaining effort in hours"
    )
    tags: Tuple[str, ...] = Field(default_factory=tuple, description="Free-text labels")
    parallel: bool = Field(False, description="Can be worked alongside siblings")

    # Descriptive fields, not used for readiness or scoring
    epic: Optional[str] = Field(None, description="Owning epic name")
    number: Optional[str] = Field(None, description="Task number as written in the store")
    assignee: Optional[str] = Field(None, description="Assigned user")
    iteration_path: Optional[str] = Field(None, description="Sprint / iteration path")
    url: Optional[str] = Field(None, description="Link to the item in its service")
    description: Optional[str] = Field(None, description="Body text")
    source: str = Field("local", description="Backend that produced the item")
    path: Optional[Path] = Field(None, description="Backing file for local items")
    created_at: Optional[datetime] = Field(None, description="Creation timestamp")
    started_at: Optional[datetime] = Field(None, description="When work started")
    completed_at: Optional[datetime] = Field(None, description="When the item was closed")
    updated_at: Optional[datetime] = Field(None, description="Last modification")

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> WorkItemStatus:
        return canonical_status(value)

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: Any) -> str:
        return canonical_type(value)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _normalize_dependencies(cls, value: Any) -> Tuple[ItemId, ...]:
        parsed = parse_dependencies(value)
        if parsed is None:
            logger.warning("malformed_dependencies", declaration=repr(value)[:80])
            return ()
        seen = set()
        ordered: List[ItemId] = []
        for dep in parsed:
            key = canonical_id(dep)
            if key and key not in seen:
                seen.add(key)
                ordered.append(dep)
        return tuple(ordered)

    @field_validator("priority", mode="before")
    @classmethod
    def _normalize_priority(cls, value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        try:
            text = str(value).strip().upper().lstrip("P")
            priority = int(float(text))
        except (TypeError, ValueError):
            return None
        return priority if priority >= 1 else None

    @field_validator("remaining_work", mode="before")
    @classmethod
    def _normalize_remaining_work(cls, value: Any) -> Optional[float]:
        if value is None or isinstance(value, bool):
            return None
        try:
            hours = float(str(value).strip().rstrip("hH"))
        except (TypeError, ValueError):
            return None
        return hours if hours >= 0 else None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> Tuple[str, ...]:
        return parse_tags(value)

    @field_validator("parallel", mode="before")
    @classmethod
    def _normalize_parallel(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "yes", "1")
        return bool(value)

    @property
    def key(self) -> str:
        """Canonical id used for dependency matching."""
        return canonical_id(self.id)

    @property
    def is_open(self) -> bool:
        return self.status == WorkItemStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == WorkItemStatus.CLOSED

    def has_tag(self, *names: str) -> bool:
        """Case-insensitive tag membership test."""
        wanted = {n.lower() for n in names}
        return any(t.lower() in wanted for t in self.tags)


class ReadinessResult(BaseModel):
    """Readiness verdict for one open work item."""

    id: ItemId = Field(..., description="Work item id")
    ready: bool = Field(..., description="True when every dependency resolves")
    blocked_by: List[ItemId] = Field(
        default_factory=list, description="Dependency ids that are missing or unresolved"
    )


class BlockedItem(BaseModel):
    """An open work item together with the reasons it cannot start."""

    item: WorkItem = Field(..., description="The blocked work item")
    reasons: List[ItemId] = Field(default_factory=list, description="All blocking dependency ids")
    missing: List[ItemId] = Field(default_factory=list, description="Ids absent from the snapshot")
    unresolved: List[ItemId] = Field(
        default_factory=list, description="Ids present but not closed"
    )


class ReadinessReport(BaseModel):
    """Partition of a snapshot's open items into ready and blocked."""

    ready: List[WorkItem] = Field(default_factory=list)
    blocked: List[BlockedItem] = Field(default_factory=list)


class ScoredCandidate(BaseModel):
    """A work item with its rank score; lower scores rank higher."""

    work_item: WorkItem = Field(..., description="The scored work item")
    score: float = Field(..., description="Heuristic rank score")
