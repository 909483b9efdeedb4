"""Local markdown work item store.

Layout::

    <store>/prds/<name>.md
    <store>/epics/<epic>/epic.md
    <store>/epics/<epic>/<number>.md
    <store>/epics/<epic>/updates/<issue>/progress.md

Task files carry their metadata either in a ``---`` fenced YAML block or as
bare ``key: value`` lines at the top of the file.
"""

import re
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union

import frontmatter
import structlog
import yaml

from pmflow.errors import WorkItemNotFoundError
from pmflow.models.config import LocalStoreConfig
from pmflow.models.work_item import (
    ItemId,
    WorkItem,
    WorkItemStatus,
    canonical_id,
    canonical_status,
    parse_dependencies,
)
from pmflow.sources.base import CandidateFilter, WorkItemSource

logger = structlog.get_logger(__name__)

_META_LINE = re.compile(r"^([A-Za-z_][\w-]*)\s*:\s*(.*)$")
_TASK_STEM = re.compile(r"^\d+$")
_COMPLETION = re.compile(r"completion:\s*(\d+(?:\.\d+)?)\s*%?", re.IGNORECASE)
_LIST_ENTRY = re.compile(r"^\s*-\s*(.*)$")
_NULL_VALUES = ("~", "null", "none")

# Field name -> accepted spellings, first match wins
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "title": ("name", "title"),
    "status": ("status", "state"),
    "dependencies": ("depends_on", "dependencies", "blocked_by"),
    "parallel": ("parallel",),
    "priority": ("priority",),
    "type": ("type", "work_item_type"),
    "tags": ("tags", "labels"),
    "remaining_work": ("remaining_work", "estimate", "effort_hours"),
    "assignee": ("assignee", "assigned_to"),
    "created_at": ("created",),
    "started_at": ("started",),
    "completed_at": ("completed",),
    "updated_at": ("updated",),
}

STATUS_SPELLINGS = {
    WorkItemStatus.OPEN: "open",
    WorkItemStatus.IN_PROGRESS: "in-progress",
    WorkItemStatus.CLOSED: "closed",
}


class ProgressEntry(NamedTuple):
    """Completion reported in an issue's progress file."""

    epic: str
    issue: str
    completion: float


def _scan_lines(lines: List[str]) -> Dict[str, Any]:
    meta: Dict[str, Any] = {}
    for line in lines:
        match = _META_LINE.match(line.strip())
        if match and match.group(1) not in meta:
            meta[match.group(1)] = match.group(2).strip() or None
    return meta


def parse_task_file(text: str) -> Tuple[Dict[str, Any], str]:
    """Split a task file into metadata and body.

    Never raises on bad input: a header that is not valid YAML falls back
    to a plain ``key: value`` line scan, and a file without a header yields
    empty metadata.

    Args:
        text: Raw file contents

    Returns:
        Tuple of (metadata, body)
    """
    if text.lstrip().startswith("---"):
        try:
            post = frontmatter.loads(text)
            if isinstance(post.metadata, dict):
                return dict(post.metadata), post.content
        except (yaml.YAMLError, ValueError) as e:
            logger.debug("frontmatter_parse_failed", error=str(e))
        body = text.lstrip()[3:]
        header, _, rest = body.partition("\n---")
        return _scan_lines(header.splitlines()), rest.lstrip("-\n")

    header = _header_lines(text)
    body = "\n".join(text.splitlines()[len(header) :])
    if not header:
        return {}, text

    try:
        loaded = yaml.safe_load("\n".join(header))
    except yaml.YAMLError:
        loaded = None
    if not isinstance(loaded, dict):
        loaded = _scan_lines(header)
    return loaded, body


def _header_lines(text: str) -> List[str]:
    if text.lstrip().startswith("---"):
        header, _, _ = text.lstrip()[3:].partition("\n---")
        return header.splitlines()
    header = []
    for line in text.splitlines():
        if not line.strip() or not _META_LINE.match(line.strip()):
            break
        header.append(line)
    return header


def raw_dependencies(text: str) -> Union[str, List[str], None]:
    """Dependency declaration exactly as written in a task file's header.

    YAML reads zero-padded numbers such as ``010`` as octal, so task
    references are taken from the header text instead of the parsed
    metadata. Handles inline values (``depends_on: [010, 011]``) and block
    lists (``depends_on:`` followed by ``- 010`` lines).

    Returns:
        The inline value, the block list entries, or None when undeclared
    """
    lines = _header_lines(text)
    for key in FIELD_ALIASES["dependencies"]:
        for index, line in enumerate(lines):
            match = _META_LINE.match(line)
            if not match or match.group(1) != key:
                continue
            value = match.group(2).strip().strip("'\"")
            if value:
                return None if value.lower() in _NULL_VALUES else value
            entries = []
            for follow in lines[index + 1 :]:
                entry = _LIST_ENTRY.match(follow)
                if not entry:
                    break
                entries.append(entry.group(1).strip().strip("'\""))
            if entries:
                return entries
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp as written by the CLI or by hand."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _normalize_number(number: str) -> str:
    stripped = number.lstrip("0")
    return stripped or "0"


def qualify_id(epic: str, ref: ItemId) -> str:
    """Qualify a task reference relative to its epic.

    ``3`` and ``"003"`` in epic ``auth`` both become ``auth/3``; an id that
    already names an epic is kept.
    """
    text = canonical_id(ref)
    if "/" in text:
        other, _, number = text.partition("/")
        return f"{other}/{_normalize_number(number.lstrip('#'))}"
    return f"{epic}/{_normalize_number(text)}"


def _pick(meta: Dict[str, Any], field: str) -> Any:
    for key in FIELD_ALIASES[field]:
        if key in meta and meta[key] is not None:
            return meta[key]
    return None


class LocalMarkdownSource(WorkItemSource):
    """Work items read from the markdown store on disk.

    Example:
        >>> source = LocalMarkdownSource(LocalStoreConfig(store_dir=Path(".claude")))
        >>> items = source.load_items()
        >>> [item.id for item in items]
        ['auth/1', 'auth/2']
    """

    name = "local"

    def __init__(self, config: Optional[LocalStoreConfig] = None) -> None:
        """Initialize source.

        Args:
            config: Store location; defaults to ``.claude`` in the working directory
        """
        self.config = config or LocalStoreConfig()

    @property
    def epics_dir(self) -> Path:
        return self.config.epics_dir

    def task_files(self) -> List[Path]:
        """All task files, ordered by epic then numerically by task number."""
        if not self.epics_dir.is_dir():
            return []
        files = []
        for epic_dir in sorted(p for p in self.epics_dir.iterdir() if p.is_dir()):
            tasks = [p for p in epic_dir.glob("*.md") if _TASK_STEM.match(p.stem)]
            files.extend(sorted(tasks, key=lambda p: int(p.stem)))
        return files

    def read_item(self, path: Path) -> WorkItem:
        """Build a work item from one task file.

        Raises:
            OSError: If the file cannot be read
        """
        text = path.read_text(encoding="utf-8")
        meta, body = parse_task_file(text)
        epic = path.parent.name

        raw_deps = raw_dependencies(text)
        if raw_deps is None:
            raw_deps = _pick(meta, "dependencies")
        parsed = parse_dependencies(raw_deps)
        dependencies: Any = (
            [qualify_id(epic, dep) for dep in parsed] if parsed is not None else raw_deps
        )

        status = _pick(meta, "status")
        return WorkItem(
            id=qualify_id(epic, path.stem),
            number=path.stem,
            epic=epic,
            title=str(_pick(meta, "title") or path.stem),
            type=_pick(meta, "type"),
            status=status,
            raw_status=str(status) if status is not None else None,
            dependencies=dependencies,
            parallel=_pick(meta, "parallel") or False,
            priority=_pick(meta, "priority"),
            tags=_pick(meta, "tags"),
            remaining_work=_pick(meta, "remaining_work"),
            assignee=_pick(meta, "assignee"),
            description=body.strip() or None,
            created_at=parse_timestamp(_pick(meta, "created_at")),
            started_at=parse_timestamp(_pick(meta, "started_at")),
            completed_at=parse_timestamp(_pick(meta, "completed_at")),
            updated_at=parse_timestamp(_pick(meta, "updated_at")),
            source=self.name,
            path=path,
        )

    def load_items(self, filter: Optional[CandidateFilter] = None) -> List[WorkItem]:
        """Read every task file in the store.

        Unreadable files are logged and skipped.
        """
        items = []
        for path in self.task_files():
            try:
                item = self.read_item(path)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("task_file_unreadable", path=str(path), error=str(e))
                continue
            if filter is None or filter.matches(item):
                items.append(item)

        logger.debug("local_snapshot_loaded", store=str(self.config.store_dir), count=len(items))
        return items

    async def list_candidates(self, filter: Optional[CandidateFilter] = None) -> List[WorkItem]:
        return self.load_items(filter)

    def find_path(self, item_id: ItemId) -> Path:
        """Locate the task file for an id.

        Accepts a qualified id (``auth/3``) or a bare task number when it is
        unique across epics.

        Raises:
            WorkItemNotFoundError: If no task file matches
        """
        key = canonical_id(item_id)
        matches = []
        for path in self.task_files():
            qualified = qualify_id(path.parent.name, path.stem)
            if key == qualified or ("/" not in key and _normalize_number(key) == qualified.split("/")[1]):
                matches.append(path)
        if len(matches) != 1:
            raise WorkItemNotFoundError(key)
        return matches[0]

    def update_status(
        self,
        item_id: ItemId,
        status: Union[WorkItemStatus, str],
        now: Optional[datetime] = None,
    ) -> WorkItem:
        """Rewrite a task's status line in place.

        Moving to in progress records a ``started:`` timestamp and closing
        records ``completed:``. The ``updated:`` line is refreshed when
        present. The rest of the file is left as is.

        Args:
            item_id: Task id
            status: New status
            now: Timestamp to record, defaults to the current UTC time

        Returns:
            The re-read work item

        Raises:
            WorkItemNotFoundError: If the task does not exist
        """
        path = self.find_path(item_id)
        target = canonical_status(status)
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")

        text = path.read_text(encoding="utf-8")
        text = _set_field(text, "status", STATUS_SPELLINGS[target], anchors=())
        if target == WorkItemStatus.IN_PROGRESS:
            text = _set_field(text, "started", stamp, anchors=("created", "status"))
        elif target == WorkItemStatus.CLOSED:
            text = _set_field(text, "completed", stamp, anchors=("started", "created", "status"))
        if re.search(r"^updated:", text, re.MULTILINE):
            text = _set_field(text, "updated", stamp, anchors=())
        path.write_text(text, encoding="utf-8")

        logger.info("status_updated", id=canonical_id(item_id), status=target.value)
        return self.read_item(path)

    def recent_activity(self, now: datetime, days: int = 1) -> Dict[str, int]:
        """Count store files modified within the last ``days`` days."""
        cutoff = (now - timedelta(days=days)).timestamp()
        root = self.config.store_dir
        groups = {
            "prds": root.glob("prds/*.md"),
            "epics": root.glob("epics/*/epic.md"),
            "tasks": iter(self.task_files()),
            "updates": root.glob("epics/*/updates/*/*.md"),
        }
        activity = {}
        for name, paths in groups.items():
            activity[name] = sum(1 for p in paths if p.is_file() and p.stat().st_mtime >= cutoff)
        return activity

    def progress_entries(self) -> List[ProgressEntry]:
        """Completion figures from ``updates/<issue>/progress.md`` files."""
        entries = []
        for path in sorted(self.config.store_dir.glob("epics/*/updates/*/progress.md")):
            try:
                match = _COMPLETION.search(path.read_text(encoding="utf-8"))
            except OSError as e:
                logger.warning("progress_file_unreadable", path=str(path), error=str(e))
                continue
            if match:
                entries.append(
                    ProgressEntry(
                        epic=path.parent.parent.parent.name,
                        issue=path.parent.name,
                        completion=float(match.group(1)),
                    )
                )
        return entries


def _set_field(text: str, key: str, value: str, anchors: Tuple[str, ...]) -> str:
    """Replace ``key:`` in the header or insert it after the first anchor found."""
    pattern = re.compile(rf"^{re.escape(key)}:.*$", re.MULTILINE)
    if pattern.search(text):
        return pattern.sub(f"{key}: {value}", text, count=1)

    for anchor in anchors:
        anchor_line = re.search(rf"^{re.escape(anchor)}:.*$", text, re.MULTILINE)
        if anchor_line:
            end = anchor_line.end()
            return f"{text[:end]}\n{key}: {value}{text[end:]}"

    if text.lstrip().startswith("---"):
        fence = text.index("---") + 3
        return f"{text[:fence]}\n{key}: {value}{text[fence:]}"
    return f"{key}: {value}\n{text}"
