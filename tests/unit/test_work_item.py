"""Tests for work item normalization."""

import pytest
from pydantic import ValidationError
from structlog.testing import capture_logs

from pmflow.models import WorkItem, WorkItemStatus, WorkItemType, canonical_status, parse_dependencies
from pmflow.models.work_item import canonical_type, parse_tags


class TestStatusCanonicalization:
    """Test mapping of source statuses onto the lifecycle states."""

    @pytest.mark.parametrize("raw", ["open", "New", "To Do", "todo", "Ready", "backlog"])
    def test_open_spellings(self, raw):
        """Test open-like statuses map to Open."""
        assert canonical_status(raw) == WorkItemStatus.OPEN

    @pytest.mark.parametrize("raw", ["in_progress", "in-progress", "In Progress", "Active", "doing"])
    def test_in_progress_spellings(self, raw):
        """Test in-progress statuses with any separator."""
        assert canonical_status(raw) == WorkItemStatus.IN_PROGRESS

    @pytest.mark.parametrize("raw", ["closed", "Done", "completed", "Resolved", "Removed"])
    def test_closed_spellings(self, raw):
        """Test terminal statuses map to Closed."""
        assert canonical_status(raw) == WorkItemStatus.CLOSED

    def test_missing_or_unknown_status_is_open(self):
        """Test that a missing or unknown status defaults to Open."""
        assert canonical_status(None) == WorkItemStatus.OPEN
        assert canonical_status("waiting-for-godot") == WorkItemStatus.OPEN

    def test_raw_status_kept(self):
        """Test the raw status is preserved next to the canonical one."""
        item = WorkItem(id=1, status="To Do", raw_status="To Do")
        assert item.status == WorkItemStatus.OPEN
        assert item.raw_status == "To Do"


class TestTypeCanonicalization:
    """Test work item type spellings."""

    def test_known_aliases(self):
        """Test case-insensitive aliases."""
        assert canonical_type("bug") == WorkItemType.BUG
        assert canonical_type("User Story") == WorkItemType.USER_STORY
        assert canonical_type("story") == WorkItemType.USER_STORY

    def test_unknown_type_passes_through(self):
        """Test the type set stays open."""
        assert canonical_type("Spike") == "Spike"

    def test_missing_type_is_task(self):
        """Test default type."""
        assert WorkItem(id=1).type == WorkItemType.TASK


class TestDependencyParsing:
    """Test the accepted dependency declaration shapes."""

    def test_list(self):
        """Test a plain list of ids."""
        assert parse_dependencies([1, 2]) == [1, 2]

    def test_bracketed_string(self):
        """Test a bracketed string as found in bare task files."""
        assert parse_dependencies("[1, 2]") == [1, 2]

    def test_separated_string(self):
        """Test comma and whitespace separated ids."""
        assert parse_dependencies("1, 2") == [1, 2]
        assert parse_dependencies("#12 #13") == [12, 13]

    def test_empty(self):
        """Test empty declarations."""
        assert parse_dependencies(None) == []
        assert parse_dependencies("") == []
        assert parse_dependencies("[]") == []

    @pytest.mark.parametrize("raw", ["invalid_format", {"a": 1}, [{"id": 1}], True])
    def test_malformed(self, raw):
        """Test malformed declarations are reported as None."""
        assert parse_dependencies(raw) is None

    def test_malformed_coerces_to_no_dependencies(self):
        """Test a malformed declaration yields no dependencies and a warning."""
        with capture_logs() as logs:
            item = WorkItem(id=1, dependencies="invalid_format")

        assert item.dependencies == ()
        assert any(log["event"] == "malformed_dependencies" for log in logs)

    def test_duplicates_removed_in_order(self):
        """Test dependency ids are de-duplicated keeping declaration order."""
        item = WorkItem(id=5, dependencies=[3, "#1", 3, 1])
        assert item.dependencies == (3, "#1")


class TestOptionalFields:
    """Test neutral defaults for optional fields."""

    def test_priority_normalization(self):
        """Test non-positive or unparsable priorities become None."""
        assert WorkItem(id=1, priority=2).priority == 2
        assert WorkItem(id=1, priority="P1").priority == 1
        assert WorkItem(id=1, priority=0).priority is None
        assert WorkItem(id=1, priority="high").priority is None

    def test_remaining_work_normalization(self):
        """Test remaining work accepts hour strings and rejects negatives."""
        assert WorkItem(id=1, remaining_work="4h").remaining_work == 4.0
        assert WorkItem(id=1, remaining_work=-2).remaining_work is None
        assert WorkItem(id=1, remainingWork=3).remaining_work == 3.0

    def test_tags_split(self):
        """Test tags split on commas and semicolons."""
        assert parse_tags("critical,urgent") == ("critical", "urgent")
        assert parse_tags("blocked; frontend ;") == ("blocked", "frontend")
        assert parse_tags(None) == ()

    def test_has_tag_is_case_insensitive(self):
        """Test tag membership ignores case."""
        item = WorkItem(id=1, tags="Critical")
        assert item.has_tag("critical", "urgent")
        assert not item.has_tag("blocked")

    def test_parallel_string(self):
        """Test parallel flag from text."""
        assert WorkItem(id=1, parallel="true").parallel is True
        assert WorkItem(id=1, parallel="false").parallel is False

    def test_item_is_frozen(self):
        """Test snapshots cannot be mutated."""
        item = WorkItem(id=1)
        with pytest.raises(ValidationError):
            item.status = WorkItemStatus.CLOSED

    def test_key_strips_hash(self):
        """Test canonical key."""
        assert WorkItem(id="#42").key == "42"
        assert WorkItem(id=42).key == "42"
