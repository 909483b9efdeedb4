"""Tests for the local markdown store."""

import os
import time
from datetime import datetime, timezone

import pytest

from pmflow.engine import DependencyGraphResolver
from pmflow.errors import WorkItemNotFoundError
from pmflow.models import LocalStoreConfig, WorkItemStatus
from pmflow.sources import CandidateFilter, LocalMarkdownSource
from pmflow.sources.local import parse_task_file, qualify_id


@pytest.fixture
def source(store_config):
    """Create a source over the temporary store."""
    return LocalMarkdownSource(store_config)


def _ready_ids(items):
    return [item.id for item in DependencyGraphResolver().resolve_readiness(items).ready]


# ============================================================================
# Parsing
# ============================================================================


class TestParseTaskFile:
    """Test metadata extraction from task files."""

    def test_fenced_front_matter(self):
        """Test a YAML block between --- fences."""
        meta, body = parse_task_file("---\nname: Setup\nstatus: open\n---\n\n# Setup\n")

        assert meta["name"] == "Setup"
        assert meta["status"] == "open"
        assert "# Setup" in body

    def test_bare_key_value_lines(self):
        """Test leading key: value lines without fences."""
        meta, body = parse_task_file("name: Task 2\nstatus: open\ndepends_on: [1]\n\nBody text\n")

        assert meta["name"] == "Task 2"
        assert meta["depends_on"] == [1]
        assert body.strip() == "Body text"

    def test_invalid_yaml_falls_back_to_line_scan(self):
        """Test a header that is not valid YAML still yields fields."""
        meta, _ = parse_task_file("name: Fix: the thing\nstatus: open\n")

        assert meta["name"] == "Fix: the thing"
        assert meta["status"] == "open"

    def test_no_metadata(self):
        """Test plain text yields empty metadata."""
        meta, body = parse_task_file("invalid yaml content")

        assert meta == {}
        assert body == "invalid yaml content"

    def test_qualify_id(self):
        """Test ids are qualified by epic with leading zeros removed."""
        assert qualify_id("auth", "003") == "auth/3"
        assert qualify_id("auth", 12) == "auth/12"
        assert qualify_id("auth", "#4") == "auth/4"
        assert qualify_id("auth", "billing/02") == "billing/2"


# ============================================================================
# Snapshot
# ============================================================================


class TestLoadItems:
    """Test building a snapshot from the store."""

    def test_missing_store_is_empty(self, tmp_path):
        """Test a store without an epics directory yields no items."""
        source = LocalMarkdownSource(LocalStoreConfig(store_dir=tmp_path / "nowhere"))

        assert source.load_items() == []

    def test_reads_fields(self, source, write_task):
        """Test field mapping from a fenced task file."""
        write_task(
            "auth",
            "001",
            """
            ---
            name: Add login form
            status: in-progress
            depends_on: []
            parallel: true
            priority: 2
            type: bug
            tags: frontend, critical
            estimate: 3
            created: 2024-01-01T10:00:00Z
            started: 2024-01-02T10:00:00Z
            ---

            # Add login form
            """,
        )

        item = source.load_items()[0]

        assert item.id == "auth/1"
        assert item.number == "001"
        assert item.epic == "auth"
        assert item.title == "Add login form"
        assert item.status == WorkItemStatus.IN_PROGRESS
        assert item.raw_status == "in-progress"
        assert item.parallel is True
        assert item.priority == 2
        assert item.type == "Bug"
        assert item.tags == ("frontend", "critical")
        assert item.remaining_work == 3.0
        assert item.started_at == datetime(2024, 1, 2, 10, tzinfo=timezone.utc)
        assert item.source == "local"
        assert item.path.name == "001.md"

    def test_epic_file_is_not_a_task(self, source, write_task, store_dir):
        """Test epic.md and non-numeric files are ignored."""
        write_task("auth", "1", "name: Task\nstatus: open\n")
        (store_dir / "epics" / "auth" / "epic.md").write_text("name: Auth\nstatus: open\n")
        (store_dir / "epics" / "auth" / "1-analysis.md").write_text("notes")

        assert [item.id for item in source.load_items()] == ["auth/1"]

    def test_numeric_ordering(self, source, write_task):
        """Test tasks are ordered by number, not lexically."""
        for number in ("10", "2", "1"):
            write_task("auth", number, f"name: Task {number}\n")

        assert [item.id for item in source.load_items()] == ["auth/1", "auth/2", "auth/10"]

    def test_same_number_in_two_epics(self, source, write_task):
        """Test task numbers are scoped to their epic."""
        write_task("epic1", "2", "name: First\nstatus: open\n")
        write_task("epic2", "2", "name: Second\nstatus: open\n")

        items = source.load_items()

        assert [item.id for item in items] == ["epic1/2", "epic2/2"]
        assert len(_ready_ids(items)) == 2

    def test_invalid_content_does_not_crash(self, source, write_task):
        """Test a file without metadata still yields a default item."""
        write_task("auth", "1", "invalid yaml content")

        items = source.load_items()

        assert items[0].title == "1"
        assert items[0].status == WorkItemStatus.OPEN

    def test_unreadable_file_is_skipped(self, source, write_task):
        """Test undecodable files are logged and skipped."""
        write_task("auth", "1", "name: Good\n")
        bad = write_task("auth", "2", "placeholder")
        bad.write_bytes(b"\xff\xfe\x00bad")

        assert [item.id for item in source.load_items()] == ["auth/1"]

    @pytest.mark.asyncio
    async def test_list_candidates_filter(self, source, write_task):
        """Test the async interface applies the filter."""
        write_task("auth", "1", "name: A\nstatus: open\n")
        write_task("auth", "2", "name: B\nstatus: closed\n")

        items = await source.list_candidates(CandidateFilter(include_closed=False))

        assert [item.id for item in items] == ["auth/1"]


class TestDependencies:
    """Test dependency resolution over store snapshots."""

    def test_completed_dependency_unblocks(self, source, write_task):
        """Test a task whose dependency is completed is ready."""
        write_task("auth", "1", "name: One\nstatus: completed\n")
        write_task("auth", "2", "name: Two\nstatus: open\ndepends_on: [1]\n")

        items = source.load_items()

        assert items[1].dependencies == ("auth/1",)
        assert _ready_ids(items) == ["auth/2"]

    def test_open_dependency_blocks(self, source, write_task):
        """Test a task whose dependency is still open is blocked."""
        write_task("auth", "1", "name: One\nstatus: open\n")
        write_task("auth", "2", "name: Two\nstatus: open\ndepends_on: [1]\n")

        assert _ready_ids(source.load_items()) == ["auth/1"]

    def test_missing_dependency_blocks(self, source, write_task):
        """Test a dependency on a task that does not exist blocks."""
        write_task("auth", "1", "name: One\nstatus: open\ndepends_on: [999]\n")

        assert _ready_ids(source.load_items()) == []

    def test_invalid_dependency_format_is_ignored(self, source, write_task):
        """Test a malformed declaration leaves the task ready."""
        write_task("auth", "1", "name: One\nstatus: open\ndepends_on: invalid_format\n")

        items = source.load_items()

        assert items[0].dependencies == ()
        assert _ready_ids(items) == ["auth/1"]

    def test_zero_padded_dependency_bare(self, source, write_task):
        """Test a padded reference like 010 is not read as octal."""
        write_task("auth", "010", "name: Ten\nstatus: closed\n")
        write_task("auth", "011", "name: Eleven\nstatus: open\ndepends_on: [010]\n")

        items = source.load_items()

        assert items[1].dependencies == ("auth/10",)
        assert _ready_ids(items) == ["auth/11"]

    def test_zero_padded_dependency_fenced(self, source, write_task):
        """Test padded references in front matter, inline and as a block list."""
        write_task("auth", "010", "---\nname: Ten\nstatus: open\n---\n")
        write_task("auth", "011", "---\nname: Eleven\nstatus: open\ndepends_on: [010]\n---\n")
        write_task(
            "auth",
            "012",
            """
            ---
            name: Twelve
            status: open
            depends_on:
              - 010
              - 011
            ---
            """,
        )

        items = source.load_items()

        assert items[1].dependencies == ("auth/10",)
        assert items[2].dependencies == ("auth/10", "auth/11")
        assert _ready_ids(items) == ["auth/10"]

    def test_cross_epic_dependency(self, source, write_task):
        """Test an already-qualified dependency keeps its epic."""
        write_task("billing", "1", "name: Invoice model\nstatus: closed\n")
        write_task("auth", "1", "name: One\nstatus: open\ndepends_on: [billing/1]\n")

        items = source.load_items()

        assert "auth/1" in _ready_ids(items)


# ============================================================================
# Status transitions
# ============================================================================


class TestUpdateStatus:
    """Test in-place status rewrites."""

    NOW = datetime(2024, 1, 2, 9, 30, tzinfo=timezone.utc)

    def test_start_adds_started_after_created(self, source, write_task):
        """Test starting a task records the start time after created."""
        path = write_task(
            "auth",
            "1",
            """
            ---
            name: Setup
            status: open
            created: 2024-01-01T00:00:00Z
            ---

            Body stays.
            """,
        )

        item = source.update_status("auth/1", WorkItemStatus.IN_PROGRESS, now=self.NOW)

        text = path.read_text()
        assert "status: in-progress" in text
        assert "created: 2024-01-01T00:00:00Z\nstarted: 2024-01-02T09:30:00Z" in text
        assert "Body stays." in text
        assert item.status == WorkItemStatus.IN_PROGRESS
        assert item.started_at == self.NOW

    def test_close_adds_completed(self, source, write_task):
        """Test closing a bare-format task records completion after status."""
        path = write_task("auth", "1", "name: Setup\nstatus: in-progress\n\nBody\n")

        item = source.update_status("auth/1", "closed", now=self.NOW)

        text = path.read_text()
        assert text.startswith("name: Setup\nstatus: closed\ncompleted: 2024-01-02T09:30:00Z\n")
        assert item.status == WorkItemStatus.CLOSED

    def test_existing_timestamp_replaced(self, source, write_task):
        """Test a repeated transition replaces rather than duplicates."""
        path = write_task("auth", "1", "name: A\nstatus: open\nstarted: 2023-12-01T00:00:00Z\n")

        source.update_status("auth/1", "in_progress", now=self.NOW)

        text = path.read_text()
        assert text.count("started:") == 1
        assert "started: 2024-01-02T09:30:00Z" in text

    def test_missing_status_line_inserted(self, source, write_task):
        """Test a task without a status line gets one."""
        path = write_task("auth", "1", "name: A\n")

        source.update_status("auth/1", "closed", now=self.NOW)

        assert "status: closed" in path.read_text()

    def test_bare_number_when_unique(self, source, write_task):
        """Test a bare task number resolves when only one epic has it."""
        write_task("auth", "7", "name: A\nstatus: open\n")

        item = source.update_status("7", "in_progress", now=self.NOW)

        assert item.id == "auth/7"

    def test_unknown_id(self, source):
        """Test updating a missing task raises."""
        with pytest.raises(WorkItemNotFoundError):
            source.update_status("auth/99", "closed")

    def test_ambiguous_bare_number(self, source, write_task):
        """Test a bare number shared by two epics is rejected."""
        write_task("a", "1", "name: A\n")
        write_task("b", "1", "name: B\n")

        with pytest.raises(WorkItemNotFoundError):
            source.update_status("1", "closed")


# ============================================================================
# Activity
# ============================================================================


class TestActivity:
    """Test recent activity and progress figures."""

    def test_recent_activity(self, source, write_task, store_dir):
        """Test files modified inside the window are counted."""
        write_task("auth", "1", "name: A\n")
        old = write_task("auth", "2", "name: B\n")
        (store_dir / "prds" / "auth.md").write_text("# PRD")
        (store_dir / "epics" / "auth" / "epic.md").write_text("name: Auth\n")
        week_ago = time.time() - 7 * 86400
        os.utime(old, (week_ago, week_ago))

        activity = source.recent_activity(datetime.now(timezone.utc), days=1)

        assert activity == {"prds": 1, "epics": 1, "tasks": 1, "updates": 0}

    def test_progress_entries(self, source, store_dir):
        """Test completion percentages are read from progress files."""
        progress = store_dir / "epics" / "auth" / "updates" / "12"
        progress.mkdir(parents=True)
        (progress / "progress.md").write_text("---\nissue: 12\ncompletion: 75%\n---\n")

        entries = source.progress_entries()

        assert len(entries) == 1
        assert entries[0].epic == "auth"
        assert entries[0].issue == "12"
        assert entries[0].completion == 75.0
