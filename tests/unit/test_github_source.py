"""Tests for the GitHub issues source."""

import httpx
import pytest

from pmflow.errors import ConfigurationError
from pmflow.models import GitHubConfig, WorkItemStatus
from pmflow.sources import CandidateFilter, GitHubSource
from pmflow.sources.github import body_dependencies, normalize_issue

ISSUES = [
    {
        "number": 12,
        "title": "Crash on save",
        "state": "open",
        "labels": [{"name": "bug"}, {"name": "priority:1"}, {"name": "estimate:2h"}],
        "body": "Steps to reproduce.\n\nDepends on #10",
        "assignee": {"login": "octocat"},
        "html_url": "https://github.com/acme/app/issues/12",
    },
    {
        "number": 10,
        "title": "Storage refactor",
        "state": "closed",
        "labels": [],
        "body": None,
        "closed_at": "2024-01-05T12:00:00Z",
    },
    {
        "number": 11,
        "title": "Bump dependencies",
        "state": "open",
        "labels": [{"name": "in-progress"}, {"name": "p2"}],
        "pull_request": {"url": "https://api.github.com/repos/acme/app/pulls/11"},
    },
    {
        "number": 13,
        "title": "Write docs",
        "state": "open",
        "labels": [{"name": "In-Progress"}],
        "body": "- blocked by #12, #14",
    },
]


@pytest.fixture
def config():
    """GitHub config for acme/app."""
    return GitHubConfig(owner="acme", repo="app", token="ghp_test")


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestParsing:
    """Test issue normalization."""

    def test_body_dependencies(self):
        """Test dependency lines in issue bodies."""
        assert body_dependencies("Depends on #10") == [10]
        assert body_dependencies("- blocked by #12, #14\ndepends on: #12") == [12, 14]
        assert body_dependencies("Mentions #5 in passing") == []
        assert body_dependencies(None) == []

    def test_labels(self):
        """Test labels drive type, priority, estimate and tags."""
        item = normalize_issue(ISSUES[0])

        assert item.id == 12
        assert item.type == "Bug"
        assert item.priority == 1
        assert item.remaining_work == 2.0
        assert item.tags == ("bug", "priority:1", "estimate:2h")
        assert item.dependencies == (10,)
        assert item.assignee == "octocat"
        assert item.status == WorkItemStatus.OPEN
        assert item.source == "github"

    def test_states(self):
        """Test closed state and in-progress label."""
        assert normalize_issue(ISSUES[1]).status == WorkItemStatus.CLOSED
        assert normalize_issue(ISSUES[3]).status == WorkItemStatus.IN_PROGRESS

    def test_short_priority_label(self):
        """Test pN priority labels."""
        assert normalize_issue({"number": 1, "labels": ["p3"]}).priority == 3


class TestGitHubSource:
    """Test requests made by the source."""

    def test_missing_owner(self):
        """Test missing owner is reported."""
        with pytest.raises(ConfigurationError, match="GITHUB_OWNER"):
            GitHubSource(GitHubConfig(repo="app"))

    @pytest.mark.asyncio
    async def test_list_candidates_skips_pull_requests(self, config):
        """Test pull requests are not work items."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=ISSUES)

        source = GitHubSource(config, client=_client(handler))

        items = await source.list_candidates()
        await source.aclose()

        assert [item.id for item in items] == [12, 10, 13]
        assert requests[0].url.path == "/repos/acme/app/issues"
        assert requests[0].url.params["state"] == "all"
        assert requests[0].headers["Authorization"] == "Bearer ghp_test"

    @pytest.mark.asyncio
    async def test_open_only(self, config):
        """Test excluding closed items narrows the request."""
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=[ISSUES[0]])

        source = GitHubSource(config, client=_client(handler))

        await source.list_candidates(CandidateFilter(include_closed=False))

        assert requests[0].url.params["state"] == "open"

    @pytest.mark.asyncio
    async def test_dependency_links(self, config):
        """Test link check reads the issue body."""

        def handler(request):
            number = int(request.url.path.rsplit("/", 1)[1])
            issue = next(i for i in ISSUES if i["number"] == number)
            return httpx.Response(200, json=issue)

        source = GitHubSource(config, client=_client(handler))

        assert await source.check_dependency_links(12) is True
        assert await source.check_dependency_links(10) is False

    @pytest.mark.asyncio
    async def test_dependency_check_fails_open(self, config):
        """Test an error response becomes 'no dependencies'."""
        source = GitHubSource(config, client=_client(lambda request: httpx.Response(502)))

        check = await source.safe_check_dependency_links(12)

        assert check.has_dependencies is False
        assert check.error is not None
