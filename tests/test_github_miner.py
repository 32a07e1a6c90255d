"""
GitHub Miner Test Suite.

Covers commit listing, noise filtering, diff enrichment and the handling of
rate limits and subrequest budgets.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from errors import RateLimitedError, SubrequestLimitError
from miners.github_host import (
    SubrequestBudget,
    extract_url_from_readme,
    is_valid_url,
)
from miners.github_miner import GitHubMiner, build_diff, filter_noise
from miners.models import utf8_len


def raw_commit(sha, message, date="2024-01-15T10:00:00+00:00"):
    return {"sha": sha, "message": message, "author": {"name": "dev", "date": date}}


class StatusError(Exception):
    def __init__(self, message, status):
        super().__init__(message)
        self.status = status


@pytest.fixture
def host():
    """Create a mock GitHub host with a page size of 100."""
    host = Mock()
    host.per_page = 100
    host.check_rate_limit = AsyncMock()
    host.list_commits = AsyncMock(return_value=[])
    host.get_commit_detail = AsyncMock(
        return_value={
            "files": [{"filename": "app.py", "status": "modified", "patch": "+print('hi')"}],
            "stats": {"additions": 1, "deletions": 0},
        }
    )
    return host


@pytest.fixture
def miner(host):
    """Create a miner that never sleeps."""
    return GitHubMiner(host, max_commits_with_diff=40, sleep=AsyncMock())


def test_filter_noise_scenario(make_commit):
    """Test that merge and WIP commits are removed."""
    commits = [
        make_commit(sha="1", message="Merge pull request #4"),
        make_commit(sha="2", message="WIP: draft"),
        make_commit(sha="3", message="Add dark mode"),
    ]

    assert [c.message for c in filter_noise(commits)] == ["Add dark mode"]


def test_filter_noise_is_case_insensitive(make_commit):
    """Test that prefixes match regardless of case."""
    commits = [
        make_commit(sha="1", message="merge branch 'main'"),
        make_commit(sha="2", message="wip"),
        make_commit(sha="3", message="Fix merge conflict handling"),
    ]

    assert [c.sha for c in filter_noise(commits)] == ["3"]


def test_build_diff_respects_budget():
    """Test that the aggregate diff never exceeds its byte budget."""
    files = [
        {"filename": f"file{i}.py", "status": "modified", "patch": "x" * 900}
        for i in range(5)
    ]

    diff = build_diff(files, 2000)

    assert utf8_len(diff) <= 2000
    assert "--- file0.py (modified)" in diff
    assert "... (truncated)" in diff
    assert "file4.py" not in diff


def test_build_diff_keeps_small_patches_whole():
    """Test that patches within the budget are not truncated."""
    files = [{"filename": "a.py", "status": "added", "patch": "+a"}]

    assert build_diff(files, 2000) == "\n--- a.py (added)\n+a"


def test_subrequest_budget():
    """Test that the budget raises once spent."""
    budget = SubrequestBudget(limit=2)
    budget.consume()
    budget.consume()

    assert budget.exhausted
    with pytest.raises(SubrequestLimitError):
        budget.consume()


def test_unlimited_budget_never_exhausts():
    budget = SubrequestBudget()
    for _ in range(1000):
        budget.consume()
    assert not budget.exhausted


def test_extract_url_from_readme():
    """Test README site URL detection."""
    assert (
        extract_url_from_readme("# App\n\nLive at: https://app.example.com.\n")
        == "https://app.example.com"
    )
    assert extract_url_from_readme("No links here") is None
    assert is_valid_url("https://example.com")
    assert not is_valid_url("ftp://example.com")


@pytest.mark.asyncio
async def test_mine_commits_filters_and_counts(miner, host):
    """Test that listed commits are filtered and noise is counted."""
    host.list_commits.return_value = [
        raw_commit("1", "Merge pull request #4\n\nfrom branch"),
        raw_commit("2", "WIP: draft"),
        raw_commit("3", "Add dark mode\n\nLong body"),
    ]

    result = await miner.mine_commits("owner/repo", max_pages=50)

    assert [c.message for c in result.commits] == ["Add dark mode"]
    assert result.skipped_commits == 2
    assert result.pages_fetched == 1
    host.check_rate_limit.assert_awaited_once()


@pytest.mark.asyncio
async def test_mine_commits_pages_until_short_page(miner, host):
    """Test that paging stops at the first short page."""
    full_page = [raw_commit(f"a{i}", f"Change {i}") for i in range(100)]
    short_page = [raw_commit(f"b{i}", f"Change {i}") for i in range(10)]
    host.list_commits.side_effect = [full_page, short_page]

    result = await miner.mine_commits("owner/repo", max_pages=50)

    assert len(result.commits) == 110
    assert host.list_commits.await_count == 2


@pytest.mark.asyncio
async def test_mine_commits_respects_page_ceiling(miner, host):
    """Test that no more than max_pages pages are listed."""
    host.list_commits.return_value = [raw_commit(f"a{i}", "Change") for i in range(100)]

    result = await miner.mine_commits("owner/repo", max_pages=3)

    assert host.list_commits.await_count == 3
    assert result.pages_fetched == 3


@pytest.mark.asyncio
async def test_missing_author_defaults(miner, host):
    """Test that a commit without author data still converts."""
    host.list_commits.return_value = [{"sha": "1", "message": "Init", "author": None}]

    result = await miner.mine_commits("owner/repo", max_pages=1)

    assert result.commits[0].author == "Unknown"
    assert result.commits[0].date


@pytest.mark.asyncio
async def test_enrichment_adds_diffs(miner, host):
    """Test that enrichment attaches stats and diff."""
    host.list_commits.return_value = [raw_commit("1", "Add feature")]

    result = await miner.mine_commits("owner/repo", max_pages=1, with_diffs=True)

    commit = result.commits[0]
    assert commit.files_changed == 1
    assert commit.additions == 1
    assert "app.py" in commit.diff
    assert result.commits_with_diffs == 1
    assert not result.budget_exhausted


@pytest.mark.asyncio
async def test_enrichment_is_bounded(host):
    """Test that only the first max_commits_with_diff commits are enriched."""
    miner = GitHubMiner(host, max_commits_with_diff=3, sleep=AsyncMock())
    host.list_commits.return_value = [raw_commit(str(i), f"Change {i}") for i in range(10)]

    result = await miner.mine_commits("owner/repo", max_pages=1, with_diffs=True)

    assert host.get_commit_detail.await_count == 3
    assert result.commits_with_diffs == 3
    assert len(result.commits) == 10


@pytest.mark.asyncio
async def test_enrichment_skips_failed_commits(miner, host):
    """Test that 404s and 500s skip the commit without aborting."""
    host.list_commits.return_value = [raw_commit(str(i), f"Change {i}") for i in range(3)]
    good = await host.get_commit_detail("owner/repo", "x")
    host.get_commit_detail.side_effect = [
        StatusError("Not Found", 404),
        StatusError("Server Error", 500),
        good,
    ]

    result = await miner.mine_commits("owner/repo", max_pages=1, with_diffs=True)

    assert [c.has_diff for c in result.commits] == [False, False, True]


@pytest.mark.asyncio
async def test_enrichment_stops_on_subrequest_limit(miner, host):
    """Test that a subrequest limit stops all remaining enrichment."""
    host.list_commits.return_value = [raw_commit(str(i), f"Change {i}") for i in range(5)]
    good = await host.get_commit_detail("owner/repo", "x")
    host.get_commit_detail.reset_mock()
    host.get_commit_detail.side_effect = [
        good,
        StatusError("Too many subrequests.", 500),
        good,
    ]

    result = await miner.mine_commits("owner/repo", max_pages=1, with_diffs=True)

    assert result.budget_exhausted
    assert result.commits_with_diffs == 1
    assert host.get_commit_detail.await_count == 2
    assert len(result.commits) == 5


@pytest.mark.asyncio
async def test_enrichment_rate_limit_is_fatal(miner, host):
    """Test that a GitHub rate limit aborts the run."""
    host.list_commits.return_value = [raw_commit("1", "Change")]
    host.get_commit_detail.side_effect = StatusError("API rate limit exceeded", 403)

    with pytest.raises(RateLimitedError):
        await miner.mine_commits("owner/repo", max_pages=1, with_diffs=True)


@pytest.mark.asyncio
async def test_consecutive_failures_stop_enrichment(host):
    """Test that enrichment gives up after repeated failures."""
    miner = GitHubMiner(host, max_consecutive_failures=2, sleep=AsyncMock())
    host.list_commits.return_value = [raw_commit(str(i), f"Change {i}") for i in range(6)]
    host.get_commit_detail.side_effect = StatusError("Not Found", 404)

    await miner.mine_commits("owner/repo", max_pages=1, with_diffs=True)

    assert host.get_commit_detail.await_count == 2


@pytest.mark.asyncio
async def test_subrequest_limit_while_paging_keeps_fetched_commits(miner, host):
    """Test that a budget hit on a later page keeps earlier pages."""
    host.list_commits.side_effect = [
        [raw_commit(f"a{i}", "Change") for i in range(100)],
        SubrequestLimitError("Too many subrequests"),
    ]

    result = await miner.mine_commits("owner/repo", max_pages=50)

    assert len(result.commits) == 100
    assert result.budget_exhausted
