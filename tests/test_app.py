"""
Tests for the application entry point helpers.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from analyzers.repository import MilestoneAnalyzer
from app import analyze_repository, repo_name_from_url
from errors import ErrorKind, PaidOperationError


@pytest.fixture
def analyzer():
    analyzer = Mock(spec=MilestoneAnalyzer)
    analyzer.analyze_quick = AsyncMock(return_value="result")
    analyzer.analyze_timeline = AsyncMock(return_value="timeline result")
    return analyzer


@pytest.fixture
def config():
    return Mock(analysis_mode="quick", user_id="user")


@pytest.mark.parametrize(
    "url, name",
    [
        ("https://github.com/owner/repo", "owner/repo"),
        ("https://github.com/owner/repo.git", "owner/repo"),
        ("https://github.com/owner/repo/", "owner/repo"),
        ("owner/repo", "owner/repo"),
    ],
)
def test_repo_name_from_url(url, name):
    assert repo_name_from_url(url) == name


@pytest.mark.asyncio
async def test_invalid_url_is_skipped(analyzer, config):
    """Test that a malformed repository URL is logged and skipped."""
    result = await analyze_repository(analyzer, config, "not-a-repository")

    assert result is None
    analyzer.analyze_quick.assert_not_awaited()


@pytest.mark.asyncio
async def test_analysis_mode_selects_pipeline(analyzer, config):
    assert await analyze_repository(analyzer, config, "owner/repo") == "result"
    analyzer.analyze_quick.assert_awaited_once_with("user", "owner/repo", "owner/repo")

    config.analysis_mode = "timeline"
    assert await analyze_repository(analyzer, config, "owner/repo") == "timeline result"


@pytest.mark.asyncio
async def test_failed_analysis_returns_none(analyzer, config):
    analyzer.analyze_quick.side_effect = PaidOperationError(
        "Repository not found", 404, ErrorKind.CLIENT_ERROR
    )

    assert await analyze_repository(analyzer, config, "owner/repo") is None
