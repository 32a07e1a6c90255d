"""
GitHub Host Client Module.

Thin asynchronous wrapper over PyGithub exposing only the calls the commit
miner needs. Every outbound call is charged against an optional subrequest
budget so that environments with a hard cap on outbound calls stop cleanly
instead of failing half-way through a request.
"""

import asyncio
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from github import Auth, Github, GithubException
from github.Repository import Repository

from config import logger
from errors import RateLimitedError, SubrequestLimitError


README_URL_PATTERNS = [
    re.compile(r"live\s*(?:at)?:?\s*(https?://[^\s)>\]]+)", re.IGNORECASE),
    re.compile(r"demo\s*(?:at)?:?\s*(https?://[^\s)>\]]+)", re.IGNORECASE),
    re.compile(r"website:?\s*(https?://[^\s)>\]]+)", re.IGNORECASE),
    re.compile(r"deployed\s*(?:at|to)?:?\s*(https?://[^\s)>\]]+)", re.IGNORECASE),
]


class SubrequestBudget:
    """
    Counts outbound calls against a fixed ceiling.

    Attributes:
        limit (Optional[int]): Maximum number of calls, None for unlimited
        used (int): Calls made so far
    """

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit
        self.used = 0

    @property
    def exhausted(self) -> bool:
        return self.limit is not None and self.used >= self.limit

    def consume(self) -> None:
        """
        Charge one outbound call.

        Raises:
            SubrequestLimitError: If the budget is already spent
        """
        if self.exhausted:
            raise SubrequestLimitError(
                f"Too many subrequests: budget of {self.limit} calls spent"
            )
        self.used += 1


def is_valid_url(url: Optional[str]) -> bool:
    return bool(url) and bool(re.match(r"^https?://[^\s/$.?#].[^\s]*$", url))


def extract_url_from_readme(content: str) -> Optional[str]:
    """
    Find a deployed site URL announced in a README.

    Args:
        content (str): README text

    Returns:
        Optional[str]: First URL following a live/demo/website marker
    """
    for pattern in README_URL_PATTERNS:
        match = pattern.search(content)
        if match and is_valid_url(match.group(1)):
            return match.group(1).rstrip(".,")
    return None


class GitHubCommitHost:
    """
    Installation-scoped access to the GitHub REST API.

    The token is supplied by the installation token provider; this class never
    mints tokens itself. PyGithub is synchronous, so each call runs in a worker
    thread and the event loop stays free.
    """

    def __init__(
        self,
        github_token: str,
        per_page: int = 100,
        budget: Optional[SubrequestBudget] = None,
    ):
        """Initialize the host client.

        Args:
            github_token (str): Installation access token
            per_page (int): Page size for commit listings
            budget (Optional[SubrequestBudget]): Outbound call budget
        """
        self.github = Github(auth=Auth.Token(github_token), per_page=per_page)
        self.per_page = per_page
        self.budget = budget or SubrequestBudget()
        self._repos: Dict[str, Repository] = {}

    def _repo(self, repo_name: str) -> Repository:
        if repo_name not in self._repos:
            self.budget.consume()
            self._repos[repo_name] = self.github.get_repo(repo_name)
        return self._repos[repo_name]

    def _check_rate_limit(self, check_name: str) -> None:
        self.budget.consume()
        remaining, limit = self.github.rate_limiting
        reset_time = datetime.fromtimestamp(
            self.github.rate_limiting_resettime, tz=timezone.utc
        )
        now = datetime.now(timezone.utc)

        logger.info(
            {
                "message": f"{check_name} API rate limit status",
                "remaining_points": remaining,
                "total_points": limit,
                "reset_time": reset_time.isoformat(),
            }
        )

        # If less than 10% of rate limit remains, log a warning
        if 0 < remaining < limit * 0.1:
            logger.warning(
                {
                    "message": "GitHub API rate limit running low",
                    "remaining_points": remaining,
                    "reset_time": reset_time.isoformat(),
                }
            )

        if remaining == 0:
            wait_time = (reset_time - now).total_seconds()
            logger.critical(
                {
                    "message": "GitHub API rate limit exhausted",
                    "reset_time": reset_time.isoformat(),
                    "wait_time_seconds": wait_time,
                }
            )
            raise RateLimitedError(
                f"GitHub API rate limit exhausted. Resets in {wait_time/60:.1f} minutes"
            )

    def _list_commits(self, repo_name: str, page: int) -> List[Dict]:
        repo = self._repo(repo_name)
        self.budget.consume()
        # PyGithub pages are zero-based, the REST API's are one-based
        commits = repo.get_commits().get_page(page - 1)
        return [
            {
                "sha": commit.sha,
                "message": commit.commit.message,
                "author": {
                    "name": commit.commit.author.name if commit.commit.author else None,
                    "date": (
                        commit.commit.author.date.isoformat()
                        if commit.commit.author and commit.commit.author.date
                        else None
                    ),
                },
            }
            for commit in commits
        ]

    def _get_commit_detail(self, repo_name: str, sha: str) -> Dict:
        repo = self._repo(repo_name)
        self.budget.consume()
        commit = repo.get_commit(sha)
        return {
            "files": [
                {"filename": f.filename, "status": f.status, "patch": f.patch}
                for f in commit.files
            ],
            "stats": {
                "additions": commit.stats.additions,
                "deletions": commit.stats.deletions,
            },
        }

    def _get_site_url(self, repo_name: str) -> Tuple[Optional[str], Optional[str]]:
        repo = self._repo(repo_name)
        if is_valid_url(repo.homepage):
            return repo.homepage, "homepage"

        try:
            self.budget.consume()
            readme = repo.get_readme().decoded_content.decode("utf-8", errors="ignore")
        except GithubException:
            return None, None
        url = extract_url_from_readme(readme)
        return (url, "readme") if url else (None, None)

    async def check_rate_limit(self, check_name: str = "") -> None:
        """
        Log the GitHub API rate limit status.

        Raises:
            RateLimitedError: If the rate limit is exhausted
        """
        await asyncio.to_thread(self._check_rate_limit, check_name)

    async def list_commits(self, repo_name: str, page: int) -> List[Dict]:
        """
        List one page of commits, newest first.

        Args:
            repo_name (str): Repository in 'owner/repo' form
            page (int): One-based page number

        Returns:
            List[Dict]: Raw commits as {sha, message, author{name, date}}
        """
        return await asyncio.to_thread(self._list_commits, repo_name, page)

    async def get_commit_detail(self, repo_name: str, sha: str) -> Dict:
        """
        Fetch file-level patches and stats for one commit.

        Returns:
            Dict: {files[{filename, status, patch}], stats{additions, deletions}}
        """
        return await asyncio.to_thread(self._get_commit_detail, repo_name, sha)

    async def get_site_url(self, repo_name: str) -> Tuple[Optional[str], Optional[str]]:
        """
        Find the deployed site of a repository.

        Checks the repository homepage field first, then README patterns.

        Returns:
            Tuple[Optional[str], Optional[str]]: URL and where it was found
        """
        try:
            url, source = await asyncio.to_thread(self._get_site_url, repo_name)
        except (GithubException, SubrequestLimitError) as e:
            logger.warning(
                {
                    "message": "Failed to look up site URL",
                    "repository": repo_name,
                    "error": str(e),
                }
            )
            return None, None
        if url:
            logger.info(
                {"message": "Found site URL", "repository": repo_name, "source": source}
            )
        return url, source
