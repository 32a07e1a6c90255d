"""
GitHub Commit Mining Module.

This module pages through a repository's commit history, drops commits that
can never be milestones and optionally enriches a bounded subset with
truncated diffs. It works within a hard ceiling on listed pages and on
outbound calls, and treats per-commit enrichment failures as skips rather
than aborting the whole run.
"""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from github import RateLimitExceededException

from config import logger
from errors import RateLimitedError, SubrequestLimitError, extract_status
from miners.base import CommitMiner
from miners.github_host import GitHubCommitHost
from miners.models import (
    Commit,
    CommitFetchResult,
    truncate_with_marker,
    utf8_len,
)


NOISE_PREFIXES = ("merge", "wip")


def first_line(message: Optional[str]) -> str:
    return (message or "").split("\n")[0]


def is_noise_message(message: str) -> bool:
    """Merge and WIP commits are never milestones."""
    return message.lower().startswith(NOISE_PREFIXES)


def filter_noise(commits: List[Commit]) -> List[Commit]:
    """
    Drop commits whose first message line starts with 'merge' or 'wip'.

    Args:
        commits (List[Commit]): Commits in any order

    Returns:
        List[Commit]: Remaining commits, order preserved
    """
    return [commit for commit in commits if not is_noise_message(commit.message)]


def build_diff(files: List[Dict], max_bytes: int) -> str:
    """
    Concatenate per-file headers and patches within an aggregate byte budget.

    The patch that crosses the budget is cut with a visible marker and no
    further files are added.

    Args:
        files (List[Dict]): Files as {filename, status, patch}
        max_bytes (int): Aggregate budget for the whole diff

    Returns:
        str: Diff summary whose UTF-8 size never exceeds max_bytes
    """
    parts: List[str] = []
    used = 0
    for file in files:
        separator = 1 if parts else 0
        header = f"\n--- {file.get('filename')} ({file.get('status')})\n"
        room = max_bytes - used - separator - utf8_len(header)
        if room <= 0:
            break

        patch = file.get("patch") or ""
        truncated = utf8_len(patch) > room
        part = header + truncate_with_marker(patch, room)
        parts.append(part)
        used += separator + utf8_len(part)
        if truncated:
            break
    return "\n".join(parts)


def is_subrequest_limit(error: BaseException) -> bool:
    if isinstance(error, SubrequestLimitError):
        return True
    message = str(error).lower()
    return "too many subrequests" in message or (
        extract_status(error) == 500 and "subrequest" in message
    )


def is_rate_limit(error: BaseException) -> bool:
    if isinstance(error, (RateLimitedError, RateLimitExceededException)):
        return True
    return extract_status(error) == 429 or "rate limit" in str(error).lower()


class GitHubMiner(CommitMiner):
    """
    GitHubMiner is responsible for mining commit history from GitHub repositories.
    It lists commits page by page, filters noise and enriches the newest
    commits with diffs, transforming them into Pydantic models.
    """

    def __init__(
        self,
        host: GitHubCommitHost,
        max_commits_with_diff: int = 40,
        max_diff_bytes: int = 2000,
        diff_fetch_delay: float = 0.1,
        max_consecutive_failures: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize GitHub miner with its host client and limits.

        Args:
            host (GitHubCommitHost): Installation-scoped API client.
            max_commits_with_diff (int): Commits enriched with diffs per run.
            max_diff_bytes (int): Aggregate diff budget per commit.
            diff_fetch_delay (float): Pause between diff fetches in seconds.
            max_consecutive_failures (int): Failed diff fetches in a row before giving up.
            sleep (Callable): Awaitable sleep, replaceable in tests.
        """
        self.host = host
        self.max_commits_with_diff = max_commits_with_diff
        self.max_diff_bytes = max_diff_bytes
        self.diff_fetch_delay = diff_fetch_delay
        self.max_consecutive_failures = max_consecutive_failures
        self._sleep = sleep

    def _to_commit(self, raw: Dict) -> Optional[Commit]:
        """Convert a raw listed commit to a model, None for noise commits."""
        message = first_line(raw.get("message"))
        if is_noise_message(message):
            return None

        author = raw.get("author") or {}
        return Commit(
            sha=raw["sha"],
            message=message,
            date=author.get("date") or datetime.now(timezone.utc).isoformat(),
            author=author.get("name") or "Unknown",
        )

    async def _fetch_diff(self, repo_name: str, commit: Commit) -> Optional[Commit]:
        """
        Fetch one commit's patches.

        Returns:
            Optional[Commit]: Enriched copy, None when the diff was skipped

        Raises:
            SubrequestLimitError: If the outbound call budget is spent
            RateLimitedError: If GitHub refuses further calls
        """
        try:
            detail = await self.host.get_commit_detail(repo_name, commit.sha)
        except Exception as e:
            if is_subrequest_limit(e):
                raise SubrequestLimitError(str(e)) from e
            if is_rate_limit(e):
                logger.warning(
                    {
                        "message": "GitHub API rate limit hit, stopping diff fetches",
                        "repository": repo_name,
                    }
                )
                raise RateLimitedError(f"GitHub API rate limit hit: {e}") from e

            logger.warning(
                {
                    "message": "Failed to fetch diff for commit, continuing without diff",
                    "repository": repo_name,
                    "sha": commit.short_sha,
                    "status": extract_status(e),
                    "error": str(e),
                }
            )
            return None

        files = detail.get("files") or []
        stats = detail.get("stats") or {}
        diff = build_diff(files, self.max_diff_bytes) if files else None
        return commit.model_copy(
            update={
                "files_changed": len(files),
                "additions": stats.get("additions") or 0,
                "deletions": stats.get("deletions") or 0,
                "diff": diff or None,
            }
        )

    async def _enrich(self, repo_name: str, commits: List[Commit]) -> bool:
        """
        Replace the first commits with diff-enriched copies, in place.

        Returns:
            bool: True if the outbound call budget ran out
        """
        targets = min(len(commits), self.max_commits_with_diff)
        consecutive_failures = 0

        for index in range(targets):
            try:
                enriched = await self._fetch_diff(repo_name, commits[index])
            except SubrequestLimitError:
                logger.warning(
                    {
                        "message": "Hit subrequest limit, stopping diff fetches",
                        "repository": repo_name,
                        "commits_with_diffs": len([c for c in commits if c.has_diff]),
                    }
                )
                return True

            if enriched is not None and enriched.has_diff:
                commits[index] = enriched
                consecutive_failures = 0
            else:
                if enriched is not None:
                    commits[index] = enriched
                consecutive_failures += 1
                if consecutive_failures >= self.max_consecutive_failures:
                    logger.warning(
                        {
                            "message": "Stopping diff fetches after consecutive failures",
                            "repository": repo_name,
                            "consecutive_failures": consecutive_failures,
                        }
                    )
                    break

            if index < targets - 1:
                await self._sleep(self.diff_fetch_delay)

        return False

    async def mine_commits(
        self, repo_name: str, max_pages: int, with_diffs: bool = False
    ) -> CommitFetchResult:
        """
        Extract filtered commits from a specified GitHub repository.

        Args:
            repo_name (str): The full name of the repository (e.g., 'owner/repo').
            max_pages (int): Hard ceiling on listed pages.
            with_diffs (bool): Enrich the newest commits with truncated diffs.

        Returns:
            CommitFetchResult: Commits in the order GitHub returned them.

        Raises:
            RateLimitedError: Raised if GitHub refuses further calls.
        """
        logger.info(
            {
                "message": "Starting commit mining",
                "repository": repo_name,
                "max_pages": max_pages,
                "with_diffs": with_diffs,
            }
        )
        result = CommitFetchResult(repository_name=repo_name)

        try:
            await self.host.check_rate_limit("Commit mining")

            for page in range(1, max_pages + 1):
                try:
                    data = await self.host.list_commits(repo_name, page)
                except SubrequestLimitError:
                    if page == 1:
                        raise
                    logger.warning(
                        {
                            "message": "Hit subrequest limit while listing commits",
                            "repository": repo_name,
                            "pages": result.pages_fetched,
                        }
                    )
                    result.budget_exhausted = True
                    break
                result.pages_fetched = page
                if not data:
                    break

                for raw in data:
                    commit = self._to_commit(raw)
                    if commit is None:
                        result.skipped_commits += 1
                    else:
                        result.commits.append(commit)

                # A short page means the end of history
                if len(data) < self.host.per_page:
                    break

            logger.info(
                {
                    "message": "Fetched commits",
                    "repository": repo_name,
                    "commits": len(result.commits),
                    "skipped": result.skipped_commits,
                    "pages": result.pages_fetched,
                }
            )

            if with_diffs and result.commits:
                result.budget_exhausted = await self._enrich(repo_name, result.commits)
                logger.info(
                    {
                        "message": "Diff enrichment finished",
                        "repository": repo_name,
                        "commits_with_diffs": result.commits_with_diffs,
                        "budget_exhausted": result.budget_exhausted,
                    }
                )

            return result

        except Exception as e:
            logger.error(
                {
                    "message": "Commit mining failed",
                    "repository": repo_name,
                    "error": str(e),
                }
            )
            raise
