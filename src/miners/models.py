"""
Commit Mining Data Models.

Defines the commit records produced by repository miners.
Uses Pydantic for validation and serialization.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


TRUNCATION_MARKER = "\n... (truncated)"


def utf8_len(text: str) -> int:
    return len(text.encode("utf-8"))


def truncate_utf8(text: str, max_bytes: int) -> str:
    """
    Cut text to at most max_bytes of UTF-8 without splitting a character.

    Args:
        text (str): Text to cut
        max_bytes (int): Byte budget, negative budgets count as zero

    Returns:
        str: Prefix of text whose encoding fits the budget
    """
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[: max(max_bytes, 0)].decode("utf-8", errors="ignore")


def truncate_with_marker(text: str, max_bytes: int) -> str:
    """Cut text so that text plus a visible truncation marker fits max_bytes."""
    if utf8_len(text) <= max_bytes:
        return text
    if max_bytes <= utf8_len(TRUNCATION_MARKER):
        return truncate_utf8(text, max_bytes)
    return truncate_utf8(text, max_bytes - utf8_len(TRUNCATION_MARKER)) + TRUNCATION_MARKER


class Commit(BaseModel):
    """One revision under analysis, first message line only."""

    sha: str
    message: str
    date: str  # ISO-8601 author date
    author: str
    files_changed: Optional[int] = None
    additions: Optional[int] = None
    deletions: Optional[int] = None
    diff: Optional[str] = None

    @property
    def short_sha(self) -> str:
        return self.sha[:7]

    @property
    def has_diff(self) -> bool:
        return bool(self.diff)

    @property
    def impact(self) -> int:
        """Lines and files touched, zero when the commit was never enriched."""
        return (self.files_changed or 0) + (self.additions or 0) + (self.deletions or 0)

    @property
    def timestamp(self) -> datetime:
        return datetime.fromisoformat(self.date.replace("Z", "+00:00"))


class CommitFetchResult(BaseModel):
    """Commits fetched for one repository plus enrichment bookkeeping."""

    repository_name: str
    commits: List[Commit] = Field(default_factory=list)
    pages_fetched: int = 0
    skipped_commits: int = 0
    budget_exhausted: bool = False

    @property
    def commits_with_diffs(self) -> int:
        return len([commit for commit in self.commits if commit.has_diff])


def sort_chronologically(commits: List[Commit]) -> List[Commit]:
    """
    Sort commits oldest first by author date.

    Args:
        commits (List[Commit]): Commits in any order

    Returns:
        List[Commit]: New list ordered by date ascending
    """
    return sorted(commits, key=lambda commit: commit.timestamp)
