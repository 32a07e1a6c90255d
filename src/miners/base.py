"""
Abstract Base Class for Commit Miners.

Defines the interface for commit history mining implementations.
All commit miners (GitHub, GitLab, etc.) should implement this interface.
"""

from abc import ABC, abstractmethod

from miners.models import CommitFetchResult


class CommitMiner(ABC):
    """
    Abstract base class for commit miners.

    Defines the contract for mining commit history from different sources.
    Implementations should handle:
    - Paging through the commit history
    - Dropping commits that can never be milestones
    - Optional diff enrichment within the outbound call budget
    """

    @abstractmethod
    async def mine_commits(
        self, repo_name: str, max_pages: int, with_diffs: bool = False
    ) -> CommitFetchResult:
        """
        Extract filtered commits from a repository.

        Args:
            repo_name (str): Full repository name/identifier
            max_pages (int): Hard ceiling on listed pages
            with_diffs (bool): Enrich the first commits with file patches

        Returns:
            CommitFetchResult: Commits in host order, not sorted

        Raises:
            RateLimitedError: If the host refuses further calls
        """
        pass
