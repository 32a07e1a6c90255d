"""
Repository Milestone Analysis Module.

Runs the two paid analyses of a repository end to end:
- Quick analysis: one page of recent commits with diffs, multi-agent workflow
  with retries
- Timeline analysis: the full history, analyzed month by month with retries

Each run debits credits first, refunds them on any failure and replaces the
repository's stored milestones of its source on success.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from analyzers.chunked import ChunkedOrchestrator
from analyzers.models import (
    AnalysisRunResult,
    Milestone,
    MilestoneSource,
    WorkflowMilestone,
)
from analyzers.retry import run_with_retries
from analyzers.workflow import MultiAgentWorkflow
from config import logger
from errors import EmptyHistoryError
from ledger.credit_ledger import CreditLedger, OperationType
from miners.github_miner import GitHubMiner
from miners.models import Commit, CommitFetchResult, sort_chronologically
from storage.milestone_store import SQLiteMilestoneStore

# Length of the abbreviated SHAs shown to the model
MIN_SHA_PREFIX = 7


def normalize_date(value: Optional[str], fallback: Optional[str] = None) -> str:
    """
    Cut an ISO timestamp down to its YYYY-MM-DD date.

    Args:
        value (Optional[str]): Date reported for the milestone
        fallback (Optional[str]): Date used when value is missing or malformed

    Returns:
        str: Calendar date, today's UTC date as the last resort
    """
    for candidate in (value, fallback):
        if candidate:
            date = candidate.strip().split("T")[0][:10]
            try:
                datetime.strptime(date, "%Y-%m-%d")
                return date
            except ValueError:
                continue
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def resolve_commit(sha: Optional[str], commits: List[Commit]) -> Optional[Commit]:
    """
    Find the analyzed commit a model-reported SHA refers to.

    Payloads show abbreviated SHAs, so a reported SHA matches the commit whose
    full SHA starts with it. Prefixes that are too short or ambiguous match
    nothing.
    """
    prefix = (sha or "").strip().lower()
    if len(prefix) < MIN_SHA_PREFIX:
        return None
    matches = [commit for commit in commits if commit.sha.lower().startswith(prefix)]
    return matches[0] if len(matches) == 1 else None


def reconcile_milestones(
    milestones: List[Milestone], commits: List[Commit]
) -> List[Milestone]:
    """
    Tie milestones back to the analyzed commits.

    Reported SHAs, full or abbreviated, become the full SHA of the analyzed
    commit. A SHA that matches no commit is dropped; the milestone is kept.
    Dates fall back to the referenced commit's date.
    """
    reconciled = []
    for milestone in milestones:
        commit = resolve_commit(milestone.commit_sha, commits)
        if milestone.commit_sha and commit is None:
            logger.warning(
                {
                    "message": "Dropping unknown commit SHA from milestone",
                    "title": milestone.title,
                    "commit_sha": milestone.commit_sha,
                }
            )
        reconciled.append(
            milestone.model_copy(
                update={
                    "commit_sha": commit.sha if commit else None,
                    "milestone_date": normalize_date(
                        milestone.milestone_date, commit.date if commit else None
                    ),
                }
            )
        )
    return reconciled


def from_workflow(milestone: WorkflowMilestone) -> Milestone:
    return Milestone(
        title=milestone.title,
        description=milestone.description,
        commit_sha=milestone.commit_sha,
        milestone_date=milestone.commit_date,
        x_post_suggestion=milestone.x_post_suggestion,
        source=MilestoneSource.QUICK,
        milestone_type=milestone.milestone_type,
        screenshot=milestone.screenshot,
    )


class MilestoneAnalyzer:
    """
    End-to-end milestone analysis of GitHub repositories.

    Attributes:
        miner (GitHubMiner): Commit fetcher
        ledger (CreditLedger): Debits and refunds the runs
        milestone_store (SQLiteMilestoneStore): Persists the results
        workflow (MultiAgentWorkflow): Quick analysis pipeline
        orchestrator (ChunkedOrchestrator): Timeline analysis pipeline
    """

    def __init__(
        self,
        miner: GitHubMiner,
        ledger: CreditLedger,
        milestone_store: SQLiteMilestoneStore,
        workflow: MultiAgentWorkflow,
        orchestrator: ChunkedOrchestrator,
        max_commit_pages: int = 50,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_jitter: float = 1.0,
    ):
        self.miner = miner
        self.ledger = ledger
        self.milestone_store = milestone_store
        self.workflow = workflow
        self.orchestrator = orchestrator
        self.max_commit_pages = max_commit_pages
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_jitter = retry_jitter

    @staticmethod
    def _budget_warning(fetched: CommitFetchResult) -> Optional[str]:
        if not fetched.budget_exhausted:
            return None
        return (
            f"Subrequest limit reached. Analyzed {fetched.commits_with_diffs} commits "
            f"with diffs out of {len(fetched.commits)} total."
        )

    async def _fetch_sorted(
        self, repo_name: str, max_pages: int, with_diffs: bool
    ) -> Tuple[CommitFetchResult, List[Commit]]:
        fetched = await self.miner.mine_commits(repo_name, max_pages, with_diffs=with_diffs)
        commits = sort_chronologically(fetched.commits)
        if not commits:
            raise EmptyHistoryError(f"No commits found in repository {repo_name}")
        return fetched, commits

    async def analyze_quick(
        self,
        user_id: str,
        repository_id: str,
        repo_name: str,
        site_url: Optional[str] = None,
    ) -> AnalysisRunResult:
        """
        Quick analysis of the most recent commits with the multi-agent workflow.

        Args:
            user_id (str): Account paying for the run
            repository_id (str): Repository identifier used for storage
            repo_name (str): Full repository name, 'owner/repo'
            site_url (Optional[str]): Deployed site; looked up when omitted

        Returns:
            AnalysisRunResult: Run metadata and the stored milestones

        Raises:
            InsufficientCreditsError: If the debit is refused
            PaidOperationError: If the run failed; credits were refunded
        """
        async with self.ledger.paid_operation(
            user_id, OperationType.QUICK_ANALYZE, repository_id
        ) as debit:
            fetched, commits = await self._fetch_sorted(repo_name, 1, with_diffs=True)

            if site_url is None:
                site_url, _ = await self.miner.host.get_site_url(repo_name)

            outcome = await run_with_retries(
                lambda: self.workflow.run(commits, site_url=site_url),
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                jitter=self.retry_jitter,
                description="Quick analysis",
            )
            milestones = reconcile_milestones(
                [from_workflow(m) for m in outcome.milestones], commits
            )
            self.milestone_store.replace_milestones(
                repository_id, MilestoneSource.QUICK, milestones
            )

            result = AnalysisRunResult(
                repository_name=repo_name,
                source=MilestoneSource.QUICK,
                milestones_count=len(milestones),
                commits_analyzed=len(commits),
                commits_with_diffs=fetched.commits_with_diffs,
                total_commits=len(fetched.commits),
                screenshots_captured=outcome.details.screenshots_captured,
                credits_remaining=debit.new_balance,
                warning=self._budget_warning(fetched),
                milestones=milestones,
            )

        logger.info(
            {
                "message": "Quick analysis complete",
                "repository": repo_name,
                "milestones": result.milestones_count,
                "screenshots": result.screenshots_captured,
            }
        )
        return result

    async def analyze_timeline(
        self, user_id: str, repository_id: str, repo_name: str
    ) -> AnalysisRunResult:
        """
        Timeline analysis of the full history, chunked by month.

        Args:
            user_id (str): Account paying for the run
            repository_id (str): Repository identifier used for storage
            repo_name (str): Full repository name, 'owner/repo'

        Returns:
            AnalysisRunResult: Run metadata and the stored milestones

        Raises:
            InsufficientCreditsError: If the debit is refused
            PaidOperationError: If the run failed; credits were refunded
        """
        async with self.ledger.paid_operation(
            user_id, OperationType.TIMELINE_ANALYZE, repository_id
        ) as debit:
            fetched, commits = await self._fetch_sorted(
                repo_name, self.max_commit_pages, with_diffs=False
            )

            analysis = await run_with_retries(
                lambda: self.orchestrator.analyze(
                    repo_name, commits, MilestoneSource.TIMELINE
                ),
                max_retries=self.max_retries,
                base_delay=self.retry_base_delay,
                jitter=self.retry_jitter,
                description="Timeline analysis",
            )
            milestones = reconcile_milestones(analysis.milestones, commits)
            self.milestone_store.replace_milestones(
                repository_id, MilestoneSource.TIMELINE, milestones
            )

            result = AnalysisRunResult(
                repository_name=repo_name,
                source=MilestoneSource.TIMELINE,
                milestones_count=len(milestones),
                commits_analyzed=len(commits),
                commits_with_diffs=fetched.commits_with_diffs,
                total_commits=len(fetched.commits),
                credits_remaining=debit.new_balance,
                warning=self._budget_warning(fetched),
                milestones=milestones,
            )

        logger.info(
            {
                "message": "Timeline analysis complete",
                "repository": repo_name,
                "milestones": result.milestones_count,
                "chunks": len(analysis.chunks),
                "failed_chunks": analysis.failed_chunks,
            }
        )
        return result
