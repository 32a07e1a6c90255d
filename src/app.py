"""
Main Application Entry Point.

This module serves as the primary entry point for the milestone analysis system.
It wires the analysis components from settings and runs one analysis per
configured repository:
- GitHub commit fetching
- Credit debit and refund
- Quick (multi-agent) or timeline (chunked) milestone analysis
- Milestone storage

Failed repository analyses are logged but don't stop execution.
"""

import asyncio
from typing import List, Optional

import tiktoken
from openai import AsyncOpenAI

from analyzers.chunked import ChunkedOrchestrator
from analyzers.milestone_extractor import MilestoneExtractor
from analyzers.models import AnalysisRunResult
from analyzers.payload import PayloadBuilder
from analyzers.plugins.commit_analyzer import CommitAnalyzerAgent
from analyzers.plugins.milestone_finder import MilestoneFinderAgent
from analyzers.rate_limiter import RequestRateLimiter
from analyzers.repository import MilestoneAnalyzer
from analyzers.workflow import MultiAgentWorkflow
from config import Settings, logger, settings
from errors import AnalysisError, sanitize_error
from ledger.credit_ledger import CreditLedger
from miners.github_host import GitHubCommitHost, SubrequestBudget
from miners.github_miner import GitHubMiner
from storage.credit_store import SQLiteCreditStore
from storage.milestone_store import SQLiteMilestoneStore


def repo_name_from_url(url: str) -> str:
    """
    Turn a repository URL or 'owner/repo' into 'owner/repo'.

    Args:
        url (str): e.g. https://github.com/owner/repo.git

    Returns:
        str: Full repository name
    """
    name = url.strip().rstrip("/")
    if name.endswith(".git"):
        name = name[: -len(".git")]
    parts = [part for part in name.split("/") if part]
    if len(parts) < 2:
        raise ValueError(f"Not a repository URL: {url}")
    return "/".join(parts[-2:])


def build_analyzer(
    config: Settings, credit_store: SQLiteCreditStore, milestone_store: SQLiteMilestoneStore
) -> MilestoneAnalyzer:
    """Wire the analysis components from settings."""
    host = GitHubCommitHost(
        config.github_token.get_secret_value(),
        per_page=config.commits_per_page,
        budget=SubrequestBudget(config.max_subrequests),
    )
    miner = GitHubMiner(
        host,
        max_commits_with_diff=config.max_commits_with_diff,
        max_diff_bytes=config.max_diff_bytes,
        diff_fetch_delay=config.diff_fetch_delay,
    )

    client = AsyncOpenAI(api_key=config.openai_api_key.get_secret_value())
    encoding = tiktoken.get_encoding(config.openai_encoding_name)
    limiter = RequestRateLimiter(config.openai_max_requests_per_minute, config.openai_period)
    llm_options = dict(
        model=config.openai_llm_model,
        timeout=config.openai_timeout,
        temperature=config.openai_temperature,
        max_tokens=config.openai_max_tokens,
        encoding=encoding,
        rate_limiter=limiter,
    )

    workflow = MultiAgentWorkflow(
        CommitAnalyzerAgent(client, **llm_options),
        MilestoneFinderAgent(client, **llm_options),
        max_screenshots=config.max_screenshots,
    )
    orchestrator = ChunkedOrchestrator(
        MilestoneExtractor(client, **llm_options),
        PayloadBuilder(
            max_commits=config.payload_max_commits,
            max_diff_bytes=config.payload_max_diff_bytes,
            max_payload_bytes=config.payload_max_bytes,
        ),
        chunk_delay=config.chunk_delay,
    )

    return MilestoneAnalyzer(
        miner,
        CreditLedger(credit_store),
        milestone_store,
        workflow,
        orchestrator,
        max_commit_pages=config.max_commit_pages,
        max_retries=config.max_retries,
        retry_base_delay=config.retry_base_delay,
        retry_jitter=config.retry_jitter,
    )


async def analyze_repository(
    analyzer: MilestoneAnalyzer, config: Settings, url: str
) -> Optional[AnalysisRunResult]:
    """Analyze one configured repository, logging instead of raising on failure."""
    try:
        repo_name = repo_name_from_url(url)
    except ValueError as e:
        logger.error({"message": "Skipping invalid repository URL", "url": url, "error": str(e)})
        return None

    try:
        if config.analysis_mode == "timeline":
            return await analyzer.analyze_timeline(config.user_id, repo_name, repo_name)
        return await analyzer.analyze_quick(config.user_id, repo_name, repo_name)
    except AnalysisError as e:
        message, status = sanitize_error(e)
        logger.error(
            {
                "message": "Repository analysis failed",
                "repository": repo_name,
                "status": status,
                "error": message,
            }
        )
        return None


async def main() -> None:
    """
    Execute the main application workflow.

    Performs the following steps:
    1. Opens the credit and milestone stores
    2. Grants the welcome bonus to a new account
    3. Analyzes every configured repository in turn
    4. Logs the run results
    """
    logger.info({"message": "Starting milestone analysis", "mode": settings.analysis_mode})

    credit_store = SQLiteCreditStore(settings.db_path)
    milestone_store = SQLiteMilestoneStore(settings.db_path)
    try:
        analyzer = build_analyzer(settings, credit_store, milestone_store)

        if analyzer.ledger.get_balance(settings.user_id) is None:
            analyzer.ledger.grant_welcome_bonus(settings.user_id)

        results: List[AnalysisRunResult] = []
        for url in settings.repository_urls:
            result = await analyze_repository(analyzer, settings, url)
            if result is None:
                continue
            results.append(result)
            logger.info(
                {
                    "message": "Analysis result",
                    "repository": result.repository_name,
                    "milestones": result.milestones_count,
                    "commits_analyzed": result.commits_analyzed,
                    "credits_remaining": result.credits_remaining,
                    "warning": result.warning,
                }
            )

        logger.info(
            {
                "message": "application finished",
                "repositories": len(settings.repository_urls),
                "succeeded": len(results),
            }
        )
    finally:
        credit_store.close()
        milestone_store.close()


if __name__ == "__main__":
    logger.info("Starting application ...")
    asyncio.run(main())
