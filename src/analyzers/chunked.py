"""
Chunked Milestone Analysis Module.

Splits a large commit history into calendar-month chunks and runs the
milestone extractor on each chunk in turn. A failing chunk is logged and
contributes no milestones; it never aborts the run. Milestones from all
chunks are concatenated in chunk order without cross-chunk deduplication.
"""

import asyncio
from collections import defaultdict
from datetime import timezone
from typing import Awaitable, Callable, Dict, List, Optional

from analyzers.milestone_extractor import MilestoneExtractor
from analyzers.models import (
    AnalysisChunk,
    ChunkedAnalysis,
    ChunkReport,
    MilestoneSource,
)
from analyzers.payload import PayloadBuilder
from config import logger
from miners.models import Commit, sort_chronologically


def month_key(commit: Commit) -> str:
    """YYYY-MM of the commit's author date, in UTC when the date has an offset."""
    timestamp = commit.timestamp
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc)
    return timestamp.strftime("%Y-%m")


def partition_by_month(commits: List[Commit]) -> List[AnalysisChunk]:
    """
    Group commits into calendar-month chunks.

    Args:
        commits (List[Commit]): Commits in any order

    Returns:
        List[AnalysisChunk]: Chunks in ascending key order, commits oldest first
    """
    groups: Dict[str, List[Commit]] = defaultdict(list)
    for commit in commits:
        groups[month_key(commit)].append(commit)
    return [
        AnalysisChunk(key=key, commits=sort_chronologically(groups[key]))
        for key in sorted(groups)
    ]


class ChunkedOrchestrator:
    """
    Runs milestone extraction over monthly chunks, one chunk at a time.

    Chunks run sequentially so that the pause between them actually paces
    requests against the upstream API.

    Attributes:
        extractor (MilestoneExtractor): Single-call milestone extractor
        payload_builder (PayloadBuilder): Builds each chunk's payload
        chunk_delay (float): Pause between chunks in seconds
    """

    def __init__(
        self,
        extractor: MilestoneExtractor,
        payload_builder: PayloadBuilder,
        chunk_delay: float = 0.5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.extractor = extractor
        self.payload_builder = payload_builder
        self.chunk_delay = chunk_delay
        self._sleep = sleep

    async def _analyze_chunk(
        self, repo_name: str, chunk: AnalysisChunk, source: MilestoneSource
    ):
        payload = self.payload_builder.build(chunk.commits)
        if payload.excluded:
            logger.info(
                {
                    "message": "Payload limit reached, commits excluded from chunk",
                    "repository": repo_name,
                    "chunk": chunk.key,
                    "included": payload.included,
                    "excluded": payload.excluded,
                }
            )
        if payload.empty:
            return payload, []
        milestones = await self.extractor.extract(repo_name, payload, source)
        return payload, milestones

    async def analyze(
        self,
        repo_name: str,
        commits: List[Commit],
        source: MilestoneSource = MilestoneSource.TIMELINE,
    ) -> ChunkedAnalysis:
        """
        Analyze a commit set chunk by chunk and merge the milestones.

        Args:
            repo_name (str): Repository display name
            commits (List[Commit]): Full commit set, any order
            source (MilestoneSource): Tag applied to every milestone

        Returns:
            ChunkedAnalysis: Concatenated milestones and per-chunk reports

        Raises:
            Exception: The last chunk's error, only if no chunk succeeded
        """
        chunks = partition_by_month(commits)
        logger.info(
            {
                "message": "Starting chunked analysis",
                "repository": repo_name,
                "commits": len(commits),
                "chunks": len(chunks),
            }
        )

        result = ChunkedAnalysis()
        last_error: Optional[Exception] = None

        for index, chunk in enumerate(chunks):
            report = ChunkReport(key=chunk.key, commits=len(chunk.commits))
            try:
                payload, milestones = await self._analyze_chunk(repo_name, chunk, source)
                report.included_commits = payload.included
                report.milestones = len(milestones)
                result.milestones.extend(milestones)
                last_error = None
            except Exception as e:
                logger.error(
                    {
                        "message": "Chunk analysis failed, continuing with next chunk",
                        "repository": repo_name,
                        "chunk": chunk.key,
                        "error": str(e),
                    }
                )
                report.error = str(e)
                last_error = e
            result.chunks.append(report)

            if index < len(chunks) - 1:
                await self._sleep(self.chunk_delay)

        if last_error is not None and not any(c.succeeded for c in result.chunks):
            raise last_error

        logger.info(
            {
                "message": "Chunked analysis complete",
                "repository": repo_name,
                "milestones": len(result.milestones),
                "failed_chunks": result.failed_chunks,
            }
        )
        return result
