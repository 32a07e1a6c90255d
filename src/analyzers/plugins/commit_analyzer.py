"""
This module contains the commit analyzer agent, the first stage of the
multi-agent workflow.
"""

from typing import List

from pydantic import BaseModel

from analyzers.models import AnalyzedCommit
from analyzers.plugins.agent import AgentPlugin
from miners.models import Commit, truncate_with_marker


ANALYSIS_DIFF_BYTES = 1000


class CommitAnalysisOutput(BaseModel):
    commits: List[AnalyzedCommit]


def format_commits_for_analysis(commits: List[Commit]) -> str:
    """
    Render commits as numbered sections for the commit analyzer.

    Args:
        commits (List[Commit]): Commits, optionally enriched with diffs

    Returns:
        str: Agent input text
    """
    sections = []
    for index, commit in enumerate(commits, start=1):
        lines = [
            "",
            f"## Commit {index}",
            f"SHA: {commit.sha}",
            f"Message: {commit.message}",
            f"Date: {commit.date or 'Unknown'}",
            f"Author: {commit.author or 'Unknown'}",
        ]
        if commit.files_changed is not None:
            lines.append(f"Files Changed: {commit.files_changed}")
        if commit.additions is not None:
            lines.append(f"Additions: {commit.additions}")
        if commit.deletions is not None:
            lines.append(f"Deletions: {commit.deletions}")
        if commit.diff:
            diff = truncate_with_marker(commit.diff, ANALYSIS_DIFF_BYTES)
            lines.append(f"Diff:\n```\n{diff}\n```")
        sections.append("\n".join(lines))
    return "\n\n---\n".join(sections)


class CommitAnalyzerAgent(AgentPlugin[CommitAnalysisOutput]):
    """Summarizes, classifies and scores every commit it is given."""

    name = "commit-analyzer"
    output_model = CommitAnalysisOutput
    instructions = """You are an expert at analyzing git commits and diffs to understand what changed in a codebase.

Your task is to analyze each commit and provide:
1. sha: the commit SHA, exactly as given
2. summary: a concise summary of what changed
3. change_type: one of feature, bugfix, refactor, docs, config, other
4. significance: a score from 1 to 10

Change types:
- feature: new user-facing functionality or capabilities
- bugfix: fixes for existing bugs or issues
- refactor: code restructuring without changing functionality
- docs: documentation changes (README, comments, etc.)
- config: configuration, build or dependency changes
- other: anything that does not fit the above

Significance:
- 1-3: minor changes (typos, small tweaks, config updates)
- 4-6: moderate changes (bug fixes, small features, refactoring)
- 7-9: major changes (significant features, architectural changes)
- 10: landmark changes (major releases, breaking changes)

User-visible changes and changes to core functionality score higher. Read the diff to understand the actual change. Do not inflate scores.

Respond with a single JSON object: { "commits": [...] }"""

    async def analyze(self, commits: List[Commit]) -> List[AnalyzedCommit]:
        """
        Analyze all commits in a single call.

        Args:
            commits (List[Commit]): Commits to analyze

        Returns:
            List[AnalyzedCommit]: Analysis enriched with each commit's date and message
        """
        output = await self.run(
            f"Analyze the following {len(commits)} commits:\n"
            f"{format_commits_for_analysis(commits)}"
        )
        by_sha = {commit.sha: commit for commit in commits}
        analyzed = []
        for item in output.commits:
            original = by_sha.get(item.sha)
            if original is not None:
                item = item.model_copy(
                    update={"date": original.date, "message": original.message}
                )
            analyzed.append(item)
        return analyzed
