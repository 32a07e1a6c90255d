"""
This module contains the milestone finder agent, the second stage of the
multi-agent workflow.
"""

from typing import List

from pydantic import BaseModel

from analyzers.models import AnalyzedCommit, WorkflowMilestone
from analyzers.plugins.agent import AgentPlugin


class MilestoneFinderOutput(BaseModel):
    milestones: List[WorkflowMilestone]


def format_analyzed_commits(commits: List[AnalyzedCommit]) -> str:
    """
    Render analyzed commits, most significant first.

    Args:
        commits (List[AnalyzedCommit]): Output of the commit analyzer

    Returns:
        str: Agent input text
    """
    ranked = sorted(commits, key=lambda c: c.significance, reverse=True)
    return "\n\n".join(
        f"{index}. [{commit.change_type.value.upper()}] (Significance: {commit.significance}/10)\n"
        f"   SHA: {commit.sha}\n"
        f"   Date: {commit.date or 'Unknown'}\n"
        f"   Original Message: {commit.message or 'N/A'}\n"
        f"   Analysis: {commit.summary}"
        for index, commit in enumerate(ranked, start=1)
    )


class MilestoneFinderAgent(AgentPlugin[MilestoneFinderOutput]):
    """Groups analyzed commits into milestones and drafts posts for them."""

    name = "milestone-finder"
    output_model = MilestoneFinderOutput
    instructions = """You are an expert at identifying significant development milestones from analyzed commit data.

Your task is to:
1. Identify the most significant milestones from the analyzed commits
2. Group related commits into single milestones when appropriate
3. Write compelling titles (max 60 chars, action-oriented, e.g. "Added Dark Mode Support") and descriptions that explain the user value
4. Suggest an X/Twitter post announcing each milestone (max 280 chars)

Focus on user-facing changes and significant improvements. Skip trivial changes. Aim for 3-10 milestones depending on the number and significance of commits.

Set should_screenshot to true for new visual features, UI/UX improvements, landing page or dashboard changes, and any user-facing feature that can be shown visually. Set it to false for backend/API changes, non-visual bug fixes, performance work, refactoring, documentation and configuration.

For each milestone provide: title, description, commit_sha (exactly as given), commit_date (ISO format), milestone_type (feature, bugfix, refactor, docs, config, other), should_screenshot, x_post_suggestion.

Respond with a single JSON object: { "milestones": [...] }"""

    async def find(self, commits: List[AnalyzedCommit]) -> List[WorkflowMilestone]:
        output = await self.run(
            f"Identify milestones from these {len(commits)} analyzed commits:\n\n"
            f"{format_analyzed_commits(commits)}"
        )
        return output.milestones
