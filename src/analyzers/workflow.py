"""
Multi-Agent Analysis Workflow.

Runs the quick analysis as a short pipeline of structured agent calls:

  commits -> commit analyzer -> milestone finder -> screenshots (optional)

Failures of the two agent stages are fatal. Screenshot failures are not;
the affected milestone is returned without an image.
"""

from typing import Callable, List, Optional

from analyzers.models import (
    ChangeType,
    WorkflowDetails,
    WorkflowMilestone,
    WorkflowResult,
    WorkflowState,
)
from analyzers.plugins.commit_analyzer import CommitAnalyzerAgent
from analyzers.plugins.milestone_finder import MilestoneFinderAgent
from analyzers.plugins.screenshot import BrowserAutomation
from config import logger
from miners.models import Commit


class MultiAgentWorkflow:
    """
    State machine driving the quick-analysis agents.

    The workflow holds no per-run state, so one instance can serve
    concurrent runs.

    Attributes:
        commit_analyzer (CommitAnalyzerAgent): Stage 1 agent
        milestone_finder (MilestoneFinderAgent): Stage 2 agent
        browser_factory (Optional[Callable]): Opens one browser per capture
        max_screenshots (int): Upper bound on captures per run
    """

    def __init__(
        self,
        commit_analyzer: CommitAnalyzerAgent,
        milestone_finder: MilestoneFinderAgent,
        browser_factory: Optional[Callable[[], BrowserAutomation]] = None,
        max_screenshots: int = 2,
    ):
        self.commit_analyzer = commit_analyzer
        self.milestone_finder = milestone_finder
        self.browser_factory = browser_factory
        self.max_screenshots = max_screenshots

    @staticmethod
    def _enter(states: List[WorkflowState], state: WorkflowState) -> None:
        states.append(state)
        logger.debug({"message": "Workflow state changed", "state": state.value})

    async def _capture(
        self, site_url: str, milestone: WorkflowMilestone
    ) -> Optional[bytes]:
        browser: Optional[BrowserAutomation] = None
        try:
            browser = self.browser_factory()
            await browser.initialize(site_url)
            image = await browser.screenshot()
            logger.info({"message": "Screenshot captured", "milestone": milestone.title})
            return image
        except Exception as e:
            logger.warning(
                {
                    "message": "Screenshot failed, continuing without it",
                    "milestone": milestone.title,
                    "error": str(e),
                }
            )
            return None
        finally:
            if browser is not None:
                try:
                    await browser.cleanup()
                except Exception as e:
                    logger.warning(
                        {
                            "message": "Browser cleanup failed",
                            "milestone": milestone.title,
                            "error": str(e),
                        }
                    )

    async def run(
        self,
        commits: List[Commit],
        site_url: Optional[str] = None,
        states: Optional[List[WorkflowState]] = None,
    ) -> WorkflowResult:
        """
        Run all stages over a commit set.

        Args:
            commits (List[Commit]): Commits to analyze, optionally with diffs
            site_url (Optional[str]): Deployed site of the project, if known
            states (Optional[List[WorkflowState]]): Receives every state the
                run enters, including FAILED when a stage raises

        Returns:
            WorkflowResult: Milestones (captured ones first) and run aggregates

        Raises:
            AnalysisError: If the commit analyzer or milestone finder fails
        """
        if states is None:
            states = []
        states.append(WorkflowState.PENDING)
        logger.info({"message": "Starting analysis workflow", "commits": len(commits)})

        try:
            self._enter(states, WorkflowState.ANALYZING_COMMITS)
            analyzed = await self.commit_analyzer.analyze(commits)
            logger.info({"message": "Commit analysis complete", "analyzed": len(analyzed)})

            self._enter(states, WorkflowState.FINDING_MILESTONES)
            found = await self.milestone_finder.find(analyzed)
            logger.info({"message": "Milestone finding complete", "milestones": len(found)})
        except Exception as e:
            stage = states[-1]
            self._enter(states, WorkflowState.FAILED)
            logger.error(
                {
                    "message": "Analysis workflow failed",
                    "stage": stage.value,
                    "error": str(e),
                }
            )
            raise

        candidates = [
            m for m in found if m.should_screenshot and m.milestone_type == ChangeType.FEATURE
        ]
        captured: List[WorkflowMilestone] = []
        screenshots = 0

        if site_url and self.browser_factory is not None and candidates:
            self._enter(states, WorkflowState.CAPTURING_SCREENSHOTS)
            selected = candidates[: self.max_screenshots]
            for milestone in selected:
                image = await self._capture(site_url, milestone)
                if image is not None:
                    screenshots += 1
                captured.append(milestone.model_copy(update={"screenshot": image}))
            selected_ids = {id(m) for m in selected}
            milestones = captured + [m for m in found if id(m) not in selected_ids]
        else:
            if not site_url:
                reason = "no site URL available"
            elif self.browser_factory is None:
                reason = "no browser available"
            else:
                reason = "no feature milestones for screenshots"
            logger.info({"message": f"Skipping screenshots ({reason})"})
            milestones = list(found)

        self._enter(states, WorkflowState.DONE)
        logger.info(
            {
                "message": "Workflow complete",
                "milestones": len(milestones),
                "screenshots": screenshots,
            }
        )
        return WorkflowResult(
            milestones=milestones,
            details=WorkflowDetails(
                total_commits=len(commits),
                analyzed_commits=len(analyzed),
                milestones_found=len(found),
                screenshots_captured=screenshots,
            ),
            states=list(states),
        )
