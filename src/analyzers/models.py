"""
Milestone Analysis Data Models.

Defines the records produced by the milestone extractor, the chunked
orchestrator and the multi-agent workflow.
Uses Pydantic for validation and serialization.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from miners.models import Commit


class ChangeType(Enum):
    """
    Classification of commit changes.

    Attributes:
        FEATURE: New user-facing functionality
        BUGFIX: Fixes for existing bugs
        REFACTOR: Restructuring without behaviour change
        DOCS: Documentation changes
        CONFIG: Configuration, build or dependency changes
        OTHER: Uncategorized changes
    """

    FEATURE = "feature"
    BUGFIX = "bugfix"
    REFACTOR = "refactor"
    DOCS = "docs"
    CONFIG = "config"
    OTHER = "other"


class MilestoneSource(Enum):
    """Analysis run that produced a milestone."""

    QUICK = "quick"
    TIMELINE = "timeline"


class Milestone(BaseModel):
    """A significant development event worth sharing."""

    title: str = Field(max_length=60)
    description: str = ""
    commit_sha: Optional[str] = None
    milestone_date: Optional[str] = None
    x_post_suggestion: str = Field(default="", max_length=280)
    source: Optional[MilestoneSource] = None
    milestone_type: Optional[ChangeType] = None
    screenshot: Optional[bytes] = None

    @field_validator("title", mode="before")
    def clip_title(cls, v):
        return v[:60] if isinstance(v, str) else v

    @field_validator("x_post_suggestion", mode="before")
    def clip_post(cls, v):
        if v is None:
            return ""
        return v[:280] if isinstance(v, str) else v

    @field_validator("description", mode="before")
    def default_description(cls, v):
        return "" if v is None else v


class AnalysisChunk(BaseModel):
    """Commits of one calendar month, keyed YYYY-MM."""

    key: str
    commits: List[Commit]


class ChunkReport(BaseModel):
    """Outcome of analyzing one chunk."""

    key: str
    commits: int
    included_commits: int = 0
    milestones: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ChunkedAnalysis(BaseModel):
    """Union of milestones from all chunks plus per-chunk reports."""

    milestones: List[Milestone] = Field(default_factory=list)
    chunks: List[ChunkReport] = Field(default_factory=list)

    @property
    def chunk_keys(self) -> List[str]:
        return [chunk.key for chunk in self.chunks]

    @property
    def failed_chunks(self) -> int:
        return len([chunk for chunk in self.chunks if not chunk.succeeded])


class AnalyzedCommit(BaseModel):
    """Commit classified by the commit analyzer stage."""

    sha: str
    summary: str
    change_type: ChangeType
    significance: int = Field(ge=1, le=10)
    date: Optional[str] = None
    message: Optional[str] = None


class WorkflowMilestone(BaseModel):
    """Milestone synthesized by the milestone finder stage."""

    title: str
    description: str
    commit_sha: str
    commit_date: str
    milestone_type: ChangeType = ChangeType.OTHER
    should_screenshot: bool = False
    x_post_suggestion: str = ""
    screenshot: Optional[bytes] = None

    @field_validator("title", mode="before")
    def clip_title(cls, v):
        return v[:60] if isinstance(v, str) else v

    @field_validator("x_post_suggestion", mode="before")
    def clip_post(cls, v):
        if v is None:
            return ""
        return v[:280] if isinstance(v, str) else v


class WorkflowState(Enum):
    """States of one multi-agent analysis run."""

    PENDING = "pending"
    ANALYZING_COMMITS = "analyzing_commits"
    FINDING_MILESTONES = "finding_milestones"
    CAPTURING_SCREENSHOTS = "capturing_screenshots"
    DONE = "done"
    FAILED = "failed"


class WorkflowDetails(BaseModel):
    """Aggregates reported at the end of a workflow run."""

    total_commits: int
    analyzed_commits: int
    milestones_found: int
    screenshots_captured: int


class WorkflowResult(BaseModel):
    """Milestones and aggregates of a multi-agent workflow run."""

    milestones: List[WorkflowMilestone]
    details: WorkflowDetails
    states: List[WorkflowState] = Field(default_factory=list)


class AnalysisRunResult(BaseModel):
    """Run metadata returned to the caller of a paid analysis."""

    repository_name: str
    source: MilestoneSource
    milestones_count: int
    commits_analyzed: int
    commits_with_diffs: int = 0
    total_commits: int
    screenshots_captured: int = 0
    credits_remaining: int
    warning: Optional[str] = None
    milestones: List[Milestone] = Field(default_factory=list)
