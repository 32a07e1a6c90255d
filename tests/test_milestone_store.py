"""
Tests for milestone persistence.
"""

import pytest

from analyzers.models import ChangeType, Milestone, MilestoneSource
from storage.milestone_store import SQLiteMilestoneStore


@pytest.fixture
def store(tmp_path):
    store = SQLiteMilestoneStore(str(tmp_path / "milestones.db"))
    yield store
    store.close()


def milestone(title, date="2024-01-15"):
    return Milestone(
        title=title,
        description="desc",
        commit_sha="abc",
        milestone_date=date,
        milestone_type=ChangeType.FEATURE,
    )


def test_replace_milestones(store):
    """Test that a new set replaces the previous set of the same source."""
    store.replace_milestones("repo", MilestoneSource.TIMELINE, [milestone("Old")])
    store.replace_milestones(
        "repo",
        MilestoneSource.TIMELINE,
        [milestone("New B", "2024-02-01"), milestone("New A", "2024-01-01")],
    )

    stored = store.list_milestones("repo", MilestoneSource.TIMELINE)

    assert [m.title for m in stored] == ["New A", "New B"]
    assert stored[0].milestone_type == "feature"


def test_sources_are_independent(store):
    """Test that replacing one source keeps the other."""
    store.replace_milestones("repo", MilestoneSource.QUICK, [milestone("Quick")])
    store.replace_milestones("repo", MilestoneSource.TIMELINE, [milestone("Timeline")])
    store.replace_milestones("repo", MilestoneSource.TIMELINE, [])

    assert [m.title for m in store.list_milestones("repo")] == ["Quick"]


def test_failed_replace_keeps_previous_set(store):
    """Test that a failing insert rolls back the delete."""
    store.replace_milestones("repo", MilestoneSource.QUICK, [milestone("Keep me")])
    broken = milestone("Broken").model_copy(update={"milestone_date": None})

    with pytest.raises(Exception):
        store.replace_milestones("repo", MilestoneSource.QUICK, [milestone("New"), broken])

    assert [m.title for m in store.list_milestones("repo")] == ["Keep me"]


def test_screenshots_are_persisted(store):
    """Test that captured screenshot bytes are stored with their milestone."""
    shot = milestone("With image").model_copy(update={"screenshot": b"\x89PNG\r\n"})
    store.replace_milestones("repo", MilestoneSource.QUICK, [shot, milestone("Without image")])

    stored = {m.title: m for m in store.list_milestones("repo", MilestoneSource.QUICK)}

    assert stored["With image"].screenshot == b"\x89PNG\r\n"
    assert stored["Without image"].screenshot is None
