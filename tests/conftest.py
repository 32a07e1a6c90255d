"""
Shared test configuration.

Settings are loaded at import time, so the required credentials must be in
the environment before any application module is imported.
"""

import os
import tempfile

os.environ.setdefault("GITHUB_TOKEN", "test-github-token")
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="sumgit-logs-"))
os.environ.setdefault("DB_PATH", ":memory:")

import pytest  # noqa: E402

from miners.models import Commit  # noqa: E402


@pytest.fixture
def make_commit():
    """Factory for commits with sensible defaults."""

    def _make(sha="a" * 40, message="Add feature", date="2024-01-15T10:00:00Z", **kwargs):
        return Commit(sha=sha, message=message, date=date, author="dev", **kwargs)

    return _make
