"""
Milestone Storage Module.

Persists the milestones of each repository, one set per analysis source,
including the PNG bytes of any captured screenshot.
A new analysis replaces the previous set of the same source atomically, so
readers see either the old set or the new one, never a mix or nothing.
"""

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from analyzers.models import Milestone, MilestoneSource
from config import logger
from storage.models import StoredMilestone


_SCHEMA = """
CREATE TABLE IF NOT EXISTS milestones (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    repository_id       TEXT NOT NULL,
    source              TEXT NOT NULL CHECK (source IN ('quick', 'timeline')),
    title               TEXT NOT NULL,
    description         TEXT NOT NULL DEFAULT '',
    commit_sha          TEXT,
    milestone_date      TEXT NOT NULL,
    x_post_suggestion   TEXT NOT NULL DEFAULT '',
    milestone_type      TEXT,
    screenshot          BLOB,
    created_at          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_milestones_repository
    ON milestones (repository_id, source);
"""


class SQLiteMilestoneStore:
    """Stores analyzed milestones in a local SQLite database."""

    def __init__(self, db_path: str = "sumgit.db"):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._lock = threading.Lock()

    def replace_milestones(
        self,
        repository_id: str,
        source: MilestoneSource,
        milestones: List[Milestone],
    ) -> int:
        """
        Replace a repository's milestones of one source in a single transaction.

        Args:
            repository_id (str): Repository identifier
            source (MilestoneSource): Analysis run the milestones came from
            milestones (List[Milestone]): New set, dates already normalized

        Returns:
            int: Number of milestones stored

        Raises:
            sqlite3.Error: If the write fails; the previous set is kept
        """
        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (
                repository_id,
                source.value,
                m.title,
                m.description,
                m.commit_sha,
                m.milestone_date,
                m.x_post_suggestion,
                m.milestone_type.value if m.milestone_type else None,
                m.screenshot,
                now,
            )
            for m in milestones
        ]

        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                self._conn.execute(
                    "DELETE FROM milestones WHERE repository_id=? AND source=?",
                    (repository_id, source.value),
                )
                self._conn.executemany(
                    """
                    INSERT INTO milestones
                      (repository_id, source, title, description, commit_sha,
                       milestone_date, x_post_suggestion, milestone_type, screenshot,
                       created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
            except Exception as e:
                self._conn.execute("ROLLBACK")
                logger.error(
                    {
                        "message": "Failed to replace milestones",
                        "repository_id": repository_id,
                        "source": source.value,
                        "error": str(e),
                    }
                )
                raise
            self._conn.execute("COMMIT")

        logger.info(
            {
                "message": "Stored milestones",
                "repository_id": repository_id,
                "source": source.value,
                "count": len(rows),
            }
        )
        return len(rows)

    def list_milestones(
        self, repository_id: str, source: Optional[MilestoneSource] = None
    ) -> List[StoredMilestone]:
        """Return a repository's milestones ordered by date."""
        query = "SELECT * FROM milestones WHERE repository_id=?"
        params = [repository_id]
        if source is not None:
            query += " AND source=?"
            params.append(source.value)
        query += " ORDER BY milestone_date ASC, id ASC"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [StoredMilestone(**dict(row)) for row in rows]

    def close(self) -> None:
        self._conn.close()
