"""
Commit Payload Builder.

Serializes candidate commits into the text block sent to the language model.
Information-rich commits are ranked first, individual diffs are truncated to
a per-commit limit and commits are appended until the aggregate byte ceiling
would be crossed. This module performs no I/O.
"""

from dataclasses import dataclass
from typing import List

from miners.models import Commit, truncate_with_marker, utf8_len


DELIMITER = "\n\n---\n\n"


@dataclass
class Payload:
    """
    Text block for one completion request.

    Attributes:
        text (str): Exact text to embed in the user message
        included (int): Commits present in the text
        excluded (int): Candidates left out by the count cap or the byte ceiling
        byte_size (int): UTF-8 size of text
    """

    text: str
    included: int
    excluded: int
    byte_size: int

    @property
    def empty(self) -> bool:
        return self.included == 0


def rank_commits(commits: List[Commit]) -> List[Commit]:
    """
    Order commits with a diff first, then by descending impact.

    Args:
        commits (List[Commit]): Candidate commits

    Returns:
        List[Commit]: Ranked copy of the list, stable for ties
    """
    return sorted(commits, key=lambda c: (not c.has_diff, -c.impact))


class PayloadBuilder:
    """
    Builds bounded-size commit payloads.

    Attributes:
        max_commits (int): Candidates kept after ranking
        max_diff_bytes (int): Per-commit diff limit, marker included
        max_payload_bytes (int): Aggregate ceiling of the whole payload
    """

    def __init__(
        self,
        max_commits: int = 100,
        max_diff_bytes: int = 1000,
        max_payload_bytes: int = 80 * 1024,
    ):
        self.max_commits = max_commits
        self.max_diff_bytes = max_diff_bytes
        self.max_payload_bytes = max_payload_bytes

    def format_commit(self, commit: Commit, with_diff: bool = True) -> str:
        """
        Render one commit as '[date] shortsha: message' plus stats and diff.

        Args:
            commit (Commit): Commit to render
            with_diff (bool): Append the truncated diff block when present

        Returns:
            str: Commit text
        """
        line = f"[{commit.date}] {commit.short_sha}: {commit.message}"
        if commit.files_changed:
            line += (
                f" ({commit.files_changed} files, "
                f"+{commit.additions or 0}/-{commit.deletions or 0})"
            )
        if with_diff and commit.diff:
            diff = truncate_with_marker(commit.diff, self.max_diff_bytes)
            line += f"\nCode changes:\n{diff}"
        return line

    def build(self, commits: List[Commit]) -> Payload:
        """
        Build the payload for a candidate commit list.

        Args:
            commits (List[Commit]): Candidate commits, any order

        Returns:
            Payload: Text within the byte ceiling and inclusion counts
        """
        if not commits:
            return Payload(text="", included=0, excluded=0, byte_size=0)

        candidates = rank_commits(commits)[: self.max_commits]
        parts: List[str] = []
        size = 0
        delimiter_size = utf8_len(DELIMITER)

        for commit in candidates:
            text = self.format_commit(commit)
            cost = utf8_len(text) + (delimiter_size if parts else 0)
            if size + cost > self.max_payload_bytes:
                if parts:
                    break
                # A lone commit over the ceiling still goes in without its diff
                text = self.format_commit(commit, with_diff=False)
                cost = utf8_len(text)
                if cost > self.max_payload_bytes:
                    break
            parts.append(text)
            size += cost

        return Payload(
            text=DELIMITER.join(parts),
            included=len(parts),
            excluded=len(commits) - len(parts),
            byte_size=size,
        )
