"""Transient records read from GitHub during a reconciliation cycle.

These are plain dataclasses rather than PyGithub objects so the reconciler,
the metric resolver and the stall classifier can be exercised with simple
fixtures and never trigger lazy network requests by accident.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime


@dataclass(frozen=True)
class CommitRecord:
    sha: str
    committed_at: datetime  # committer date, tz-aware UTC


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    type: str  # "dir" | "file" | "symlink" | "submodule"


@dataclass(frozen=True)
class ActivityEvent:
    """A comment or review on a pull request."""

    author: str
    created_at: datetime
    kind: str  # "comment" | "review" | "review_comment"


@dataclass(frozen=True)
class PullRequestRecord:
    number: int
    created_at: datetime
    closed_at: datetime | None = None
    labels: frozenset[str] = field(default_factory=frozenset)
    author: str = ""
    # None until the timeline is loaded, or when it could not be fetched.
    activity: tuple[ActivityEvent, ...] | None = None

    def is_open_on(self, day: date) -> bool:
        """True if the PR was open on *day*: created on or before it, closed after it."""
        if self.created_at.date() > day:
            return False
        return self.closed_at is None or day < self.closed_at.date()

    def open_between(self, start: date, end: date) -> bool:
        """True if the PR was open on at least one day in ``[start, end]``."""
        if self.created_at.date() > end:
            return False
        return self.closed_at is None or self.closed_at.date() > start

    def has_label(self, names) -> bool:
        wanted = {n.lower() for n in names}
        return any(label.lower() in wanted for label in self.labels)
