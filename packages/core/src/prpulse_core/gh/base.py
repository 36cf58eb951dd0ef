"""Abstract upstream interface.

The reconciler talks to BaseUpstream, never to PyGithub directly. The GitHub
implementation lives in prpulse_core.gh.repository; tests substitute an
in-memory fake with the same four operations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from prpulse_core.models import ActivityEvent, CommitRecord, DirectoryEntry, PullRequestRecord


class BaseUpstream(ABC):
    """Read-only view of one repository on the hosting API.

    Implementations raise UpstreamError when a request fails for good, and
    must be safe to call from worker threads.
    """

    @abstractmethod
    def list_commits(self, since: datetime | None = None) -> list[CommitRecord]:
        """Return every commit with a committer date at or after ``since``."""

    @abstractmethod
    def list_directory(self, path: str, ref: str) -> list[DirectoryEntry] | None:
        """Return the entries under ``path`` at ``ref``.

        Returns None when the path does not exist at that ref, which is a
        normal answer rather than an error.
        """

    @abstractmethod
    def list_pull_requests(self, since: datetime | None = None) -> list[PullRequestRecord]:
        """Return pull requests that may have been open at or after ``since``.

        With ``since=None`` every pull request is returned, open and closed.
        """

    @abstractmethod
    def list_activity(self, number: int) -> list[ActivityEvent]:
        """Return the comments and reviews on pull request ``number``."""
