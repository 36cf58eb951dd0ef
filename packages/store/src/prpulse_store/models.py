"""History snapshot data model.

Decoupled from prpulse_core so the store layer (and the dashboard endpoint
that only reads the snapshot) can be used without any GitHub client.

The JSON document keeps the camelCase keys the dashboard front end reads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from prpulse_store.errors import CorruptSnapshotError

# Key names written by the first generation of the dashboard service.
_LEGACY_KEYS = {
    "pull_requests": "pullRequestCounts",
    "stalled_pull_requests": "stalledPullRequestCounts",
}


@dataclass
class ProjectPoint:
    """Subdirectory count of the tracked path at one commit."""

    date: str  # YYYY-MM-DD, committer date
    subdir_count: int


@dataclass
class HistorySnapshot:
    """The complete persisted history served to the dashboard.

    Mutated in place by the reconciler (single writer) and written back in
    full by a store. Date-keyed maps are emitted in ascending order so that
    saving an unchanged snapshot produces identical bytes.
    """

    projects: dict[str, ProjectPoint] = field(default_factory=dict)
    pull_request_counts: dict[str, int] = field(default_factory=dict)
    stalled_pull_request_counts: dict[str, int] = field(default_factory=dict)
    last_commit_watermark: datetime | None = None
    last_pr_watermark: datetime | None = None

    # ------------------------------------------------------------------ #
    # Mutation                                                             #
    # ------------------------------------------------------------------ #

    def add_project(self, sha: str, day: date, subdir_count: int) -> bool:
        """Record the metric for a commit. Returns False if it was already known.

        Commits are immutable, so an existing entry is never overwritten.
        """
        if sha in self.projects:
            return False
        if subdir_count < 0:
            raise ValueError(f"subdir_count must be non-negative, got {subdir_count}")
        self.projects[sha] = ProjectPoint(date=day.isoformat(), subdir_count=subdir_count)
        return True

    def set_pull_request_counts(self, day: date, open_count: int, stalled_count: int) -> None:
        """Overwrite both daily counters for *day*."""
        if open_count < 0 or stalled_count < 0:
            raise ValueError("pull request counts must be non-negative")
        if stalled_count > open_count:
            raise ValueError(f"stalled count {stalled_count} exceeds open count {open_count} on {day}")
        key = day.isoformat()
        self.pull_request_counts[key] = open_count
        self.stalled_pull_request_counts[key] = stalled_count

    def advance_commit_watermark(self, value: datetime) -> None:
        self.last_commit_watermark = _later(self.last_commit_watermark, value)

    def advance_pr_watermark(self, value: datetime) -> None:
        self.last_pr_watermark = _later(self.last_pr_watermark, value)

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def latest_project_count(self) -> int | None:
        """Subdirectory count at the most recent commit, or None when empty."""
        if not self.projects:
            return None
        latest = max(self.projects.values(), key=lambda p: p.date)
        return latest.subdir_count

    # ------------------------------------------------------------------ #
    # Serialization                                                        #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict:
        return {
            "projects": {
                sha: {"date": point.date, "subdirCount": point.subdir_count}
                for sha, point in sorted(self.projects.items(), key=lambda kv: (kv[1].date, kv[0]))
            },
            "pullRequestCounts": dict(sorted(self.pull_request_counts.items())),
            "stalledPullRequestCounts": dict(sorted(self.stalled_pull_request_counts.items())),
            "lastCommitWatermark": _format_ts(self.last_commit_watermark),
            "lastPRWatermark": _format_ts(self.last_pr_watermark),
        }

    @classmethod
    def from_dict(cls, data) -> HistorySnapshot:
        """Build a snapshot from its JSON document.

        Accepts the legacy key names (``pull_requests``, ``stalled_pull_requests``,
        ``subdirsCount``) and full timestamps in a project's ``date``.
        Raises CorruptSnapshotError for anything that is not a snapshot.
        """
        if not isinstance(data, dict):
            raise CorruptSnapshotError(f"snapshot must be a JSON object, got {type(data).__name__}")
        data = dict(data)
        for old, new in _LEGACY_KEYS.items():
            if old in data and new not in data:
                data[new] = data.pop(old)

        try:
            projects = {
                str(sha): ProjectPoint(
                    date=_parse_day(entry["date"]),
                    subdir_count=_non_negative(entry.get("subdirCount", entry.get("subdirsCount"))),
                )
                for sha, entry in (data.get("projects") or {}).items()
            }
            return cls(
                projects=projects,
                pull_request_counts=_parse_counts(data.get("pullRequestCounts")),
                stalled_pull_request_counts=_parse_counts(data.get("stalledPullRequestCounts")),
                last_commit_watermark=_parse_ts(data.get("lastCommitWatermark")),
                last_pr_watermark=_parse_ts(data.get("lastPRWatermark")),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise CorruptSnapshotError(f"invalid snapshot document: {e}") from e


def _later(current: datetime | None, value: datetime) -> datetime:
    value = _as_utc(value)
    if current is None or value > current:
        return value
    return current


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_ts(value: datetime | None) -> str | None:
    return _as_utc(value).isoformat() if value is not None else None


def _parse_ts(value) -> datetime | None:
    if value is None:
        return None
    # fromisoformat() before 3.11 does not accept a trailing "Z".
    return _as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


def _parse_day(value) -> str:
    text = str(value)
    if len(text) > 10:
        return _parse_ts(text).date().isoformat()
    return date.fromisoformat(text).isoformat()


def _parse_counts(raw) -> dict[str, int]:
    return {_parse_day(day): _non_negative(count) for day, count in (raw or {}).items()}


def _non_negative(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an integer count, got {value!r}")
    if value < 0:
        raise ValueError(f"expected a non-negative count, got {value}")
    return value
