"""GitHub access through PyGithub.

authenticate() is the startup credential check; GithubUpstream adapts a
PyGithub Repository to BaseUpstream, converting API objects into the plain
records in prpulse_core.models as soon as they arrive.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import requests
from github import Auth, BadCredentialsException, Github, GithubException, UnknownObjectException

from prpulse_core.errors import AuthError, UpstreamError
from prpulse_core.gh.base import BaseUpstream
from prpulse_core.gh.pagination import fetch_all
from prpulse_core.models import ActivityEvent, CommitRecord, DirectoryEntry, PullRequestRecord
from prpulse_core.retry import RetryPolicy

logger = logging.getLogger(__name__)


def get_client(token: str, per_page: int = 100, timeout: float = 30) -> Github:
    # retry=None: RetryPolicy owns backoff, PyGithub must not retry underneath it.
    return Github(auth=Auth.Token(token), per_page=per_page, timeout=timeout, retry=None)


def authenticate(token: str | None, repo_name: str, per_page: int = 100, timeout: float = 30):
    """Return the PyGithub Repository for ``repo_name`` or raise AuthError.

    Called once at startup; the lookup is a real request, so a bad token or
    an inaccessible repository fails here instead of inside a cycle.
    """
    if not token:
        raise AuthError("No GitHub token available.")
    client = get_client(token, per_page=per_page, timeout=timeout)
    try:
        return client.get_repo(repo_name)
    except BadCredentialsException as e:
        raise AuthError("GitHub rejected the token (bad credentials).") from e
    except UnknownObjectException as e:
        raise AuthError(f"Repository {repo_name} not found, or the token cannot access it.") from e
    except (GithubException, requests.RequestException) as e:
        raise AuthError(f"Could not verify access to {repo_name}: {e}") from e


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _login(user) -> str:
    return getattr(user, "login", None) or ""


def to_commit_record(commit) -> CommitRecord:
    return CommitRecord(sha=commit.sha, committed_at=_utc(commit.commit.committer.date))


def to_pull_request_record(pr) -> PullRequestRecord:
    return PullRequestRecord(
        number=pr.number,
        created_at=_utc(pr.created_at),
        closed_at=_utc(pr.closed_at),
        labels=frozenset(label.name for label in pr.labels),
        author=_login(pr.user),
    )


class GithubUpstream(BaseUpstream):
    """BaseUpstream backed by a PyGithub Repository."""

    def __init__(self, repo, per_page: int = 100, retry: RetryPolicy | None = None):
        self._repo = repo
        self._per_page = per_page
        self._retry = retry or RetryPolicy()

    @classmethod
    def from_config(cls, repo, config: dict) -> GithubUpstream:
        return cls(repo, per_page=config["per_page"], retry=RetryPolicy.from_config(config))

    def _call(self, fn, *args, description: str, **kwargs):
        """Single request through the retry policy; API errors become UpstreamError."""
        try:
            return self._retry.call(fn, *args, description=description, **kwargs)
        except UnknownObjectException:
            raise
        except (GithubException, requests.RequestException) as e:
            raise UpstreamError(f"{description} failed: {e}") from e

    def list_commits(self, since: datetime | None = None) -> list[CommitRecord]:
        kwargs = {"since": since} if since is not None else {}
        commits = fetch_all(self._repo.get_commits(**kwargs), self._per_page, self._retry, description="list commits")
        return [to_commit_record(c) for c in commits]

    def list_directory(self, path: str, ref: str) -> list[DirectoryEntry] | None:
        try:
            contents = self._call(self._repo.get_contents, path, ref=ref, description=f"contents of {path}@{ref[:7]}")
        except UnknownObjectException:
            return None
        if not isinstance(contents, list):
            # The path is a file at this ref, not a directory.
            contents = [contents]
        return [DirectoryEntry(name=c.name, type=c.type) for c in contents]

    def list_pull_requests(self, since: datetime | None = None) -> list[PullRequestRecord]:
        if since is None:
            pulls = fetch_all(
                self._repo.get_pulls(state="all", sort="created", direction="asc"),
                self._per_page,
                self._retry,
                description="list pull requests",
            )
            return [to_pull_request_record(pr) for pr in pulls]

        # The pulls endpoint has no server-side "since" filter. Sorting by
        # update time lets paging stop at the watermark: a PR closed after it
        # was necessarily updated after it. PRs still open but untouched since
        # the watermark come from the open listing.
        updated = fetch_all(
            self._repo.get_pulls(state="all", sort="updated", direction="desc"),
            self._per_page,
            self._retry,
            description="list recently updated pull requests",
            stop=lambda pr: _utc(pr.updated_at) < since,
        )
        still_open = fetch_all(
            self._repo.get_pulls(state="open"),
            self._per_page,
            self._retry,
            description="list open pull requests",
        )
        by_number: dict[int, PullRequestRecord] = {}
        for pr in updated:
            if _utc(pr.updated_at) >= since:
                by_number[pr.number] = to_pull_request_record(pr)
        for pr in still_open:
            by_number.setdefault(pr.number, to_pull_request_record(pr))
        return sorted(by_number.values(), key=lambda r: r.number)

    def list_activity(self, number: int) -> list[ActivityEvent]:
        try:
            pr = self._call(self._repo.get_pull, number, description=f"pull request #{number}")
        except UnknownObjectException as e:
            raise UpstreamError(f"pull request #{number} not found") from e
        events: list[ActivityEvent] = []
        for comment in fetch_all(pr.get_issue_comments(), self._per_page, self._retry, f"comments on #{number}"):
            events.append(ActivityEvent(_login(comment.user), _utc(comment.created_at), "comment"))
        for review in fetch_all(pr.get_reviews(), self._per_page, self._retry, f"reviews on #{number}"):
            # Pending reviews have no submission time yet.
            if review.submitted_at is not None:
                events.append(ActivityEvent(_login(review.user), _utc(review.submitted_at), "review"))
        for comment in fetch_all(pr.get_review_comments(), self._per_page, self._retry, f"review comments on #{number}"):
            events.append(ActivityEvent(_login(comment.user), _utc(comment.created_at), "review_comment"))
        return sorted(events, key=lambda e: e.created_at)
