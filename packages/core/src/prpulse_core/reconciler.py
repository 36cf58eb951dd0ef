"""Incremental history reconciliation.

One cycle walks a fixed sequence of states:

    idle → loading_snapshot → fetching_commits → resolving_metrics
         → fetching_prs → classifying_stalls → persisted → idle

Commits are keyed by SHA and never recomputed, so re-fetching the window
around the commit watermark is harmless. Daily PR counters are overwritten
for every date from the PR watermark's date to today, so re-running the same
window gives the same numbers rather than adding to them.

The snapshot is saved after every ``checkpoint_every`` resolved commits and
at the end of each step. Watermarks move only once their step has processed
its whole range, so after a crash the next cycle resumes where the last
checkpoint left off.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable

from prpulse_core.errors import UpstreamError
from prpulse_core.gh.base import BaseUpstream
from prpulse_core.metrics import resolve_subdir_count
from prpulse_core.models import CommitRecord, PullRequestRecord
from prpulse_core.stall import BaseStallPolicy, get_stall_policy
from prpulse_store.base import BaseStore
from prpulse_store.models import HistorySnapshot

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CycleState(str, Enum):
    IDLE = "idle"
    LOADING_SNAPSHOT = "loading_snapshot"
    FETCHING_COMMITS = "fetching_commits"
    RESOLVING_METRICS = "resolving_metrics"
    FETCHING_PRS = "fetching_prs"
    CLASSIFYING_STALLS = "classifying_stalls"
    PERSISTED = "persisted"


@dataclass
class ReconcileContext:
    """Everything a cycle needs. Nothing is read from module globals."""

    upstream: BaseUpstream
    store: BaseStore
    tracked_path: str
    stall_policy: BaseStallPolicy
    earliest_tracked_date: date | None = None
    max_workers: int = 4
    checkpoint_every: int = 1
    clock: Callable[[], datetime] = _utcnow

    @classmethod
    def from_config(cls, config: dict, upstream: BaseUpstream, store: BaseStore) -> ReconcileContext:
        return cls(
            upstream=upstream,
            store=store,
            tracked_path=config["tracked_path"],
            stall_policy=get_stall_policy(config),
            earliest_tracked_date=config.get("earliest_tracked_date"),
            max_workers=config.get("max_workers", 4),
            checkpoint_every=config.get("checkpoint_every", 1),
        )


@dataclass
class CycleResult:
    """Outcome of one reconciliation cycle, for the CLI and the scheduler."""

    snapshot: HistorySnapshot
    new_commits: int = 0
    commits_seen: int = 0
    pull_requests_seen: int = 0
    dates_updated: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    state: CycleState = CycleState.IDLE

    @property
    def ok(self) -> bool:
        return not self.errors and self.state is CycleState.PERSISTED


class Reconciler:
    """Runs reconciliation cycles one at a time.

    A trigger that arrives while a cycle is running is dropped rather than
    queued: the next scheduled trigger picks up whatever it missed.
    """

    def __init__(self, context: ReconcileContext):
        self.context = context
        self.state = CycleState.IDLE
        self._lock = threading.Lock()

    def run_cycle(self, backfill: bool = False) -> CycleResult | None:
        """Run one cycle. Returns None if another cycle was already running.

        ``backfill`` ignores both watermarks and recomputes the daily counters
        over the whole range. Stored commit metrics are still never recomputed.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning("A reconciliation cycle is already running; dropping this trigger.")
            return None
        try:
            return self._run(backfill)
        finally:
            self._transition(CycleState.IDLE)
            self._lock.release()

    def _transition(self, state: CycleState) -> None:
        logger.debug("cycle state: %s -> %s", self.state.value, state.value)
        self.state = state

    def _run(self, backfill: bool) -> CycleResult:
        self._transition(CycleState.LOADING_SNAPSHOT)
        snapshot = self.context.store.load()
        result = CycleResult(snapshot=snapshot)

        self._reconcile_commits(snapshot, result, backfill)
        self._reconcile_pull_requests(snapshot, result, backfill)

        self._transition(CycleState.PERSISTED)
        result.state = CycleState.PERSISTED
        logger.info(
            "Cycle finished: %d new commit(s), %d date(s) updated, %d error(s).",
            result.new_commits,
            len(result.dates_updated),
            len(result.errors),
        )
        return result

    # ------------------------------------------------------------------ #
    # Commits                                                              #
    # ------------------------------------------------------------------ #

    def _reconcile_commits(self, snapshot: HistorySnapshot, result: CycleResult, backfill: bool) -> None:
        ctx = self.context
        since = None if backfill else snapshot.last_commit_watermark
        if since is None:
            since = _start_of(ctx.earliest_tracked_date)

        self._transition(CycleState.FETCHING_COMMITS)
        try:
            commits = ctx.upstream.list_commits(since=since)
        except UpstreamError as e:
            logger.error("Listing commits failed; commit history not updated this cycle: %s", e)
            result.errors.append(f"commits: {e}")
            return
        result.commits_seen = len(commits)

        pending = sorted((c for c in commits if c.sha not in snapshot.projects), key=lambda c: c.committed_at)
        self._transition(CycleState.RESOLVING_METRICS)
        if pending:
            logger.info("Resolving subdir counts for %d new commit(s).", len(pending))
            self._resolve_metrics(snapshot, pending, result)

        if commits:
            snapshot.advance_commit_watermark(max(c.committed_at for c in commits))
        ctx.store.save(snapshot)

    def _resolve_metrics(self, snapshot: HistorySnapshot, pending: list[CommitRecord], result: CycleResult) -> None:
        ctx = self.context
        with ThreadPoolExecutor(max_workers=ctx.max_workers, thread_name_prefix="prpulse-metric") as executor:
            futures = {
                executor.submit(resolve_subdir_count, ctx.upstream, ctx.tracked_path, commit.sha): commit
                for commit in pending
            }
            try:
                # Results are merged on this thread only; workers never touch the snapshot.
                for future in as_completed(futures):
                    commit = futures[future]
                    count = future.result()
                    snapshot.add_project(commit.sha, commit.committed_at.date(), count)
                    result.new_commits += 1
                    if result.new_commits % ctx.checkpoint_every == 0:
                        ctx.store.save(snapshot)
                        logger.debug("checkpoint after %s (%d/%d)", commit.sha[:7], result.new_commits, len(pending))
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    # ------------------------------------------------------------------ #
    # Pull requests                                                        #
    # ------------------------------------------------------------------ #

    def _reconcile_pull_requests(self, snapshot: HistorySnapshot, result: CycleResult, backfill: bool) -> None:
        ctx = self.context
        watermark = None if backfill else snapshot.last_pr_watermark
        since = watermark or _start_of(ctx.earliest_tracked_date)

        self._transition(CycleState.FETCHING_PRS)
        try:
            pulls = ctx.upstream.list_pull_requests(since=since)
        except UpstreamError as e:
            logger.error("Listing pull requests failed; daily counts not updated this cycle: %s", e)
            result.errors.append(f"pull requests: {e}")
            return
        result.pull_requests_seen = len(pulls)

        today = ctx.clock().date()
        if since is not None:
            start = since.date()
        elif pulls:
            start = min(pr.created_at for pr in pulls).date()
        else:
            start = today
        days = list(_date_range(start, today))

        self._transition(CycleState.CLASSIFYING_STALLS)
        relevant = [pr for pr in pulls if pr.open_between(start, today)]
        if ctx.stall_policy.needs_activity:
            relevant = self._load_activity(relevant)

        for day in days:
            open_prs = [pr for pr in relevant if pr.is_open_on(day)]
            stalled = sum(1 for pr in open_prs if ctx.stall_policy.is_stalled(pr, day))
            snapshot.set_pull_request_counts(day, len(open_prs), stalled)
        result.dates_updated = [day.isoformat() for day in days]

        if pulls:
            snapshot.advance_pr_watermark(max(pr.created_at for pr in pulls))
        ctx.store.save(snapshot)

    def _load_activity(self, pulls: list[PullRequestRecord]) -> list[PullRequestRecord]:
        """Attach comment/review timelines, fetched concurrently.

        A PR whose timeline cannot be fetched keeps ``activity=None`` and is
        counted as not stalled.
        """
        if not pulls:
            return []
        ctx = self.context
        loaded: dict[int, PullRequestRecord] = {}
        with ThreadPoolExecutor(max_workers=ctx.max_workers, thread_name_prefix="prpulse-activity") as executor:
            futures = {executor.submit(ctx.upstream.list_activity, pr.number): pr for pr in pulls}
            for future in as_completed(futures):
                pr = futures[future]
                try:
                    events = future.result()
                except UpstreamError as e:
                    logger.warning("Timeline for PR #%d unavailable; counting it as not stalled: %s", pr.number, e)
                    loaded[pr.number] = pr
                    continue
                loaded[pr.number] = replace(pr, activity=tuple(events))
        return [loaded[pr.number] for pr in pulls]


def _start_of(day: date | None) -> datetime | None:
    if day is None:
        return None
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _date_range(start: date, end: date):
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)
