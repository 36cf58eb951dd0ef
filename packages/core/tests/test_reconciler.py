"""Tests for the reconciliation cycle, run against an in-memory upstream."""

import copy
import json
import threading
from collections import Counter
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from prpulse_core.config import DEFAULT_CONFIG
from prpulse_core.errors import UpstreamError
from prpulse_core.gh.base import BaseUpstream
from prpulse_core.models import ActivityEvent, CommitRecord, DirectoryEntry, PullRequestRecord
from prpulse_core.reconciler import CycleState, ReconcileContext, Reconciler
from prpulse_core.stall import ActivityStallPolicy, AgeStallPolicy
from prpulse_store.errors import PersistError
from prpulse_store.file import JsonFileStore
from prpulse_store.models import HistorySnapshot

UTC = timezone.utc
NOW = datetime(2024, 6, 10, 12, tzinfo=UTC)


def _ts(month, day, hour=10):
    return datetime(2024, month, day, hour, tzinfo=UTC)


class FakeUpstream(BaseUpstream):
    """Honours ``since`` the way the GitHub listings do."""

    def __init__(self, commits=(), trees=None, pulls=(), activity=None):
        self.commits = list(commits)
        self.trees = dict(trees or {})  # sha -> subdir count, None, or an exception
        self.pulls = list(pulls)
        self.activity = dict(activity or {})  # number -> events or an exception
        self.commits_error = None
        self.pulls_error = None
        self.crash_after = None
        self.ignore_since = False
        self.calls = Counter()
        self.since_args = []
        self.directory_refs = []
        self._lock = threading.Lock()

    def _record(self, name):
        with self._lock:
            self.calls[name] += 1

    def list_commits(self, since=None):
        self._record("list_commits")
        self.since_args.append(("commits", since))
        if self.commits_error:
            raise self.commits_error
        if since is None or self.ignore_since:
            return list(self.commits)
        return [c for c in self.commits if c.committed_at >= since]

    def list_directory(self, path, ref):
        with self._lock:
            self.calls["list_directory"] += 1
            self.directory_refs.append(ref)
            attempt = len(self.directory_refs)
        if self.crash_after is not None and attempt > self.crash_after:
            raise RuntimeError("connection dropped")
        value = self.trees.get(ref)
        if isinstance(value, Exception):
            raise value
        if value is None:
            return None
        return [DirectoryEntry(f"project-{i}", "dir") for i in range(value)] + [DirectoryEntry("README.md", "file")]

    def list_pull_requests(self, since=None):
        self._record("list_pull_requests")
        self.since_args.append(("pulls", since))
        if self.pulls_error:
            raise self.pulls_error
        if since is None or self.ignore_since:
            return list(self.pulls)
        return [
            pr
            for pr in self.pulls
            if pr.closed_at is None or pr.created_at >= since or pr.closed_at >= since
        ]

    def list_activity(self, number):
        self._record("list_activity")
        value = self.activity.get(number, [])
        if isinstance(value, Exception):
            raise value
        return list(value)


def _commits():
    return [
        CommitRecord("a" * 40, _ts(6, 1)),
        CommitRecord("b" * 40, _ts(6, 2)),
        CommitRecord("c" * 40, _ts(6, 3)),
    ]


def _pulls():
    return [
        PullRequestRecord(1, _ts(6, 1), author="alice"),
        PullRequestRecord(2, _ts(6, 2), closed_at=_ts(6, 5), author="bob"),
    ]


def _scenario():
    return FakeUpstream(
        commits=_commits(),
        trees={"a" * 40: 1, "b" * 40: 1, "c" * 40: 2},
        pulls=_pulls(),
    )


def _reconciler(upstream, path, **kwargs):
    kwargs.setdefault("stall_policy", AgeStallPolicy())
    kwargs.setdefault("clock", lambda: NOW)
    context = ReconcileContext(upstream=upstream, store=JsonFileStore(path), tracked_path="projects", **kwargs)
    return Reconciler(context)


@pytest.fixture
def snapshot_path(tmp_path):
    return tmp_path / "commit_history.json"


def _saved(path):
    return json.loads(path.read_text())


class TestFirstRun:
    def test_builds_full_history(self, snapshot_path):
        result = _reconciler(_scenario(), snapshot_path).run_cycle()

        assert result.ok
        assert result.new_commits == 3
        data = _saved(snapshot_path)
        assert data["projects"] == {
            "a" * 40: {"date": "2024-06-01", "subdirCount": 1},
            "b" * 40: {"date": "2024-06-02", "subdirCount": 1},
            "c" * 40: {"date": "2024-06-03", "subdirCount": 2},
        }
        assert data["pullRequestCounts"]["2024-06-01"] == 1
        assert data["pullRequestCounts"]["2024-06-02"] == 2
        assert data["pullRequestCounts"]["2024-06-04"] == 2
        assert data["pullRequestCounts"]["2024-06-05"] == 1
        assert data["pullRequestCounts"]["2024-06-10"] == 1
        assert set(data["stalledPullRequestCounts"].values()) == {0}
        assert data["lastCommitWatermark"].startswith("2024-06-03")
        assert data["lastPRWatermark"].startswith("2024-06-02")

    def test_date_range_runs_from_first_pr_to_today(self, snapshot_path):
        result = _reconciler(_scenario(), snapshot_path).run_cycle()
        assert result.dates_updated[0] == "2024-06-01"
        assert result.dates_updated[-1] == "2024-06-10"
        assert len(result.dates_updated) == 10

    def test_missing_tracked_path_counts_zero(self, snapshot_path):
        upstream = _scenario()
        upstream.trees["a" * 40] = None
        _reconciler(upstream, snapshot_path).run_cycle()
        assert _saved(snapshot_path)["projects"]["a" * 40]["subdirCount"] == 0

    def test_degraded_metric_is_stored_as_zero(self, snapshot_path):
        upstream = _scenario()
        upstream.trees["b" * 40] = UpstreamError("502 after 3 attempts")
        result = _reconciler(upstream, snapshot_path).run_cycle()
        assert result.ok
        assert _saved(snapshot_path)["projects"]["b" * 40]["subdirCount"] == 0

    def test_empty_repository(self, snapshot_path):
        result = _reconciler(FakeUpstream(), snapshot_path).run_cycle()
        assert result.ok
        data = _saved(snapshot_path)
        assert data["projects"] == {}
        assert data["pullRequestCounts"] == {"2024-06-10": 0}
        assert data["lastCommitWatermark"] is None
        assert data["lastPRWatermark"] is None

    def test_state_returns_to_idle(self, snapshot_path):
        reconciler = _reconciler(_scenario(), snapshot_path)
        result = reconciler.run_cycle()
        assert result.state is CycleState.PERSISTED
        assert reconciler.state is CycleState.IDLE


class TestIncrementalRuns:
    def test_second_run_is_idempotent(self, snapshot_path):
        upstream = _scenario()
        reconciler = _reconciler(upstream, snapshot_path)
        reconciler.run_cycle()
        first = snapshot_path.read_bytes()
        directory_calls = upstream.calls["list_directory"]

        result = reconciler.run_cycle()

        assert result.ok
        assert result.new_commits == 0
        assert upstream.calls["list_directory"] == directory_calls
        assert snapshot_path.read_bytes() == first

    def test_listings_are_bounded_by_watermarks(self, snapshot_path):
        upstream = _scenario()
        reconciler = _reconciler(upstream, snapshot_path)
        reconciler.run_cycle()
        upstream.since_args.clear()

        reconciler.run_cycle()

        assert ("commits", _ts(6, 3)) in upstream.since_args
        assert ("pulls", _ts(6, 2)) in upstream.since_args

    def test_new_commit_is_appended(self, snapshot_path):
        upstream = _scenario()
        reconciler = _reconciler(upstream, snapshot_path)
        reconciler.run_cycle()

        upstream.commits.append(CommitRecord("d" * 40, _ts(6, 8)))
        upstream.trees["d" * 40] = 3
        result = reconciler.run_cycle()

        assert result.new_commits == 1
        assert upstream.directory_refs[-1] == "d" * 40
        data = _saved(snapshot_path)
        assert len(data["projects"]) == 4
        assert data["projects"]["d" * 40] == {"date": "2024-06-08", "subdirCount": 3}
        assert data["lastCommitWatermark"].startswith("2024-06-08")

    def test_counts_are_overwritten_not_accumulated(self, snapshot_path):
        upstream = _scenario()
        reconciler = _reconciler(upstream, snapshot_path)
        reconciler.run_cycle()
        reconciler.run_cycle()
        reconciler.run_cycle()
        assert _saved(snapshot_path)["pullRequestCounts"]["2024-06-03"] == 2

    def test_new_day_is_added(self, snapshot_path):
        upstream = _scenario()
        _reconciler(upstream, snapshot_path).run_cycle()
        _reconciler(upstream, snapshot_path, clock=lambda: _ts(6, 11)).run_cycle()
        counts = _saved(snapshot_path)["pullRequestCounts"]
        assert counts["2024-06-11"] == 1
        assert counts["2024-06-01"] == 1

    def test_stored_metrics_are_never_recomputed(self, snapshot_path):
        seeded = HistorySnapshot()
        seeded.add_project("a" * 40, date(2024, 6, 1), 7)
        JsonFileStore(snapshot_path).save(seeded)
        upstream = _scenario()

        _reconciler(upstream, snapshot_path).run_cycle()

        assert "a" * 40 not in upstream.directory_refs
        assert _saved(snapshot_path)["projects"]["a" * 40]["subdirCount"] == 7

    def test_watermarks_never_move_backwards(self, snapshot_path):
        seeded = HistorySnapshot()
        seeded.advance_commit_watermark(_ts(7, 1))
        seeded.advance_pr_watermark(_ts(7, 1))
        JsonFileStore(snapshot_path).save(seeded)
        upstream = _scenario()
        upstream.ignore_since = True

        _reconciler(upstream, snapshot_path, clock=lambda: _ts(7, 2)).run_cycle()

        data = _saved(snapshot_path)
        assert data["lastCommitWatermark"].startswith("2024-07-01")
        assert data["lastPRWatermark"].startswith("2024-07-01")


class TestStallCounts:
    def test_stalled_never_exceeds_open(self, snapshot_path):
        upstream = _scenario()
        upstream.pulls.append(PullRequestRecord(3, _ts(6, 3), labels=frozenset({"stall-exempt"}), author="carol"))

        _reconciler(upstream, snapshot_path, clock=lambda: _ts(6, 20)).run_cycle()

        data = _saved(snapshot_path)
        for day, stalled in data["stalledPullRequestCounts"].items():
            assert stalled <= data["pullRequestCounts"][day]
        assert data["pullRequestCounts"]["2024-06-14"] == 2
        assert data["stalledPullRequestCounts"]["2024-06-14"] == 0
        assert data["stalledPullRequestCounts"]["2024-06-15"] == 1
        assert data["stalledPullRequestCounts"]["2024-06-20"] == 1

    def test_age_policy_does_not_fetch_timelines(self, snapshot_path):
        upstream = _scenario()
        _reconciler(upstream, snapshot_path).run_cycle()
        assert upstream.calls["list_activity"] == 0

    def test_activity_policy_uses_timelines(self, snapshot_path):
        upstream = _scenario()
        upstream.pulls = [
            PullRequestRecord(1, _ts(6, 1), author="alice"),
            PullRequestRecord(3, _ts(6, 1), author="carol"),
        ]
        upstream.activity = {
            1: [ActivityEvent("maintainer", _ts(6, 2), "review")],
            3: UpstreamError("timeline unavailable"),
        }

        result = _reconciler(
            upstream, snapshot_path, stall_policy=ActivityStallPolicy(window_days=7), clock=lambda: _ts(6, 12)
        ).run_cycle()

        assert result.ok
        assert upstream.calls["list_activity"] == 2
        stalled = _saved(snapshot_path)["stalledPullRequestCounts"]
        assert stalled["2024-06-09"] == 0
        assert stalled["2024-06-10"] == 1
        assert stalled["2024-06-12"] == 1


class TestFailures:
    def test_commit_listing_failure_keeps_watermark_and_updates_prs(self, snapshot_path):
        upstream = _scenario()
        upstream.commits_error = UpstreamError("list commits failed after 3 attempts")

        result = _reconciler(upstream, snapshot_path).run_cycle()

        assert not result.ok
        assert result.state is CycleState.PERSISTED
        assert result.errors[0].startswith("commits:")
        data = _saved(snapshot_path)
        assert data["projects"] == {}
        assert data["lastCommitWatermark"] is None
        assert data["pullRequestCounts"]["2024-06-02"] == 2

    def test_pr_listing_failure_keeps_commits(self, snapshot_path):
        upstream = _scenario()
        upstream.pulls_error = UpstreamError("list pulls failed")

        result = _reconciler(upstream, snapshot_path).run_cycle()

        assert result.errors == ["pull requests: list pulls failed"]
        data = _saved(snapshot_path)
        assert len(data["projects"]) == 3
        assert data["pullRequestCounts"] == {}
        assert data["lastPRWatermark"] is None

    def test_persist_error_propagates(self):
        store = MagicMock()
        store.load.return_value = HistorySnapshot()
        store.save.side_effect = PersistError("disk full")
        context = ReconcileContext(
            upstream=_scenario(), store=store, tracked_path="projects", stall_policy=AgeStallPolicy(), clock=lambda: NOW
        )
        reconciler = Reconciler(context)

        with pytest.raises(PersistError):
            reconciler.run_cycle()
        assert reconciler.state is CycleState.IDLE

    def test_crash_mid_cycle_resumes_from_checkpoint(self, snapshot_path):
        shas = [f"{i:040x}" for i in range(1, 6)]
        upstream = FakeUpstream(
            commits=[CommitRecord(sha, _ts(6, i + 1)) for i, sha in enumerate(shas)],
            trees={sha: 1 for sha in shas},
        )
        upstream.crash_after = 2
        reconciler = _reconciler(upstream, snapshot_path, max_workers=1, checkpoint_every=1)

        with pytest.raises(RuntimeError):
            reconciler.run_cycle()

        after_crash = JsonFileStore(snapshot_path).load()
        persisted = len(after_crash.projects)
        assert persisted <= 2
        assert after_crash.last_commit_watermark is None

        upstream.crash_after = None
        upstream.directory_refs.clear()
        result = reconciler.run_cycle()

        assert result.ok
        assert len(upstream.directory_refs) == 5 - persisted
        assert set(_saved(snapshot_path)["projects"]) == set(shas)


class TestTriggers:
    def test_overlapping_trigger_is_dropped(self, snapshot_path):
        entered = threading.Event()
        release = threading.Event()
        upstream = _scenario()
        original = upstream.list_commits

        def blocking_list_commits(since=None):
            entered.set()
            release.wait(5)
            return original(since=since)

        upstream.list_commits = blocking_list_commits
        reconciler = _reconciler(upstream, snapshot_path)
        results = []
        worker = threading.Thread(target=lambda: results.append(reconciler.run_cycle()))
        worker.start()
        try:
            assert entered.wait(5)
            assert reconciler.run_cycle() is None
        finally:
            release.set()
            worker.join(5)

        assert results[0].ok
        assert upstream.calls["list_pull_requests"] == 1

    def test_backfill_recomputes_counts_from_scratch(self, snapshot_path):
        upstream = _scenario()
        reconciler = _reconciler(upstream, snapshot_path)
        reconciler.run_cycle()
        seeded = JsonFileStore(snapshot_path).load()
        seeded.set_pull_request_counts(date(2024, 6, 1), 99, 0)
        JsonFileStore(snapshot_path).save(seeded)

        reconciler.run_cycle()
        assert _saved(snapshot_path)["pullRequestCounts"]["2024-06-01"] == 99

        upstream.since_args.clear()
        result = reconciler.run_cycle(backfill=True)

        assert result.new_commits == 0
        assert upstream.since_args == [("commits", None), ("pulls", None)]
        assert _saved(snapshot_path)["pullRequestCounts"]["2024-06-01"] == 1

    def test_earliest_tracked_date_bounds_first_run(self, snapshot_path):
        upstream = _scenario()

        _reconciler(upstream, snapshot_path, earliest_tracked_date=date(2024, 6, 2)).run_cycle()

        assert ("commits", datetime(2024, 6, 2, tzinfo=UTC)) in upstream.since_args
        data = _saved(snapshot_path)
        assert "a" * 40 not in data["projects"]
        assert "2024-06-01" not in data["pullRequestCounts"]
        assert data["pullRequestCounts"]["2024-06-02"] == 2


def test_context_from_config():
    config = copy.deepcopy(DEFAULT_CONFIG)
    config.update({"stall_policy": "activity", "max_workers": 2, "earliest_tracked_date": date(2024, 1, 1)})
    store = MagicMock()

    context = ReconcileContext.from_config(config, _scenario(), store)

    assert context.tracked_path == "projects"
    assert isinstance(context.stall_policy, ActivityStallPolicy)
    assert context.max_workers == 2
    assert context.earliest_tracked_date == date(2024, 1, 1)
    assert context.store is store
