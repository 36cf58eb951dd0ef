"""Stalled pull request classification.

Two policies exist and exactly one is active, chosen by ``stall_policy`` in
.prpulse.yml. They are never combined:

  age       (default) an open PR is stalled once it has been open for
            ``stall_after_days`` days.
  activity  an open PR is stalled when it has had replies from someone
            other than its author, but none in the last
            ``activity_window_days`` days.

Both share the same eligibility rules: the PR must be open on the reference
date, and a PR carrying one of ``exempt_labels`` is never stalled.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import Iterable

from prpulse_core.errors import ConfigError
from prpulse_core.models import PullRequestRecord

logger = logging.getLogger(__name__)

DEFAULT_EXEMPT_LABELS = ("stall-exempt",)


class BaseStallPolicy(ABC):
    #: Whether is_stalled() reads PullRequestRecord.activity. The reconciler
    #: fetches timelines only for policies that need them.
    needs_activity: bool = False

    def __init__(self, exempt_labels: Iterable[str] = DEFAULT_EXEMPT_LABELS):
        self.exempt_labels = tuple(exempt_labels)

    def is_stalled(self, pr: PullRequestRecord, day: date) -> bool:
        if not pr.is_open_on(day):
            return False
        if pr.has_label(self.exempt_labels):
            return False
        return self._is_stalled(pr, day)

    @abstractmethod
    def _is_stalled(self, pr: PullRequestRecord, day: date) -> bool:
        """Decide for a PR already known to be open, non-exempt, on ``day``."""


class AgeStallPolicy(BaseStallPolicy):
    def __init__(self, stall_after_days: int = 14, exempt_labels: Iterable[str] = DEFAULT_EXEMPT_LABELS):
        super().__init__(exempt_labels)
        self.stall_after_days = stall_after_days

    def _is_stalled(self, pr: PullRequestRecord, day: date) -> bool:
        return (day - pr.created_at.date()).days >= self.stall_after_days


class ActivityStallPolicy(BaseStallPolicy):
    needs_activity = True

    def __init__(self, window_days: int = 7, exempt_labels: Iterable[str] = DEFAULT_EXEMPT_LABELS):
        super().__init__(exempt_labels)
        self.window_days = window_days

    def _is_stalled(self, pr: PullRequestRecord, day: date) -> bool:
        if pr.activity is None:
            # Timeline unavailable; the reconciler has already logged why.
            return False
        cutoff = day - timedelta(days=self.window_days)
        replies = [e.created_at.date() for e in pr.activity if e.author != pr.author and e.created_at.date() <= day]
        if not any(d < cutoff for d in replies):
            return False
        return not any(d >= cutoff for d in replies)


def get_stall_policy(config: dict) -> BaseStallPolicy:
    name = config.get("stall_policy", "age")
    exempt = config.get("exempt_labels") or DEFAULT_EXEMPT_LABELS
    if name == "age":
        return AgeStallPolicy(stall_after_days=config.get("stall_after_days", 14), exempt_labels=exempt)
    if name == "activity":
        return ActivityStallPolicy(window_days=config.get("activity_window_days", 7), exempt_labels=exempt)
    raise ConfigError(f"Unknown stall_policy: {name!r}. Choose 'age' or 'activity'.")
