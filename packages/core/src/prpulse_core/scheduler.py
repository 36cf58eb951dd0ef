"""Periodic trigger for reconciliation cycles.

Two schedules are supported, configured under ``schedule`` in .prpulse.yml:

  every_minutes: 15      run every N minutes
  at_hours: [6, 18]      run at fixed UTC hours of the day

The job runs once immediately on start, then on the schedule. Runs happen on
a single background thread, so two cycles never overlap; a job that raises
is logged and the next trigger runs as planned.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, time, timedelta, timezone
from typing import Callable

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Scheduler:
    def __init__(
        self,
        job: Callable[[], object],
        every_minutes: float | None = 15,
        at_hours: list[int] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not at_hours and not every_minutes:
            raise ValueError("Scheduler needs every_minutes or at_hours.")
        self._job = job
        self._every = timedelta(minutes=every_minutes) if every_minutes else None
        self._at_hours = sorted(set(at_hours)) if at_hours else None
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def from_config(cls, job: Callable[[], object], config: dict) -> Scheduler:
        schedule = config.get("schedule") or {}
        return cls(job, every_minutes=schedule.get("every_minutes"), at_hours=schedule.get("at_hours"))

    def next_run_after(self, now: datetime) -> datetime:
        if self._at_hours:
            for offset in (0, 1):
                day = (now + timedelta(days=offset)).date()
                for hour in self._at_hours:
                    candidate = datetime.combine(day, time(hour=hour), tzinfo=timezone.utc)
                    if candidate > now:
                        return candidate
        return now + self._every

    def run_once(self) -> None:
        try:
            self._job()
        except Exception:
            # The next trigger retries from the last persisted checkpoint.
            logger.exception("Scheduled reconciliation cycle failed.")

    def run_forever(self) -> None:
        self.run_once()
        while not self._stop.is_set():
            now = self._clock()
            next_run = self.next_run_after(now)
            logger.debug("Next reconciliation cycle at %s", next_run.isoformat())
            if self._stop.wait((next_run - now).total_seconds()):
                break
            self.run_once()

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run_forever, name="prpulse-scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
