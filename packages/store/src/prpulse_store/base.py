"""Abstract store interface.

The reconciler and the dashboard endpoint depend on BaseStore, not on a
concrete backend, so the snapshot can live in a local file or a Gist without
touching either of them.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prpulse_store.models import HistorySnapshot


class BaseStore(ABC):
    """Owner of the single persisted history snapshot.

    There is no partial-update API: callers mutate the in-memory snapshot and
    call save() at their own checkpoints.
    """

    @abstractmethod
    def load(self, quarantine: bool = True) -> HistorySnapshot:
        """Return the persisted snapshot, or a fresh empty one.

        A missing or corrupt document yields an empty snapshot and is never
        fatal. With ``quarantine`` the corrupt document is preserved aside
        for forensic recovery before it can be overwritten.
        """

    @abstractmethod
    def save(self, snapshot: HistorySnapshot) -> None:
        """Persist the full snapshot. Raises PersistError on failure."""

    def close(self) -> None:
        """Release any resources held by the store.

        Default is a no-op so callers can always call close() safely.
        """
