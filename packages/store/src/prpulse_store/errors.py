"""Store-layer exceptions.

Kept inside prpulse_store so the store has no dependency on prpulse_core.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for snapshot persistence failures."""


class CorruptSnapshotError(StoreError):
    """The persisted document exists but is not a valid snapshot."""


class PersistError(StoreError):
    """Writing the snapshot failed. The previous snapshot is left intact."""
