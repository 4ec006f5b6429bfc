"""In-process stores."""

from .snapshot_store import SnapshotStore

__all__ = ["SnapshotStore"]
