"""
Read-Copy-Update store for reconciled loan snapshots.

Readers get the current LoanSnapshot for an identity without locking.
Writers build a new mapping and swap the reference in one assignment, so a
reader sees either the whole old snapshot or the whole new one, never a mix.

Writes are version-guarded: a snapshot whose `as_of_version` is older than
the stored one is dropped. A slow refresh that started before a newer one
cannot overwrite fresher data when it finally completes.
"""

from __future__ import annotations

import threading
from typing import Dict, Optional

from ...models.loan import LoanSnapshot
from ...utils.logging_setup import get_logger


logger = get_logger(__name__)


class SnapshotStore:
    """
    Identity → LoanSnapshot map with copy-on-write updates.

    Example:
        >>> store = SnapshotStore()
        >>> store.replace(LoanSnapshot("0xabc", (), as_of_version=1))
        True
        >>> store.get("0xabc").as_of_version
        1
    """

    __slots__ = ("_data", "_write_lock", "_version")

    def __init__(self) -> None:
        self._data: Dict[str, LoanSnapshot] = {}
        self._write_lock = threading.Lock()
        self._version = 0

    def get(self, identity: str) -> Optional[LoanSnapshot]:
        """Lock-free read of one identity's snapshot."""
        return self._data.get(identity)

    def identities(self) -> list[str]:
        return list(self._data)

    def replace(self, snapshot: LoanSnapshot) -> bool:
        """
        Install `snapshot` for its identity unless a newer one is stored.

        Returns:
            True if installed, False if dropped as stale.
        """
        with self._write_lock:
            current = self._data.get(snapshot.identity)
            if current is not None and current.as_of_version > snapshot.as_of_version:
                logger.info(
                    f"Dropping stale snapshot for {snapshot.identity}: "
                    f"v{snapshot.as_of_version} < stored v{current.as_of_version}"
                )
                return False
            new_data = dict(self._data)
            new_data[snapshot.identity] = snapshot
            self._data = new_data  # Atomic reference swap
            self._version += 1
            return True

    def discard(self, identity: str) -> bool:
        """Drop the snapshot for `identity`. Returns True if one existed."""
        with self._write_lock:
            if identity not in self._data:
                return False
            new_data = dict(self._data)
            del new_data[identity]
            self._data = new_data
            self._version += 1
            return True

    def clear(self) -> None:
        with self._write_lock:
            self._data = {}
            self._version += 1

    @property
    def version(self) -> int:
        """Number of writes applied (useful for change detection)."""
        return self._version

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, identity: str) -> bool:
        return identity in self._data
