"""
Per-key mutual exclusion for engine writes.

Operations on the same request (or the same provider's KYC record) are
linearized in-process by a keyed lock. Across processes the guarded
version bump in lifecycle.bump_version detects lost updates.
"""

from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator, List


class KeyedLocks:
    """
    Lock per key, created on first use and dropped once no holder or
    waiter references it.
    """

    def __init__(self):
        # key -> [lock, number of holders and waiters]
        self._locks: Dict[str, List] = {}
        self._guard = Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def is_locked(self, key: str) -> bool:
        with self._guard:
            entry = self._locks.get(key)
            return entry is not None and entry[0].locked()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


# Global lock registries
request_locks = KeyedLocks()
kyc_locks = KeyedLocks()
