from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import threading


class ItemLockRegistry:
    """Per-item mutual exclusion for cursor read-modify-write sequences.

    Locks live in this process only; deployments running several worker
    processes against one database need a database-level lock on top.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[int, threading.Lock] = {}

    def _lock_for(self, plaid_item_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(plaid_item_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[plaid_item_id] = lock
            return lock

    @contextmanager
    def hold(self, plaid_item_id: int) -> Iterator[None]:
        """Block until the item's lock is free, then hold it for the block."""
        lock = self._lock_for(plaid_item_id)
        with lock:
            yield

    def is_held(self, plaid_item_id: int) -> bool:
        return self._lock_for(plaid_item_id).locked()
